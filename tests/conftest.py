"""Shared test fixtures for the Dexter test suite."""

from __future__ import annotations

import json

import pytest

from dexter.config import DexterConfig, ModelEntry, ProviderConfig, ProviderKind
from dexter.llm import ModelCallError, ModelClient


class ScriptedClient(ModelClient):
    """ModelClient whose replies come from a per-model script.

    A script value may be a string (the reply), an exception instance
    (raised), or a callable returning either.
    """

    def __init__(self, provider, script, calls):
        super().__init__(provider)
        self.script = script
        self.calls = calls

    async def complete(self, model, system, user, timeout=30.0):
        self.calls.append((self.provider.id, model, user))
        reply = self.script.get(f"{self.provider.id}/{model}")
        if callable(reply):
            reply = await reply()
        if isinstance(reply, BaseException):
            raise reply
        if reply is None:
            raise ModelCallError(f"no script for {self.provider.id}/{model}")
        return reply

    async def list_models(self, timeout=30.0):
        reply = self.script.get(f"{self.provider.id}/*")
        if isinstance(reply, BaseException):
            raise reply
        return list(reply or [])


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory for test files."""
    return tmp_path


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep real credential overrides out of tests."""
    for name in ("OPENAI", "GROQ", "GEMINI", "ANTHROPIC", "DEEPSEEK", "OPENROUTER", "OLLAMA"):
        monkeypatch.delenv(f"DEXTER_{name}_API_KEY", raising=False)


@pytest.fixture
def sample_config():
    """Two providers, two enabled models, one disabled."""
    return DexterConfig(
        providers=[
            ProviderConfig(id="openai", kind=ProviderKind.NATIVE, api_key="sk-test-openai-000000"),
            ProviderConfig(id="groq", kind=ProviderKind.OPENAI_COMPATIBLE, api_key="gsk-test"),
        ],
        models=[
            ModelEntry("openai", "gpt-4o-mini", enabled=True, rank=1),
            ModelEntry("openai", "gpt-4o", enabled=False, rank=0),
            ModelEntry("groq", "llama3-8b-8192", enabled=True, rank=2),
        ],
    )


@pytest.fixture
def script():
    """Replies keyed by 'provider/model'; tests fill it in."""
    return {}


@pytest.fixture
def model_calls():
    """(provider, model, prompt) for every scripted call, in order."""
    return []


@pytest.fixture
def client_factory(script, model_calls):
    def factory(provider):
        return ScriptedClient(provider, script, model_calls)
    return factory


def route_reply(plugin: str, **parameters) -> str:
    """A well-formed router reply selecting `plugin`."""
    return json.dumps({
        "intent": "route",
        "plugin_name": plugin,
        "parameters": parameters,
        "confidence": 0.9,
        "reasoning": "test",
    })


@pytest.fixture
def project_dir(tmp_path):
    """A working directory with a few files for routing context."""
    project = tmp_path / "work"
    project.mkdir()
    (project / "photo1.jpeg").write_bytes(b"\xff\xd8\xff")
    (project / "notes.md").write_text("# notes\n")
    (project / ".hidden").write_text("x")
    (project / "clips").mkdir()
    return project
