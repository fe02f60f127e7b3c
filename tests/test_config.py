"""Tests for dexter.config: providers, model chain, persistence."""

import json
import os

import pytest

from dexter.config import (
    PROVIDER_PRESETS,
    DexterConfig,
    ModelEntry,
    PreferencesConfig,
    ProviderAuth,
    ProviderConfig,
    ProviderKind,
)
from dexter.errors import ConfigPersistFailed


class TestProviderConfig:

    def test_preset_base_url_used_when_blank(self):
        provider = ProviderConfig.from_preset(PROVIDER_PRESETS["openai"])
        assert provider.effective_base_url() == "https://api.openai.com/v1"

    def test_custom_base_url_strips_slash(self):
        provider = ProviderConfig(id="local", base_url="http://127.0.0.1:8080/v1/")
        assert provider.effective_base_url() == "http://127.0.0.1:8080/v1"

    def test_env_reference_resolved_on_read(self, monkeypatch):
        provider = ProviderConfig(id="groq", api_key="env:MY_GROQ_KEY")
        monkeypatch.setenv("MY_GROQ_KEY", "first")
        assert provider.resolve_api_key() == "first"
        monkeypatch.setenv("MY_GROQ_KEY", "second")
        assert provider.resolve_api_key() == "second"

    def test_env_override_wins(self, monkeypatch):
        provider = ProviderConfig(id="openai", api_key="literal")
        monkeypatch.setenv("DEXTER_OPENAI_API_KEY", "override")
        assert provider.resolve_api_key() == "override"

    def test_local_needs_no_credential(self):
        provider = ProviderConfig.from_preset(PROVIDER_PRESETS["ollama"], enabled=True)
        assert provider.auth is ProviderAuth.NONE
        assert provider.is_configured()

    def test_anthropic_uses_api_key_header(self):
        provider = ProviderConfig.from_preset(PROVIDER_PRESETS["anthropic"])
        assert provider.auth is ProviderAuth.API_KEY_HEADER

    def test_custom_provider_auth_follows_kind(self):
        provider = ProviderConfig(id="proxy", kind=ProviderKind.ANTHROPIC_COMPATIBLE)
        assert provider.auth is ProviderAuth.API_KEY_HEADER
        assert provider.display_name == "proxy"


class TestEnabledChain:

    def test_chain_sorted_by_rank(self, sample_config):
        chain = sample_config.enabled_chain()
        assert [m.key for _, m in chain] == ["openai::gpt-4o-mini", "groq::llama3-8b-8192"]

    def test_disabled_provider_drops_out(self, sample_config):
        sample_config.get_provider("openai").enabled = False
        assert [m.key for _, m in sample_config.enabled_chain()] == ["groq::llama3-8b-8192"]

    def test_normalize_ranks_contiguous(self):
        config = DexterConfig(models=[
            ModelEntry("a", "m1", True, 7),
            ModelEntry("a", "m2", False, 3),
            ModelEntry("a", "m3", True, 2),
            ModelEntry("a", "m4", True, 0),
        ])
        config.normalize_ranks()
        assert [(m.name, m.rank) for m in config.models] == [
            ("m1", 2), ("m2", 0), ("m3", 1), ("m4", 3),
        ]


class TestPersistence:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = DexterConfig.load(tmp_path / "nope.json")
        assert config.providers == []
        assert config.enabled_chain() == []

    def test_save_and_load(self, tmp_path, sample_config):
        path = tmp_path / "config.json"
        sample_config.preferences.context_max_files = 5
        sample_config.save(path)
        loaded = DexterConfig.load(path)
        assert [p.id for p in loaded.providers] == ["openai", "groq"]
        assert [m.key for _, m in loaded.enabled_chain()] == [
            "openai::gpt-4o-mini", "groq::llama3-8b-8192",
        ]
        assert loaded.preferences.context_max_files == 5

    def test_corrupt_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert DexterConfig.load(path).providers == []

    def test_bad_entries_skipped(self):
        config = DexterConfig.from_dict({
            "providers": [
                {"id": "openai", "kind": "native"},
                {"id": "openai", "kind": "native"},
                {"id": "weird", "kind": "carrier-pigeon"},
                "junk",
            ],
            "models": [
                {"provider": "openai", "name": "gpt-4o", "rank": "x"},
                {"provider": "openai", "name": "gpt-4o-mini"},
                {"name": "orphan"},
            ],
            "preferences": {"theme": "dark", "unknown": 1},
        })
        assert [p.id for p in config.providers] == ["openai"]
        assert [m.name for m in config.models] == ["gpt-4o-mini"]
        assert config.preferences.theme == "dark"

    @pytest.mark.parametrize("key,value", [
        ("request_timeout_seconds", "fast"),
        ("request_timeout_seconds", -5),
        ("request_timeout_seconds", True),
        ("context_max_files", "lots"),
        ("context_max_files", [20]),
        ("max_output_bytes", None),
        ("theme", 3),
    ])
    def test_invalid_preference_keeps_default(self, key, value):
        config = DexterConfig.from_dict({"preferences": {key: value}})
        assert getattr(config.preferences, key) == getattr(PreferencesConfig(), key)

    def test_preferences_converted_to_field_type(self):
        config = DexterConfig.from_dict({
            "preferences": {"request_timeout_seconds": "12.5", "context_max_files": "7", "max_output_bytes": 1024.0},
        })
        assert config.preferences.request_timeout_seconds == 12.5
        assert config.preferences.context_max_files == 7
        assert isinstance(config.preferences.max_output_bytes, int)

    def test_failed_save_keeps_previous_file(self, tmp_path, sample_config, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"providers": []}))

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)
        with pytest.raises(ConfigPersistFailed):
            sample_config.save(path)
        assert json.loads(path.read_text()) == {"providers": []}
        assert list(tmp_path.iterdir()) == [path]
