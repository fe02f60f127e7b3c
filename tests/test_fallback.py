"""Tests for dexter.fallback: ranked failover across models."""

import asyncio

import pytest

from dexter.config import DexterConfig
from dexter.errors import FallbackExhausted
from dexter.fallback import FallbackManager
from dexter.llm import AuthenticationError, RateLimitError, TransportError


class TestFallbackManager:

    @pytest.mark.asyncio
    async def test_first_model_answers(self, sample_config, client_factory, script, model_calls):
        script["openai/gpt-4o-mini"] = "first"
        manager = FallbackManager(sample_config, client_factory)
        response = await manager.complete("hi")

        assert response.text == "first"
        assert (response.provider_id, response.model) == ("openai", "gpt-4o-mini")
        assert len(model_calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_timeout_preference_uses_default(self, sample_config, client_factory, script):
        data = sample_config.to_dict()
        data["preferences"]["request_timeout_seconds"] = "fast"
        config = DexterConfig.from_dict(data)
        script["openai/gpt-4o-mini"] = "first"

        response = await FallbackManager(config, client_factory).complete("hi")
        assert response.text == "first"

    @pytest.mark.asyncio
    async def test_fails_over_in_rank_order(self, sample_config, client_factory, script, model_calls):
        script["openai/gpt-4o-mini"] = RateLimitError("HTTP 429", 429)
        script["groq/llama3-8b-8192"] = "second"
        manager = FallbackManager(sample_config, client_factory)
        response = await manager.complete("hi")

        assert response.text == "second"
        assert [c[:2] for c in model_calls] == [("openai", "gpt-4o-mini"), ("groq", "llama3-8b-8192")]
        assert [a.ok for a in response.attempts] == [False, True]
        assert response.attempts[0].error_kind == "rate_limit"
        assert manager.get_stats()["failovers"] == 1

    @pytest.mark.asyncio
    async def test_exhausted_after_one_attempt_per_model(self, sample_config, client_factory, script, model_calls):
        script["openai/gpt-4o-mini"] = AuthenticationError("bad key", 401)
        script["groq/llama3-8b-8192"] = TransportError("connection refused")
        manager = FallbackManager(sample_config, client_factory)

        with pytest.raises(FallbackExhausted) as exc:
            await manager.complete("hi")
        assert len(model_calls) == 2
        assert [a.error_kind for a in exc.value.attempts] == ["auth", "transport"]
        assert "2 model(s) failed" in str(exc.value)

    @pytest.mark.asyncio
    async def test_empty_reply_moves_on(self, sample_config, client_factory, script):
        script["openai/gpt-4o-mini"] = "   "
        script["groq/llama3-8b-8192"] = "ok"
        response = await FallbackManager(sample_config, client_factory).complete("hi")
        assert response.attempts[0].error_kind == "invalid_payload"
        assert response.text == "ok"

    @pytest.mark.asyncio
    async def test_timeout_moves_on(self, sample_config, client_factory, script):
        async def slow():
            await asyncio.sleep(5)
            return "too late"

        script["openai/gpt-4o-mini"] = slow
        script["groq/llama3-8b-8192"] = "fast"
        manager = FallbackManager(sample_config, client_factory, timeout=0.05)
        response = await manager.complete("hi")
        assert response.text == "fast"
        assert response.attempts[0].error_kind == "timeout"

    @pytest.mark.asyncio
    async def test_empty_chain(self, client_factory, model_calls):
        manager = FallbackManager(DexterConfig(), client_factory)
        with pytest.raises(FallbackExhausted) as exc:
            await manager.complete("hi")
        assert exc.value.attempts == []
        assert "dexter setup" in str(exc.value)
        assert model_calls == []

    @pytest.mark.asyncio
    async def test_config_change_applies_to_next_call(self, sample_config, client_factory, script, model_calls):
        script["openai/gpt-4o-mini"] = "a"
        script["groq/llama3-8b-8192"] = "b"
        manager = FallbackManager(lambda: sample_config, client_factory)

        assert (await manager.complete("hi")).text == "a"
        sample_config.get_provider("openai").enabled = False
        assert (await manager.complete("hi")).text == "b"

    @pytest.mark.asyncio
    async def test_chain_is_snapshotted_during_walk(self, sample_config, client_factory, script, model_calls):
        def disable_groq_then_fail():
            sample_config.get_provider("groq").enabled = False
            raise TransportError("down")

        async def first():
            disable_groq_then_fail()

        script["openai/gpt-4o-mini"] = first
        script["groq/llama3-8b-8192"] = "still asked"
        response = await FallbackManager(lambda: sample_config, client_factory).complete("hi")
        assert response.text == "still asked"

    def test_chain_order(self, sample_config):
        labels = [link.label for link in FallbackManager(sample_config).chain()]
        assert labels == ["openai/gpt-4o-mini", "groq/llama3-8b-8192"]
