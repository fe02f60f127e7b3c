"""Provider/model fallback manager.

Each `complete` call snapshots the current configuration, builds the
ranked chain of enabled models and walks it from the top until one model
returns usable text. A configuration change during the walk never affects
it; the next call sees the new chain.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from dexter.config import DexterConfig, ProviderConfig
from dexter.errors import FallbackExhausted
from dexter.llm import InvalidPayloadError, ModelCallError, ModelClient, create_client

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProviderConfig], ModelClient]
ConfigSource = Callable[[], DexterConfig]


@dataclass(frozen=True)
class ChainLink:
    """One model in a snapshotted chain."""

    provider: ProviderConfig
    model: str
    rank: int

    @property
    def label(self) -> str:
        return f"{self.provider.id}/{self.model}"


@dataclass(frozen=True)
class AttemptRecord:
    provider_id: str
    model: str
    ok: bool
    error_kind: str = ""
    error: str = ""
    latency_ms: float = 0.0

    def __str__(self) -> str:
        if self.ok:
            return f"{self.provider_id}/{self.model}: ok"
        return f"{self.provider_id}/{self.model}: {self.error_kind} ({self.error})"


@dataclass(frozen=True)
class ModelResponse:
    text: str
    provider_id: str
    model: str
    attempts: tuple[AttemptRecord, ...] = field(default_factory=tuple)


def snapshot_chain(config: DexterConfig) -> tuple[ChainLink, ...]:
    """Immutable copy of the enabled chain, ordered by rank."""
    links = []
    for provider, model in config.enabled_chain():
        links.append(ChainLink(_frozen_provider(provider), model.name, model.rank))
    return tuple(links)


def _frozen_provider(provider: ProviderConfig) -> ProviderConfig:
    return ProviderConfig(
        id=provider.id,
        kind=provider.kind,
        enabled=provider.enabled,
        api_key=provider.api_key,
        base_url=provider.base_url,
    )


class FallbackManager:
    """Ask the configured models, in rank order, until one answers."""

    def __init__(
        self,
        config: DexterConfig | ConfigSource,
        client_factory: ClientFactory | None = None,
        timeout: float | None = None,
    ):
        self._config_source: ConfigSource = config if callable(config) else (lambda: config)
        self._client_factory = client_factory or create_client
        self._timeout = timeout
        self._stats = {
            "calls": 0,
            "attempts": 0,
            "failovers": 0,
            "exhausted": 0,
        }

    def chain(self) -> tuple[ChainLink, ...]:
        """The ordered enabled chain as of now."""
        return snapshot_chain(self._config_source())

    def _call_timeout(self, config: DexterConfig) -> float:
        if self._timeout is not None:
            return self._timeout
        return float(config.preferences.request_timeout_seconds)

    async def complete(self, prompt: str, system: str = "") -> ModelResponse:
        """One logical model call with failover.

        Raises FallbackExhausted after exactly one attempt per chain link.
        """
        config = self._config_source()
        links = snapshot_chain(config)
        timeout = self._call_timeout(config)
        self._stats["calls"] += 1

        if not links:
            self._stats["exhausted"] += 1
            raise FallbackExhausted([])

        attempts: list[AttemptRecord] = []
        for position, link in enumerate(links):
            if position:
                self._stats["failovers"] += 1
            self._stats["attempts"] += 1
            start = time.monotonic()
            try:
                client = self._client_factory(link.provider)
                text = await asyncio.wait_for(
                    client.complete(link.model, system, prompt, timeout=timeout),
                    timeout=timeout,
                )
                if not text or not text.strip():
                    raise InvalidPayloadError("Model returned empty content")
            except asyncio.TimeoutError:
                record = AttemptRecord(
                    link.provider.id, link.model, False, "timeout",
                    f"no reply within {timeout:.0f}s", _elapsed_ms(start),
                )
            except ModelCallError as e:
                record = AttemptRecord(
                    link.provider.id, link.model, False, e.kind, str(e), _elapsed_ms(start)
                )
            else:
                attempts.append(AttemptRecord(link.provider.id, link.model, True, latency_ms=_elapsed_ms(start)))
                logger.info(f"Model {link.label} answered after {len(attempts)} attempt(s)")
                return ModelResponse(text, link.provider.id, link.model, tuple(attempts))

            attempts.append(record)
            logger.warning(f"Model {link.label} failed: {record.error_kind}: {record.error}")

        self._stats["exhausted"] += 1
        logger.error(f"Fallback chain exhausted after {len(attempts)} attempt(s)")
        raise FallbackExhausted(attempts)

    def get_stats(self) -> dict:
        return dict(self._stats)


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)
