"""Setup/settings wizard state machine.

Steps, in order:

    PROVIDERS_TOGGLE -> PROVIDER_CONFIG -> MODELS_TOGGLE -> MODELS_CONFIRM_FALLBACK -> SAVED

`back()` moves one step back. `escape()` returns to PROVIDERS_TOGGLE and
restores the state captured when that step was left, dropping every edit
made since; at PROVIDERS_TOGGLE it closes the wizard without saving.
Nothing is written until `save()`, which replaces the config file
atomically or leaves it untouched.

Rendering is not done here; the CLI drives this object.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from dexter.config import (
    PROVIDER_PRESETS,
    DexterConfig,
    ModelEntry,
    ProviderConfig,
)
from dexter.errors import ConfigPersistFailed, DexterError, InvalidTransition
from dexter.fallback import ClientFactory
from dexter.llm import ModelCallError, create_client

logger = logging.getLogger(__name__)


class WizardStep(Enum):
    PROVIDERS_TOGGLE = "providers_toggle"
    PROVIDER_CONFIG = "provider_config"
    MODELS_TOGGLE = "models_toggle"
    MODELS_CONFIRM_FALLBACK = "models_confirm_fallback"
    SAVED = "saved"
    CLOSED = "closed"


class WizardAction(Enum):
    NEXT = "next"
    BACK = "back"
    ESCAPE = "escape"
    SAVE = "save"


_PT = WizardStep.PROVIDERS_TOGGLE
_PC = WizardStep.PROVIDER_CONFIG
_MT = WizardStep.MODELS_TOGGLE
_MCF = WizardStep.MODELS_CONFIRM_FALLBACK

TRANSITIONS: dict[tuple[WizardStep, WizardAction], WizardStep] = {
    (_PT, WizardAction.NEXT): _PC,
    (_PT, WizardAction.BACK): WizardStep.CLOSED,
    (_PT, WizardAction.ESCAPE): WizardStep.CLOSED,
    (_PC, WizardAction.NEXT): _MT,
    (_PC, WizardAction.BACK): _PT,
    (_PC, WizardAction.ESCAPE): _PT,
    (_MT, WizardAction.NEXT): _MCF,
    (_MT, WizardAction.BACK): _PC,
    (_MT, WizardAction.ESCAPE): _PT,
    (_MCF, WizardAction.SAVE): WizardStep.SAVED,
    (_MCF, WizardAction.BACK): _MT,
    (_MCF, WizardAction.ESCAPE): _PT,
}


class WizardError(DexterError):
    """The current step's input is incomplete; the step does not advance."""

    label = "setup incomplete"


def model_key(provider_id: str, name: str) -> str:
    return f"{provider_id}::{name}"


@dataclass
class WizardState:
    """In-progress edits. Discarded unless saved."""

    step: WizardStep = WizardStep.PROVIDERS_TOGGLE
    providers: list[ProviderConfig] = field(default_factory=list)
    available_models: dict[str, list[str]] = field(default_factory=dict)
    selected: set[str] = field(default_factory=set)
    order: list[str] = field(default_factory=list)

    def edits(self) -> WizardState:
        """Deep copy of the editable parts, used as the escape snapshot."""
        return copy.deepcopy(self)


class SetupWizard:
    """Drives WizardState through the setup steps."""

    def __init__(
        self,
        config: DexterConfig,
        config_path: Path | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.config = config
        self.config_path = config_path
        self._client_factory = client_factory or create_client
        self.state = self._initial_state(config)
        self._snapshot: WizardState | None = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @staticmethod
    def _initial_state(config: DexterConfig) -> WizardState:
        state = WizardState()
        existing = {p.id: p for p in config.providers}
        for preset in PROVIDER_PRESETS.values():
            provider = existing.get(preset.id)
            state.providers.append(
                copy.deepcopy(provider) if provider else ProviderConfig.from_preset(preset)
            )
        for provider in config.providers:
            if provider.id not in PROVIDER_PRESETS:
                state.providers.append(copy.deepcopy(provider))

        for provider in state.providers:
            names = list(provider.preset.default_models) if provider.preset else []
            for model in config.models_for(provider.id):
                if model.name not in names:
                    names.append(model.name)
            state.available_models[provider.id] = names

        for provider, model in config.enabled_chain():
            key = model_key(provider.id, model.name)
            state.selected.add(key)
            state.order.append(key)

        if not any(p.enabled for p in state.providers):
            first = state.providers[0]
            first.enabled = True
            models = state.available_models.get(first.id) or []
            if models:
                state.selected.add(model_key(first.id, models[0]))
        SetupWizard._sync_order(state)
        return state

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def step(self) -> WizardStep:
        return self.state.step

    @property
    def is_open(self) -> bool:
        return self.state.step not in (WizardStep.SAVED, WizardStep.CLOSED)

    def _apply(self, action: WizardAction) -> WizardStep:
        current = self.state.step
        target = TRANSITIONS.get((current, action))
        if target is None:
            raise InvalidTransition(f"Cannot {action.value} from {current.value}")
        self.state.step = target
        logger.info(f"Wizard: {current.value} -> {target.value} ({action.value})")
        return target

    def _require(self, *steps: WizardStep) -> None:
        if self.state.step not in steps:
            raise InvalidTransition(
                f"Not available in step {self.state.step.value} "
                f"(expected {', '.join(s.value for s in steps)})"
            )

    def next(self) -> WizardStep:
        """Validate the current step and advance."""
        step = self.state.step
        if step is _PT:
            self._validate_providers()
            self._snapshot = self.state.edits()
        elif step is _PC:
            self._validate_credentials()
        elif step is _MT:
            self._sync_order(self.state)
            if not self.state.order:
                raise WizardError("Select at least one model for an enabled provider.")
        return self._apply(WizardAction.NEXT)

    def back(self) -> WizardStep:
        return self._apply(WizardAction.BACK)

    def escape(self) -> WizardStep:
        """Back to PROVIDERS_TOGGLE with edits since leaving it dropped."""
        if self.state.step is _PT or self._snapshot is None:
            return self._apply(WizardAction.ESCAPE)
        self._apply(WizardAction.ESCAPE)
        restored = self._snapshot.edits()
        restored.step = _PT
        self.state = restored
        return self.state.step

    # ------------------------------------------------------------------
    # PROVIDERS_TOGGLE
    # ------------------------------------------------------------------

    @property
    def providers(self) -> list[ProviderConfig]:
        return self.state.providers

    def get_provider(self, provider_id: str) -> ProviderConfig:
        for provider in self.state.providers:
            if provider.id == provider_id:
                return provider
        raise KeyError(provider_id)

    def toggle_provider(self, provider_id: str) -> bool:
        """Flip a provider on or off. Enabling one with no models selects its first."""
        self._require(_PT)
        provider = self.get_provider(provider_id)
        provider.enabled = not provider.enabled
        if provider.enabled:
            available = self.state.available_models.get(provider_id) or []
            if available and not any(k.startswith(f"{provider_id}::") for k in self.state.selected):
                self.state.selected.add(model_key(provider_id, available[0]))
        self._sync_order(self.state)
        return provider.enabled

    def add_provider(self, provider: ProviderConfig) -> None:
        """Register a custom (non-preset) provider."""
        self._require(_PT)
        if any(p.id == provider.id for p in self.state.providers):
            raise WizardError(f"Provider '{provider.id}' already exists.")
        self.state.providers.append(provider)
        self.state.available_models.setdefault(provider.id, [])

    def enabled_providers(self) -> list[ProviderConfig]:
        return [p for p in self.state.providers if p.enabled]

    def _validate_providers(self) -> None:
        if not self.enabled_providers():
            raise WizardError("Please enable at least one provider.")

    # ------------------------------------------------------------------
    # PROVIDER_CONFIG
    # ------------------------------------------------------------------

    def set_credential(self, provider_id: str, api_key: str) -> None:
        self._require(_PC)
        self.get_provider(provider_id).api_key = api_key.strip()

    def set_base_url(self, provider_id: str, base_url: str) -> None:
        self._require(_PC)
        self.get_provider(provider_id).base_url = base_url.strip()

    def _validate_credentials(self) -> None:
        missing = []
        for provider in self.enabled_providers():
            if not provider.effective_base_url():
                missing.append(f"{provider.display_name} (base URL)")
            elif provider.requires_credential() and not provider.resolve_api_key():
                missing.append(f"{provider.display_name} (API key)")
        if missing:
            raise WizardError(f"Missing settings for: {', '.join(missing)}")

    async def discover_models(self, provider_id: str) -> list[str]:
        """Ask the provider for its model list; fall back to preset defaults."""
        self._require(_PC, _MT)
        provider = self.get_provider(provider_id)
        try:
            discovered = await self._client_factory(provider).list_models()
        except ModelCallError as e:
            logger.warning(f"Model discovery failed for {provider_id}: {e}")
            discovered = []
        if not discovered and provider.preset:
            discovered = list(provider.preset.default_models)

        available = self.state.available_models.setdefault(provider_id, [])
        for name in discovered:
            if name not in available:
                available.append(name)
        return list(available)

    # ------------------------------------------------------------------
    # MODELS_TOGGLE
    # ------------------------------------------------------------------

    def visible_models(self) -> list[tuple[str, str]]:
        """(provider_id, model) pairs for every enabled provider."""
        return [
            (provider.id, name)
            for provider in self.enabled_providers()
            for name in self.state.available_models.get(provider.id, [])
        ]

    def is_selected(self, provider_id: str, name: str) -> bool:
        return model_key(provider_id, name) in self.state.selected

    def toggle_model(self, provider_id: str, name: str) -> bool:
        self._require(_MT)
        if (provider_id, name) not in self.visible_models():
            raise WizardError(f"Unknown model {provider_id}/{name}")
        key = model_key(provider_id, name)
        if key in self.state.selected:
            self.state.selected.discard(key)
        else:
            self.state.selected.add(key)
        self._sync_order(self.state)
        return key in self.state.selected

    def add_model(self, provider_id: str, name: str) -> None:
        """Make a model visible and select it (for names discovery did not list)."""
        self._require(_MT)
        name = name.strip()
        if not name:
            raise WizardError("Model name is empty.")
        available = self.state.available_models.setdefault(provider_id, [])
        if name not in available:
            available.append(name)
        self.state.selected.add(model_key(provider_id, name))
        self._sync_order(self.state)

    def select_all(self) -> None:
        """Select every visible model, or clear them all if all are already selected."""
        self._require(_MT)
        keys = {model_key(p, n) for p, n in self.visible_models()}
        if keys and keys <= self.state.selected:
            self.state.selected -= keys
        else:
            self.state.selected |= keys
        self._sync_order(self.state)

    @staticmethod
    def _sync_order(state: WizardState) -> None:
        """Keep existing order for still-valid models; append new ones."""
        enabled = {p.id for p in state.providers if p.enabled}
        valid = [
            model_key(provider_id, name)
            for provider_id in [p.id for p in state.providers if p.id in enabled]
            for name in state.available_models.get(provider_id, [])
            if model_key(provider_id, name) in state.selected
        ]
        valid_set = set(valid)
        merged = [key for key in state.order if key in valid_set]
        merged.extend(key for key in valid if key not in merged)
        state.order = merged

    # ------------------------------------------------------------------
    # MODELS_CONFIRM_FALLBACK
    # ------------------------------------------------------------------

    def fallback_order(self) -> list[ModelEntry]:
        """Selected models with contiguous ranks 1..n."""
        entries = []
        for rank, key in enumerate(self.state.order, start=1):
            provider_id, name = key.split("::", 1)
            entries.append(ModelEntry(provider_id, name, enabled=True, rank=rank))
        return entries

    def move_model(self, key: str, position: int) -> list[ModelEntry]:
        """Move a model to `position` (0-based) in the fallback order."""
        self._require(_MCF)
        order = self.state.order
        if key not in order:
            raise WizardError(f"{key} is not in the fallback order.")
        position = max(0, min(position, len(order) - 1))
        order.remove(key)
        order.insert(position, key)
        return self.fallback_order()

    def move_up(self, key: str) -> list[ModelEntry]:
        self._require(_MCF)
        return self.move_model(key, self.state.order.index(key) - 1)

    def move_down(self, key: str) -> list[ModelEntry]:
        self._require(_MCF)
        return self.move_model(key, self.state.order.index(key) + 1)

    def build_config(self) -> DexterConfig:
        """The configuration Save would write."""
        config = DexterConfig(preferences=copy.deepcopy(self.config.preferences))
        previous_ids = {p.id for p in self.config.providers}
        for provider in self.state.providers:
            if provider.enabled or provider.id in previous_ids or provider.api_key or provider.base_url:
                config.providers.append(copy.deepcopy(provider))
        saved_ids = {p.id for p in config.providers}

        ranks = {key: rank for rank, key in enumerate(self.state.order, start=1)}
        for provider_id, names in self.state.available_models.items():
            if provider_id not in saved_ids:
                continue
            for name in names:
                key = model_key(provider_id, name)
                if key in ranks:
                    config.models.append(ModelEntry(provider_id, name, True, ranks[key]))
                elif any(m.name == name for m in self.config.models_for(provider_id)):
                    config.models.append(ModelEntry(provider_id, name, False, 0))
        config.normalize_ranks()
        return config

    def save(self) -> DexterConfig:
        """Write the configuration atomically.

        On ConfigPersistFailed the wizard stays on MODELS_CONFIRM_FALLBACK
        and the previous file remains authoritative.
        """
        self._require(_MCF)
        new_config = self.build_config()
        try:
            new_config.save(self.config_path)
        except ConfigPersistFailed:
            logger.error("Saving configuration failed; previous configuration kept")
            raise
        self._apply(WizardAction.SAVE)
        self.config = new_config
        return new_config
