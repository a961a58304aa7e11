"""Static model table: public model ids to upstream backend ids."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger("messages-bridge")

DEFAULT_CONTEXT_WINDOW = 200000


@dataclass(frozen=True)
class ModelEntry:
    """One advertised model and the backend id it is served by."""

    model_id: str
    backend_model: str
    context_window: int = DEFAULT_CONTEXT_WINDOW


@dataclass(frozen=True)
class ResolvedModel:
    """Result of resolving a requested model id.

    ``backend_model`` is what the upstream is asked for, ``provider_model``
    is the public id echoed back to the client.
    """

    backend_model: str
    provider_model: str


@dataclass(frozen=True)
class ModelTable:
    """Immutable model lookup table.

    Unknown or missing model ids resolve to the default model rather than
    failing, so clients that send a newer model id keep working.
    """

    entries: tuple[ModelEntry, ...]
    default_model: str

    def __post_init__(self) -> None:
        if not self.entries:
            raise ConfigurationError("model table must contain at least one model")
        seen: set[str] = set()
        for entry in self.entries:
            if entry.model_id in seen:
                raise ConfigurationError(f"duplicate model id '{entry.model_id}'")
            seen.add(entry.model_id)
        if self.default_model not in seen:
            raise ConfigurationError(
                f"default model '{self.default_model}' is not in the model table"
            )

    def __contains__(self, model_id: object) -> bool:
        return isinstance(model_id, str) and self.get(model_id) is not None

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ModelEntry]:
        return iter(self.entries)

    def get(self, model_id: Optional[str]) -> Optional[ModelEntry]:
        for entry in self.entries:
            if entry.model_id == model_id:
                return entry
        return None

    def model_ids(self) -> list[str]:
        return [entry.model_id for entry in self.entries]

    def resolve(self, requested: Optional[str]) -> ResolvedModel:
        model_id = requested or self.default_model
        entry = self.get(model_id)
        if entry is None:
            logger.debug(
                f"Unknown model '{model_id}', using default '{self.default_model}'"
            )
            default_entry = self.get(self.default_model)
            if default_entry is None:
                raise ConfigurationError(
                    f"default model '{self.default_model}' is not in the model table"
                )
            return ResolvedModel(default_entry.backend_model, self.default_model)
        return ResolvedModel(entry.backend_model, entry.model_id)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ModelTable":
        """Build a table from the ``model_list`` section of the config.

        Falls back to the built-in table when no ``model_list`` is configured.
        """
        proxy_settings = config.get("proxy_settings") or {}
        raw_list = config.get("model_list")
        if not raw_list:
            default_model = proxy_settings.get("default_model")
            if default_model:
                return cls(DEFAULT_MODEL_TABLE.entries, str(default_model))
            return DEFAULT_MODEL_TABLE
        if not isinstance(raw_list, list):
            raise ConfigurationError("model_list must be a list")

        entries: list[ModelEntry] = []
        for raw in raw_list:
            if not isinstance(raw, Mapping):
                raise ConfigurationError("model_list entries must be mappings")
            name = raw.get("model_name")
            if not isinstance(name, str) or not name:
                raise ConfigurationError("model_list entry is missing model_name")
            params = raw.get("model_params") or {}
            backend_model = params.get("backend_model")
            if not isinstance(backend_model, str) or not backend_model:
                raise ConfigurationError(f"model '{name}' is missing model_params.backend_model")
            try:
                context_window = int(params.get("context_window", DEFAULT_CONTEXT_WINDOW))
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"model '{name}' has an invalid context_window") from exc
            entries.append(ModelEntry(name, backend_model, context_window))

        default_model = proxy_settings.get("default_model") or entries[0].model_id
        return cls(tuple(entries), str(default_model))


DEFAULT_MODEL_TABLE = ModelTable(
    entries=(
        ModelEntry("claude-opus-4-6", "duo-chat-opus-4-6"),
        ModelEntry("claude-opus-4-5-20251101", "duo-chat-opus-4-5"),
        ModelEntry("claude-sonnet-4-5-20250929", "duo-chat-sonnet-4-5"),
        ModelEntry("claude-haiku-4-5-20251001", "duo-chat-haiku-4-5"),
    ),
    default_model="claude-sonnet-4-5-20250929",
)
