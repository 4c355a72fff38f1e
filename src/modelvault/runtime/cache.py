import asyncio
from dataclasses import dataclass, field

from loguru import logger

from modelvault.shared.errors import ModelVaultError
from modelvault.shared.types.events import Event, ModelStatusChanged
from modelvault.shared.types.models import (
    LoadedModel,
    ModelFailed,
    ModelId,
    ModelLoaded,
    ModelLoading,
    ModelNotLoaded,
    ModelStatus,
)
from modelvault.utils.channels import Sender


@dataclass
class CacheEntry:
    status: ModelStatus = field(default_factory=ModelNotLoaded)
    handle: LoadedModel | None = None
    in_flight: "asyncio.Task[LoadedModel] | None" = None
    generation: int = 0


class ModelCache:
    """
    Per-model lifecycle state: NotLoaded -> Loading -> Loaded | Failed.

    Only touched from the event loop, and no method awaits, so every
    check-and-set below is atomic with respect to other coroutines.
    """

    def __init__(self, event_sender: Sender[Event] | None = None):
        self.event_sender = event_sender
        self._entries: dict[ModelId, CacheEntry] = {
            model_id: CacheEntry() for model_id in ModelId
        }

    def entry(self, model_id: ModelId) -> CacheEntry:
        return self._entries[model_id]

    def status(self, model_id: ModelId) -> ModelStatus:
        return self._entries[model_id].status

    def handle(self, model_id: ModelId) -> LoadedModel | None:
        return self._entries[model_id].handle

    def is_available(self, model_id: ModelId) -> bool:
        return isinstance(self._entries[model_id].status, ModelLoaded)

    def begin_load(self, model_id: ModelId, task: "asyncio.Task[LoadedModel]") -> int:
        entry = self._entries[model_id]
        assert entry.in_flight is None, f"{model_id} is already loading"
        entry.in_flight = task
        self._transition(model_id, ModelLoading())
        return entry.generation

    def commit_load(self, model_id: ModelId, handle: LoadedModel, generation: int) -> bool:
        """Returns False when the load was overtaken by an invalidation."""
        entry = self._entries[model_id]
        if generation != entry.generation:
            logger.info(f"Discarding stale load of {model_id}")
            return False
        entry.in_flight = None
        entry.handle = handle
        self._transition(model_id, ModelLoaded(signature=handle.signature))
        return True

    def fail(self, model_id: ModelId, error: ModelVaultError, generation: int) -> None:
        entry = self._entries[model_id]
        if generation != entry.generation:
            return
        entry.in_flight = None
        entry.handle = None
        self._transition(
            model_id,
            ModelFailed(error_type=error.error_type, error_message=error.message),
        )

    def invalidate(self, model_id: ModelId) -> None:
        """
        Drop the handle so the next load reads the artifact again. A load
        already in flight is detached and its result is never committed.
        """
        entry = self._entries[model_id]
        entry.generation += 1
        entry.handle = None
        entry.in_flight = None
        if not isinstance(entry.status, ModelNotLoaded):
            self._transition(model_id, ModelNotLoaded())

    def _transition(self, model_id: ModelId, status: ModelStatus) -> None:
        entry = self._entries[model_id]
        previous = entry.status
        entry.status = status
        logger.debug(f"{model_id}: {type(previous).__name__} -> {type(status).__name__}")
        if self.event_sender is not None:
            self.event_sender.publish(
                ModelStatusChanged(
                    model_id=model_id,
                    status=status,
                    available=isinstance(status, ModelLoaded),
                )
            )
