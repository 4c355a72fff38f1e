import asyncio
from pathlib import Path

from loguru import logger

from modelvault.acquisition.coordinator import AcquisitionCoordinator
from modelvault.engine.inference_engine import InferenceEngine
from modelvault.runtime.cache import ModelCache
from modelvault.shared.errors import (
    IntegrityError,
    LoadTimeoutError,
    ModelVaultError,
    NotFoundError,
    ParseError,
)
from modelvault.shared.types.models import LoadedModel, ModelId
from modelvault.store.integrity import IntegrityVerifier
from modelvault.store.model_store import ModelStore


class ModelLoader:
    """
    Single entry point for obtaining a `LoadedModel`.

    At most one load per model runs at a time: callers arriving while a load
    is in flight await the same task and observe the same outcome.
    """

    def __init__(
        self,
        store: ModelStore,
        integrity: IntegrityVerifier,
        cache: ModelCache,
        engine: InferenceEngine,
        acquisition: AcquisitionCoordinator | None = None,
    ):
        self.store = store
        self.integrity = integrity
        self.cache = cache
        self.engine = engine
        self.acquisition = acquisition

    async def load_model(
        self, model_id: ModelId, timeout: float | None = None
    ) -> LoadedModel:
        entry = self.cache.entry(model_id)
        if entry.handle is not None and self.cache.is_available(model_id):
            logger.debug(f"Cache hit for {model_id}")
            return entry.handle

        task = entry.in_flight
        if task is None:
            task = asyncio.create_task(
                self._load_and_commit(model_id, entry.generation),
                name=f"load-{model_id}",
            )
            self.cache.begin_load(model_id, task)

        try:
            # shielded: a caller giving up never cancels the shared load
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except TimeoutError:
            raise LoadTimeoutError(
                f"not loaded within {timeout}s", model_id
            ) from None

    def invalidate(self, model_id: ModelId) -> None:
        self.cache.invalidate(model_id)

    async def _load_and_commit(self, model_id: ModelId, generation: int) -> LoadedModel:
        try:
            handle = await self._load(model_id)
        except ModelVaultError as e:
            logger.error(f"Failed to load {model_id}: {e}")
            self.cache.fail(model_id, e, generation)
            raise
        except asyncio.CancelledError:
            if generation == self.cache.entry(model_id).generation:
                self.cache.invalidate(model_id)
            raise
        self.cache.commit_load(model_id, handle, generation)
        return handle

    async def _load(self, model_id: ModelId) -> LoadedModel:
        path = await self._ensure_present(model_id)

        try:
            verified = await self.integrity.read_verified(model_id)
        except OSError as e:
            raise IntegrityError(f"could not restore artifact: {e}", model_id) from e
        if verified is None:
            raise IntegrityError(
                "artifact failed verification and could not be restored", model_id
            )
        data, signature = verified

        try:
            runtime = await self.engine.load_checkpoint(model_id, data)
        except Exception as e:
            raise ParseError(f"engine rejected artifact: {e}", model_id) from e

        logger.info(f"Loaded {model_id} ({signature.short})")
        return LoadedModel(model_id, path, signature, runtime)

    async def _ensure_present(self, model_id: ModelId) -> Path:
        """Installed artifact path, installing from the bundle or acquiring it first."""
        path = self.store.installed_path(model_id)
        for attempt in range(2):
            if await self.store.exists(path):
                return path
            if self.store.bundled_path(model_id) is not None:
                try:
                    return await self.store.install_from_bundle(model_id)
                except OSError as e:
                    raise NotFoundError(
                        f"could not install bundled artifact: {e}", model_id
                    ) from e
            if attempt == 0 and self.acquisition is not None:
                await self.acquisition.acquire(model_id)
        raise NotFoundError("no installed, bundled or downloadable artifact", model_id)
