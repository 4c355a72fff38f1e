import asyncio
from pathlib import Path

from loguru import logger

from modelvault.acquisition.fetcher import Fetcher, OfflineFetcher
from modelvault.shared.errors import ModelVaultError
from modelvault.shared.types.events import (
    AcquisitionFinished,
    AcquisitionStarted,
    Event,
)
from modelvault.shared.types.models import ModelId
from modelvault.store.model_store import ModelStore
from modelvault.utils.channels import Sender
from modelvault.utils.keyed_backoff import KeyedBackoff


class AcquisitionCoordinator:
    """
    Brings missing artifacts onto the device. Fetched bytes are installed as-is
    and still go through integrity enforcement when loaded.
    """

    def __init__(
        self,
        store: ModelStore,
        fetcher: Fetcher | None = None,
        event_sender: Sender[Event] | None = None,
        backoff: KeyedBackoff[ModelId] | None = None,
    ):
        self.store = store
        self.fetcher = fetcher or OfflineFetcher()
        self.event_sender = event_sender
        self.backoff = backoff or KeyedBackoff[ModelId](base=0.5, cap=300.0)
        self.active_acquisitions: dict[ModelId, asyncio.Task[Path | None]] = {}

    @property
    def offline(self) -> bool:
        return isinstance(self.fetcher, OfflineFetcher)

    async def acquire(self, model_id: ModelId) -> Path | None:
        """Fetch and install `model_id`. Concurrent callers share one fetch."""
        task = self.active_acquisitions.get(model_id)
        if task is None:
            task = asyncio.create_task(
                self._acquire(model_id), name=f"acquire-{model_id}"
            )
            self.active_acquisitions[model_id] = task
            task.add_done_callback(
                lambda _: self.active_acquisitions.pop(model_id, None)
            )
        return await asyncio.shield(task)

    async def _acquire(self, model_id: ModelId) -> Path | None:
        logger.info(f"Acquiring {model_id}")
        self._publish(AcquisitionStarted(model_id=model_id))
        self.backoff.record_attempt(model_id)
        try:
            data = await self.fetcher.fetch(model_id)
            path = await self.store.install_artifact(model_id, data)
        except (ModelVaultError, OSError) as e:
            logger.warning(f"Could not acquire {model_id}: {e}")
            self._publish(
                AcquisitionFinished(model_id=model_id, success=False, error_message=str(e))
            )
            return None
        self.backoff.reset(model_id)
        self._publish(AcquisitionFinished(model_id=model_id, success=True))
        return path

    async def download_if_needed(self, model_id: ModelId) -> Path | None:
        """Acquire `model_id` unless an artifact is already installed or bundled."""
        installed = self.store.installed_path(model_id)
        if await self.store.exists(installed):
            return installed
        if self.store.bundled_path(model_id) is not None:
            return await self.store.install_from_bundle(model_id)
        if model_id not in self.active_acquisitions and not self.backoff.should_proceed(
            model_id
        ):
            logger.debug(
                f"Skipping acquisition of {model_id}, retry in {self.backoff.remaining(model_id):.0f}s"
            )
            return None
        return await self.acquire(model_id)

    async def download_missing(self) -> dict[ModelId, bool]:
        results: dict[ModelId, bool] = {}
        for model_id in ModelId:
            results[model_id] = await self.download_if_needed(model_id) is not None
        return results

    def _publish(self, event: Event) -> None:
        if self.event_sender is not None:
            self.event_sender.publish(event)
