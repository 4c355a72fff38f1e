from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

import anyio
from anyio.abc import TaskGroup
from loguru import logger

from modelvault.acquisition.coordinator import AcquisitionCoordinator
from modelvault.acquisition.fetcher import Fetcher, HttpFetcher, OfflineFetcher
from modelvault.engine.inference_engine import InferenceEngine, get_inference_engine
from modelvault.runtime.cache import ModelCache
from modelvault.runtime.feedback import FeedbackCollector
from modelvault.runtime.loader import ModelLoader
from modelvault.runtime.predictor import Predictor
from modelvault.shared.constants import (
    MODELVAULT_BUNDLE_DIR,
    MODELVAULT_FEEDBACK_FILE,
    MODELVAULT_MODELS_DIR,
)
from modelvault.shared.errors import ModelVaultError, NotFoundError
from modelvault.shared.types.events import Event
from modelvault.shared.types.feedback import ConversationContext
from modelvault.shared.types.models import ModelId, ModelStatus
from modelvault.shared.types.settings import ModelVaultSettings
from modelvault.store.integrity import IntegrityVerifier
from modelvault.store.model_store import ModelStore
from modelvault.utils.channels import Sender
from modelvault.utils.keyed_backoff import KeyedBackoff


def _make_fetcher(settings: ModelVaultSettings) -> Fetcher:
    acquisition = settings.acquisition
    if acquisition.offline or acquisition.base_url is None:
        return OfflineFetcher()
    return HttpFetcher(acquisition.base_url, n_attempts=acquisition.retry_attempts)


@dataclass
class ModelService:
    """
    Composition root and inbound surface for the UI layer. Every component is
    built once in `create` and shared by reference.
    """

    settings: ModelVaultSettings
    store: ModelStore
    integrity: IntegrityVerifier
    cache: ModelCache
    loader: ModelLoader
    predictor: Predictor
    feedback: FeedbackCollector
    acquisition: AcquisitionCoordinator
    engine: InferenceEngine
    _tg: TaskGroup = field(init=False, default_factory=anyio.create_task_group)

    @classmethod
    def create(
        cls,
        settings: ModelVaultSettings | None = None,
        *,
        models_dir: Path = MODELVAULT_MODELS_DIR,
        bundle_dir: Path | None = MODELVAULT_BUNDLE_DIR,
        feedback_file: Path = MODELVAULT_FEEDBACK_FILE,
        engine: InferenceEngine | None = None,
        fetcher: Fetcher | None = None,
        event_sender: Sender[Event] | None = None,
    ) -> Self:
        settings = settings or ModelVaultSettings()
        store = ModelStore(models_dir=models_dir, bundle_dir=bundle_dir)
        integrity = IntegrityVerifier(
            store,
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="modelvault-hash"),
            approved_signatures=settings.integrity.approved_signatures,
            event_sender=event_sender,
        )
        if engine is None:
            engine = get_inference_engine(
                settings.engine,
                ThreadPoolExecutor(
                    max_workers=settings.prediction.inference_workers,
                    thread_name_prefix="modelvault-inference",
                ),
            )
        acquisition = AcquisitionCoordinator(
            store,
            fetcher or _make_fetcher(settings),
            event_sender=event_sender,
            backoff=KeyedBackoff[ModelId](
                base=settings.acquisition.backoff_base_secs,
                cap=settings.acquisition.backoff_cap_secs,
            ),
        )
        cache = ModelCache(event_sender)
        loader = ModelLoader(store, integrity, cache, engine, acquisition)
        return cls(
            settings=settings,
            store=store,
            integrity=integrity,
            cache=cache,
            loader=loader,
            predictor=Predictor(
                loader,
                engine,
                max_context_tokens=settings.prediction.max_context_tokens,
                history_limit=settings.prediction.history_limit,
            ),
            feedback=FeedbackCollector(
                settings.feedback.target_model,
                loader,
                engine,
                integrity,
                update_threshold=settings.feedback.update_threshold,
                feedback_file=feedback_file,
                event_sender=event_sender,
            ),
            acquisition=acquisition,
            engine=engine,
        )

    async def start(self) -> None:
        await self.integrity.prime()
        await self.feedback.restore()

    async def run(self) -> None:
        logger.info(
            f"Starting ModelService{' (offline mode)' if self.acquisition.offline else ''}"
        )
        await self.start()
        try:
            async with self._tg as tg:
                tg.start_soon(self.integrity.run, self.settings.integrity.sweep_interval_secs)
                tg.start_soon(self.feedback.run, self.settings.feedback.update_interval_secs)
                tg.start_soon(self.preload_essential_models)
        finally:
            with anyio.CancelScope(shield=True):
                await self.feedback.persist()
            logger.info("ModelService stopped")

    def shutdown(self) -> None:
        self._tg.cancel_scope.cancel()

    def close(self) -> None:
        self.engine.executor.shutdown(wait=False, cancel_futures=True)
        self.integrity.executor.shutdown(wait=False, cancel_futures=True)

    async def request_prediction(
        self,
        model_id: ModelId,
        raw_text: str,
        context: ConversationContext | None = None,
        intent: str | None = None,
    ) -> str:
        return await self.predictor.predict(model_id, raw_text, context, intent)

    def submit_feedback(self, raw_input: str, raw_response: str, was_helpful: bool) -> None:
        if not was_helpful:
            return
        self.feedback.record_feedback(raw_input, raw_response)

    def model_status(self, model_id: ModelId) -> ModelStatus:
        return self.cache.status(model_id)

    def is_available(self, model_id: ModelId) -> bool:
        return self.cache.is_available(model_id)

    def is_on_device_intelligence_available(self) -> bool:
        return self.is_available(ModelId.IntentClassifier) and self.is_available(
            ModelId.TextGenerator
        )

    def status_message(self) -> str:
        loaded = [str(m) for m in ModelId if self.is_available(m)]
        if not loaded:
            return "On-device intelligence unavailable"
        return f"Loaded models: {', '.join(loaded)}"

    async def force_integrity_check(self) -> dict[ModelId, bool]:
        results = await self.integrity.sweep()
        for model_id, trusted in results.items():
            if not trusted:
                self.loader.invalidate(model_id)
        return results

    async def preload_essential_models(self) -> None:
        for model_id in self.settings.essential_models:
            try:
                await self.loader.load_model(model_id)
            except NotFoundError:
                logger.warning(f"{model_id} missing, scheduling acquisition")
                await self.acquisition.download_if_needed(model_id)
            except ModelVaultError as e:
                logger.error(f"Could not preload {model_id}: {e}")

    async def on_background(self) -> None:
        await self.feedback.persist()

    async def on_foreground(self) -> None:
        await self.acquisition.download_missing()
        await self.preload_essential_models()
