import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from modelvault.shared.types.feedback import FeedbackEntry
from modelvault.shared.types.models import ModelId


class InferenceEngine(ABC):
    """
    Opaque capability that turns artifact bytes into a runnable model.

    Implementations keep CPU-bound work on `self.executor` so the event loop
    stays free for lifecycle bookkeeping.
    """

    def __init__(self, executor: ThreadPoolExecutor | None = None):
        self.executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="modelvault-inference"
        )

    async def run[R](self, fn: Callable[..., R], *args: Any) -> R:
        return await asyncio.get_running_loop().run_in_executor(
            self.executor, fn, *args
        )

    @abstractmethod
    async def load_checkpoint(self, model_id: ModelId, data: bytes) -> Any:
        """Parse verified artifact bytes. Raises on malformed input."""

    @abstractmethod
    async def infer(self, model: Any, features: dict[str, str]) -> dict[str, str]:
        pass

    @abstractmethod
    async def train(self, model: Any, entries: Sequence[FeedbackEntry]) -> bytes:
        """Return the bytes of a new artifact incorporating `entries`."""


def get_inference_engine(
    inference_engine_name: str, executor: ThreadPoolExecutor | None = None
) -> InferenceEngine:
    if inference_engine_name == "retrieval":
        from modelvault.engine.retrieval_inference_engine import (
            RetrievalInferenceEngine,
        )

        return RetrievalInferenceEngine(executor)
    elif inference_engine_name == "dummy":
        from modelvault.engine.dummy_inference_engine import DummyInferenceEngine

        return DummyInferenceEngine(executor)
    raise ValueError(f"Unsupported inference engine: {inference_engine_name}")
