from collections.abc import Sequence
from dataclasses import dataclass

from modelvault.engine.inference_engine import InferenceEngine
from modelvault.shared.types.feedback import FeedbackEntry
from modelvault.shared.types.models import ModelId

DUMMY_MAGIC = b"MODELVAULT-DUMMY\n"


@dataclass(frozen=True)
class DummyModel:
    model_id: ModelId
    lines: tuple[str, ...]


def make_dummy_artifact(*lines: str) -> bytes:
    return DUMMY_MAGIC + "".join(f"{line}\n" for line in lines).encode()


def _load(model_id: ModelId, data: bytes) -> DummyModel:
    if not data.startswith(DUMMY_MAGIC):
        raise ValueError("missing dummy artifact header")
    body = data[len(DUMMY_MAGIC) :].decode()
    return DummyModel(model_id=model_id, lines=tuple(body.splitlines()))


class DummyInferenceEngine(InferenceEngine):
    """Deterministic engine: echoes its input and appends feedback as text lines."""

    async def load_checkpoint(self, model_id: ModelId, data: bytes) -> DummyModel:
        return await self.run(_load, model_id, data)

    async def infer(self, model: DummyModel, features: dict[str, str]) -> dict[str, str]:
        return {
            "response": f"echo {features.get('user_input', '')}",
            "revision": str(len(model.lines)),
        }

    async def train(self, model: DummyModel, entries: Sequence[FeedbackEntry]) -> bytes:
        learned = [f"{e.input_text}\t{e.expected_output}" for e in entries]
        return make_dummy_artifact(*model.lines, *learned)
