import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np
from pydantic import Field

from modelvault.engine.inference_engine import InferenceEngine
from modelvault.shared.types.feedback import FeedbackEntry
from modelvault.shared.types.models import ModelId
from modelvault.utils.pydantic_ext import CamelCaseModel

_TOKEN = re.compile(r"[a-z0-9']+")


def tokenize(text: str) -> list[str]:
    return _TOKEN.findall(text.lower())


class RetrievalExample(CamelCaseModel):
    prompt: str
    response: str


class RetrievalArtifact(CamelCaseModel):
    """On-disk format: a JSON document of prompt/response pairs."""

    format: Literal["modelvault-retrieval"] = "modelvault-retrieval"
    version: Literal[1] = 1
    default_response: str
    min_similarity: float = Field(default=0.15, ge=0.0, le=1.0)
    examples: list[RetrievalExample] = Field(default_factory=list)


@dataclass(frozen=True)
class RetrievalModel:
    model_id: ModelId
    artifact: RetrievalArtifact
    vocabulary: dict[str, int]
    idf: np.ndarray
    # one L2-normalised tf-idf row per example
    matrix: np.ndarray


def _normalize(m: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(m, axis=-1, keepdims=True)
    return np.divide(m, norms, out=np.zeros_like(m), where=norms > 0)


def build_model(model_id: ModelId, artifact: RetrievalArtifact) -> RetrievalModel:
    docs = [tokenize(example.prompt) for example in artifact.examples]
    vocabulary: dict[str, int] = {}
    for doc in docs:
        for token in doc:
            vocabulary.setdefault(token, len(vocabulary))

    counts = np.zeros((len(docs), len(vocabulary)), dtype=np.float32)
    for row, doc in enumerate(docs):
        for token in doc:
            counts[row, vocabulary[token]] += 1.0

    doc_freq = np.count_nonzero(counts, axis=0)
    idf = (np.log((1.0 + len(docs)) / (1.0 + doc_freq)) + 1.0).astype(np.float32)
    return RetrievalModel(
        model_id=model_id,
        artifact=artifact,
        vocabulary=vocabulary,
        idf=idf,
        matrix=_normalize(counts * idf),
    )


def _vectorize(model: RetrievalModel, text: str) -> np.ndarray:
    vec = np.zeros(len(model.vocabulary), dtype=np.float32)
    for token in tokenize(text):
        idx = model.vocabulary.get(token)
        if idx is not None:
            vec[idx] += 1.0
    return _normalize(vec * model.idf)


def nearest_response(model: RetrievalModel, text: str) -> tuple[str, float]:
    if len(model.artifact.examples) == 0 or len(model.vocabulary) == 0:
        return model.artifact.default_response, 0.0
    scores = model.matrix @ _vectorize(model, text)
    best = int(np.argmax(scores))
    score = float(scores[best])
    if score < model.artifact.min_similarity:
        return model.artifact.default_response, score
    return model.artifact.examples[best].response, score


def _load(model_id: ModelId, data: bytes) -> RetrievalModel:
    artifact = RetrievalArtifact.model_validate_json(data)
    return build_model(model_id, artifact)


def _train(model: RetrievalModel, entries: Sequence[FeedbackEntry]) -> bytes:
    examples = {e.prompt: e.response for e in model.artifact.examples}
    for entry in entries:
        # latest feedback for an identical prompt wins
        examples.pop(entry.input_text, None)
        examples[entry.input_text] = entry.expected_output
    artifact = model.artifact.model_copy(
        update={
            "examples": [
                RetrievalExample(prompt=prompt, response=response)
                for prompt, response in examples.items()
            ]
        }
    )
    return artifact.model_dump_json(by_alias=True, indent=2).encode()


class RetrievalInferenceEngine(InferenceEngine):
    """
    Nearest-neighbour responder over tf-idf vectors of the stored prompts.
    Training appends the feedback pairs and re-serialises the artifact.
    """

    async def load_checkpoint(self, model_id: ModelId, data: bytes) -> RetrievalModel:
        return await self.run(_load, model_id, data)

    async def infer(
        self, model: RetrievalModel, features: dict[str, str]
    ) -> dict[str, str]:
        response, score = await self.run(
            nearest_response, model, features.get("user_input", "")
        )
        return {"response": response, "confidence": f"{score:.4f}"}

    async def train(
        self, model: RetrievalModel, entries: Sequence[FeedbackEntry]
    ) -> bytes:
        return await self.run(_train, model, entries)
