import re
from enum import Enum
from pathlib import Path
from typing import Any, Self

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema

from modelvault.shared.constants import ARTIFACT_SUFFIX
from modelvault.utils.pydantic_ext import TaggedModel


class ModelId(str, Enum):
    """The fixed set of models the application ships with."""

    IntentClassifier = "intent-classifier"
    TextGenerator = "text-generator"
    SentimentAnalyzer = "sentiment-analyzer"

    @property
    def artifact_filename(self) -> str:
        return f"{self.value}{ARTIFACT_SUFFIX}"

    @classmethod
    def from_filename(cls, filename: str) -> "ModelId | None":
        if not filename.endswith(ARTIFACT_SUFFIX):
            return None
        try:
            return cls(filename.removesuffix(ARTIFACT_SUFFIX))
        except ValueError:
            return None

    def __str__(self) -> str:
        return self.value


_HEX_SHA256 = re.compile(r"^[0-9a-f]{64}$")


class ModelSignature(str):
    """Lowercase hex SHA-256 digest of an artifact's bytes."""

    def __new__(cls, value: str) -> Self:
        normalized = value.strip().lower()
        if not _HEX_SHA256.match(normalized):
            raise ValueError(f"Not a sha256 hex digest: {value!r}")
        return super().__new__(cls, normalized)

    @classmethod
    def __get_pydantic_core_schema__(
        cls, _source: type, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_after_validator_function(
            cls, core_schema.str_schema()
        )

    @property
    def short(self) -> str:
        return self[:12]


class BaseModelStatus(TaggedModel):
    pass


class ModelNotLoaded(BaseModelStatus):
    pass


class ModelLoading(BaseModelStatus):
    pass


class ModelLoaded(BaseModelStatus):
    signature: ModelSignature


class ModelFailed(BaseModelStatus):
    error_type: str
    error_message: str


ModelStatus = ModelNotLoaded | ModelLoading | ModelLoaded | ModelFailed


class LoadedModel:
    """
    Handle to a model an engine has parsed into memory. Only `ModelCache`
    retains these between calls.
    """

    __slots__ = ("model_id", "path", "signature", "runtime")

    def __init__(
        self, model_id: ModelId, path: Path, signature: ModelSignature, runtime: Any
    ):
        self.model_id = model_id
        self.path = path
        self.signature = signature
        self.runtime = runtime

    def __repr__(self) -> str:
        return f"LoadedModel({self.model_id}, {self.signature.short})"
