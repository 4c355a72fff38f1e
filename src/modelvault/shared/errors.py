from typing import ClassVar

from modelvault.shared.types.models import ModelId


class ModelVaultError(Exception):
    """Base class for every failure surfaced by the model lifecycle."""

    error_type: ClassVar[str] = "ModelVaultError"

    def __init__(self, message: str, model_id: ModelId | None = None):
        super().__init__(message)
        self.message = message
        self.model_id = model_id

    def __str__(self) -> str:
        if self.model_id is None:
            return self.message
        return f"{self.model_id}: {self.message}"


class NotFoundError(ModelVaultError):
    """The artifact is absent and could not be obtained."""

    error_type = "NotFound"


class IntegrityError(ModelVaultError):
    """Signature mismatch that restoration did not resolve."""

    error_type = "IntegrityFailure"


class ParseError(ModelVaultError):
    """The engine rejected the artifact bytes."""

    error_type = "ParseError"


class LoadTimeoutError(ModelVaultError):
    """The caller stopped waiting. The load itself keeps running."""

    error_type = "Timeout"


class PredictError(ModelVaultError):
    error_type = "PredictError"


class UpdateError(ModelVaultError):
    error_type = "UpdateError"
