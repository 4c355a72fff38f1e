from pydantic import Field

from modelvault.shared.types.common import EventId
from modelvault.shared.types.models import ModelId, ModelSignature, ModelStatus
from modelvault.utils.pydantic_ext import TaggedModel


class BaseEvent(TaggedModel):
    event_id: EventId = Field(default_factory=EventId)


class ModelStatusChanged(BaseEvent):
    model_id: ModelId
    status: ModelStatus
    available: bool


class AcquisitionStarted(BaseEvent):
    model_id: ModelId


class AcquisitionFinished(BaseEvent):
    model_id: ModelId
    success: bool
    error_message: str | None = None


class UpdateStarted(BaseEvent):
    model_id: ModelId
    n_entries: int


class UpdateFinished(BaseEvent):
    model_id: ModelId
    success: bool
    signature: ModelSignature | None = None
    error_message: str | None = None


class IntegrityViolation(BaseEvent):
    model_id: ModelId
    restored: bool


Event = (
    ModelStatusChanged
    | AcquisitionStarted
    | AcquisitionFinished
    | UpdateStarted
    | UpdateFinished
    | IntegrityViolation
)
