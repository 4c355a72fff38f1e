from datetime import datetime, timezone

from pydantic import Field

from modelvault.shared.types.models import ModelId, ModelSignature
from modelvault.utils.pydantic_ext import CamelCaseModel, TaggedModel


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class FeedbackEntry(CamelCaseModel):
    input_text: str
    expected_output: str
    created_at: datetime = Field(default_factory=_now)


class ConversationContext(CamelCaseModel):
    current_screen: str = ""
    additional_data: dict[str, str] = Field(default_factory=dict)
    history: list[str] = Field(default_factory=list)


class BaseUpdateResult(TaggedModel):
    model_id: ModelId
    n_entries: int


class UpdateSucceeded(BaseUpdateResult):
    signature: ModelSignature


class UpdateFailed(BaseUpdateResult):
    error_message: str


UpdateResult = UpdateSucceeded | UpdateFailed
