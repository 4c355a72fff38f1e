import pytest
from pydantic import TypeAdapter, ValidationError

from modelvault.shared.errors import IntegrityError, ModelVaultError, NotFoundError
from modelvault.shared.types.events import (
    Event,
    ModelStatusChanged,
    UpdateFinished,
)
from modelvault.shared.types.models import (
    ModelFailed,
    ModelId,
    ModelLoaded,
    ModelSignature,
    ModelStatus,
)

_SIG = ModelSignature("0f" * 32)


def test_event_serialises_with_class_tag():
    event = UpdateFinished(model_id=ModelId.TextGenerator, success=True, signature=_SIG)
    dumped = event.model_dump(by_alias=True)
    assert list(dumped) == ["UpdateFinished"]
    assert dumped["UpdateFinished"]["modelId"] == "text-generator"
    assert dumped["UpdateFinished"]["signature"] == _SIG


def test_event_union_round_trips_through_json():
    adapter: TypeAdapter[Event] = TypeAdapter(Event)
    event = ModelStatusChanged(
        model_id=ModelId.IntentClassifier,
        status=ModelFailed(error_type="NotFound", error_message="gone"),
        available=False,
    )
    decoded = adapter.validate_json(adapter.dump_json(event, by_alias=True))
    assert isinstance(decoded, ModelStatusChanged)
    assert decoded == event
    assert isinstance(decoded.status, ModelFailed)


def test_status_union_distinguishes_variants():
    adapter: TypeAdapter[ModelStatus] = TypeAdapter(ModelStatus)
    loaded = adapter.validate_python({"ModelLoaded": {"signature": str(_SIG)}})
    assert isinstance(loaded, ModelLoaded)


def test_signature_is_normalised_and_validated():
    assert ModelSignature("AB" * 32) == "ab" * 32
    with pytest.raises(ValueError):
        ModelSignature("not-a-digest")
    with pytest.raises(ValidationError):
        ModelLoaded(signature="xyz")  # pyright: ignore[reportArgumentType]


def test_model_id_filenames():
    assert ModelId.TextGenerator.artifact_filename == "text-generator.model"
    assert ModelId.from_filename("intent-classifier.model") is ModelId.IntentClassifier
    assert ModelId.from_filename("intent-classifier.model.abc.partial") is None
    assert ModelId.from_filename("unknown.model") is None


def test_errors_carry_type_and_model():
    error = NotFoundError("no artifact", ModelId.SentimentAnalyzer)
    assert isinstance(error, ModelVaultError)
    assert error.error_type == "NotFound"
    assert str(error) == "sentiment-analyzer: no artifact"
    assert IntegrityError("x").error_type == "IntegrityFailure"
