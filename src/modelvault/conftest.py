from pathlib import Path

import pytest

from modelvault.engine.dummy_inference_engine import (
    DummyInferenceEngine,
    make_dummy_artifact,
)
from modelvault.runtime.cache import ModelCache
from modelvault.runtime.loader import ModelLoader
from modelvault.shared.types.events import Event
from modelvault.shared.types.models import ModelId
from modelvault.store.integrity import IntegrityVerifier
from modelvault.store.model_store import ModelStore
from modelvault.utils.channels import Receiver, Sender, channel


@pytest.fixture
def bundle_dir(tmp_path: Path) -> Path:
    """A bundle directory holding a dummy artifact for every model."""
    bundle = tmp_path / "bundle"
    bundle.mkdir()
    for model_id in ModelId:
        (bundle / model_id.artifact_filename).write_bytes(
            make_dummy_artifact(f"seed {model_id}")
        )
    return bundle


@pytest.fixture
def models_dir(tmp_path: Path) -> Path:
    return tmp_path / "models"


@pytest.fixture
def store(models_dir: Path, bundle_dir: Path) -> ModelStore:
    return ModelStore(models_dir=models_dir, bundle_dir=bundle_dir)


@pytest.fixture
def event_channel() -> tuple[Sender[Event], Receiver[Event]]:
    return channel[Event]()


@pytest.fixture
def integrity(
    store: ModelStore, event_channel: tuple[Sender[Event], Receiver[Event]]
) -> IntegrityVerifier:
    return IntegrityVerifier(store, event_sender=event_channel[0])


@pytest.fixture
def engine() -> DummyInferenceEngine:
    return DummyInferenceEngine()


@pytest.fixture
def cache(event_channel: tuple[Sender[Event], Receiver[Event]]) -> ModelCache:
    return ModelCache(event_channel[0])


@pytest.fixture
def loader(
    store: ModelStore,
    integrity: IntegrityVerifier,
    cache: ModelCache,
    engine: DummyInferenceEngine,
) -> ModelLoader:
    return ModelLoader(store, integrity, cache, engine)
