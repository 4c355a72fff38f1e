import asyncio
from collections.abc import Sequence
from pathlib import Path

import pytest

from modelvault.engine.dummy_inference_engine import DummyInferenceEngine, DummyModel
from modelvault.runtime.feedback import FeedbackCollector
from modelvault.runtime.loader import ModelLoader
from modelvault.shared.types.events import Event, UpdateFinished, UpdateStarted
from modelvault.shared.types.feedback import FeedbackEntry, UpdateFailed, UpdateSucceeded
from modelvault.shared.types.models import ModelId
from modelvault.store.integrity import IntegrityVerifier
from modelvault.store.model_store import ModelStore
from modelvault.utils.channels import Receiver, Sender

TG = ModelId.TextGenerator


class GatedEngine(DummyInferenceEngine):
    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.gate: asyncio.Event | None = None
        self.batches: list[int] = []

    async def train(self, model: DummyModel, entries: Sequence[FeedbackEntry]) -> bytes:
        self.batches.append(len(entries))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("optimizer diverged")
        return await super().train(model, entries)


@pytest.fixture
def feedback_file(tmp_path: Path) -> Path:
    return tmp_path / "state" / "model_feedback.json"


def _collector(
    loader: ModelLoader,
    integrity: IntegrityVerifier,
    engine: DummyInferenceEngine,
    feedback_file: Path,
    threshold: int = 3,
    event_sender: Sender[Event] | None = None,
) -> FeedbackCollector:
    return FeedbackCollector(
        TG,
        loader,
        engine,
        integrity,
        update_threshold=threshold,
        feedback_file=feedback_file,
        event_sender=event_sender,
    )


class TestBuffering:
    @pytest.mark.asyncio
    async def test_update_starts_at_threshold(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        engine = GatedEngine()
        collector = _collector(loader, integrity, engine, feedback_file)
        collector.record_feedback("a", "1")
        collector.record_feedback("b", "2")
        assert len(collector.pending_entries) == 2
        assert not collector._pending

        collector.record_feedback("c", "3")
        assert collector.pending_entries == []
        results = await collector.wait_for_updates()
        assert len(results) == 1
        assert isinstance(results[0], UpdateSucceeded)
        assert results[0].n_entries == 3
        assert engine.batches == [3]

    @pytest.mark.asyncio
    async def test_trigger_with_empty_buffer_is_noop(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        collector = _collector(loader, integrity, GatedEngine(), feedback_file)
        assert collector.trigger_update() is None

    @pytest.mark.asyncio
    async def test_entries_recorded_during_pass_start_new_batch(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        engine = GatedEngine()
        engine.gate = asyncio.Event()
        collector = _collector(loader, integrity, engine, feedback_file, threshold=100)
        collector.record_feedback("a", "1")
        collector.record_feedback("b", "2")
        task = collector.trigger_update()
        assert task is not None
        await asyncio.sleep(0.05)

        collector.record_feedback("late", "3")
        assert [e.input_text for e in collector.pending_entries] == ["late"]
        engine.gate.set()
        result = await task
        assert result.n_entries == 2
        assert [e.input_text for e in collector.pending_entries] == ["late"]

    def test_command_and_intent_helpers(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        collector = _collector(loader, integrity, GatedEngine(), feedback_file, threshold=100)
        collector.record_command_success("open settings", "navigate", "settings")
        collector.record_intent_success("sign it", "sign")
        collector.record_intent_success("add repo", "addSource", "https://repo.example")
        assert [e.expected_output for e in collector.pending_entries] == [
            "[navigate:settings]",
            "INTENT:sign",
            "INTENT:addSource PARAMETER:https://repo.example",
        ]


class TestUpdates:
    @pytest.mark.asyncio
    async def test_successful_update_replaces_model(
        self,
        loader: ModelLoader,
        integrity: IntegrityVerifier,
        feedback_file: Path,
        event_channel: tuple[Sender[Event], Receiver[Event]],
    ):
        before = await loader.load_model(TG)
        collector = _collector(
            loader, integrity, GatedEngine(), feedback_file, event_sender=event_channel[0]
        )
        collector.record_feedback("q", "a")
        task = collector.trigger_update()
        assert task is not None
        result = await task

        assert isinstance(result, UpdateSucceeded)
        assert result.signature in integrity.approved_signatures(TG)
        assert not loader.cache.is_available(TG)

        after = await loader.load_model(TG)
        assert after is not before
        assert after.signature == result.signature
        assert after.runtime.lines == (f"seed {TG}", "q\ta")

        events = [
            e
            for e in event_channel[1].collect()
            if isinstance(e, (UpdateStarted, UpdateFinished))
        ]
        assert events[0] == UpdateStarted(
            model_id=TG, n_entries=1, event_id=events[0].event_id
        )
        assert isinstance(events[1], UpdateFinished)
        assert events[1].success
        assert events[1].signature == result.signature

    @pytest.mark.asyncio
    async def test_failed_update_keeps_previous_model(
        self,
        loader: ModelLoader,
        store: ModelStore,
        integrity: IntegrityVerifier,
        feedback_file: Path,
        event_channel: tuple[Sender[Event], Receiver[Event]],
    ):
        before = await loader.load_model(TG)
        installed = store.installed_path(TG).read_bytes()
        collector = _collector(
            loader,
            integrity,
            GatedEngine(fail=True),
            feedback_file,
            event_sender=event_channel[0],
        )
        collector.record_feedback("q", "a")
        task = collector.trigger_update()
        assert task is not None
        result = await task

        assert isinstance(result, UpdateFailed)
        assert "optimizer diverged" in result.error_message
        assert collector.pending_entries == []
        assert store.installed_path(TG).read_bytes() == installed
        assert await loader.load_model(TG) is before

        finished = [e for e in event_channel[1].collect() if isinstance(e, UpdateFinished)]
        assert len(finished) == 1
        assert not finished[0].success

    @pytest.mark.asyncio
    async def test_consecutive_updates_accumulate(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        collector = _collector(loader, integrity, GatedEngine(), feedback_file, threshold=1)
        collector.record_feedback("one", "1")
        collector.record_feedback("two", "2")
        results = await collector.wait_for_updates()
        assert all(isinstance(r, UpdateSucceeded) for r in results)

        model = await loader.load_model(TG)
        assert model.runtime.lines == (f"seed {TG}", "one\t1", "two\t2")


class TestPersistence:
    @pytest.mark.asyncio
    async def test_persist_then_restore(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        collector = _collector(loader, integrity, GatedEngine(), feedback_file, threshold=100)
        collector.record_feedback("a", "1")
        collector.record_feedback("b", "2")
        await collector.persist()
        assert feedback_file.exists()

        revived = _collector(loader, integrity, GatedEngine(), feedback_file, threshold=100)
        revived.record_feedback("c", "3")
        assert await revived.restore() == 2
        assert [e.input_text for e in revived.pending_entries] == ["a", "b", "c"]
        assert not feedback_file.exists()

    @pytest.mark.asyncio
    async def test_restore_reaching_threshold_triggers_update(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        collector = _collector(loader, integrity, GatedEngine(), feedback_file, threshold=5)
        collector.record_feedback("a", "1")
        collector.record_feedback("b", "2")
        await collector.persist()

        engine = GatedEngine()
        revived = _collector(loader, integrity, engine, feedback_file, threshold=2)
        assert await revived.restore() == 2
        assert revived.pending_entries == []
        results = await revived.wait_for_updates()
        assert len(results) == 1
        assert isinstance(results[0], UpdateSucceeded)
        assert engine.batches == [2]

    @pytest.mark.asyncio
    async def test_restore_without_file(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        collector = _collector(loader, integrity, GatedEngine(), feedback_file)
        assert await collector.restore() == 0

    @pytest.mark.asyncio
    async def test_unreadable_file_is_ignored(
        self, loader: ModelLoader, integrity: IntegrityVerifier, feedback_file: Path
    ):
        feedback_file.parent.mkdir(parents=True)
        feedback_file.write_text('[{"inputText": 3}]')
        collector = _collector(loader, integrity, GatedEngine(), feedback_file)
        assert await collector.restore() == 0
        assert collector.pending_entries == []
