import asyncio
from pathlib import Path

import aiofiles
import aiofiles.os as aios
import anyio
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from modelvault.engine.inference_engine import InferenceEngine
from modelvault.runtime.loader import ModelLoader
from modelvault.shared.constants import MODELVAULT_FEEDBACK_FILE
from modelvault.shared.errors import UpdateError
from modelvault.shared.types.events import Event, UpdateFinished, UpdateStarted
from modelvault.shared.types.feedback import (
    FeedbackEntry,
    UpdateFailed,
    UpdateResult,
    UpdateSucceeded,
)
from modelvault.shared.types.models import ModelId
from modelvault.store.integrity import IntegrityVerifier
from modelvault.utils.channels import Sender
from modelvault.utils.fs import write_atomically

_entries_adapter = TypeAdapter(list[FeedbackEntry])


class FeedbackCollector:
    """
    Buffers (input, expected output) pairs and periodically folds them into a
    new version of `model_id`.

    The buffer is only mutated from the event loop. An update pass drains the
    buffer before its first await, so entries recorded during a pass start a
    fresh batch. A failed pass discards its batch and leaves the installed
    model untouched.
    """

    def __init__(
        self,
        model_id: ModelId,
        loader: ModelLoader,
        engine: InferenceEngine,
        integrity: IntegrityVerifier,
        update_threshold: int = 20,
        feedback_file: Path = MODELVAULT_FEEDBACK_FILE,
        event_sender: Sender[Event] | None = None,
    ):
        self.model_id = model_id
        self.loader = loader
        self.engine = engine
        self.integrity = integrity
        self.update_threshold = update_threshold
        self.feedback_file = feedback_file
        self.event_sender = event_sender
        self._buffer: list[FeedbackEntry] = []
        self._update_lock = asyncio.Lock()
        self._pending: set[asyncio.Task[UpdateResult]] = set()

    @property
    def pending_entries(self) -> list[FeedbackEntry]:
        return list(self._buffer)

    def record_feedback(self, input_text: str, expected_output: str) -> None:
        self._buffer.append(
            FeedbackEntry(input_text=input_text, expected_output=expected_output)
        )
        if len(self._buffer) >= self.update_threshold:
            self.trigger_update()

    def record_command_success(
        self, message: str, command: str, parameter: str
    ) -> None:
        self.record_feedback(message, f"[{command}:{parameter}]")

    def record_intent_success(
        self, message: str, intent: str, parameter: str | None = None
    ) -> None:
        expected = f"INTENT:{intent}"
        if parameter:
            expected += f" PARAMETER:{parameter}"
        self.record_feedback(message, expected)

    def trigger_update(self) -> "asyncio.Task[UpdateResult] | None":
        if not self._buffer:
            return None
        entries, self._buffer = self._buffer, []
        task = asyncio.create_task(
            self._run_update(entries), name=f"update-{self.model_id}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_for_updates(self) -> list[UpdateResult]:
        return list(await asyncio.gather(*self._pending))

    async def _run_update(self, entries: list[FeedbackEntry]) -> UpdateResult:
        async with self._update_lock:
            logger.info(f"Updating {self.model_id} with {len(entries)} feedback entries")
            self._publish(UpdateStarted(model_id=self.model_id, n_entries=len(entries)))
            try:
                model = await self.loader.load_model(self.model_id)
                try:
                    data = await self.engine.train(model.runtime, entries)
                except Exception as e:
                    raise UpdateError(f"training failed: {e}", self.model_id) from e
                signature = await self.integrity.install_trusted(self.model_id, data)
            except Exception as e:
                logger.opt(exception=e).error(
                    f"Update of {self.model_id} failed, discarding {len(entries)} entries"
                )
                self._publish(
                    UpdateFinished(
                        model_id=self.model_id, success=False, error_message=str(e)
                    )
                )
                return UpdateFailed(
                    model_id=self.model_id,
                    n_entries=len(entries),
                    error_message=str(e),
                )

            self.loader.invalidate(self.model_id)
            logger.info(f"Updated {self.model_id} to {signature.short}")
            self._publish(
                UpdateFinished(model_id=self.model_id, success=True, signature=signature)
            )
            return UpdateSucceeded(
                model_id=self.model_id, n_entries=len(entries), signature=signature
            )

    async def run(self, interval: float) -> None:
        while True:
            await anyio.sleep(interval)
            task = self.trigger_update()
            if task is not None:
                await asyncio.shield(task)

    async def persist(self) -> None:
        """Save not-yet-applied feedback so it survives the process."""
        data = _entries_adapter.dump_json(self._buffer, by_alias=True)
        await write_atomically(self.feedback_file, data)
        logger.debug(f"Persisted {len(self._buffer)} feedback entries")

    async def restore(self) -> int:
        if not await aios.path.isfile(self.feedback_file):
            return 0
        async with aiofiles.open(self.feedback_file, "rb") as f:
            raw = await f.read()
        try:
            restored = _entries_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable feedback file {self.feedback_file}: {e}")
            return 0
        self._buffer = restored + self._buffer
        # consumed; the next persist() writes whatever is still pending
        await aios.remove(self.feedback_file)
        logger.info(f"Restored {len(restored)} feedback entries")
        if len(self._buffer) >= self.update_threshold:
            self.trigger_update()
        return len(restored)

    def _publish(self, event: Event) -> None:
        if self.event_sender is not None:
            self.event_sender.publish(event)
