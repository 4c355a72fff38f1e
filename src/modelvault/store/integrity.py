import asyncio
import hashlib
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import anyio
from loguru import logger

from modelvault.shared.errors import NotFoundError, UpdateError
from modelvault.shared.types.events import Event, IntegrityViolation
from modelvault.shared.types.models import ModelId, ModelSignature
from modelvault.store.model_store import ModelStore
from modelvault.utils.channels import Sender

_CHUNK_SIZE = 8 * 1024 * 1024


def _digest_file(path: Path) -> ModelSignature:
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            hasher.update(chunk)
    return ModelSignature(hasher.hexdigest())


def digest_bytes(data: bytes) -> ModelSignature:
    return ModelSignature(hashlib.sha256(data).hexdigest())


class IntegrityVerifier:
    """
    Decides whether an installed artifact may be loaded, and restores it from
    the bundled copy when it may not.

    An artifact is trusted when its digest equals the baseline (the digest of
    the bundled copy) or appears in the approved set. Approved signatures come
    from configuration or from a successful update pass in this process.
    """

    def __init__(
        self,
        store: ModelStore,
        executor: ThreadPoolExecutor | None = None,
        approved_signatures: Mapping[ModelId, Iterable[ModelSignature]] | None = None,
        event_sender: Sender[Event] | None = None,
    ):
        self.store = store
        self.executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="modelvault-hash"
        )
        self.event_sender = event_sender
        self._baselines: dict[ModelId, ModelSignature | None] = {}
        self._approved: dict[ModelId, set[ModelSignature]] = {
            model_id: set(signatures)
            for model_id, signatures in (approved_signatures or {}).items()
        }
        self._lock = asyncio.Lock()

    async def signature_of(self, path: Path) -> ModelSignature | None:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, _digest_file, path)
        except OSError as e:
            logger.debug(f"Could not hash {path}: {e}")
            return None

    async def baseline_signature(self, model_id: ModelId) -> ModelSignature | None:
        if model_id not in self._baselines:
            bundled = self.store.bundled_path(model_id)
            signature = await self.signature_of(bundled) if bundled else None
            # A concurrent caller may have filled it in while we were hashing
            self._baselines.setdefault(model_id, signature)
            if signature is None:
                logger.warning(f"No baseline signature for {model_id}")
        return self._baselines[model_id]

    async def prime(self) -> None:
        """Compute every baseline up front."""
        for model_id in ModelId:
            await self.baseline_signature(model_id)

    def approve(self, model_id: ModelId, signature: ModelSignature) -> None:
        self._approved.setdefault(model_id, set()).add(signature)

    def approved_signatures(self, model_id: ModelId) -> frozenset[ModelSignature]:
        return frozenset(self._approved.get(model_id, ()))

    async def is_trusted(self, model_id: ModelId, signature: ModelSignature) -> bool:
        if signature in self._approved.get(model_id, ()):
            return True
        return signature == await self.baseline_signature(model_id)

    async def verify(self, model_id: ModelId, path: Path) -> bool:
        signature = await self.signature_of(path)
        if signature is None:
            return False
        return await self.is_trusted(model_id, signature)

    async def enforce(self, model_id: ModelId) -> bool:
        """
        Verify the installed artifact, restoring it from the bundle on mismatch.
        Returns whether the installed artifact is trusted afterwards.
        """
        async with self._lock:
            return await self._enforce_locked(model_id) is not None

    async def read_verified(
        self, model_id: ModelId, attempts: int = 2
    ) -> tuple[bytes, ModelSignature] | None:
        """
        Enforce, then read the installed artifact once and hash exactly the bytes
        that were read. Callers parse the returned bytes and never reopen the
        file, so a replacement after verification cannot reach the engine.
        """
        async with self._lock:
            for _ in range(attempts):
                if await self._enforce_locked(model_id) is None:
                    return None
                path = self.store.installed_path(model_id)
                try:
                    data = await self.store.read_artifact(path)
                except OSError as e:
                    logger.warning(f"Could not read verified artifact for {model_id}: {e}")
                    continue
                loop = asyncio.get_running_loop()
                signature = await loop.run_in_executor(self.executor, digest_bytes, data)
                if await self.is_trusted(model_id, signature):
                    return data, signature
                logger.warning(
                    f"Artifact for {model_id} changed after verification ({signature.short})"
                )
            return None

    async def _enforce_locked(self, model_id: ModelId) -> ModelSignature | None:
        path = self.store.installed_path(model_id)
        signature = await self.signature_of(path)
        if signature is not None and await self.is_trusted(model_id, signature):
            return signature

        tampered = signature is not None
        if tampered:
            logger.warning(
                f"Integrity check failed for {model_id} ({signature.short}), restoring"
            )
        await self.store.remove_artifact(model_id)
        try:
            await self.store.install_from_bundle(model_id)
        except NotFoundError:
            logger.error(f"Cannot restore {model_id}: no bundled artifact")
            if tampered:
                self._publish(IntegrityViolation(model_id=model_id, restored=False))
            return None

        signature = await self.signature_of(path)
        if signature is None or not await self.is_trusted(model_id, signature):
            logger.error(f"Restored artifact for {model_id} still fails verification")
            self._publish(IntegrityViolation(model_id=model_id, restored=False))
            return None
        if tampered:
            self._publish(IntegrityViolation(model_id=model_id, restored=True))
        return signature

    async def install_trusted(self, model_id: ModelId, data: bytes) -> ModelSignature:
        """
        Install the output of an update pass and approve its signature.

        The digest is taken from `data`, then re-derived from the file on disk
        after the atomic rename. Both must agree before the signature is approved.
        """
        expected = digest_bytes(data)
        async with self._lock:
            path = await self.store.install_artifact(model_id, data)
            actual = await self.signature_of(path)
            if actual != expected:
                logger.error(
                    f"Installed update for {model_id} hashes to {actual}, expected {expected}"
                )
                await self.store.remove_artifact(model_id)
                try:
                    await self.store.install_from_bundle(model_id)
                except NotFoundError:
                    logger.error(f"No bundled artifact to fall back to for {model_id}")
                raise UpdateError("installed artifact does not match update output", model_id)
            self.approve(model_id, expected)
        logger.info(f"Approved updated artifact {expected.short} for {model_id}")
        return expected

    async def sweep(self) -> dict[ModelId, bool]:
        results: dict[ModelId, bool] = {}
        for model_id in self.store.installed_models():
            results[model_id] = await self.enforce(model_id)
        return results

    async def run(self, interval: float) -> None:
        while True:
            await anyio.sleep(interval)
            try:
                results = await self.sweep()
                logger.debug(f"Integrity sweep: {results}")
            except Exception as e:
                logger.opt(exception=e).error("Integrity sweep failed")

    def _publish(self, event: Event) -> None:
        logger.debug(f"Integrity event: {event}")
        if self.event_sender is not None:
            self.event_sender.publish(event)
