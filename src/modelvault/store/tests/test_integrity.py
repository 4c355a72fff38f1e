"""Tests for signature verification, enforcement and restoration."""

import asyncio
import hashlib
from pathlib import Path

import pytest

from modelvault.shared.errors import UpdateError
from modelvault.shared.types.events import Event, IntegrityViolation
from modelvault.shared.types.models import ModelId, ModelSignature
from modelvault.store.integrity import IntegrityVerifier
from modelvault.store.model_store import ModelStore
from modelvault.utils.channels import Receiver, Sender

TG = ModelId.TextGenerator


def _sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class TestVerify:
    @pytest.mark.asyncio
    async def test_baseline_is_digest_of_bundle(self, integrity: IntegrityVerifier, bundle_dir: Path):
        expected = _sha((bundle_dir / TG.artifact_filename).read_bytes())
        assert await integrity.baseline_signature(TG) == expected

    @pytest.mark.asyncio
    async def test_baseline_cached_after_first_computation(
        self, integrity: IntegrityVerifier, bundle_dir: Path
    ):
        first = await integrity.baseline_signature(TG)
        (bundle_dir / TG.artifact_filename).write_bytes(b"changed later")
        assert await integrity.baseline_signature(TG) == first

    @pytest.mark.asyncio
    async def test_verify_matches_bundled_copy(self, integrity: IntegrityVerifier, store: ModelStore):
        path = await store.install_from_bundle(TG)
        assert await integrity.verify(TG, path)

    @pytest.mark.asyncio
    async def test_verify_rejects_single_byte_change(
        self, integrity: IntegrityVerifier, store: ModelStore
    ):
        path = await store.install_from_bundle(TG)
        data = bytearray(path.read_bytes())
        data[-1] ^= 0x01
        path.write_bytes(bytes(data))
        assert not await integrity.verify(TG, path)

    @pytest.mark.asyncio
    async def test_verify_missing_file_is_false(self, integrity: IntegrityVerifier, tmp_path: Path):
        assert not await integrity.verify(TG, tmp_path / "nope.model")

    @pytest.mark.asyncio
    async def test_no_baseline_rejects_everything_unapproved(
        self, store: ModelStore, bundle_dir: Path
    ):
        (bundle_dir / TG.artifact_filename).unlink()
        integrity = IntegrityVerifier(store)
        path = await store.install_artifact(TG, b"anything")
        assert await integrity.baseline_signature(TG) is None
        assert not await integrity.verify(TG, path)

    @pytest.mark.asyncio
    async def test_approved_signature_accepted(self, store: ModelStore):
        data = b"approved build"
        integrity = IntegrityVerifier(
            store, approved_signatures={TG: [ModelSignature(_sha(data))]}
        )
        path = await store.install_artifact(TG, data)
        assert await integrity.verify(TG, path)
        # approval is per model
        other = await store.install_artifact(ModelId.IntentClassifier, data)
        assert not await integrity.verify(ModelId.IntentClassifier, other)


class TestEnforce:
    @pytest.mark.asyncio
    async def test_matching_artifact_not_touched(
        self, integrity: IntegrityVerifier, store: ModelStore
    ):
        path = await store.install_from_bundle(TG)
        before = path.stat()
        assert await integrity.enforce(TG)
        after = path.stat()
        assert (before.st_ino, before.st_mtime_ns) == (after.st_ino, after.st_mtime_ns)

    @pytest.mark.asyncio
    async def test_tampered_artifact_restored_from_bundle(
        self,
        integrity: IntegrityVerifier,
        store: ModelStore,
        bundle_dir: Path,
        event_channel: tuple[Sender[Event], Receiver[Event]],
    ):
        path = await store.install_artifact(TG, b"tampered")
        assert await integrity.enforce(TG)
        assert path.read_bytes() == (bundle_dir / TG.artifact_filename).read_bytes()

        events = event_channel[1].collect()
        assert events == [
            IntegrityViolation(model_id=TG, restored=True, event_id=events[0].event_id)
        ]

    @pytest.mark.asyncio
    async def test_tampered_without_bundle_fails_and_removes(
        self, integrity: IntegrityVerifier, store: ModelStore, bundle_dir: Path
    ):
        (bundle_dir / TG.artifact_filename).unlink()
        path = await store.install_artifact(TG, b"tampered")
        assert not await integrity.enforce(TG)
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_concurrent_enforce_restores_once(
        self,
        integrity: IntegrityVerifier,
        store: ModelStore,
        event_channel: tuple[Sender[Event], Receiver[Event]],
    ):
        await store.install_artifact(TG, b"tampered")
        results = await asyncio.gather(*(integrity.enforce(TG) for _ in range(5)))
        assert results == [True] * 5
        assert len(event_channel[1].collect()) == 1

    @pytest.mark.asyncio
    async def test_read_verified_returns_the_hashed_bytes(
        self, integrity: IntegrityVerifier, store: ModelStore, bundle_dir: Path
    ):
        await store.install_artifact(TG, b"tampered")
        verified = await integrity.read_verified(TG)
        assert verified is not None
        data, signature = verified
        assert data == (bundle_dir / TG.artifact_filename).read_bytes()
        assert signature == _sha(data)

    @pytest.mark.asyncio
    async def test_read_verified_rereads_after_swap(
        self, integrity: IntegrityVerifier, store: ModelStore, monkeypatch: pytest.MonkeyPatch
    ):
        installed = await store.install_from_bundle(TG)
        read_artifact = store.read_artifact
        reads = 0

        async def swap_on_first_read(path: Path) -> bytes:
            nonlocal reads
            if path == installed:
                reads += 1
                if reads == 1:
                    path.write_bytes(b"swapped")
            return await read_artifact(path)

        monkeypatch.setattr(store, "read_artifact", swap_on_first_read)
        verified = await integrity.read_verified(TG)
        assert verified is not None
        assert verified[0] != b"swapped"
        assert reads == 2

    @pytest.mark.asyncio
    async def test_sweep_covers_installed_models(
        self, integrity: IntegrityVerifier, store: ModelStore
    ):
        await store.install_from_bundle(TG)
        await store.install_artifact(ModelId.IntentClassifier, b"tampered")
        results = await integrity.sweep()
        assert results == {ModelId.IntentClassifier: True, TG: True}
        assert await integrity.verify(
            ModelId.IntentClassifier, store.installed_path(ModelId.IntentClassifier)
        )


class TestInstallTrusted:
    @pytest.mark.asyncio
    async def test_install_trusted_approves_new_signature(
        self, integrity: IntegrityVerifier, store: ModelStore
    ):
        signature = await integrity.install_trusted(TG, b"retrained")
        assert signature == _sha(b"retrained")
        assert signature in integrity.approved_signatures(TG)
        assert await integrity.enforce(TG)
        assert store.installed_path(TG).read_bytes() == b"retrained"

    @pytest.mark.asyncio
    async def test_install_trusted_mismatch_restores_and_raises(
        self,
        integrity: IntegrityVerifier,
        store: ModelStore,
        bundle_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
    ):
        real_install = store.install_artifact
        calls = 0

        async def corrupting_install(model_id: ModelId, data: bytes) -> Path:
            # only the update write is corrupted, the restore goes through untouched
            nonlocal calls
            calls += 1
            if calls == 1:
                data = data + b"!"
            return await real_install(model_id, data)

        monkeypatch.setattr(store, "install_artifact", corrupting_install)
        with pytest.raises(UpdateError):
            await integrity.install_trusted(TG, b"retrained")

        assert _sha(b"retrained") not in integrity.approved_signatures(TG)
        assert store.installed_path(TG).read_bytes() == (
            bundle_dir / TG.artifact_filename
        ).read_bytes()
