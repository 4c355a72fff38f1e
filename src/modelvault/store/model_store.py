from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os as aios
from loguru import logger

from modelvault.shared.constants import MODELVAULT_BUNDLE_DIR, MODELVAULT_MODELS_DIR
from modelvault.shared.errors import NotFoundError
from modelvault.shared.types.models import ModelId
from modelvault.utils.fs import delete_if_exists, write_atomically


@dataclass
class ModelStore:
    """
    Locates and persists model artifacts.

    Two locations exist per model: the read-only bundled copy shipped with the
    package, and the writable installed copy that is actually loaded. Paths are
    deterministic functions of the `ModelId`.
    """

    models_dir: Path = MODELVAULT_MODELS_DIR
    bundle_dir: Path | None = MODELVAULT_BUNDLE_DIR

    def bundled_path(self, model_id: ModelId) -> Path | None:
        if self.bundle_dir is None:
            return None
        path = self.bundle_dir / model_id.artifact_filename
        return path if path.is_file() else None

    def installed_path(self, model_id: ModelId) -> Path:
        return self.models_dir / model_id.artifact_filename

    async def exists(self, path: Path) -> bool:
        return await aios.path.isfile(path)

    async def read_artifact(self, path: Path) -> bytes:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def install_artifact(self, model_id: ModelId, data: bytes) -> Path:
        target = self.installed_path(model_id)
        await write_atomically(target, data)
        logger.info(f"Installed {model_id} ({len(data)} bytes) at {target}")
        return target

    async def install_from_bundle(self, model_id: ModelId) -> Path:
        bundled = self.bundled_path(model_id)
        if bundled is None:
            raise NotFoundError("no bundled artifact", model_id)
        data = await self.read_artifact(bundled)
        return await self.install_artifact(model_id, data)

    async def remove_artifact(self, model_id: ModelId) -> bool:
        removed = delete_if_exists(self.installed_path(model_id))
        if removed:
            logger.info(f"Removed installed artifact for {model_id}")
        return removed

    def installed_models(self) -> list[ModelId]:
        if not self.models_dir.is_dir():
            return []
        found: list[ModelId] = []
        for entry in sorted(self.models_dir.iterdir()):
            model_id = ModelId.from_filename(entry.name)
            if model_id is not None and entry.is_file():
                found.append(model_id)
        return found
