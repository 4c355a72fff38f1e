import asyncio
import contextlib
import os
import pathlib
from uuid import uuid4

import aiofiles
import aiofiles.os as aios

from modelvault.shared.constants import PARTIAL_SUFFIX

type StrPath = str | os.PathLike[str]


def delete_if_exists(filename: StrPath) -> bool:
    with contextlib.suppress(FileNotFoundError):
        os.remove(filename)
        return True
    return False


def ensure_parent_directory_exists(filename: StrPath) -> None:
    """
    Ensure the directory containing the file exists (create it if necessary).
    """
    pathlib.Path(filename).parent.mkdir(parents=True, exist_ok=True)


def partial_path_for(target: pathlib.Path) -> pathlib.Path:
    """A unique sibling of `target`, so the final rename never crosses filesystems."""
    return target.with_name(f"{target.name}.{uuid4().hex[:12]}{PARTIAL_SUFFIX}")


def _fsync_path(path: pathlib.Path) -> None:
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


async def write_atomically(target: pathlib.Path, data: bytes) -> None:
    """
    Write `data` to a temporary sibling and rename it over `target`.

    Readers of `target` observe either the previous complete file or the new
    complete file. On any failure the temporary file is removed and `target`
    is left untouched.
    """
    await aios.makedirs(target.parent, exist_ok=True)
    partial = partial_path_for(target)
    try:
        async with aiofiles.open(partial, "wb") as f:
            await f.write(data)
            await f.flush()
        await asyncio.to_thread(_fsync_path, partial)
        await aios.replace(partial, target)
    except BaseException:
        delete_if_exists(partial)
        raise
