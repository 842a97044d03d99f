"""Filesystem cache of collected artifacts.

Everything lives under a single cache directory (``<cwd>/.j1-integration``
unless the caller supplies one). Writers create ``graph/...`` artifacts,
``symlink`` builds secondary indexes that point back at them, and
``walk_directory`` reads a whole subtree back, following links.

All helpers are stateless coroutines. Blocking filesystem calls run in
worker threads and every error surfaces unchanged to the caller.
"""

from __future__ import annotations

import asyncio
import errno
import inspect
import json
import logging
import os
import stat
from dataclasses import asdict, dataclass, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

LOGGER = logging.getLogger(__name__)

CACHE_DIRECTORY_NAME = ".j1-integration"
JSON_INDENT = 2


@dataclass(slots=True)
class WalkedFile:
    """A file discovered by ``walk_directory`` with its raw, unparsed content."""

    file_path: str
    data: str


Iteratee = Callable[[WalkedFile], Awaitable[None] | None]


class UnsupportedEntryError(OSError):
    """Raised when a walk meets a FIFO, socket or device node."""


class EntryKind(str, Enum):
    """How a directory entry is dispatched during a walk."""

    DIRECTORY = "directory"
    FILE = "file"
    SYMLINK = "symlink"


def get_default_cache_directory() -> Path:
    """Return ``<current working directory>/.j1-integration``.

    The working directory is read on every call so embedders that ``chdir``
    between operations get a matching cache root.
    """

    return Path(os.getcwd()) / CACHE_DIRECTORY_NAME


def resolve_path(cache_directory: str | os.PathLike[str] | None, path: str) -> Path:
    """Join a cache-relative ``path`` onto the cache directory.

    Plain concatenation with a single separator; ``.`` and ``..`` segments are
    kept as given.
    """

    root = os.fspath(cache_directory) if cache_directory is not None else os.fspath(get_default_cache_directory())
    return Path(f"{root.rstrip('/')}/{path.lstrip('/')}")


async def ensure_directory(directory: str | os.PathLike[str]) -> None:
    """Create ``directory`` and any missing parents; existing ones are fine."""

    await asyncio.to_thread(os.makedirs, os.fspath(directory), exist_ok=True)


def serialize_json(data: Any) -> str:
    """Pretty-print ``data`` as JSON with two-space indentation."""

    return json.dumps(_normalize(data), indent=JSON_INDENT, ensure_ascii=False)


def _normalize(data: Any) -> Any:
    if hasattr(data, "model_dump"):
        return data.model_dump(mode="json")
    if is_dataclass(data) and not isinstance(data, type):
        return asdict(data)
    return data


def _write_text(target: Path, content: str) -> None:
    with target.open("w", encoding="utf-8") as handle:
        handle.write(content)


def _read_text(target: Path) -> str:
    with target.open("r", encoding="utf-8") as handle:
        return handle.read()


async def write_json_to_path(
    *,
    path: str,
    data: Any,
    cache_directory: str | os.PathLike[str] | None = None,
) -> Path:
    """Write ``data`` as pretty JSON to ``path`` inside the cache.

    Missing parent directories are created first, in a single recursive
    call. An existing file at the target is replaced. Returns the absolute
    path that was written.
    """

    target = resolve_path(cache_directory, path)
    await ensure_directory(target.parent)
    content = serialize_json(data)
    LOGGER.debug("Writing %s (%d chars)", target, len(content))
    await asyncio.to_thread(_write_text, target, content)
    return target


async def symlink(
    *,
    source_path: str,
    destination_path: str,
    cache_directory: str | os.PathLike[str] | None = None,
) -> Path:
    """Link ``destination_path`` to ``source_path``, both cache-relative.

    The link stores the absolute source path, so it resolves from any depth
    but breaks if the cache directory is moved. An existing destination is
    not replaced; the filesystem error propagates.
    """

    source = resolve_path(cache_directory, source_path).absolute()
    destination = resolve_path(cache_directory, destination_path)
    await ensure_directory(destination.parent)
    LOGGER.debug("Linking %s -> %s", destination, source)
    await asyncio.to_thread(os.symlink, os.fspath(source), os.fspath(destination))
    return destination


async def walk_directory(
    *,
    path: str,
    iteratee: Iteratee,
    cache_directory: str | os.PathLike[str] | None = None,
) -> None:
    """Deliver every file under the ``path`` subtree to ``iteratee``.

    Symlinks are followed, so an index of links yields the content of the
    artifacts it points at. ``iteratee`` receives a ``WalkedFile`` once per
    file; when it returns an awaitable that is awaited too. Siblings are
    processed concurrently and no ordering is guaranteed.

    A missing root, an unreadable entry, a broken link, an entry that is not
    a directory or regular file, or a failing ``iteratee`` fails the walk
    with the original exception. Pending sibling visits are cancelled first,
    so ``iteratee`` is not called again once the walk has raised.
    """

    root = resolve_path(cache_directory, path)
    LOGGER.debug("Walking %s", root)
    await _walk(root, iteratee)


async def _walk(directory: Path, iteratee: Iteratee) -> None:
    names = await asyncio.to_thread(os.listdir, directory)
    tasks = [asyncio.ensure_future(_visit(directory / name, iteratee)) for name in names]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        # first failure wins; siblings must not keep delivering files
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _visit(entry: Path, iteratee: Iteratee) -> None:
    kind = await asyncio.to_thread(classify_entry, entry)
    if kind is EntryKind.SYMLINK:
        kind = await asyncio.to_thread(_classify_target, entry)
    if kind is EntryKind.DIRECTORY:
        await _walk(entry, iteratee)
        return
    data = await asyncio.to_thread(_read_text, entry)
    result = iteratee(WalkedFile(file_path=str(entry), data=data))
    if inspect.isawaitable(result):
        await result


def classify_entry(entry: Path) -> EntryKind:
    """Classify ``entry`` without following a final symlink."""

    mode = os.lstat(entry).st_mode
    if stat.S_ISLNK(mode):
        return EntryKind.SYMLINK
    return _kind_from_mode(entry, mode)


def _classify_target(entry: Path) -> EntryKind:
    # os.stat follows the link and raises FileNotFoundError when it is broken
    return _kind_from_mode(entry, os.stat(entry).st_mode)


def _kind_from_mode(entry: Path, mode: int) -> EntryKind:
    if stat.S_ISDIR(mode):
        return EntryKind.DIRECTORY
    if stat.S_ISREG(mode):
        return EntryKind.FILE
    raise UnsupportedEntryError(errno.EINVAL, "Not a directory, regular file or symlink", os.fspath(entry))
