"""
Blob Storage Backend

Filesystem storage backend for blob get, set, delete and list operations.

Writes go to a temporary file in the destination directory and are moved into
place with ``os.replace``, content first and metadata second, so a reader
sees either the previous object or the new one and never metadata without
content. Mutations of the same key are serialized with per-key asyncio locks;
blocking filesystem calls run in the default executor.

Author: LocalBlobs Contributors
Date: 2025
"""

import asyncio
import functools
import hashlib
import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, BinaryIO, Callable, Dict, Hashable, List, Optional, Set

from pydantic import ValidationError

from .exceptions import BlobNotFoundError, MissingKeyError, StorageIOError
from .models import (
    DEFAULT_CONTENT_TYPE,
    BlobAddress,
    BlobItem,
    BlobRecord,
    ListResult,
    LocalPaths,
    Operation,
)
from .paths import CONTENT_SUFFIX, METADATA_SUFFIX, PathResolver, encode_segment


logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class KeyLocks:
    """Per-key asyncio locks, discarded once nobody holds or awaits them."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, identity: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._users[identity] = self._users.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[identity] -= 1
            if not self._users[identity]:
                del self._users[identity]
                del self._locks[identity]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class BlobReader:
    """An opened blob, streamed to the client and closed afterwards."""

    record: BlobRecord
    size: int
    _handle: BinaryIO
    _run: Callable
    chunk_size: int = DEFAULT_CHUNK_SIZE

    async def stream(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await self._run(self._handle.read, self.chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await self._run(self._handle.close)

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self.stream()])


class FilesystemBackend:
    """
    Blob storage on the local filesystem.

    Layout below the storage root::

        <site>/<store>/<key segment>/.../<last segment>.blob
        <site>/<store>/<key segment>/.../<last segment>.meta.json
    """

    def __init__(self, resolver: PathResolver, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._resolver = resolver
        self._chunk_size = chunk_size
        self._locks = KeyLocks()

    @property
    def root(self) -> Path:
        return self._resolver.root

    async def _run(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _paths_for(self, operation: Operation, address: BlobAddress) -> LocalPaths:
        if not address.key:
            raise MissingKeyError(operation.value)
        return self._resolver.local_paths(address)

    # ========== Read ==========

    async def open_blob(self, address: BlobAddress) -> BlobReader:
        """
        Open a blob for streaming.

        The file handle is opened before returning, so a concurrent replace or
        delete does not affect a read already in progress.

        Raises:
            MissingKeyError: If the address has no key
            BlobNotFoundError: If the blob does not exist
            StorageIOError: On any other filesystem failure
        """
        paths = self._paths_for(Operation.GET, address)
        try:
            handle = await self._run(open, paths.content_path, "rb")
        except FileNotFoundError:
            raise BlobNotFoundError(address.key)
        except OSError as e:
            raise StorageIOError(f"Failed to open blob '{address.key}': {e}") from e

        try:
            size = (await self._run(os.fstat, handle.fileno())).st_size
            record = await self._run(_read_record, paths.metadata_path) or BlobRecord()
        except BaseException:
            await self._run(handle.close)
            raise

        return BlobReader(record=record, size=size, _handle=handle, _run=self._run, chunk_size=self._chunk_size)

    async def get_blob(self, address: BlobAddress) -> bytes:
        """Read a whole blob into memory."""
        reader = await self.open_blob(address)
        return await reader.read()

    async def get_metadata(self, address: BlobAddress) -> BlobRecord:
        """
        Read a blob's metadata record.

        Raises:
            BlobNotFoundError: If neither the sidecar nor the content exists
        """
        paths = self._paths_for(Operation.GET_METADATA, address)
        record = await self._run(_read_record, paths.metadata_path)
        if record is not None:
            return record

        # Content written but sidecar not yet, or written by hand
        if await self._run(paths.content_path.is_file):
            return BlobRecord()
        raise BlobNotFoundError(address.key)

    # ========== Write ==========

    async def set_blob(
        self,
        address: BlobAddress,
        chunks: AsyncIterator[bytes],
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BlobRecord:
        """
        Store a blob from an async byte stream.

        The body is spooled into a temporary file next to the destination;
        only the final rename and the sidecar write happen under the key lock.
        If the stream fails (for example the client disconnects) the temporary
        file is removed and the previous object stays intact.

        Returns:
            The stored metadata record
        """
        paths = self._paths_for(Operation.SET, address)
        content_path = paths.content_path

        try:
            await self._run(content_path.parent.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to create directory for '{address.key}': {e}") from e

        temp_path = _temp_path(content_path)
        digest = hashlib.md5(usedforsecurity=False)
        committed = False
        try:
            handle = await self._run(open, temp_path, "wb")
            try:
                async for chunk in chunks:
                    if chunk:
                        digest.update(chunk)
                        await self._run(handle.write, chunk)
                await self._run(_flush_and_sync, handle)
            finally:
                await self._run(handle.close)

            record = BlobRecord(
                content_type=content_type or DEFAULT_CONTENT_TYPE,
                etag=digest.hexdigest(),
                metadata=metadata or {},
            )

            async with self._locks.hold(address.identity()):
                await self._run(os.replace, temp_path, content_path)
                committed = True
                await self._run(_write_atomic, paths.metadata_path, record.model_dump_json().encode("utf-8"))
        except OSError as e:
            raise StorageIOError(f"Failed to write blob '{address.key}': {e}") from e
        finally:
            if not committed:
                await self._run(_discard, temp_path)

        logger.debug(f"Stored blob {address.site_id}/{address.store_name}/{address.key}")
        return record

    async def delete_blob(self, address: BlobAddress) -> None:
        """
        Delete a blob. Deleting a missing blob succeeds.

        The sidecar goes first, best effort, then the content.

        Raises:
            MissingKeyError: If the address has no key (nothing is touched)
            StorageIOError: If the content cannot be removed for a reason other than absence
        """
        paths = self._paths_for(Operation.DELETE, address)

        async with self._locks.hold(address.identity()):
            await self._run(_discard, paths.metadata_path)
            try:
                await self._run(os.remove, paths.content_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageIOError(f"Failed to delete blob '{address.key}': {e}") from e

    # ========== List ==========

    async def list_blobs(
        self,
        address: BlobAddress,
        prefix: str = "",
        directories: bool = False,
    ) -> ListResult:
        """
        List the blobs of a store.

        Args:
            address: Store address (any key is ignored)
            prefix: Only keys starting with this string
            directories: Collapse keys continuing past the prefix with "/" into
                directory entries instead of listing them

        Returns:
            ListResult with keys sorted; a store that does not exist is empty
        """
        paths = self._resolver.local_paths(
            BlobAddress(site_id=address.site_id, store_name=address.store_name)
        )
        try:
            items = await self._run(_scan_store, paths.store_path, prefix)
        except OSError as e:
            raise StorageIOError(f"Failed to list store '{address.store_name}': {e}") from e

        result = ListResult()
        found_directories: Set[str] = set()
        for item in items:
            if directories:
                rest = item.key[len(prefix):]
                separator = rest.find("/")
                if separator >= 0:
                    found_directories.add(prefix + rest[:separator])
                    continue
            result.blobs.append(item)

        result.directories = sorted(found_directories)
        return result


def _temp_path(content_path: Path) -> Path:
    # Encoded names never contain '.', so this cannot clash with a blob or directory
    return content_path.with_name(f".{content_path.name}.{uuid.uuid4().hex}.tmp")


def _flush_and_sync(handle: BinaryIO) -> None:
    handle.flush()
    os.fsync(handle.fileno())


def _write_atomic(path: Path, data: bytes) -> None:
    temp_path = _temp_path(path)
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
            _flush_and_sync(f)
        os.replace(temp_path, path)
    except BaseException:
        _discard(temp_path)
        raise


def _discard(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Could not remove {path}: {e}")


def _read_record(path: Path) -> Optional[BlobRecord]:
    """Read a metadata sidecar; None if it does not exist."""
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageIOError(f"Failed to read metadata: {e}") from e

    try:
        return BlobRecord.model_validate_json(raw)
    except ValidationError as e:
        raise StorageIOError(f"Corrupt metadata sidecar {path.name}: {e}") from e


def _scan_start(store_path: Path, prefix: str) -> Path:
    """Deepest directory that can hold keys starting with ``prefix``."""
    complete = prefix.split("/")[:-1]
    if any(part in ("", ".", "..") for part in complete):
        return store_path
    return store_path.joinpath(*(encode_segment(part) for part in complete))


def _scan_store(store_path: Path, prefix: str) -> List[BlobItem]:
    items: List[BlobItem] = []
    for directory, _, files in os.walk(_scan_start(store_path, prefix)):
        for name in files:
            if name.startswith(".") or not name.endswith(CONTENT_SUFFIX):
                continue
            content_path = Path(directory) / name
            key = PathResolver.key_from_content_path(store_path, content_path)
            if not key.startswith(prefix):
                continue
            try:
                stat = content_path.stat()
            except FileNotFoundError:
                # Deleted while listing
                continue
            record = _read_record(content_path.with_name(name[:-len(CONTENT_SUFFIX)] + METADATA_SUFFIX))
            items.append(BlobItem(
                key=key,
                etag=(record.etag if record and record.etag else ""),
                size=stat.st_size,
                last_modified=_format_timestamp(stat.st_mtime),
            ))
    items.sort(key=lambda item: item.key)
    return items


def _format_timestamp(epoch: float) -> str:
    moment = datetime.fromtimestamp(epoch, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
