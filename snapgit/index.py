"""
The staging index: the set of paths queued for the next commit.

On-disk layout, all integers big-endian:

    header   b'DIRC', version 2, entry count                 (4 + 4 + 4 bytes)
    entry    ctime, ctime_nsec, mtime, mtime_nsec, dev, ino,
             mode, uid, gid, size                             (10 x 4 bytes)
             oid                                              (20 bytes)
             flags = min(len(path), 0xFFF)                    (2 bytes)
             path, NUL, zero padding to a multiple of 8
    trailer  sha1 of every byte before it                     (20 bytes)

Entries are written sorted by the byte value of their path. The whole file
is rewritten on every ``persist``; nothing is appended in place.
"""
import hashlib
import logging
import os
import re
import struct
import tempfile
from typing import Iterator, NamedTuple

from typing_extensions import Self

from . import types

logger = logging.getLogger(__name__)

SIGNATURE = b'DIRC'
VERSION = 2
MAX_PATH_SIZE = 0xFFF
ENTRY_BLOCK = 8
INDEX_FILE_MODE = 0o644

REGULAR_MODE = 0o100644
EXECUTABLE_MODE = 0o100755

_HEADER = struct.Struct('>4sLL')
_ENTRY = struct.Struct('>10L20sH')
_CHECKSUM_SIZE = 20
_UINT32_MASK = 0xFFFFFFFF


class CorruptIndexError(Exception):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f'Corrupt index file {path}: {reason}')


class IndexMetadata(NamedTuple):
    ctime: int = 0
    ctime_nsec: int = 0
    mtime: int = 0
    mtime_nsec: int = 0
    dev: int = 0
    ino: int = 0
    mode: int = REGULAR_MODE
    uid: int = 0
    gid: int = 0
    size: int = 0

    @classmethod
    def from_stat(cls, st: os.stat_result) -> Self:
        """Snapshot ``st``, truncating every field to 32 bits and keeping only the executable bit of the mode."""
        ctime, ctime_nsec = divmod(st.st_ctime_ns, 1_000_000_000)
        mtime, mtime_nsec = divmod(st.st_mtime_ns, 1_000_000_000)
        fields = cls(
            ctime=ctime,
            ctime_nsec=ctime_nsec,
            mtime=mtime,
            mtime_nsec=mtime_nsec,
            dev=st.st_dev,
            ino=st.st_ino,
            mode=EXECUTABLE_MODE if st.st_mode & 0o111 else REGULAR_MODE,
            uid=st.st_uid,
            gid=st.st_gid,
            size=st.st_size,
        )
        return cls(*(value & _UINT32_MASK for value in fields))

    @property
    def executable(self) -> bool:
        return self.mode == EXECUTABLE_MODE


class IndexEntry(NamedTuple):
    path: types.Path
    oid: types.OID
    metadata: IndexMetadata


def parent_directories(path: types.Path) -> list[types.Path]:
    """'a/b/c.txt' -> ['a', 'a/b']"""
    parts = path.split('/')[:-1]
    return ['/'.join(parts[:i]) for i in range(1, len(parts) + 1)]


def _sort_key(path: types.Path) -> bytes:
    return os.fsencode(path)


def _pack_entry(entry: IndexEntry) -> bytes:
    path = os.fsencode(entry.path)
    data = _ENTRY.pack(*entry.metadata, bytes.fromhex(entry.oid), min(len(path), MAX_PATH_SIZE))
    data += path
    # At least one NUL always follows the path
    padding = ENTRY_BLOCK - len(data) % ENTRY_BLOCK
    return data + b'\x00' * padding


def _unpack_entry(data: bytes, pos: int, filename: str) -> tuple[IndexEntry, int]:
    start = pos
    try:
        *fields, raw_oid, flags = _ENTRY.unpack_from(data, pos)
    except struct.error as e:
        raise CorruptIndexError(filename, f'truncated entry at offset {pos}') from e
    pos += _ENTRY.size

    length = flags & MAX_PATH_SIZE
    if length < MAX_PATH_SIZE:
        end = pos + length
        if data[end:end + 1] != b'\x00':
            raise CorruptIndexError(filename, f'path at offset {pos} is not NUL terminated')
    else:
        # The real length did not fit in the flags, scan for the terminator instead
        end = data.find(b'\x00', pos)
        if end == -1:
            raise CorruptIndexError(filename, f'path at offset {pos} is not NUL terminated')
    path = os.fsdecode(data[pos:end])
    pos = end + 1

    padding_size = -(pos - start) % ENTRY_BLOCK
    padding = data[pos:pos + padding_size]
    if len(padding) != padding_size or any(padding):
        raise CorruptIndexError(filename, f'bad padding after {path!r}')
    pos += padding_size

    entry = IndexEntry(path=path, oid=raw_oid.hex(), metadata=IndexMetadata(*fields))
    return entry, pos


class Index:
    def __init__(self):
        self._entries: dict[types.Path, IndexEntry] = {}
        # directory -> every tracked path beneath it, at any depth.
        # Derived from _entries and only ever changed by _update_children.
        self._children: dict[types.Path, set[types.Path]] = {}

    @classmethod
    def load(cls, path: str) -> Self:
        """
        Read the index at ``path``; a missing file is an empty index.

        Raises CorruptIndexError on a bad signature or version, a truncated
        or malformed entry, entries out of order, or a checksum mismatch.
        """
        index = cls()
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except FileNotFoundError:
            return index

        try:
            signature, version, count = _HEADER.unpack_from(data)
        except struct.error as e:
            raise CorruptIndexError(path, 'truncated header') from e
        if signature != SIGNATURE:
            raise CorruptIndexError(path, f'bad signature {signature!r}')
        if version != VERSION:
            raise CorruptIndexError(path, f'unsupported version {version}')

        pos = _HEADER.size
        previous = None
        for _ in range(count):
            entry, pos = _unpack_entry(data, pos, path)
            if previous is not None and _sort_key(entry.path) <= _sort_key(previous):
                raise CorruptIndexError(path, f'{entry.path!r} is out of order')
            index._store_entry(entry)
            previous = entry.path

        checksum = data[pos:]
        if len(checksum) != _CHECKSUM_SIZE or checksum != hashlib.sha1(data[:pos]).digest():
            raise CorruptIndexError(path, 'checksum mismatch')

        logger.debug('Loaded %d index entries from %s', count, path)
        return index

    def add(self, path: types.Path, oid: types.OID, metadata: IndexMetadata):
        if not re.fullmatch(r'[0-9a-f]{40}', oid):
            raise ValueError(f'Not a lowercase hex object id: {oid!r}')
        for field, value in metadata._asdict().items():
            if not 0 <= value <= _UINT32_MASK:
                raise ValueError(f'{field} of {path} does not fit in 32 bits: {value}')
        logger.info('Adding %s to index', path)
        self._discard_conflicts(path)
        self._store_entry(IndexEntry(path=path, oid=oid, metadata=metadata))

    def _discard_conflicts(self, path: types.Path):
        # A file tracked where path needs a directory
        for dirname in parent_directories(path):
            self._remove_entry(dirname)
        # A tracked directory where path needs a file
        for child in list(self._children.get(path, ())):
            self._remove_entry(child)

    def _store_entry(self, entry: IndexEntry):
        self._entries[entry.path] = entry
        self._update_children(entry.path, tracked=True)

    def _remove_entry(self, path: types.Path):
        if self._entries.pop(path, None) is None:
            return
        logger.debug('Removing %s from index', path)
        self._update_children(path, tracked=False)

    def _update_children(self, path: types.Path, tracked: bool):
        for dirname in parent_directories(path):
            if tracked:
                self._children.setdefault(dirname, set()).add(path)
                continue
            children = self._children[dirname]
            children.discard(path)
            if not children:
                del self._children[dirname]

    def paths(self) -> list[types.Path]:
        return sorted(self._entries, key=_sort_key)

    def entries(self) -> list[IndexEntry]:
        return [self._entries[path] for path in self.paths()]

    def tracked_under(self, dirname: types.Path) -> set[types.Path]:
        return set(self._children.get(dirname, ()))

    def persist(self, path: str):
        """Serialize every entry and atomically replace the file at ``path``."""
        entries = self.entries()
        data = _HEADER.pack(SIGNATURE, VERSION, len(entries))
        data += b''.join(_pack_entry(entry) for entry in entries)
        data += hashlib.sha1(data).digest()

        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path) or '.', prefix='.index-')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.chmod(tmp_path, INDEX_FILE_MODE)
            os.replace(tmp_path, path)
        except Exception:
            os.unlink(tmp_path)
            raise
        logger.debug('Wrote %d index entries to %s', len(entries), path)

    def __len__(self):
        return len(self._entries)

    def __iter__(self) -> Iterator[types.Path]:
        return iter(self.paths())

    def __contains__(self, path):
        return path in self._entries

    def __getitem__(self, path: types.Path) -> IndexEntry:
        return self._entries[path]
