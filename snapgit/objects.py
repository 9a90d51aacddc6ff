"""
Canonical encodings for the three object kinds: blobs, trees and commits.

Every object has a ``content`` (the exact bytes that are hashed and stored)
and an ``oid`` (the hex sha1 of ``content``). Both are computed once, when
the object is created, and never change afterwards.
"""
import hashlib
import os
import re
from typing import Mapping

from . import types
from .types import Author, TreeRecord

EXECUTABLE_MODE = '100755'
REGULAR_MODE = '100644'
DIRECTORY_MODE = '40000'

OID_SIZE = 20

_IDENTITY_RE = re.compile(r'^(?P<name>.*) <(?P<email>[^<>]*)> (?P<seconds>\d+) (?P<tz>[+-]\d{4})$')


def encode_object(type_: types.ObjectType, payload: bytes) -> bytes:
    return f'{type_} {len(payload)}\x00'.encode() + payload


def hash_content(content: bytes) -> types.OID:
    return hashlib.sha1(content).hexdigest()


def decode_object(content: bytes) -> tuple[types.ObjectType, bytes]:
    """Split stored object bytes into their type and payload, checking the size header."""
    header, sep, payload = content.partition(b'\x00')
    if not sep:
        raise ValueError('Object header is not NUL terminated')
    type_, _, size = header.decode().partition(' ')
    if type_ not in ('blob', 'tree', 'commit'):
        raise ValueError(f'Unknown object type {type_!r}')
    if not size.isdigit() or int(size) != len(payload):
        raise ValueError(f'Object size {size!r} does not match payload length {len(payload)}')
    return type_, payload


class Blob:
    type_ = 'blob'

    def __init__(self, path: types.Path, data: bytes, executable: bool = False):
        self.path = path
        self.data = data
        self.executable = executable
        self.content = encode_object('blob', data)
        self.oid = hash_content(self.content)

    @property
    def name(self) -> str:
        return self.path.rsplit('/', 1)[-1]

    @property
    def mode(self) -> types.Mode:
        return EXECUTABLE_MODE if self.executable else REGULAR_MODE

    def __repr__(self):
        return f'Blob(path={self.path!r}, oid={self.oid!r})'


class Tree:
    """
    A directory whose children are all finalized.

    Children are either ``Tree`` or ``Blob`` instances keyed by their name
    inside this directory; they are kept in byte-wise name order, which is
    also the order of the encoded records.
    """
    type_ = 'tree'
    mode = DIRECTORY_MODE

    def __init__(self, entries: Mapping[str, 'Tree | Blob']):
        for name in entries:
            if not name or '/' in name or '\x00' in name:
                raise ValueError(f'Invalid tree entry name {name!r}')
        self.entries = dict(sorted(entries.items(), key=lambda item: os.fsencode(item[0])))
        payload = b''.join(
            f'{child.mode} '.encode() + os.fsencode(name) + b'\x00' + bytes.fromhex(child.oid)
            for name, child in self.entries.items()
        )
        self.content = encode_object('tree', payload)
        self.oid = hash_content(self.content)

    def records(self) -> list[TreeRecord]:
        return [TreeRecord(mode=child.mode, name=name, oid=child.oid)
                for name, child in self.entries.items()]

    def __repr__(self):
        return f'Tree(oid={self.oid!r}, entries={list(self.entries)!r})'


def parse_tree(payload: bytes) -> list[TreeRecord]:
    records = []
    pos = 0
    while pos < len(payload):
        space = payload.find(b' ', pos)
        nul = payload.find(b'\x00', space + 1)
        if space == -1 or nul == -1 or nul + 1 + OID_SIZE > len(payload):
            raise ValueError(f'Truncated tree record at offset {pos}')
        mode = payload[pos:space].decode()
        if mode not in (EXECUTABLE_MODE, REGULAR_MODE, DIRECTORY_MODE):
            raise ValueError(f'Unknown tree entry mode {mode}')
        name = os.fsdecode(payload[space + 1:nul])
        oid = payload[nul + 1:nul + 1 + OID_SIZE].hex()
        records.append(TreeRecord(mode=mode, name=name, oid=oid))
        pos = nul + 1 + OID_SIZE
    return records


class Commit:
    type_ = 'commit'

    def __init__(self, tree: types.OID, parent: types.OID | None, author: Author,
                 timestamp: int, tz_offset: str, message: str):
        if not re.fullmatch(r'[+-]\d{4}', tz_offset):
            raise ValueError(f'Invalid timezone offset {tz_offset!r}')
        self.tree = tree
        self.parent = parent
        self.author = author
        self.timestamp = timestamp
        self.tz_offset = tz_offset
        self.message = message

        # committer is always the author
        identity = f'{author} {timestamp} {tz_offset}'
        data = f'tree {tree}\n'
        if parent:
            data += f'parent {parent}\n'
        data += f'author {identity}\n'
        data += f'committer {identity}\n'
        data += '\n'
        data += message

        self.content = encode_object('commit', data.encode())
        self.oid = hash_content(self.content)

    def __repr__(self):
        return f'Commit(oid={self.oid!r}, tree={self.tree!r}, parent={self.parent!r})'


def _parse_identity(value: str) -> tuple[Author, int, str]:
    match = _IDENTITY_RE.match(value)
    if match is None:
        raise ValueError(f'Malformed identity line {value!r}')
    author = Author(name=match['name'], email=match['email'])
    return author, int(match['seconds']), match['tz']


def parse_commit(payload: bytes) -> Commit:
    headers, sep, message = payload.decode().partition('\n\n')
    if not sep:
        raise ValueError('Commit has no message separator')

    fields = {}
    for line in headers.splitlines():
        key, _, value = line.partition(' ')
        if key not in ('tree', 'parent', 'author', 'committer') or key in fields:
            raise ValueError(f'Unexpected commit field {key}')
        fields[key] = value

    if 'tree' not in fields or 'author' not in fields:
        raise ValueError('Commit is missing its tree or author')
    if fields.get('committer', fields['author']) != fields['author']:
        raise ValueError('Commits with a distinct committer are not supported')
    author, timestamp, tz_offset = _parse_identity(fields['author'])
    return Commit(tree=fields['tree'], parent=fields.get('parent'), author=author,
                  timestamp=timestamp, tz_offset=tz_offset, message=message)
