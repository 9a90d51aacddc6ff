import logging
import os
import re
import zlib
from contextlib import contextmanager

from . import types
from .index import Index
from .objects import decode_object, encode_object, hash_content

logger = logging.getLogger(__name__)

GIT_DIR: str | None = None


@contextmanager
def change_git_dir(new_dir):
    global GIT_DIR
    old_dir = GIT_DIR
    GIT_DIR = f'{new_dir}/.snapgit'
    try:
        yield
    finally:
        GIT_DIR = old_dir


def init():
    assert GIT_DIR is not None
    os.makedirs(f'{GIT_DIR}/objects', exist_ok=True)
    os.makedirs(f'{GIT_DIR}/refs', exist_ok=True)


def object_path(oid: types.OID) -> str:
    return f'{GIT_DIR}/objects/{oid[:2]}/{oid[2:]}'


def store(oid: types.OID, content: bytes):
    """
    Write ``content`` under ``oid`` unless an object is already there.

    Objects are immutable, so an existing file is taken as-is without
    re-reading it. Any OSError while creating the directory or writing is
    left to the caller.
    """
    path = object_path(oid)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    try:
        out = open(path, 'xb')
    except FileExistsError:
        logger.debug('Object %s already stored', oid)
        return
    with out:
        out.write(zlib.compress(content, zlib.Z_BEST_SPEED))
    logger.debug('Stored object %s (%d bytes)', oid, len(content))


def hash_object(data: bytes, type_: types.ObjectType = 'blob') -> types.OID:
    content = encode_object(type_, data)
    oid = hash_content(content)
    store(oid, content)
    return oid


def _read_object(oid: types.OID) -> tuple[types.ObjectType, bytes]:
    with open(object_path(oid), 'rb') as f:
        return decode_object(zlib.decompress(f.read()))


def get_object(oid: types.OID, expected: types.ObjectType | None = 'blob') -> bytes:
    type_, payload = _read_object(oid)
    if expected is not None and type_ != expected:
        raise ValueError(f'Expected {expected}, got {type_}')
    return payload


def get_object_type(oid: types.OID) -> types.ObjectType:
    return _read_object(oid)[0]


def update_head(oid: types.OID):
    with open(f'{GIT_DIR}/HEAD', 'w') as f:
        f.write(oid)


def read_head() -> types.OID | None:
    head_path = f'{GIT_DIR}/HEAD'
    if not os.path.isfile(head_path):
        return None
    with open(head_path) as f:
        value = f.read().strip()
    if not re.fullmatch(r'[0-9a-f]{40}', value):
        raise ValueError(f'HEAD does not hold an object id: {value!r}')
    return value


def index_path() -> str:
    return f'{GIT_DIR}/index'


def read_index() -> Index:
    return Index.load(index_path())


@contextmanager
def get_index():
    index = read_index()
    yield index
    index.persist(index_path())
