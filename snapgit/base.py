import logging
import string
import time
from typing import Iterable, Iterator

from . import config, data, tree, types, workspace
from .index import IndexMetadata
from .objects import Blob, Commit, Tree, parse_commit, parse_tree

logger = logging.getLogger(__name__)


def init():
    data.init()


def add(paths: Iterable[str]) -> list[types.Path]:
    """Store every file named by ``paths`` and stage it; the index is written once at the end."""
    # Expand everything first so a bad pathspec leaves the index untouched
    expanded = [path for name in paths for path in workspace.list_files(name)]

    with data.get_index() as index:
        for path in expanded:
            blob = Blob(path, workspace.read_file(path))
            data.store(blob.oid, blob.content)
            index.add(path, blob.oid, IndexMetadata.from_stat(workspace.stat_file(path)))
    return expanded


def get_staged_blobs() -> list[Blob]:
    return [Blob(entry.path, data.get_object(entry.oid), executable=entry.metadata.executable)
            for entry in data.read_index().entries()]


def write_tree() -> Tree:
    """Build the tree of everything staged and store it, children before parents."""
    return tree.write_tree(tree.build_tree(get_staged_blobs()))


def commit(message: str, author: types.Author | None = None,
           timestamp: int | None = None, tz_offset: str | None = None) -> Commit:
    root = write_tree()

    if author is None:
        author = config.get_author()
    if timestamp is None:
        timestamp = int(time.time())
    if tz_offset is None:
        tz_offset = config.get_tz_offset(timestamp)

    commit_ = Commit(tree=root.oid, parent=data.read_head(), author=author,
                     timestamp=timestamp, tz_offset=tz_offset, message=message)
    data.store(commit_.oid, commit_.content)
    data.update_head(commit_.oid)
    logger.debug('HEAD is now %s', commit_.oid)
    return commit_


def get_commit(oid: types.OID) -> Commit:
    return parse_commit(data.get_object(oid, 'commit'))


def get_tree(oid: types.OID) -> list[types.TreeRecord]:
    return parse_tree(data.get_object(oid, 'tree'))


def iter_commits(oid: types.OID | None) -> Iterator[tuple[types.OID, Commit]]:
    while oid:
        commit_ = get_commit(oid)
        yield oid, commit_
        oid = commit_.parent


def get_oid(name: str) -> types.OID:
    if name in ('@', 'HEAD'):
        oid = data.read_head()
        if oid is None:
            raise ValueError('HEAD does not point at a commit yet')
        return oid

    is_hex = all(c in string.hexdigits for c in name)
    if len(name) == 40 and is_hex:
        return name.lower()

    raise ValueError(f'Unknown name {name}')
