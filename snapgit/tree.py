from typing import Iterable, Iterator

from . import data
from .objects import Blob, Tree


def build_tree(blobs: Iterable[Blob]) -> Tree:
    """
    Nest path-labelled blobs into directories and hash them bottom-up.

    Directories are plain dicts until every blob is placed; only then is
    each one turned into a ``Tree``, children first, so a ``Tree`` never
    exists without its final hash.
    """
    blobs_as_tree = {}
    for blob in sorted(blobs, key=lambda b: (b.path, b.oid, b.data)):
        *dirpath, filename = blob.path.split('/')
        current = blobs_as_tree
        # Find the dict for the directory of this file
        for dirname in dirpath:
            current = current.setdefault(dirname, {})
            if not isinstance(current, dict):
                raise ValueError(f'{blob.path} is beneath a tracked file')
        if isinstance(current.get(filename), dict):
            raise ValueError(f'{blob.path} is already a directory')
        current[filename] = blob

    def build_tree_recursive(tree_dict) -> Tree:
        return Tree({name: build_tree_recursive(value) if isinstance(value, dict) else value
                     for name, value in tree_dict.items()})

    return build_tree_recursive(blobs_as_tree)


def iter_objects(tree: Tree) -> Iterator[Blob | Tree]:
    """Yield every distinct object under ``tree`` with children before parents, ``tree`` last."""
    visited = set()

    def iter_objects_in_tree(tree_):
        for child in tree_.entries.values():
            if child.oid in visited:
                continue
            if isinstance(child, Tree):
                yield from iter_objects_in_tree(child)
            else:
                visited.add(child.oid)
                yield child
        visited.add(tree_.oid)
        yield tree_

    yield from iter_objects_in_tree(tree)


def write_tree(tree: Tree) -> Tree:
    for obj in iter_objects(tree):
        data.store(obj.oid, obj.content)
    return tree
