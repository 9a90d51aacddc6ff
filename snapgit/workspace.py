import os

from . import types

IGNORE = ('.snapgit', '.git', 'venv', '.idea')


class PathspecError(Exception):
    def __init__(self, pathspec: str):
        self.pathspec = pathspec
        super().__init__(f"pathspec '{pathspec}' did not match any files")


def is_ignored(path: types.Path) -> bool:
    return path.split('/')[0] in IGNORE


def _normalize(path: str) -> types.Path:
    return os.path.relpath(path).replace('\\', '/')  # windows fix


def list_files(path: str) -> list[types.Path]:
    """
    Expand ``path`` into the workspace files it names, relative to the cwd.

    A file names itself and a directory names every file beneath it,
    excluding the ignored top-level names. Paths that do not exist or fall
    outside the workspace raise PathspecError.
    """
    if not os.path.exists(path):
        raise PathspecError(path)
    normalized = _normalize(path)
    if normalized == '..' or normalized.startswith('../'):
        raise PathspecError(path)

    if os.path.isfile(path):
        return [] if is_ignored(normalized) else [normalized]

    result = []
    for root, dirnames, filenames in os.walk(path):
        dirnames[:] = [d for d in dirnames if not is_ignored(_normalize(f'{root}/{d}'))]
        for filename in filenames:
            file_path = _normalize(f'{root}/{filename}')
            if is_ignored(file_path) or not os.path.isfile(file_path):
                continue
            result.append(file_path)
    return sorted(result, key=os.fsencode)


def read_file(path: types.Path) -> bytes:
    with open(path, 'rb') as f:
        return f.read()


def stat_file(path: types.Path) -> os.stat_result:
    return os.stat(path)
