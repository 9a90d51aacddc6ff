import pytest

from snapgit import data


@pytest.fixture
def workspace_dir(tmp_path, monkeypatch):
    """An empty working directory that is also the cwd."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('SNAPGIT_AUTHOR_NAME', 'Test Author')
    monkeypatch.setenv('SNAPGIT_AUTHOR_EMAIL', 'author@example.com')
    monkeypatch.setenv('SNAPGIT_TZ_OFFSET', '+0000')
    return tmp_path


@pytest.fixture
def repo(workspace_dir):
    """An initialized repository in the cwd, selected as the current git dir."""
    with data.change_git_dir('.'):
        data.init()
        yield workspace_dir


def write(path, content=b'', mode=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if mode is not None:
        path.chmod(mode)
    return path
