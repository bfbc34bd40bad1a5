import os

import pytest

from wsgiward.config import Settings
from wsgiward.secrets import SecretStager


def current_owner(user):
    return os.getuid(), os.getgid()


def make_raw(name="blog", **extra):
    raw = {
        "name": name,
        "root": f"/srv/{name}",
        "module": f"{name}.wsgi:application",
        "keysFile": f"/etc/wsgiward/{name}.env",
    }
    raw.update(extra)
    return raw


@pytest.fixture
def runtime_dir(tmp_path):
    run = tmp_path / "run"
    run.mkdir(mode=0o755)
    return run


@pytest.fixture
def stager(runtime_dir):
    return SecretStager(str(runtime_dir), owner_lookup=current_owner)


@pytest.fixture
def settings(tmp_path, runtime_dir):
    return Settings(home=str(tmp_path / "home"), runtime_dir=str(runtime_dir))


@pytest.fixture
def secrets_dir(tmp_path):
    d = tmp_path / "secrets"
    d.mkdir()
    return d


@pytest.fixture
def write_secrets(secrets_dir):
    def _write(name, content="SECRET_KEY=abc\nDB_PASSWORD=hunter2\n"):
        path = secrets_dir / f"{name}.env"
        path.write_text(content)
        return path
    return _write
