import json
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from conftest import current_owner
from wsgiward.cli.main import main


@pytest.fixture
def cli_env(tmp_path, runtime_dir):
    with patch("wsgiward.secrets.stage.lookup_system_owner", current_owner):
        yield {"WSGIWARD_HOME": str(tmp_path / "home"), "WSGIWARD_RUNTIME_DIR": str(runtime_dir)}


@pytest.fixture
def declaration(tmp_path, write_secrets):
    def _write(apps):
        path = tmp_path / "apps.yaml"
        data = {"applications": {
            name: {"root": f"/srv/{name}", "module": f"{name}.wsgi", "keysFile": str(write_secrets(name)), **extra}
            for name, extra in apps.items()
        }}
        path.write_text(yaml.safe_dump(data))
        return str(path)
    return _write


def invoke(env, *args):
    return CliRunner().invoke(main, list(args), env=env)


def test_validate(cli_env, declaration):
    result = invoke(cli_env, "validate", declaration({"blog": {}, "shop": {"port": 8001}}))
    assert result.exit_code == 0
    assert "2 application(s) valid" in result.output


def test_validate_rejects_conflicts(cli_env, declaration):
    result = invoke(cli_env, "validate", declaration({"blog": {}, "shop": {}}))
    assert result.exit_code == 1
    assert "already claimed by blog" in result.output


def test_validate_missing_file(cli_env, tmp_path):
    assert invoke(cli_env, "validate", str(tmp_path / "missing.yaml")).exit_code == 1


def test_reconcile_and_inspect(cli_env, declaration, runtime_dir, tmp_path):
    result = invoke(cli_env, "reconcile", declaration({"blog": {"django": {"settings": "blog.settings"}}}))
    assert result.exit_code == 0, result.output
    assert (runtime_dir / "blog" / "wsgi-secrets").exists()

    result = invoke(cli_env, "names")
    assert result.output.split() == ["blog"]

    result = invoke(cli_env, "show", "blog")
    assert result.exit_code == 0
    assert json.loads(result.output)["unit_name"] == "wsgi-blog"

    result = invoke(cli_env, "unit", "blog")
    assert "[Service]" in result.output
    assert "User=blog" in result.output

    out = tmp_path / "out"
    result = invoke(cli_env, "render", "--out", str(out))
    assert result.exit_code == 0
    assert (out / "systemd" / "wsgi-blog.service").exists()
    assert (out / "bin" / "manage-django-blog").exists()

    result = invoke(cli_env, "events", "--tail", "1")
    assert "REGISTRY_SWAPPED" in result.output


def test_reconcile_json(cli_env, declaration):
    result = invoke(cli_env, "reconcile", "--json", declaration({"blog": {}}))
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["applications"] == ["blog"]
    assert data["removed"] == []


def test_reconcile_failure_exit_code(cli_env, declaration, tmp_path):
    path = declaration({"blog": {"keysFile": str(tmp_path / "missing.env")}})
    result = invoke(cli_env, "reconcile", path)
    assert result.exit_code == 1
    assert invoke(cli_env, "names").exit_code == 1


def test_removal_and_decommission(cli_env, declaration, runtime_dir):
    invoke(cli_env, "reconcile", declaration({"blog": {}, "shop": {"port": 8001}}))
    result = invoke(cli_env, "reconcile", declaration({"blog": {}}))
    assert "wsgiward decommission shop" in result.output
    assert (runtime_dir / "shop").exists()

    assert invoke(cli_env, "decommission", "blog").exit_code == 1
    result = invoke(cli_env, "decommission", "shop")
    assert result.exit_code == 0
    assert not (runtime_dir / "shop").exists()


def test_show_unknown(cli_env, declaration):
    invoke(cli_env, "reconcile", declaration({"blog": {}}))
    assert invoke(cli_env, "show", "nope").exit_code == 1
