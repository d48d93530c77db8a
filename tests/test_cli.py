"""Tests for the command line entry point."""

import json
import os
import sys
import tempfile

import pytest
import yaml

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Import main — it needs PROJECT_ROOT on sys.path
sys.path.insert(0, os.path.join(PROJECT_ROOT, "cmd", "cdbplan"))
from main import create_app, main

from cdbplan.controlplane.factory import get_control_plane, set_control_plane
from cdbplan.controlplane.memory import MemoryControlPlane

TIERS_FILE = os.path.join(PROJECT_ROOT, "config", "tiers.yaml")


@pytest.fixture(autouse=True)
def temp_db():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    set_control_plane(None)
    os.unlink(path)


def _run(temp_db, *args):
    return main(["--db", temp_db, "--backend", "memory", *args])


def test_apply_prints_result(temp_db, capsys):
    assert _run(temp_db, "apply", "--policy", TIERS_FILE, "--activate") == 0
    result = json.loads(capsys.readouterr().out)
    assert result["plan"] == "newcdb_plan"
    assert result["state"] == "ACTIVE"
    assert get_control_plane().get_active_plan() == "newcdb_plan"


def test_apply_with_script_backend_prints_statements(temp_db, capsys):
    assert main(["--db", temp_db, "--backend", "script", "apply", "--policy", TIERS_FILE, "--activate"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("exec DBMS_RESOURCE_MANAGER.CREATE_PENDING_AREA();")
    assert "SUBMIT_PENDING_AREA" in out
    assert "RESOURCE_MANAGER_PLAN = 'newcdb_plan'" in out
    assert "CREATE LOCKDOWN PROFILE GOLD;" in out


def test_drift_exit_status(temp_db, capsys):
    assert _run(temp_db, "drift", "--policy", TIERS_FILE) == 1
    items = json.loads(capsys.readouterr().out)
    assert items[0]["kind"] == "plan"


def test_plans(temp_db, capsys):
    assert _run(temp_db, "plans") == 0
    assert "DEFAULT_CDB_PLAN" in capsys.readouterr().out


def test_render_to_stdout(capsys):
    assert main(["render", "--policy", TIERS_FILE, "--activate"]) == 0
    out = capsys.readouterr().out
    assert "CREATE_CDB_PLAN" in out
    assert "RESOURCE_MANAGER_PLAN = 'newcdb_plan'" in out


def test_render_to_file(tmp_path):
    output = tmp_path / "newcdb_plan.sql"
    assert main(["render", "--policy", TIERS_FILE, "--output", str(output)]) == 0
    assert "SUBMIT_PENDING_AREA" in output.read_text(encoding="utf-8")


def test_invalid_policy_exit_status(temp_db, tmp_path):
    policy = tmp_path / "bad.yaml"
    policy.write_text(yaml.safe_dump({"tiers": {"gold": {"shares": 0, "utilization_limit": 10,
                                                         "parallel_server_limit": 10}}}))
    assert _run(temp_db, "apply", "--policy", str(policy)) == 2
    assert main(["render", "--policy", str(policy)]) == 2


def test_create_app_registers_admin_api(temp_db):
    app = create_app(control_plane=MemoryControlPlane(), db_path=temp_db)
    app.config["TESTING"] = True
    with app.test_client() as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["backend"] == "memory"
