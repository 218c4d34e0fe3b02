"""Command-line entry point tests."""
from __future__ import annotations

import json

import pytest

from deployer.deploy import cli, job
from deployer.reconciler.errors import OwnershipConflictError, StageFailedError
from deployer.reconciler.orchestrator import DeploymentOutcome
from deployer.reconciler.types import UNCHANGED, ReconciliationResult


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "resolved.json"
    path.write_text(json.dumps({"website": {"domainName": "www.example.com", "directory": str(tmp_path)}}))
    return path


def test_deploy_writes_reports(monkeypatch, tmp_path, config_file):
    captured = {}

    def fake_run_deploy(config, *, skip, session, settings):
        captured["skip"] = skip
        outcome = DeploymentOutcome(kind="website", domain_name=config.domain_name)
        outcome.results["hosted-zone"] = ReconciliationResult(
            resource=config.domain_name, kind="Route 53 hosted zone", action=UNCHANGED, identifier="Z1"
        )
        return outcome

    monkeypatch.setattr(job, "run_deploy", fake_run_deploy)
    out = tmp_path / "out" / "summary.json"
    csv_path = tmp_path / "out" / "stages.csv"

    code = cli.main(
        ["deploy", "--config", str(config_file), "--skip", "content", "--out", str(out), "--csv", str(csv_path)]
    )

    assert code == 0
    assert captured["skip"] == ["content"]
    assert json.loads(out.read_text())["summary"]["unchanged"] == 1
    assert csv_path.read_text().startswith("stage,kind")


def test_deploy_failure_exits_non_zero(monkeypatch, capsys, config_file):
    def failing_run_deploy(config, **_kwargs):
        cause = OwnershipConflictError(
            "Cannot modify a S3 bucket that was not originally created by this tool",
            resource="www.example.com",
            identifier="www.example.com",
        )
        raise StageFailedError("bucket", cause)

    monkeypatch.setattr(job, "run_deploy", failing_run_deploy)

    code = cli.main(["deploy", "--config", str(config_file)])

    assert code == 1
    assert "Stage 'bucket' failed" in capsys.readouterr().err


def test_missing_configuration_file(capsys, tmp_path):
    code = cli.main(["deploy", "--config", str(tmp_path / "missing.json")])

    assert code == 1
    assert "does not exist" in capsys.readouterr().err
