"""Command-line entry point."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest

from binfinder import cli
from binfinder.models import DiffRecord, ImageOutcome, ImageStatus, RunReport
from binfinder.store import DiffStore


def test_no_mode_prints_usage(capsys: pytest.CaptureFixture) -> None:
    assert cli.main([]) == 2
    assert "--images" in capsys.readouterr().out


def test_analyze_writes_csv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    store = DiffStore(str(tmp_path / "data"))
    (tmp_path / "data").mkdir()
    store.save(DiffRecord("a", ("/usr/bin/sed", "/opt/x")))
    store.save(DiffRecord("b", ("/usr/bin/sed",)))

    assert cli.main(["--analyze", "--output", "data"]) == 0

    with open(tmp_path / "analysis.csv", newline="") as f:
        rows = list(csv.reader(f))
    assert rows == [["binary", "count"], ["/usr/bin/sed", "2"], ["/opt/x", "1"]]


def test_output_dir_failure_is_fatal(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("")
    assert cli.main(["--analyze", "--output", str(blocker / "data")]) == 1


def test_requires_docker_daemon(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli.DockerExecutor, "is_daemon_running", lambda self: False)
    assert cli.main(["--images", "alpine", "--output", str(tmp_path)]) == 1


def test_images_run_orchestrator(tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
                                 capsys: pytest.CaptureFixture) -> None:
    seen = {}

    class StubOrchestrator:
        def __init__(self, executor, config):
            seen["config"] = config

        def run(self, images):
            seen["images"] = list(images)
            return RunReport([ImageOutcome(image=i, status=ImageStatus.SKIPPED,
                                           error="sentinel image") for i in images])

    monkeypatch.setattr(cli.DockerExecutor, "is_daemon_running", lambda self: True)
    monkeypatch.setattr(cli, "Orchestrator", StubOrchestrator)

    code = cli.main(["--images", "alpine:3.18, ,busybox", "--output", str(tmp_path),
                     "--workers", "3", "--linux-fallback", "unknown", "--no-pull"])

    assert code == 0
    assert seen["images"] == ["alpine:3.18", "busybox"]
    assert seen["config"].workers == 3
    assert seen["config"].generic_linux_fallback == "unknown"
    assert seen["config"].pull_images is False
    assert "skipped: 2" in capsys.readouterr().out


def test_bad_config_file(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("workers: 0\n")
    assert cli.main(["--analyze", "--config", str(bad)]) == 1
