"""CLI tests: argument parsing, timeline tooling and the selftest entry point."""

import json
import subprocess
import sys
from pathlib import Path

import pytest

from mesmerclock.cli import build_parser, main
from mesmerclock.session import TimelineModel


@pytest.fixture
def log_args(tmp_path):
    return ["--log-file", str(tmp_path / "cli.log"), "--log-level", "WARNING"]


@pytest.fixture
def timeline_file(tmp_path):
    model = TimelineModel(name="Evening", duration_minutes=5)
    start = model.add_start("flash", 0)
    model.add_stop(start, 3)
    model.add_start("spiral", 2)
    path = tmp_path / "evening.json"
    model.save(path)
    return path


def test_parser_knows_all_commands():
    parser = build_parser()
    for argv in (["selftest"], ["features"], ["window"], ["run"], ["timeline", "--load", "x.json"]):
        assert parser.parse_args(argv).command == argv[0]


def test_run_diag_flag():
    parser = build_parser()
    assert parser.parse_args(["run"]).diag is False
    assert parser.parse_args(["run", "--diag"]).diag is True


def test_no_command_prints_help(capsys, log_args):
    assert main(log_args) == 0
    assert "usage" in capsys.readouterr().out.lower()


def test_features_json(capsys, log_args):
    assert main(["features", "--json"] + log_args) == 0
    data = json.loads(capsys.readouterr().out)
    ids = {d["id"] for d in data}
    assert {"flash", "spiral", "pink_filter"} <= ids


def test_timeline_validate(capsys, log_args, timeline_file):
    assert main(["timeline", "--load", str(timeline_file), "--validate"] + log_args) == 0
    assert "'Evening' is valid" in capsys.readouterr().out


def test_timeline_stats_json(capsys, log_args, timeline_file):
    assert main(["timeline", "--load", str(timeline_file), "--stats", "--json"] + log_args) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["segments"] == 2
    assert payload["duration_minutes"] == 5
    assert payload["xp"] > 0


def test_timeline_simulate_json(capsys, log_args, timeline_file):
    assert main(["timeline", "--load", str(timeline_file), "--simulate", "--json"] + log_args) == 0
    outcome = json.loads(capsys.readouterr().out)
    assert outcome["state"] == "COMPLETED"
    assert [(t["minute"], t["feature_id"], t["kind"]) for t in outcome["transitions"]] == [
        (0, "flash", "start"),
        (2, "spiral", "start"),
        (3, "flash", "stop"),
    ]
    assert outcome["xp"] > 0


def test_timeline_missing_file(capsys, log_args, tmp_path):
    assert main(["timeline", "--load", str(tmp_path / "nope.json")] + log_args) == 1
    assert "not found" in capsys.readouterr().out


def test_timeline_invalid_file(capsys, log_args, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"name": "bad", "duration_minutes": 0, "events": []}), encoding="utf-8")
    assert main(["timeline", "--load", str(path), "--validate"] + log_args) == 1


@pytest.mark.parametrize(
    "at, days, expected",
    [
        ("2024-01-01T10:00", None, "inside"),
        ("2024-01-01T17:00", None, "outside"),
        ("2024-01-01T10:00", "tue,wed", "outside"),
    ],
)
def test_window(capsys, log_args, at, days, expected):
    argv = ["window", "--start", "09:00", "--end", "17:00", "--at", at] + log_args
    if days:
        argv += ["--days", days]
    assert main(argv) == 0
    assert capsys.readouterr().out.strip() == expected


def test_window_bad_timestamp(capsys, log_args):
    assert main(["window", "--at", "yesterday"] + log_args) == 1


@pytest.mark.slow
def test_selftest_subprocess(tmp_path):
    proc = subprocess.run(
        [sys.executable, "-m", "mesmerclock", "selftest", "--log-file", str(tmp_path / "s.log")],
        cwd=Path(__file__).resolve().parents[2],
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert proc.returncode == 0, proc.stderr
    assert "Selftest OK" in proc.stdout
