"""
Tests for the command-line entry point (no traffic is sent).
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from cacheload.main import EXIT_USAGE, _build_parser, load_plan, main


def test_parser_defaults():
    args = _build_parser().parse_args([])
    assert args.profile == "performance"
    assert args.plan is None
    assert args.base_url is None
    assert args.tick is None


def test_profile_and_plan_are_exclusive():
    with pytest.raises(SystemExit):
        _build_parser().parse_args(["--profile", "spike", "--plan", "plan.json"])


def test_load_builtin_profile():
    plan = load_plan(_build_parser().parse_args(["--profile", "spike"]))
    assert plan.name == "spike"
    assert plan.phases.open_phase == "recovery"


def test_load_plan_file(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(
        """
        {"name": "file-plan",
         "scenarios": [{"name": "s", "executor": "per-worker-iterations",
                        "workers": 1, "iterations": 1,
                        "workloads": {"default": {"patterns": [
                            {"name": "metrics", "path": "/api/cache/metrics/report"}]}}}]}
        """,
        encoding="utf-8",
    )
    plan = load_plan(_build_parser().parse_args(["--plan", str(path)]))
    assert plan.name == "file-plan"


def test_invalid_plan_exits_before_running(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text('{"name": "bad", "scenarios": []}', encoding="utf-8")
    assert main(["--plan", str(path)]) == EXIT_USAGE
    assert main(["--plan", str(tmp_path / "missing.json")]) == EXIT_USAGE
