"""Tests for the best-effort session log summary reader."""
from __future__ import annotations

import json
import os

from vibebridge.engine.session_log import (
    latest_log_file,
    latest_session_summary,
    project_log_dir,
    sanitize_cwd,
)


def _write_log(directory, name, rows, mtime):
    path = directory / name
    path.write_text("\n".join(
        row if isinstance(row, str) else json.dumps(row) for row in rows
    ) + "\n")
    os.utime(path, (mtime, mtime))
    return path


def test_sanitize_cwd():
    assert sanitize_cwd("/Users/test/my.project") == "-Users-test-my-project"


def test_project_log_dir(tmp_path):
    assert project_log_dir("/a/b", tmp_path) == tmp_path / "projects" / "-a-b"


def test_summary_from_newest_non_empty_log(tmp_path):
    directory = project_log_dir("/work/app", tmp_path)
    directory.mkdir(parents=True)
    _write_log(directory, "old.jsonl", [{"summary": "old work"}], mtime=1000)
    _write_log(directory, "new.jsonl", [
        {"type": "user"},
        {"summary": "first summary"},
        "{not json",
        {"summary": "Refactored the parser"},
        {"type": "assistant"},
    ], mtime=2000)
    empty = directory / "empty.jsonl"
    empty.write_text("")
    os.utime(empty, (3000, 3000))

    assert latest_log_file("/work/app", tmp_path).name == "new.jsonl"
    assert latest_session_summary("/work/app", tmp_path) == "Refactored the parser"


def test_summary_absent(tmp_path):
    directory = project_log_dir("/work/app", tmp_path)
    directory.mkdir(parents=True)
    _write_log(directory, "a.jsonl", [{"type": "user"}, {"summary": 42}], mtime=1000)
    assert latest_session_summary("/work/app", tmp_path) is None


def test_missing_directory(tmp_path):
    assert latest_log_file("/nowhere", tmp_path) is None
    assert latest_session_summary("/nowhere", tmp_path) is None
