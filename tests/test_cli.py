"""Tests for the command-line entry point."""

import sys

import pytest

from velocity_verdict.__main__ import main


def _run(monkeypatch, *args: str) -> None:
    monkeypatch.setattr(sys, "argv", ["velocity_verdict", "run", *args])
    main()


class TestRunErrors:
    def test_invalid_json_exits_cleanly(self, tmp_path, monkeypatch, capsys):
        inventory = tmp_path / "inventory.json"
        inventory.write_text("{not json", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            _run(monkeypatch, "--inventory", str(inventory), "--store-id", "main-street")
        assert exc_info.value.code == 1
        assert "Error: Invalid JSON" in capsys.readouterr().err

    def test_missing_inventory_file(self, tmp_path, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc_info:
            _run(
                monkeypatch,
                "--inventory",
                str(tmp_path / "nope.json"),
                "--store-id",
                "main-street",
            )
        assert exc_info.value.code == 1
        assert "Error: Path not found" in capsys.readouterr().err

    def test_invalid_previous_snapshot_json(self, tmp_path, monkeypatch, capsys):
        inventory = tmp_path / "inventory.json"
        inventory.write_text("[]", encoding="utf-8")
        previous = tmp_path / "previous.json"
        previous.write_text("", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            _run(
                monkeypatch,
                "--inventory",
                str(inventory),
                "--store-id",
                "main-street",
                "--previous",
                str(previous),
            )
        assert exc_info.value.code == 1
        assert "Error: Invalid JSON" in capsys.readouterr().err


class TestRunJson:
    def test_empty_inventory(self, tmp_path, monkeypatch, capsys):
        inventory = tmp_path / "inventory.json"
        inventory.write_text('{"items": []}', encoding="utf-8")
        _run(
            monkeypatch,
            "--inventory",
            str(inventory),
            "--store-id",
            "main-street",
            "--events-dir",
            str(tmp_path / "events"),
            "--json",
        )
        out = capsys.readouterr().out
        assert '"verdict_type": "STABLE"' in out
