"""CLI 命令测试。"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

from insightos.__main__ import main
from insightos.dataops.hashing import hash_rows


def _write_csv(tmp_path: Path) -> Path:
    path = tmp_path / "people.csv"
    path.write_text("name,age\nAlice,30\nAlice,30\nBob,\n", encoding="utf-8")
    return path


def test_cli_start_invokes_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []

    def fake_run(*args: object, **kwargs: object) -> None:
        calls.append({"args": args, **kwargs})

    monkeypatch.setitem(sys.modules, "uvicorn", SimpleNamespace(run=fake_run))

    ret = main(["start", "--port", "9001", "--host", "0.0.0.0"])
    assert ret == 0
    assert calls[0]["args"] == ("insightos.app:create_app",)
    assert calls[0]["factory"] is True
    assert calls[0]["port"] == 9001
    assert calls[0]["host"] == "0.0.0.0"


def test_cli_inspect_prints_schema(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write_csv(tmp_path)
    ret = main(["inspect", str(path)])
    assert ret == 0
    result = json.loads(capsys.readouterr().out)
    assert result["rows"] == 3
    assert [c["name"] for c in result["columns"]] == ["name", "age"]
    assert result["columns"][1]["type"] == "number"
    expected = hash_rows([{"name": "Alice", "age": 30}, {"name": "Alice", "age": 30}, {"name": "Bob", "age": ""}])
    assert result["version_hash"] == expected


def test_cli_inspect_missing_file(tmp_path: Path) -> None:
    assert main(["inspect", str(tmp_path / "nope.csv")]) == 1


def test_cli_transform_writes_output(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write_csv(tmp_path)
    output = tmp_path / "out.json"
    ret = main(["transform", str(path), "--op", "DEDUPLICATE", "--op", "fill_nulls", "-o", str(output)])
    assert ret == 0
    result = json.loads(capsys.readouterr().out)
    assert result["version"] == 2
    assert result["rows_before"] == 3
    assert result["rows_after"] == 2
    assert result["modifications"] == 2
    assert json.loads(output.read_text(encoding="utf-8")) == [
        {"name": "Alice", "age": 30},
        {"name": "Bob", "age": 0},
    ]


def test_cli_transform_with_params(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write_csv(tmp_path)
    ret = main(["transform", str(path), "--op", 'DELETE_ROWS:{"indices": [0, 1]}'])
    assert ret == 0
    assert json.loads(capsys.readouterr().out)["rows_after"] == 1


def test_cli_transform_guardrail(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write_csv(tmp_path)
    ret = main(["transform", str(path), "--op", "DELETE_ROWS"])
    assert ret == 1
    assert "Safety Check Failed" in capsys.readouterr().out


def test_cli_transform_rejects_unknown_op(tmp_path: Path) -> None:
    path = _write_csv(tmp_path)
    with pytest.raises(SystemExit):
        main(["transform", str(path), "--op", "EXPLODE"])
