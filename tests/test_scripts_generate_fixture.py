"""Tests for the fixture generator script."""

import importlib.util
from pathlib import Path

import pytest
from click.testing import CliRunner

from chatlog_ingest.parser import parse_file_info

SCRIPT = Path(__file__).parent.parent / "scripts" / "generate_fixture.py"


@pytest.fixture(scope="module")
def generate_fixture():
    """Load the script as a module."""
    spec = importlib.util.spec_from_file_location("generate_fixture", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize(
    ("fmt", "file_name", "format_id"),
    [
        ("chatlab-jsonl", "out.jsonl", "chatlab_jsonl"),
        ("chatlab-json", "out.json", "chatlab_json"),
        ("generic-jsonl", "out.jsonl", "generic_jsonl"),
    ],
)
def test_writes_detectable_fixture(generate_fixture, tmp_path: Path, fmt: str, file_name: str, format_id: str) -> None:
    output = tmp_path / file_name

    result = CliRunner().invoke(
        generate_fixture.main, [str(output), "--format", fmt, "--messages", "20", "--members", "3"]
    )

    assert result.exit_code == 0, result.output
    assert f"Wrote {fmt} fixture" in result.output
    info = parse_file_info(output)
    assert info.format == format_id
    assert info.message_count == 20
    assert info.member_count <= 3


def test_same_seed_same_output(generate_fixture, tmp_path: Path) -> None:
    runner = CliRunner()
    for name in ("a.jsonl", "b.jsonl"):
        runner.invoke(generate_fixture.main, [str(tmp_path / name), "--messages", "5", "--seed", "3"])

    assert (tmp_path / "a.jsonl").read_text() == (tmp_path / "b.jsonl").read_text()
