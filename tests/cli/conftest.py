"""Fixtures for CLI interface tests."""

from __future__ import annotations

import json
import os
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from tests.conftest import BASIC_SNAPSHOT
from trellis.cli import cli


@pytest.fixture
def cli_in_project(
    tmp_path: Path, cli_runner: CliRunner, monkeypatch: pytest.MonkeyPatch
) -> Generator[tuple[CliRunner, Path], None, None]:
    """Initialize a trellis project in tmp_path and return (runner, project_root)."""
    monkeypatch.delenv("TRELLIS_ACTOR", raising=False)
    original_cwd = os.getcwd()
    os.chdir(str(tmp_path))
    result = cli_runner.invoke(cli, ["init", "--prefix", "test"])
    assert result.exit_code == 0
    yield cli_runner, tmp_path
    os.chdir(original_cwd)


@pytest.fixture
def seeded_project(cli_in_project: tuple[CliRunner, Path]) -> tuple[CliRunner, Path]:
    """Project with tenant ``acme`` (admin ``alice``) holding the basic snapshot."""
    runner, root = cli_in_project
    (root / "items.json").write_text(json.dumps(BASIC_SNAPSHOT))
    for args in (
        ["tenant", "create", "Acme Corp", "--id", "acme"],
        ["tenant", "grant-admin", "acme", "alice"],
        ["item", "import", "acme", "items.json"],
    ):
        result = runner.invoke(cli, args)
        assert result.exit_code == 0, result.output
    return runner, root
