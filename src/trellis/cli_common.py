"""Shared CLI helpers.

Provides ``get_db()``, ``default_actor()`` and ``fail()`` so that ``cli.py``
and the ``cli_commands/*.py`` modules can use them without circular imports.
"""

from __future__ import annotations

import json as json_mod
import os
import sys
from typing import NoReturn

import click

from trellis.core import (
    DB_FILENAME,
    TRELLIS_DIR_NAME,
    TrellisDB,
    find_trellis_root,
    read_config,
)
from trellis.errors import TrellisError
from trellis.logging import DEFAULT_LOG_LEVEL, setup_logging
from trellis.presets import DEFAULT_PRESET_KEY

ACTOR_ENV_VAR = "TRELLIS_ACTOR"


def get_db() -> TrellisDB:
    """Discover .trellis/ and return an initialized TrellisDB."""
    try:
        trellis_dir = find_trellis_root()
    except FileNotFoundError:
        click.echo(f"No {TRELLIS_DIR_NAME}/ found. Run 'trellis init' first.", err=True)
        sys.exit(1)
    config = read_config(trellis_dir)
    setup_logging(trellis_dir, level=config.get("log_level", DEFAULT_LOG_LEVEL))
    db = TrellisDB(
        trellis_dir / DB_FILENAME,
        prefix=config.get("prefix", "trellis"),
        default_preset=config.get("default_preset", DEFAULT_PRESET_KEY),
    )
    db.initialize()
    return db


def default_actor() -> str:
    """Actor from $TRELLIS_ACTOR, then config.json, then ``cli``."""
    env_actor = os.environ.get(ACTOR_ENV_VAR)
    if env_actor:
        return env_actor
    try:
        config = read_config(find_trellis_root())
    except FileNotFoundError:
        return "cli"
    return config.get("actor") or "cli"


def fail(error: str | Exception, *, as_json: bool = False) -> NoReturn:
    """Report an error and exit 1. TrellisErrors carry their code into JSON output."""
    if as_json:
        payload: dict[str, str] = {"error": str(error)}
        if isinstance(error, TrellisError):
            payload["code"] = error.code
        click.echo(json_mod.dumps(payload))
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)
