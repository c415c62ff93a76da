"""Allow ``python -m stampede``."""

from __future__ import annotations

from stampede.cli.app import app

app()
