"""Entry point for running the CLI as a module."""
from __future__ import annotations

from .cli import run

run()
