"""Command registration for the dupelink CLI."""
from __future__ import annotations

from typing import Iterable

from . import run, status

COMMAND_MODULES: Iterable = (run, status)

__all__ = ["COMMAND_MODULES"]
