"""Process exit codes returned by the ``upgrepo`` command."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """How an ``upgrepo`` invocation ended."""

    OK = 0
    # Bad configuration or arguments, e.g. an alias that is not tracked.
    VALIDATION = 2
    # Registry or snapshot files that cannot be read or written.
    ENVIRONMENT = 3
    # zypper failed or produced unreadable output.
    PROVIDER = 4


__all__ = ["ExitCode"]
