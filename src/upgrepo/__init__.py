"""Track and apply repository decisions for a system upgrade.

:mod:`upgrepo.manager` holds the change tracker and :mod:`upgrepo.committer`
applies it; :mod:`upgrepo.cli` wires both to zypper.
"""
from __future__ import annotations

__all__ = ["__version__"]

# Keep in sync with ``pyproject.toml``.
__version__ = "0.1.0"
