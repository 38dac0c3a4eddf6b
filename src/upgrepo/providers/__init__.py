"""Package manager providers for upgrepo."""
from __future__ import annotations

from .base import PackageManager
from .zypper import ZypperError, ZypperProvider

__all__ = [
    "PackageManager",
    "ZypperError",
    "ZypperProvider",
]
