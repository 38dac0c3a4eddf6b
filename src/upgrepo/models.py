"""Domain records shared by the tracker, committer and package manager providers."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

RepositoryKey = str


class RepoStatus(str, Enum):
    """Final decision for an old repository."""

    REMOVED = "removed"
    ENABLED = "enabled"
    DISABLED = "disabled"

    def next(self) -> RepoStatus:
        """Return the status following this one in the toggle cycle."""
        return REPO_STATUS_TRANSITIONS[self]


# Keep this a closed cycle: three steps return to the starting status.
REPO_STATUS_TRANSITIONS: Mapping[RepoStatus, RepoStatus] = {
    RepoStatus.REMOVED: RepoStatus.ENABLED,
    RepoStatus.ENABLED: RepoStatus.DISABLED,
    RepoStatus.DISABLED: RepoStatus.REMOVED,
}


class ResolvableStatus(str, Enum):
    """Selection status of a package manager resolvable."""

    AVAILABLE = "available"
    INSTALLED = "installed"
    SELECTED = "selected"
    REMOVED = "removed"


class TransactBy(str, Enum):
    """Who requested the transaction of a resolvable, lowest priority first."""

    SOLVER = "solver"
    APPL_LOW = "appl_low"
    APPL_HIGH = "appl_high"
    USER = "user"


@dataclass(slots=True, eq=False)
class Repository:
    """A configured package source known to the package manager.

    Instances are mutable; lookups always go through :attr:`key` so changes to
    the URL or the enabled flag never affect identity. ``repo_id`` is the
    position in the package manager listing and shifts when repositories are
    added, so only the alias identifies a repository across listings.
    """

    repo_id: int
    repo_alias: str
    name: str
    url: str
    raw_url: str
    enabled: bool = True
    autorefresh: bool = True

    @property
    def key(self) -> RepositoryKey:
        """Return the identity of the repository."""
        return self.repo_alias

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.repo_id,
            "alias": self.repo_alias,
            "name": self.name,
            "url": self.url,
            "raw_url": self.raw_url,
            "enabled": self.enabled,
            "autorefresh": self.autorefresh,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> Repository:
        """Build a repository from a registry mapping."""
        alias = _require_str(data, "alias")
        raw_id = data.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, (int, str)):
            raise ValueError(f"Repository '{alias}' has an invalid id: {raw_id!r}")
        try:
            repo_id = int(raw_id)
        except ValueError as exc:
            raise ValueError(f"Repository '{alias}' has an invalid id: {raw_id!r}") from exc
        url = _require_str(data, "url")
        raw_url = data.get("raw_url")
        return cls(
            repo_id=repo_id,
            repo_alias=alias,
            name=str(data.get("name") or alias),
            url=url,
            raw_url=str(raw_url) if raw_url else url,
            enabled=bool(data.get("enabled", True)),
            autorefresh=bool(data.get("autorefresh", True)),
        )


@dataclass(slots=True, eq=False)
class Service:
    """A remote service that manages one or more repositories."""

    service_alias: str
    name: str
    url: str
    enabled: bool = True
    autorefresh: bool = True

    @property
    def alias(self) -> str:
        """Return the service alias used by the package manager."""
        return self.service_alias

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "alias": self.service_alias,
            "name": self.name,
            "url": self.url,
            "enabled": self.enabled,
            "autorefresh": self.autorefresh,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> Service:
        """Build a service from a registry mapping."""
        alias = _require_str(data, "alias")
        return cls(
            service_alias=alias,
            name=str(data.get("name") or alias),
            url=str(data.get("url") or ""),
            enabled=bool(data.get("enabled", True)),
            autorefresh=bool(data.get("autorefresh", True)),
        )


@dataclass(slots=True)
class RepoState:
    """Pending decision for a single tracked repository."""

    status: RepoStatus = RepoStatus.REMOVED
    url: str | None = None


@dataclass(frozen=True, slots=True)
class Resolvable:
    """A package manager entity (e.g. a product) that can be selected."""

    name: str
    kind: str = "product"
    status: ResolvableStatus = ResolvableStatus.AVAILABLE
    transact_by: TransactBy = TransactBy.SOLVER


def _require_str(data: Mapping[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing or empty '{key}' in entry: {dict(data)!r}")
    return value.strip()


__all__ = [
    "REPO_STATUS_TRANSITIONS",
    "RepoState",
    "RepoStatus",
    "Repository",
    "RepositoryKey",
    "Resolvable",
    "ResolvableStatus",
    "Service",
    "TransactBy",
]
