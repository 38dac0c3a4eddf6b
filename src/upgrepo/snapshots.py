"""Point-in-time snapshots of the repository setup taken during an upgrade.

Two snapshots are kept in the state registry:

``original-setup.yml``
    The repositories and services of the system before the upgrade started.
``new-setup.yml``
    The setup configured for the target system (e.g. services added by
    registration) together with the products selected for the upgrade.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from .models import Repository, Service
from .state import StateRegistry

if TYPE_CHECKING:
    from .providers.base import PackageManager

ORIGINAL_SETUP_FILE = "original-setup.yml"
NEW_SETUP_FILE = "new-setup.yml"


class SnapshotError(RuntimeError):
    """Raised when a stored snapshot cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class RepositorySetup:
    """Immutable list of repositories, services and selected products."""

    repositories: tuple[Repository, ...] = ()
    services: tuple[Service, ...] = ()
    products: tuple[str, ...] = ()
    captured_at: str | None = None

    @property
    def service_names(self) -> list[str]:
        """Return the names of the services in this setup."""
        return [service.name for service in self.services]

    @property
    def is_empty(self) -> bool:
        """Return ``True`` when nothing was recorded."""
        return not (self.repositories or self.services or self.products)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "captured_at": self.captured_at,
            "repositories": [repo.to_dict() for repo in self.repositories],
            "services": [service.to_dict() for service in self.services],
            "products": list(self.products),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, object], *, source: str = "snapshot") -> RepositorySetup:
        """Build a setup from registry data, validating every entry."""
        try:
            repositories = tuple(
                Repository.from_mapping(entry)
                for entry in _entries(data, "repositories", source)
            )
            services = tuple(
                Service.from_mapping(entry) for entry in _entries(data, "services", source)
            )
        except ValueError as exc:
            raise SnapshotError(f"Invalid {source}: {exc}") from exc

        raw_products = data.get("products") or []
        if not isinstance(raw_products, list):
            raise SnapshotError(f"Invalid {source}: 'products' must be a list.")
        captured_at = data.get("captured_at")
        return cls(
            repositories=repositories,
            services=services,
            products=tuple(str(item) for item in raw_products),
            captured_at=str(captured_at) if captured_at else None,
        )


def _entries(data: Mapping[str, object], key: str, source: str) -> list[Mapping[str, object]]:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise SnapshotError(f"Invalid {source}: '{key}' must be a list.")
    entries: list[Mapping[str, object]] = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise SnapshotError(f"Invalid {source}: {key}[{index}] must be a mapping.")
        entries.append(item)
    return entries


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


class SetupSnapshots:
    """Read and record the original and new setup snapshots."""

    def __init__(self, registry: StateRegistry) -> None:
        """Store the registry backing the snapshots."""
        self.registry = registry

    @property
    def original(self) -> RepositorySetup:
        """Return the setup recorded before the upgrade started."""
        return self._load(ORIGINAL_SETUP_FILE)

    @property
    def new(self) -> RepositorySetup:
        """Return the setup recorded for the target system."""
        return self._load(NEW_SETUP_FILE)

    def record_original(
        self,
        repositories: Iterable[Repository],
        services: Iterable[Service],
    ) -> RepositorySetup:
        """Persist the pre-upgrade setup."""
        return self._store(ORIGINAL_SETUP_FILE, repositories, services, ())

    def record_new(
        self,
        repositories: Iterable[Repository],
        services: Iterable[Service],
        products: Iterable[str] = (),
    ) -> RepositorySetup:
        """Persist the target setup and the products selected for it."""
        return self._store(NEW_SETUP_FILE, repositories, services, products)

    def clear(self) -> list[str]:
        """Remove both snapshots, returning the names of the removed files."""
        return [
            name for name in (ORIGINAL_SETUP_FILE, NEW_SETUP_FILE) if self.registry.remove(name)
        ]

    # ------------------------------------------------------------------
    def _load(self, name: str) -> RepositorySetup:
        data = self.registry.read_mapping(name)
        return RepositorySetup.from_mapping(data, source=str(self.registry.path_for(name)))

    def _store(
        self,
        name: str,
        repositories: Iterable[Repository],
        services: Iterable[Service],
        products: Iterable[str],
    ) -> RepositorySetup:
        setup = RepositorySetup(
            repositories=tuple(repositories),
            services=tuple(services),
            products=tuple(products),
            captured_at=_timestamp(),
        )
        self.registry.write(name, setup.to_dict())
        return setup


def capture_setup(
    package_manager: PackageManager,
    products: Sequence[str] = (),
) -> RepositorySetup:
    """Return the current repositories and services as an unsaved setup."""
    return RepositorySetup(
        repositories=tuple(package_manager.list_repositories()),
        services=tuple(package_manager.list_services()),
        products=tuple(products),
        captured_at=_timestamp(),
    )


__all__ = [
    "NEW_SETUP_FILE",
    "ORIGINAL_SETUP_FILE",
    "RepositorySetup",
    "SetupSnapshots",
    "SnapshotError",
    "capture_setup",
]
