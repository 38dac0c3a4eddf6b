"""Contract implemented by package manager backends."""
from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from ..models import Repository, Resolvable, ResolvableStatus, Service, TransactBy


class PackageManager(Protocol):
    """Operations the tracker and committer drive against the package manager.

    The source-table calls (save, finish, restore, load) are stateful and
    order-sensitive; callers must issue them sequentially.
    """

    def list_repositories(self) -> Sequence[Repository]:
        """Return the currently configured repositories."""
        ...

    def list_services(self) -> Sequence[Service]:
        """Return the currently configured services."""
        ...

    def enable_repository(self, repo: Repository) -> None:
        """Enable *repo*."""
        ...

    def disable_repository(self, repo: Repository) -> None:
        """Disable *repo*."""
        ...

    def delete_repository(self, repo: Repository) -> None:
        """Delete *repo*."""
        ...

    def set_repository_url(self, repo: Repository, url: str) -> None:
        """Point *repo* at *url*."""
        ...

    def delete_service(self, alias: str) -> None:
        """Delete the service registered under *alias*."""
        ...

    def save_all_sources(self) -> None:
        """Persist all repository metadata."""
        ...

    def finish_all_sources(self) -> None:
        """Unload the in-memory source table."""
        ...

    def restore_sources(self) -> None:
        """Re-read the persisted repositories and services."""
        ...

    def load_sources(self) -> None:
        """Load (refresh) the restored sources."""
        ...

    def find_resolvables(
        self,
        *,
        status: ResolvableStatus,
        transact_by: TransactBy,
    ) -> Sequence[Resolvable]:
        """Return resolvables matching *status* and *transact_by*."""
        ...

    def install_resolvable(self, name: str, kind: str) -> bool:
        """Select the resolvable *name* of *kind* for installation."""
        ...


__all__ = ["PackageManager"]
