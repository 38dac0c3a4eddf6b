"""Apply the tracked repository decisions against the package manager.

The commit is a single sequential pass. Its ordering is an external contract
of the package manager: repository actions and service removals must be
persisted before the source table is unloaded, restored and loaded again, and
product selection can only be restored once the sources are loaded.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .models import Repository, RepoStatus, ResolvableStatus, Service, TransactBy

if TYPE_CHECKING:
    from .logging import OperationScope
    from .providers.base import PackageManager

LOGGER = logging.getLogger(__name__)


class RepoAction(str, Enum):
    """Terminal action issued for a tracked repository."""

    DELETE = "delete"
    ENABLE = "enable"
    DISABLE = "disable"

    @classmethod
    def for_status(cls, status: RepoStatus) -> RepoAction:
        """Return the action matching the final *status*."""
        return _STATUS_ACTIONS[status]


_STATUS_ACTIONS: dict[RepoStatus, RepoAction] = {
    RepoStatus.REMOVED: RepoAction.DELETE,
    RepoStatus.ENABLED: RepoAction.ENABLE,
    RepoStatus.DISABLED: RepoAction.DISABLE,
}


@dataclass(frozen=True, slots=True)
class RepoChange:
    """Final decision for one repository."""

    repository: Repository
    action: RepoAction
    url: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "alias": self.repository.repo_alias,
            "name": self.repository.name,
            "action": self.action.value,
            "url": self.url,
        }


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Everything a commit pass will do, in order."""

    repositories: tuple[RepoChange, ...] = ()
    services: tuple[Service, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "repositories": [change.to_dict() for change in self.repositories],
            "services": [service.alias for service in self.services],
        }


@dataclass(slots=True)
class ActivationResult:
    """Summary of a completed commit pass."""

    deleted: list[str] = field(default_factory=list)
    enabled: list[str] = field(default_factory=list)
    disabled: list[str] = field(default_factory=list)
    url_updates: dict[str, str] = field(default_factory=dict)
    services_deleted: list[str] = field(default_factory=list)
    products_reselected: list[str] = field(default_factory=list)
    products_failed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        """Return the number of repository and service mutations issued."""
        return (
            len(self.deleted)
            + len(self.enabled)
            + len(self.disabled)
            + len(self.url_updates)
            + len(self.services_deleted)
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "deleted": list(self.deleted),
            "enabled": list(self.enabled),
            "disabled": list(self.disabled),
            "url_updates": dict(self.url_updates),
            "services_deleted": list(self.services_deleted),
            "products_reselected": list(self.products_reselected),
            "products_failed": list(self.products_failed),
        }


class ActivationCommitter:
    """Issue the side effects of a :class:`ChangeSet` exactly once, in order."""

    def __init__(
        self,
        package_manager: PackageManager,
        *,
        operation: OperationScope | None = None,
    ) -> None:
        """Bind the committer to a package manager and optional log scope."""
        self.package_manager = package_manager
        self.operation = operation

    def apply(self, changes: ChangeSet) -> ActivationResult:
        """Run the full commit pipeline for *changes*."""
        result = ActivationResult()
        self._apply_repositories(changes.repositories, result)
        self._delete_services(changes.services, result)
        self._reload_sources()
        self._reselect_products(result)
        return result

    # ------------------------------------------------------------------
    def _apply_repositories(
        self,
        changes: Sequence[RepoChange],
        result: ActivationResult,
    ) -> None:
        pm = self.package_manager
        for change in changes:
            repo = change.repository
            alias = repo.repo_alias
            if change.action is RepoAction.DELETE:
                pm.delete_repository(repo)
                result.deleted.append(alias)
            elif change.action is RepoAction.ENABLE:
                pm.enable_repository(repo)
                result.enabled.append(alias)
            else:
                pm.disable_repository(repo)
                result.disabled.append(alias)
            self._step(f"repo.{change.action.value}", alias)

            # Issued even for deleted repositories; deletion supersedes it.
            if change.url is not None:
                pm.set_repository_url(repo, change.url)
                result.url_updates[alias] = change.url
                self._step("repo.url", f"{alias} -> {change.url}")

    def _delete_services(self, services: Sequence[Service], result: ActivationResult) -> None:
        for service in services:
            self.package_manager.delete_service(service.alias)
            result.services_deleted.append(service.alias)
            self._step("service.delete", service.alias)

    def _reload_sources(self) -> None:
        pm = self.package_manager
        pipeline = (
            ("sources.save", pm.save_all_sources),
            ("sources.finish", pm.finish_all_sources),
            ("sources.restore", pm.restore_sources),
            ("sources.load", pm.load_sources),
        )
        for name, call in pipeline:
            LOGGER.debug("Running %s", name)
            call()
            self._step(name)

    def _reselect_products(self, result: ActivationResult) -> None:
        products = self.package_manager.find_resolvables(
            status=ResolvableStatus.SELECTED,
            transact_by=TransactBy.APPL_HIGH,
        )
        for product in products:
            if self.package_manager.install_resolvable(product.name, product.kind):
                result.products_reselected.append(product.name)
                self._step("product.reselect", product.name)
            else:
                result.products_failed.append(product.name)
                self._step("product.reselect", product.name, status="failed")
                LOGGER.warning("Could not reselect %s '%s'", product.kind, product.name)

    def _step(self, name: str, detail: str | None = None, *, status: str = "success") -> None:
        if self.operation is not None:
            self.operation.add_step(name, status=status, detail=detail)


__all__ = [
    "ActivationCommitter",
    "ActivationResult",
    "ChangeSet",
    "RepoAction",
    "RepoChange",
]
