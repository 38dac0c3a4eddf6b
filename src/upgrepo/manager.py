"""Track pending changes to the old repositories and services during an upgrade.

An :class:`UpgradeRepoManager` is built once per upgrade session. Every old
repository starts out scheduled for removal; the operator can cycle it to
enabled or disabled and override its URL before the changes are activated.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING

from .committer import ActivationCommitter, ActivationResult, ChangeSet, RepoAction, RepoChange
from .models import Repository, RepositoryKey, RepoState, RepoStatus, Service

if TYPE_CHECKING:
    from .providers.base import PackageManager
    from .snapshots import SetupSnapshots


class UpgradeRepoError(RuntimeError):
    """Raised when tracking or activating repository changes fails."""


class RepositoryNotTrackedError(UpgradeRepoError, LookupError):
    """Raised when an operation references a repository that is not tracked."""

    def __init__(self, repo: Repository) -> None:
        """Record the offending repository."""
        super().__init__(f"Repository '{repo.repo_alias}' (id {repo.repo_id}) is not tracked.")
        self.repository = repo


def repository_key(repo: Repository) -> RepositoryKey:
    """Return the identity used to look up *repo*."""
    return repo.key


class UpgradeRepoManager:
    """Change tracker for the repositories and services of the old system."""

    def __init__(
        self,
        repositories: Iterable[Repository],
        services: Iterable[Service],
        *,
        committer: ActivationCommitter | None = None,
        key: Callable[[Repository], RepositoryKey] = repository_key,
    ) -> None:
        """Track *repositories* (all preset to removal) and *services* to delete."""
        self._key = key
        self._repositories: dict[RepositoryKey, Repository] = {}
        self._states: dict[RepositoryKey, RepoState] = {}
        for repo in repositories:
            repo_key = self._key(repo)
            self._repositories[repo_key] = repo
            self._states[repo_key] = RepoState()
        self._services: tuple[Service, ...] = tuple(services)
        self.committer = committer

    @classmethod
    def create_from_old_repositories(
        cls,
        snapshots: SetupSnapshots,
        package_manager: PackageManager,
        *,
        committer: ActivationCommitter | None = None,
        key: Callable[[Repository], RepositoryKey] = repository_key,
    ) -> UpgradeRepoManager:
        """Build a tracker from the repositories stored before the upgrade.

        Old repositories that are no longer configured (e.g. already removed
        by registration) cannot be re-targeted and are skipped. The remaining
        ones are tracked as the package manager's current records. Old
        services sharing a name with a service of the new setup are kept,
        because the new service already fills their role.
        """
        current = {key(repo): repo for repo in package_manager.list_repositories()}
        original = snapshots.original
        old_repos = [
            current[key(repo)] for repo in original.repositories if key(repo) in current
        ]

        new_service_names = set(snapshots.new.service_names)
        old_services = [
            service for service in original.services if service.name not in new_service_names
        ]
        return cls(
            old_repos,
            old_services,
            committer=committer or ActivationCommitter(package_manager),
            key=key,
        )

    # ------------------------------------------------------------------
    @property
    def repositories(self) -> list[Repository]:
        """Return the tracked repositories in insertion order."""
        return list(self._repositories.values())

    @property
    def services(self) -> list[Service]:
        """Return the services scheduled for deletion."""
        return list(self._services)

    def repo_status(self, repo: Repository) -> RepoStatus | None:
        """Return the pending status of *repo* or ``None`` if it is not tracked."""
        state = self._states.get(self._key(repo))
        return state.status if state is not None else None

    def repo_url(self, repo: Repository) -> str | None:
        """Return the overridden URL, falling back to the original raw URL."""
        repo_key = self._key(repo)
        state = self._states.get(repo_key)
        if state is None:
            return None
        if state.url is not None:
            return state.url
        return self._repositories[repo_key].raw_url

    def change_url(self, repo: Repository, new_url: str) -> None:
        """Override the URL of *repo*."""
        self._state_for(repo).url = new_url

    def toggle_repo_status(self, repo: Repository) -> RepoStatus:
        """Advance *repo* one step along removed -> enabled -> disabled -> removed."""
        state = self._state_for(repo)
        state.status = state.status.next()
        return state.status

    def plan_changes(self) -> ChangeSet:
        """Return the actions an activation would issue, without side effects."""
        changes: list[RepoChange] = []
        for repo_key, repo in self._repositories.items():
            state = self._states[repo_key]
            url = state.url if state.url is not None and state.url != repo.url else None
            changes.append(RepoChange(repo, RepoAction.for_status(state.status), url))
        return ChangeSet(repositories=tuple(changes), services=self._services)

    def activate_changes(self) -> ActivationResult:
        """Commit the tracked decisions through the attached committer."""
        if self.committer is None:
            raise UpgradeRepoError("No activation committer attached to the repository manager.")
        return self.committer.apply(self.plan_changes())

    # ------------------------------------------------------------------
    def find_repository(self, alias: str) -> Repository | None:
        """Return the tracked repository registered under *alias*."""
        for repo in self._repositories.values():
            if repo.repo_alias == alias:
                return repo
        return None

    def _state_for(self, repo: Repository) -> RepoState:
        state = self._states.get(self._key(repo))
        if state is None:
            raise RepositoryNotTrackedError(repo)
        return state


def summarize(manager: UpgradeRepoManager) -> Sequence[dict[str, object]]:
    """Return a serialisable row per tracked repository."""
    rows: list[dict[str, object]] = []
    for repo in manager.repositories:
        status = manager.repo_status(repo)
        rows.append(
            {
                "id": repo.repo_id,
                "alias": repo.repo_alias,
                "name": repo.name,
                "status": status.value if status is not None else None,
                "url": manager.repo_url(repo),
            }
        )
    return rows


__all__ = [
    "RepositoryNotTrackedError",
    "UpgradeRepoError",
    "UpgradeRepoManager",
    "repository_key",
    "summarize",
]
