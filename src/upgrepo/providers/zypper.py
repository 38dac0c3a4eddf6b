"""Zypper backend for the package manager contract.

Repository and service mutations are queued and only written when the source
table is saved, mirroring how libzypp persists its source table. Unloading the
table discards anything that was not saved.
"""
from __future__ import annotations

import configparser
import logging
import os
import subprocess
import tempfile
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..models import Repository, Resolvable, ResolvableStatus, Service, TransactBy

LOGGER = logging.getLogger(__name__)

# zypper refresh exits with 106 when some repositories could not be refreshed.
REFRESH_OK_CODES = (0, 106)


class ZypperError(RuntimeError):
    """Raised when zypper operations fail."""


@dataclass(frozen=True, slots=True)
class _PendingChange:
    """A queued mutation, written by :meth:`ZypperProvider.save_all_sources`."""

    name: str
    alias: str
    args: tuple[str, ...] = ()
    url: str | None = None
    repository: Repository | None = None


@dataclass(slots=True)
class ZypperProvider:
    """Drive repositories, services and product selection through ``zypper``."""

    zypper_bin: str = "zypper"
    root: Path | None = None
    repos_dir: Path = Path("/etc/zypp/repos.d")
    dry_run: bool = False
    planned_commands: list[list[str]] = field(default_factory=list)
    _repositories: list[Repository] | None = field(default=None, init=False, repr=False)
    _services: list[Service] | None = field(default=None, init=False, repr=False)
    _products: set[tuple[str, str]] | None = field(default=None, init=False, repr=False)
    _pending: list[_PendingChange] = field(default_factory=list, init=False, repr=False)
    _selections: dict[tuple[str, str], Resolvable] = field(
        default_factory=dict, init=False, repr=False
    )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def list_repositories(self) -> list[Repository]:
        """Return the configured repositories, loading the table on first use."""
        if self._repositories is None:
            self.restore_sources()
        return list(self._repositories or [])

    def list_services(self) -> list[Service]:
        """Return the configured services, loading the table on first use."""
        if self._services is None:
            self.restore_sources()
        return list(self._services or [])

    @property
    def pending_changes(self) -> list[str]:
        """Return a description of the queued, unsaved mutations."""
        return [f"{change.name} {change.alias}" for change in self._pending]

    # ------------------------------------------------------------------
    # Repository and service mutations (queued)
    # ------------------------------------------------------------------
    def enable_repository(self, repo: Repository) -> None:
        """Queue enabling *repo*."""
        self._queue("repo.enable", repo, ("modifyrepo", "--enable", repo.repo_alias))

    def disable_repository(self, repo: Repository) -> None:
        """Queue disabling *repo*."""
        self._queue("repo.disable", repo, ("modifyrepo", "--disable", repo.repo_alias))

    def delete_repository(self, repo: Repository) -> None:
        """Queue removing *repo*."""
        self._queue("repo.delete", repo, ("removerepo", repo.repo_alias))

    def set_repository_url(self, repo: Repository, url: str) -> None:
        """Queue pointing *repo* at *url*."""
        self._pending.append(
            _PendingChange(name="repo.url", alias=repo.repo_alias, url=url, repository=repo)
        )

    def delete_service(self, alias: str) -> None:
        """Queue removing the service *alias*."""
        self._pending.append(
            _PendingChange(name="service.delete", alias=alias, args=("removeservice", alias))
        )

    # ------------------------------------------------------------------
    # Source table
    # ------------------------------------------------------------------
    def save_all_sources(self) -> None:
        """Write all queued changes in the order they were issued."""
        removed: set[str] = set()
        pending, self._pending = self._pending, []
        for change in pending:
            if change.url is not None:
                if change.alias in removed:
                    LOGGER.debug("Skipping URL change for removed repository %s", change.alias)
                    continue
                self._rewrite_baseurl(change.alias, change.url)
                if change.repository is not None and not self.dry_run:
                    change.repository.url = change.url
                    change.repository.raw_url = change.url
                continue

            self._run(change.args, mutating=True)
            if change.name == "repo.delete":
                removed.add(change.alias)
            elif change.repository is not None and not self.dry_run:
                change.repository.enabled = change.name == "repo.enable"

    def finish_all_sources(self) -> None:
        """Unload the source table, discarding unsaved changes."""
        if self._pending:
            LOGGER.warning(
                "Discarding %d unsaved repository change(s): %s",
                len(self._pending),
                ", ".join(self.pending_changes),
            )
            self._pending = []
        self._repositories = None
        self._services = None
        self._products = None

    def restore_sources(self) -> None:
        """Read the persisted repositories and services."""
        self._repositories = self._read_repositories()
        self._services = self._read_services()

    def load_sources(self) -> None:
        """Refresh the restored sources and read the products they provide."""
        if self._repositories is None:
            self.restore_sources()
        self._run(("refresh",), mutating=True, ok_codes=REFRESH_OK_CODES)
        self._products = self._read_products()

    # ------------------------------------------------------------------
    # Resolvables
    # ------------------------------------------------------------------
    def find_resolvables(
        self,
        *,
        status: ResolvableStatus,
        transact_by: TransactBy,
    ) -> list[Resolvable]:
        """Return the recorded selections matching *status* and *transact_by*."""
        return [
            item
            for item in self._selections.values()
            if item.status is status and item.transact_by is transact_by
        ]

    def install_resolvable(self, name: str, kind: str) -> bool:
        """Select *name* for installation; return whether the sources provide it."""
        self._selections[(kind, name)] = Resolvable(
            name=name,
            kind=kind,
            status=ResolvableStatus.SELECTED,
            transact_by=TransactBy.APPL_HIGH,
        )
        if self._products is None:
            return False
        return (kind, name) in self._products

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _queue(self, name: str, repo: Repository, args: tuple[str, ...]) -> None:
        self._pending.append(
            _PendingChange(name=name, alias=repo.repo_alias, args=args, repository=repo)
        )

    def _read_repositories(self) -> list[Repository]:
        document = self._xml(("repos",))
        repositories: list[Repository] = []
        for index, node in enumerate(document.iter("repo"), start=1):
            alias = node.get("alias", "").strip()
            if not alias:
                continue
            url = (node.findtext("url") or "").strip()
            raw_url = self._read_raw_url(alias) or url
            repositories.append(
                Repository(
                    repo_id=index,
                    repo_alias=alias,
                    name=node.get("name") or alias,
                    url=url,
                    raw_url=raw_url,
                    enabled=_flag(node.get("enabled")),
                    autorefresh=_flag(node.get("autorefresh")),
                )
            )
        return repositories

    def _read_services(self) -> list[Service]:
        document = self._xml(("services",))
        services: list[Service] = []
        for node in document.iter("service"):
            alias = node.get("alias", "").strip()
            if not alias:
                continue
            url = node.get("url") or node.findtext("url") or ""
            services.append(
                Service(
                    service_alias=alias,
                    name=node.get("name") or alias,
                    url=url.strip(),
                    enabled=_flag(node.get("enabled")),
                    autorefresh=_flag(node.get("autorefresh")),
                )
            )
        return services

    def _read_products(self) -> set[tuple[str, str]]:
        document = self._xml(("products",))
        return {
            ("product", node.get("name", "").strip())
            for node in document.iter("product")
            if node.get("name", "").strip()
        }

    def _xml(self, args: Sequence[str]) -> ET.Element:
        result = self._run(args, xml=True)
        output = (result.stdout or "").strip()
        if not output:
            return ET.Element("stream")
        try:
            return ET.fromstring(output)
        except ET.ParseError as exc:
            joined = " ".join(args)
            raise ZypperError(f"Cannot parse output of zypper {joined}: {exc}") from exc

    def _repos_dir(self) -> Path:
        if self.root is None or not self.repos_dir.is_absolute():
            return self.repos_dir
        return self.root / self.repos_dir.relative_to("/")

    def _find_repo_file(self, alias: str) -> Path | None:
        repos_dir = self._repos_dir()
        candidate = repos_dir / f"{alias}.repo"
        if candidate.exists():
            return candidate
        if not repos_dir.is_dir():
            return None
        for path in sorted(repos_dir.glob("*.repo")):
            parser = _read_repo_file(path)
            if parser.has_section(alias):
                return path
        return None

    def _read_raw_url(self, alias: str) -> str | None:
        path = self._find_repo_file(alias)
        if path is None:
            return None
        baseurl = _read_repo_file(path).get(alias, "baseurl", fallback=None)
        if not baseurl:
            return None
        # baseurl may list several mirrors, one per line.
        return baseurl.strip().splitlines()[0].strip()

    def _rewrite_baseurl(self, alias: str, url: str) -> None:
        path = self._find_repo_file(alias)
        if path is None:
            raise ZypperError(f"No repository file found for '{alias}' in {self._repos_dir()}")
        if self.dry_run:
            self.planned_commands.append(["rewrite", str(path), f"baseurl={url}"])
            return

        parser = _read_repo_file(path)
        parser.set(alias, "baseurl", url)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                parser.write(handle, space_around_delimiters=False)
            os.chmod(tmp_path, path.stat().st_mode & 0o777)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise ZypperError(f"Failed to update {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def _run(
        self,
        args: Sequence[str],
        *,
        xml: bool = False,
        mutating: bool = False,
        ok_codes: Sequence[int] = (0,),
    ) -> subprocess.CompletedProcess[str]:
        command: list[str] = [self.zypper_bin, "--non-interactive"]
        if self.root is not None:
            command.extend(["--root", str(self.root)])
        if xml:
            command.append("--xmlout")
        command.extend(args)
        if mutating and self.dry_run:
            self.planned_commands.append(command)
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")
        return self._run_command(command, ok_codes=ok_codes)

    def _run_command(
        self,
        command: Sequence[str],
        *,
        ok_codes: Sequence[int] = (0,),
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(  # noqa: S603
                list(command),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ZypperError(f"{command[0]} not found: {exc}") from exc
        if result.returncode not in ok_codes:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            joined = " ".join(command[1:])
            raise ZypperError(f"{command[0]} {joined} failed (exit {result.returncode}): {message}")
        return result


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


def _read_repo_file(path: Path) -> configparser.RawConfigParser:
    parser = configparser.RawConfigParser(strict=False)
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    try:
        with path.open(encoding="utf-8") as handle:
            parser.read_file(handle)
    except (OSError, configparser.Error) as exc:
        raise ZypperError(f"Cannot read repository file {path}: {exc}") from exc
    return parser


__all__ = ["REFRESH_OK_CODES", "ZypperError", "ZypperProvider"]
