"""Shared builders and fakes for the test suite."""

from __future__ import annotations

import subprocess
from collections.abc import Sequence

from upgrepo.models import Repository, Resolvable, ResolvableStatus, Service, TransactBy
from upgrepo.providers.zypper import ZypperError

REPOS_XML = """<?xml version='1.0'?>
<stream>
<repo-list>
<repo alias="repo-oss" name="Main Repository" type="rpm-md" priority="99" enabled="1" autorefresh="1">
<url>https://download.example.org/distribution/leap/15.5/repo/oss/</url>
</repo>
<repo alias="extras" name="Extras" type="rpm-md" priority="99" enabled="0" autorefresh="0">
<url>https://extras.example.org/15.5/</url>
</repo>
</repo-list>
</stream>
"""

SERVICES_XML = """<?xml version='1.0'?>
<stream>
<service-list>
<service alias="SUSE_Linux_Enterprise_Server_15" name="SLES 15" type="ris" enabled="1" autorefresh="1" url="https://scc.example.com/access/services/1"/>
</service-list>
</stream>
"""

PRODUCTS_XML = """<?xml version='1.0'?>
<stream>
<product-list>
<product name="SLES" version="15.6" arch="x86_64" isbase="true" installed="0"/>
</product-list>
</stream>
"""

REPO_FILE = """[repo-oss]
name=Main Repository
enabled=1
autorefresh=1
baseurl=https://download.example.org/distribution/leap/$releasever/repo/oss/
type=rpm-md
"""


class FakeZypper:
    """Records zypper invocations and returns canned output."""

    def __init__(self, outputs: dict[str, str] | None = None) -> None:
        """Map sub-commands to their stdout."""
        self.outputs = {
            "repos": REPOS_XML,
            "services": SERVICES_XML,
            "products": PRODUCTS_XML,
            **(outputs or {}),
        }
        self.commands: list[list[str]] = []
        self.returncodes: dict[str, int] = {}

    def __call__(
        self,
        command: Sequence[str],
        *,
        ok_codes: Sequence[int] = (0,),
    ) -> subprocess.CompletedProcess[str]:
        self.commands.append(list(command))
        subcommand = _subcommand(command)
        returncode = self.returncodes.get(subcommand, 0)
        if returncode not in ok_codes:
            raise ZypperError(f"zypper {subcommand} failed (exit {returncode}): boom")
        return subprocess.CompletedProcess(
            list(command),
            returncode,
            stdout=self.outputs.get(subcommand, ""),
            stderr="",
        )

    def subcommands(self) -> list[list[str]]:
        """Return the invocations without the global options."""
        trimmed = []
        for command in self.commands:
            trimmed.append(
                [part for part in command[1:] if part not in {"--non-interactive", "--xmlout"}]
            )
        return trimmed


def _subcommand(command: Sequence[str]) -> str:
    parts = list(command[1:])
    if "--root" in parts:
        index = parts.index("--root")
        del parts[index : index + 2]
    return next(part for part in parts if not part.startswith("-"))


def make_repo(repo_id: int, alias: str, *, url: str | None = None) -> Repository:
    """Return a repository pointing at ``https://example.com/<id>``."""
    target = url or f"https://example.com/{repo_id}"
    return Repository(
        repo_id=repo_id,
        repo_alias=alias,
        name=f"repo{repo_id}",
        url=target,
        raw_url=target,
        enabled=True,
        autorefresh=True,
    )


def make_service(alias: str, name: str | None = None) -> Service:
    """Return an enabled service."""
    return Service(
        service_alias=alias,
        name=name or alias,
        url=f"https://example.com/service/{alias}",
    )


class FakePackageManager:
    """Package manager stand-in recording every call in order."""

    def __init__(
        self,
        repositories: Sequence[Repository] = (),
        services: Sequence[Service] = (),
        selected: Sequence[Resolvable] = (),
        *,
        installable: bool = True,
    ) -> None:
        """Seed the current setup and the resolvables returned by queries."""
        self.repositories = list(repositories)
        self.services = list(services)
        self.selected = list(selected)
        self.installable = installable
        self.calls: list[tuple[object, ...]] = []
        self.queries: list[dict[str, object]] = []

    def list_repositories(self) -> list[Repository]:
        return list(self.repositories)

    def list_services(self) -> list[Service]:
        return list(self.services)

    def enable_repository(self, repo: Repository) -> None:
        self.calls.append(("enable", repo.repo_alias))

    def disable_repository(self, repo: Repository) -> None:
        self.calls.append(("disable", repo.repo_alias))

    def delete_repository(self, repo: Repository) -> None:
        self.calls.append(("delete", repo.repo_alias))

    def set_repository_url(self, repo: Repository, url: str) -> None:
        self.calls.append(("url", repo.repo_alias, url))

    def delete_service(self, alias: str) -> None:
        self.calls.append(("delete_service", alias))

    def save_all_sources(self) -> None:
        self.calls.append(("save_all",))

    def finish_all_sources(self) -> None:
        self.calls.append(("finish_all",))

    def restore_sources(self) -> None:
        self.calls.append(("restore",))

    def load_sources(self) -> None:
        self.calls.append(("load",))

    def find_resolvables(
        self,
        *,
        status: ResolvableStatus,
        transact_by: TransactBy,
    ) -> list[Resolvable]:
        self.queries.append({"status": status, "transact_by": transact_by})
        return [
            item
            for item in self.selected
            if item.status is status and item.transact_by is transact_by
        ]

    def install_resolvable(self, name: str, kind: str) -> bool:
        self.calls.append(("install", name, kind))
        return self.installable

