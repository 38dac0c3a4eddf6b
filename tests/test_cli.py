"""Tests for the upgrepo CLI."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from helpers import REPO_FILE, FakeZypper
from typer.testing import CliRunner

from upgrepo import __version__
from upgrepo.cli import app
from upgrepo.exit_codes import ExitCode
from upgrepo.providers.zypper import ZypperProvider

runner = CliRunner()

NEW_SERVICES_XML = """<?xml version='1.0'?>
<stream>
<service-list>
<service alias="SLES_15_SP6" name="SLES 15 SP6" type="ris" enabled="1" autorefresh="1" url="https://scc.example.com/access/services/2"/>
</service-list>
</stream>
"""

# A new product repository listed ahead of the old ones shifts their numbers.
SHIFTED_REPOS_XML = """<?xml version='1.0'?>
<stream>
<repo-list>
<repo alias="SLES15-SP6-Pool" name="SLES 15 SP6 Pool" type="rpm-md" priority="99" enabled="1" autorefresh="1">
<url>https://updates.example.com/SLES15-SP6-Pool/</url>
</repo>
<repo alias="repo-oss" name="Main Repository" type="rpm-md" priority="99" enabled="1" autorefresh="1">
<url>https://download.example.org/distribution/leap/15.5/repo/oss/</url>
</repo>
<repo alias="extras" name="Extras" type="rpm-md" priority="99" enabled="0" autorefresh="0">
<url>https://extras.example.org/15.5/</url>
</repo>
</repo-list>
</stream>
"""


def _prepare_environment(
    tmp_path: Path,
    config_overrides: dict[str, object] | None = None,
) -> dict[str, str]:
    """Create config, registry and repository directories for a CLI run."""
    state_dir = tmp_path / "state"
    repos_dir = tmp_path / "repos.d"
    repos_dir.mkdir()
    (repos_dir / "repo-oss.repo").write_text(REPO_FILE, encoding="utf-8")

    config: dict[str, object] = {
        "state_dir": str(state_dir),
        "logs_dir": str(tmp_path / "logs"),
        "zypper": {"repos_dir": str(repos_dir)},
    }
    if config_overrides:
        config.update(config_overrides)
    config_path = tmp_path / "config.yml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return {"UPGREPO_CONFIG_FILE": str(config_path)}


def _extract_json(output: str) -> dict[str, object]:
    """Extract the first JSON object embedded in *output*."""
    start = output.find("{")
    end = output.rfind("}")
    assert start != -1 and end != -1, f"No JSON payload found in output: {output}"
    return json.loads(output[start : end + 1])


def _operations(tmp_path: Path) -> list[dict[str, object]]:
    path = tmp_path / "logs" / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


@pytest.fixture
def zypper(monkeypatch: pytest.MonkeyPatch) -> FakeZypper:
    """Replace zypper invocations with canned output."""
    fake = FakeZypper()
    monkeypatch.setattr(ZypperProvider, "_run_command", fake)
    return fake


@pytest.fixture
def recorded(tmp_path: Path, zypper: FakeZypper) -> dict[str, str]:
    """Environment with the original and new setups already recorded."""
    env = _prepare_environment(tmp_path)
    result = runner.invoke(app, ["snapshot", "original"], env=env)
    assert result.exit_code == 0, result.stdout

    zypper.outputs["services"] = NEW_SERVICES_XML
    result = runner.invoke(app, ["snapshot", "new", "--product", "SLES"], env=env)
    assert result.exit_code == 0, result.stdout

    zypper.commands.clear()
    return env


def test_version_option_outputs_package_version(tmp_path: Path) -> None:
    """CLI ``--version`` flag emits the package version."""
    env = _prepare_environment(tmp_path)
    result = runner.invoke(app, ["--version"], env=env)

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_invocation_without_subcommand_shows_help(tmp_path: Path) -> None:
    """Calling the CLI without a subcommand shows help output."""
    env = _prepare_environment(tmp_path)
    result = runner.invoke(app, env=env)

    assert result.exit_code == 0
    assert "Upgrade repository manager" in result.stdout


def test_config_show_json(tmp_path: Path) -> None:
    """`config show --json` emits the resolved configuration."""
    env = _prepare_environment(tmp_path, config_overrides={"registry_dir": str(tmp_path / "reg")})

    result = runner.invoke(app, ["config", "show", "--json"], env=env)

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert payload["state_dir"] == str(tmp_path / "state")
    assert payload["registry_dir"] == str(tmp_path / "reg")
    assert payload["zypper"]["repos_dir"] == str(tmp_path / "repos.d")


def test_config_show_renders_table(tmp_path: Path) -> None:
    """`config show` prints the merged configuration in a table."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["config", "show"], env=env)

    assert result.exit_code == 0
    assert "state_dir" in result.stdout
    assert "logs_dir" in result.stdout


def test_invalid_configuration_exits_with_validation_code(tmp_path: Path) -> None:
    """Configuration errors stop the CLI before any command runs."""
    env = _prepare_environment(tmp_path, config_overrides={"unknown": True})

    result = runner.invoke(app, ["plan"], env=env)

    assert result.exit_code == ExitCode.VALIDATION
    assert "Configuration error" in result.stdout


def test_snapshot_original_writes_registry(tmp_path: Path, zypper: FakeZypper) -> None:
    """Recording the original setup stores the current repositories and services."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["snapshot", "original", "--json"], env=env)

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert [repo["alias"] for repo in payload["repositories"]] == ["repo-oss", "extras"]

    stored = yaml.safe_load(
        (tmp_path / "state" / "registry" / "original-setup.yml").read_text(encoding="utf-8")
    )
    assert stored["repositories"][0]["raw_url"].endswith("$releasever/repo/oss/")
    assert stored["services"][0]["alias"] == "SUSE_Linux_Enterprise_Server_15"

    [record] = _operations(tmp_path)
    assert record["command"] == "snapshot original"
    assert record["result"]["status"] == "success"
    assert [step["name"] for step in record["steps"]] == ["setup.capture", "registry.write"]


def test_snapshot_show_lists_both_setups(tmp_path: Path, recorded: dict[str, str]) -> None:
    """`snapshot show --json` renders the original and new setups."""
    result = runner.invoke(app, ["snapshot", "show", "--json"], env=recorded)

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert len(payload["original"]["repositories"]) == 2
    assert payload["new"]["products"] == ["SLES"]
    assert payload["new"]["services"][0]["alias"] == "SLES_15_SP6"


def test_snapshot_show_table(tmp_path: Path, recorded: dict[str, str]) -> None:
    """`snapshot show` renders tables for both setups."""
    result = runner.invoke(app, ["snapshot", "show"], env=recorded)

    assert result.exit_code == 0, result.stdout
    assert "Original setup" in result.stdout
    assert "New setup" in result.stdout
    assert "Products: SLES" in result.stdout


def test_snapshot_clear(tmp_path: Path, recorded: dict[str, str]) -> None:
    """`snapshot clear` removes both registry files."""
    result = runner.invoke(app, ["snapshot", "clear"], env=recorded)

    assert result.exit_code == 0, result.stdout
    assert "Removed 2 snapshot file(s)." in result.stdout
    assert not (tmp_path / "state" / "registry" / "original-setup.yml").exists()
    assert not (tmp_path / "state" / "registry" / "new-setup.yml").exists()


def test_plan_preselects_old_repositories_for_removal(
    tmp_path: Path,
    recorded: dict[str, str],
) -> None:
    """`plan --json` lists every old repository as removed."""
    result = runner.invoke(app, ["plan", "--json"], env=recorded)

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert [(row["alias"], row["status"]) for row in payload["repositories"]] == [
        ("repo-oss", "removed"),
        ("extras", "removed"),
    ]
    assert payload["repositories"][0]["url"].endswith("$releasever/repo/oss/")
    assert payload["services"] == ["SUSE_Linux_Enterprise_Server_15"]


def test_plan_without_snapshots_is_empty(tmp_path: Path, zypper: FakeZypper) -> None:
    """Without recorded snapshots nothing is tracked."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["plan"], env=env)

    assert result.exit_code == 0, result.stdout
    assert "(none)" in result.stdout


def test_activate_applies_decisions(
    tmp_path: Path,
    recorded: dict[str, str],
    zypper: FakeZypper,
) -> None:
    """Activation issues one action per repository and reloads the sources."""
    result = runner.invoke(
        app,
        [
            "activate",
            "--enable",
            "repo-oss",
            "--url",
            "repo-oss=https://mirror.example/15.6/oss/",
            "--json",
        ],
        env=recorded,
    )

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert payload["result"]["enabled"] == ["repo-oss"]
    assert payload["result"]["deleted"] == ["extras"]
    assert payload["result"]["url_updates"] == {"repo-oss": "https://mirror.example/15.6/oss/"}
    assert payload["result"]["services_deleted"] == ["SUSE_Linux_Enterprise_Server_15"]
    assert payload["result"]["products_reselected"] == ["SLES"]

    assert zypper.subcommands() == [
        ["repos"],
        ["services"],
        ["modifyrepo", "--enable", "repo-oss"],
        ["removerepo", "extras"],
        ["removeservice", "SUSE_Linux_Enterprise_Server_15"],
        ["repos"],
        ["services"],
        ["refresh"],
        ["products"],
    ]
    repo_file = (tmp_path / "repos.d" / "repo-oss.repo").read_text(encoding="utf-8")
    assert "baseurl=https://mirror.example/15.6/oss/" in repo_file

    record = _operations(tmp_path)[-1]
    assert record["command"] == "activate"
    assert record["result"]["status"] == "success"
    names = [step["name"] for step in record["steps"]]
    assert names.index("product.select") < names.index("repo.enable")
    assert names[-1] == "product.reselect"


def test_activate_warns_when_products_cannot_be_reselected(
    tmp_path: Path,
    recorded: dict[str, str],
    zypper: FakeZypper,
) -> None:
    """Products missing from the reloaded sources produce a warning result."""
    zypper.outputs["products"] = "<stream><product-list/></stream>"

    result = runner.invoke(app, ["activate", "--disable", "extras"], env=recorded)

    assert result.exit_code == 0, result.stdout
    assert "Could not reselect products: SLES" in result.stdout
    record = _operations(tmp_path)[-1]
    assert record["result"]["status"] == "warning"
    assert record["result"]["warnings"] == ["product:SLES"]


def test_activate_dry_run_changes_nothing(
    tmp_path: Path,
    recorded: dict[str, str],
    zypper: FakeZypper,
) -> None:
    """Dry runs report the zypper commands without running mutations."""
    result = runner.invoke(
        app,
        [
            "activate",
            "--disable",
            "repo-oss",
            "--url",
            "repo-oss=https://mirror.example/",
            "--dry-run",
            "--json",
        ],
        env=recorded,
    )

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    planned = payload["planned_commands"]
    assert "zypper --non-interactive modifyrepo --disable repo-oss" in planned
    assert "zypper --non-interactive removerepo extras" in planned
    assert "zypper --non-interactive refresh" in planned
    mutating = {"modifyrepo", "removerepo", "removeservice", "refresh"}
    assert not any(command[0] in mutating for command in zypper.subcommands())
    repo_file = (tmp_path / "repos.d" / "repo-oss.repo").read_text(encoding="utf-8")
    assert "mirror.example" not in repo_file
    assert "Dry run" in result.stdout


def test_activate_rejects_conflicting_flags(tmp_path: Path, recorded: dict[str, str]) -> None:
    """A repository cannot be both enabled and disabled."""
    result = runner.invoke(
        app,
        ["activate", "--enable", "extras", "--disable", "extras"],
        env=recorded,
    )

    assert result.exit_code == ExitCode.VALIDATION
    assert "Cannot both enable and disable: extras." in result.stdout
    assert _operations(tmp_path)[-1]["result"]["rc"] == ExitCode.VALIDATION


def test_activate_rejects_untracked_repository(tmp_path: Path, recorded: dict[str, str]) -> None:
    """Unknown aliases are validation errors."""
    result = runner.invoke(app, ["activate", "--enable", "missing"], env=recorded)

    assert result.exit_code == ExitCode.VALIDATION
    assert "not an old repository" in result.stdout


def test_activate_rejects_malformed_url(tmp_path: Path, recorded: dict[str, str]) -> None:
    """URL overrides must be ALIAS=URL."""
    result = runner.invoke(app, ["activate", "--url", "repo-oss"], env=recorded)

    assert result.exit_code == ExitCode.VALIDATION
    assert "Expected ALIAS=URL" in result.stdout


def test_activate_reports_zypper_failure(
    tmp_path: Path,
    recorded: dict[str, str],
    zypper: FakeZypper,
) -> None:
    """zypper failures during activation exit with the provider code."""
    zypper.returncodes["removerepo"] = 4

    result = runner.invoke(app, ["activate"], env=recorded)

    assert result.exit_code == ExitCode.PROVIDER
    assert "Activation failed" in result.stdout
    record = _operations(tmp_path)[-1]
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == ExitCode.PROVIDER


def test_corrupt_snapshot_is_an_environment_error(
    tmp_path: Path,
    recorded: dict[str, str],
) -> None:
    """Unreadable snapshots exit with the environment code."""
    path = tmp_path / "state" / "registry" / "original-setup.yml"
    path.write_text("repositories: [{alias: broken}]\n", encoding="utf-8")

    result = runner.invoke(app, ["plan"], env=recorded)

    assert result.exit_code == ExitCode.ENVIRONMENT
    assert "Cannot read setup snapshots" in result.stdout


def test_old_repositories_tracked_after_new_repository_is_listed_first(
    tmp_path: Path,
    zypper: FakeZypper,
) -> None:
    """Old repositories stay tracked when the new setup renumbers them."""
    env = _prepare_environment(tmp_path)
    result = runner.invoke(app, ["snapshot", "original"], env=env)
    assert result.exit_code == 0, result.stdout

    zypper.outputs["repos"] = SHIFTED_REPOS_XML
    result = runner.invoke(app, ["snapshot", "new", "--product", "SLES"], env=env)
    assert result.exit_code == 0, result.stdout

    result = runner.invoke(app, ["plan", "--json"], env=env)
    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert [(row["id"], row["alias"]) for row in payload["repositories"]] == [
        (2, "repo-oss"),
        (3, "extras"),
    ]

    zypper.commands.clear()
    result = runner.invoke(app, ["activate", "--json"], env=env)

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert payload["result"]["deleted"] == ["repo-oss", "extras"]
    removed = [command for command in zypper.subcommands() if command[0] == "removerepo"]
    assert removed == [["removerepo", "repo-oss"], ["removerepo", "extras"]]
