"""Doctor command support - read-only diagnostics of the runtime and PATH."""

from dataclasses import dataclass
from typing import Callable, List, Optional

import click

from . import downloader
from . import paths
from . import version_manager
from .downloader import AppMetadata
from .environment import EnvironmentStore, Scope
from .errors import FetchError
from .path_repair import find_duplicates
from .versioning import parse_constraint, try_parse_version


@dataclass
class CheckResult:
    """Result of a diagnostic check."""
    name: str
    passed: bool
    message: str
    details: Optional[str] = None
    fixable: bool = False
    fix_action: Optional[str] = None


def check_command(store: EnvironmentStore, command: str) -> CheckResult:
    """Check that a command resolves on the process PATH."""
    location = store.resolve_command(command)
    if location:
        return CheckResult(command, True, location)
    return CheckResult(
        command, False, "not found on PATH",
        fixable=True, fix_action="n8nkeeper repair-path",
    )


def check_engine_constraint(store: EnvironmentStore,
                            fetch_metadata: Callable[[], AppMetadata]) -> CheckResult:
    """Check the installed Node.js against n8n's engine constraint."""
    name = "Node.js version"
    try:
        metadata = fetch_metadata()
    except FetchError as e:
        return CheckResult(name, False, "could not fetch n8n metadata", details=str(e))

    installed = version_manager.get_installed_node_version(store.resolve_command)
    version = try_parse_version(installed)
    if version is None:
        return CheckResult(name, False, "Node.js not installed or not queryable",
                           fixable=True, fix_action="n8nkeeper")

    version_range = parse_constraint(metadata.node_constraint)
    if version_range.contains(version):
        return CheckResult(name, True, f"{installed} satisfies {metadata.node_constraint}")
    return CheckResult(
        name, False, f"{installed} does not satisfy {metadata.node_constraint}",
        details=f"n8n {metadata.version}", fixable=True, fix_action="n8nkeeper",
    )


def check_path_scopes(store: EnvironmentStore) -> List[CheckResult]:
    """Check required PATH entries and duplicates in persisted scopes."""
    results = []
    global_bin = paths.get_npm_prefix()
    node_dir = paths.get_node_install_dir()

    user_entries = store.get(Scope.USER)
    machine_entries = store.get(Scope.MACHINE)

    if global_bin in user_entries:
        results.append(CheckResult("npm global-bin in User PATH", True, global_bin))
    else:
        results.append(CheckResult(
            "npm global-bin in User PATH", False, f"missing {global_bin}",
            fixable=True, fix_action="n8nkeeper repair-path",
        ))

    if node_dir in machine_entries:
        results.append(CheckResult("Node.js in Machine PATH", True, node_dir))
    else:
        results.append(CheckResult(
            "Node.js in Machine PATH", False, f"missing {node_dir}",
            fixable=True, fix_action="n8nkeeper repair-path",
        ))

    for scope, entries in ((Scope.USER, user_entries), (Scope.MACHINE, machine_entries)):
        duplicates = find_duplicates(entries)
        if duplicates:
            results.append(CheckResult(
                f"{scope.value} PATH duplicates", False,
                f"{len(duplicates)} duplicated entr{'y' if len(duplicates) == 1 else 'ies'}",
                details="; ".join(duplicates),
            ))
        else:
            results.append(CheckResult(f"{scope.value} PATH duplicates", True, "none"))

    return results


def run_checks(store: EnvironmentStore,
               fetch_metadata: Callable[[], AppMetadata] = downloader.fetch_app_metadata,
               offline: bool = False) -> List[CheckResult]:
    """Run every diagnostic check."""
    results = [check_command(store, c) for c in ("node", "npm", paths.APP_PACKAGE)]
    if not offline:
        results.append(check_engine_constraint(store, fetch_metadata))
    results.extend(check_path_scopes(store))
    return results


def print_check(result: CheckResult, verbose: bool = False):
    """Print a single check result."""
    icon = "✓" if result.passed else "✗"
    if not result.passed and result.fixable:
        icon = "⚠"

    click.echo(f"  {icon} {result.name}: {result.message}")

    if result.details and (verbose or not result.passed):
        click.echo(f"     {result.details}")
    if not result.passed and result.fix_action:
        click.echo(f"     Fix: {result.fix_action}")
