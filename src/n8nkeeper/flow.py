"""
Converge-and-install flow.

Runs the full maintenance pass as a small state machine:

    RESOLVING -> BACKING_UP -> INSTALLING -> CONVERGING_PATH
              -> INSTALLING_APP -> VALIDATING -> DONE

BACKING_UP and INSTALLING are skipped when the runtime already matches the
target release; INSTALLING_APP is skipped when the app install is disabled.
CONVERGING_PATH always runs. Any N8nKeeperError moves the machine to FAILED
with the stage that raised it recorded.

All external effects go through injected callables so tests can drive the
flow without network access or real installers.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

import click

from . import backup
from . import downloader
from . import paths
from . import version_manager
from .downloader import AppMetadata
from .environment import EnvironmentStore
from .errors import N8nKeeperError, NoCandidateError, ValidationError
from .path_repair import ConvergenceResult, converge_path
from .releases import WINDOWS_X64_MSI, ReleaseDescriptor, select_release
from .version_manager import InstallDecision, decide_install
from .versioning import VersionRange, parse_constraint


class FlowState(Enum):
    RESOLVING = "Resolving"
    BACKING_UP = "Backing up"
    INSTALLING = "Installing"
    CONVERGING_PATH = "Converging PATH"
    INSTALLING_APP = "Installing app"
    VALIDATING = "Validating"
    DONE = "Done"
    FAILED = "Failed"


TERMINAL_STATES = (FlowState.DONE, FlowState.FAILED)

STAGE_LABELS = {
    FlowState.RESOLVING: "Resolving versions...",
    FlowState.BACKING_UP: "Backing up n8n data...",
    FlowState.INSTALLING: "Installing Node.js...",
    FlowState.CONVERGING_PATH: "Repairing PATH...",
    FlowState.INSTALLING_APP: "Checking n8n...",
    FlowState.VALIDATING: "Validating commands...",
}


@dataclass
class FlowResult:
    """Final state of a flow run."""
    state: FlowState
    failed_stage: Optional[FlowState] = None
    reason: Optional[str] = None
    metadata: Optional[AppMetadata] = None
    version_range: Optional[VersionRange] = None
    release: Optional[ReleaseDescriptor] = None
    decision: Optional[InstallDecision] = None
    convergence: Optional[ConvergenceResult] = None
    snapshot: Optional[Path] = None
    app_installed: bool = False
    history: List[FlowState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is FlowState.DONE


class ConvergeFlow:
    """
    Resolve, maybe install, repair PATH, and validate.

    Args:
        store: Environment store PATH repair writes to
        install_app: Also install/upgrade n8n to the latest release
        fetch_metadata: Returns the latest n8n AppMetadata
        fetch_releases: Returns the Node.js release list
        installed_version: Returns the installed Node.js version or None
        install_runtime: Installs a Node.js version
        installed_app_version: Returns the installed n8n version or None
        install_application: Installs an n8n version
        snapshot: Snapshots the data directory, returning the archive path
        node_dir / global_bin / global_cache: PATH repair inputs
        echo: Progress output
    """

    def __init__(
        self,
        store: EnvironmentStore,
        install_app: bool = True,
        fetch_metadata: Callable[[], AppMetadata] = downloader.fetch_app_metadata,
        fetch_releases: Callable[[], List[ReleaseDescriptor]] = downloader.fetch_release_index,
        installed_version: Optional[Callable[[], Optional[str]]] = None,
        install_runtime: Callable[[str], None] = version_manager.install_node,
        installed_app_version: Optional[Callable[[], Optional[str]]] = None,
        install_application: Optional[Callable[[str], None]] = None,
        snapshot: Optional[Callable[[], Optional[Path]]] = None,
        node_dir: Optional[str] = None,
        global_bin: Optional[str] = None,
        global_cache: Optional[str] = None,
        echo: Callable[..., None] = click.echo,
    ):
        self.store = store
        self.install_app = install_app
        self.fetch_metadata = fetch_metadata
        self.fetch_releases = fetch_releases
        self.installed_version = installed_version or (
            lambda: version_manager.get_installed_node_version(store.resolve_command)
        )
        self.install_runtime = install_runtime
        self.installed_app_version = installed_app_version or (
            lambda: version_manager.get_installed_app_version(store.resolve_command)
        )
        self.install_application = install_application or (
            lambda version: version_manager.install_app(version, store.resolve_command("npm"))
        )
        self.snapshot = snapshot or snapshot_data_dir
        self.node_dir = node_dir or paths.get_node_install_dir()
        self.global_bin = global_bin or paths.get_npm_prefix()
        self.global_cache = global_cache or paths.get_npm_cache_dir()
        self.echo = echo

        self.result = FlowResult(state=FlowState.RESOLVING)
        self._backed_up = False
        self._handlers = {
            FlowState.RESOLVING: self._resolve,
            FlowState.BACKING_UP: self._backup,
            FlowState.INSTALLING: self._install,
            FlowState.CONVERGING_PATH: self._converge,
            FlowState.INSTALLING_APP: self._install_app,
            FlowState.VALIDATING: self._validate,
        }

    def run(self) -> FlowResult:
        """Drive the state machine to DONE or FAILED."""
        state = FlowState.RESOLVING
        while state not in TERMINAL_STATES:
            self.result.history.append(state)
            self.echo()
            self.echo(f"[{len(self.result.history)}] {STAGE_LABELS[state]}")
            try:
                state = self._handlers[state]()
            except N8nKeeperError as e:
                self.result.failed_stage = state
                self.result.reason = str(e)
                state = FlowState.FAILED

        self.result.state = state
        self.result.history.append(state)
        return self.result

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _resolve(self) -> FlowState:
        metadata = self.fetch_metadata()
        self.result.metadata = metadata
        self.echo(f"      n8n {metadata.version} requires Node.js {metadata.node_constraint}")

        version_range = parse_constraint(metadata.node_constraint)
        self.result.version_range = version_range
        for warning in version_range.warnings:
            self.echo(f"      Warning: {warning} (treated as unbounded)")

        releases = self.fetch_releases()
        release = select_release(releases, version_range, WINDOWS_X64_MSI)
        if release is None:
            raise NoCandidateError(metadata.node_constraint, WINDOWS_X64_MSI)
        self.result.release = release
        lts = f" (LTS {release.lts_name})" if release.lts_name else (" (LTS)" if release.lts else "")
        self.echo(f"      Target Node.js: {release.display_version}{lts}")

        decision = decide_install(self.installed_version(), release)
        self.result.decision = decision
        installed = decision.installed_version or "not installed"
        self.echo(f"      Installed Node.js: {installed}")

        if decision.action_required:
            return FlowState.BACKING_UP
        self.echo("      Node.js is up to date")
        return FlowState.CONVERGING_PATH

    def _backup_once(self) -> None:
        if self._backed_up:
            return
        path = self.snapshot()
        self._backed_up = True
        self.result.snapshot = path
        if path:
            self.echo(f"      Snapshot: {path}")
        else:
            self.echo("      No n8n data directory, nothing to back up")

    def _backup(self) -> FlowState:
        self._backup_once()
        return FlowState.INSTALLING

    def _install(self) -> FlowState:
        self.install_runtime(self.result.decision.target_version)
        self.echo(f"      Installed Node.js {self.result.decision.target_version}")
        return FlowState.CONVERGING_PATH

    def _converge(self) -> FlowState:
        convergence = converge_path(self.store, self.node_dir, self.global_bin, self.global_cache)
        self.result.convergence = convergence
        self.echo(f"      User PATH: {'updated' if convergence.user_changed else 'ok'}")
        self.echo(f"      Machine PATH: {'updated' if convergence.machine_changed else 'ok'}")
        return FlowState.INSTALLING_APP if self.install_app else FlowState.VALIDATING

    def _install_app(self) -> FlowState:
        target = self.result.metadata.version
        current = self.installed_app_version()
        if current and current.strip() == target:
            self.echo(f"      n8n {target} is up to date")
            return FlowState.VALIDATING

        self.echo(f"      n8n: {current or 'not installed'} -> {target}")
        self._backup_once()
        self.install_application(target)
        self.result.app_installed = True
        return FlowState.VALIDATING

    def _validate(self) -> FlowState:
        commands = ["node", "npm"]
        if self.install_app:
            commands.append(paths.APP_PACKAGE)

        missing = []
        for command in commands:
            location = self.store.resolve_command(command)
            if location:
                self.echo(f"      {command}: {location}")
            else:
                missing.append(command)

        if missing:
            raise ValidationError(
                f"Not resolvable after PATH repair: {', '.join(missing)}"
            )
        return FlowState.DONE


def snapshot_data_dir() -> Optional[Path]:
    """Snapshot the n8n data directory before an install, if it exists."""
    data_dir = paths.get_data_dir()
    if not data_dir.is_dir():
        return None
    return backup.create_snapshot(reason="pre-install", data_dir=data_dir)
