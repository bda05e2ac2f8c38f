"""
Full uninstall of Node.js and n8n for a clean-slate reinstall.

Every step is best-effort: failures are recorded in the report and the
remaining steps still run. The one hard rule is backup-before-mutate: if
the n8n data directory exists and cannot be snapshotted, nothing is removed.
"""

import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

import click

from . import backup
from . import paths
from .environment import EnvironmentStore, Scope
from .errors import EnvironmentStoreError
from .path_repair import remove_path_entries


UNINSTALL_TIMEOUT = 600

UNINSTALL_KEYS = (
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
)
RUNTIME_DISPLAY_PREFIX = "Node.js"


def split_command_line(command_line: str) -> List[str]:
    """
    Split a registry command line into argv.

    Values look like ``"C:\\Program Files\\app\\uninst.exe" /S``; quotes
    around a token are removed so subprocess can re-quote it.
    """
    parts = shlex.split(command_line, posix=False)
    return [p[1:-1] if len(p) >= 2 and p[0] == p[-1] == '"' else p for p in parts]


@dataclass(frozen=True)
class UninstallEntry:
    """An installed-software registry entry."""
    key_name: str
    display_name: str
    display_version: Optional[str] = None
    uninstall_string: Optional[str] = None
    quiet_uninstall_string: Optional[str] = None

    @property
    def is_msi_product(self) -> bool:
        """MSI installs are keyed by their {product-code} GUID."""
        return self.key_name.startswith("{") and self.key_name.endswith("}")

    def command(self) -> Optional[List[str]]:
        """Silent uninstall command for this entry."""
        if self.is_msi_product:
            return ["msiexec", "/x", self.key_name, "/qn", "/norestart"]
        command_line = self.quiet_uninstall_string or self.uninstall_string
        if command_line:
            return split_command_line(command_line)
        return None


@dataclass
class StepResult:
    """Outcome of one uninstall step."""
    name: str
    ok: bool
    message: str


@dataclass
class UninstallReport:
    """Collected step results and the pre-uninstall snapshot, if any."""
    snapshot: Optional[Path] = None
    steps: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(s.ok for s in self.steps)


def find_runtime_uninstall_entries() -> List[UninstallEntry]:
    """Scan the installed-software registry for Node.js entries."""
    import winreg

    entries = []
    roots = ((winreg.HKEY_LOCAL_MACHINE, UNINSTALL_KEYS), (winreg.HKEY_CURRENT_USER, UNINSTALL_KEYS[:1]))
    for root, subkeys in roots:
        for subkey in subkeys:
            try:
                parent = winreg.OpenKey(root, subkey, 0, winreg.KEY_READ)
            except OSError:
                continue
            with parent:
                index = 0
                while True:
                    try:
                        key_name = winreg.EnumKey(parent, index)
                    except OSError:
                        break
                    index += 1
                    entry = _read_uninstall_entry(parent, key_name)
                    if entry and entry.display_name.startswith(RUNTIME_DISPLAY_PREFIX):
                        entries.append(entry)
    return entries


def _read_uninstall_entry(parent, key_name: str) -> Optional[UninstallEntry]:
    import winreg

    def value(key, name):
        try:
            return winreg.QueryValueEx(key, name)[0]
        except OSError:
            return None

    try:
        with winreg.OpenKey(parent, key_name) as key:
            display_name = value(key, "DisplayName")
            if not display_name:
                return None
            return UninstallEntry(
                key_name=key_name,
                display_name=display_name,
                display_version=value(key, "DisplayVersion"),
                uninstall_string=value(key, "UninstallString"),
                quiet_uninstall_string=value(key, "QuietUninstallString"),
            )
    except OSError:
        return None


def run_uninstaller(entry: UninstallEntry) -> StepResult:
    """Run one registry uninstaller, silently."""
    name = f"Uninstall {entry.display_name}"
    command = entry.command()
    if not command:
        return StepResult(name, False, "no uninstall command registered")
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=UNINSTALL_TIMEOUT)
    except (subprocess.TimeoutExpired, OSError) as e:
        return StepResult(name, False, str(e))
    if result.returncode != 0:
        return StepResult(name, False, f"exit code {result.returncode}")
    return StepResult(name, True, "removed")


def remove_directory(path: Path) -> StepResult:
    """Delete a directory tree if it exists."""
    name = f"Remove {path}"
    if not path.exists():
        return StepResult(name, True, "not present")
    try:
        shutil.rmtree(path)
    except OSError as e:
        return StepResult(name, False, str(e))
    return StepResult(name, True, "removed")


def uninstall_app(resolve: Callable[[str], Optional[str]]) -> StepResult:
    """Remove the global n8n package while npm is still available."""
    name = f"npm uninstall -g {paths.APP_PACKAGE}"
    npm = resolve("npm")
    if not npm:
        return StepResult(name, True, "npm not found, skipped")
    try:
        result = subprocess.run(
            [npm, "uninstall", "-g", paths.APP_PACKAGE],
            capture_output=True, text=True, timeout=UNINSTALL_TIMEOUT,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        return StepResult(name, False, str(e))
    if result.returncode != 0:
        return StepResult(name, False, f"exit code {result.returncode}")
    return StepResult(name, True, "removed")


def full_uninstall(
    store: EnvironmentStore,
    remove_data: bool = False,
    find_entries: Callable[[], List[UninstallEntry]] = find_runtime_uninstall_entries,
    run_entry: Callable[[UninstallEntry], StepResult] = run_uninstaller,
    echo: Callable[..., None] = click.echo,
) -> UninstallReport:
    """
    Remove every trace of Node.js and n8n.

    Steps: snapshot data, npm uninstall n8n, registry uninstallers, remove
    Node.js / npm prefix / npm cache directories (and the data directory
    when ``remove_data``), then drop those directories from USER and
    MACHINE PATH by exact string match.

    Raises:
        BackupError: If the data directory exists but cannot be snapshotted
    """
    report = UninstallReport()
    node_dir = paths.get_node_install_dir()
    npm_prefix = paths.get_npm_prefix()
    npm_cache = paths.get_npm_cache_dir()
    data_dir = paths.get_data_dir()

    if data_dir.is_dir():
        report.snapshot = backup.create_snapshot(reason="pre-uninstall", data_dir=data_dir)
        echo(f"      Snapshot: {report.snapshot}")

    steps = [uninstall_app(store.resolve_command)]

    try:
        entries = find_entries()
    except (ImportError, OSError) as e:
        entries = []
        steps.append(StepResult("Scan installed software", False, str(e)))
    for entry in entries:
        steps.append(run_entry(entry))

    directories = [Path(node_dir), Path(npm_prefix), Path(npm_cache)]
    if remove_data:
        directories.append(data_dir)
    for directory in directories:
        steps.append(remove_directory(directory))

    for scope in (Scope.USER, Scope.MACHINE):
        try:
            removed = remove_path_entries(store, scope, [node_dir, npm_prefix])
            message = f"removed {', '.join(removed)}" if removed else "nothing to remove"
            steps.append(StepResult(f"Clean {scope.value} PATH", True, message))
        except EnvironmentStoreError as e:
            steps.append(StepResult(f"Clean {scope.value} PATH", False, str(e)))

    for step in steps:
        report.steps.append(step)
        icon = "+" if step.ok else "-"
        echo(f"      [{icon}] {step.name}: {step.message}")

    return report
