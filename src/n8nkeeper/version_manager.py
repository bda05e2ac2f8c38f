"""
Version manager for n8nkeeper.

Decides whether the Node.js runtime must be (re)installed, queries installed
versions, and drives the external installers:

- Node.js: the official x64 MSI, run silently through msiexec
- n8n: ``npm install -g n8n@<version>``
"""

import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import click

from . import downloader
from . import paths
from .errors import InstallError
from .releases import ReleaseDescriptor
from .versioning import try_parse_version


INSTALL_TIMEOUT = 900
QUERY_TIMEOUT = 30
OUTPUT_TAIL_LINES = 20


@dataclass(frozen=True)
class InstallDecision:
    """Outcome of comparing the installed runtime with the target release."""
    action_required: bool
    target_version: str
    installed_version: Optional[str] = None


def decide_install(installed_version: Optional[str], target: ReleaseDescriptor) -> InstallDecision:
    """
    Decide whether the runtime must be installed.

    No action only when the installed version parses and equals the target
    exactly. Absent or unparseable installed versions require an install.
    """
    installed = try_parse_version(installed_version)
    action_required = installed is None or installed != target.version
    return InstallDecision(
        action_required=action_required,
        target_version=target.display_version,
        installed_version=installed_version,
    )


def output_tail(text: Optional[str], lines: int = OUTPUT_TAIL_LINES) -> str:
    """Last few lines of process output, for diagnostics."""
    if not text:
        return ""
    return "\n".join(text.strip().splitlines()[-lines:])


def _query_version(command: Optional[str]) -> Optional[str]:
    """Run ``<command> --version`` and return the trimmed output."""
    if not command:
        return None
    try:
        result = subprocess.run(
            [command, "--version"],
            capture_output=True,
            text=True,
            timeout=QUERY_TIMEOUT,
        )
    except (subprocess.TimeoutExpired, OSError):
        return None
    if result.returncode != 0:
        return None
    output = result.stdout.strip()
    return output.splitlines()[-1].strip() if output else None


def get_installed_node_version(resolve: Callable[[str], Optional[str]] = shutil.which) -> Optional[str]:
    """Installed Node.js version (e.g. ``v20.11.1``), or None."""
    return _query_version(resolve("node"))


def get_installed_app_version(resolve: Callable[[str], Optional[str]] = shutil.which) -> Optional[str]:
    """Installed n8n version, or None."""
    return _query_version(resolve(paths.APP_PACKAGE))


def _run_installer(args: List[str], what: str) -> None:
    """Run an installer process to completion, raising on failure."""
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=INSTALL_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        raise InstallError(f"{what} timed out after {INSTALL_TIMEOUT}s") from e
    except OSError as e:
        raise InstallError(f"{what} could not be started: {e}") from e

    if result.returncode != 0:
        tail = output_tail((result.stdout or "") + "\n" + (result.stderr or ""))
        message = f"{what} failed (exit code {result.returncode})"
        if tail:
            message += f"\n{tail}"
        raise InstallError(message)


def install_node(version: str, echo: Callable[..., None] = click.echo) -> None:
    """
    Download and silently install a Node.js release.

    Raises:
        FetchError: If the installer cannot be downloaded
        InstallError: If msiexec fails
    """
    version = version.lstrip("vV")
    url = downloader.get_msi_url(version)

    with tempfile.TemporaryDirectory() as tmp:
        msi_path = Path(tmp) / f"node-v{version}-x64.msi"
        echo(f"      Downloading {url}")
        downloader.download_file(url, msi_path, echo=echo)

        echo("      Running installer (silent)...")
        _run_installer(
            ["msiexec", "/i", str(msi_path), "/qn", "/norestart"],
            f"Node.js {version} installer",
        )


def install_app(version: str, npm_command: Optional[str] = None,
                echo: Callable[..., None] = click.echo) -> None:
    """
    Install or upgrade n8n globally with npm.

    Raises:
        InstallError: If npm is missing or the install fails
    """
    npm = npm_command or shutil.which("npm")
    if not npm:
        raise InstallError("npm not found; cannot install n8n")

    echo(f"      npm install -g {paths.APP_PACKAGE}@{version}")
    _run_installer(
        [npm, "install", "-g", f"{paths.APP_PACKAGE}@{version}"],
        f"{paths.APP_PACKAGE} {version} install",
    )
