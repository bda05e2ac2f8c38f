"""
Remote fetches for n8nkeeper.

Fetches the latest n8n release document from the npm registry, the Node.js
release index from nodejs.org, and downloads Node.js installer packages.
Every failure here is fatal and raised as FetchError naming the URL.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional

import click
import requests

from . import paths
from .errors import FetchError
from .releases import ReleaseDescriptor, parse_release_index


REQUEST_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 300


@dataclass(frozen=True)
class AppMetadata:
    """Latest n8n release and the Node.js engine constraint it declares."""
    version: str
    node_constraint: str


def _get_json(url: str) -> Any:
    """GET a JSON document, raising FetchError on any failure."""
    try:
        response = requests.get(
            url,
            headers={"Accept": "application/json"},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise FetchError(url, str(e)) from e

    if response.status_code != 200:
        raise FetchError(url, f"HTTP {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        raise FetchError(url, f"invalid JSON: {e}") from e


def fetch_app_metadata(url: Optional[str] = None) -> AppMetadata:
    """
    Fetch the latest n8n release document.

    Raises:
        FetchError: On network errors, bad JSON, or missing fields
    """
    url = url or paths.get_app_metadata_url()
    document = _get_json(url)
    if not isinstance(document, dict):
        raise FetchError(url, "expected a JSON object")

    version = document.get("version")
    if not version:
        raise FetchError(url, "missing 'version'")

    engines = document.get("engines") or {}
    node_constraint = engines.get("node") if isinstance(engines, dict) else None
    if not node_constraint:
        raise FetchError(url, "missing 'engines.node'")

    return AppMetadata(version=str(version), node_constraint=str(node_constraint))


def fetch_release_index(url: Optional[str] = None) -> List[ReleaseDescriptor]:
    """
    Fetch and parse the Node.js release index.

    Raises:
        FetchError: On network errors, bad JSON, or a non-list document
    """
    url = url or paths.get_release_index_url()
    document = _get_json(url)
    if not isinstance(document, list):
        raise FetchError(url, "expected a JSON array")
    return parse_release_index(document)


def get_msi_url(version: str) -> str:
    """URL of the 64-bit Windows installer for a Node.js version."""
    version = version.lstrip("vV")
    return f"{paths.get_node_dist_url()}/v{version}/node-v{version}-x64.msi"


def _content_length(response) -> int:
    """Declared body size, or 0 when absent or not a number."""
    try:
        return int(response.headers.get("content-length", 0))
    except (TypeError, ValueError):
        return 0


def download_file(url: str, dest: Path, show_progress: bool = True,
                  echo: Callable[..., None] = click.echo) -> Path:
    """
    Download a file with optional progress display.

    Args:
        url: URL to download from
        dest: Destination path
        show_progress: Whether to show a progress bar

    Returns:
        The destination path

    Raises:
        FetchError: If the download fails
    """
    try:
        response = requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()

        total_size = _content_length(response)
        downloaded = 0

        with open(dest, "wb") as f:
            for chunk in response.iter_content(chunk_size=8192):
                if chunk:
                    f.write(chunk)
                    downloaded += len(chunk)
                    if show_progress and total_size > 0:
                        percent = (downloaded / total_size) * 100
                        bar_len = 30
                        filled = int(bar_len * downloaded / total_size)
                        bar = "=" * filled + "-" * (bar_len - filled)
                        echo(f"\r      [{bar}] {percent:.0f}%", nl=False)

        if show_progress and total_size > 0:
            echo()
    except (requests.RequestException, OSError) as e:
        raise FetchError(url, str(e)) from e

    return dest
