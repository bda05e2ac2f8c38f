"""
Locations and configuration for n8nkeeper.

All locations can be overridden with environment variables, optionally
loaded from a .env file:

    N8NKEEPER_NODE_DIR       Node.js installation directory
    N8NKEEPER_NPM_PREFIX     npm global-bin directory (shims)
    N8NKEEPER_NPM_CACHE      npm cache directory
    N8N_USER_FOLDER          Parent of n8n's .n8n data directory
    N8NKEEPER_BACKUP_DIR     Where snapshots are written
    N8NKEEPER_REGISTRY_URL   npm registry base URL
    N8NKEEPER_NODE_DIST_URL  Node.js distribution base URL
    N8NKEEPER_SIM_ROOT       Use the simulation environment store

PATH entries are returned as Windows-style strings exactly as they will be
written to the registry; filesystem locations are returned as Path objects.
"""

import ntpath
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
DEFAULT_NODE_DIST_URL = "https://nodejs.org/dist"
APP_PACKAGE = "n8n"


def get_config_dir() -> Path:
    """Get the n8nkeeper configuration directory."""
    return Path.home() / ".n8nkeeper"


def get_env_path() -> Path:
    """Get path to the optional .env configuration file."""
    override = os.environ.get("N8NKEEPER_ENV_FILE")
    if override:
        return Path(override)
    return get_config_dir() / ".env"


def load_config(env_path: Optional[Path] = None) -> bool:
    """
    Load settings from the .env file into the process environment.

    Variables already set in the environment take priority.

    Returns:
        True if a file was loaded
    """
    env_path = env_path or get_env_path()
    if not env_path.exists():
        return False
    return load_dotenv(env_path, override=False)


# =============================================================================
# Runtime / package-manager locations (PATH entries)
# =============================================================================

def get_node_install_dir() -> str:
    """
    Node.js installation directory.

    The default carries a trailing backslash because that is the exact
    string the Node.js MSI writes to the machine PATH.
    """
    override = os.environ.get("N8NKEEPER_NODE_DIR")
    if override:
        return override
    program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
    return ntpath.join(program_files, "nodejs") + "\\"


def get_npm_prefix() -> str:
    """npm global prefix, where global command shims are generated."""
    override = os.environ.get("N8NKEEPER_NPM_PREFIX")
    if override:
        return override
    appdata = os.environ.get("APPDATA") or ntpath.join(str(Path.home()), "AppData", "Roaming")
    return ntpath.join(appdata, "npm")


def get_npm_cache_dir() -> str:
    """npm cache directory."""
    override = os.environ.get("N8NKEEPER_NPM_CACHE")
    if override:
        return override
    local = os.environ.get("LOCALAPPDATA") or ntpath.join(str(Path.home()), "AppData", "Local")
    return ntpath.join(local, "npm-cache")


# =============================================================================
# Data and backups
# =============================================================================

def get_data_dir() -> Path:
    """n8n data directory (``.n8n`` under N8N_USER_FOLDER or home)."""
    user_folder = os.environ.get("N8N_USER_FOLDER")
    base = Path(user_folder) if user_folder else Path.home()
    return base / ".n8n"


def get_backup_dir() -> Path:
    """Directory holding data snapshots."""
    override = os.environ.get("N8NKEEPER_BACKUP_DIR")
    if override:
        return Path(override)
    return Path.home() / "n8n-backups"


def ensure_backup_dir() -> Path:
    """Ensure the backup directory exists and return it."""
    backup_dir = get_backup_dir()
    backup_dir.mkdir(parents=True, exist_ok=True)
    return backup_dir


# =============================================================================
# Remote endpoints
# =============================================================================

def get_registry_url() -> str:
    """npm registry base URL (no trailing slash)."""
    return os.environ.get("N8NKEEPER_REGISTRY_URL", DEFAULT_REGISTRY_URL).rstrip("/")


def get_node_dist_url() -> str:
    """Node.js distribution base URL (no trailing slash)."""
    return os.environ.get("N8NKEEPER_NODE_DIST_URL", DEFAULT_NODE_DIST_URL).rstrip("/")


def get_app_metadata_url() -> str:
    """URL of the latest n8n release document."""
    return f"{get_registry_url()}/{APP_PACKAGE}/latest"


def get_release_index_url() -> str:
    """URL of the Node.js release index."""
    return f"{get_node_dist_url()}/index.json"


def get_sim_root() -> Optional[Path]:
    """Simulation root, when running against the simulation store."""
    sim_root = os.environ.get("N8NKEEPER_SIM_ROOT")
    return Path(sim_root) if sim_root else None
