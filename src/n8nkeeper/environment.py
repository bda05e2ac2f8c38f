"""
Environment variable stores for PATH repair.

Uses a provider pattern to abstract where PATH values live, allowing the
real Windows registry to be swapped for a simulation store in tests or on
non-Windows development machines.

Scopes:
    PROCESS  - the current process environment
    USER     - HKCU\\Environment (persisted per user)
    MACHINE  - HKLM\\...\\Session Manager\\Environment (persisted machine-wide)
"""

import json
import os
import shutil
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from . import paths
from .errors import EnvironmentStoreError


# Persisted Windows PATH values always use ';' regardless of host platform
PATH_SEPARATOR = ";"
PATH_VARIABLE = "Path"

HKCU_ENV = r"Environment"
HKLM_ENV = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"


class Scope(Enum):
    """Where a PATH value lives."""
    PROCESS = "Process"
    USER = "User"
    MACHINE = "Machine"


PERSISTED_SCOPES = (Scope.USER, Scope.MACHINE)


def split_path(value: Optional[str]) -> List[str]:
    """Split a PATH value into entries, discarding empty entries."""
    if not value:
        return []
    return [entry for entry in value.split(PATH_SEPARATOR) if entry]


def join_path(entries: Sequence[str]) -> str:
    """Join entries into a PATH value."""
    return PATH_SEPARATOR.join(entries)


# =============================================================================
# Store Interface
# =============================================================================

class EnvironmentStore(ABC):
    """
    Abstract interface for reading and writing PATH at each scope.

    Persisted scopes have no locking; concurrent runs of the tool are not
    supported.
    """

    @property
    @abstractmethod
    def mode_name(self) -> str:
        """Human-readable name for this store (for display)."""
        pass

    @property
    @abstractmethod
    def is_simulation(self) -> bool:
        """Whether this store touches real machine state."""
        pass

    @abstractmethod
    def get_raw(self, scope: Scope) -> str:
        """Read the raw PATH string for a scope ("" when unset)."""
        pass

    @abstractmethod
    def set_raw(self, scope: Scope, value: str) -> None:
        """Write the raw PATH string for a scope."""
        pass

    def get(self, scope: Scope) -> List[str]:
        """Read a scope's PATH as an ordered list of entries."""
        return split_path(self.get_raw(scope))

    def set(self, scope: Scope, entries: Sequence[str]) -> None:
        """Write a scope's PATH from an ordered list of entries."""
        self.set_raw(scope, join_path(entries))

    def resolve_command(self, name: str) -> Optional[str]:
        """Resolve a command against the process-scope PATH."""
        entries = self.get(Scope.PROCESS)
        if not entries:
            return None
        return shutil.which(name, path=os.pathsep.join(entries))


# =============================================================================
# Windows Registry Store (Production)
# =============================================================================

class WindowsEnvironmentStore(EnvironmentStore):
    """
    Real store backed by the Windows registry and os.environ.

    Persisted writes keep the existing registry value type (REG_EXPAND_SZ
    for new values) and broadcast WM_SETTINGCHANGE so new shells see them.
    """

    @property
    def mode_name(self) -> str:
        return "Windows registry"

    @property
    def is_simulation(self) -> bool:
        return False

    def _key_for(self, scope: Scope):
        import winreg

        if scope is Scope.USER:
            return winreg.HKEY_CURRENT_USER, HKCU_ENV
        if scope is Scope.MACHINE:
            return winreg.HKEY_LOCAL_MACHINE, HKLM_ENV
        raise ValueError(f"Not a persisted scope: {scope}")

    def get_raw(self, scope: Scope) -> str:
        if scope is Scope.PROCESS:
            return os.environ.get("PATH", "")

        import winreg

        root, sub = self._key_for(scope)
        try:
            with winreg.OpenKey(root, sub, 0, winreg.KEY_READ) as key:
                value, _ = winreg.QueryValueEx(key, PATH_VARIABLE)
                return value or ""
        except FileNotFoundError:
            return ""
        except OSError as e:
            raise EnvironmentStoreError(f"Cannot read {scope.value} PATH: {e}") from e

    def set_raw(self, scope: Scope, value: str) -> None:
        import winreg

        if scope is Scope.PROCESS:
            # Persisted entries may hold unexpanded %VARS%
            os.environ["PATH"] = winreg.ExpandEnvironmentStrings(value)
            return

        root, sub = self._key_for(scope)
        try:
            with winreg.OpenKey(root, sub, 0, winreg.KEY_READ | winreg.KEY_SET_VALUE) as key:
                try:
                    _, value_type = winreg.QueryValueEx(key, PATH_VARIABLE)
                except FileNotFoundError:
                    value_type = winreg.REG_EXPAND_SZ
                winreg.SetValueEx(key, PATH_VARIABLE, 0, value_type, value)
        except OSError as e:
            raise EnvironmentStoreError(
                f"Cannot write {scope.value} PATH: {e}"
                + (" (administrator rights required)" if scope is Scope.MACHINE else "")
            ) from e

        self._broadcast_change()

    def _broadcast_change(self) -> None:
        """Tell running applications the environment changed."""
        try:
            import ctypes
            import ctypes.wintypes as wt

            HWND_BROADCAST = 0xFFFF
            WM_SETTINGCHANGE = 0x001A
            SMTO_ABORTIFHUNG = 0x0002
            result = wt.DWORD(0)
            ctypes.windll.user32.SendMessageTimeoutW(
                HWND_BROADCAST, WM_SETTINGCHANGE, 0, "Environment",
                SMTO_ABORTIFHUNG, 5000, ctypes.byref(result),
            )
        except (AttributeError, OSError):
            # Not fatal: new logon sessions pick up the change regardless
            pass


# =============================================================================
# Simulation Store (Testing)
# =============================================================================

class SimulationEnvironmentStore(EnvironmentStore):
    """
    In-memory store for tests and non-Windows machines.

    When ``state_file`` is given, persisted scopes are loaded from and saved
    to that JSON file so separate runs see each other's writes.
    """

    def __init__(self, initial: Optional[Dict[Scope, str]] = None,
                 state_file: Optional[Path] = None):
        self._state_file = state_file
        self._values: Dict[Scope, str] = {scope: "" for scope in Scope}
        self.writes: List[Scope] = []

        if state_file is not None and state_file.exists():
            data = json.loads(state_file.read_text())
            for scope in PERSISTED_SCOPES:
                self._values[scope] = data.get(scope.value, "")

        if initial:
            self._values.update(initial)

    @property
    def mode_name(self) -> str:
        return "Simulation"

    @property
    def is_simulation(self) -> bool:
        return True

    @property
    def state_file(self) -> Optional[Path]:
        return self._state_file

    def get_raw(self, scope: Scope) -> str:
        return self._values[scope]

    def set_raw(self, scope: Scope, value: str) -> None:
        self._values[scope] = value
        self.writes.append(scope)
        if scope in PERSISTED_SCOPES and self._state_file is not None:
            self._save()

    def _save(self) -> None:
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        data = {scope.value: self._values[scope] for scope in PERSISTED_SCOPES}
        self._state_file.write_text(json.dumps(data, indent=2))


# =============================================================================
# Provider Factory
# =============================================================================

_store_instance: Optional[EnvironmentStore] = None


def get_environment_store() -> EnvironmentStore:
    """
    Get the appropriate EnvironmentStore implementation.

    Returns a SimulationEnvironmentStore persisted under N8NKEEPER_SIM_ROOT
    when that variable is set, otherwise the Windows registry store. The
    instance is cached for the lifetime of the process.

    Raises:
        EnvironmentStoreError: Not on Windows and no simulation root set
    """
    global _store_instance

    if _store_instance is None:
        sim_root = paths.get_sim_root()
        if sim_root is not None:
            _store_instance = SimulationEnvironmentStore(
                initial={Scope.PROCESS: os.environ.get("PATH", "")},
                state_file=sim_root / "environment.json",
            )
        elif os.name == "nt":
            _store_instance = WindowsEnvironmentStore()
        else:
            raise EnvironmentStoreError(
                "The registry environment store is only available on Windows.\n"
                "Set N8NKEEPER_SIM_ROOT to use the simulation store."
            )

    return _store_instance


def reset_environment_store() -> None:
    """Reset the cached store instance (for testing)."""
    global _store_instance
    _store_instance = None
