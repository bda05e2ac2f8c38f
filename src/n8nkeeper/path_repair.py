"""
PATH repair for the Node.js runtime and npm global shims.

converge_path() is idempotent: the install flow calls it on every run, and a
second call with the same inputs performs no persisted writes. Entry
matching is exact string comparison; no case folding or trailing-separator
normalisation is applied, so uninstall removes exactly what was added.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from .environment import EnvironmentStore, Scope, PERSISTED_SCOPES, join_path
from .errors import EnvironmentStoreError


@dataclass(frozen=True)
class ConvergenceResult:
    """What converge_path changed."""
    user_changed: bool
    machine_changed: bool
    process_path: str


def ensure_entry(entries: Sequence[str], entry: str) -> Tuple[List[str], bool]:
    """
    Append ``entry`` unless it is already present verbatim.

    Existing entries keep their order. Returns (entries, changed).
    """
    result = list(entries)
    if entry in result:
        return result, False
    result.append(entry)
    return result, True


def unique_entries(entries: Sequence[str]) -> List[str]:
    """Drop repeated entries, keeping the first occurrence of each."""
    seen = set()
    result = []
    for entry in entries:
        if entry not in seen:
            seen.add(entry)
            result.append(entry)
    return result


def ensure_persisted_entry(store: EnvironmentStore, scope: Scope, entry: str) -> Tuple[List[str], bool]:
    """Ensure ``entry`` is in a persisted scope, writing only on change."""
    current = store.get(scope)
    updated, changed = ensure_entry(current, entry)
    if changed:
        store.set(scope, updated)
    return updated, changed


def converge_path(store: EnvironmentStore, node_dir: str, global_bin: str,
                  global_cache: str) -> ConvergenceResult:
    """
    Make Node.js and npm global shims discoverable.

    1. Create the npm global-bin and cache directories.
    2. Ensure global-bin is in the USER PATH.
    3. Ensure the Node.js directory is in the MACHINE PATH.
    4. Rebuild the process PATH as global-bin, USER, MACHINE so npm shims
       win over any same-named binary. Repeated entries are dropped after
       their first occurrence.

    Does not check that node or npm actually resolve afterwards.

    Raises:
        EnvironmentStoreError: If a directory cannot be created or a PATH
            scope cannot be written
    """
    for directory in (global_bin, global_cache):
        try:
            Path(directory).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EnvironmentStoreError(f"Cannot create {directory}: {e}") from e

    user_entries, user_changed = ensure_persisted_entry(store, Scope.USER, global_bin)
    machine_entries, machine_changed = ensure_persisted_entry(store, Scope.MACHINE, node_dir)

    # global-bin is also in USER; keep only the first occurrence of each entry
    process_path = join_path(unique_entries([global_bin] + user_entries + machine_entries))
    store.set_raw(Scope.PROCESS, process_path)

    return ConvergenceResult(
        user_changed=user_changed,
        machine_changed=machine_changed,
        process_path=process_path,
    )


def remove_path_entries(store: EnvironmentStore, scope: Scope, entries: Sequence[str]) -> List[str]:
    """
    Remove exact-string matches of ``entries`` from a persisted scope.

    Remaining entries keep their order. Returns the removed entries (one
    item per removed occurrence).
    """
    if scope not in PERSISTED_SCOPES:
        raise ValueError(f"Not a persisted scope: {scope}")

    targets = set(entries)
    current = store.get(scope)
    kept = [e for e in current if e not in targets]
    removed = [e for e in current if e in targets]
    if removed:
        store.set(scope, kept)
    return removed


def find_duplicates(entries: Sequence[str]) -> List[str]:
    """Entries that occur more than once (exact match), in first-seen order."""
    seen = set()
    duplicates = []
    for entry in entries:
        if entry in seen and entry not in duplicates:
            duplicates.append(entry)
        seen.add(entry)
    return duplicates
