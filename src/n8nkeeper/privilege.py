"""
Privilege checks for n8nkeeper.

Machine-wide PATH writes and the Node.js MSI need an elevated
(Administrator) session.
"""

import os


def is_admin() -> bool:
    """Check if running elevated (Administrator on Windows, root elsewhere)."""
    if os.name == "nt":
        try:
            import ctypes
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def elevation_hint() -> str:
    """How to re-run the current command elevated."""
    return "Re-run from an elevated prompt (Run as administrator)."
