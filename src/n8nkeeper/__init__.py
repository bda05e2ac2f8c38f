"""
n8nkeeper - keeps a Windows n8n installation and its Node.js runtime
compatible and working.
"""

from .__version__ import __version__

__all__ = ["__version__"]
