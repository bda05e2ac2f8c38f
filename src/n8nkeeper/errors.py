"""
Exception types for n8nkeeper.

Every fatal condition raised by the toolkit derives from N8nKeeperError so
the CLI can report it uniformly and exit non-zero.
"""


class N8nKeeperError(Exception):
    """Base error for all n8nkeeper failures."""
    pass


class FetchError(N8nKeeperError):
    """Network or parse failure while fetching remote metadata."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class NoCandidateError(N8nKeeperError):
    """No runtime release satisfies the engine constraint."""

    def __init__(self, constraint: str, artifact: str):
        self.constraint = constraint
        self.artifact = artifact
        super().__init__(
            f"No Node.js release matches constraint '{constraint}' "
            f"with platform artifact '{artifact}'"
        )


class InstallError(N8nKeeperError):
    """An installer or package-manager process failed."""
    pass


class ValidationError(N8nKeeperError):
    """Commands are still unresolvable after PATH repair."""
    pass


class BackupError(N8nKeeperError):
    """Error creating, reading, or restoring a data archive."""
    pass


class EnvironmentStoreError(N8nKeeperError):
    """Error reading or writing a persisted environment variable."""
    pass
