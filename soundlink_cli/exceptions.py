"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class SoundLinkError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(SoundLinkError):
    """Raised for issues related to configuration loading or validation."""


class CatalogError(SoundLinkError):
    """Raised when a catalog link cannot be expanded into tracks."""


class ResolutionError(SoundLinkError):
    """
    Raised when no provider candidate matched and no manual link was supplied.
    """


class ProcessFailedError(SoundLinkError):
    """Raised when an external tool cannot be started or exits with an error."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class OperationCancelled(SoundLinkError):
    """Raised when a cancellation request interrupts an operation."""


class RestoreConflictError(SoundLinkError):
    """
    Raised when a trashed item cannot be restored because the destination exists
    or the trash entry is gone.
    """

    def __init__(self, message: str, restored_count: int = 0):
        super().__init__(message)
        self.restored_count = restored_count


class ManifestError(SoundLinkError):
    """Raised when an undo manifest is missing, unreadable, or empty."""


class JobAlreadyRunningError(SoundLinkError):
    """Raised when a background job is started while another one is active."""


class FileIntegrityError(SoundLinkError):
    """Raised when a downloaded file fails a post-download integrity check."""
