"""
Exceptions for attachment synchronization.
"""


class VaultSyncError(Exception):
    """Base exception for attachment sync operations."""


class ConfigurationIncompleteError(VaultSyncError):
    """Raised when credentials, bucket, endpoint or prefix are missing."""

    def __init__(self, missing: list[str]):
        super().__init__(f"Configuration incomplete, missing: {', '.join(missing)}")
        self.missing = missing


class FolderNotFoundError(VaultSyncError):
    """Raised when the configured attachment folder does not exist."""


class UploadError(VaultSyncError):
    """Raised when a single object upload fails."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class RewriteError(VaultSyncError):
    """Raised when one or more documents could not be written back."""

    def __init__(self, message: str, modified: int, failed_documents: list[str]):
        super().__init__(message)
        self.modified = modified
        self.failed_documents = failed_documents


class ArchiveMoveError(VaultSyncError):
    """Raised when an unreferenced file cannot be moved into the archive."""


class StorageError(VaultSyncError):
    """Raised when a document store operation fails."""


class DocumentNotFoundError(StorageError):
    """Raised when a document or file does not exist in the store."""


class InvalidPathError(StorageError):
    """Raised when a path is invalid or escapes the vault root."""
