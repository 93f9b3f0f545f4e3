"""Attachment upload and link synchronization.

This module provides:
- SyncEngine: Whole-vault and single-document sync passes
- AutoSync: Periodic background sync
- OSSUploader: Signed PUT uploads to OSS style object storage
- DocumentStore / LocalVault: Access to the vault's documents and files
- SyncSettings: Configuration
"""

from vaultsync.attachments.config import SyncSettings
from vaultsync.attachments.exceptions import (
    ArchiveMoveError,
    ConfigurationIncompleteError,
    DocumentNotFoundError,
    FolderNotFoundError,
    RewriteError,
    StorageError,
    UploadError,
    VaultSyncError,
)
from vaultsync.attachments.journal import SyncJournal
from vaultsync.attachments.liveness import ReferenceResolver, is_referenced
from vaultsync.attachments.reporting import ConsoleReporter, NoOpReporter, Reporter
from vaultsync.attachments.scheduler import AutoSync
from vaultsync.attachments.sync import FileOutcome, FileState, SyncEngine, SyncResult
from vaultsync.attachments.uploader import OSSUploader
from vaultsync.attachments.vault import (
    AttachmentFile,
    DocumentReferences,
    DocumentStore,
    LocalVault,
)

__all__ = [
    # Engine
    "SyncEngine",
    "SyncResult",
    "FileOutcome",
    "FileState",
    "AutoSync",
    # Storage
    "OSSUploader",
    "DocumentStore",
    "LocalVault",
    "AttachmentFile",
    "DocumentReferences",
    "ReferenceResolver",
    "is_referenced",
    # Config, reporting, journal
    "SyncSettings",
    "Reporter",
    "NoOpReporter",
    "ConsoleReporter",
    "SyncJournal",
    # Exceptions
    "VaultSyncError",
    "ConfigurationIncompleteError",
    "FolderNotFoundError",
    "UploadError",
    "RewriteError",
    "ArchiveMoveError",
    "StorageError",
    "DocumentNotFoundError",
]
