"""Sync engine for attachment uploads.

This module moves locally stored attachments to object storage and points
every document reference at the uploaded copy.

Components:
- SyncResult / FileOutcome: Per-pass counters and per-file outcomes
- SyncEngine: Orchestrate whole-vault and single-document passes

Whichever entry point runs, a local file is only deleted after the document
rewrite that replaces its references has been written back. If a pass is
interrupted between the two, the local file stays behind as a harmless
duplicate.
"""

import fcntl
import logging
import posixpath
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Optional

from .config import SyncSettings
from .exceptions import (
    ArchiveMoveError,
    ConfigurationIncompleteError,
    FolderNotFoundError,
    RewriteError,
)
from .journal import ARCHIVE, DELETE, REWRITE, UPLOAD, SyncJournal
from .links import (
    LinkOccurrence,
    apply_substitutions,
    candidate_variants,
    extract_local_links,
    replace_references,
)
from .liveness import ReferenceResolver
from .reporting import NoOpReporter, Reporter
from .uploader import OSSUploader
from .vault import DOCUMENT_EXTENSION, AttachmentFile, DocumentStore

logger = logging.getLogger(__name__)


class FileState(Enum):
    """Lifecycle of an attachment within one pass."""

    DISCOVERED = "discovered"
    REFERENCED = "referenced"
    UNREFERENCED = "unreferenced"
    ARCHIVED = "archived"
    UPLOADED = "uploaded"
    LINKS_REWRITTEN = "links_rewritten"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass
class FileOutcome:
    """What happened to one attachment during a pass."""

    path: str
    state: FileState = FileState.DISCOVERED
    remote_url: str | None = None
    links_replaced: int = 0
    error: str | None = None


@dataclass
class SyncResult:
    """Result of one sync pass."""

    total: int = 0
    uploaded: int = 0
    failed: int = 0
    replaced: int = 0
    archived: int = 0
    skipped: bool = False
    outcomes: list[FileOutcome] = field(default_factory=list)

    def summary(self) -> str:
        """Human-readable summary, e.g. ``Uploaded 3/4, failed 1, replaced 5 links``."""
        message = f"Uploaded {self.uploaded}/{self.total}"
        if self.failed > 0:
            message += f", failed {self.failed}"
        return message + f", replaced {self.replaced} links"


def is_attachment(file: AttachmentFile, settings: SyncSettings) -> bool:
    """True for files of an allowed type; documents never count."""
    return (
        file.extension != DOCUMENT_EXTENSION
        and file.extension in settings.allowed_extensions
    )


def collect_candidates(
    store: DocumentStore, settings: SyncSettings
) -> list[AttachmentFile]:
    """Attachments eligible for sync: allowed extension, not archived."""
    folder = settings.attachment_folder
    archive_prefix = settings.archive_folder + "/"
    return [
        f
        for f in store.list_files(folder)
        if f.path.startswith(folder + "/")
        and not f.path.startswith(archive_prefix)
        and is_attachment(f, settings)
    ]


class SyncEngine:
    """Orchestrate attachment sync between a vault and object storage.

    Only one pass runs at a time per engine. When ``lock_path`` is given, only
    one pass runs at a time across every process sharing that file. A pass
    started while another is running is skipped and returns a result with
    ``skipped=True``.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: SyncSettings,
        uploader: Optional[OSSUploader] = None,
        reporter: Optional[Reporter] = None,
        journal: Optional[SyncJournal] = None,
        lock_path: Optional[Path] = None,
    ):
        """Initialize sync engine.

        Args:
            store: Vault holding documents and attachments
            settings: Storage credentials and sync options
            uploader: Uploader to use (default: OSSUploader built from settings)
            reporter: Progress reporter (default: reports nothing)
            journal: Operation journal (optional)
            lock_path: File locked with flock for the duration of each pass
                (e.g. ``{vault}/.vaultsync/sync.lock``)
        """
        self.store = store
        self.settings = settings
        self.uploader = uploader or OSSUploader(settings)
        self.reporter = reporter or NoOpReporter()
        self.journal = journal
        self.lock_path = Path(lock_path) if lock_path is not None else None
        self._pass_lock = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._pass_lock.locked()

    def validate_settings(self) -> None:
        """Raise ConfigurationIncompleteError if required settings are empty."""
        missing = self.settings.missing_fields()
        if missing:
            raise ConfigurationIncompleteError(missing)

    def _report_skipped(self, silent: bool) -> None:
        logger.info("Sync already in progress, skipping")
        self._notice("Sync already in progress, skipping", silent)

    def _lock_vault(self) -> Optional[IO]:
        """Take the cross-process lock; None if another process holds it."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(self.lock_path, "a")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            return None
        return lock_file

    @contextmanager
    def _single_pass(self, silent: bool):
        if not self._pass_lock.acquire(blocking=False):
            self._report_skipped(silent)
            yield False
            return

        lock_file = None
        try:
            if self.lock_path is not None:
                lock_file = self._lock_vault()
                if lock_file is None:
                    self._report_skipped(silent)
                    yield False
                    return
            yield True
        finally:
            if lock_file is not None:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
                lock_file.close()
            self.reporter.clear_status()
            self._pass_lock.release()

    def _journal(self, op_type: str, path: str, status: str, **kwargs) -> None:
        if self.journal is not None:
            self.journal.record(op_type, path, status, **kwargs)

    def _notice(self, message: str, silent: bool) -> None:
        if not silent:
            self.reporter.notice(message)

    # Whole-vault sync

    def sync_all(self, silent: bool = False) -> SyncResult:
        """Upload every referenced attachment and archive the rest.

        Args:
            silent: Suppress reporter output (background runs)

        Returns:
            SyncResult for the pass

        Raises:
            ConfigurationIncompleteError: Required settings are missing
            FolderNotFoundError: The attachment folder doesn't exist
        """
        with self._single_pass(silent) as acquired:
            if not acquired:
                return SyncResult(skipped=True)
            try:
                self.validate_settings()
            except ConfigurationIncompleteError:
                self._notice("Please configure OSS settings first", silent)
                raise
            result = self._sync_all(silent)
            if self.journal is not None and result.failed == 0:
                self.journal.truncate()
            return result

    def collect_candidates(self) -> list[AttachmentFile]:
        return collect_candidates(self.store, self.settings)

    def _sync_all(self, silent: bool) -> SyncResult:
        folder = self.settings.attachment_folder
        if not self.store.folder_exists(folder):
            self._notice(f'Attachment folder "{folder}" not found', silent)
            raise FolderNotFoundError(f"Attachment folder not found: {folder}")

        files = self.collect_candidates()
        resolver = ReferenceResolver(self.store, folder)
        referenced, unreferenced = resolver.partition(files)
        logger.info(
            f"Found {len(files)} attachments: {len(referenced)} referenced, "
            f"{len(unreferenced)} unreferenced"
        )

        result = SyncResult(total=len(referenced))

        if unreferenced:
            if resolver.incomplete:
                logger.warning(
                    f"Reference index incomplete, not archiving {len(unreferenced)} files"
                )
            else:
                self.archive(unreferenced, result)
                self._notice(
                    f"Moved {result.archived} unreferenced files to archive", silent
                )

        if not referenced:
            self._notice("No referenced attachments to upload", silent)
            logger.info(result.summary())
            return result

        for i, file in enumerate(referenced, start=1):
            if not silent:
                self.reporter.status(f"Uploading ({i}/{result.total}): {file.name}")
            result.outcomes.append(self._sync_file(file, result))

        self.reporter.clear_status()
        summary = result.summary()
        self._notice(summary, silent)
        logger.info(summary)
        return result

    def _sync_file(self, file: AttachmentFile, result: SyncResult) -> FileOutcome:
        """Upload one attachment, rewrite its references, then maybe delete it."""
        outcome = FileOutcome(file.path, FileState.REFERENCED)

        try:
            url = self.upload(file)
            outcome.state = FileState.UPLOADED
            outcome.remote_url = url
            modified = self.replace_links_in_vault(file, url)
        except RewriteError as e:
            logger.error(f"Failed to rewrite links for {file.path}: {e}")
            result.replaced += e.modified
            result.failed += 1
            outcome.links_replaced = e.modified
            outcome.error = str(e)
            outcome.state = FileState.FAILED
            return outcome
        except Exception as e:
            logger.error(f"Failed to upload {file.path}: {e}")
            result.failed += 1
            outcome.error = str(e)
            outcome.state = FileState.FAILED
            return outcome

        result.uploaded += 1
        result.replaced += modified
        outcome.links_replaced = modified

        if modified == 0:
            # Uploaded but no reference text matched: keep the local copy
            logger.warning(
                f"No links replaced for {file.path}; keeping local file ({outcome.remote_url})"
            )
            return outcome

        outcome.state = FileState.LINKS_REWRITTEN
        if not self.settings.keep_local_file:
            self._delete(file, outcome)
        return outcome

    def upload(self, file: AttachmentFile) -> str:
        """Upload one attachment and return its URL.

        Raises:
            UploadError: The upload failed
        """
        content = self.store.read_binary(file.path)
        try:
            url = self.uploader.upload(content, file.extension, name=file.name)
        except Exception as e:
            self._journal(UPLOAD, file.path, "failed", error=str(e))
            raise
        self._journal(UPLOAD, file.path, "success", metadata={"url": url})
        return url

    def replace_links_in_vault(self, file: AttachmentFile, url: str) -> int:
        """Point every reference to ``file`` in every document at ``url``.

        Returns:
            Number of documents modified

        Raises:
            RewriteError: One or more documents could not be written; the
                error carries the count of documents that were modified
        """
        variants = candidate_variants(file, self.settings.attachment_folder)
        modified = 0
        failed_documents = []

        for document in self.store.list_documents():
            changed = []

            def rewrite(content: str) -> str:
                new_content, _ = replace_references(content, variants, url)
                changed.append(new_content != content)
                return new_content

            try:
                self.store.process_text(document, rewrite)
            except Exception as e:
                logger.error(f"Failed to rewrite {document}: {e}")
                failed_documents.append(document)
                continue

            if changed and changed[0]:
                modified += 1
                logger.debug(f"Rewrote references to {file.path} in {document}")

        if failed_documents:
            self._journal(
                REWRITE,
                file.path,
                "failed",
                error=f"{len(failed_documents)} documents not written",
                metadata={"url": url, "modified": modified, "failed": failed_documents},
            )
            raise RewriteError(
                f"Could not write {len(failed_documents)} documents",
                modified=modified,
                failed_documents=failed_documents,
            )

        self._journal(
            REWRITE,
            file.path,
            "success" if modified else "noop",
            metadata={"url": url, "modified": modified},
        )
        return modified

    def archive(self, files: list[AttachmentFile], result: SyncResult) -> None:
        """Move unreferenced files into the archive folder, one at a time."""
        archive_folder = self.settings.archive_folder
        try:
            if not self.store.folder_exists(archive_folder):
                self.store.create_folder(archive_folder)
        except Exception as e:
            logger.error(f"Failed to create archive folder {archive_folder}: {e}")
            return

        for file in files:
            outcome = FileOutcome(file.path, FileState.UNREFERENCED)
            try:
                self._archive_file(file, archive_folder)
                outcome.state = FileState.ARCHIVED
                result.archived += 1
            except ArchiveMoveError as e:
                logger.error(str(e))
                outcome.error = str(e)
            result.outcomes.append(outcome)

    def _archive_file(self, file: AttachmentFile, archive_folder: str) -> None:
        new_path = f"{archive_folder}/{file.name}"
        try:
            self.store.rename(file.path, new_path)
        except Exception as e:
            self._journal(ARCHIVE, file.path, "failed", error=str(e))
            raise ArchiveMoveError(
                f"Failed to move {file.path} to archive: {e}"
            ) from e
        self._journal(ARCHIVE, file.path, "success", metadata={"to": new_path})
        logger.debug(f"Archived {file.path} -> {new_path}")

    def _delete(self, file: AttachmentFile, outcome: FileOutcome) -> None:
        try:
            self.store.delete(file.path)
        except Exception as e:
            # The rewrite is already durable; the local file is just a leftover
            logger.error(f"Failed to delete {file.path}: {e}")
            self._journal(DELETE, file.path, "failed", error=str(e))
            outcome.error = str(e)
            return
        self._journal(DELETE, file.path, "success")
        outcome.state = FileState.DELETED

    # Single-document sync

    def resolve_link(self, link_path: str, document: str) -> Optional[AttachmentFile]:
        """Find the attachment a link inside ``document`` points at.

        Tries the path as written from the vault root, then relative to the
        document's folder, then inside the attachment folder, and finally a
        file with the same name anywhere under the attachment folder if
        exactly one exists.
        """
        folder = self.settings.attachment_folder
        name = posixpath.basename(link_path)
        candidates = [link_path]
        document_folder = posixpath.dirname(document)
        if document_folder:
            candidates.append(posixpath.normpath(f"{document_folder}/{link_path}"))
        if folder:
            candidates.append(f"{folder}/{name}")

        for candidate in candidates:
            if candidate.startswith("../"):
                continue
            if self.store.file_exists(candidate):
                return AttachmentFile(candidate)

        same_name = [f for f in self.store.list_files(folder) if f.name == name]
        if len(same_name) == 1:
            return same_name[0]
        return None

    def sync_document(self, document: str, silent: bool = False) -> SyncResult:
        """Upload the attachments referenced by one document.

        Substitutions are accumulated in memory, the document is written
        once, and only then are the local files deleted.

        Raises:
            ConfigurationIncompleteError: Required settings are missing
            DocumentNotFoundError: The document doesn't exist
        """
        with self._single_pass(silent) as acquired:
            if not acquired:
                return SyncResult(skipped=True)
            try:
                self.validate_settings()
            except ConfigurationIncompleteError:
                self._notice("Please configure OSS settings first", silent)
                raise
            return self._sync_document(document, silent)

    def _sync_document(self, document: str, silent: bool) -> SyncResult:
        content = self.store.read_text(document)

        occurrences: list[LinkOccurrence] = []
        seen = set()
        for occurrence in extract_local_links(content):
            if occurrence.original not in seen:
                seen.add(occurrence.original)
                occurrences.append(occurrence)

        # Embedded notes and files of other types are left alone
        targets: list[tuple[LinkOccurrence, Optional[AttachmentFile]]] = []
        for occurrence in occurrences:
            file = self.resolve_link(occurrence.path, document)
            if file is not None and not is_attachment(file, self.settings):
                logger.info(f"Skipping {file.path}: not an attachment type")
                continue
            targets.append((occurrence, file))

        if not targets:
            self._notice("No local attachments found in this file", silent)
            return SyncResult()

        result = SyncResult(total=len(targets))
        new_content = content
        urls: dict[str, str] = {}
        # (file, substitutions) for every occurrence whose text was replaced
        applied: list[tuple[AttachmentFile, list[tuple[str, str]]]] = []

        for i, (occurrence, file) in enumerate(targets, start=1):
            if not silent:
                self.reporter.status(f"Uploading ({i}/{result.total}): {occurrence.path}")

            if file is None:
                logger.warning(f"File not found: {occurrence.path}")
                result.failed += 1
                result.outcomes.append(
                    FileOutcome(occurrence.path, FileState.FAILED, error="File not found")
                )
                continue

            outcome = FileOutcome(file.path, FileState.REFERENCED)
            result.outcomes.append(outcome)
            try:
                if file.path not in urls:
                    urls[file.path] = self.upload(file)
                url = urls[file.path]
                outcome.state = FileState.UPLOADED
                outcome.remote_url = url

                substitutions = occurrence.substitutions(url)
                new_content, changed = apply_substitutions(new_content, substitutions)
            except Exception as e:
                logger.error(f"Failed to upload {file.path}: {e}")
                result.failed += 1
                outcome.state = FileState.FAILED
                outcome.error = str(e)
                continue

            if changed:
                applied.append((file, substitutions))
            elif not _covered_by(occurrence, file, applied):
                logger.error(f"Link replacement failed: {file.path}")
                result.failed += 1
                outcome.state = FileState.FAILED
                outcome.error = "Link replacement failed"
                continue

            result.uploaded += 1
            result.replaced += 1
            outcome.links_replaced = 1

        if new_content != content:
            confirmed = self._persist_document(document, applied, result)
            if confirmed is not None:
                for outcome in result.outcomes:
                    if outcome.path in confirmed and outcome.state == FileState.UPLOADED:
                        outcome.state = FileState.LINKS_REWRITTEN
                if not self.settings.keep_local_file:
                    self._delete_confirmed(applied, confirmed, result)

        self.reporter.clear_status()
        summary = result.summary()
        self._notice(summary, silent)
        logger.info(summary)
        return result

    def _persist_document(
        self,
        document: str,
        applied: list[tuple[AttachmentFile, list[tuple[str, str]]]],
        result: SyncResult,
    ) -> Optional[set[str]]:
        """Write the substitutions back, re-applied to the current document text.

        Returns:
            Paths of files whose substitution took effect in the written
            document, or None if the write failed
        """
        confirmed: set[str] = set()

        def rewrite(current: str) -> str:
            confirmed.clear()
            for file, substitutions in applied:
                current, changed = apply_substitutions(current, substitutions)
                if changed:
                    confirmed.add(file.path)
            return current

        try:
            self.store.process_text(document, rewrite)
        except Exception as e:
            logger.error(f"Failed to write {document}, keeping local files: {e}")
            self._journal(REWRITE, document, "failed", error=str(e))
            result.failed += result.uploaded
            result.uploaded = 0
            result.replaced = 0
            for outcome in result.outcomes:
                if outcome.state == FileState.UPLOADED:
                    outcome.state = FileState.FAILED
                    outcome.links_replaced = 0
                    outcome.error = f"Document write failed: {e}"
            return None

        self._journal(
            REWRITE,
            document,
            "success",
            metadata={"files": sorted(confirmed)},
        )
        return confirmed

    def _delete_confirmed(
        self,
        applied: list[tuple[AttachmentFile, list[tuple[str, str]]]],
        confirmed: set[str],
        result: SyncResult,
    ) -> None:
        deleted = set()
        outcomes = {o.path: o for o in result.outcomes if o.state != FileState.FAILED}
        for file, _ in applied:
            if file.path in deleted or file.path not in confirmed:
                continue
            deleted.add(file.path)
            self._delete(file, outcomes.get(file.path) or FileOutcome(file.path))


def _covered_by(
    occurrence: LinkOccurrence,
    file: AttachmentFile,
    applied: list[tuple[AttachmentFile, list[tuple[str, str]]]],
) -> bool:
    """True if an earlier substitution for ``file`` already rewrote ``occurrence``.

    ``![](a%20b.png)`` also replaces its decoded form ``![](a b.png)``.
    """
    return any(
        earlier.path == file.path
        and any(search == occurrence.original for search, _ in substitutions)
        for earlier, substitutions in applied
    )
