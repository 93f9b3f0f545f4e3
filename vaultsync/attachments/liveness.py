"""Decide whether attachments are still referenced by any document.

Liveness reads the store's parsed reference index (embeds and links per
document) rather than re-scanning raw text. The vault-wide rewrite in
:mod:`vaultsync.attachments.sync` scans raw text instead, so the two can
disagree on unusual markup; see DESIGN.md.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .links import candidate_variants, matches_reference
from .vault import AttachmentFile, DocumentReferences, DocumentStore

logger = logging.getLogger(__name__)


def is_referenced(
    file: AttachmentFile, store: DocumentStore, attachment_folder: str
) -> bool:
    """Check whether any document in ``store`` references ``file``."""
    return ReferenceResolver(store, attachment_folder).is_referenced(file)


class ReferenceResolver:
    """Answer liveness queries against one snapshot of the reference index.

    The index is read from the store on first use and reused for the rest of
    the pass.
    """

    def __init__(self, store: DocumentStore, attachment_folder: str):
        self.store = store
        self.attachment_folder = attachment_folder
        self._index: Optional[Dict[str, DocumentReferences]] = None
        # Set when some document could not be read; unmatched files are then
        # not provably unreferenced
        self.incomplete = False

    def _load_index(self) -> Dict[str, DocumentReferences]:
        if self._index is None:
            index = {}
            for document in self.store.list_documents():
                try:
                    index[document] = self.store.get_references(document)
                except Exception as e:
                    logger.warning(f"Could not read references of {document}: {e}")
                    self.incomplete = True
            self._index = index
            logger.debug(f"Loaded reference index for {len(index)} documents")
        return self._index

    def is_referenced(self, file: AttachmentFile) -> bool:
        variants = candidate_variants(file, self.attachment_folder)
        for document, refs in self._load_index().items():
            for reference in refs.all():
                if matches_reference(reference, variants):
                    logger.debug(f"{file.path} referenced by {document} as {reference!r}")
                    return True
        return False

    def partition(
        self, files: Iterable[AttachmentFile]
    ) -> Tuple[List[AttachmentFile], List[AttachmentFile]]:
        """Split ``files`` into (referenced, unreferenced), keeping their order."""
        referenced: List[AttachmentFile] = []
        unreferenced: List[AttachmentFile] = []
        for file in files:
            if self.is_referenced(file):
                referenced.append(file)
            else:
                unreferenced.append(file)
        return referenced, unreferenced
