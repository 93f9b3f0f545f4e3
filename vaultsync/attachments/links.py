"""
Link extraction and path-variant matching for attachment references.

Two reference grammars are recognised in document text:

- Markdown images: ``![alt](destination)``
- Wiki embeds: ``![[destination|alias]]``

A single attachment can be written many ways (bare name, name without
extension, vault path, percent-encoded, ``../`` prefixed, ...). Each way is
produced by one generator in :data:`CANDIDATE_GENERATORS`; the resulting
variant set drives both the liveness check and the vault-wide rewrite.
Matching errs on the side of over-matching: archiving a file by mistake is
reversible, a broken link is not.
"""

import posixpath
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import quote, unquote

from .vault import AttachmentFile

MD_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")
WIKI_IMAGE_RE = re.compile(r"!\[\[([^\]|]+)(?:\|([^\]]*))?\]\]")

REMOTE_PREFIXES = ("http://", "https://")

# Characters left alone by JavaScript's encodeURIComponent
URI_COMPONENT_SAFE = "-_.!~*'()"

MARKDOWN = "markdown"
WIKI = "wiki"


def percent_encode(value: str) -> str:
    """Encode like ``encodeURIComponent``: ``/`` is escaped too."""
    return quote(value, safe=URI_COMPONENT_SAFE)


def percent_encode_path(path: str) -> str:
    """Encode every segment of ``path`` and keep the ``/`` separators."""
    return quote(path, safe=URI_COMPONENT_SAFE + "/")


def is_remote(destination: str) -> bool:
    return destination.startswith(REMOTE_PREFIXES)


def normalize_link_path(destination: str) -> str:
    """Decode a link destination into a canonical vault-relative path.

    ``./`` and ``..`` segments are resolved, repeated and back slashes are
    collapsed to single ``/`` and leading slashes are dropped. A ``..`` that
    climbs above the vault root is kept as-is.
    """
    path = unquote(destination).strip().replace("\\", "/")
    if not path:
        return ""
    path = posixpath.normpath(path).lstrip("/")
    return "" if path == "." else path


@dataclass(frozen=True)
class LinkOccurrence:
    """One attachment reference found in a document."""

    original: str  # full matched markup, e.g. ``![alt](assets/a.png)``
    path: str  # canonical decoded local path
    kind: str  # MARKDOWN or WIKI
    label: Optional[str] = None  # alt text or wiki alias

    def _render(self, url: str, label: Optional[str]) -> str:
        if self.kind == MARKDOWN:
            return f"![{label or ''}]({url})"
        if label is not None:
            return f"![[{url}|{label}]]"
        return f"![[{url}]]"

    def rewrite(self, url: str) -> str:
        """Return the markup with only the destination replaced by ``url``."""
        return self._render(url, self.label)

    def substitutions(self, url: str) -> List[Tuple[str, str]]:
        """Pairs of (text to find, replacement) for the as-written and decoded forms."""
        pairs = [(self.original, self.rewrite(url))]
        decoded = unquote(self.original)
        if decoded != self.original:
            label = unquote(self.label) if self.label is not None else None
            pairs.append((decoded, self._render(url, label)))
        return pairs


def extract_local_links(content: str) -> List[LinkOccurrence]:
    """Find every local (non-http) attachment reference in ``content``.

    Occurrences are returned in document order.
    """
    found: List[Tuple[int, LinkOccurrence]] = []

    for match in MD_IMAGE_RE.finditer(content):
        destination = match.group(2)
        if is_remote(destination.strip()):
            continue
        path = normalize_link_path(destination)
        if path:
            found.append(
                (
                    match.start(),
                    LinkOccurrence(match.group(0), path, MARKDOWN, match.group(1)),
                )
            )

    for match in WIKI_IMAGE_RE.finditer(content):
        destination = match.group(1)
        if is_remote(destination.strip()):
            continue
        path = normalize_link_path(destination)
        if path:
            found.append(
                (
                    match.start(),
                    LinkOccurrence(match.group(0), path, WIKI, match.group(2)),
                )
            )

    found.sort(key=lambda item: item[0])
    return [occurrence for _, occurrence in found]


def apply_substitutions(
    content: str, substitutions: Iterable[Tuple[str, str]]
) -> Tuple[str, bool]:
    """Replace every occurrence of each search string.

    Returns:
        Tuple of (new content, whether anything changed)
    """
    new_content = content
    for search, replacement in substitutions:
        if search and search in new_content:
            new_content = new_content.replace(search, replacement)
    return new_content, new_content != content


# Candidate generators, in the order the variants are listed.
# Each returns "" when the variant doesn't apply.
CandidateGenerator = Callable[[AttachmentFile, str], str]


def _name(file: AttachmentFile, folder: str) -> str:
    return file.name


def _stem(file: AttachmentFile, folder: str) -> str:
    return file.stem


def _path(file: AttachmentFile, folder: str) -> str:
    return file.path


def _encoded_name(file: AttachmentFile, folder: str) -> str:
    return percent_encode(file.name)


def _encoded_path(file: AttachmentFile, folder: str) -> str:
    return percent_encode_path(file.path)


def _parent_path(file: AttachmentFile, folder: str) -> str:
    return f"../{file.path}"


def _parent_encoded_path(file: AttachmentFile, folder: str) -> str:
    return f"../{percent_encode_path(file.path)}"


def _folder_name(file: AttachmentFile, folder: str) -> str:
    return f"{folder}/{file.name}" if folder else ""


def _folder_encoded_name(file: AttachmentFile, folder: str) -> str:
    return f"{folder}/{percent_encode(file.name)}" if folder else ""


def _parent_folder_name(file: AttachmentFile, folder: str) -> str:
    return f"../{folder}/{file.name}" if folder else ""


def _parent_folder_encoded_name(file: AttachmentFile, folder: str) -> str:
    return f"../{folder}/{percent_encode(file.name)}" if folder else ""


CANDIDATE_GENERATORS: List[CandidateGenerator] = [
    _name,
    _stem,
    _path,
    _encoded_name,
    _encoded_path,
    _parent_path,
    _parent_encoded_path,
    _folder_name,
    _folder_encoded_name,
    _parent_folder_name,
    _parent_folder_encoded_name,
]


def candidate_variants(file: AttachmentFile, attachment_folder: str) -> List[str]:
    """All textual forms under which ``file`` may be referenced, de-duplicated."""
    folder = attachment_folder.strip("/")
    variants: List[str] = []
    for generator in CANDIDATE_GENERATORS:
        candidate = generator(file, folder)
        if candidate and candidate not in variants:
            variants.append(candidate)
    return variants


def matches_reference(reference: str, variants: Iterable[str]) -> bool:
    """Check whether a reference string points at the file behind ``variants``.

    A reference matches when it, or its percent-decoded form, equals or ends
    with any variant. Suffix matching also covers ``/``-prefixed forms.
    """
    if not reference:
        return False
    decoded = unquote(reference)
    for variant in variants:
        if reference == variant or reference.endswith(variant):
            return True
        if decoded == variant or decoded.endswith(variant):
            return True
    return False


def replace_references(content: str, variants: List[str], url: str) -> Tuple[str, int]:
    """Point every reference whose destination equals a variant at ``url``.

    Both grammars are rewritten in one pass per grammar; alt text and wiki
    aliases are preserved.

    Returns:
        Tuple of (new content, number of references replaced)
    """
    if not variants:
        return content, 0

    # Longest first so the alternation reads the same way it matches
    alternatives = "|".join(
        re.escape(v) for v in sorted(set(variants), key=len, reverse=True)
    )
    md_pattern = re.compile(rf"(!\[[^\]]*\]\()(?:{alternatives})(\))")
    wiki_pattern = re.compile(rf"(!\[\[)(?:{alternatives})(\|[^\]]*)?\]\]")

    content, md_count = md_pattern.subn(
        lambda m: f"{m.group(1)}{url}{m.group(2)}", content
    )
    content, wiki_count = wiki_pattern.subn(
        lambda m: f"{m.group(1)}{url}{m.group(2) or ''}]]", content
    )
    return content, md_count + wiki_count
