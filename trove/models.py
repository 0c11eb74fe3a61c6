"""
trove/models.py — Asset records, search candidates and upload validation.

Asset         — one catalog row, built from a SQLite row via Asset.from_row()
SearchCandidate — transient per-query view of an Asset with match info + score
SemanticHit   — validated {asset_id, similarity} row from the vector index

Validation helpers mirror the upload rules: allowed mime types, filename
safety predicate, filename sanitiser.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Literal

logger = logging.getLogger(__name__)

FileType = Literal["image", "pdf"]
ProcessingStatus = Literal["pending", "complete", "failed"]
MatchType = Literal["keyword", "semantic"]

FILE_TYPES: tuple[str, ...] = ("image", "pdf")
STATUS_PENDING = "pending"
STATUS_COMPLETE = "complete"
STATUS_FAILED = "failed"
PROCESSING_STATUSES: tuple[str, ...] = (STATUS_PENDING, STATUS_COMPLETE, STATUS_FAILED)

FILENAME_MAX_LENGTH = 255
FILENAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-_. ]+$")
EXTENSION_PATTERN = re.compile(r"^\.[a-zA-Z0-9]{1,10}$")
_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9\-_ ]")
_SANITIZED_BASE_MAX = 100
_EXTENSION_MAX = 10

ALLOWED_IMAGE_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
})
ALLOWED_PDF_TYPES = frozenset({"application/pdf"})

_EXT_MIME = {
    "jpg":  "image/jpeg",
    "jpeg": "image/jpeg",
    "png":  "image/png",
    "gif":  "image/gif",
    "webp": "image/webp",
    "svg":  "image/svg+xml",
    "pdf":  "application/pdf",
}
_MIME_EXT = {
    "image/jpeg":    "jpg",
    "image/png":     "png",
    "image/gif":     "gif",
    "image/webp":    "webp",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
}


class AssetNotFoundError(LookupError):
    """Raised when an asset id has no row in the store."""


class AssetValidationError(ValueError):
    """Raised when user-supplied asset fields fail validation."""


# ---------------------------------------------------------------------------
# Upload / filename helpers
# ---------------------------------------------------------------------------

def get_file_type(mime_type: str) -> FileType | None:
    if mime_type in ALLOWED_IMAGE_TYPES:
        return "image"
    if mime_type in ALLOWED_PDF_TYPES:
        return "pdf"
    return None


def get_extension(filename: str) -> str:
    dot = filename.rfind(".")
    return filename[dot + 1:].lower() if dot > 0 else ""


def mime_type_from_extension(extension: str) -> str:
    return _EXT_MIME.get(extension.lower().lstrip("."), "application/octet-stream")


def extension_for_mime(mime_type: str) -> str:
    """Storage extension for an allowed mime type. Raises KeyError otherwise."""
    return _MIME_EXT[mime_type]


def _split_ext(name: str) -> tuple[str, str]:
    dot = name.rfind(".")
    if dot > 0:
        return name[:dot], name[dot:]
    return name, ""


def sanitize_filename(name: str) -> str:
    """
    Restrict the base to [A-Za-z0-9-_ ] with spaces → '-', and the extension
    to at most 10 alphanumerics (dropped when nothing survives).
    """
    base, ext = _split_ext(name)
    cleaned = _SANITIZE_RE.sub("", base)
    cleaned = re.sub(r"\s+", "-", cleaned)[:_SANITIZED_BASE_MAX]
    ext = re.sub(r"[^a-zA-Z0-9]", "", ext)[:_EXTENSION_MAX]
    return (cleaned or "untitled") + (f".{ext}" if ext else "")


def validate_filename(filename: str) -> str | None:
    """Return an error message, or None when the filename is acceptable."""
    if not filename or not filename.strip():
        return "Filename cannot be empty."
    if len(filename) > FILENAME_MAX_LENGTH:
        return f"Filename cannot exceed {FILENAME_MAX_LENGTH} characters."
    base, ext = _split_ext(filename)
    if not FILENAME_PATTERN.match(base):
        return "Filename contains invalid characters."
    if ext and not EXTENSION_PATTERN.match(ext):
        return "Filename extension must be 1-10 letters or digits."
    return None


def is_valid_filename(filename: str) -> bool:
    return validate_filename(filename) is None


def query_tokens(query: str) -> list[str]:
    """Lowercased whitespace tokens of a search query."""
    return query.lower().split()


def normalize_tags(tags: Any, limit: int | None = None) -> list[str]:
    """Strip, lowercase, drop blanks and duplicates; keep first-seen order."""
    if not isinstance(tags, (list, tuple)):
        return []
    out: list[str] = []
    seen: set[str] = set()
    for t in tags:
        if not isinstance(t, str):
            continue
        tag = t.strip().lower()
        if tag and tag not in seen:
            seen.add(tag)
            out.append(tag)
    return out[:limit] if limit is not None else out


# ---------------------------------------------------------------------------
# Asset
# ---------------------------------------------------------------------------

def _json_list(raw: Any) -> list[Any]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding malformed JSON list column: %r", raw)
        return []
    return value if isinstance(value, list) else []


@dataclass
class Asset:
    id:                str
    filename:          str
    original_filename: str
    file_type:         str
    mime_type:         str
    file_size:         int
    storage_path:      str
    created_at:        str
    updated_at:        str
    uploaded_by:       str = ""
    thumbnail_path:    str | None = None
    ai_summary:        str | None = None
    ai_tags:           list[str] = field(default_factory=list)
    extracted_text:    str | None = None
    user_tags:         list[str] = field(default_factory=list)
    processing_status: str = STATUS_PENDING
    download_count:    int = 0
    embedding:         list[float] | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Asset":
        """Build from a sqlite3.Row / mapping; JSON columns are decoded here."""
        r = dict(row)
        if not r.get("id"):
            raise ValueError("asset row without id")
        if r.get("file_type") not in FILE_TYPES:
            raise ValueError(f"asset {r['id']}: unknown file_type {r.get('file_type')!r}")
        embedding = _json_list(r.get("embedding")) or None
        return cls(
            id                = r["id"],
            filename          = r["filename"],
            original_filename = r.get("original_filename") or r["filename"],
            file_type         = r["file_type"],
            mime_type         = r.get("mime_type") or "",
            file_size         = int(r.get("file_size") or 0),
            storage_path      = r.get("storage_path") or "",
            created_at        = r.get("created_at") or "",
            updated_at        = r.get("updated_at") or "",
            uploaded_by       = r.get("uploaded_by") or "",
            thumbnail_path    = r.get("thumbnail_path"),
            ai_summary        = r.get("ai_summary"),
            ai_tags           = [str(t) for t in _json_list(r.get("ai_tags"))],
            extracted_text    = r.get("extracted_text"),
            user_tags         = [str(t) for t in _json_list(r.get("user_tags"))],
            processing_status = r.get("processing_status") or STATUS_PENDING,
            download_count    = int(r.get("download_count") or 0),
            embedding         = [float(v) for v in embedding] if embedding else None,
        )

    def to_dict(self, include_embedding: bool = False) -> dict[str, Any]:
        d = {
            "id":                self.id,
            "filename":          self.filename,
            "original_filename": self.original_filename,
            "file_type":         self.file_type,
            "mime_type":         self.mime_type,
            "file_size":         self.file_size,
            "storage_path":      self.storage_path,
            "thumbnail_path":    self.thumbnail_path,
            "uploaded_by":       self.uploaded_by,
            "ai_summary":        self.ai_summary,
            "ai_tags":           list(self.ai_tags),
            "extracted_text":    self.extracted_text,
            "user_tags":         list(self.user_tags),
            "processing_status": self.processing_status,
            "download_count":    self.download_count,
            "has_embedding":     self.embedding is not None,
            "created_at":        self.created_at,
            "updated_at":        self.updated_at,
        }
        if include_embedding:
            d["embedding"] = self.embedding
        return d


# ---------------------------------------------------------------------------
# Search types
# ---------------------------------------------------------------------------

@dataclass
class SearchCandidate:
    asset:      Asset
    match_type: MatchType
    similarity: float | None = None
    score:      int = 0

    @property
    def id(self) -> str:
        return self.asset.id

    def with_score(self, score: int, similarity: float | None = None) -> "SearchCandidate":
        sim = similarity if similarity is not None else self.similarity
        return replace(self, score=score, similarity=sim)

    def to_dict(self) -> dict[str, Any]:
        d = self.asset.to_dict()
        d["match_type"] = self.match_type
        d["similarity"] = self.similarity
        d["score"] = self.score
        return d


@dataclass(frozen=True)
class SemanticHit:
    asset_id:   str
    similarity: float

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SemanticHit":
        """Validate a raw vector-index row. Raises ValueError on bad input."""
        asset_id = row.get("asset_id")
        if not isinstance(asset_id, str) or not asset_id:
            raise ValueError(f"vector row without asset_id: {row!r}")
        if "similarity" in row:
            sim = float(row["similarity"])
        elif "_distance" in row:
            sim = 1.0 - float(row["_distance"])
        else:
            raise ValueError(f"vector row without score: {asset_id}")
        if sim != sim:  # NaN
            raise ValueError(f"vector row with NaN score: {asset_id}")
        return cls(asset_id=asset_id, similarity=min(1.0, max(0.0, sim)))
