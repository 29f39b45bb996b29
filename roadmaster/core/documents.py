from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from pathlib import PurePosixPath
from typing import Optional

from ..errors import DuplicateVersionError
from ..schemas import Comment, DocumentVersion, Project, ProjectDocument
from .auth_utils import epoch_millis, make_id, to_day, to_iso

_BYTES_PER_MB = 1024 * 1024
DUPLICATE_SIZE_TOLERANCE_MB = 0.1
_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tif", ".tiff", ".svg"}


def format_size(size_bytes: int) -> str:
    return f"{max(0, int(size_bytes or 0)) / _BYTES_PER_MB:.2f} MB"


def size_in_mb(size: str) -> float:
    text = (size or "").strip().upper().replace("MB", "").strip()
    try:
        return float(text)
    except ValueError:
        return 0.0


def detect_document_type(filename: str, mime_type: Optional[str] = None) -> str:
    mime = (mime_type or "").strip().lower()
    if mime.startswith("image/"):
        return "IMAGE"
    if mime == "application/pdf":
        return "PDF"
    suffix = PurePosixPath((filename or "").strip().lower()).suffix
    if suffix == ".pdf":
        return "PDF"
    if suffix in _IMAGE_EXTENSIONS:
        return "IMAGE"
    return "OTHER"


def _upload_path(filename: str, now: datetime) -> str:
    return f"uploads/{epoch_millis(now)}_{filename}"


def _stored_filename(file_path: str) -> str:
    basename = PurePosixPath(file_path or "").name
    prefix, _, rest = basename.partition("_")
    return rest if rest and prefix.isdigit() else basename


def create_document(
    name: str,
    size_bytes: int,
    folder: str,
    uploaded_by: str,
    now: datetime,
    mime_type: Optional[str] = None,
    subject: str = "",
    tags: Optional[Iterable[str]] = None,
    ref_no: Optional[str] = None,
) -> ProjectDocument:
    filename = (name or "").strip()
    if not filename:
        raise ValueError("Document name is required.")

    size = format_size(size_bytes)
    day = to_day(now)
    version = DocumentVersion(
        id=make_id("ver", now),
        version=1,
        date=day,
        size=size,
        file_path=_upload_path(filename, now),
        uploaded_by=uploaded_by,
        notes="Initial upload",
    )
    document = ProjectDocument(
        id=make_id("doc", now),
        name=filename,
        type=detect_document_type(filename, mime_type),
        date=day,
        size=size,
        folder=(folder or "").strip() or "General",
        subject=subject,
        ref_no=ref_no,
        current_version=1,
        versions=[version],
        created_by=uploaded_by,
        last_modified=to_iso(now),
        status="Active",
    )
    for tag in tags or []:
        document = add_tag(document, tag)
    return document


def current_version_of(doc: ProjectDocument) -> Optional[DocumentVersion]:
    for version in doc.versions:
        if version.version == doc.current_version:
            return version
    return None


def is_duplicate_version(doc: ProjectDocument, filename: str, size_bytes: int) -> bool:
    current = current_version_of(doc)
    if current is None:
        return False
    if _stored_filename(current.file_path) != filename:
        return False
    new_size_mb = max(0, int(size_bytes or 0)) / _BYTES_PER_MB
    return abs(size_in_mb(current.size) - new_size_mb) < DUPLICATE_SIZE_TOLERANCE_MB


def add_document_version(
    doc: ProjectDocument,
    filename: str,
    size_bytes: int,
    uploaded_by: str,
    now: datetime,
    mime_type: Optional[str] = None,
    notes: Optional[str] = None,
) -> ProjectDocument:
    filename = (filename or "").strip()
    if not filename:
        raise ValueError("File name is required.")
    if is_duplicate_version(doc, filename, size_bytes):
        raise DuplicateVersionError(f"{filename} matches the current version of {doc.name}.")

    number = len(doc.versions) + 1
    size = format_size(size_bytes)
    version = DocumentVersion(
        id=make_id("ver", now),
        version=number,
        date=to_day(now),
        size=size,
        file_path=_upload_path(filename, now),
        uploaded_by=uploaded_by,
        notes=notes,
    )
    return doc.model_copy(
        update={
            "versions": [*doc.versions, version],
            "current_version": number,
            "size": size,
            "type": detect_document_type(filename, mime_type),
            "last_modified": to_iso(now),
        }
    )


def revert_to_version(doc: ProjectDocument, version_id: str, now: datetime) -> ProjectDocument:
    target = next((version for version in doc.versions if version.id == version_id), None)
    if target is None:
        raise ValueError(f"Version not found: {version_id}")
    return doc.model_copy(
        update={
            "current_version": target.version,
            "size": target.size,
            "last_modified": to_iso(now),
        }
    )


def add_tag(doc: ProjectDocument, tag: str) -> ProjectDocument:
    value = (tag or "").strip()
    if not value or value in doc.tags:
        return doc
    return doc.model_copy(update={"tags": [*doc.tags, value]})


def remove_tag(doc: ProjectDocument, tag: str) -> ProjectDocument:
    value = (tag or "").strip()
    return doc.model_copy(update={"tags": [item for item in doc.tags if item != value]})


def add_comment(doc: ProjectDocument, author, content: str, now: datetime, parent_id: Optional[str] = None):
    text = (content or "").strip()
    if not text:
        raise ValueError("Comment cannot be empty.")
    comment = Comment(
        id=make_id("cmt", now),
        entity_id=doc.id,
        entity_type="document",
        author_id=str(getattr(author, "id", "") or ""),
        author_name=str(getattr(author, "name", "") or "Unknown"),
        content=text,
        timestamp=to_iso(now),
        parent_id=parent_id,
    )
    return doc.model_copy(update={"comments": [*doc.comments, comment]})


def filter_documents(
    docs: Optional[Iterable[ProjectDocument]],
    folder: Optional[str] = None,
    term: str = "",
) -> list[ProjectDocument]:
    rows = list(docs or [])
    if folder and folder != "All":
        rows = [doc for doc in rows if doc.folder == folder]
    needle = (term or "").strip().lower()
    if needle:
        rows = [
            doc
            for doc in rows
            if needle in doc.name.lower()
            or needle in (doc.subject or "").lower()
            or needle in (doc.ref_no or "").lower()
            or any(needle in tag.lower() for tag in doc.tags)
        ]
    return rows


def document_folders(docs: Optional[Iterable[ProjectDocument]]) -> list[str]:
    return sorted({doc.folder for doc in (docs or []) if doc.folder})


def replace_document(project: Project, doc: ProjectDocument) -> Project:
    documents = list(project.documents or [])
    for index, existing in enumerate(documents):
        if existing.id == doc.id:
            documents[index] = doc
            break
    else:
        documents.append(doc)
    return project.model_copy(update={"documents": documents})


def delete_document(project: Project, doc_id: str) -> Project:
    return project.model_copy(update={"documents": [doc for doc in (project.documents or []) if doc.id != doc_id]})
