from __future__ import annotations

import base64
import zipfile
from pathlib import Path
from typing import Any, Iterable, Sequence

from chat_inspector.classifier import classify
from chat_inspector.models import Chunk, MediaItem
from chat_inspector.segmentation import as_chunk_sequence

INLINE_OMITTED_TEXT = "Image data omitted."
# Every inline payload is written under this key, whatever its source field.
INLINE_REDACTION_KEY = "inlineImage"
# Redaction precedence: inline data, the drive kinds, then the remaining fields.
REDACTION_FIELDS = (
    "inlineData",
    "driveDocument",
    "driveImage",
    "driveAudio",
    "driveVideo",
    "inlineImage",
    "inlineAudio",
    "inlineFile",
    "driveFile",
)
ARCHIVE_FOLDER = "media"


def extract_media(stream: Iterable[Chunk] | None) -> list[MediaItem]:
    items: list[MediaItem] = []
    for chunk in as_chunk_sequence(stream):
        chunk_class = classify(chunk)
        attachment = chunk_class.attachment
        if attachment is None:
            continue
        items.append(
            MediaItem(
                type="inline" if attachment.is_inline else "drive",
                mime_type=attachment.mime_type,
                ext=chunk_class.ext,
                role=chunk.role,
                index=chunk.index,
                field=attachment.field,
                data=attachment.data if attachment.is_inline else None,
                file_id=None if attachment.is_inline else attachment.file_id,
            )
        )
    return items


def _redact_chunk(chunk: Chunk) -> dict[str, Any]:
    for field_name in REDACTION_FIELDS:
        attachment = chunk.attachment_for(field_name)
        if attachment is None:
            continue
        if attachment.is_inline:
            return {"role": chunk.role, INLINE_REDACTION_KEY: INLINE_OMITTED_TEXT}
        return {"role": chunk.role, field_name: f"File ID: {attachment.file_id or ''}"}

    record: dict[str, Any] = {"role": chunk.role}
    if chunk.text is not None:
        record["text"] = chunk.text
    return record


def redact(stream: Iterable[Chunk] | None) -> list[dict[str, Any]]:
    """Privacy-safe projection: one record per chunk, attachments replaced by placeholders."""
    return [_redact_chunk(chunk) for chunk in as_chunk_sequence(stream)]


def _decode_inline(item: MediaItem) -> bytes:
    if not item.data:
        raise ValueError("no embedded data")
    return base64.b64decode(item.data, validate=False)


def write_media_archive(items: Sequence[MediaItem], output_path: Path) -> Path:
    """Write *items* into a zip under ``media/``; drive items become link files."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for position, item in enumerate(items):
            filename = f"{ARCHIVE_FOLDER}/{item.filename(position)}"
            if item.type == "inline":
                try:
                    archive.writestr(filename, _decode_inline(item))
                except ValueError as exc:
                    archive.writestr(f"{filename}.error.txt", f"Failed to decode: {exc}")
                continue
            archive.writestr(f"{filename}.link.txt", f"{item.download_url or ''}\n")
    return output_path
