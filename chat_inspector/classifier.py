from __future__ import annotations

from chat_inspector.models import ATTACHMENT_FIELDS, Attachment, Chunk, ChunkClass, ChunkKind

# Ordered substring tests; the first match wins.
MIME_EXTENSION_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("quicktime",), "mov"),
    (("webm",), "webm"),
    (("ogg",), "ogg"),
    (("mp4",), "mp4"),
    (("mpeg", "mp3"), "mp3"),
    (("wav",), "wav"),
    (("png",), "png"),
    (("jpeg", "jpg"), "jpg"),
    (("webp",), "webp"),
    (("gif",), "gif"),
    (("pdf",), "pdf"),
    (("text/plain",), "txt"),
)
FALLBACK_EXTENSION = "bin"

KIND_LABELS: dict[str, str] = {
    "inline_image": "Image",
    "inline_audio": "Audio",
    "inline_file": "File",
    "drive_document": "Document",
    "drive_image": "Image",
    "drive_audio": "Audio",
    "drive_video": "Video",
    "drive_file": "File",
}
MIME_FAMILY_LABELS = {
    "image": "Image",
    "audio": "Audio",
    "video": "Video",
}


def mime_to_ext(mime_type: str | None) -> str:
    if not isinstance(mime_type, str):
        return FALLBACK_EXTENSION
    normalized = mime_type.strip().lower()
    if not normalized:
        return FALLBACK_EXTENSION

    for needles, ext in MIME_EXTENSION_RULES:
        if any(needle in normalized for needle in needles):
            return ext

    if "/" not in normalized:
        return FALLBACK_EXTENSION
    subtype = normalized.split("/", 1)[1].split(";", 1)[0].strip()
    return subtype or FALLBACK_EXTENSION


def media_label(kind: ChunkKind, mime_type: str | None = None) -> str:
    """Human label for an attachment, as shown in prompt summaries."""
    if kind == "inline_data":
        family = (mime_type or "").strip().lower().split("/", 1)[0]
        return MIME_FAMILY_LABELS.get(family, "File")
    return KIND_LABELS.get(kind, "File")


def _first_attachment(chunk: Chunk) -> Attachment | None:
    for field_name in ATTACHMENT_FIELDS:
        attachment = chunk.attachment_for(field_name)
        if attachment is not None:
            return attachment
    return None


def classify(chunk: Chunk) -> ChunkClass:
    attachment = _first_attachment(chunk)
    if attachment is not None:
        return ChunkClass(
            kind=attachment.kind,
            mime_type=attachment.mime_type,
            ext=mime_to_ext(attachment.mime_type),
            attachment=attachment,
        )
    if chunk.has_text:
        return ChunkClass(kind="text", mime_type="text/plain", ext="txt")
    return ChunkClass(kind="empty", mime_type=None, ext=FALLBACK_EXTENSION)
