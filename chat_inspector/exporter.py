from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Iterable, Literal, Sequence

from chat_inspector.classifier import classify
from chat_inspector.media import redact
from chat_inspector.models import Chunk

ExportFormat = Literal["md", "txt", "json"]
EXPORT_FORMATS: tuple[ExportFormat, ...] = ("md", "txt", "json")

_FENCE_RE = re.compile(r"`{3}[\s\S]*?`{3}")
_PLAIN_TEXT_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^#+\s+", re.MULTILINE), ""),
    (re.compile(r"(\*\*|__)(.*?)\1"), r"\2"),
    (re.compile(r"(\*|_)(.*?)\1"), r"\2"),
)
_PLAIN_TEXT_TAIL_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"`(.+?)`"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\(([^)]+)\)"), r"\1 (\2)"),
    (re.compile(r"^\s*[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*>\s+", re.MULTILINE), ""),
)


def _speaker(chunk: Chunk) -> str:
    if chunk.role == "user":
        return "User"
    return "Thinking" if chunk.is_thought else "Gemini"


def _markdown_body(chunk: Chunk) -> str:
    if chunk.text:
        return chunk.text
    chunk_class = classify(chunk)
    attachment = chunk_class.attachment
    if attachment is None:
        return ""
    if attachment.kind == "inline_file":
        return f"\n[Attached File: {attachment.mime_type or 'unknown'}]\n"
    if attachment.is_inline:
        return f"\n![Attached {attachment.mime_type or 'image'}](Embedded Data)\n"
    return f"\n[Drive Attachment: {attachment.file_id or ''}]\n"


def chunks_to_markdown(chunks: Iterable[Chunk]) -> str:
    sections: list[str] = []
    current: tuple[str, bool] | None = None

    for chunk in chunks:
        state = (chunk.role, chunk.is_thought)
        if state != current:
            current = state
            sections.append(f"\n\n## {_speaker(chunk)}\n\n")
        sections.append(_markdown_body(chunk) + "\n")

    return "".join(sections).strip()


def strip_markdown(text: str) -> str:
    for pattern, replacement in _PLAIN_TEXT_RULES:
        text = pattern.sub(replacement, text)
    text = _FENCE_RE.sub(lambda match: match.group(0).replace("```", "").strip(), text)
    for pattern, replacement in _PLAIN_TEXT_TAIL_RULES:
        text = pattern.sub(replacement, text)
    return text


def _plain_body(chunk: Chunk) -> str:
    if chunk.text:
        return strip_markdown(chunk.text)
    attachment = classify(chunk).attachment
    if attachment is None:
        return ""
    if attachment.kind == "inline_file":
        return "[Attached File]"
    if attachment.is_inline:
        return "[Attached Image/Media]"
    return f"[Drive Attachment: {attachment.file_id or ''}]"


def chunks_to_text(chunks: Iterable[Chunk]) -> str:
    paragraphs = []
    for chunk in chunks:
        prefix = _speaker(chunk).upper()
        paragraphs.append(f"{prefix}: {_plain_body(chunk)}")
    return "\n\n".join(paragraphs)


def chunks_to_clean_json(chunks: Iterable[Chunk]) -> str:
    return json.dumps(redact(chunks), indent=2, ensure_ascii=False)


def _file_hash(key: str) -> str:
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]


def _safe_stem(name: str) -> str:
    stem = Path(name).stem if name else "transcript"
    stem = re.sub(r"[^A-Za-z0-9._-]+", "-", stem).strip("-.")
    return stem or "transcript"


def export_file_name(name: str, fmt: ExportFormat, *, turn_number: int | None = None) -> str:
    stem = _safe_stem(name)
    if fmt == "json":
        stem = f"{stem}-clean"
    if turn_number is not None:
        stem = f"{stem}-turn-{turn_number}"
    return f"{stem}-{_file_hash(f'{name}:{turn_number}')}.{fmt}"


def render_chunks(chunks: Sequence[Chunk], fmt: ExportFormat) -> str:
    if fmt == "md":
        return chunks_to_markdown(chunks)
    if fmt == "txt":
        return chunks_to_text(chunks)
    if fmt == "json":
        return chunks_to_clean_json(chunks)
    raise ValueError(f"Unsupported export format: {fmt}")


def export_chunks(
    *,
    chunks: Sequence[Chunk],
    name: str,
    output_dir: Path,
    fmt: ExportFormat,
    turn_number: int | None = None,
) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / export_file_name(name, fmt, turn_number=turn_number)
    payload = render_chunks(chunks, fmt)
    output_path.write_text(payload + "\n", encoding="utf-8")
    return output_path
