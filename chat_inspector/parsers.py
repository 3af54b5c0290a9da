from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from chat_inspector.coerce import (
    bool_or_false as _bool_or_false,
    int_or_none as _int_or_none,
    string_or_none as _string_or_none,
)
from chat_inspector.models import ATTACHMENT_FIELDS, INLINE_KINDS, Attachment, Chunk, Transcript
from chat_inspector.validation import ValidationReport


class TranscriptParseError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Known keys (AI Studio export)
# ---------------------------------------------------------------------------

_TRANSCRIPT_KEYS = {
    "chunkedPrompt", "runSettings", "systemInstruction", "citations",
    "imagenPrompt", "chunks",
}
_CHUNKED_PROMPT_KEYS = {
    "chunks", "pendingInputs",
}
_CHUNK_KEYS = {
    "text", "parts", "role", "isUser", "tokenCount", "finishReason",
    "isEdited", "branchParent", "branchChildren",
    "grounding", "thoughtSignatures", "thinkingBudget", "isThought",
    "isGeneratedUsingApiKey", "errorMessage",
} | set(ATTACHMENT_FIELDS)
_RUN_SETTINGS_KEYS = {
    "model", "temperature", "topP", "topK", "maxOutputTokens",
    "safetySettings", "responseMimeType",
    "responseModalities", "thinkingConfig",
    "enableCodeExecution", "enableSearchAsATool",
    "enableBrowseAsATool", "enableAutoFunctionResponse",
    "outputResolution", "googleSearch", "thinkingLevel",
    "thinkingBudget", "assetCount", "aspectRatio",
}
_PART_KEYS = {
    "text", "thought", "thoughtSignature", "inlineData", "fileData",
    "executableCode", "codeExecutionResult", "functionCall", "functionResponse",
}
_ATTACHMENT_KEYS = {
    "mimeType", "data", "id", "name", "displayName",
}


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------

def _parse_attachment(
    field_name: str, raw_value: Any, report: ValidationReport
) -> Attachment | None:
    if not isinstance(raw_value, dict):
        return None
    report.check_keys(raw_value, _ATTACHMENT_KEYS, "attachment")
    kind = ATTACHMENT_FIELDS[field_name]
    mime_type = _string_or_none(raw_value.get("mimeType"))
    if kind in INLINE_KINDS:
        data = raw_value.get("data")
        return Attachment(
            field=field_name,
            kind=kind,
            mime_type=mime_type,
            data=data if isinstance(data, str) else None,
        )
    raw_id = raw_value.get("id")
    file_id = None
    if isinstance(raw_id, str) or (isinstance(raw_id, int) and not isinstance(raw_id, bool)):
        file_id = str(raw_id).strip()
    return Attachment(
        field=field_name,
        kind=kind,
        mime_type=mime_type,
        file_id=file_id or None,
    )


def _parts_text(parts: Any, report: ValidationReport) -> tuple[str | None, bool]:
    """Join text parts; the second value is True when every text part is a thought."""
    if not isinstance(parts, list):
        return None, False
    texts: list[str] = []
    thought_flags: list[bool] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        report.check_keys(part, _PART_KEYS, "part")
        part_text = part.get("text")
        if isinstance(part_text, str) and part_text:
            texts.append(part_text)
            thought_flags.append(bool(part.get("thought")))
    if not texts:
        return None, False
    return "".join(texts), all(thought_flags)


def _parse_role(raw_chunk: dict[str, Any], index: int, report: ValidationReport) -> str:
    # Real data uses role: "user"/"model"; fallback to isUser for legacy files
    raw_role = _string_or_none(raw_chunk.get("role"))
    if raw_role in {"user", "model"}:
        return raw_role
    if "isUser" in raw_chunk:
        return "user" if _bool_or_false(raw_chunk.get("isUser")) else "model"
    report.record_warning(f"chunk {index} has role {raw_role!r}, treated as model")
    return "model"


def parse_chunk(raw_chunk: Any, index: int, *, report: ValidationReport) -> Chunk:
    report.chunks_seen += 1
    if not isinstance(raw_chunk, dict):
        report.record_warning(f"chunk {index} is not an object")
        return Chunk(index=index, role="model")

    role = _parse_role(raw_chunk, index, report)
    text = raw_chunk.get("text")
    text = text if isinstance(text, str) else None
    is_thought = _bool_or_false(raw_chunk.get("isThought"))

    if text is None:
        text, all_thoughts = _parts_text(raw_chunk.get("parts"), report)
        if "isThought" not in raw_chunk:
            is_thought = all_thoughts

    token_count = _int_or_none(raw_chunk.get("tokenCount"))
    if token_count is not None and token_count < 0:
        token_count = None

    attachments: list[Attachment] = []
    for field_name in ATTACHMENT_FIELDS:
        attachment = _parse_attachment(field_name, raw_chunk.get(field_name), report)
        if attachment is not None:
            attachments.append(attachment)

    report.check_keys(raw_chunk, _CHUNK_KEYS, "chunk")

    return Chunk(
        index=index,
        role=role,
        text=text,
        is_thought=is_thought and role == "model",
        token_count=token_count,
        attachments=tuple(attachments),
    )


# ---------------------------------------------------------------------------
# Transcript envelope
# ---------------------------------------------------------------------------

def _extract_system_text(payload: dict[str, Any]) -> str | None:
    """Return a system prompt string from systemInstruction."""
    si = payload.get("systemInstruction")

    if isinstance(si, str) and si.strip():
        return si.strip()

    if isinstance(si, dict):
        direct = _string_or_none(si.get("text"))
        if direct:
            return direct
        si_parts = si.get("parts")
        if isinstance(si_parts, list):
            texts: list[str] = []
            for part in si_parts:
                if isinstance(part, dict):
                    text = _string_or_none(part.get("text"))
                    if text:
                        texts.append(text)
            return "\n".join(texts) if texts else None
        # Empty dict (seen in real data): no system prompt
        return None

    return None


def _extract_citations(payload: dict[str, Any]) -> list[str]:
    citations = payload.get("citations")
    if not isinstance(citations, list):
        return []
    uris: list[str] = []
    for citation in citations:
        if isinstance(citation, dict):
            uri = _string_or_none(citation.get("uri"))
            if uri:
                uris.append(uri)
    return uris


def _raw_chunks(payload: dict[str, Any], report: ValidationReport) -> list[Any]:
    chunked_prompt = payload.get("chunkedPrompt")
    if isinstance(chunked_prompt, dict):
        report.check_keys(chunked_prompt, _CHUNKED_PROMPT_KEYS, "chunked_prompt")
        chunks = chunked_prompt.get("chunks")
    else:
        # Fallback: top-level "chunks" for legacy/test data
        chunks = payload.get("chunks")
    if not isinstance(chunks, list):
        report.record_warning("no chunkedPrompt.chunks array found")
        return []
    return chunks


def parse_transcript(payload: Any, *, name: str = "transcript", log: bool = True) -> Transcript:
    """Build a Transcript from already-decoded JSON; malformed shapes yield no chunks."""
    report = ValidationReport(source=name)

    if not isinstance(payload, dict):
        report.record_warning("Expected a JSON object at top level")
        if log:
            report.log()
        return Transcript(name=name)

    report.check_keys(payload, _TRANSCRIPT_KEYS, "transcript")

    run_settings = payload.get("runSettings")
    if isinstance(run_settings, dict):
        report.check_keys(run_settings, _RUN_SETTINGS_KEYS, "run_settings")
    else:
        run_settings = {}

    chunks = tuple(
        parse_chunk(raw_chunk, index, report=report)
        for index, raw_chunk in enumerate(_raw_chunks(payload, report))
    )

    if log:
        report.log()
    return Transcript(
        name=name,
        chunks=chunks,
        run_settings=dict(run_settings),
        system_instruction=_extract_system_text(payload),
        citations=_extract_citations(payload),
    )


def parse_transcript_text(raw_text: str, *, name: str = "transcript", log: bool = True) -> Transcript:
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise TranscriptParseError(f"Invalid JSON: {exc.msg} (line {exc.lineno})") from exc
    return parse_transcript(payload, name=name, log=log)


def load_transcript(path: Path, *, log: bool = True) -> Transcript:
    raw_text = path.read_text(encoding="utf-8")
    return parse_transcript_text(raw_text, name=path.name, log=log)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

def _safety_level(threshold: str) -> str:
    if "BLOCK_NONE" in threshold:
        return "block-none"
    if "BLOCK_ONLY_HIGH" in threshold:
        return "block-high"
    if "BLOCK_MEDIUM" in threshold:
        return "block-med"
    if "BLOCK_LOW" in threshold:
        return "block-low"
    return "off"


def summarize_safety_settings(raw_settings: Any) -> list[dict[str, str]]:
    if not isinstance(raw_settings, list):
        return []
    rows: list[dict[str, str]] = []
    for setting in raw_settings:
        if not isinstance(setting, dict):
            continue
        category = _string_or_none(setting.get("category")) or "UNKNOWN"
        threshold = _string_or_none(setting.get("threshold")) or "UNKNOWN"
        rows.append(
            {
                "category": category.replace("HARM_CATEGORY_", "").replace("_", " "),
                "threshold": threshold.replace("BLOCK_", "").replace("_", " "),
                "level": _safety_level(threshold),
            }
        )
    return rows


def describe_metadata(transcript: Transcript) -> dict[str, Any]:
    settings: dict[str, Any] = {}
    for key, value in transcript.run_settings.items():
        if key == "safetySettings":
            continue
        if value is None or isinstance(value, (str, int, float, bool)):
            settings[key] = value
        else:
            settings[key] = json.dumps(value)

    return {
        "name": transcript.title_str,
        "model": transcript.model,
        "run_settings": settings,
        "safety_settings": summarize_safety_settings(transcript.run_settings.get("safetySettings")),
        "system_instruction": transcript.system_instruction,
        "citations": list(transcript.citations),
    }
