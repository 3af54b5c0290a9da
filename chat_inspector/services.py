from __future__ import annotations

from pathlib import Path
from typing import Any

from chat_inspector.classifier import classify
from chat_inspector.config import Settings
from chat_inspector.exporter import ExportFormat, export_chunks
from chat_inspector.media import extract_media, redact, write_media_archive
from chat_inspector.models import (
    Chunk,
    MediaItem,
    Prompt,
    Segmentation,
    Transcript,
    Turn,
    estimate_tokens,
)
from chat_inspector.parsers import describe_metadata, load_transcript
from chat_inspector.search import search as search_prompts
from chat_inspector.segmentation import segment_conversation, segment_turns, turn_chunks_for

EMPTY_PROMPT_LABEL = "[Empty Message]"
MEDIA_PROMPT_LABEL = "[Uploaded File]"


def truncate(text: str, length: int) -> str:
    if not text:
        return ""
    if len(text) <= length:
        return text
    return text[: max(length - 1, 0)] + "..."


def prompt_label(prompt: Prompt) -> str:
    if prompt.text:
        return prompt.text
    if prompt.has_media:
        return MEDIA_PROMPT_LABEL
    return EMPTY_PROMPT_LABEL


class InspectorService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.transcript: Transcript | None = None
        self.segmentation = Segmentation(prompts=(), turns=())

    def load(self, path: Path | None = None) -> Transcript:
        source = path or self.settings.transcript_path
        if source is None:
            raise RuntimeError("No transcript path given and CHAT_INSPECTOR_TRANSCRIPT_PATH is unset")
        transcript = load_transcript(source)
        self.use_transcript(transcript)
        print(
            f"-- Loaded {transcript.name}: {len(self.prompts)} prompts, "
            f"{len(self.segmentation.turns)} turns, {len(transcript.chunks)} chunks"
        )
        return transcript

    def use_transcript(self, transcript: Transcript) -> None:
        self.transcript = transcript
        self.segmentation = segment_conversation(transcript.chunks)

    @property
    def chunks(self) -> tuple[Chunk, ...]:
        return self.transcript.chunks if self.transcript else ()

    @property
    def prompts(self) -> tuple[Prompt, ...]:
        return self.segmentation.prompts

    @property
    def name(self) -> str:
        return self.transcript.title_str if self.transcript else "[Untitled]"

    # -- serialization -------------------------------------------------------

    @staticmethod
    def _serialize_chunk(chunk: Chunk) -> dict[str, Any]:
        chunk_class = classify(chunk)
        payload: dict[str, Any] = {
            "index": chunk.index,
            "role": chunk.role,
            "kind": chunk_class.kind,
            "text": chunk.text or "",
            "is_thought": chunk.is_thought,
            "token_count": chunk.token_count,
        }
        attachment = chunk_class.attachment
        if attachment is not None:
            payload["mime_type"] = attachment.mime_type
            payload["ext"] = chunk_class.ext
            if attachment.is_inline:
                payload["data_uri"] = (
                    f"data:{attachment.mime_type or 'application/octet-stream'};base64,{attachment.data}"
                    if attachment.data
                    else None
                )
            else:
                payload["file_id"] = attachment.file_id
                payload["open_url"] = (
                    f"https://drive.google.com/file/d/{attachment.file_id}"
                    if attachment.file_id
                    else None
                )
        return payload

    def _serialize_turn(self, turn: Turn, *, anchor: str | None = None) -> dict[str, Any]:
        return {
            "role": turn.role,
            "label": turn.label,
            "is_thought": turn.is_thought,
            "anchor": anchor if anchor is not None else turn.anchor,
            "start_index": turn.start_index,
            "token_count": turn.token_count,
            "chunks": [self._serialize_chunk(chunk) for chunk in turn.chunks],
        }

    def _serialize_prompt(self, prompt: Prompt) -> dict[str, Any]:
        label = prompt_label(prompt)
        payload = prompt.to_dict()
        payload["label"] = label
        payload["preview"] = truncate(label, self.settings.preview_length)
        return payload

    # -- queries -------------------------------------------------------------

    def list_prompts(self) -> list[dict[str, Any]]:
        return [self._serialize_prompt(prompt) for prompt in self.prompts]

    def get_prompt_chunks(self, prompt_index: int) -> list[Chunk]:
        return turn_chunks_for(self.chunks, prompt_index, self.prompts)

    def get_turn(self, prompt_index: int) -> dict[str, Any] | None:
        chunks = self.get_prompt_chunks(prompt_index)
        if not chunks:
            return None
        prompt = self.prompts[prompt_index]
        messages = []
        for turn in segment_turns(chunks):
            anchor = f"msg-user-{prompt_index}" if turn.role == "user" else None
            messages.append(self._serialize_turn(turn, anchor=anchor))
        return {
            "prompt": self._serialize_prompt(prompt),
            "messages": messages,
            "has_previous": prompt_index > 0,
            "has_next": prompt_index + 1 < len(self.prompts),
        }

    def get_conversation(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "messages": [self._serialize_turn(turn) for turn in self.segmentation.turns],
        }

    def search(self, query: str, *, deep: bool | None = None) -> list[int]:
        use_deep = self.settings.deep_search if deep is None else deep
        return sorted(search_prompts(self.prompts, self.chunks, query, use_deep))

    def media_items(self, prompt_index: int | None = None) -> list[MediaItem]:
        if prompt_index is None:
            return extract_media(self.chunks)
        return extract_media(self.get_prompt_chunks(prompt_index))

    def get_media(self, prompt_index: int | None = None) -> list[dict[str, Any]]:
        items = []
        for position, item in enumerate(self.media_items(prompt_index)):
            payload = item.to_dict()
            payload["filename"] = item.filename(position)
            items.append(payload)
        return items

    def get_clean_json(self) -> list[dict[str, Any]]:
        return redact(self.chunks)

    def get_metadata(self) -> dict[str, Any]:
        if self.transcript is None:
            return describe_metadata(Transcript(name=""))
        return describe_metadata(self.transcript)

    def get_statistics(self) -> dict[str, Any]:
        chunks = self.chunks
        model_name = self.transcript.model if self.transcript else None
        reported_tokens = sum(chunk.token_count or 0 for chunk in chunks)
        estimated_tokens = sum(
            estimate_tokens(chunk.text, model_name)
            for chunk in chunks
            if chunk.token_count is None and chunk.has_text
        )
        return {
            "chunks": len(chunks),
            "user_chunks": sum(1 for chunk in chunks if chunk.role == "user"),
            "model_chunks": sum(1 for chunk in chunks if chunk.role == "model"),
            "thought_chunks": sum(1 for chunk in chunks if chunk.is_thought),
            "prompts": len(self.prompts),
            "turns": len(self.segmentation.turns),
            "attachments": sum(1 for chunk in chunks if classify(chunk).is_media),
            "reported_tokens": reported_tokens,
            "estimated_tokens": estimated_tokens,
            "total_tokens": reported_tokens + estimated_tokens,
        }

    # -- exports -------------------------------------------------------------

    def export(
        self,
        fmt: ExportFormat,
        *,
        prompt_index: int | None = None,
        output_dir: Path | None = None,
    ) -> Path | None:
        if prompt_index is None:
            chunks = list(self.chunks)
            turn_number = None
        else:
            chunks = self.get_prompt_chunks(prompt_index)
            turn_number = prompt_index + 1
        if not chunks:
            return None
        return export_chunks(
            chunks=chunks,
            name=self.name,
            output_dir=output_dir or self.settings.export_dir,
            fmt=fmt,
            turn_number=turn_number,
        )

    def export_media(
        self,
        *,
        prompt_index: int | None = None,
        output_path: Path | None = None,
    ) -> Path | None:
        items = self.media_items(prompt_index)
        if not items:
            return None
        if output_path is None:
            stem = Path(self.name).stem or "transcript"
            suffix = f"_turn_{prompt_index + 1}" if prompt_index is not None else ""
            output_path = self.settings.media_dir / f"Media_{stem}{suffix}.zip"
        return write_media_archive(items, output_path)
