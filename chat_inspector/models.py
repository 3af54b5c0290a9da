from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import tiktoken


Role = Literal["user", "model"]
ChunkKind = Literal[
    "inline_data",
    "inline_image",
    "inline_audio",
    "inline_file",
    "drive_document",
    "drive_image",
    "drive_audio",
    "drive_video",
    "drive_file",
    "text",
    "empty",
]
MediaSource = Literal["inline", "drive"]

# Raw chunk field -> kind, in classification precedence order.
ATTACHMENT_FIELDS: dict[str, ChunkKind] = {
    "inlineData": "inline_data",
    "inlineImage": "inline_image",
    "inlineAudio": "inline_audio",
    "inlineFile": "inline_file",
    "driveDocument": "drive_document",
    "driveImage": "drive_image",
    "driveAudio": "drive_audio",
    "driveVideo": "drive_video",
    "driveFile": "drive_file",
}
INLINE_KINDS = {"inline_data", "inline_image", "inline_audio", "inline_file"}
DRIVE_KINDS = {"drive_document", "drive_image", "drive_audio", "drive_video", "drive_file"}


def _safe_encoding(model_name: str | None):
    if model_name:
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            pass
    return tiktoken.get_encoding("cl100k_base")


def estimate_tokens(text: str | None, model_name: str | None = None) -> int:
    if not text or not text.strip():
        return 0
    encoding = _safe_encoding(model_name)
    return len(encoding.encode(text))


@dataclass(frozen=True, slots=True)
class Attachment:
    field: str
    kind: ChunkKind
    mime_type: str | None = None
    data: str | None = None
    file_id: str | None = None

    @property
    def is_inline(self) -> bool:
        return self.kind in INLINE_KINDS


@dataclass(frozen=True, slots=True)
class Chunk:
    index: int
    role: Role
    text: str | None = None
    is_thought: bool = False
    token_count: int | None = None
    attachments: tuple[Attachment, ...] = ()

    @property
    def is_user(self) -> bool:
        return self.role == "user"

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    @property
    def attachment(self) -> Attachment | None:
        return self.attachments[0] if self.attachments else None

    def attachment_for(self, field_name: str) -> Attachment | None:
        for attachment in self.attachments:
            if attachment.field == field_name:
                return attachment
        return None


@dataclass(frozen=True, slots=True)
class ChunkClass:
    kind: ChunkKind
    mime_type: str | None
    ext: str
    attachment: Attachment | None = None

    @property
    def is_media(self) -> bool:
        return self.attachment is not None


@dataclass(frozen=True, slots=True)
class Prompt:
    index: int
    original_index: int
    text: str
    has_media: bool
    media_count: int
    media_types: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "original_index": self.original_index,
            "text": self.text,
            "has_media": self.has_media,
            "media_count": self.media_count,
            "media_types": list(self.media_types),
        }


@dataclass(frozen=True, slots=True)
class Turn:
    role: Role
    is_thought: bool
    chunks: tuple[Chunk, ...]
    user_turn_index: int | None = None

    @property
    def start_index(self) -> int:
        return self.chunks[0].index

    @property
    def end_index(self) -> int:
        return self.chunks[-1].index

    @property
    def token_count(self) -> int:
        return sum(chunk.token_count or 0 for chunk in self.chunks)

    @property
    def anchor(self) -> str | None:
        if self.user_turn_index is None:
            return None
        return f"msg-user-{self.user_turn_index}"

    @property
    def label(self) -> str:
        if self.role == "user":
            return "You"
        return "Thinking" if self.is_thought else "Gemini"


@dataclass(frozen=True, slots=True)
class MediaItem:
    type: MediaSource
    mime_type: str | None
    ext: str
    role: Role
    index: int
    field: str
    data: str | None = None
    file_id: str | None = None

    def filename(self, position: int) -> str:
        return f"{self.role}_{self.index}_{position}.{self.ext}"

    @property
    def download_url(self) -> str | None:
        if self.type != "drive" or not self.file_id:
            return None
        return f"https://drive.google.com/uc?export=download&id={self.file_id}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "mime_type": self.mime_type,
            "ext": self.ext,
            "role": self.role,
            "index": self.index,
        }
        if self.type == "inline":
            payload["data"] = self.data
        else:
            payload["id"] = self.file_id
        return payload


@dataclass(frozen=True, slots=True)
class Segmentation:
    prompts: tuple[Prompt, ...]
    turns: tuple[Turn, ...]

    @property
    def user_turns(self) -> tuple[Turn, ...]:
        return tuple(turn for turn in self.turns if turn.user_turn_index is not None)


@dataclass(slots=True)
class Transcript:
    name: str
    chunks: tuple[Chunk, ...] = ()
    run_settings: dict[str, Any] = field(default_factory=dict)
    system_instruction: str | None = None
    citations: list[str] = field(default_factory=list)

    @property
    def model(self) -> str | None:
        raw = self.run_settings.get("model")
        if not isinstance(raw, str) or not raw.strip():
            return None
        raw = raw.strip()
        if raw.startswith("models/"):
            return raw[len("models/"):]
        return raw

    @property
    def title_str(self) -> str:
        return self.name or "[Untitled]"
