from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PATH = Path("data") / ".env"
DEFAULT_PREVIEW_LENGTH = 35


def _as_bool(raw_value: str | None, default: bool) -> bool:
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _as_positive_int(raw_value: str | None, default: int) -> int:
    if raw_value is None:
        return default
    try:
        value = int(raw_value.strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _optional_path(raw_value: str | None) -> Path | None:
    if not raw_value:
        return None
    return Path(raw_value).expanduser()


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    export_dir: Path
    transcript_path: Path | None
    deep_search: bool
    preview_length: int

    @property
    def media_dir(self) -> Path:
        return self.export_dir / "media"


def load_settings() -> Settings:
    load_dotenv(dotenv_path=Path.cwd() / ENV_PATH, override=False)

    data_dir = Path(os.getenv("CHAT_INSPECTOR_DATA_DIR", "data")).expanduser()
    export_dir = _optional_path(os.getenv("CHAT_INSPECTOR_EXPORT_DIR")) or (data_dir / "export")

    return Settings(
        data_dir=data_dir,
        export_dir=export_dir,
        transcript_path=_optional_path(os.getenv("CHAT_INSPECTOR_TRANSCRIPT_PATH")),
        deep_search=_as_bool(os.getenv("CHAT_INSPECTOR_DEEP_SEARCH"), default=False),
        preview_length=_as_positive_int(
            os.getenv("CHAT_INSPECTOR_PREVIEW_LENGTH"), DEFAULT_PREVIEW_LENGTH
        ),
    )
