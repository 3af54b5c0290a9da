"""Parse-time audit of an AI Studio transcript.

AI Studio adds fields to its export without notice. The parser hands every
object it reads to a ``ValidationReport`` together with the keys it knows for
that part of the document; whatever is left over is counted per section and
printed as one line when loading finishes.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

# Section name -> label used in the summary, in document order.
SECTIONS: dict[str, str] = {
    "transcript": "transcript",
    "chunked_prompt": "chunkedPrompt",
    "run_settings": "runSettings",
    "chunk": "chunk",
    "part": "chunk.parts[]",
    "attachment": "attachment",
}
MAX_KEYS_PER_SECTION = 8
MAX_WARNINGS = 3


@dataclass
class ValidationReport:
    """Unknown keys and warnings collected while parsing one transcript."""

    source: str
    _unknown: dict[str, Counter] = field(
        default_factory=lambda: {section: Counter() for section in SECTIONS}
    )
    _warnings: list[str] = field(default_factory=list)
    chunks_seen: int = 0

    def check_keys(self, actual: dict, known: set[str], section: str) -> None:
        """Count the keys of *actual* that are not in *known* under *section*."""
        if section not in self._unknown:
            raise KeyError(f"Unknown validation section: {section}")
        self._unknown[section].update(key for key in actual if key not in known)

    def record_warning(self, message: str) -> None:
        self._warnings.append(message)

    @property
    def warnings(self) -> list[str]:
        return list(self._warnings)

    def unknown_keys(self, section: str) -> dict[str, int]:
        return dict(self._unknown[section])

    def has_issues(self) -> bool:
        return bool(self._warnings) or any(self._unknown.values())

    def summary(self) -> str | None:
        if not self.has_issues():
            return None

        parts: list[str] = []
        for section, label in SECTIONS.items():
            counts = self._unknown[section]
            if not counts:
                continue
            top = counts.most_common(MAX_KEYS_PER_SECTION)
            parts.append(f"{label}: " + ", ".join(f"{key} ({count}x)" for key, count in top))

        parts.extend(f"warning: {warning}" for warning in self._warnings[:MAX_WARNINGS])
        if len(self._warnings) > MAX_WARNINGS:
            parts.append(f"{len(self._warnings) - MAX_WARNINGS} more warnings")

        return f"-- Validation of {self.source} ({self.chunks_seen} chunks): {'; '.join(parts)}"

    def log(self) -> None:
        message = self.summary()
        if message:
            print(message)
