from __future__ import annotations

import io
import tempfile
import unittest
import zipfile
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from chat_inspector.config import Settings
from chat_inspector.models import Chunk, Prompt, Transcript
from chat_inspector.services import (
    EMPTY_PROMPT_LABEL,
    MEDIA_PROMPT_LABEL,
    InspectorService,
    prompt_label,
    truncate,
)


FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_PATH = FIXTURES_DIR / "ai_studio_sample.json"


def _settings(tmp_path: Path, *, transcript_path: Path | None = None, deep_search: bool = False) -> Settings:
    return Settings(
        data_dir=tmp_path,
        export_dir=tmp_path / "export",
        transcript_path=transcript_path,
        deep_search=deep_search,
        preview_length=12,
    )


class LabelTests(unittest.TestCase):
    def test_truncate(self) -> None:
        self.assertEqual(truncate("short", 10), "short")
        self.assertEqual(truncate("exactly10!", 10), "exactly10!")
        self.assertEqual(truncate("a longer sentence", 10), "a longer ...")
        self.assertEqual(truncate("", 10), "")

    def test_prompt_label_fallbacks(self) -> None:
        text_prompt = Prompt(index=0, original_index=0, text="hi", has_media=True, media_count=1)
        media_prompt = Prompt(index=1, original_index=2, text="", has_media=True, media_count=1)
        empty_prompt = Prompt(index=2, original_index=4, text="", has_media=False, media_count=0)

        self.assertEqual(prompt_label(text_prompt), "hi")
        self.assertEqual(prompt_label(media_prompt), MEDIA_PROMPT_LABEL)
        self.assertEqual(prompt_label(empty_prompt), EMPTY_PROMPT_LABEL)


class InspectorServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = tempfile.TemporaryDirectory()
        self.tmp_path = Path(self._tmp_dir.name)

    def tearDown(self) -> None:
        self._tmp_dir.cleanup()

    def _loaded_service(self, **kwargs) -> InspectorService:
        service = InspectorService(_settings(self.tmp_path, transcript_path=SAMPLE_PATH, **kwargs))
        with redirect_stdout(io.StringIO()):
            service.load()
        return service

    def test_load_logs_summary_line(self) -> None:
        service = InspectorService(_settings(self.tmp_path))
        output = io.StringIO()
        with redirect_stdout(output):
            service.load(SAMPLE_PATH)
        self.assertIn("-- Loaded ai_studio_sample.json: 4 prompts, 10 turns, 12 chunks", output.getvalue())

    def test_load_without_path_raises(self) -> None:
        service = InspectorService(_settings(self.tmp_path))
        with self.assertRaises(RuntimeError):
            service.load()

    def test_unloaded_service_is_empty(self) -> None:
        service = InspectorService(_settings(self.tmp_path))
        self.assertEqual(service.list_prompts(), [])
        self.assertIsNone(service.get_turn(0))
        self.assertEqual(service.get_conversation(), {"name": "[Untitled]", "messages": []})
        self.assertEqual(service.get_clean_json(), [])
        self.assertEqual(service.get_statistics()["chunks"], 0)
        self.assertIsNone(service.export("md"))
        self.assertIsNone(service.export_media())

    def test_prompt_previews_use_configured_length(self) -> None:
        prompts = self._loaded_service().list_prompts()
        self.assertEqual(prompts[0]["preview"], "How do I pa...")
        self.assertEqual(prompts[0]["label"], "How do I parse JSON in Python?")
        self.assertEqual(prompts[2]["preview"], "[Uploaded F...")

    def test_get_turn_pairs_prompt_with_its_exchange(self) -> None:
        service = self._loaded_service()
        turn = service.get_turn(2)

        self.assertEqual(turn["prompt"]["original_index"], 7)
        self.assertEqual([message["role"] for message in turn["messages"]], ["user", "model"])
        image_chunk = turn["messages"][0]["chunks"][0]
        self.assertEqual(image_chunk["kind"], "inline_image")
        self.assertEqual(image_chunk["data_uri"], "data:image/png;base64,iVBORw0KGgo=")
        self.assertIsNone(service.get_turn(4))
        self.assertIsNone(service.get_turn(-1))

    def test_search_uses_configured_default_mode(self) -> None:
        self.assertEqual(self._loaded_service().search("needle"), [])
        self.assertEqual(self._loaded_service(deep_search=True).search("needle"), [2])
        self.assertEqual(self._loaded_service(deep_search=True).search("needle", deep=False), [])
        self.assertEqual(self._loaded_service().search(""), [0, 1, 2, 3])

    def test_statistics_estimate_only_unreported_text(self) -> None:
        service = InspectorService(_settings(self.tmp_path))
        service.use_transcript(
            Transcript(
                name="estimates.json",
                chunks=(
                    Chunk(index=0, role="user", text="counted", token_count=5),
                    Chunk(index=1, role="model", text="estimated"),
                    Chunk(index=2, role="model", text="   "),
                    Chunk(index=3, role="model", text="thought", is_thought=True),
                ),
                run_settings={"model": "models/gemini-2.5-flash"},
            )
        )

        with patch("chat_inspector.services.estimate_tokens", return_value=7) as estimate_mock:
            stats = service.get_statistics()

        self.assertEqual(estimate_mock.call_count, 2)
        estimate_mock.assert_any_call("estimated", "gemini-2.5-flash")
        self.assertEqual(stats["reported_tokens"], 5)
        self.assertEqual(stats["estimated_tokens"], 14)
        self.assertEqual(stats["total_tokens"], 19)
        self.assertEqual(stats["thought_chunks"], 1)
        self.assertEqual(stats["prompts"], 1)
        self.assertEqual(stats["turns"], 3)

    def test_export_media_default_path(self) -> None:
        service = self._loaded_service()
        output_path = service.export_media(prompt_index=0)

        self.assertEqual(output_path, self.tmp_path / "export" / "media" / "Media_ai_studio_sample_turn_1.zip")
        with zipfile.ZipFile(output_path) as archive:
            self.assertEqual(archive.namelist(), ["media/user_1_0.bin.link.txt"])

    def test_media_for_turn_without_attachments(self) -> None:
        service = self._loaded_service()
        self.assertEqual(service.get_media(1), [])
        self.assertIsNone(service.export_media(prompt_index=1))


if __name__ == "__main__":
    unittest.main()
