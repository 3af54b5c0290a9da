from __future__ import annotations

import json
import os
import tempfile
import unittest
from argparse import Namespace
from pathlib import Path

from chat_inspector.cli import _cmd_export
from chat_inspector.config import load_settings
from chat_inspector.exporter import (
    chunks_to_markdown,
    chunks_to_text,
    export_chunks,
    export_file_name,
    render_chunks,
    strip_markdown,
)
from chat_inspector.models import Attachment, Chunk
from chat_inspector.services import InspectorService


FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _exchange() -> list[Chunk]:
    return [
        Chunk(index=0, role="user", text="Explain **decorators**"),
        Chunk(
            index=1,
            role="user",
            attachments=(Attachment(field="driveImage", kind="drive_image", file_id="img-7"),),
        ),
        Chunk(index=2, role="model", text="Recall closures.", is_thought=True),
        Chunk(index=3, role="model", text="A decorator wraps a function."),
        Chunk(
            index=4,
            role="model",
            attachments=(
                Attachment(field="inlineImage", kind="inline_image", mime_type="image/png", data="AAAA"),
            ),
        ),
    ]


class RenderTests(unittest.TestCase):
    def test_markdown_adds_header_on_each_speaker_change(self) -> None:
        content = chunks_to_markdown(_exchange())

        self.assertTrue(content.startswith("## User"))
        self.assertEqual(content.count("## User"), 1)
        self.assertEqual(content.count("## Thinking"), 1)
        self.assertEqual(content.count("## Gemini"), 1)
        self.assertLess(content.index("## Thinking"), content.index("## Gemini"))
        self.assertIn("Explain **decorators**", content)
        self.assertIn("[Drive Attachment: img-7]", content)
        self.assertIn("![Attached image/png](Embedded Data)", content)
        self.assertNotIn("AAAA", content)

    def test_plain_text_uses_speaker_prefixes(self) -> None:
        content = chunks_to_text(_exchange())
        paragraphs = content.split("\n\n")

        self.assertEqual(
            paragraphs,
            [
                "USER: Explain decorators",
                "USER: [Drive Attachment: img-7]",
                "THINKING: Recall closures.",
                "GEMINI: A decorator wraps a function.",
                "GEMINI: [Attached Image/Media]",
            ],
        )

    def test_strip_markdown(self) -> None:
        source = "# Title\n**bold** and *it* `code` [docs](https://example.com)\n- item\n1. first\n> quote"
        self.assertEqual(
            strip_markdown(source),
            "Title\nbold and it code docs (https://example.com)\nitem\nfirst\nquote",
        )

    def test_strip_markdown_removes_fences(self) -> None:
        stripped = strip_markdown("Before\n```python\nprint(1)\n```\nAfter")
        self.assertNotIn("```", stripped)
        self.assertIn("print(1)", stripped)

    def test_json_render_is_redacted(self) -> None:
        records = json.loads(render_chunks(_exchange(), "json"))
        self.assertEqual(len(records), 5)
        self.assertEqual(records[4], {"role": "model", "inlineImage": "Image data omitted."})

    def test_unknown_format_raises(self) -> None:
        with self.assertRaises(ValueError):
            render_chunks(_exchange(), "pdf")  # type: ignore[arg-type]

    def test_export_file_names(self) -> None:
        self.assertRegex(export_file_name("My Chat.json", "md"), r"^My-Chat-[0-9a-f]{12}\.md$")
        self.assertRegex(
            export_file_name("My Chat.json", "json", turn_number=2),
            r"^My-Chat-clean-turn-2-[0-9a-f]{12}\.json$",
        )
        self.assertRegex(export_file_name("", "txt"), r"^transcript-[0-9a-f]{12}\.txt$")
        self.assertNotEqual(
            export_file_name("a.json", "md", turn_number=1),
            export_file_name("a.json", "md", turn_number=2),
        )

    def test_export_chunks_writes_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            output_path = export_chunks(
                chunks=_exchange(),
                name="sample.json",
                output_dir=Path(tmp_dir) / "out",
                fmt="txt",
            )
            self.assertTrue(output_path.exists())
            self.assertTrue(output_path.read_text(encoding="utf-8").startswith("USER: Explain decorators"))


class ServiceExportTests(unittest.TestCase):
    def setUp(self) -> None:
        self._old_env = {key: os.environ.get(key) for key in self._env_keys()}
        self._tmp_dir = tempfile.TemporaryDirectory()
        os.environ["CHAT_INSPECTOR_DATA_DIR"] = self._tmp_dir.name
        os.environ["CHAT_INSPECTOR_TRANSCRIPT_PATH"] = str(FIXTURES_DIR / "ai_studio_sample.json")
        os.environ.pop("CHAT_INSPECTOR_EXPORT_DIR", None)

    def tearDown(self) -> None:
        self._tmp_dir.cleanup()
        for key, value in self._old_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    @staticmethod
    def _env_keys() -> list[str]:
        return [
            "CHAT_INSPECTOR_DATA_DIR",
            "CHAT_INSPECTOR_TRANSCRIPT_PATH",
            "CHAT_INSPECTOR_EXPORT_DIR",
        ]

    def _build_service(self) -> InspectorService:
        service = InspectorService(load_settings())
        service.load()
        return service

    def test_full_transcript_export_defaults_to_export_dir(self) -> None:
        service = self._build_service()
        output_path = service.export("md")

        self.assertEqual(output_path.parent, Path(self._tmp_dir.name) / "export")
        self.assertRegex(output_path.name, r"^ai_studio_sample-[0-9a-f]{12}\.md$")
        content = output_path.read_text(encoding="utf-8")
        self.assertIn("How do I parse JSON in Python?", content)
        self.assertIn("Summary: the document covers JSON encoding.", content)

    def test_single_exchange_export(self) -> None:
        service = self._build_service()
        output_path = service.export("txt", prompt_index=1)

        self.assertIn("-turn-2-", output_path.name)
        content = output_path.read_text(encoding="utf-8")
        self.assertIn("USER: And writing it back?", content)
        self.assertIn("THINKING: Thinking about dumps.", content)
        self.assertNotIn("How do I parse JSON", content)

    def test_invalid_exchange_exports_nothing(self) -> None:
        service = self._build_service()
        self.assertIsNone(service.export("md", prompt_index=99))

    def test_cmd_export_writes_into_requested_directory(self) -> None:
        service = self._build_service()
        output_dir = Path(self._tmp_dir.name) / "cli-export"
        args = Namespace(format="json", prompt=3, out=output_dir)

        exit_code = _cmd_export(service, args)

        self.assertEqual(exit_code, 0)
        exported = list(output_dir.glob("*.json"))
        self.assertEqual(len(exported), 1)
        records = json.loads(exported[0].read_text(encoding="utf-8"))
        self.assertEqual(records[0], {"role": "user", "inlineImage": "Image data omitted."})

    def test_cmd_export_rejects_unknown_prompt(self) -> None:
        service = self._build_service()
        args = Namespace(format="md", prompt=0, out=Path(self._tmp_dir.name))
        self.assertEqual(_cmd_export(service, args), 1)


if __name__ == "__main__":
    unittest.main()
