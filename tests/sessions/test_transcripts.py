import unittest
from pathlib import Path

from chat_cli_bridge.sessions.transcripts import project_dir_name
from tests.sessions.base import OrchestratorTestCase


class ProjectDirNameTests(unittest.TestCase):
    def test_separators_become_dashes(self) -> None:
        resolved = Path("/srv/projects/app").resolve().as_posix()
        self.assertEqual("-" + resolved.replace("/", "-").lstrip("-"), project_dir_name("/srv/projects/app"))
        self.assertTrue(project_dir_name("/srv/projects/app").endswith("-projects-app"))
        self.assertNotIn("/", project_dir_name("/srv/projects/app"))


class TranscriptReaderTests(OrchestratorTestCase):
    def test_missing_transcript_returns_none(self) -> None:
        self.assertIsNone(self._transcripts.token_usage("missing"))
        self.assertIsNone(self._transcripts.summary("missing"))

    def test_token_usage_sums_assistant_usage_blocks(self) -> None:
        self._write_transcript(
            "s1",
            [
                {"type": "user", "message": {"role": "user", "content": "hi"}},
                {
                    "type": "assistant",
                    "message": {"usage": {"input_tokens": 100, "output_tokens": 20, "cache_read_input_tokens": 5}},
                },
                {"type": "assistant", "message": {"usage": {"input_tokens": 50, "output_tokens": 10}}},
            ],
        )

        usage = self._transcripts.token_usage("s1")

        self.assertIsNotNone(usage)
        self.assertEqual(150, usage.input_tokens)
        self.assertEqual(30, usage.output_tokens)
        self.assertEqual(5, usage.cache_read_tokens)
        self.assertEqual(2, usage.transaction_count)

    def test_transcript_without_usage_returns_none(self) -> None:
        self._write_transcript("s1", [{"type": "user", "message": {"content": "hi"}}])
        self.assertIsNone(self._transcripts.token_usage("s1"))

    def test_summary_record_wins(self) -> None:
        self._write_transcript(
            "s1",
            [
                {"type": "summary", "summary": "Refactor the parser"},
                {"type": "user", "message": {"content": "please refactor"}},
            ],
        )
        self.assertEqual("Refactor the parser", self._transcripts.summary("s1"))

    def test_summary_falls_back_to_first_real_prompt(self) -> None:
        long_prompt = "Investigate why the nightly export job fails on large tenants and fix it"
        self._write_transcript(
            "s1",
            [
                {"type": "user", "isMeta": True, "message": {"content": "caveat"}},
                {"type": "user", "message": {"content": "<command-name>/clear</command-name>"}},
                {"type": "user", "message": {"content": [{"type": "text", "text": long_prompt}]}},
            ],
        )

        summary = self._transcripts.summary("s1")

        self.assertEqual(long_prompt[:60] + "...", summary)

    def test_unreadable_lines_are_skipped(self) -> None:
        path = self._write_transcript("s1", [{"type": "assistant", "message": {"usage": {"input_tokens": 7}}}])
        with open(path, "a", encoding="utf-8") as f:
            f.write("{broken\n")

        usage = self._transcripts.token_usage("s1")
        self.assertEqual(7, usage.input_tokens)


if __name__ == "__main__":
    unittest.main()
