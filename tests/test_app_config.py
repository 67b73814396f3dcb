import json
import os
import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from chat_cli_bridge.app_config import load_json_config, parse_app_config

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class AppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})

        self.assertEqual("sonnet", app.model)
        self.assertEqual(os.getcwd(), app.working_directory)
        self.assertEqual("claude", app.assistant_executable)
        self.assertEqual("subprocess", app.launcher_name)
        self.assertEqual(50, app.history_limit)
        self.assertEqual(4000, app.max_message_length)
        self.assertEqual(200_000, app.context_window_tokens)
        self.assertEqual(95.0, app.auto_compact_percent)
        self.assertIsNone(app.transcripts_root)
        self.assertEqual("console", app.console_user_id)
        self.assertTrue(app.show_thinking)
        self.assertIsNone(app.log_consumers)

    def test_overrides(self) -> None:
        app = parse_app_config(
            {
                "Model": " opus ",
                "WorkingDirectory": "/srv/app",
                "Launcher": "Disabled",
                "HistoryLimit": "10",
                "MaxMessageLength": 1000,
                "CancelGraceSeconds": "2.5",
                "AutoCompactPercent": 0,
                "TranscriptsRoot": "~/transcripts",
                "ShowThinking": "no",
                "LogConsumers": [{"type": "console"}],
            }
        )

        self.assertEqual("opus", app.model)
        self.assertEqual("/srv/app", app.working_directory)
        self.assertEqual("disabled", app.launcher_name)
        self.assertEqual(10, app.history_limit)
        self.assertEqual(1000, app.max_message_length)
        self.assertEqual(2.5, app.cancel_grace_seconds)
        self.assertEqual(0.0, app.auto_compact_percent)
        self.assertEqual("~/transcripts", app.transcripts_root)
        self.assertFalse(app.show_thinking)
        self.assertEqual([{"type": "console"}], app.log_consumers)

    def test_load_json_config(self) -> None:
        tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"appconfig-{uuid4().hex}"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        try:
            path = tmp_dir / "config.json"
            path.write_text(json.dumps({"Model": "haiku"}), encoding="utf-8")

            self.assertEqual({"Model": "haiku"}, load_json_config(path))
            self.assertEqual({}, load_json_config(tmp_dir / "missing.json"))
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)


if __name__ == "__main__":
    unittest.main()
