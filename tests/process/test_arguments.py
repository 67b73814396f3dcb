import unittest

from chat_cli_bridge.process.arguments import LaunchMode, build_arguments

_BASE = [
    "-p",
    "--model",
    "sonnet",
    "--output-format",
    "stream-json",
    "--verbose",
    "--dangerously-skip-permissions",
]


class BuildArgumentsTests(unittest.TestCase):
    def test_new_session(self) -> None:
        self.assertEqual([*_BASE, "hello"], build_arguments(LaunchMode.NEW, "sonnet", "hello"))

    def test_continue_prefixes_flag(self) -> None:
        self.assertEqual(["-c", *_BASE, "hello"], build_arguments(LaunchMode.CONTINUE, "sonnet", "hello"))

    def test_resume_prefixes_session_id(self) -> None:
        args = build_arguments(LaunchMode.RESUME, "sonnet", "hello", "abc-123")
        self.assertEqual(["-r", "abc-123", *_BASE, "hello"], args)

    def test_prompt_stays_last_even_when_it_looks_like_a_flag(self) -> None:
        args = build_arguments(LaunchMode.NEW, "opus", "--help me")
        self.assertEqual("--help me", args[-1])
        self.assertEqual("opus", args[args.index("--model") + 1])

    def test_resume_without_session_id_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            build_arguments(LaunchMode.RESUME, "sonnet", "hello")


if __name__ == "__main__":
    unittest.main()
