import re
import unittest

from chat_cli_bridge.rendering.chunker import OutputChunker

_TAG = re.compile(r"</?([a-zA-Z][a-zA-Z0-9]*)\b[^>]*>")


def _is_balanced(text: str) -> bool:
    stack: list[str] = []
    for match in _TAG.finditer(text):
        name = match.group(1).lower()
        if match.group(0).startswith("</"):
            if not stack or stack[-1] != name:
                return False
            stack.pop()
        elif not match.group(0).endswith("/>"):
            stack.append(name)
    return not stack


def _nested_document(min_length: int) -> str:
    lines = []
    index = 0
    while sum(len(line) for line in lines) < min_length:
        index += 1
        lines.append(
            f"Paragraph {index}: <u>underlined <code>x = {index}</code> words</u> "
            "and plain prose follows here.\n"
        )
    return "<b><i>" + "".join(lines) + "</i></b>"


class OutputChunkerTests(unittest.TestCase):
    def test_empty_text_has_no_chunks(self) -> None:
        self.assertEqual([], OutputChunker().split(""))

    def test_short_text_is_returned_as_is(self) -> None:
        text = "<b>Done</b> in 2s"
        self.assertEqual([text], OutputChunker().split(text))

    def test_limit_below_minimum_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            OutputChunker(10)
        with self.assertRaises(ValueError):
            OutputChunker().split("text", max_length=63)

    def test_large_nested_markup_is_split_into_balanced_chunks(self) -> None:
        text = _nested_document(9000)
        self.assertGreaterEqual(len(text), 9000)

        chunks = OutputChunker(4000).split_chunks(text)

        self.assertGreaterEqual(len(chunks), 3)
        for chunk in chunks:
            self.assertLessEqual(len(chunk.text), 4000)
            self.assertTrue(_is_balanced(chunk.text), chunk.text[:80])
        self.assertEqual(text, "".join(chunk.body for chunk in chunks))
        self.assertTrue(chunks[1].text.startswith("<b><i>"))
        self.assertTrue(chunks[0].text.endswith("</i></b>"))

    def test_reopened_tags_keep_their_attributes(self) -> None:
        text = '<a href="https://x.test/page">' + "word " * 100 + "</a>"

        chunks = OutputChunker(200).split(text)

        self.assertGreater(len(chunks), 1)
        for chunk in chunks:
            self.assertLessEqual(len(chunk), 200)
            self.assertTrue(chunk.startswith('<a href="https://x.test/page">'))
            self.assertTrue(_is_balanced(chunk))

    def test_plain_text_prefers_word_boundaries(self) -> None:
        text = "word " * 50

        chunks = OutputChunker(64).split(text)

        self.assertEqual(text, "".join(chunks))
        for chunk in chunks[:-1]:
            self.assertLessEqual(len(chunk), 64)
            self.assertTrue(chunk.endswith(" "))

    def test_entities_are_never_split(self) -> None:
        text = "a" * 60 + "&amp;" + "b" * 30

        self.assertEqual(["a" * 60, "&amp;" + "b" * 30], OutputChunker(64).split(text))

    def test_tags_are_never_split(self) -> None:
        text = "x" * 58 + "<b>bold</b>" + "y" * 40

        chunks = OutputChunker(64).split(text)

        self.assertEqual(text, "".join(chunks))
        self.assertTrue(any("<b>bold</b>" in chunk for chunk in chunks))
        for chunk in chunks:
            self.assertLessEqual(len(chunk), 64)
            self.assertTrue(_is_balanced(chunk))

    def test_deep_nesting_at_the_minimum_limit_stays_within_it(self) -> None:
        text = "<b>" * 20 + "x" * 300 + "</b>" * 20

        chunks = OutputChunker(64).split(text)

        self.assertLessEqual(len(chunks), 12)
        for chunk in chunks:
            self.assertLessEqual(len(chunk), 64)
            self.assertTrue(_is_balanced(chunk), chunk)
        self.assertEqual("x" * 300, "".join(_TAG.sub("", chunk) for chunk in chunks))

    def test_tag_longer_than_the_limit_loses_its_attributes(self) -> None:
        text = '<a href="https://example.com/' + "p" * 120 + '">link</a> tail'

        self.assertEqual(["<a>link</a> tail"], OutputChunker(64).split(text))

    def test_no_chunk_holds_part_of_a_tag(self) -> None:
        text = ("word " * 10 + '<a href="https://x.io/ab">here</a> ') * 6

        chunks = OutputChunker(64).split(text)

        for chunk in chunks:
            self.assertLessEqual(len(chunk), 64)
            self.assertTrue(_is_balanced(chunk), chunk)
            leftover = _TAG.sub("", chunk)
            self.assertNotIn("<", leftover)
            self.assertNotIn(">", leftover)

    def test_line_breaks_do_not_carry_over(self) -> None:
        text = "<b>title</b><br>" + "line of text\n" * 20

        chunks = OutputChunker(100).split(text)

        for chunk in chunks[1:]:
            self.assertFalse(chunk.startswith("<br>"))
            self.assertLessEqual(len(chunk), 100)


if __name__ == "__main__":
    unittest.main()
