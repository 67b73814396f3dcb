from __future__ import annotations

import re
from dataclasses import dataclass

from loguru import logger

MIN_MAX_LENGTH = 64
DEFAULT_MAX_LENGTH = 4000

_TAG_RE = re.compile(r"</?([a-zA-Z][a-zA-Z0-9]*)\b[^>]*>")
_ANY_TAG_RE = re.compile(r"<[^>]+>")
_ENTITY_RE = re.compile(r"&(?:#[0-9]+|#[xX][0-9a-fA-F]+|[a-zA-Z][a-zA-Z0-9]*);")
_ENTITY_LOOKBACK = 12
_VOID_TAGS = frozenset({"br", "hr", "img"})

# Preferred cut points, best first.
_BREAKS = ("\n\n", "\n", ". ", ", ", " ")

_PLAIN_MIN_RATIO = 0.3


@dataclass(frozen=True)
class Chunk:
    opening: str
    body: str
    closing: str

    @property
    def text(self) -> str:
        return self.opening + self.body + self.closing

    def __len__(self) -> int:
        return len(self.opening) + len(self.body) + len(self.closing)


_OpenTag = tuple[str, str]


class OutputChunker:
    """Splits formatted output into pieces no longer than a transport limit.

    Every chunk is tag-balanced on its own: tags still open at a cut are
    closed at the end of the chunk and reopened (with their original
    attributes) at the start of the next one. No chunk is longer than the
    limit and no chunk holds part of a tag or an entity.

    The bodies of all chunks concatenate back to the input text, unless the
    markup could never fit: tags longer than half the limit lose their
    attributes, and tags nested so deep that reopening them would take more
    than half the limit are dropped together with their closing tags.
    """

    def __init__(self, max_length: int = DEFAULT_MAX_LENGTH, *, min_ratio: float = 0.7, step: int = 10):
        self._max_length = _validate_max_length(max_length)
        self._min_ratio = min_ratio
        self._step = max(1, step)

    @property
    def max_length(self) -> int:
        return self._max_length

    def split(self, text: str, max_length: int | None = None) -> list[str]:
        return [chunk.text for chunk in self.split_chunks(text, max_length)]

    def split_chunks(self, text: str, max_length: int | None = None) -> list[Chunk]:
        if not text:
            return []
        limit = self._max_length if max_length is None else _validate_max_length(max_length)
        has_markup = _ANY_TAG_RE.search(text) is not None
        ratio = self._min_ratio if has_markup else _PLAIN_MIN_RATIO
        if has_markup:
            simplified = _simplify_markup(text, limit)
            if simplified != text:
                logger.warning(
                    f"Markup in {len(text)} chars cannot fit {limit}-char chunks; "
                    f"simplified it to {len(simplified)} chars"
                )
                text = simplified

        chunks: list[Chunk] = []
        carry: list[_OpenTag] = []
        pos = 0
        while pos < len(text):
            opening = "".join(markup for _, markup in carry)
            if len(opening) + len(text) - pos <= limit:
                rest = text[pos:]
                stack, _ = _scan(carry, rest)
                closing = _closers(stack)
                if len(opening) + len(rest) + len(closing) <= limit:
                    chunks.append(Chunk(opening, rest, closing))
                    break

            cut, stack = self._next_cut(text, pos, carry, opening, limit, ratio)
            chunks.append(Chunk(opening, text[pos:cut], _closers(stack)))
            pos = cut
            carry = stack

        if len(chunks) > 1:
            logger.debug(f"Split {len(text)} chars into {len(chunks)} chunk(s) of at most {limit}")
        return chunks

    def _next_cut(
        self,
        text: str,
        pos: int,
        carry: list[_OpenTag],
        opening: str,
        limit: int,
        ratio: float,
    ) -> tuple[int, list[_OpenTag]]:
        budget = max(1, limit - len(opening))

        # Prefer a cut that needs no repair at all.
        tried: set[int] = set()
        floor = int(budget * self._min_ratio)
        for target in range(budget, floor - 1, -self._step):
            cut = self._find_cut(text, pos, pos + target, ratio)
            if cut <= pos or cut in tried:
                continue
            tried.add(cut)
            stack, ok = _scan(carry, text[pos:cut])
            if ok and not stack:
                return cut, stack

        # Repair: close what is open, shrinking the cut until the closers fit.
        target = budget
        while target > 0:
            cut = self._find_cut(text, pos, pos + target, ratio)
            if cut <= pos:
                cut = _hard_cut(text, pos, pos + target)
            stack, _ = _scan(carry, text[pos:cut])
            excess = len(opening) + (cut - pos) + len(_closers(stack)) - limit
            if excess <= 0:
                return cut, stack
            target = cut - pos - excess

        # A single tag, entity or character always fits once markup is simplified.
        cut = _hard_cut(text, pos, pos + 1)
        stack, _ = _scan(carry, text[pos:cut])
        return cut, stack

    def _find_cut(self, text: str, start: int, end: int, ratio: float) -> int:
        end = min(end, len(text))
        cut = end
        tag_start = _open_tag_before(text, start, cut)
        if tag_start is not None:
            cut = tag_start
        if cut <= start:
            return start

        floor = start + (end - start) * ratio
        for marker in _BREAKS:
            index = text.rfind(marker, start, cut)
            while index != -1 and index > floor:
                candidate = index + len(marker)
                if candidate <= cut and _open_tag_before(text, start, candidate) is None:
                    return candidate
                index = text.rfind(marker, start, index)

        return _entity_safe(text, start, cut)


def _validate_max_length(max_length: int) -> int:
    if max_length < MIN_MAX_LENGTH:
        raise ValueError(f"max_length must be at least {MIN_MAX_LENGTH}, got {max_length}")
    return max_length


def _scan(carry: list[_OpenTag], fragment: str) -> tuple[list[_OpenTag], bool]:
    """Track open tags through ``fragment``; ``ok`` is False on a stray closing tag."""
    stack = list(carry)
    ok = True
    for match in _TAG_RE.finditer(fragment):
        markup = match.group(0)
        name = match.group(1).lower()
        if markup.startswith("</"):
            for index in range(len(stack) - 1, -1, -1):
                if stack[index][0] == name:
                    del stack[index]
                    break
            else:
                ok = False
        elif not markup.endswith("/>") and name not in _VOID_TAGS:
            stack.append((name, markup))
    return stack, ok


def _closers(stack: list[_OpenTag]) -> str:
    return "".join(f"</{name}>" for name, _ in reversed(stack))


def _open_tag_before(text: str, start: int, cut: int) -> int | None:
    """Index of a tag that starts before ``cut`` but ends after it, if any."""
    tag_start = text.rfind("<", start, cut)
    if tag_start == -1 or text.find(">", tag_start, cut) != -1:
        return None
    if _TAG_RE.match(text, tag_start) is None:
        return None
    return tag_start


def _entity_safe(text: str, start: int, cut: int) -> int:
    amp = text.rfind("&", max(start, cut - _ENTITY_LOOKBACK), cut)
    if amp > start:
        match = _ENTITY_RE.match(text, amp)
        if match is not None and match.end() > cut:
            return amp
    return cut


def _hard_cut(text: str, start: int, end: int) -> int:
    """Cut at or before ``end``, or right after the tag or entity at ``start``."""
    end = min(end, len(text))
    tag_start = _open_tag_before(text, start, end)
    if tag_start is not None:
        if tag_start > start:
            return tag_start
        return _TAG_RE.match(text, start).end()
    entity = _ENTITY_RE.match(text, start)
    if entity is not None and end < entity.end() <= start + _ENTITY_LOOKBACK:
        return entity.end()
    return max(_entity_safe(text, start, end), start + 1)


def _simplify_markup(text: str, limit: int) -> str:
    """Rewrite tags so that any set of open tags can be reopened and closed in half the limit."""
    budget = limit // 2
    parts: list[str] = []
    # (name, cost) per open tag; cost 0 marks a dropped tag.
    stack: list[tuple[str, int]] = []
    overhead = 0
    last = 0
    for match in _TAG_RE.finditer(text):
        parts.append(text[last : match.start()])
        last = match.end()
        markup = match.group(0)
        name = match.group(1).lower()
        closer = f"</{name}>"

        if markup.startswith("</"):
            for index in range(len(stack) - 1, -1, -1):
                if stack[index][0] == name:
                    cost = stack.pop(index)[1]
                    break
            else:
                cost = None
            if cost == 0:
                continue
            if cost is not None:
                overhead -= cost
            if len(markup) > budget:
                markup = closer
            if len(markup) <= budget:
                parts.append(markup)
            continue

        if markup.endswith("/>") or name in _VOID_TAGS:
            if len(markup) > budget:
                markup = f"<{name}/>" if markup.endswith("/>") else f"<{name}>"
            if len(markup) <= budget:
                parts.append(markup)
            continue

        if len(markup) + len(closer) > budget:
            markup = f"<{name}>"
        cost = len(markup) + len(closer)
        if overhead + cost > budget:
            stack.append((name, 0))
            continue
        stack.append((name, cost))
        overhead += cost
        parts.append(markup)

    parts.append(text[last:])
    return "".join(parts)
