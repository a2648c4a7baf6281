from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Tuple

from errors import StartMatchNotFoundError
from .base import (
    EMPTY_SPAN,
    CardSide,
    ClozeMatch,
    ClozeReplacement,
    NotToAnswer,
    Parser,
    Reveal,
    Span,
    ToAnswer,
    raise_unclosed,
)

_SETTINGS_RE = re.compile(r"<!--- # ([^\n]*) --->")
# Pandoc reference links: [keyword][li] or [keyword][li3]
_LINKED_NOTES_RE = re.compile(r"\[([^\]]*)\]\[li([^\]]*)?\]")


def _find_closing_bracket(text: str, pos: int) -> Optional[int]:
    depth = 0
    for index in range(pos, len(text)):
        ch = text[index]
        if ch == "[":
            depth += 1
        elif ch == "]":
            if depth == 0:
                return index
            depth -= 1
    return None


def scan_markdown_clozes(text: str) -> List[ClozeMatch]:
    """Find `{{body}}` and `{{[settings]body}}` clozes, skipping comments, escapes and math."""
    clozes: List[ClozeMatch] = []
    open_clozes: List[Tuple[Span, Span]] = []
    math_mode = False
    i = 0
    n = len(text)
    while i < n:
        start = i
        ch = text[i]
        i += 1
        if ch == "<" and text.startswith("!---", i):
            end = text.find("--->", i + 4)
            i = n if end == -1 else end + 4
        elif ch == "\\":
            i = min(i + 1, n)
        elif ch == "$":
            if text.startswith("$", i):
                i += 1
            math_mode = not math_mode
        elif ch == "`" and not math_mode and text.startswith("``math", i):
            i += 6
            math_mode = True
        elif ch == "`" and math_mode and text.startswith("``", i):
            i += 2
            math_mode = False
        elif ch == "{" and not math_mode and text.startswith("{", i):
            i += 1
            settings = EMPTY_SPAN
            if text.startswith("[", i):
                closing = _find_closing_bracket(text, i + 1)
                if closing is not None:
                    if closing > i + 1:
                        settings = Span(i + 1, closing)
                    i = closing + 1
            open_clozes.append((Span(start, i), settings))
        elif ch == "}" and not math_mode and text.startswith("}", i):
            i += 1
            if not open_clozes:
                raise StartMatchNotFoundError(text, Span(start, i))
            opener, settings = open_clozes.pop()
            clozes.append(ClozeMatch(opener, Span(start, i), settings))
    raise_unclosed(text, [opener for opener, _ in open_clozes])
    clozes.sort(key=lambda match: match.start_match.start)
    return clozes


class MarkdownParser(Parser):
    name = "markdown"
    file_extension = "md"
    card_separator = "\n---\n"

    def get_clozes(self, text: str) -> List[ClozeMatch]:
        return scan_markdown_clozes(text)

    def get_linked_notes(self, text: str) -> List[Span]:
        return [Span(match.start(1), match.end(1)) for match in _LINKED_NOTES_RE.finditer(text)]

    def get_settings(self, text: str) -> List[Span]:
        return [Span(match.start(1), match.end(1)) for match in _SETTINGS_RE.finditer(text)]

    def construct_cloze(self, settings: str) -> Tuple[str, str]:
        prefix = f"[{settings}]" if settings else ""
        return "{{" + prefix, "}}"

    def construct_setting(self, data: str) -> str:
        return f"<!--- # {data} --->\n"

    def construct_comment(self, data: str) -> str:
        return f"<!--- {data} --->\n"

    def construct_cloze_replacement(self, replacement: ClozeReplacement, side: CardSide) -> str:
        if isinstance(replacement, ToAnswer):
            if replacement.hint is not None:
                return f"[_____({replacement.hint})]{{.mark}}"
            return "[_____]{.mark}"
        if isinstance(replacement, NotToAnswer):
            if side == CardSide.FRONT:
                return "[_____(no answer)]{.mark}"
            return "[_____]{.mark}"
        if isinstance(replacement, Reveal):
            return f"[{replacement.text}]{{.mark}}"
        raise TypeError(f"Unknown cloze replacement {replacement!r}")

    def render_command(self, source: Path, output: Path) -> List[str]:
        return ["pandoc", "-o", str(output), str(source)]
