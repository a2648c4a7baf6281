from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from config import get_config_value
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

CLOZE_FUNC_NAME = "cl"
LINKED_NOTE_FUNC_NAME = "lin"
SETTINGS_FUNC_NAME = "se"


@dataclass
class _OpenCloze:
    start: Span
    first_arg_end: Optional[Span] = None


def _is_func_name_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_-"


def scan_typst(text: str, func_name: str) -> Tuple[List[ClozeMatch], List[Span]]:
    """Walk typst markup once, collecting calls to `func_name`.

    `#cl[body]` and `#cl[body][settings]` produce cloze matches. `#lin[...]`,
    `#lin([...])` and `#se[...]` produce the span of their content.
    """
    clozes: List[ClozeMatch] = []
    blocks: List[Span] = []
    open_clozes: List[_OpenCloze] = []
    open_blocks: List[int] = []
    math_mode = False
    bracket_depth = 0
    i = 0
    n = len(text)
    while i < n:
        start = i
        ch = text[i]
        i += 1
        if ch == "/" and text.startswith("/", i):
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
        elif ch == "\\":
            i = min(i + 1, n)
        elif ch == "$":
            math_mode = not math_mode
        elif ch == "#" and not math_mode:
            j = i
            while j < n and _is_func_name_char(text[j]):
                j += 1
            opener = text[j] if j < n else ""
            if text[i:j] == func_name and (
                opener == "[" or (opener == "(" and func_name == LINKED_NOTE_FUNC_NAME)
            ):
                i = j + 1
                if opener == "(" and text.startswith("[", i):
                    i += 1
                if func_name == CLOZE_FUNC_NAME:
                    open_clozes.append(_OpenCloze(Span(start, i)))
                else:
                    open_blocks.append(i)
            else:
                i = j
        elif ch == "[" and not math_mode and (open_clozes or open_blocks):
            bracket_depth += 1
        elif ch == "]" and not math_mode:
            if bracket_depth > 0:
                bracket_depth -= 1
            elif (
                open_clozes
                and open_clozes[-1].first_arg_end is None
                and text.startswith("[", i)
            ):
                i += 1
                open_clozes[-1].first_arg_end = Span(start, i)
            elif open_clozes:
                cloze = open_clozes.pop()
                if cloze.first_arg_end is None:
                    clozes.append(ClozeMatch(cloze.start, Span(start, i), EMPTY_SPAN))
                else:
                    settings = Span(cloze.first_arg_end.end, start)
                    clozes.append(ClozeMatch(
                        cloze.start,
                        Span(cloze.first_arg_end.start, i),
                        EMPTY_SPAN if settings.is_empty() else settings,
                    ))
            elif open_blocks:
                blocks.append(Span(open_blocks.pop(), start))
    raise_unclosed(text, [cloze.start for cloze in open_clozes])
    clozes.sort(key=lambda match: match.start_match.start)
    blocks.sort(key=lambda span: span.start)
    return clozes, blocks


class TypstParser(Parser):
    name = "typst"
    file_extension = "typ"
    card_separator = "\n#line(length: 100%)\n"

    def get_clozes(self, text: str) -> List[ClozeMatch]:
        clozes, _ = scan_typst(text, CLOZE_FUNC_NAME)
        return clozes

    def get_linked_notes(self, text: str) -> List[Span]:
        _, spans = scan_typst(text, LINKED_NOTE_FUNC_NAME)
        return spans

    def get_settings(self, text: str) -> List[Span]:
        _, spans = scan_typst(text, SETTINGS_FUNC_NAME)
        return spans

    def construct_cloze(self, settings: str) -> Tuple[str, str]:
        suffix = f"[{settings}]" if settings else ""
        return f"#{CLOZE_FUNC_NAME}[", f"]{suffix}"

    def construct_setting(self, data: str) -> str:
        return f"#{SETTINGS_FUNC_NAME}[{data}]\n"

    def construct_comment(self, data: str) -> str:
        return f"// {data}\n"

    def construct_cloze_replacement(self, replacement: ClozeReplacement, side: CardSide) -> str:
        if isinstance(replacement, ToAnswer):
            if replacement.hint is not None:
                return f'#cloze(hint: "{replacement.hint}")'
            return "#cloze()"
        if isinstance(replacement, NotToAnswer):
            return "#cloze(to_answer: false)"
        if isinstance(replacement, Reveal):
            return f"#block(fill: aqua)[{replacement.text}]"
        raise TypeError(f"Unknown cloze replacement {replacement!r}")

    def render_command(self, source: Path, output: Path) -> List[str]:
        command = ["typst", "compile"]
        root = get_config_value("render", "typst_root", "")
        if root:
            command.extend(["--root", root])
        command.extend([str(source), str(output)])
        return command
