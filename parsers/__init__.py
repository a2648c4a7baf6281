import re
from pathlib import Path
from typing import List, Optional, Union

from errors import FailedToGuessParserError, ParserError, ParserNotFoundError
from .base import CardSide, Parser
from .markdown import MarkdownParser
from .typst import TypstParser

_PARSER_NAME_RE = re.compile(r"^[a-z-]+$")
OUTPUT_EXTENSION = "pdf"

_PARSERS: List[Parser] = [TypstParser(), MarkdownParser()]


def get_all_parsers() -> List[Parser]:
    return list(_PARSERS)


def validate_parser(parser: Parser) -> None:
    if not _PARSER_NAME_RE.match(parser.name):
        raise ParserError(
            f"Parser name `{parser.name}` must only contain lowercase letters and dashes."
        )


def find_parser(name: str) -> Parser:
    for parser in _PARSERS:
        if parser.name == name:
            return parser
    raise ParserNotFoundError(name)


def guess_parser(path: Union[str, Path]) -> Parser:
    """Pick the parser whose file extension matches `path`."""
    extension = Path(path).suffix.lstrip(".")
    if not extension:
        raise FailedToGuessParserError(f"`{path}` has no file extension.")
    matches = [parser for parser in _PARSERS if parser.file_extension == extension]
    if len(matches) != 1:
        raise FailedToGuessParserError(
            f"{len(matches)} parsers handle the `{extension}` extension."
        )
    return matches[0]


def get_output_filename(note_id: int, card_order: Optional[int] = None,
                        side: Optional[CardSide] = None,
                        extension: str = OUTPUT_EXTENSION) -> str:
    """`0001.pdf` for a note, `0001-2-front.pdf` for one side of its second card."""
    if card_order is None:
        return f"{note_id:04}.{extension}"
    side = side or CardSide.FRONT
    return f"{note_id:04}-{card_order}-{side.value}.{extension}"


for _parser in _PARSERS:
    validate_parser(_parser)
