"""Write note and card files and render them, skipping notes whose files are current."""
from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from . import get_output_filename
from .base import CardSide, Parser
from .cards import get_cards
from .clozes import BackType

logger = logging.getLogger(__name__)

Renderer = Callable[[Path, Path], None]


def hash_line(parser: Parser, contents: str) -> str:
    digest = hashlib.sha256(contents.encode("utf-8")).hexdigest()
    return parser.construct_comment(f"hash: {digest}")


def is_cached(raw_path: Path, rendered_path: Path, expected_hash_line: str) -> bool:
    """True when the raw file ends with the expected hash and its output exists."""
    if not raw_path.exists() or not rendered_path.exists():
        return False
    return raw_path.read_text(encoding="utf-8").endswith(expected_hash_line)


def render_note_files(
    parser: Parser,
    note_id: int,
    data: str,
    output_dir: Path,
    keywords: Sequence[str] = (),
    tags: Sequence[str] = (),
    custom_data: Optional[Dict[str, Any]] = None,
    renderer: Optional[Renderer] = None,
    include_cards: bool = True,
    force: bool = False,
) -> Path:
    """Write and render the files of one note. Returns the raw note file path.

    Card files are written first and the note file, carrying the hash
    footer, last, so an interrupted render is repeated on the next call.
    Renderer failures raise IoError.
    """
    render = renderer or parser.render_file
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    extension = parser.file_extension

    contents = parser.construct_note_file(
        note_id, data, list(keywords), list(tags), custom_data or {}
    )
    footer = hash_line(parser, contents)
    raw_path = output_dir / get_output_filename(note_id, extension=extension)
    rendered_path = output_dir / get_output_filename(note_id)
    if not force and is_cached(raw_path, rendered_path, footer):
        logger.debug("Note %s is up to date", note_id)
        return raw_path

    if include_cards:
        for order, card in enumerate(get_cards(parser, data), start=1):
            sides = [CardSide.FRONT]
            if card.back_type == BackType.ONLY_ANSWERED:
                sides.append(CardSide.BACK)
            for side in sides:
                card_path = output_dir / get_output_filename(note_id, order, side, extension)
                card_path.write_text(
                    parser.construct_card_file(note_id, card.parts, side, list(keywords), list(tags)),
                    encoding="utf-8",
                )
                render(card_path, output_dir / get_output_filename(note_id, order, side))

    raw_path.write_text(contents + footer, encoding="utf-8")
    render(raw_path, rendered_path)
    logger.info("Rendered note %s", note_id)
    return raw_path
