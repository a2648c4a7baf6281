import pytest

from errors import (
    EmptyClozeError,
    EndMatchNotFoundError,
    FailedToGuessParserError,
    InvalidCardInputError,
    InvalidCardSettingsError,
    InvalidNoteSettingsError,
    ParserNotFoundError,
    SameGroupingNestedClozesError,
    StartMatchNotFoundError,
    UnequalMatchesError,
)
from parsers import find_parser, get_output_filename, guess_parser
from parsers.base import EMPTY_SPAN, CardSide, ClozeData, NotToAnswer, Span, ToAnswer
from parsers.cards import add_order_to_note_data, get_cards
from parsers.clozes import BackType, FrontConceal
from parsers.markdown import MarkdownParser
from parsers.notes import NoteAction, get_notes
from parsers.typst import TypstParser


def test_typst_single_cloze():
    clozes = TypstParser().get_clozes("Test #cl[basic] asd")

    assert len(clozes) == 1
    assert clozes[0].start_match == Span(5, 9)
    assert clozes[0].end_match == Span(14, 15)
    assert clozes[0].settings_match == EMPTY_SPAN


def test_typst_nested_clozes_with_settings():
    text = "test #cl[#cl[b][g:1]#cl[$a s (d)$]][g:1] test"

    outer, inner_left, inner_right = TypstParser().get_clozes(text)

    assert outer.start_match == Span(5, 9)
    assert outer.settings_match == Span(36, 39)
    assert inner_left.settings_match == Span(16, 19)
    assert inner_right.settings_match == EMPTY_SPAN
    assert outer.settings_match.of(text) == "g:1"


def test_typst_ignores_comments_and_math():
    text = "// #cl[not a cloze]\n$#cl[x]$ #cl[yes]"

    clozes = TypstParser().get_clozes(text)

    assert len(clozes) == 1
    assert clozes[0].start_match.of(text) == "#cl["


def test_typst_linked_notes():
    text = "See #lin[Pythagoras] and #lin([Euclid])."

    spans = TypstParser().get_linked_notes(text)

    assert [span.of(text) for span in spans] == ["Pythagoras", "Euclid"]


def test_markdown_clozes_with_settings():
    text = "Test data {{[g:a]1}} and {{2}}"

    first, second = MarkdownParser().get_clozes(text)

    assert first.settings_match.of(text) == "g:a"
    assert second.settings_match == EMPTY_SPAN
    assert second.start_match == Span(25, 27)


def test_markdown_skips_escapes_and_comments():
    text = "\\{{x}} <!--- {{y}} ---> {{z}}"

    clozes = MarkdownParser().get_clozes(text)

    assert len(clozes) == 1
    assert clozes[0].start_match.start == text.index("{{z")


def test_markdown_spans_count_characters():
    text = "Ça coûte {{dix}} €"

    (cloze,) = MarkdownParser().get_clozes(text)

    assert cloze.start_match == Span(9, 11)
    assert text[cloze.start_match.end:cloze.end_match.start] == "dix"


def test_markdown_end_without_start():
    with pytest.raises(StartMatchNotFoundError) as excinfo:
        MarkdownParser().get_clozes("a}} {{b}}")

    assert excinfo.value.at == Span(1, 3)


def test_markdown_start_without_end():
    with pytest.raises(EndMatchNotFoundError) as excinfo:
        MarkdownParser().get_clozes("{{a}} {{b")

    assert excinfo.value.at == Span(6, 8)


def test_markdown_several_unclosed_starts():
    with pytest.raises(UnequalMatchesError):
        MarkdownParser().get_clozes("{{a {{b")


def test_typst_unclosed_cloze():
    with pytest.raises(EndMatchNotFoundError):
        TypstParser().get_clozes("Test #cl[basic asd")


def test_add_order_to_note_data():
    parser = MarkdownParser()

    assert add_order_to_note_data(parser, "Test data {{1}}") == ("Test data {{[o:1]1}}", 1)
    assert add_order_to_note_data(parser, "{{a}} and {{b}}") == (
        "{{[o:1]a}} and {{[o:2]b}}", 2
    )


def test_card_sides_replace_clozes():
    parser = MarkdownParser()

    (card,) = get_cards(parser, "The capital of France is {{[h:city]Paris}}.")

    assert parser.display_card(card.parts, CardSide.FRONT) == (
        "The capital of France is [_____(city)]{.mark}."
    )
    assert parser.display_card(card.parts, CardSide.BACK) == (
        "The capital of France is [Paris]{.mark}."
    )


def test_shared_grouping_makes_one_card():
    cards = get_cards(MarkdownParser(), "{{[g:x]a}} and {{[g:x]b}} and {{c}}")

    assert len(cards) == 2
    answers = [
        [part.text for part in card.parts if isinstance(part, ClozeData)] for card in cards
    ]
    assert answers == [["a", "b"], ["c"]]


def test_reverse_adds_backward_card():
    data, count = add_order_to_note_data(MarkdownParser(), "{{[r:]a}} is b")

    assert count == 2
    assert "o:1,2" in data


def test_front_conceal_inherited_by_nested_clozes():
    cards = get_cards(MarkdownParser(), "{{[f:all]outer {{inner}}}} rest {{other}}")

    assert [card.front_conceal for card in cards] == [
        FrontConceal.ALL_GROUPINGS,
        FrontConceal.ALL_GROUPINGS,
        FrontConceal.ONLY_GROUPING,
    ]
    hidden = [
        part for part in cards[1].parts
        if isinstance(part, ClozeData) and isinstance(part.replacement, NotToAnswer)
    ]
    assert [part.text for part in hidden] == ["other"]


def test_back_reveal_only_answered_with_single_grouping_is_full_note():
    (card,) = get_cards(MarkdownParser(), "{{[g:x;b:a]a}} and {{[g:x]b}}")

    assert card.back_type == BackType.FULL_NOTE


def test_back_reveal_only_answered_hides_other_groupings():
    first, second = get_cards(MarkdownParser(), "{{[f:all;b:a]a}} and {{b}}")

    assert first.back_type == BackType.ONLY_ANSWERED
    assert second.back_type == BackType.FULL_NOTE


def test_only_grouping_front_with_only_answered_back_rejected():
    with pytest.raises(InvalidCardInputError):
        get_cards(MarkdownParser(), "{{[b:a]a}} and {{b}}")


def test_hint_comes_from_first_cloze():
    (card,) = get_cards(MarkdownParser(), "{{[g:x;h:first]a}} {{[g:x;h:second]b}}")

    hints = [
        part.replacement.hint for part in card.parts
        if isinstance(part, ClozeData) and isinstance(part.replacement, ToAnswer)
    ]
    assert hints == ["first", "first"]


def test_empty_cloze_rejected():
    with pytest.raises(EmptyClozeError):
        get_cards(MarkdownParser(), "a {{}} b")


def test_nested_clozes_in_same_grouping_rejected():
    with pytest.raises(SameGroupingNestedClozesError):
        get_cards(MarkdownParser(), "{{[g:x]a {{[g:x]b}}}}")


def test_reverse_and_reverse_only_conflict():
    with pytest.raises(InvalidCardSettingsError):
        get_cards(MarkdownParser(), "{{[r:;ro:]a}} b")


def test_conflicting_suspend_settings_rejected():
    with pytest.raises(InvalidCardSettingsError):
        get_cards(MarkdownParser(), "{{[g:x;s:]a}} {{[g:x;s:n]b}}")


def test_unknown_cloze_setting_rejected():
    with pytest.raises(InvalidCardSettingsError):
        get_cards(MarkdownParser(), "{{[zzz:1]a}} b")


def test_get_notes_reads_settings():
    text = (
        "<!--- # tags: math; keywords: pythagoras --->\n"
        "<!--- spares: note start --->\n"
        "a^2 + b^2 = {{c^2}}\n"
        "<!--- spares: note end --->\n"
    )

    (note,) = get_notes(MarkdownParser(), text)

    assert note.is_valid
    assert note.action.action == NoteAction.ADD
    assert note.settings.tags == ["math"]
    assert note.settings.keywords == ["pythagoras"]
    assert note.data == "a^2 + b^2 = {{[o:1]c^2}}"
    assert note.cards_count == 1


def test_get_notes_reads_constructed_note_file():
    parser = MarkdownParser()
    text = parser.construct_note_file(7, "x {{[o:1]y}}", ["k"], ["t"], {})

    (note,) = get_notes(parser, text)

    assert note.action.action == NoteAction.UPDATE
    assert note.action.note_id == 7
    assert note.settings.keywords == ["k"]
    assert note.data == "x {{[o:1]y}}"


def test_get_notes_global_settings_apply_to_following_notes():
    text = (
        "<!--- # g-tags: shared --->\n"
        "<!--- spares: note start --->\n{{a}} b\n<!--- spares: note end --->\n"
        "<!--- # tags: own --->\n"
        "<!--- spares: note start --->\n{{c}} d\n<!--- spares: note end --->\n"
    )

    first, second = get_notes(MarkdownParser(), text)

    assert first.settings.tags == ["shared"]
    assert second.settings.tags == ["own", "shared"]


def test_get_notes_delete_needs_note_id():
    text = (
        "<!--- # action: delete --->\n"
        "<!--- spares: note start --->\n{{a}} b\n<!--- spares: note end --->\n"
    )

    (note,) = get_notes(MarkdownParser(), text)

    assert note.data is None
    assert isinstance(note.errors[0], InvalidNoteSettingsError)


def test_parser_registry():
    assert find_parser("typst").file_extension == "typ"
    assert guess_parser("notes/geometry.md").name == "markdown"
    with pytest.raises(ParserNotFoundError):
        find_parser("latex")
    with pytest.raises(FailedToGuessParserError):
        guess_parser("notes/geometry")


def test_output_filenames():
    assert get_output_filename(1) == "0001.pdf"
    assert get_output_filename(12, 2, CardSide.BACK) == "0012-2-back.pdf"
    assert get_output_filename(3, extension="typ") == "0003.typ"


def test_get_notes_collects_delimiter_errors_per_note():
    text = (
        "<!--- spares: note start --->\n{{a b\n<!--- spares: note end --->\n"
        "<!--- spares: note start --->\n{{c}} d\n<!--- spares: note end --->\n"
    )

    broken, valid = get_notes(MarkdownParser(), text)

    assert broken.data is None
    assert isinstance(broken.errors[0], EndMatchNotFoundError)
    assert valid.is_valid
    assert valid.data == "{{[o:1]c}} d"
