import pytest

from errors import IoError
from models import NoteCreate, NoteUpdate
from parsers import MarkdownParser
from parsers.render import hash_line, is_cached, render_note_files
from utils.notes import create_notes, render_notes, update_notes

NOW = 1_700_000_000


class FakeRenderer:
    def __init__(self):
        self.rendered = []

    def __call__(self, source, output):
        self.rendered.append(source.name)
        output.write_text(f"rendered {source.name}", encoding="utf-8")


def test_render_note_files_writes_cards_then_note(tmp_path):
    renderer = FakeRenderer()

    raw_path = render_note_files(MarkdownParser(), 1, "{{[o:1]Paris}} is in {{[o:2]France}}",
                                 tmp_path, keywords=["paris"], tags=["geography"],
                                 renderer=renderer)

    assert raw_path == tmp_path / "0001.md"
    assert renderer.rendered == ["0001-1-front.md", "0001-2-front.md", "0001.md"]
    assert (tmp_path / "0001.pdf").exists()
    contents = raw_path.read_text(encoding="utf-8")
    assert "geography" in contents
    assert contents.startswith("<!--- # note-id")
    body = contents.rsplit("<!--- hash: ", 1)[0]
    assert contents == body + hash_line(MarkdownParser(), body)


def test_only_answered_cards_get_a_back_file(tmp_path):
    renderer = FakeRenderer()

    render_note_files(MarkdownParser(), 3, "{{[o:1;f:all;b:a]a}} and {{[o:2]b}}", tmp_path,
                      renderer=renderer)

    assert renderer.rendered == [
        "0003-1-front.md", "0003-1-back.md", "0003-2-front.md", "0003.md",
    ]


def test_note_files_without_cards(tmp_path):
    renderer = FakeRenderer()

    render_note_files(MarkdownParser(), 1, "{{[o:1]a}} b", tmp_path, renderer=renderer,
                      include_cards=False)

    assert renderer.rendered == ["0001.md"]


def test_unchanged_note_is_cached(tmp_path):
    parser = MarkdownParser()
    renderer = FakeRenderer()
    render_note_files(parser, 1, "{{[o:1]a}} b", tmp_path, renderer=renderer)
    renderer.rendered.clear()

    render_note_files(parser, 1, "{{[o:1]a}} b", tmp_path, renderer=renderer)
    assert renderer.rendered == []

    render_note_files(parser, 1, "{{[o:1]a}} b", tmp_path, renderer=renderer, force=True)
    assert renderer.rendered == ["0001-1-front.md", "0001.md"]


def test_missing_output_is_not_cached(tmp_path):
    parser = MarkdownParser()
    render_note_files(parser, 1, "{{[o:1]a}} b", tmp_path, renderer=FakeRenderer())
    raw_path = tmp_path / "0001.md"
    footer = raw_path.read_text(encoding="utf-8").rsplit("<!---", 1)[1]

    assert is_cached(raw_path, tmp_path / "0001.pdf", "<!---" + footer)
    (tmp_path / "0001.pdf").unlink()
    assert not is_cached(raw_path, tmp_path / "0001.pdf", "<!---" + footer)


def test_renderer_failure_leaves_note_uncached(tmp_path):
    parser = MarkdownParser()

    def failing(source, output):
        raise IoError(f"could not render {source.name}")

    with pytest.raises(IoError):
        render_note_files(parser, 1, "{{[o:1]a}} b", tmp_path, renderer=failing)
    assert not (tmp_path / "0001.md").exists()

    renderer = FakeRenderer()
    render_note_files(parser, 1, "{{[o:1]a}} b", tmp_path, renderer=renderer)
    assert renderer.rendered == ["0001-1-front.md", "0001.md"]


def test_notes_rendered_on_create_and_update(conn, tmp_path):
    renderer = FakeRenderer()
    (note,) = create_notes(
        conn, [NoteCreate(data="{{a}} b", parser_name="markdown", tags=["x"])],
        now=NOW, output_dir=tmp_path, renderer=renderer,
    )
    assert renderer.rendered == ["0001-1-front.md", "0001.md"]

    renderer.rendered.clear()
    render_notes(conn, tmp_path, renderer=renderer)
    assert renderer.rendered == []

    update_notes(conn, [note.id], NoteUpdate(tags_to_add=["y"]), now=NOW + 1,
                 output_dir=tmp_path, renderer=renderer)
    assert renderer.rendered == ["0001-1-front.md", "0001.md"]
    assert "x, y" in (tmp_path / "0001.md").read_text(encoding="utf-8")
