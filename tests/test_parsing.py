import pytest

from models import OutlineChapter
from parsing import (
    ParseError,
    extract_chapter_titles,
    extract_outermost_object,
    parse_json_object,
    parse_json_value,
    parse_outline_chapters,
    parse_title_suggestions,
    render_outline_text,
    stringify_concept,
)


def test_extract_chapter_titles_from_outline():
    outline = (
        "Chapter 1: Intro - sets the scene\n"
        "Chapter 2: Rising Action - things escalate\n"
    )
    assert extract_chapter_titles(outline) == ["Intro", "Rising Action"]


def test_extract_chapter_titles_skips_headings_and_blank_lines():
    outline = "# Table of Contents\n\nChapter 1: The Door\n\n## Part Two\nchapter 2 The Key - found\n"
    assert extract_chapter_titles(outline) == ["The Door", "The Key"]


def test_extract_chapter_titles_handles_list_markers_and_bold():
    outline = "1. **Chapter 1: Dawn** - light\n- Dusk"
    assert extract_chapter_titles(outline) == ["Dawn", "Dusk"]


def test_extract_chapter_titles_empty():
    assert extract_chapter_titles("") == []
    assert extract_chapter_titles("# only a heading\n\n") == []


def test_extract_outermost_object_ignores_braces_in_strings():
    text = 'Sure! {"title": "A {curly} tale", "n": {"x": 1}} trailing }'
    assert extract_outermost_object(text) == '{"title": "A {curly} tale", "n": {"x": 1}}'


def test_parse_json_value_ladder():
    assert parse_json_value('{"a": 1}') == {"a": 1}
    assert parse_json_value('```json\n{"a": 2}\n```') == {"a": 2}
    assert parse_json_value('Here you go: {"a": 3} hope it helps') == {"a": 3}
    with pytest.raises(ParseError):
        parse_json_value("no json here")


def test_parse_json_object_rejects_non_objects():
    assert parse_json_object("[1, 2]") is None
    assert parse_json_object("nothing") is None
    assert parse_json_object('{"ok": true}') == {"ok": True}


def test_parse_title_suggestions_options_shape():
    text = '{"options": [{"title": "One", "subtitle": "S", "keywords": "a, b"}, {"title": "Two"}]}'
    suggestions = parse_title_suggestions(text)
    assert [s.title for s in suggestions] == ["One", "Two"]
    assert suggestions[0].keyword_list() == ["a", "b"]


def test_parse_title_suggestions_bare_list_and_embedded():
    assert [s.title for s in parse_title_suggestions('[{"title": "X"}]')] == ["X"]
    embedded = 'Options below:\n{"options": [{"title": "Y", "description": "d"}]}\nEnjoy'
    assert parse_title_suggestions(embedded)[0].description == "d"


def test_parse_title_suggestions_falls_back_to_synthetic():
    suggestions = parse_title_suggestions("Just some prose about titles.")
    assert len(suggestions) == 1
    assert suggestions[0].title == "Untitled"
    assert suggestions[0].description == "Just some prose about titles."


def test_parse_outline_chapters_numbers_and_skips_invalid():
    data = {
        "chapters": [
            {"number": "1", "title": " Start ", "description": "begin"},
            {"title": ""},
            "Middle",
            42,
            {"number": 9, "title": "End"},
        ]
    }
    chapters = parse_outline_chapters(data)
    assert [(c.number, c.title) for c in chapters] == [(1, "Start"), (3, "Middle"), (9, "End")]
    assert parse_outline_chapters({"chapters": []}) is None
    assert parse_outline_chapters({"title": "no chapters"}) is None
    assert parse_outline_chapters(None) is None


def test_render_outline_text_round_trips_titles():
    chapters = [
        OutlineChapter(number=1, title="Intro", description="sets the scene"),
        OutlineChapter(number=2, title="Rising Action"),
    ]
    text = render_outline_text(chapters)
    assert text == "Chapter 1: Intro - sets the scene\nChapter 2: Rising Action"
    assert extract_chapter_titles(text) == ["Intro", "Rising Action"]


def test_stringify_concept_layout():
    text = stringify_concept(
        {
            "title": "Stars",
            "subtitle": "A Guide",
            "genre": "Science",
            "audience": "Kids",
            "keywords": ["space", "planets"],
            "logline": "Look up.",
            "themes": ["wonder", "curiosity"],
            "hooks": [],
        }
    )
    assert text.startswith("Title: Stars\nSubtitle: A Guide\nGenre: Science\nAudience: Kids")
    assert "Keywords: space, planets" in text
    assert "\n\nLogline:\nLook up." in text
    assert "\n\nThemes:\n- wonder\n- curiosity" in text
    assert "Reader Hooks" not in text


def test_stringify_concept_defaults_title():
    assert stringify_concept({}).startswith("Title: Untitled")


def test_extract_chapter_titles_keeps_hyphenated_titles():
    outline = "Chapter 1: Self-Doubt\nChapter 2: Coming-of-Age - growing up"
    assert extract_chapter_titles(outline) == ["Self-Doubt", "Coming-of-Age"]
