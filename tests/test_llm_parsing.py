import json

import pytest

from sitegen.llm_parsing import (
    MAX_EXTRACTED_SECTIONS,
    PLACEHOLDER_MARKUP,
    count_tags,
    extract_fields,
    is_incomplete,
    parse_strict,
    process_header_footer,
    process_page,
    strip_reasoning,
    unescape_json_string,
)


def test_strict_header_payload():
    out = process_header_footer(json.dumps({"content": "<header>Hi</header>", "css": "header{}"}))
    assert out.method == "strict"
    assert out.markup == "<header>Hi</header>"
    assert out.stylesheet == "header{}"
    assert out.placeholder is False


def test_reasoning_block_and_fences_are_ignored():
    text = '<think>Let me plan the header first.</think>\n```json\n{"html": "<nav>x</nav>", "styles": "nav{}"}\n```'
    assert strip_reasoning(text).startswith("```json")
    out = process_header_footer(text)
    assert out.method == "strict"
    assert out.markup == "<nav>x</nav>"
    assert out.stylesheet == "nav{}"


def test_strict_rejects_payload_without_markup():
    with pytest.raises(ValueError):
        parse_strict(json.dumps({"css": "a{}"}), "header")
    with pytest.raises(ValueError):
        parse_strict(json.dumps({"sections": []}), "page")


def test_escaped_fields_are_extracted_exactly():
    text = r'{"content": "<div class=\"a\">\n\tHi \\ there</div>", "css": ".a {\n  color: red;\n}", oops'
    out = process_header_footer(text)
    assert out.method == "extracted"
    assert out.markup == '<div class="a">\n\tHi \\ there</div>'
    assert out.stylesheet == ".a {\n  color: red;\n}"


def test_extract_fields_without_markup_returns_none():
    assert extract_fields('{"css": "a{}"') is None
    assert extract_fields('{"content": "", "css": "a{}"}') is None


def test_unescape_handles_unicode_escapes():
    assert unescape_json_string(r"café \/ \"q\"") == 'café / "q"'


@pytest.mark.parametrize(
    "text",
    ["", "Sorry, I can't help with that.", "<<<>>>", "{not json at all"],
)
def test_unrecognizable_input_yields_placeholder(text):
    for out in (process_header_footer(text), process_page(text)):
        assert out.placeholder is True
        assert out.method == "placeholder"
    header = process_header_footer(text)
    assert header.markup == PLACEHOLDER_MARKUP
    assert header.stylesheet
    page = process_page(text)
    assert len(page.sections) == 1
    assert page.sections[0].markup and page.sections[0].stylesheet


def test_page_accepts_bare_array_and_reference_aliases():
    text = json.dumps(
        [
            {"section_reference": "s-1", "type": "hero", "html": "<section>1</section>", "stylesheet": "#s-1{}"},
            {"id": "s-2", "content": "<section>2</section>"},
        ]
    )
    out = process_page(text)
    assert out.method == "strict"
    assert [s.reference for s in out.sections] == ["s-1", "s-2"]
    assert out.sections[0].section_type == "hero"
    assert out.sections[1].stylesheet == ""


def test_broken_page_payload_extracts_sections_in_order():
    text = (
        '{"sections": [\n'
        '{"sectionReference": "section-hero-1", "type": "hero", "content": "<section>\\"Hero\\"</section>", "css": "#section-hero-1 { color: red; }"},\n'
        '{"sectionReference": "section-cta-2", "type": "cta", "content": "<section>CTA</section>", "css": "#section-cta-2 {}"}\n'
        "this is not json"
    )
    out = process_page(text)
    assert out.method == "extracted"
    assert [s.reference for s in out.sections] == ["section-hero-1", "section-cta-2"]
    assert out.sections[0].markup == '<section>"Hero"</section>'
    assert out.sections[0].stylesheet == "#section-hero-1 { color: red; }"
    assert out.sections[1].section_type == "cta"


def test_extraction_is_capped():
    parts = ['{"content": "<p>%d</p>", "css": "p{}"}' % i for i in range(MAX_EXTRACTED_SECTIONS + 5)]
    text = '{"sections": [' + ", ".join(parts) + " <<broken"
    out = process_page(text)
    assert len(out.sections) == MAX_EXTRACTED_SECTIONS


def test_truncated_page_payload_keeps_its_section():
    text = '{"sections": [{"content": "<section>only one</section>", "css": "section {}"}'
    out = process_page(text)
    assert out.placeholder is False
    assert out.sections[0].markup == "<section>only one</section>"


def test_tag_threshold_for_incompleteness():
    five_open_two_closed = "<div><div><div><div><p>text</p></div>"
    five_open_four_closed = "<div><div><div><div><p>text</p></div></div></div>"
    assert count_tags(five_open_two_closed) == (5, 2)
    assert count_tags(five_open_four_closed) == (5, 4)
    assert is_incomplete(five_open_two_closed) is True
    assert is_incomplete(five_open_four_closed) is False


def test_void_and_self_closing_tags_not_counted():
    assert count_tags('<div><img src="a.png"><br/><input type="text" /></div>') == (1, 1)


@pytest.mark.parametrize(
    "text",
    [
        '{"content": "<div class=\\"hero\\">',
        '{"sections": [{"content": "<p>x</p>"}',
        "```json\n{\"content\": \"<p>x</p>\"}",
        "<section><p>The story continues...",
        "<section><p>Hi</p></section>\n<div class=",
        "",
    ],
)
def test_truncated_outputs_are_incomplete(text):
    assert is_incomplete(text) is True


@pytest.mark.parametrize(
    "text",
    [
        json.dumps({"content": '<div class="hero"></div>', "css": ".hero { color: red; }"}),
        "```json\n" + json.dumps({"sections": [{"content": "<p>x</p>"}]}) + "\n```",
        "<section><h1>Done</h1></section>",
    ],
)
def test_complete_outputs_are_not_incomplete(text):
    assert is_incomplete(text) is False
