"""Markup parser tests.

Test cases live in 03_markup/*.tests files. Format:

    === test name
    <markup document>
    ---
    expected tree dump, or: error: <message> at LINE:COL
    ---

Attribute values that fail to parse are reported the same way as
malformed markup: the first one is the expected error.
"""

from pathlib import Path

import pytest

from dump import dump_document
from fx2py.diagnostics import CompileError
from fx2py.frontend.ast import Pos
from fx2py.frontend.parse import parse

MARKUP_DIR = Path(__file__).parent / "03_markup"


def parse_markup_file(path: Path) -> list[tuple[str, str, str]]:
    """Parse .tests file into (name, input, expected) tuples."""
    lines = path.read_text().split("\n")
    result: list[tuple[str, str, str]] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith("=== "):
            test_name = line[4:].strip()
            i += 1
            input_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                input_lines.append(lines[i])
                i += 1
            if i < len(lines) and lines[i] == "---":
                i += 1
            expected_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                expected_lines.append(lines[i])
                i += 1
            if i < len(lines) and lines[i] == "---":
                i += 1
            result.append((test_name, "\n".join(input_lines), "\n".join(expected_lines).rstrip()))
        else:
            i += 1
    return result


def discover_markup_tests() -> list[tuple[str, str, str]]:
    results = []
    for test_file in sorted(MARKUP_DIR.glob("*.tests")):
        for name, src, expected in parse_markup_file(test_file):
            results.append((f"{test_file.stem}/{name}", src, expected))
    return results


def pytest_generate_tests(metafunc):
    if "markup_input" in metafunc.fixturenames:
        params = [
            pytest.param(src, expected, id=test_id)
            for test_id, src, expected in discover_markup_tests()
        ]
        metafunc.parametrize("markup_input,markup_expected", params)


def render(src: str) -> str:
    try:
        doc = parse(src, "test.fxml")
    except CompileError as e:
        return f"error: {e.msg} at {e.line}:{e.col}"
    if doc.expression_errors:
        e = doc.expression_errors[0]
        return f"error: {e.msg} at {e.line}:{e.col}"
    return dump_document(doc)


def test_markup(markup_input: str, markup_expected: str):
    assert render(markup_input) == markup_expected


def test_completion_order_numbers_end_tags():
    doc = parse("<VBox>\n  <Label/>\n  <Button><Label/></Button>\n</VBox>")
    root = doc.root
    first, button = root.children
    (inner,) = button.children
    assert [first.order, inner.order, button.order, root.order] == [1, 2, 3, 4]


def test_expression_error_keeps_document():
    doc = parse('<VBox>\n  <Label text="${a +}"/>\n  <Label text="ok"/>\n</VBox>')
    assert len(doc.expression_errors) == 1
    assert doc.root.children[0].attributes[0].value is None
    assert doc.root.children[1].attributes[0].value is not None


def test_attribute_positions():
    doc = parse('<VBox>\n  <Label  text="Hi"/>\n</VBox>')
    attr = doc.root.children[0].attributes[0]
    assert (attr.pos.line, attr.pos.col) == (2, 11)
    assert (attr.value_pos.line, attr.value_pos.col) == (2, 17)


def test_namespace_declarations_are_recorded():
    doc = parse('<VBox xmlns="http://javafx.com/javafx" xmlns:fx="http://javafx.com/fxml/1"/>')
    assert doc.namespaces == {"": "http://javafx.com/javafx", "fx": "http://javafx.com/fxml/1"}
    assert doc.root.attributes == []


def test_text_position_skips_blank_references_in_source():
    doc = parse("<Label>\n&#10;  hi</Label>")
    assert doc.root.text.pos == Pos(2, 8)


def test_text_position_starts_at_visible_reference():
    doc = parse("<Label>&amp; x</Label>")
    assert doc.root.text.text == "& x"
    assert doc.root.text.pos == Pos(1, 8)


def test_attribute_positions_follow_entities():
    doc = parse('<Label tooltip="&lt;&gt;" text="${a}"/>')
    tooltip, text = doc.root.attributes
    assert tooltip.raw == "<>"
    assert (text.pos.line, text.pos.col) == (1, 27)
    assert (text.value_pos.line, text.value_pos.col) == (1, 33)
