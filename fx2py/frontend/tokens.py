"""Markup tokenizer: runs expat over a document and records its events as tokens.

expat checks well-formedness and decodes entities. Attribute positions are
not reported by expat, so they are recovered from the start tag text.
"""

from __future__ import annotations

import bisect
import re
from xml.parsers import expat

from ..diagnostics import MalformedDocument

# Token type constants
TK_PI = "PI"
TK_START = "START"
TK_END = "END"
TK_TEXT = "TEXT"
TK_EOF = "EOF"

ENTITIES: dict[str, str] = {
    "lt": "<",
    "gt": ">",
    "amp": "&",
    "quot": '"',
    "apos": "'",
}

LINE_BREAK = re.compile(r"\r\n|\r|\n")
ATTRIBUTE = re.compile(r"""\s*([^\s=/>]+)\s*=\s*("[^"]*"|'[^']*')""")
NAME = re.compile(r"[^\s=/>]+")


def _code(message: str) -> int:
    return expat.errors.codes[message]


TAG_MISMATCH = _code(expat.errors.XML_ERROR_TAG_MISMATCH)
DUPLICATE_ATTRIBUTE = _code(expat.errors.XML_ERROR_DUPLICATE_ATTRIBUTE)
UNDEFINED_ENTITY = _code(expat.errors.XML_ERROR_UNDEFINED_ENTITY)
JUNK_AFTER_ROOT = _code(expat.errors.XML_ERROR_JUNK_AFTER_DOC_ELEMENT)
NO_ELEMENTS = _code(expat.errors.XML_ERROR_NO_ELEMENTS)
MISPLACED_XML_DECL = _code(expat.errors.XML_ERROR_MISPLACED_XML_PI)
SYNTAX = _code(expat.errors.XML_ERROR_SYNTAX)


class RawAttribute:
    """An attribute as lexed: name, decoded value and both positions."""

    def __init__(
        self, name: str, value: str, line: int, col: int, value_line: int, value_col: int
    ):
        self.name: str = name
        self.value: str = value
        self.line: int = line
        self.col: int = col
        self.value_line: int = value_line
        self.value_col: int = value_col

    def __repr__(self) -> str:
        return "RawAttribute(" + self.name + "=" + repr(self.value) + ")"


class Token:
    """A markup token with type, value, and position."""

    def __init__(self, type_: str, value: str, line: int, col: int):
        self.type: str = type_
        self.value: str = value
        self.line: int = line
        self.col: int = col
        self.data: str = ""
        self.raw: str = ""
        self.attributes: list[RawAttribute] = []
        self.cdata: bool = False

    def __repr__(self) -> str:
        return (
            "Token("
            + self.type
            + ", "
            + repr(self.value)
            + ", "
            + str(self.line)
            + ", "
            + str(self.col)
            + ")"
        )


def decode_reference(ref: str) -> str:
    """Decode one '&name;' or '&#N;' reference already accepted by expat."""
    name = ref[1:-1]
    if name.startswith("#x") or name.startswith("#X"):
        return chr(int(name[2:], 16))
    if name.startswith("#"):
        return chr(int(name[1:]))
    return ENTITIES.get(name, "")


class Lexer:
    """Collects expat events into a flat token list with source positions."""

    def __init__(self, src: str):
        self.src: str = src
        self.line_starts: list[int] = [0] + [m.end() for m in LINE_BREAK.finditer(src)]
        self.tokens: list[Token] = []
        self.open: list[Token] = []
        self.text: Token | None = None
        self.text_start: int = 0
        self.parser = expat.ParserCreate()
        self.parser.ordered_attributes = True
        self.parser.StartElementHandler = self.start_element
        self.parser.EndElementHandler = self.end_element
        self.parser.CharacterDataHandler = self.character_data
        self.parser.ProcessingInstructionHandler = self.processing_instruction
        self.parser.CommentHandler = self.comment
        self.parser.StartCdataSectionHandler = self.start_cdata
        self.parser.EndCdataSectionHandler = self.end_cdata
        self.parser.StartDoctypeDeclHandler = self.doctype

    # ── Positions ────────────────────────────────────────────

    def offset(self, line: int, col: int) -> int:
        """Source offset of an expat position (1-based line, 0-based col)."""
        if line - 1 >= len(self.line_starts):
            return len(self.src)
        return min(self.line_starts[line - 1] + col, len(self.src))

    def position(self, offset: int) -> tuple[int, int]:
        i = bisect.bisect_right(self.line_starts, offset) - 1
        return i + 1, offset - self.line_starts[i] + 1

    def here(self) -> int:
        return self.offset(self.parser.CurrentLineNumber, self.parser.CurrentColumnNumber)

    def token(self, type_: str, value: str, offset: int) -> Token:
        line, col = self.position(offset)
        return Token(type_, value, line, col)

    # ── Handlers ─────────────────────────────────────────────

    def flush_text(self) -> None:
        tok = self.text
        if tok is None:
            return
        tok.raw = self.src[self.text_start : self.here()]
        self.tokens.append(tok)
        self.text = None

    def start_element(self, name: str, attrs: list[str]) -> None:
        self.flush_text()
        begin = self.here()
        tok = self.token(TK_START, name, begin)
        pos = begin + 1 + len(name)
        for i in range(0, len(attrs), 2):
            m = ATTRIBUTE.match(self.src, pos)
            assert m is not None and m.group(1) == attrs[i]
            line, col = self.position(m.start(1))
            value_line, value_col = self.position(m.start(2) + 1)
            tok.attributes.append(
                RawAttribute(attrs[i], attrs[i + 1], line, col, value_line, value_col)
            )
            pos = m.end()
        self.tokens.append(tok)
        self.open.append(tok)

    def end_element(self, name: str) -> None:
        self.flush_text()
        self.tokens.append(self.token(TK_END, name, self.here()))
        self.open.pop()

    def character_data(self, data: str) -> None:
        if self.text is None:
            self.text_start = self.here()
            self.text = self.token(TK_TEXT, "", self.text_start)
        self.text.value += data

    def processing_instruction(self, target: str, data: str) -> None:
        self.flush_text()
        tok = self.token(TK_PI, target, self.here())
        tok.data = data.strip()
        self.tokens.append(tok)

    def comment(self, data: str) -> None:
        self.flush_text()

    def start_cdata(self) -> None:
        self.flush_text()
        self.text_start = self.here()
        self.text = self.token(TK_TEXT, "", self.text_start)
        self.text.cdata = True

    def end_cdata(self) -> None:
        self.flush_text()

    def doctype(self, name: str, system_id: str | None, public_id: str | None, internal: int) -> None:
        begin = self.src.rfind("<!DOCTYPE", 0, self.here() + len("<!DOCTYPE"))
        line, col = self.position(max(begin, 0))
        raise MalformedDocument("document type declarations are not supported", line, col)

    # ── Top level ────────────────────────────────────────────

    def tokenize(self) -> list[Token]:
        try:
            self.parser.Parse(self.src, True)
        except expat.ExpatError as e:
            raise self.translate(e) from None
        end = self.token(TK_EOF, "", len(self.src))
        self.tokens.append(end)
        return self.tokens

    def name_at(self, offset: int) -> str:
        m = NAME.match(self.src, offset)
        return m.group(0) if m else ""

    def translate(self, e: expat.ExpatError) -> MalformedDocument:
        """Turn an expat error into a positioned MalformedDocument."""
        line = e.lineno
        col = e.offset + 1
        at = self.offset(e.lineno, e.offset)
        if e.code == TAG_MISMATCH and self.open:
            # expat points at the name; report the '</'
            expected = self.open[-1].value
            msg = "mismatched end tag </" + self.name_at(at) + ">, expected </" + expected + ">"
            return MalformedDocument(msg, line, max(col - 2, 1))
        if e.code == DUPLICATE_ATTRIBUTE:
            return MalformedDocument("duplicate attribute '" + self.name_at(at) + "'", line, col)
        if e.code == UNDEFINED_ENTITY:
            end = self.src.find(";", at)
            if self.src.startswith("&", at) and end > at:
                return MalformedDocument("unknown entity '" + self.src[at : end + 1] + "'", line, col)
            return MalformedDocument("unknown entity", line, col)
        if e.code == JUNK_AFTER_ROOT:
            if self.src.startswith("<", at):
                return MalformedDocument("multiple root elements", line, col)
            return MalformedDocument("text outside the root element", line, col)
        if e.code == SYNTAX and not self.src.startswith("<", at):
            return MalformedDocument("text outside the root element", line, col)
        if e.code == NO_ELEMENTS:
            if self.open:
                tok = self.open[-1]
                return MalformedDocument("unterminated element <" + tok.value + ">", tok.line, tok.col)
            return MalformedDocument("document has no root element", line, col)
        if e.code == MISPLACED_XML_DECL:
            return MalformedDocument("XML declaration must come first", line, col)
        return MalformedDocument(expat.ErrorString(e.code), line, col)


def tokenize(src: str) -> list[Token]:
    """Tokenize markup source into a flat token list."""
    return Lexer(src).tokenize()
