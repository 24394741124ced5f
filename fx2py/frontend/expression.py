"""Expression lexer and parser for attribute values.

Value forms:

    text        literal, coerced during resolution
    \\text       escaped literal
    @path       location relative to the document
    %key        resource-bundle key
    $path       one-shot expression: a reference chain or $[a, b]
    ${expr}     continuously bound expression
    #name       controller method (event handlers only)

Inside ${...} the full grammar applies: literals, ids, the root name
'controller', .name, .name(arg), [key], list and map literals, unary - and !,
* / %, + -, comparisons, == !=, && and ||.
"""

from __future__ import annotations

from ..diagnostics import MalformedExpression
from .ast import (
    Binary,
    Binding,
    Call,
    Const,
    Expr,
    Index,
    ListLit,
    Location,
    MapLit,
    MethodRef,
    Path,
    Pos,
    Ref,
    Resource,
    Text,
    Unary,
)

# Token type constants
TK_INT = "INT"
TK_FLOAT = "FLOAT"
TK_STRING = "STRING"
TK_IDENT = "IDENT"
TK_OP = "OP"
TK_EOF = "EOF"

# Sorted by length descending for greedy matching
OPERATORS: list[str] = [
    "&&",
    "||",
    "==",
    "!=",
    "<=",
    ">=",
    "<",
    ">",
    "+",
    "-",
    "*",
    "/",
    "%",
    "!",
    "(",
    ")",
    "[",
    "]",
    "{",
    "}",
    ",",
    ".",
    ":",
]

CLOSERS: dict[str, str] = {"(": ")", "[": "]", "{": "}"}

ESCAPE_MAP: dict[str, str] = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "\\": "\\",
    '"': '"',
    "'": "'",
}

KEYWORD_CONSTANTS: dict[str, bool | None] = {"true": True, "false": False, "null": None}

CONTROLLER = "controller"


class Token:
    """A token with type, value, and position."""

    def __init__(self, type_: str, value: str, line: int, col: int):
        self.type: str = type_
        self.value: str = value
        self.line: int = line
        self.col: int = col

    def __repr__(self) -> str:
        return "Token(" + self.type + ", " + repr(self.value) + ", " + str(self.col) + ")"


def _is_digit(c: str) -> bool:
    return c >= "0" and c <= "9"


def _is_alpha(c: str) -> bool:
    return (c >= "a" and c <= "z") or (c >= "A" and c <= "Z") or c == "_"


def _is_alnum(c: str) -> bool:
    return _is_alpha(c) or _is_digit(c)


def is_identifier(name: str) -> bool:
    if name == "" or not _is_alpha(name[0]):
        return False
    for c in name:
        if not _is_alnum(c):
            return False
    return True


def tokenize(src: str, start: Pos) -> list[Token]:
    """Lex expression text. Columns are offset from start."""
    tokens: list[Token] = []
    line = start.line
    pos = 0
    while pos < len(src):
        c = src[pos]
        col = start.col + pos
        if c in " \t\r\n":
            pos += 1
            continue
        if _is_digit(c):
            begin = pos
            while pos < len(src) and _is_digit(src[pos]):
                pos += 1
            kind = TK_INT
            if pos + 1 < len(src) and src[pos] == "." and _is_digit(src[pos + 1]):
                kind = TK_FLOAT
                pos += 1
                while pos < len(src) and _is_digit(src[pos]):
                    pos += 1
            if pos < len(src) and src[pos] in "eE":
                exp = pos + 1
                if exp < len(src) and src[exp] in "+-":
                    exp += 1
                if exp < len(src) and _is_digit(src[exp]):
                    kind = TK_FLOAT
                    pos = exp
                    while pos < len(src) and _is_digit(src[pos]):
                        pos += 1
            if pos < len(src) and _is_alpha(src[pos]):
                raise MalformedExpression(
                    "invalid number '" + src[begin : pos + 1] + "'", line, col
                )
            tokens.append(Token(kind, src[begin:pos], line, col))
            continue
        if _is_alpha(c):
            begin = pos
            while pos < len(src) and _is_alnum(src[pos]):
                pos += 1
            tokens.append(Token(TK_IDENT, src[begin:pos], line, col))
            continue
        if c == '"' or c == "'":
            quote = c
            pos += 1
            chars: list[str] = []
            while True:
                if pos >= len(src):
                    raise MalformedExpression("unterminated string literal", line, col)
                ch = src[pos]
                if ch == quote:
                    pos += 1
                    break
                if ch == "\\":
                    if pos + 1 >= len(src):
                        raise MalformedExpression(
                            "unterminated string literal", line, col
                        )
                    esc = src[pos + 1]
                    if esc == "u":
                        digits = src[pos + 2 : pos + 6]
                        if len(digits) != 4 or not _is_hex(digits):
                            raise MalformedExpression(
                                "invalid unicode escape", line, start.col + pos
                            )
                        chars.append(chr(int(digits, 16)))
                        pos += 6
                        continue
                    if esc not in ESCAPE_MAP:
                        raise MalformedExpression(
                            "invalid escape: \\" + esc, line, start.col + pos
                        )
                    chars.append(ESCAPE_MAP[esc])
                    pos += 2
                    continue
                chars.append(ch)
                pos += 1
            tokens.append(Token(TK_STRING, "".join(chars), line, col))
            continue
        matched = False
        for op in OPERATORS:
            if src.startswith(op, pos):
                tokens.append(Token(TK_OP, op, line, col))
                pos += len(op)
                matched = True
                break
        if not matched:
            raise MalformedExpression("unexpected character '" + c + "'", line, col)
    tokens.append(Token(TK_EOF, "", line, start.col + len(src)))
    return tokens


def _is_hex(s: str) -> bool:
    for c in s:
        if not (_is_digit(c) or (c >= "a" and c <= "f") or (c >= "A" and c <= "F")):
            return False
    return True


# Binary operator precedence levels, loosest first
PRECEDENCE: list[list[str]] = [
    ["||"],
    ["&&"],
    ["==", "!="],
    ["<", "<=", ">", ">="],
    ["+", "-"],
    ["*", "/", "%"],
]


class Parser:
    """Recursive descent parser for the expression language."""

    def __init__(self, tokens: list[Token]):
        self.tokens: list[Token] = tokens
        self.pos: int = 0
        self.open: list[Token] = []

    # ── Helpers ──────────────────────────────────────────────

    def current(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.type != TK_EOF:
            self.pos += 1
        return tok

    def at(self, value: str) -> bool:
        tok = self.current()
        return tok.type == TK_OP and tok.value == value

    def at_eof(self) -> bool:
        return self.current().type == TK_EOF

    def error(self, msg: str) -> MalformedExpression:
        tok = self.current()
        return MalformedExpression(msg, tok.line, tok.col)

    def _pos(self) -> Pos:
        tok = self.current()
        return Pos(tok.line, tok.col)

    def open_bracket(self) -> Token:
        tok = self.advance()
        self.open.append(tok)
        return tok

    def close_bracket(self, value: str) -> None:
        if self.at(value):
            self.advance()
            self.open.pop()
            return
        if self.at_eof():
            opener = self.open[len(self.open) - 1]
            raise MalformedExpression(
                "unbalanced bracket: '" + opener.value + "' is never closed",
                opener.line,
                opener.col,
            )
        raise self.error("expected '" + value + "', got '" + self.current().value + "'")

    def finish(self) -> None:
        tok = self.current()
        if tok.type == TK_EOF:
            return
        if tok.type == TK_OP and tok.value in (")", "]", "}"):
            raise self.error("unbalanced bracket: unexpected '" + tok.value + "'")
        raise self.error("unexpected '" + tok.value + "'")

    # ── Grammar ──────────────────────────────────────────────

    def parse_expr(self) -> Expr:
        return self.parse_binary(0)

    def parse_binary(self, level: int) -> Expr:
        if level >= len(PRECEDENCE):
            return self.parse_unary()
        left = self.parse_binary(level + 1)
        while self.current().type == TK_OP and self.current().value in PRECEDENCE[level]:
            op_tok = self.advance()
            right = self.parse_binary(level + 1)
            left = Binary(Pos(op_tok.line, op_tok.col), op_tok.value, left, right)
        return left

    def parse_unary(self) -> Expr:
        if self.at("-") or self.at("!"):
            tok = self.advance()
            operand = self.parse_unary()
            if tok.value == "-" and isinstance(operand, Const):
                value = operand.value
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    return Const(Pos(tok.line, tok.col), -value)
            return Unary(Pos(tok.line, tok.col), tok.value, operand)
        return self.parse_postfix()

    def parse_postfix(self) -> Expr:
        return self.parse_suffixes(self.parse_primary())

    def parse_suffixes(self, expr: Expr) -> Expr:
        while True:
            if self.at("."):
                self.advance()
                tok = self.current()
                if tok.type != TK_IDENT:
                    raise MalformedExpression("empty path segment", tok.line, tok.col)
                self.advance()
                pos = Pos(tok.line, tok.col)
                if self.at("("):
                    args = self.parse_args()
                    expr = Call(pos, expr, tok.value, args)
                else:
                    expr = Path(pos, expr, tok.value)
            elif self.at("["):
                pos = self._pos()
                self.open_bracket()
                if self.at("]"):
                    raise self.error("empty index")
                key = self.parse_expr()
                self.close_bracket("]")
                expr = Index(pos, expr, key)
            else:
                return expr

    def parse_args(self) -> tuple[Expr, ...]:
        self.open_bracket()
        if self.at(")"):
            self.close_bracket(")")
            return ()
        arg = self.parse_expr()
        if self.at(","):
            raise self.error("method calls take at most one argument")
        self.close_bracket(")")
        return (arg,)

    def parse_primary(self) -> Expr:
        tok = self.current()
        pos = Pos(tok.line, tok.col)
        if tok.type == TK_INT:
            self.advance()
            return Const(pos, int(tok.value))
        if tok.type == TK_FLOAT:
            self.advance()
            return Const(pos, float(tok.value))
        if tok.type == TK_STRING:
            self.advance()
            return Const(pos, tok.value)
        if tok.type == TK_IDENT:
            self.advance()
            if tok.value in KEYWORD_CONSTANTS:
                return Const(pos, KEYWORD_CONSTANTS[tok.value])
            return Ref(pos, tok.value)
        if self.at("("):
            self.open_bracket()
            expr = self.parse_expr()
            self.close_bracket(")")
            return expr
        if self.at("["):
            return self.parse_list()
        if self.at("{"):
            return self.parse_map()
        if tok.type == TK_EOF:
            raise self.error("unexpected end of expression")
        if tok.value in (")", "]", "}"):
            raise self.error("unbalanced bracket: unexpected '" + tok.value + "'")
        if tok.value == ".":
            raise self.error("empty path segment")
        raise self.error("unexpected '" + tok.value + "'")

    def parse_list(self) -> Expr:
        pos = self._pos()
        self.open_bracket()
        items: list[Expr] = []
        while not self.at("]") and not self.at_eof():
            items.append(self.parse_expr())
            if not self.at(","):
                break
            self.advance()
        self.close_bracket("]")
        return ListLit(pos, tuple(items))

    def parse_map(self) -> Expr:
        pos = self._pos()
        self.open_bracket()
        entries: list[tuple[Expr, Expr]] = []
        while not self.at("}") and not self.at_eof():
            key_tok = self.current()
            if key_tok.type == TK_IDENT and key_tok.value not in KEYWORD_CONSTANTS:
                self.advance()
                key: Expr = Const(Pos(key_tok.line, key_tok.col), key_tok.value)
            else:
                key = self.parse_expr()
            if not self.at(":"):
                raise self.error("expected ':' in map literal")
            self.advance()
            entries.append((key, self.parse_expr()))
            if not self.at(","):
                break
            self.advance()
        self.close_bracket("}")
        return MapLit(pos, tuple(entries))


def parse_expression(src: str, start: Pos) -> Expr:
    """Parse the full expression grammar."""
    parser = Parser(tokenize(src, start))
    expr = parser.parse_expr()
    parser.finish()
    return expr


def parse_reference(src: str, start: Pos) -> Expr:
    """Parse the body of a one-shot $ expression: a reference chain or list."""
    parser = Parser(tokenize(src, start))
    if parser.at("["):
        expr = parser.parse_suffixes(parser.parse_list())
    else:
        tok = parser.current()
        if tok.type != TK_IDENT or tok.value in KEYWORD_CONSTANTS:
            raise parser.error("expected an element id after '$'")
        expr = parser.parse_postfix()
    parser.finish()
    return expr


def parse_value(raw: str, pos: Pos, allow_binding: bool = True) -> Expr:
    """Classify and parse an attribute value or element text.

    Raises MalformedExpression with the offending position.
    """
    if raw == "":
        return Text(pos, "")
    c = raw[0]
    if c == "\\":
        return Text(pos, raw[1:])
    if c == "@":
        if raw == "@":
            raise MalformedExpression("empty location", pos.line, pos.col)
        return Location(pos, raw[1:])
    if c == "%":
        if raw == "%":
            raise MalformedExpression("empty resource key", pos.line, pos.col)
        return Resource(pos, raw[1:])
    if raw.startswith("${"):
        if not allow_binding:
            raise MalformedExpression(
                "binding expression is not permitted here", pos.line, pos.col
            )
        if not raw.endswith("}") or len(raw) < 3:
            raise MalformedExpression("unterminated binding expression", pos.line, pos.col)
        inner = raw[2 : len(raw) - 1]
        if inner.strip() == "":
            raise MalformedExpression("empty binding expression", pos.line, pos.col)
        return Binding(pos, parse_expression(inner, Pos(pos.line, pos.col + 2)))
    if c == "$":
        if raw == "$":
            raise MalformedExpression("empty reference", pos.line, pos.col)
        nxt = raw[1]
        if not (_is_alpha(nxt) or nxt == "["):
            raise MalformedExpression(
                "unknown reference sigil '$" + nxt + "'", pos.line, pos.col
            )
        return parse_reference(raw[1:], Pos(pos.line, pos.col + 1))
    return Text(pos, raw)


def parse_handler(raw: str, pos: Pos) -> Expr | None:
    """Parse an event-handler value. Returns None for an empty handler."""
    if raw.strip() == "":
        return None
    if raw.startswith("#"):
        name = raw[1:]
        if not is_identifier(name):
            raise MalformedExpression(
                "invalid method reference '" + raw + "'", pos.line, pos.col
            )
        return MethodRef(pos, name)
    if raw.startswith("$"):
        return parse_value(raw, pos, allow_binding=False)
    raise MalformedExpression(
        "script event handlers are not supported", pos.line, pos.col
    )
