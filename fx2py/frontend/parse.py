"""Markup parser: builds a Document tree from markup tokens.

Element tags are classified the way the runtime loader classifies them:
fx:-prefixed control elements, lowercase property elements, Owner.prop
static property elements, and instance elements refined by at most one of
fx:value, fx:constant or fx:factory.
"""

from __future__ import annotations

import re

from ..diagnostics import MalformedDocument, MalformedExpression
from .ast import (
    Attribute,
    Constant,
    Copy,
    Define,
    Document,
    Expr,
    Factory,
    Import,
    Include,
    Instance,
    Node,
    Pos,
    PropertyElement,
    Reference,
    Root,
    StaticPropertyElement,
    Text,
    Value,
)
from .expression import parse_value
from .tokens import TK_END, TK_EOF, TK_PI, TK_START, RawAttribute, Token, decode_reference, tokenize

FX_NAMESPACE_PREFIX = "http://javafx.com/fxml"

PROCESSING_INSTRUCTIONS: set[str] = {
    "import",
    "language",
    "compile",
    "controller",
    "export",
}

CONTROL_ELEMENTS: set[str] = {"include", "reference", "copy", "root", "define"}

PROPERTY_ELEMENT = re.compile(r"^[a-z_]\w*$")
STATIC_PROPERTY = re.compile(r"^(?:\w+\.)*[A-Z]\w*\.[a-z_]\w*$")
QUALIFIED_NAME = re.compile(r"^[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*$")
ID_PATTERN = re.compile(r"^[A-Za-z_]\w*$")


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


class Parser:
    """Recursive descent parser over markup tokens."""

    def __init__(self, tokens: list[Token], path: str):
        self.tokens: list[Token] = tokens
        self.pos: int = 0
        self.path: str = path
        self.prefixes: set[str] = {"fx"}
        self.completed: int = 0
        self.doc: Document | None = None

    # ── Helpers ──────────────────────────────────────────────

    def current(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.type != TK_EOF:
            self.pos += 1
        return tok

    def at_type(self, type_: str) -> bool:
        return self.current().type == type_

    def error(self, msg: str, tok: Token | None = None) -> MalformedDocument:
        if tok is None:
            tok = self.current()
        return MalformedDocument(msg, tok.line, tok.col)

    def _tok_pos(self, tok: Token) -> Pos:
        return Pos(tok.line, tok.col)

    def complete(self, node: Node) -> Node:
        self.completed += 1
        node.order = self.completed
        return node

    def split_prefix(self, name: str) -> tuple[str | None, str]:
        if ":" not in name:
            return None, name
        prefix, local = name.split(":", 1)
        return prefix, local

    def is_fx(self, prefix: str | None) -> bool:
        return prefix is not None and prefix in self.prefixes

    # ── Document ─────────────────────────────────────────────

    def parse_document(self) -> Document:
        # expat has already rejected stray text, extra roots and bad nesting
        root: Node | None = None
        self.doc = Document(self.path, Node(Pos(1, 1)))
        while not self.at_type(TK_EOF):
            tok = self.current()
            if tok.type == TK_PI:
                self.advance()
                self.processing_instruction(tok)
            else:
                root = self.parse_element(None)
        assert root is not None
        if isinstance(root, (PropertyElement, StaticPropertyElement, Define, Reference, Copy, Include)):
            raise MalformedDocument("invalid root element", root.pos.line, root.pos.col)
        self.doc.root = root
        return self.doc

    def processing_instruction(self, tok: Token) -> None:
        doc = self.doc
        assert doc is not None
        target = tok.value
        data = tok.data
        if target not in PROCESSING_INSTRUCTIONS:
            raise self.error("unknown processing instruction <?" + target + "?>", tok)
        if target == "import":
            wildcard = data.endswith(".*")
            name = data[: len(data) - 2] if wildcard else data
            if not QUALIFIED_NAME.match(name):
                raise self.error("invalid import '" + data + "'", tok)
            doc.imports.append(Import(self._tok_pos(tok), name, wildcard))
        elif target == "language":
            doc.language = data
        elif target == "compile":
            flag = data.lower()
            if flag not in ("true", "false"):
                raise self.error("compile expects true or false, got '" + data + "'", tok)
            doc.compile = flag == "true"
        elif target == "controller":
            if not QUALIFIED_NAME.match(data):
                raise self.error("invalid controller type '" + data + "'", tok)
            if doc.controller is None:
                doc.controller = data
                doc.controller_pos = self._tok_pos(tok)
        elif target == "export":
            for name in data.replace(",", " ").split():
                if not ID_PATTERN.match(name):
                    raise self.error("invalid exported id '" + name + "'", tok)
                doc.exports.append(name)

    # ── Elements ─────────────────────────────────────────────

    def parse_element(self, parent: Node | None) -> Node:
        tok = self.advance()
        outer = self.prefixes
        self.prefixes = self.declare_namespaces(tok)
        node = self.classify_element(tok, parent)
        self.prefixes = outer
        return node

    def classify_element(self, tok: Token, parent: Node | None) -> Node:
        prefix, local = self.split_prefix(tok.value)
        if prefix is not None:
            if not self.is_fx(prefix):
                raise self.error("undeclared namespace prefix '" + prefix + "'", tok)
            if local == "script":
                raise self.error("fx:script is not supported", tok)
            if local not in CONTROL_ELEMENTS:
                raise self.error("unknown element <" + tok.value + ">", tok)
            return self.parse_control(tok, local, parent)
        if PROPERTY_ELEMENT.match(tok.value):
            if parent is None:
                raise self.error("invalid root element <" + tok.value + ">", tok)
            return self.parse_property_element(tok)
        if STATIC_PROPERTY.match(tok.value):
            if parent is None:
                raise self.error("invalid root element <" + tok.value + ">", tok)
            return self.parse_static_property_element(tok)
        if not QUALIFIED_NAME.match(tok.value):
            raise self.error("invalid element name <" + tok.value + ">", tok)
        return self.parse_instance(tok, parent)

    def declare_namespaces(self, tok: Token) -> set[str]:
        """The fx prefixes in scope for this element and its content."""
        doc = self.doc
        assert doc is not None
        prefixes = self.prefixes
        for attr in tok.attributes:
            if attr.name == "xmlns" or attr.name.startswith("xmlns:"):
                prefix = attr.name[6:] if ":" in attr.name else ""
                doc.namespaces[prefix] = attr.value
                if prefix == "":
                    continue
                if prefixes is self.prefixes:
                    prefixes = set(prefixes)
                if attr.value.startswith(FX_NAMESPACE_PREFIX):
                    prefixes.add(prefix)
                else:
                    prefixes.discard(prefix)
        return prefixes

    def parse_instance(self, tok: Token, parent: Node | None) -> Node:
        pos = self._tok_pos(tok)
        fx_attrs, attributes = self.split_attributes(tok, parent is None)
        fx_id = self.take_id(fx_attrs, tok)
        refinements = [k for k in ("value", "constant", "factory") if k in fx_attrs]
        if len(refinements) > 1:
            raise self.error("at most one of fx:value, fx:constant, fx:factory", tok)
        for key in fx_attrs:
            if key not in ("value", "constant", "factory"):
                raise self.error("unknown attribute fx:" + key, tok)
        if "constant" in fx_attrs:
            if len(attributes) > 0:
                raise self.error("fx:constant elements take no other attributes", tok)
            self.parse_empty_body(tok)
            return self.complete(Constant(pos, tok.value, fx_attrs["constant"].value, fx_id))
        node: Instance
        if "value" in fx_attrs:
            node = Value(pos, tok.value, fx_id, attributes, value=fx_attrs["value"].value)
        elif "factory" in fx_attrs:
            node = Factory(pos, tok.value, fx_id, attributes, method=fx_attrs["factory"].value)
        else:
            node = Instance(pos, tok.value, fx_id, attributes)
        self.parse_body(tok, node)
        return self.complete(node)

    def parse_control(self, tok: Token, local: str, parent: Node | None) -> Node:
        pos = self._tok_pos(tok)
        if local == "root":
            if parent is not None:
                raise self.error("fx:root must be the root element", tok)
            fx_attrs, attributes = self.split_attributes(tok, True)
            type_attr = self.take_plain(attributes, "type")
            if type_attr is None:
                raise self.error("fx:root requires a type attribute", tok)
            fx_id = self.take_id(fx_attrs, tok)
            self.reject_fx(fx_attrs, tok)
            node = Root(pos, type_attr.raw, fx_id, attributes)
            self.parse_body(tok, node)
            return self.complete(node)
        if parent is None and local != "include":
            raise self.error("invalid root element <" + tok.value + ">", tok)
        if parent is None:
            raise self.error("fx:include cannot be the root element", tok)
        if local == "define":
            if len(tok.attributes) > 0:
                raise self.error("fx:define takes no attributes", tok)
            define = Define(pos)
            self.parse_children(tok, define.children, define)
            for child in define.children:
                if isinstance(child, (PropertyElement, StaticPropertyElement)):
                    raise MalformedDocument(
                        "property elements are not allowed in fx:define",
                        child.pos.line,
                        child.pos.col,
                    )
            return self.complete(define)
        fx_attrs, attributes = self.split_attributes(tok, False, control=True)
        fx_id = self.take_id(fx_attrs, tok)
        self.reject_fx(fx_attrs, tok)
        source = self.take_plain(attributes, "source")
        if source is None or source.raw == "":
            raise self.error("<" + tok.value + "> requires a source attribute", tok)
        if local == "include":
            resources = self.take_plain(attributes, "resources")
            self.take_plain(attributes, "charset")
            self.reject_plain(attributes, tok)
            self.parse_empty_body(tok)
            return self.complete(
                Include(pos, source.raw, fx_id, resources.raw if resources else None)
            )
        self.reject_plain(attributes, tok)
        self.parse_empty_body(tok)
        if local == "reference":
            if fx_id is not None:
                raise self.error("fx:reference cannot declare an fx:id", tok)
            return self.complete(Reference(pos, source.raw))
        return self.complete(Copy(pos, source.raw, fx_id))

    def parse_property_element(self, tok: Token) -> Node:
        fx_attrs, attributes = self.split_attributes(tok, False)
        if len(fx_attrs) > 0:
            raise self.error("property elements take no fx: attributes", tok)
        for attr in attributes:
            if attr.owner is not None:
                raise self.error("property elements take no static properties", tok)
        node = PropertyElement(self._tok_pos(tok), tok.value, attributes)
        self.parse_body(tok, node)
        return self.complete(node)

    def parse_static_property_element(self, tok: Token) -> Node:
        if len(tok.attributes) > 0:
            raise self.error("static property elements take no attributes", tok)
        dot = tok.value.rfind(".")
        node = StaticPropertyElement(
            self._tok_pos(tok), tok.value[:dot], tok.value[dot + 1 :]
        )
        self.parse_body(tok, node)
        return self.complete(node)

    # ── Attributes ───────────────────────────────────────────

    def split_attributes(
        self, tok: Token, is_root: bool, control: bool = False
    ) -> tuple[dict[str, RawAttribute], list[Attribute]]:
        """Separate fx: attributes from ordinary ones, preserving order."""
        doc = self.doc
        assert doc is not None
        fx_attrs: dict[str, RawAttribute] = {}
        attributes: list[Attribute] = []
        for raw in tok.attributes:
            if raw.name == "xmlns" or raw.name.startswith("xmlns:"):
                continue
            prefix, local = self.split_prefix(raw.name)
            if prefix is not None:
                if not self.is_fx(prefix):
                    raise self.error("undeclared namespace prefix '" + prefix + "'", tok)
                if local == "controller":
                    if not is_root:
                        raise self.error(
                            "fx:controller is only allowed on the root element", tok
                        )
                    doc.controller = raw.value
                    doc.controller_pos = Pos(raw.value_line, raw.value_col)
                    continue
                fx_attrs[local] = raw
                continue
            attributes.append(self.attribute(raw, control))
        return fx_attrs, attributes

    def attribute(self, raw: RawAttribute, control: bool) -> Attribute:
        doc = self.doc
        assert doc is not None
        pos = Pos(raw.line, raw.col)
        value_pos = Pos(raw.value_line, raw.value_col)
        owner: str | None = None
        name = raw.name
        if STATIC_PROPERTY.match(name):
            dot = name.rfind(".")
            owner = name[:dot]
            name = name[dot + 1 :]
        value: Expr | None = None
        if control:
            value = Text(value_pos, raw.value)
        else:
            try:
                value = parse_value(raw.value, value_pos)
            except MalformedExpression as e:
                doc.expression_errors.append(e)
        return Attribute(pos, name, raw.value, value_pos, value, owner)

    def take_id(self, fx_attrs: dict[str, RawAttribute], tok: Token) -> str | None:
        raw = fx_attrs.pop("id", None)
        if raw is None:
            return None
        if not ID_PATTERN.match(raw.value):
            raise MalformedDocument(
                "invalid fx:id '" + raw.value + "'", raw.value_line, raw.value_col
            )
        return raw.value

    def take_plain(self, attributes: list[Attribute], name: str) -> Attribute | None:
        for i, attr in enumerate(attributes):
            if attr.name == name and attr.owner is None:
                return attributes.pop(i)
        return None

    def reject_fx(self, fx_attrs: dict[str, RawAttribute], tok: Token) -> None:
        for key in fx_attrs:
            raise self.error("unknown attribute fx:" + key + " on <" + tok.value + ">", tok)

    def reject_plain(self, attributes: list[Attribute], tok: Token) -> None:
        for attr in attributes:
            raise MalformedDocument(
                "unknown attribute '" + attr.name + "' on <" + tok.value + ">",
                attr.pos.line,
                attr.pos.col,
            )

    # ── Content ──────────────────────────────────────────────

    def parse_body(self, tok: Token, node: Instance | PropertyElement | StaticPropertyElement) -> None:
        node.text = self.parse_children(tok, node.children, node)

    def parse_empty_body(self, tok: Token) -> None:
        children: list[Node] = []
        text = self.parse_children(tok, children, None)
        if len(children) > 0 or text is not None:
            raise self.error("<" + tok.value + "> must be empty", tok)

    def parse_children(self, tok: Token, children: list[Node], owner: Node | None) -> Expr | None:
        """Parse content up to the matching end tag. Returns the element text."""
        text: Expr | None = None
        parent = owner if owner is not None else Node(self._tok_pos(tok))
        while True:
            cur = self.current()
            if cur.type == TK_START:
                children.append(self.parse_element(parent))
                continue
            self.advance()
            if cur.type == TK_END:
                return text
            if cur.type == TK_PI:
                self.processing_instruction(cur)
            else:
                found = self.element_text(cur)
                if found is not None:
                    text = found

    def element_text(self, tok: Token) -> Expr | None:
        """The last non-blank text run wins; whitespace is collapsed."""
        doc = self.doc
        assert doc is not None
        if tok.cdata:
            return Text(self._tok_pos(tok), tok.value)
        value = collapse_whitespace(tok.value)
        if value == "":
            return None
        pos = self.text_pos(tok)
        try:
            return parse_value(value, pos)
        except MalformedExpression as e:
            doc.expression_errors.append(e)
            return None

    def text_pos(self, tok: Token) -> Pos:
        """Position of the first non-blank character, walking the undecoded source."""
        line = tok.line
        col = tok.col
        raw = tok.raw
        i = 0
        while i < len(raw):
            c = raw[i]
            width = 1
            if c == "&":
                end = raw.find(";", i)
                c = decode_reference(raw[i : end + 1])
                width = end + 1 - i
            if c not in " \t\r\n":
                break
            if raw[i] == "\n":
                line += 1
                col = 1
            elif raw[i] == "\r":
                if raw.startswith("\r\n", i):
                    width = 2
                line += 1
                col = 1
            else:
                col += width
            i += width
        return Pos(line, col)


def parse(src: str, path: str = "<string>") -> Document:
    """Parse markup source into a Document. Raises MalformedDocument."""
    return Parser(tokenize(src), path).parse_document()
