"""Markup AST: parse-time node definitions for documents and expressions."""

from __future__ import annotations

from dataclasses import dataclass, field


# ============================================================
# POSITION
# ============================================================


@dataclass(frozen=True)
class Pos:
    """Source position, 1-indexed."""

    line: int
    col: int


# ============================================================
# EXPRESSIONS
#
# Produced by expression.parse_value for attribute values and element
# text. Immutable once parsed; owned by the attribute that produced it.
# ============================================================


@dataclass(frozen=True)
class Expr:
    """Base for all expression nodes."""

    pos: Pos


@dataclass(frozen=True)
class Text(Expr):
    """Plain literal text. Coerced to the target type during resolution."""

    text: str


@dataclass(frozen=True)
class Const(Expr):
    """Typed literal inside an expression: str, int, float, bool or None."""

    value: str | int | float | bool | None


@dataclass(frozen=True)
class Ref(Expr):
    """Element reference by id, or the controller when name is 'controller'."""

    name: str


@dataclass(frozen=True)
class Path(Expr):
    """Property read: target.name."""

    target: Expr
    name: str


@dataclass(frozen=True)
class Call(Expr):
    """Method invocation with zero or one argument: target.name(arg)."""

    target: Expr
    name: str
    args: tuple[Expr, ...]


@dataclass(frozen=True)
class Index(Expr):
    """Collection access: target[key]."""

    target: Expr
    key: Expr


@dataclass(frozen=True)
class ListLit(Expr):
    """[a, b, c]"""

    items: tuple[Expr, ...]


@dataclass(frozen=True)
class MapLit(Expr):
    """{k: v, ...}"""

    entries: tuple[tuple[Expr, Expr], ...]


@dataclass(frozen=True)
class Unary(Expr):
    """-x or !x."""

    op: str
    operand: Expr


@dataclass(frozen=True)
class Binary(Expr):
    """Arithmetic, comparison and logical operators."""

    op: str
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Binding(Expr):
    """${expr}: re-evaluated whenever an operand changes."""

    expr: Expr


@dataclass(frozen=True)
class Resource(Expr):
    """%key: resource-bundle lookup."""

    key: str


@dataclass(frozen=True)
class Location(Expr):
    """@path: location relative to the document."""

    path: str


@dataclass(frozen=True)
class MethodRef(Expr):
    """#name: controller method used as an event handler."""

    name: str


# ============================================================
# DOCUMENT
# ============================================================


@dataclass
class Attribute:
    """An attribute as written. value is None when the value failed to parse."""

    pos: Pos
    name: str
    raw: str
    value_pos: Pos
    value: Expr | None
    owner: str | None = None  # Owner type for static properties: Owner.prop="v"


@dataclass
class Node:
    """Base for document nodes. order is the end-tag position in the document."""

    pos: Pos
    order: int = field(default=0, init=False)


@dataclass
class Instance(Node):
    """An ordinary element: instantiate tag, apply attributes and children."""

    tag: str = ""
    fx_id: str | None = None
    attributes: list[Attribute] = field(default_factory=list)
    children: list[Node] = field(default_factory=list)
    text: Expr | None = None


@dataclass
class Value(Instance):
    """<Type fx:value="text"/>: the type's value parsed from text."""

    value: str = ""


@dataclass
class Factory(Instance):
    """<Type fx:factory="method"/>: a static factory method produces the value."""

    method: str = ""


@dataclass
class Constant(Node):
    """<Type fx:constant="NAME"/>: a static constant on a type."""

    tag: str = ""
    name: str = ""
    fx_id: str | None = None


@dataclass
class Root(Instance):
    """<fx:root type="T">: the root object is supplied by the caller."""


@dataclass
class PropertyElement(Node):
    """<prop>...</prop>: explicit property of the enclosing instance."""

    name: str = ""
    attributes: list[Attribute] = field(default_factory=list)
    children: list[Node] = field(default_factory=list)
    text: Expr | None = None


@dataclass
class StaticPropertyElement(Node):
    """<Owner.prop>...</Owner.prop>: attached property set through Owner."""

    owner: str = ""
    name: str = ""
    children: list[Node] = field(default_factory=list)
    text: Expr | None = None


@dataclass
class Define(Node):
    """<fx:define>: children are built and registered but not attached."""

    children: list[Node] = field(default_factory=list)


@dataclass
class Reference(Node):
    """<fx:reference source="id"/>: reuse a previously defined value."""

    source: str = ""
    fx_id: str | None = None


@dataclass
class Copy(Node):
    """<fx:copy source="id"/>: clone a previously defined value."""

    source: str = ""
    fx_id: str | None = None


@dataclass
class Include(Node):
    """<fx:include source="path"/>: embed another document's output."""

    source: str = ""
    fx_id: str | None = None
    resources: str | None = None


@dataclass
class Import:
    """<?import name?> or <?import package.*?>."""

    pos: Pos
    name: str
    wildcard: bool


@dataclass
class Document:
    """A parsed markup document."""

    path: str
    root: Node
    imports: list[Import] = field(default_factory=list)
    controller: str | None = None
    controller_pos: Pos | None = None
    language: str | None = None
    compile: bool = True
    exports: list[str] = field(default_factory=list)
    namespaces: dict[str, str] = field(default_factory=dict)
    # Attribute values that failed to parse; the rest of the document is intact
    expression_errors: list = field(default_factory=list)


def walk(node: Node) -> list[Node]:
    """All nodes of a subtree in start-tag order."""
    result: list[Node] = [node]
    for child in children_of(node):
        result.extend(walk(child))
    return result


def children_of(node: Node) -> list[Node]:
    if isinstance(node, (Instance, PropertyElement, StaticPropertyElement, Define)):
        return node.children
    return []
