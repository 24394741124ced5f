"""Resolved graph: the typed, ordering-annotated form of a document.

Architecture:
    Markup -> Frontend (parse) -> Resolver -> [Resolved graph] -> Backend -> Python

The resolver builds these nodes once; the backend reads them and never
mutates them. Variable names are final: the backend does no renaming.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .frontend.ast import Expr, Pos

# Sentinel node in the dependency graph standing for the controller
CONTROLLER_NODE = "controller"


# ============================================================
# VALUE SOURCES
# ============================================================


@dataclass
class Value:
    """Base for resolved value sources."""

    pos: Pos


@dataclass
class LiteralValue(Value):
    """A coerced literal: str, int, float, bool or None."""

    value: str | int | float | bool | None


@dataclass
class ListValue(Value):
    """A comma-separated literal coerced item by item."""

    items: list[Value]


@dataclass
class EnumValue(Value):
    """Enumeration member matched from literal text."""

    type_name: str
    member: str


@dataclass
class ConstantValue(Value):
    """Static constant on a type: Type.NAME."""

    type_name: str
    name: str


@dataclass
class ParsedValue(Value):
    """Type.value_of(text) for types that parse themselves."""

    type_name: str
    text: str


@dataclass
class ElementValue(Value):
    """Another element of the graph, by variable."""

    var: str


@dataclass
class ExprValue(Value):
    """One-shot expression evaluated once at construction time.

    coerce_to is set when the expression's static type is unknown or does
    not match the target, so the value passes through runtime.coerce.
    """

    expr: Expr
    coerce_to: str | None = None


@dataclass
class ResourceValue(Value):
    """%key looked up in the resources passed to build()."""

    key: str
    coerce_to: str | None = None


@dataclass
class LocationValue(Value):
    """@path resolved against the document location."""

    path: str


@dataclass
class MethodHandler(Value):
    """Controller method used as a handler or listener.

    arity is the number of arguments the method takes: 1 for an event, 3 for
    an (observable, old, new) change, 0 for none.
    """

    method: str
    arity: int


@dataclass
class RefHandler(Value):
    """A referenced object used as a handler."""

    value: Value


# ============================================================
# ASSIGNMENTS
# ============================================================

SET = "set"  # obj.target = value
APPEND = "append"  # obj.target.append(value); target "" appends to obj
EXTEND = "extend"  # obj.target.extend(value)
PUT = "put"  # obj.target[key] = value; target "" puts into obj
STATIC = "static"  # Owner.set_target(obj, value)
HANDLER = "handler"  # obj.target = handler
LISTENER = "listener"  # property_of(obj, target).add_listener(handler)
LIST_LISTENER = "list_listener"  # obj.target.add_listener(handler)


@dataclass
class Assignment:
    """One step applied to a constructed element."""

    pos: Pos
    kind: str
    target: str
    value: Value
    owner: str | None = None  # owner type of a static property
    key: str | None = None  # map key for PUT


@dataclass
class BindingInfo:
    """A continuously bound property: owner.prop follows expr."""

    pos: Pos
    var: str
    prop: str
    expr: Expr


@dataclass
class IncludeInfo:
    """Splice point for an included document."""

    path: str
    module: str
    class_name: str
    prefix: str
    builder_var: str
    controller_field: str | None = None


# ============================================================
# ELEMENTS
# ============================================================

# Construction strategies
CONSTRUCTOR = "constructor"  # Type(**args)
BUILDER = "builder"  # builder = BuilderType(); ...; obj = builder.build()
FACTORY = "factory"  # Type.method()
VALUE = "value"  # a coerced literal
CONSTANT = "constant"  # Type.NAME
TEXT = "text"  # Type(coerced element text)
COPY = "copy"  # runtime.copy_value(source)
INCLUDE = "include"  # sub-builder call
ROOT = "root"  # caller-supplied root


@dataclass
class ResolvedElement:
    """One constructed object in the graph."""

    var: str
    type_name: str
    strategy: str
    pos: Pos
    order: int  # completion position in the document
    fx_id: str | None = None
    args: list[tuple[str, Value]] = field(default_factory=list)
    builder_type: str | None = None
    builder_var: str | None = None
    builder_assignments: list[Assignment] = field(default_factory=list)
    owner_type: str | None = None  # type declaring a factory or constant
    member: str | None = None  # factory method or constant name
    value: Value | None = None  # VALUE, TEXT and COPY sources
    include: IncludeInfo | None = None
    assignments: list[Assignment] = field(default_factory=list)
    deps: set[str] = field(default_factory=set)
    set_id_property: bool = False
    inject_field: str | None = None
    attached: bool = True

    def label(self) -> str:
        """Name used in diagnostics."""
        if self.fx_id is not None:
            return self.fx_id
        return self.var


# ============================================================
# CONTROLLER
# ============================================================


@dataclass
class ControllerBinding:
    """A markup id or handler matched to a controller member."""

    pos: Pos
    kind: str  # "field" | "method"
    name: str  # fx:id or handler reference as written
    member: str


@dataclass
class ControllerInfo:
    type_name: str
    has_initialize: bool = False
    bindings: list[ControllerBinding] = field(default_factory=list)


# ============================================================
# DOCUMENT
# ============================================================


@dataclass
class ResolvedDocument:
    """Everything the backend needs to emit one builder."""

    path: str
    module_name: str
    class_name: str
    root_var: str
    root_type: str
    elements: dict[str, ResolvedElement] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)  # construction order
    registry: dict[str, str] = field(default_factory=dict)  # fx:id -> var
    bindings: list[BindingInfo] = field(default_factory=list)
    controller: ControllerInfo | None = None
    exports: list[str] = field(default_factory=list)
    modules: set[str] = field(default_factory=set)  # modules generated code imports
    module_of: dict[str, str] = field(default_factory=dict)  # type name -> module
