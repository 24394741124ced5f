"""Semantic resolution: Document -> ResolvedDocument.

Runs in two passes over the tree. The first registers every fx:id so that
references resolve regardless of document position. The second resolves
types, picks a construction strategy per element, classifies attributes
and children into assignments, and collects dependency edges. The
dependency graph is then ordered and checked for cycles.

Errors are collected, not raised: a failure in one element skips that
element's subtree and resolution carries on with its siblings.
"""

from __future__ import annotations

import posixpath
import re
from typing import Callable

from ..backend.util import to_snake
from ..diagnostics import (
    CYCLIC_DEPENDENCY,
    DUPLICATE_ID,
    INCLUDE_FAILED,
    INVALID_DEFAULT_PROPERTY,
    INVALID_VALUE,
    NO_CONSTRUCTOR,
    TYPE_MISMATCH,
    UNKNOWN_ATTRIBUTE,
    UNKNOWN_PROPERTY,
    UNKNOWN_REFERENCE,
    UNKNOWN_TYPE,
    Diagnostics,
    MalformedExpression,
)
from ..frontend.ast import (
    Attribute,
    Binary,
    Binding,
    Call,
    Const,
    Constant,
    Copy,
    Define,
    Document,
    Expr,
    Factory,
    Include,
    Index,
    Instance,
    ListLit,
    Location,
    MapLit,
    MethodRef,
    Node,
    Path,
    PropertyElement,
    Ref,
    Reference,
    Resource,
    Root,
    StaticPropertyElement,
    Text,
    Unary,
    Value,
    walk,
)
from ..frontend.expression import CONTROLLER, parse_handler
from ..ir import (
    APPEND,
    BUILDER,
    CONSTANT,
    CONSTRUCTOR,
    CONTROLLER_NODE,
    COPY,
    EXTEND,
    FACTORY,
    HANDLER,
    INCLUDE,
    LIST_LISTENER,
    LISTENER,
    PUT,
    ROOT,
    SET,
    STATIC,
    TEXT,
    VALUE,
    Assignment,
    BindingInfo,
    ConstantValue,
    ControllerBinding,
    ControllerInfo,
    ElementValue,
    EnumValue,
    ExprValue,
    IncludeInfo,
    ListValue,
    LocationValue,
    MethodHandler,
    ParsedValue,
    RefHandler,
    ResolvedDocument,
    ResolvedElement,
    ResourceValue,
)
from ..ir import Value as ResolvedValue
from ..oracle import AmbiguousType, PropertyInfo, TypeDescriptor, TypeOracle, list_item_type, map_types
from .coerce import CoercionError, coerce_literal, is_coercible
from .controller import BindingError, ControllerModel
from .graph import DependencyGraph
from .names import Namer, Registry, RegistryEntry

SNAKE_CHANGE = re.compile(r"^on_(\w+)_change$")
CAMEL_CHANGE = re.compile(r"^on([A-Z]\w*)Change$")
HANDLER_NAME = re.compile(r"^on(_[a-z]|[A-Z])")

COMPARISONS = {"==", "!=", "<", "<=", ">", ">=", "&&", "||"}

# Element kinds that produce a value where they appear
VALUE_NODES = (Instance, Constant, Reference, Copy, Include)


class IncludeTarget:
    """What the parent needs to know about a resolved sub-document."""

    def __init__(
        self,
        path: str,
        module: str,
        class_name: str,
        root_type: str,
        controller_type: str | None = None,
        exports: list[str] | None = None,
    ):
        self.path: str = path
        self.module: str = module
        self.class_name: str = class_name
        self.root_type: str = root_type
        self.controller_type: str | None = controller_type
        self.exports: list[str] = exports if exports is not None else []


class IncludeError(Exception):
    """An include could not be resolved; kind is the diagnostic kind."""

    def __init__(self, kind: str, msg: str):
        self.kind: str = kind
        self.msg: str = msg
        super().__init__(msg)


IncludeResolver = Callable[[str], IncludeTarget]


class ElementContext:
    """Working state while one element is resolved."""

    def __init__(self, el: ResolvedElement, d: TypeDescriptor):
        self.el: ResolvedElement = el
        self.d: TypeDescriptor = d
        self.assignments: list[Assignment] = []
        self.handlers: list[Assignment] = []
        # Values that only a constructor or builder can take
        self.pending: dict[str, tuple[ResolvedValue, Attribute | None]] = {}
        self.text: Expr | None = None


class Resolver:
    """Resolves one parsed document against a type oracle."""

    def __init__(
        self,
        doc: Document,
        oracle: TypeOracle,
        diags: Diagnostics,
        module_name: str,
        class_name: str,
        resources: dict[str, str] | None = None,
        include_resolver: IncludeResolver | None = None,
        reserved: set[str] | None = None,
    ):
        self.doc: Document = doc
        self.oracle: TypeOracle = oracle
        self.diags: Diagnostics = diags
        self.module_name: str = module_name
        self.class_name: str = class_name
        self.resources: dict[str, str] | None = resources
        self.include_resolver: IncludeResolver | None = include_resolver
        self.namer: Namer = Namer(self._reserved_names(reserved))
        self.registry: Registry = Registry()
        self.vars: dict[int, str] = {}
        self.types: dict[int, str | None] = {}
        self.includes: dict[int, IncludeTarget | None] = {}
        self.exported: dict[str, Include] = {}
        self.elements: dict[str, ResolvedElement] = {}
        self.bindings: list[BindingInfo] = []
        self.controller: ControllerModel | None = None
        self.controller_bindings: list[ControllerBinding] = []

    def _reserved_names(self, extra: set[str] | None) -> set[str]:
        """Top-level names generated code refers to: imported package roots."""
        names: set[str] = set(extra) if extra is not None else set()
        for imp in self.doc.imports:
            names.add(imp.name.split(".", 1)[0])
        for node in walk(self.doc.root):
            tag = getattr(node, "tag", "")
            if "." in tag:
                names.add(tag.split(".", 1)[0])
        if self.doc.controller is not None:
            names.add(self.doc.controller.split(".", 1)[0])
        return names

    # ============================================================
    # ENTRY
    # ============================================================

    def resolve(self) -> ResolvedDocument | None:
        self.register_ids()
        self.resolve_controller()
        root = self.resolve_node(self.doc.root)
        if root is None:
            return None
        self.inject_controller_fields()
        self.check_exports()
        order = self.order_elements()
        resolved = ResolvedDocument(
            self.doc.path,
            self.module_name,
            self.class_name,
            root.var,
            root.type_name,
        )
        resolved.elements = self.elements
        resolved.order = order
        for fx_id in self.registry.ids():
            entry = self.registry.get(fx_id)
            if entry is not None and entry.var in self.elements:
                resolved.registry[fx_id] = entry.var
        resolved.bindings = sorted(self.bindings, key=lambda b: (b.pos.line, b.pos.col))
        if self.controller is not None:
            resolved.controller = ControllerInfo(
                self.controller.type_name,
                self.controller.has_initialize(),
                self.controller_bindings,
            )
        resolved.exports = list(self.doc.exports)
        self.collect_modules(resolved)
        return resolved

    # ============================================================
    # PASS 1: IDS
    # ============================================================

    def register_ids(self) -> None:
        for node in walk(self.doc.root):
            fx_id = getattr(node, "fx_id", None)
            if fx_id is None or isinstance(node, Reference):
                continue
            if fx_id == CONTROLLER:
                self.error(DUPLICATE_ID, "fx:id '" + fx_id + "' is reserved for the controller", node)
                continue
            first = self.registry.get(fx_id)
            if first is not None:
                self.error(
                    DUPLICATE_ID,
                    "duplicate fx:id '"
                    + fx_id
                    + "' (first declared at line "
                    + str(first.pos.line)
                    + ", col "
                    + str(first.pos.col)
                    + ")",
                    node,
                )
                continue
            var = fx_id if self.namer.claim(fx_id) else self.namer.fresh(fx_id)
            self.vars[id(node)] = var
            self.registry.add(RegistryEntry(fx_id, node, var))

    def var_for(self, node: Node, hint: str) -> str:
        key = id(node)
        if key not in self.vars:
            self.vars[key] = self.namer.fresh(hint)
        return self.vars[key]

    # ============================================================
    # TYPES
    # ============================================================

    def resolve_tag(self, tag: str, node: Node) -> str | None:
        try:
            name = self.oracle.resolve_type(tag, self.doc.imports)
        except AmbiguousType as e:
            self.error(UNKNOWN_TYPE, "ambiguous type '" + tag + "': " + ", ".join(e.candidates), node)
            return None
        if name is None or self.oracle.describe(name) is None:
            self.error(UNKNOWN_TYPE, "unknown type '" + tag + "'", node)
            return None
        return name

    def type_of(self, node: Node) -> str | None:
        """Static type of the value a node produces. Errors are reported once."""
        key = id(node)
        if key in self.types:
            return self.types[key]
        self.types[key] = None
        result = self._compute_type(node)
        self.types[key] = result
        return result

    def _compute_type(self, node: Node) -> str | None:
        if isinstance(node, Factory):
            owner = self.resolve_tag(node.tag, node)
            if owner is None:
                return None
            d = self.oracle.describe(owner)
            if node.method not in d.factories:
                self.error(NO_CONSTRUCTOR, owner + " has no factory method '" + node.method + "'", node)
                return None
            produced = d.factories[node.method]
            if produced != "object" and self.oracle.describe(produced) is not None:
                return produced
            return owner
        if isinstance(node, Instance):
            return self.resolve_tag(node.tag, node)
        if isinstance(node, Constant):
            owner = self.resolve_tag(node.tag, node)
            if owner is None:
                return None
            d = self.oracle.describe(owner)
            if node.name in d.constants:
                return d.constants[node.name]
            if node.name in d.enum_members:
                return owner
            self.error(UNKNOWN_REFERENCE, owner + " has no constant '" + node.name + "'", node)
            return None
        if isinstance(node, (Reference, Copy)):
            entry = self.registry.get(node.source)
            if entry is None:
                return None
            return self.type_of(entry.node)
        if isinstance(node, Include):
            target = self.include_target(node)
            if target is None:
                return None
            return target.root_type
        return None

    def note_type(self, type_name: str | None, modules: set[str], module_of: dict[str, str]) -> None:
        if type_name is None:
            return
        item = list_item_type(type_name)
        if item is not None:
            self.note_type(item, modules, module_of)
            return
        if map_types(type_name) is not None:
            return
        d = self.oracle.describe(type_name)
        if d is None or d.module == "builtins":
            return
        modules.add(d.module)
        module_of[type_name] = d.module

    # ============================================================
    # CONTROLLER
    # ============================================================

    def resolve_controller(self) -> None:
        if self.doc.controller is None:
            return
        try:
            name = self.oracle.resolve_type(self.doc.controller, self.doc.imports)
        except AmbiguousType as e:
            self.error_at(
                UNKNOWN_TYPE,
                "ambiguous controller type '" + self.doc.controller + "': " + ", ".join(e.candidates),
                self.doc.controller_pos,
            )
            return
        d = self.oracle.describe(name) if name is not None else None
        if d is None:
            self.error_at(UNKNOWN_TYPE, "unknown controller type '" + self.doc.controller + "'", self.doc.controller_pos)
            return
        self.controller = ControllerModel(d, self.oracle)

    def inject_controller_fields(self) -> None:
        if self.controller is None:
            return
        for fx_id in self.registry.ids():
            entry = self.registry.get(fx_id)
            el = self.elements.get(entry.var)
            if el is None:
                continue
            field_type = self.controller.field_type(fx_id)
            if field_type is None:
                continue
            if not self.oracle.is_assignable(field_type, el.type_name):
                self.warning(
                    TYPE_MISMATCH,
                    "controller field '"
                    + fx_id
                    + "' of "
                    + self.controller.type_name
                    + " is "
                    + field_type
                    + " and cannot hold "
                    + el.type_name,
                    entry.node,
                )
                continue
            el.inject_field = fx_id
            el.deps.add(CONTROLLER_NODE)
            self.controller_bindings.append(ControllerBinding(entry.pos, "field", fx_id, fx_id))

    # ============================================================
    # PASS 2: ELEMENTS
    # ============================================================

    def resolve_node(self, node: Node) -> ResolvedElement | None:
        if isinstance(node, Instance):
            return self.resolve_instance(node)
        if isinstance(node, Constant):
            return self.resolve_constant(node)
        if isinstance(node, Copy):
            return self.resolve_copy(node)
        if isinstance(node, Include):
            return self.resolve_include(node)
        return None

    def child_value(self, node: Node) -> tuple[ResolvedValue | None, str | None]:
        """The value a child element contributes, with its static type."""
        if isinstance(node, Reference):
            entry = self.registry.get(node.source)
            if entry is None:
                self.error(UNKNOWN_REFERENCE, "unknown id '" + node.source + "'", node)
                return None, None
            return ElementValue(node.pos, entry.var), self.type_of(entry.node)
        el = self.resolve_node(node)
        if el is None:
            return None, None
        return ElementValue(node.pos, el.var), el.type_name

    def new_element(self, node: Node, type_name: str, strategy: str, hint: str) -> ResolvedElement:
        var = self.var_for(node, hint)
        el = ResolvedElement(var, type_name, strategy, node.pos, node.order, getattr(node, "fx_id", None))
        self.elements[var] = el
        return el

    def resolve_instance(self, node: Instance) -> ResolvedElement | None:
        type_name = self.type_of(node)
        if type_name is None:
            return None
        d = self.oracle.describe(type_name)
        el = self.new_element(node, type_name, CONSTRUCTOR, to_snake(node.tag.rsplit(".", 1)[-1]))
        ctx = ElementContext(el, d)
        for attr in node.attributes:
            self.resolve_attribute(ctx, attr)
        self.resolve_content(ctx, node)
        if not self.choose_strategy(ctx, node):
            del self.elements[el.var]
            return None
        el.assignments = ctx.assignments + ctx.handlers
        id_prop = d.property("id")
        if (
            el.fx_id is not None
            and el.strategy not in (VALUE, CONSTANT)
            and id_prop is not None
            and id_prop.settable
            and id_prop.type in ("str", "object")
        ):
            el.set_id_property = True
        self.collect_deps(el)
        return el

    def resolve_constant(self, node: Constant) -> ResolvedElement | None:
        type_name = self.type_of(node)
        if type_name is None:
            return None
        el = self.new_element(node, type_name, CONSTANT, node.name.lower())
        el.owner_type = self.oracle.resolve_type(node.tag, self.doc.imports)
        el.member = node.name
        return el

    def resolve_copy(self, node: Copy) -> ResolvedElement | None:
        entry = self.registry.get(node.source)
        if entry is None:
            self.error(UNKNOWN_REFERENCE, "unknown id '" + node.source + "'", node)
            return None
        type_name = self.type_of(node)
        if type_name is None:
            return None
        d = self.oracle.describe(type_name)
        if d is not None and not d.copyable:
            self.error(NO_CONSTRUCTOR, type_name + " cannot be copied", node)
            return None
        el = self.new_element(node, type_name, COPY, node.source + "_copy")
        el.value = ElementValue(node.pos, entry.var)
        el.deps.add(entry.var)
        return el

    # ============================================================
    # INCLUDES
    # ============================================================

    def include_path(self, source: str) -> str:
        if source.startswith("/"):
            return posixpath.normpath(source[1:])
        base = posixpath.dirname(self.doc.path)
        return posixpath.normpath(posixpath.join(base, source))

    def include_target(self, node: Include) -> IncludeTarget | None:
        key = id(node)
        if key in self.includes:
            return self.includes[key]
        target = None
        if self.include_resolver is None:
            self.error(INCLUDE_FAILED, "cannot include '" + node.source + "': no include loader configured", node)
        else:
            try:
                target = self.include_resolver(self.include_path(node.source))
            except IncludeError as e:
                self.error(e.kind, e.msg, node)
        self.includes[key] = target
        return target

    def check_merged_exports(self, node: Include, target: IncludeTarget) -> None:
        """Exported ids land unprefixed in this namespace and must not collide."""
        for fx_id in target.exports:
            first: Node | None = None
            entry = self.registry.get(fx_id)
            if entry is not None:
                first = entry.node
            elif self.exported.get(fx_id, node) is not node:
                first = self.exported[fx_id]
            if first is None:
                self.exported[fx_id] = node
                continue
            self.error(
                DUPLICATE_ID,
                "duplicate fx:id '"
                + fx_id
                + "' exported by "
                + target.path
                + " (first declared at line "
                + str(first.pos.line)
                + ", col "
                + str(first.pos.col)
                + ")",
                node,
            )

    def resolve_include(self, node: Include) -> ResolvedElement | None:
        target = self.include_target(node)
        if target is None:
            return None
        self.check_merged_exports(node, target)
        stem = posixpath.splitext(posixpath.basename(target.path))[0]
        el = self.new_element(node, target.root_type, INCLUDE, stem)
        builder_var = el.var + "_builder"
        if not self.namer.claim(builder_var):
            builder_var = self.namer.fresh(builder_var)
        prefix = node.fx_id if node.fx_id is not None else el.var
        info = IncludeInfo(target.path, target.module, target.class_name, prefix, builder_var)
        if node.fx_id is not None and self.controller is not None and target.controller_type is not None:
            field = node.fx_id + "_controller"
            field_type = self.controller.field_type(field)
            if field_type is not None:
                if self.oracle.is_assignable(field_type, target.controller_type):
                    info.controller_field = field
                    el.deps.add(CONTROLLER_NODE)
                    self.controller_bindings.append(ControllerBinding(node.pos, "field", field, field))
                else:
                    self.warning(
                        TYPE_MISMATCH,
                        "controller field '" + field + "' cannot hold " + target.controller_type,
                        node,
                    )
        el.include = info
        return el

    # ============================================================
    # ATTRIBUTES
    # ============================================================

    def resolve_attribute(self, ctx: ElementContext, attr: Attribute) -> None:
        if attr.value is None:
            return
        if attr.owner is not None:
            self.resolve_static(ctx, attr.owner, attr.name, attr.value, attr)
            return
        d = ctx.d
        prop = d.property(attr.name)
        if prop is not None:
            self.assign_property(ctx, prop, attr.value, attr)
            return
        if HANDLER_NAME.match(attr.name) and self.resolve_handler(ctx, attr):
            return
        param = self.constructor_param_type(d, attr.name)
        if param is not None:
            if isinstance(attr.value, Binding):
                self.error(INVALID_VALUE, "constructor argument '" + attr.name + "' cannot be bound", attr)
                return
            value = self.resolve_value(attr.value, param, attr)
            if value is not None:
                ctx.pending[attr.name] = (value, attr)
            return
        if d.collection == "map":
            value = self.resolve_value(attr.value, d.item_type, attr)
            if value is not None:
                ctx.assignments.append(Assignment(attr.pos, PUT, "", value, key=attr.name))
            return
        self.error(UNKNOWN_ATTRIBUTE, d.name + " has no property '" + attr.name + "'", attr)

    def constructor_param_type(self, d: TypeDescriptor, name: str) -> str | None:
        for ctor in d.constructors:
            param = ctor.param(name)
            if param is not None:
                return param.type
        return None

    def assign_property(self, ctx: ElementContext, prop: PropertyInfo, expr: Expr, where) -> None:
        d = ctx.d
        if isinstance(expr, Binding):
            if prop.kind != "value":
                self.error(INVALID_VALUE, prop.kind + " property '" + prop.name + "' cannot be bound", where)
                return
            if not prop.observable:
                self.error(
                    INVALID_VALUE,
                    "property '" + prop.name + "' of " + d.name + " is not observable and cannot be bound",
                    where,
                )
                return
            if not self.check_refs(expr.expr):
                return
            self.check_static_type(prop.type, expr.expr, where)
            self.bindings.append(BindingInfo(where.pos, ctx.el.var, prop.name, expr.expr))
            return
        item = list_item_type(prop.type)
        if prop.kind == "list" or (item is not None and not prop.settable):
            if isinstance(expr, Text):
                value = self.resolve_value(expr, "list[" + (item or "object") + "]", where)
            else:
                value = self.resolve_value(expr, prop.type if item is not None else "object", where)
            if value is not None:
                ctx.assignments.append(Assignment(where.pos, EXTEND, prop.name, value))
            return
        if prop.kind == "map":
            self.error(INVALID_VALUE, "map property '" + prop.name + "' takes entries from a property element", where)
            return
        value = self.resolve_value(expr, prop.type, where)
        if value is not None:
            self.store(ctx, prop, value, where)

    def store(self, ctx: ElementContext, prop: PropertyInfo, value: ResolvedValue, where) -> None:
        if prop.settable:
            ctx.assignments.append(Assignment(where.pos, SET, prop.name, value))
        else:
            ctx.pending[prop.name] = (value, where if isinstance(where, Attribute) else None)

    def resolve_static(self, ctx: ElementContext, owner_tag: str, name: str, expr: Expr, where) -> None:
        owner = self.resolve_tag(owner_tag, where)
        if owner is None:
            return
        od = self.oracle.describe(owner)
        if name not in od.static_properties:
            self.error(UNKNOWN_ATTRIBUTE, owner + " has no static property '" + name + "'", where)
            return
        value = self.resolve_value(expr, od.static_properties[name], where)
        if value is not None:
            ctx.assignments.append(Assignment(where.pos, STATIC, name, value, owner=owner))

    def resolve_handler(self, ctx: ElementContext, attr: Attribute) -> bool:
        """Event handler or change listener. False when the name is neither."""
        d = ctx.d
        slot = to_snake(attr.name)
        if slot in d.events:
            value = self.handler_value(attr, d.events[slot], None)
            if value is not None:
                ctx.handlers.append(Assignment(attr.pos, HANDLER, slot, value))
            return True
        prop_name = self.changed_property(d, attr.name)
        if prop_name is None:
            return False
        prop = d.property(prop_name)
        if prop.kind == "list":
            kind = LIST_LISTENER
        elif prop.observable:
            kind = LISTENER
        else:
            self.error(INVALID_VALUE, "property '" + prop.name + "' of " + d.name + " is not observable", attr)
            return True
        value = self.handler_value(attr, "", kind == LIST_LISTENER)
        if value is not None:
            ctx.handlers.append(Assignment(attr.pos, kind, prop.name, value))
        return True

    def changed_property(self, d: TypeDescriptor, name: str) -> str | None:
        m = SNAKE_CHANGE.match(name)
        if m is not None and d.property(m.group(1)) is not None:
            return m.group(1)
        m = CAMEL_CHANGE.match(name)
        if m is not None:
            camel = m.group(1)[0].lower() + m.group(1)[1:]
            for candidate in (camel, to_snake(camel)):
                if d.property(candidate) is not None:
                    return candidate
        return None

    def handler_value(self, attr: Attribute, event_type: str, list_change: bool | None) -> ResolvedValue | None:
        try:
            expr = parse_handler(attr.raw, attr.value_pos)
        except MalformedExpression as e:
            self.diags.add_exception(e)
            return None
        if expr is None:
            return None
        if isinstance(expr, MethodRef):
            if self.controller is None:
                self.error_at(UNKNOWN_REFERENCE, "handler '#" + expr.name + "' needs a controller", expr.pos)
                return None
            try:
                if list_change is None:
                    arity = self.controller.handler(expr.name, event_type)
                else:
                    arity = self.controller.listener(expr.name, list_change)
            except BindingError as e:
                self.error_at(e.kind, e.msg, expr.pos)
                return None
            self.controller_bindings.append(ControllerBinding(expr.pos, "method", "#" + expr.name, expr.name))
            return MethodHandler(expr.pos, expr.name, arity)
        value = self.expression_value(expr, "object", attr)
        if value is None:
            return None
        return RefHandler(expr.pos, value)

    # ============================================================
    # CHILDREN
    # ============================================================

    def resolve_content(self, ctx: ElementContext, node: Instance) -> None:
        d = ctx.d
        unwrapped = [c for c in node.children if isinstance(c, VALUE_NODES)]
        target = self.content_target(ctx, node, unwrapped)
        for child in node.children:
            if isinstance(child, PropertyElement):
                self.resolve_property_element(ctx, child)
            elif isinstance(child, StaticPropertyElement):
                self.resolve_static_element(ctx, child)
            elif isinstance(child, Define):
                self.resolve_define(child)
            elif isinstance(child, VALUE_NODES):
                value, vtype = self.child_value(child)
                if value is None or target is None:
                    continue
                if target == "":
                    self.check_assignable(d.item_type, vtype, child)
                    ctx.assignments.append(Assignment(child.pos, APPEND, "", value))
                    continue
                prop = d.property(target)
                item = list_item_type(prop.type)
                if prop.kind == "list" or item is not None:
                    self.check_assignable(item or "object", vtype, child)
                    ctx.assignments.append(Assignment(child.pos, APPEND, prop.name, value))
                else:
                    self.check_assignable(prop.type, vtype, child)
                    self.store(ctx, prop, value, child)
        if node.text is None or isinstance(node, (Value, Factory)):
            return
        if target == "":
            text = node.text
            if isinstance(text, Text):
                value = self.resolve_value(text, "list[" + d.item_type + "]", text)
                if value is not None:
                    ctx.assignments.append(Assignment(text.pos, EXTEND, "", value))
            else:
                value = self.resolve_value(text, d.item_type, text)
                if value is not None:
                    ctx.assignments.append(Assignment(text.pos, APPEND, "", value))
        elif target is not None:
            self.assign_property(ctx, d.property(target), node.text, node.text)
        elif d.default_property is None and d.collection is None:
            ctx.text = node.text

    def content_target(self, ctx: ElementContext, node: Instance, unwrapped: list[Node]) -> str | None:
        """Where un-wrapped children and text go: "" for the element itself,
        a property name, or None when nothing can take them."""
        d = ctx.d
        if not unwrapped and node.text is None:
            return None
        if d.collection == "list":
            return ""
        if d.default_property is None:
            if unwrapped:
                self.error(INVALID_DEFAULT_PROPERTY, d.name + " has no default property", unwrapped[0])
            return None
        prop = d.property(d.default_property)
        where = unwrapped[0] if unwrapped else node
        if prop is None:
            self.error(
                INVALID_DEFAULT_PROPERTY,
                "default property '" + d.default_property + "' of " + d.name + " does not exist",
                where,
            )
            return None
        if prop.kind == "map":
            self.error(INVALID_DEFAULT_PROPERTY, "default property '" + prop.name + "' of " + d.name + " is a map", where)
            return None
        if prop.kind == "value" and list_item_type(prop.type) is None:
            count = len(unwrapped) + (1 if unwrapped and node.text is not None else 0)
            if count > 1:
                self.error(
                    INVALID_DEFAULT_PROPERTY,
                    "default property '"
                    + prop.name
                    + "' of "
                    + d.name
                    + " holds a single value but "
                    + str(count)
                    + " were given",
                    unwrapped[1] if len(unwrapped) > 1 else node,
                )
                return None
        return prop.name

    def resolve_property_element(self, ctx: ElementContext, pe: PropertyElement) -> None:
        d = ctx.d
        prop = d.property(pe.name)
        if prop is None:
            self.error(UNKNOWN_PROPERTY, d.name + " has no property '" + pe.name + "'", pe)
            return
        elements: list[Node] = []
        for child in pe.children:
            if isinstance(child, (PropertyElement, StaticPropertyElement)):
                self.error(INVALID_VALUE, "property elements cannot be nested inside <" + pe.name + ">", child)
            elif isinstance(child, Define):
                self.resolve_define(child)
            else:
                elements.append(child)
        entry_types = map_types(prop.type)
        if prop.kind == "map" or entry_types is not None:
            value_type = entry_types[1] if entry_types is not None else "object"
            for attr in pe.attributes:
                if attr.value is None:
                    continue
                value = self.resolve_value(attr.value, value_type, attr)
                if value is not None:
                    ctx.assignments.append(Assignment(attr.pos, PUT, prop.name, value, key=attr.name))
            if elements or pe.text is not None:
                self.error(INVALID_VALUE, "map property '" + prop.name + "' takes attributes only", pe)
            return
        for attr in pe.attributes:
            self.error(UNKNOWN_ATTRIBUTE, "property element <" + pe.name + "> takes no attributes", attr)
        item = list_item_type(prop.type)
        if prop.kind == "list" or item is not None:
            for child in elements:
                value, vtype = self.child_value(child)
                if value is None:
                    continue
                self.check_assignable(item or "object", vtype, child)
                ctx.assignments.append(Assignment(child.pos, APPEND, prop.name, value))
            if pe.text is not None:
                self.assign_property(ctx, prop, pe.text, pe.text)
            return
        if len(elements) > 1:
            self.error(
                INVALID_VALUE,
                "property '" + prop.name + "' takes a single value but " + str(len(elements)) + " were given",
                elements[1],
            )
            return
        if len(elements) == 1:
            value, vtype = self.child_value(elements[0])
            if value is None:
                return
            self.check_assignable(prop.type, vtype, elements[0])
            self.store(ctx, prop, value, elements[0])
            return
        text = pe.text if pe.text is not None else Text(pe.pos, "")
        self.assign_property(ctx, prop, text, pe)

    def resolve_static_element(self, ctx: ElementContext, se: StaticPropertyElement) -> None:
        elements = [c for c in se.children if isinstance(c, VALUE_NODES)]
        if len(elements) > 1:
            self.error(INVALID_VALUE, "static property '" + se.name + "' takes a single value", elements[1])
            return
        if len(elements) == 0:
            text = se.text if se.text is not None else Text(se.pos, "")
            self.resolve_static(ctx, se.owner, se.name, text, se)
            return
        owner = self.resolve_tag(se.owner, se)
        if owner is None:
            return
        od = self.oracle.describe(owner)
        if se.name not in od.static_properties:
            self.error(UNKNOWN_ATTRIBUTE, owner + " has no static property '" + se.name + "'", se)
            return
        value, vtype = self.child_value(elements[0])
        if value is None:
            return
        self.check_assignable(od.static_properties[se.name], vtype, elements[0])
        ctx.assignments.append(Assignment(se.pos, STATIC, se.name, value, owner=owner))

    def resolve_define(self, define: Define) -> None:
        for child in define.children:
            if isinstance(child, Reference):
                # Nothing is built; the source must still exist
                if child.source not in self.registry:
                    self.error(UNKNOWN_REFERENCE, "unknown id '" + child.source + "'", child)
                continue
            el = self.resolve_node(child)
            if el is not None:
                el.attached = False

    # ============================================================
    # CONSTRUCTION STRATEGY
    # ============================================================

    def choose_strategy(self, ctx: ElementContext, node: Instance) -> bool:
        el, d = ctx.el, ctx.d
        if isinstance(node, Root):
            el.strategy = ROOT
            return self.reject_pending(ctx, "the root object is supplied by the caller")
        if isinstance(node, Value):
            try:
                el.value = coerce_literal(node.value, el.type_name, self.oracle, node.pos)
            except CoercionError as e:
                self.error(INVALID_VALUE, e.msg, node)
                return False
            el.strategy = VALUE
            return self.reject_pending(ctx, "fx:value elements are not constructed")
        if isinstance(node, Factory):
            el.strategy = FACTORY
            el.owner_type = self.oracle.resolve_type(node.tag, self.doc.imports)
            el.member = node.method
            return self.reject_pending(ctx, "fx:factory elements are not constructed")
        if ctx.text is not None and not ctx.pending:
            return self.use_text_constructor(ctx, node)
        if not ctx.pending and d.noarg_constructor() is not None:
            el.strategy = CONSTRUCTOR
            return True
        if d.builder is not None:
            return self.use_builder(ctx, node)
        if self.use_named_constructor(ctx):
            return True
        if ctx.text is not None:
            return self.use_text_constructor(ctx, node)
        if ctx.pending:
            self.error(
                NO_CONSTRUCTOR,
                "no constructor of " + d.name + " accepts " + ", ".join(sorted(ctx.pending)),
                node,
            )
        else:
            self.error(NO_CONSTRUCTOR, d.name + " has no usable constructor", node)
        return False

    def reject_pending(self, ctx: ElementContext, reason: str) -> bool:
        for name, (_, where) in ctx.pending.items():
            self.error(UNKNOWN_ATTRIBUTE, "'" + name + "' cannot be set: " + reason, where or ctx.el)
        return True

    def use_text_constructor(self, ctx: ElementContext, node: Instance) -> bool:
        el, d = ctx.el, ctx.d
        ctors = d.single_arg_constructors()
        if not ctors:
            self.error(INVALID_DEFAULT_PROPERTY, d.name + " has no default property to take element text", node)
            return False
        param = ctors[0].params[0]
        value = self.resolve_value(ctx.text, param.type, ctx.text)
        if value is None:
            return False
        el.strategy = TEXT
        el.value = value
        return True

    def use_builder(self, ctx: ElementContext, node: Instance) -> bool:
        el, d = ctx.el, ctx.d
        bd = self.oracle.describe(d.builder)
        if bd is None:
            self.error(NO_CONSTRUCTOR, "builder type " + d.builder + " of " + d.name + " is unknown", node)
            return False
        ok = True
        for name, (value, where) in ctx.pending.items():
            prop = bd.property(name)
            if prop is None or not prop.settable:
                self.error(UNKNOWN_ATTRIBUTE, "builder " + bd.name + " has no property '" + name + "'", where or node)
                ok = False
                continue
            el.builder_assignments.append(Assignment(value.pos, SET, name, value))
        el.strategy = BUILDER
        el.builder_type = d.builder
        el.builder_var = el.var + "_builder"
        if not self.namer.claim(el.builder_var):
            el.builder_var = self.namer.fresh(el.builder_var)
        return ok

    def use_named_constructor(self, ctx: ElementContext) -> bool:
        """Pick the constructor whose parameters cover the pending values.

        Ranked by fewest parameters left to their defaults, then fewest
        setters still needed after construction.
        """
        el, d = ctx.el, ctx.d
        offered: dict[str, ResolvedValue] = {name: value for name, (value, _) in ctx.pending.items()}
        for a in ctx.assignments:
            if a.kind == SET and a.target not in offered:
                offered[a.target] = a.value
        best = None
        best_rank = None
        for ctor in d.constructors:
            names = {p.name for p in ctor.params}
            if not set(ctx.pending) <= names:
                continue
            if any(p.name not in offered for p in ctor.required()):
                continue
            covered = [p.name for p in ctor.params if p.name in offered]
            setters = len([a for a in ctx.assignments if a.kind == SET and a.target not in covered])
            rank = (len(ctor.params) - len(covered), setters)
            if best_rank is None or rank < best_rank:
                best, best_rank = ctor, rank
        if best is None:
            return False
        args = [(p.name, offered[p.name]) for p in best.params if p.name in offered]
        taken = {name for name, _ in args}
        ctx.assignments = [a for a in ctx.assignments if not (a.kind == SET and a.target in taken)]
        el.strategy = CONSTRUCTOR
        el.args = args
        return True

    # ============================================================
    # VALUES
    # ============================================================

    def resolve_value(self, expr: Expr, type_name: str, where) -> ResolvedValue | None:
        if isinstance(expr, Text):
            try:
                return coerce_literal(expr.text, type_name, self.oracle, expr.pos)
            except CoercionError as e:
                self.error(INVALID_VALUE, e.msg, where)
                return None
        if isinstance(expr, Location):
            if not self.oracle.is_assignable(type_name, "str"):
                self.warning(TYPE_MISMATCH, "location @" + expr.path + " assigned to " + type_name, where)
            return LocationValue(expr.pos, expr.path)
        if isinstance(expr, Resource):
            if self.resources is not None and expr.key not in self.resources:
                self.error(UNKNOWN_REFERENCE, "unknown resource key '" + expr.key + "'", where)
                return None
            coerce_to = None
            if type_name not in ("str", "object") and is_coercible(type_name, self.oracle):
                coerce_to = type_name
            return ResourceValue(expr.pos, expr.key, coerce_to)
        if isinstance(expr, Binding):
            self.error(INVALID_VALUE, "binding expression is not permitted here", where)
            return None
        if isinstance(expr, MethodRef):
            self.error(INVALID_VALUE, "method reference '#" + expr.name + "' is only allowed on handlers", where)
            return None
        return self.expression_value(expr, type_name, where)

    def expression_value(self, expr: Expr, type_name: str, where) -> ExprValue | None:
        if not self.check_refs(expr):
            return None
        coerce_to = None
        if self.static_type(expr) is None or not self.check_static_type(type_name, expr, where):
            if is_coercible(type_name, self.oracle):
                coerce_to = type_name
        return ExprValue(expr.pos, expr, coerce_to)

    def check_static_type(self, type_name: str, expr: Expr, where) -> bool:
        """Warn when an expression's known type cannot be stored in type_name."""
        static = self.static_type(expr)
        if static is None or self.oracle.is_assignable(type_name, static):
            return True
        self.warning(TYPE_MISMATCH, "expression of type " + static + " assigned to " + type_name, where)
        return False

    def check_assignable(self, target: str, source: str | None, where) -> None:
        if source is None or self.oracle.is_assignable(target, source):
            return
        self.warning(TYPE_MISMATCH, source + " is not assignable to " + target, where)

    def check_refs(self, expr: Expr) -> bool:
        ok = True
        for ref in refs_of(expr):
            if ref.name == CONTROLLER:
                continue
            if ref.name not in self.registry:
                self.error_at(UNKNOWN_REFERENCE, "unknown id '" + ref.name + "'", ref.pos)
                ok = False
        return ok

    def static_type(self, expr: Expr) -> str | None:
        if isinstance(expr, Const):
            if isinstance(expr.value, bool):
                return "bool"
            if isinstance(expr.value, int):
                return "int"
            if isinstance(expr.value, float):
                return "float"
            if isinstance(expr.value, str):
                return "str"
            return None
        if isinstance(expr, Ref):
            if expr.name == CONTROLLER:
                return self.controller.type_name if self.controller is not None else None
            entry = self.registry.get(expr.name)
            return self.type_of(entry.node) if entry is not None else None
        if isinstance(expr, Path):
            owner = self.static_type(expr.target)
            d = self.oracle.describe(owner) if owner is not None else None
            prop = d.property(expr.name) if d is not None else None
            return prop.type if prop is not None else None
        if isinstance(expr, ListLit):
            return "list[object]"
        if isinstance(expr, MapLit):
            return "dict[object, object]"
        if isinstance(expr, Unary) and expr.op == "!":
            return "bool"
        if isinstance(expr, Binary):
            if expr.op in COMPARISONS:
                return "bool"
            if expr.op == "+" and "str" in (self.static_type(expr.left), self.static_type(expr.right)):
                return "str"
        return None

    # ============================================================
    # DEPENDENCIES
    # ============================================================

    def collect_deps(self, el: ResolvedElement) -> None:
        values: list[ResolvedValue] = [v for _, v in el.args]
        if el.value is not None:
            values.append(el.value)
        values.extend(a.value for a in el.builder_assignments)
        values.extend(a.value for a in el.assignments)
        for value in values:
            el.deps.update(self.value_deps(value))

    def value_deps(self, value: ResolvedValue) -> set[str]:
        if isinstance(value, ElementValue):
            return {value.var}
        if isinstance(value, ListValue):
            deps: set[str] = set()
            for item in value.items:
                deps.update(self.value_deps(item))
            return deps
        if isinstance(value, ExprValue):
            deps = set()
            for ref in refs_of(value.expr):
                if ref.name == CONTROLLER:
                    deps.add(CONTROLLER_NODE)
                    continue
                entry = self.registry.get(ref.name)
                if entry is not None:
                    deps.add(entry.var)
            return deps
        if isinstance(value, MethodHandler):
            return {CONTROLLER_NODE}
        if isinstance(value, RefHandler):
            return self.value_deps(value.value)
        return set()

    def order_elements(self) -> list[str]:
        graph = DependencyGraph()
        if self.controller is not None:
            graph.add_node(CONTROLLER_NODE, 0)
        for var, el in self.elements.items():
            graph.add_node(var, el.order)
        for var, el in self.elements.items():
            for dep in el.deps:
                graph.add_edge(var, dep)
        order, cycles = graph.order()
        for cycle in cycles:
            members = [self.elements[v] for v in cycle.nodes if v in self.elements]
            labels = [m.label() for m in members]
            first = members[0]
            self.diags.add_error(
                CYCLIC_DEPENDENCY,
                "dependency cycle: " + " -> ".join(labels + [labels[0]]),
                first.pos.line,
                first.pos.col,
                labels,
            )
        return [v for v in order if v != CONTROLLER_NODE]

    def check_exports(self) -> None:
        for fx_id in self.doc.exports:
            if fx_id not in self.registry:
                self.error(UNKNOWN_REFERENCE, "exported id '" + fx_id + "' is not declared", self.doc.root)

    def collect_modules(self, resolved: ResolvedDocument) -> None:
        modules = resolved.modules
        module_of = resolved.module_of
        if self.controller is not None:
            self.note_type(self.controller.type_name, modules, module_of)
        for el in self.elements.values():
            if el.strategy in (CONSTRUCTOR, TEXT, ROOT):
                self.note_type(el.type_name, modules, module_of)
            self.note_type(el.owner_type, modules, module_of)
            self.note_type(el.builder_type, modules, module_of)
            if el.include is not None:
                modules.add(el.include.module)
            values: list[ResolvedValue] = [v for _, v in el.args]
            if el.value is not None:
                values.append(el.value)
            for a in el.builder_assignments + el.assignments:
                self.note_type(a.owner, modules, module_of)
                values.append(a.value)
            for value in values:
                for type_name in value_types(value):
                    self.note_type(type_name, modules, module_of)

    # ============================================================
    # REPORTING
    # ============================================================

    def error(self, kind: str, msg: str, where, related: list[str] | None = None) -> None:
        self.diags.add_error(kind, msg, where.pos.line, where.pos.col, related)

    def error_at(self, kind: str, msg: str, pos) -> None:
        if pos is None:
            pos = self.doc.root.pos
        self.diags.add_error(kind, msg, pos.line, pos.col)

    def warning(self, kind: str, msg: str, where) -> None:
        self.diags.add_warning(kind, msg, where.pos.line, where.pos.col)


def refs_of(expr: Expr) -> list[Ref]:
    """Every element or controller reference inside an expression."""
    if isinstance(expr, Ref):
        return [expr]
    if isinstance(expr, Path):
        return refs_of(expr.target)
    if isinstance(expr, Call):
        result = refs_of(expr.target)
        for arg in expr.args:
            result.extend(refs_of(arg))
        return result
    if isinstance(expr, Index):
        return refs_of(expr.target) + refs_of(expr.key)
    if isinstance(expr, ListLit):
        result = []
        for item in expr.items:
            result.extend(refs_of(item))
        return result
    if isinstance(expr, MapLit):
        result = []
        for key, value in expr.entries:
            result.extend(refs_of(key))
            result.extend(refs_of(value))
        return result
    if isinstance(expr, Unary):
        return refs_of(expr.operand)
    if isinstance(expr, Binary):
        return refs_of(expr.left) + refs_of(expr.right)
    if isinstance(expr, Binding):
        return refs_of(expr.expr)
    return []


def value_types(value: ResolvedValue) -> list[str]:
    """Type names generated code for a value refers to."""
    if isinstance(value, (EnumValue, ConstantValue, ParsedValue)):
        return [value.type_name]
    if isinstance(value, (ExprValue, ResourceValue)) and value.coerce_to is not None:
        return [value.coerce_to]
    if isinstance(value, ListValue):
        result: list[str] = []
        for item in value.items:
            result.extend(value_types(item))
        return result
    if isinstance(value, RefHandler):
        return value_types(value.value)
    return []


def resolve(
    doc: Document,
    oracle: TypeOracle,
    diags: Diagnostics,
    module_name: str,
    class_name: str,
    resources: dict[str, str] | None = None,
    include_resolver: IncludeResolver | None = None,
    reserved: set[str] | None = None,
) -> ResolvedDocument | None:
    """Resolve doc. Returns None when the root element could not be resolved."""
    resolver = Resolver(doc, oracle, diags, module_name, class_name, resources, include_resolver, reserved)
    return resolver.resolve()
