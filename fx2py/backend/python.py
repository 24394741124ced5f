"""Python backend: ResolvedDocument -> builder module source.

Each document becomes one module holding one runtime.Builder subclass.
Its build() method constructs elements in the resolved order, wires
bindings once every element exists, then runs the controller's
initialize() hook.

The backend trusts the resolver. A reference to an element that does not
exist or has not been constructed yet is a GenerationInvariantViolation,
never a user diagnostic.
"""

from __future__ import annotations

from ..diagnostics import GenerationInvariantViolation
from ..frontend.ast import (
    Binary,
    Call,
    Const,
    Expr,
    Index,
    ListLit,
    MapLit,
    Path,
    Pos,
    Ref,
    Unary,
)
from ..frontend.expression import CONTROLLER
from ..ir import (
    BUILDER,
    INCLUDE,
    Assignment,
    BindingInfo,
    ConstantValue,
    ElementValue,
    EnumValue,
    ExprValue,
    ListValue,
    LiteralValue,
    LocationValue,
    MethodHandler,
    ParsedValue,
    RefHandler,
    ResolvedDocument,
    ResolvedElement,
    ResourceValue,
    Value,
)
from ..oracle import PRIMITIVES, list_item_type, map_types
from .util import Emitter, escape_string, py_literal

# Runtime functions standing in for expression operators in bindings
_BINDING_OPS = {
    "+": "add",
    "-": "subtract",
    "*": "multiply",
    "/": "divide",
    "%": "modulo",
    "==": "equal",
    "!=": "not_equal",
    "<": "less",
    "<=": "less_equal",
    ">": "greater",
    ">=": "greater_equal",
    "&&": "both",
    "||": "either",
}


def _string_literal(value: str) -> str:
    return f'"{escape_string(value)}"'


def _binary_op(op: str) -> str:
    match op:
        case "&&":
            return "and"
        case "||":
            return "or"
        case _:
            return op


class PythonBackend:
    """Emit a builder module from a resolved document."""

    def __init__(self) -> None:
        self.out = Emitter()
        self.doc: ResolvedDocument | None = None
        self.constructed: set[str] = set()
        self.module_refs: dict[str, str] = {}

    def emit(self, doc: ResolvedDocument) -> str:
        self.out = Emitter()
        self.doc = doc
        self.constructed = set()
        self.module_refs = {}
        self._emit_module(doc)
        return self.out.output()

    def _line(self, text: str = "") -> None:
        self.out.line(text)

    def _invariant(self, msg: str, pos: Pos) -> GenerationInvariantViolation:
        return GenerationInvariantViolation(msg, pos.line, pos.col)

    # ============================================================
    # MODULE
    # ============================================================

    def _emit_module(self, doc: ResolvedDocument) -> None:
        self._line('"""Generated from ' + escape_string(doc.path) + '. Do not edit."""')
        self._line()
        self._line("from fx2py import runtime")
        imports = self._imports(doc)
        if imports:
            self._line()
            for line in imports:
                self._line(line)
        self._line()
        self._line()
        self._line(f"class {doc.class_name}(runtime.Builder):")
        self.out.indent += 1
        controller_type = "None"
        if doc.controller is not None:
            controller_type = self._type_ref(doc.controller.type_name, doc.elements[doc.root_var].pos)
        self._line(f"CONTROLLER_TYPE = {controller_type}")
        self._line(f"EXPORTS = {self._tuple(doc.exports)}")
        self._line(f"LOCATION = {_string_literal(doc.path)}")
        self._line()
        self._emit_build(doc)
        self.out.indent -= 1

    def _imports(self, doc: ResolvedDocument) -> list[str]:
        """Import lines, aliasing any module whose root name a variable shadows."""
        local_names: set[str] = set()
        for el in doc.elements.values():
            local_names.add(el.var)
            if el.builder_var is not None:
                local_names.add(el.builder_var)
            if el.include is not None:
                local_names.add(el.include.builder_var)
        lines: list[str] = []
        for module in sorted(doc.modules):
            if module.split(".", 1)[0] in local_names:
                alias = "_" + module.replace(".", "_")
                self.module_refs[module] = alias
                lines.append(f"import {module} as {alias}")
            else:
                self.module_refs[module] = module
                lines.append(f"import {module}")
        return lines

    def _tuple(self, items: list[str]) -> str:
        if len(items) == 1:
            return "(" + _string_literal(items[0]) + ",)"
        return "(" + ", ".join(_string_literal(i) for i in items) + ")"

    def _type_ref(self, type_name: str, pos: Pos) -> str:
        """Source text naming a type in generated code."""
        if type_name in PRIMITIVES:
            return type_name
        if list_item_type(type_name) is not None:
            return "list"
        if map_types(type_name) is not None:
            return "dict"
        module = self.doc.module_of.get(type_name)
        if module is None or module not in self.module_refs:
            raise self._invariant("type " + type_name + " has no imported module", pos)
        return self.module_refs[module] + "." + type_name[len(module) + 1 :]

    # ============================================================
    # BUILD METHOD
    # ============================================================

    def _emit_build(self, doc: ResolvedDocument) -> None:
        self._line("def build(self, controller=None, root=None, resources=None, controller_factory=None):")
        self.out.indent += 1
        self._line("self.resources = resources")
        self._line("controller = self.select_controller(controller, controller_factory)")
        for var in doc.order:
            el = doc.elements.get(var)
            if el is None:
                raise self._invariant("construction order names unknown element " + var, Pos(1, 1))
            self._emit_element(el)
        for binding in doc.bindings:
            self._emit_binding(binding)
        if doc.root_var not in self.constructed:
            raise self._invariant("root element " + doc.root_var + " was never constructed", Pos(1, 1))
        self._line(f"self.root = {doc.root_var}")
        if doc.controller is not None and doc.controller.has_initialize:
            self._line("controller.initialize()")
        self._line(f"return {doc.root_var}")
        self.out.indent -= 1

    def _emit_element(self, el: ResolvedElement) -> None:
        var = el.var
        if el.strategy == BUILDER:
            self._line(f"{el.builder_var} = {self._type_ref(el.builder_type, el.pos)}()")
            for a in el.builder_assignments:
                self._line(f"{el.builder_var}.{a.target} = {self._value(a.value)}")
            self._line(f"{var} = {el.builder_var}.build()")
        elif el.strategy == INCLUDE:
            info = el.include
            module = self.module_refs.get(info.module)
            if module is None:
                raise self._invariant("included module " + info.module + " is not imported", el.pos)
            self._line(f"{info.builder_var} = {module}.{info.class_name}()")
            self._line(
                f"{var} = {info.builder_var}.build(resources=resources, controller_factory=controller_factory)"
            )
            self._line(f"self.merge({info.builder_var}, {_string_literal(info.prefix)})")
        else:
            self._line(f"{var} = {self._construct(el)}")
        self.constructed.add(var)
        if el.set_id_property:
            self._line(f"{var}.id = {_string_literal(el.fx_id)}")
        if el.fx_id is not None:
            self._line(f"self.namespace[{_string_literal(el.fx_id)}] = {var}")
        if el.inject_field is not None:
            self._line(f"controller.{el.inject_field} = {var}")
        if el.include is not None and el.include.controller_field is not None:
            self._line(f"controller.{el.include.controller_field} = {el.include.builder_var}.controller")
        for a in el.assignments:
            self._emit_assignment(var, a)

    def _construct(self, el: ResolvedElement) -> str:
        match el.strategy:
            case "constructor":
                args = ", ".join(f"{name}={self._value(v)}" for name, v in el.args)
                return f"{self._type_ref(el.type_name, el.pos)}({args})"
            case "text":
                return f"{self._type_ref(el.type_name, el.pos)}({self._value(el.value)})"
            case "factory":
                return f"{self._type_ref(el.owner_type, el.pos)}.{el.member}()"
            case "constant":
                return f"{self._type_ref(el.owner_type, el.pos)}.{el.member}"
            case "value":
                return self._value(el.value)
            case "copy":
                return f"runtime.copy_value({self._value(el.value)})"
            case "root":
                return f"runtime.require_root(root, {self._type_ref(el.type_name, el.pos)})"
        raise self._invariant("no construction for strategy " + el.strategy, el.pos)

    def _emit_assignment(self, var: str, a: Assignment) -> None:
        target = var if a.target == "" else f"{var}.{a.target}"
        match a.kind:
            case "set":
                self._line(f"{target} = {self._value(a.value)}")
            case "append":
                self._line(f"{target}.append({self._value(a.value)})")
            case "extend":
                self._line(f"{target}.extend({self._value(a.value)})")
            case "put":
                self._line(f"{target}[{_string_literal(a.key)}] = {self._value(a.value)}")
            case "static":
                owner = self._type_ref(a.owner, a.pos)
                self._line(f"{owner}.set_{a.target}({var}, {self._value(a.value)})")
            case "handler":
                self._line(f"{target} = {self._handler(a.value, 'runtime.ignore_event')}")
            case "listener":
                prop = _string_literal(a.target)
                handler = self._handler(a.value, "runtime.ignore_change")
                self._line(f"runtime.property_of({var}, {prop}).add_listener({handler})")
            case "list_listener":
                self._line(f"{target}.add_listener({self._handler(a.value, 'runtime.ignore_change')})")
            case _:
                raise self._invariant("unknown assignment kind " + a.kind, a.pos)

    def _handler(self, value: Value, adapter: str) -> str:
        if isinstance(value, MethodHandler):
            if value.arity == 0:
                return f"{adapter}(controller.{value.method})"
            return f"controller.{value.method}"
        if isinstance(value, RefHandler):
            return f"runtime.as_handler({self._value(value.value)})"
        raise self._invariant("handler value expected", value.pos)

    def _emit_binding(self, binding: BindingInfo) -> None:
        if binding.var not in self.constructed:
            raise self._invariant("binding target " + binding.var + " was never constructed", binding.pos)
        source = self._observable(binding.expr)
        if isinstance(binding.expr, (Const, Ref)):
            source = f"runtime.constant({source})"
        self._line(f"runtime.bind(runtime.property_of({binding.var}, {_string_literal(binding.prop)}), {source})")

    # ============================================================
    # VALUES
    # ============================================================

    def _value(self, value: Value) -> str:
        match value:
            case LiteralValue(value=v):
                return py_literal(v)
            case ListValue(items=items):
                return "[" + ", ".join(self._value(i) for i in items) + "]"
            case EnumValue(type_name=t, member=m):
                return f"{self._type_ref(t, value.pos)}.{m}"
            case ConstantValue(type_name=t, name=n):
                return f"{self._type_ref(t, value.pos)}.{n}"
            case ParsedValue(type_name=t, text=text):
                return f"{self._type_ref(t, value.pos)}.value_of({_string_literal(text)})"
            case ElementValue(var=var):
                return self._element(var, value.pos)
            case ExprValue(expr=expr, coerce_to=coerce_to):
                return self._coerced(self._expr(expr), coerce_to, value.pos)
            case ResourceValue(key=key, coerce_to=coerce_to):
                lookup = f"runtime.get_string(resources, {_string_literal(key)})"
                return self._coerced(lookup, coerce_to, value.pos)
            case LocationValue(path=path):
                return f"runtime.resolve_location(self.location, {_string_literal(path)})"
            case MethodHandler() | RefHandler():
                return self._handler(value, "runtime.ignore_event")
        raise self._invariant("cannot emit value " + type(value).__name__, value.pos)

    def _coerced(self, code: str, coerce_to: str | None, pos: Pos) -> str:
        if coerce_to is None:
            return code
        return f"runtime.coerce({code}, {self._type_ref(coerce_to, pos)})"

    def _element(self, var: str, pos: Pos) -> str:
        if var not in self.doc.elements:
            raise self._invariant("reference to unknown element " + var, pos)
        if var not in self.constructed:
            raise self._invariant(var + " is used before it is constructed", pos)
        return var

    def _ref(self, ref: Ref) -> str:
        if ref.name == CONTROLLER:
            return "controller"
        var = self.doc.registry.get(ref.name)
        if var is None:
            raise self._invariant("unresolved reference to '" + ref.name + "'", ref.pos)
        return self._element(var, ref.pos)

    # ============================================================
    # EXPRESSIONS
    # ============================================================

    def _expr(self, expr: Expr) -> str:
        """One-shot expression: plain Python evaluated once."""
        match expr:
            case Const(value=v):
                return py_literal(v)
            case Ref():
                return self._ref(expr)
            case Path(target=target, name=name):
                return f"{self._expr(target)}.{name}"
            case Call(target=target, name=name, args=args):
                args_str = ", ".join(self._expr(a) for a in args)
                return f"{self._expr(target)}.{name}({args_str})"
            case Index(target=target, key=key):
                return f"{self._expr(target)}[{self._expr(key)}]"
            case ListLit(items=items):
                return "[" + ", ".join(self._expr(i) for i in items) + "]"
            case MapLit(entries=entries):
                return "{" + ", ".join(f"{self._expr(k)}: {self._expr(v)}" for k, v in entries) + "}"
            case Unary(op="!", operand=operand):
                return f"(not {self._expr(operand)})"
            case Unary(op=op, operand=operand):
                return f"({op}{self._expr(operand)})"
            case Binary(op="+", left=left, right=right):
                return f"runtime.add({self._expr(left)}, {self._expr(right)})"
            case Binary(op=op, left=left, right=right):
                return f"({self._expr(left)} {_binary_op(op)} {self._expr(right)})"
        raise self._invariant("cannot emit expression " + type(expr).__name__, expr.pos)

    def _observable(self, expr: Expr) -> str:
        """Bound expression: a runtime observable that tracks its operands."""
        match expr:
            case Const(value=v):
                return py_literal(v)
            case Ref():
                return self._ref(expr)
            case Path(target=target, name=name):
                return f"runtime.select({self._observable(target)}, {_string_literal(name)})"
            case Call(target=target, name=name, args=args):
                parts = [self._observable(target), _string_literal(name)]
                parts.extend(self._observable(a) for a in args)
                return "runtime.call(" + ", ".join(parts) + ")"
            case Index(target=target, key=key):
                return f"runtime.value_at({self._observable(target)}, {self._observable(key)})"
            case ListLit(items=items):
                parts = ["runtime.make_list"] + [self._observable(i) for i in items]
                return "runtime.combine(" + ", ".join(parts) + ")"
            case MapLit(entries=entries):
                parts = ["runtime.make_map"]
                for k, v in entries:
                    parts.append(self._observable(k))
                    parts.append(self._observable(v))
                return "runtime.combine(" + ", ".join(parts) + ")"
            case Unary(op=op, operand=operand):
                fn = "runtime.invert" if op == "!" else "runtime.negate"
                return f"runtime.combine({fn}, {self._observable(operand)})"
            case Binary(op=op, left=left, right=right):
                fn = "runtime." + _BINDING_OPS[op]
                return f"runtime.combine({fn}, {self._observable(left)}, {self._observable(right)})"
        raise self._invariant("cannot bind expression " + type(expr).__name__, expr.pos)


def emit_python(doc: ResolvedDocument) -> str:
    """Generate the builder module for one resolved document."""
    return PythonBackend().emit(doc)


def emit_index(units: list, package: str = "") -> str:
    """Generate a module mapping document paths to builder classes.

    units are CompiledUnits; their module_name is already package-qualified.
    """
    out = Emitter()
    title = "Builder index"
    if package:
        title += " for " + package
    out.line('"""' + title + '. Generated; do not edit."""')
    out.line()
    out.line("from fx2py import runtime")
    modules = sorted({u.module_name for u in units})
    if modules:
        out.line()
        for module in modules:
            out.line(f"import {module}")
    out.line()
    out.line("BUILDERS = {")
    out.indent += 1
    for unit in sorted(units, key=lambda u: u.path):
        out.line(f"{_string_literal(unit.path)}: {unit.module_name}.{unit.class_name},")
    out.indent -= 1
    out.line("}")
    out.line()
    out.line("loader = runtime.Loader(BUILDERS)")
    return out.output()
