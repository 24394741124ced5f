"""Type-introspection oracle: what the resolver may ask about a type.

Type names are dotted Python paths ('widgets.Label'). Value types use a small
type language: str, int, float, bool, object, list[T], dict[K, V] or a
dotted type name.

Two oracles are provided. CatalogOracle answers from a fixed table of
descriptors, usually loaded from JSON. PythonOracle imports classes and
reads runtime descriptors, annotations and signatures. Both are read-only
after construction and safe to query from several threads.
"""

from __future__ import annotations

import builtins
import enum
import importlib
import inspect
import json
import sys
import threading
import typing

from . import runtime
from .frontend.ast import Import

BUILTIN_ALIASES: dict[str, str] = {
    "String": "str",
    "Integer": "int",
    "Long": "int",
    "Short": "int",
    "Byte": "int",
    "Double": "float",
    "Float": "float",
    "Boolean": "bool",
    "Object": "object",
}

PRIMITIVES: set[str] = {"str", "int", "float", "bool", "object"}

PRIMITIVE_BASES: dict[str, list[str]] = {
    "str": ["object"],
    "int": ["object"],
    "float": ["object"],
    "bool": ["int", "object"],
    "object": [],
}


class AmbiguousType(Exception):
    """A tag matched more than one imported type."""

    def __init__(self, name: str, candidates: list[str]):
        self.name: str = name
        self.candidates: list[str] = candidates
        super().__init__(name + " is ambiguous: " + ", ".join(candidates))


# ============================================================
# TYPE LANGUAGE
# ============================================================


def split_top_level(text: str, sep: str) -> list[str]:
    """Split on sep outside of brackets."""
    parts: list[str] = []
    depth = 0
    begin = 0
    for i, c in enumerate(text):
        if c == "[":
            depth += 1
        elif c == "]":
            depth -= 1
        elif c == sep and depth == 0:
            parts.append(text[begin:i].strip())
            begin = i + 1
    parts.append(text[begin:].strip())
    return parts


def list_item_type(type_name: str) -> str | None:
    if type_name.startswith("list[") and type_name.endswith("]"):
        return type_name[5 : len(type_name) - 1]
    return None


def map_types(type_name: str) -> tuple[str, str] | None:
    if type_name.startswith("dict[") and type_name.endswith("]"):
        parts = split_top_level(type_name[5 : len(type_name) - 1], ",")
        if len(parts) == 2:
            return parts[0], parts[1]
    return None


# ============================================================
# DESCRIPTORS
# ============================================================


class Param:
    """A constructor or method parameter."""

    def __init__(self, name: str, type_: str = "object", has_default: bool = False):
        self.name: str = name
        self.type: str = type_
        self.has_default: bool = has_default

    def __repr__(self) -> str:
        return "Param(" + self.name + ": " + self.type + ("=..." if self.has_default else "") + ")"


class Constructor:
    def __init__(self, params: list[Param] | None = None):
        self.params: list[Param] = params if params is not None else []

    def required(self) -> list[Param]:
        return [p for p in self.params if not p.has_default]

    def param(self, name: str) -> Param | None:
        for p in self.params:
            if p.name == name:
                return p
        return None

    def __repr__(self) -> str:
        return "Constructor(" + ", ".join(p.name for p in self.params) + ")"


class PropertyInfo:
    """A property: declared type, whether it can be set, and its kind."""

    def __init__(
        self,
        name: str,
        type_: str = "object",
        settable: bool = True,
        observable: bool = False,
        kind: str = "value",
    ):
        self.name: str = name
        self.type: str = type_
        self.settable: bool = settable
        self.observable: bool = observable
        self.kind: str = kind  # "value" | "list" | "map"

    def __repr__(self) -> str:
        return "PropertyInfo(" + self.name + ": " + self.type + ", " + self.kind + ")"


class MethodInfo:
    """One callable signature of a method, excluding self."""

    def __init__(self, name: str, params: list[Param] | None = None, varargs: bool = False):
        self.name: str = name
        self.params: list[Param] = params if params is not None else []
        self.varargs: bool = varargs

    def accepts(self, count: int) -> bool:
        required = len([p for p in self.params if not p.has_default])
        if count < required:
            return False
        return self.varargs or count <= len(self.params)


class TypeDescriptor:
    """Everything the resolver needs to know about one type."""

    def __init__(self, name: str):
        self.name: str = name
        self.module: str = name.rsplit(".", 1)[0] if "." in name else "builtins"
        self.bases: list[str] = []  # all ancestors, nearest first
        self.constructors: list[Constructor] = []
        self.properties: dict[str, PropertyInfo] = {}
        self.default_property: str | None = None
        self.events: dict[str, str] = {}  # slot name -> event type
        self.static_properties: dict[str, str] = {}  # attached name -> value type
        self.constants: dict[str, str] = {}
        self.factories: dict[str, str] = {}  # method -> produced type
        self.enum_members: list[str] = []
        self.value_of: bool = False
        self.builder: str | None = None
        self.copyable: bool = True
        self.collection: str | None = None  # "list" | "map" for collection types
        self.item_type: str = "object"
        self.methods: dict[str, list[MethodInfo]] = {}

    def noarg_constructor(self) -> Constructor | None:
        for ctor in self.constructors:
            if len(ctor.required()) == 0:
                return ctor
        return None

    def single_arg_constructors(self) -> list[Constructor]:
        return [c for c in self.constructors if len(c.required()) == 1 or (len(c.required()) == 0 and len(c.params) >= 1)]

    def property(self, name: str) -> PropertyInfo | None:
        return self.properties.get(name)

    def is_enum(self) -> bool:
        return len(self.enum_members) > 0

    def __repr__(self) -> str:
        return "TypeDescriptor(" + self.name + ")"


def primitive_descriptor(name: str) -> TypeDescriptor:
    d = TypeDescriptor(name)
    d.bases = list(PRIMITIVE_BASES[name])
    d.constructors = [Constructor([])]
    if name != "object":
        d.constructors.append(Constructor([Param("value", name)]))
        d.value_of = True
    return d


# ============================================================
# ORACLES
# ============================================================


class TypeOracle:
    """Lookup interface consumed by the resolver."""

    def has_type(self, name: str) -> bool:
        raise NotImplementedError

    def describe(self, name: str) -> TypeDescriptor | None:
        raise NotImplementedError

    def resolve_type(self, name: str, imports: list[Import]) -> str | None:
        """Resolve a tag to a qualified type name, or None when not found.

        Single-type imports shadow wildcard imports. More than one match at
        the same level raises AmbiguousType.
        """
        if name in BUILTIN_ALIASES:
            return BUILTIN_ALIASES[name]
        if name in PRIMITIVES:
            return name
        explicit: list[str] = []
        wildcard: list[str] = []
        for imp in imports:
            if imp.wildcard:
                candidate = imp.name + "." + name
                if candidate not in wildcard and self.has_type(candidate):
                    wildcard.append(candidate)
                continue
            last = imp.name.rsplit(".", 1)[-1]
            head = name.split(".", 1)[0]
            if head == last:
                candidate = imp.name + name[len(head) :]
                if candidate not in explicit and self.has_type(candidate):
                    explicit.append(candidate)
        if len(explicit) > 1:
            raise AmbiguousType(name, explicit)
        if len(explicit) == 1:
            return explicit[0]
        if len(wildcard) > 1:
            raise AmbiguousType(name, wildcard)
        if len(wildcard) == 1:
            return wildcard[0]
        if "." in name and self.has_type(name):
            return name
        return None

    def is_assignable(self, target: str, source: str) -> bool:
        """Whether a value of type source may be stored where target is declared."""
        if target == source or target == "object":
            return True
        if target == "float" and source in ("int", "bool"):
            return True
        target_item = list_item_type(target)
        source_item = list_item_type(source)
        if target_item is not None or source_item is not None:
            if target_item is None or source_item is None:
                return False
            return self.is_assignable(target_item, source_item)
        if map_types(target) is not None or map_types(source) is not None:
            return map_types(target) is not None and map_types(source) is not None
        d = self.describe(source)
        if d is None:
            return False
        return target in d.bases


class CatalogOracle(TypeOracle):
    """Oracle over a fixed table of type descriptors."""

    def __init__(self, types: dict[str, TypeDescriptor]):
        self._types: dict[str, TypeDescriptor] = {}
        for name in types:
            self._types[name] = _inherit(name, types, [])

    def has_type(self, name: str) -> bool:
        return name in self._types or name in PRIMITIVES

    def describe(self, name: str) -> TypeDescriptor | None:
        if name in PRIMITIVES:
            return primitive_descriptor(name)
        return self._types.get(name)

    @classmethod
    def from_dict(cls, data: dict) -> CatalogOracle:
        """Build from {"types": {name: {...}}} or a bare {name: {...}} table."""
        table = data.get("types", data)
        types: dict[str, TypeDescriptor] = {}
        for name, entry in table.items():
            types[name] = _descriptor_from_dict(name, entry)
        return cls(types)

    @classmethod
    def from_json(cls, text: str) -> CatalogOracle:
        return cls.from_dict(json.loads(text))

    @classmethod
    def load(cls, path: str) -> CatalogOracle:
        with open(path, encoding="utf-8") as f:
            return cls.from_json(f.read())


def _params_from_list(entries: list) -> list[Param]:
    params: list[Param] = []
    for entry in entries:
        if isinstance(entry, str):
            params.append(Param(entry))
        else:
            params.append(
                Param(entry["name"], entry.get("type", "object"), bool(entry.get("default", False)))
            )
    return params


def _descriptor_from_dict(name: str, entry: dict) -> TypeDescriptor:
    d = TypeDescriptor(name)
    d.bases = list(entry.get("bases", []))
    if "module" in entry:
        d.module = entry["module"]
    for params in entry.get("constructors", [[]]):
        d.constructors.append(Constructor(_params_from_list(params)))
    for prop_name, spec in entry.get("properties", {}).items():
        if isinstance(spec, str):
            d.properties[prop_name] = PropertyInfo(prop_name, spec)
            continue
        kind = spec.get("kind", "value")
        prop_type = spec.get("type", "object")
        if kind == "list" and list_item_type(prop_type) is None:
            prop_type = "list[" + prop_type + "]"
        d.properties[prop_name] = PropertyInfo(
            prop_name,
            prop_type,
            bool(spec.get("settable", kind == "value")),
            bool(spec.get("observable", False)),
            kind,
        )
    d.default_property = entry.get("default_property")
    events = entry.get("events", {})
    if isinstance(events, list):
        events = {e: "object" for e in events}
    d.events = dict(events)
    d.static_properties = dict(entry.get("static_properties", {}))
    d.constants = dict(entry.get("constants", {}))
    d.factories = dict(entry.get("factories", {}))
    d.enum_members = list(entry.get("enum", []))
    d.value_of = bool(entry.get("value_of", False))
    d.builder = entry.get("builder")
    d.copyable = bool(entry.get("copyable", True))
    d.collection = entry.get("collection")
    d.item_type = entry.get("item_type", "object")
    for method_name, signatures in entry.get("methods", {}).items():
        d.methods[method_name] = [
            MethodInfo(method_name, _params_from_list(sig)) for sig in signatures
        ]
    return d


def _inherit(name: str, types: dict[str, TypeDescriptor], seen: list[str]) -> TypeDescriptor:
    """Merge members inherited from catalog bases into a fresh descriptor."""
    own = types[name]
    if name in seen:
        raise ValueError("cyclic base types: " + " -> ".join(seen + [name]))
    merged = TypeDescriptor(name)
    merged.module = own.module
    ancestors: list[str] = []
    for base in own.bases:
        if base not in types:
            if base not in ancestors:
                ancestors.append(base)
            continue
        parent = _inherit(base, types, seen + [name])
        for ancestor in [base] + parent.bases:
            if ancestor not in ancestors:
                ancestors.append(ancestor)
        merged.properties.update(parent.properties)
        merged.events.update(parent.events)
        merged.static_properties.update(parent.static_properties)
        merged.methods.update(parent.methods)
        if parent.default_property is not None:
            merged.default_property = parent.default_property
        if parent.collection is not None:
            merged.collection = parent.collection
            merged.item_type = parent.item_type
    if "object" not in ancestors:
        ancestors.append("object")
    merged.bases = ancestors
    merged.constructors = own.constructors
    merged.properties.update(own.properties)
    merged.events.update(own.events)
    merged.static_properties.update(own.static_properties)
    merged.methods.update(own.methods)
    if own.default_property is not None:
        merged.default_property = own.default_property
    if own.collection is not None:
        merged.collection = own.collection
        merged.item_type = own.item_type
    merged.constants = own.constants
    merged.factories = own.factories
    merged.enum_members = own.enum_members
    merged.value_of = own.value_of
    merged.builder = own.builder
    merged.copyable = own.copyable
    return merged


def qualified_name(cls: type) -> str:
    if cls.__module__ == "builtins":
        return cls.__name__
    return cls.__module__ + "." + cls.__qualname__


class PythonOracle(TypeOracle):
    """Oracle that introspects importable Python classes.

    Observable properties come from runtime.observable and
    runtime.observable_list descriptors, plain properties from annotations
    and property objects, event slots from runtime.event. A class names its
    default property with __default_property__ and a builder class with
    __builder__, and opts out of fx:copy with __copyable__ = False. Static
    setters named set_<prop>(node, value) declare attached properties;
    argument-free static or class methods are factories; UPPER_CASE class
    attributes are constants.
    """

    def __init__(self) -> None:
        self._cache: dict[str, TypeDescriptor | None] = {}
        self._lock = threading.Lock()

    def lookup(self, name: str) -> type | None:
        """Import the class a dotted name refers to."""
        if name in PRIMITIVES:
            return getattr(builtins, name)
        parts = name.split(".")
        for i in range(len(parts) - 1, 0, -1):
            module_name = ".".join(parts[:i])
            try:
                module = importlib.import_module(module_name)
            except ImportError:
                continue
            obj: object = module
            for attr in parts[i:]:
                obj = getattr(obj, attr, None)
                if obj is None:
                    return None
            if isinstance(obj, type):
                return obj
            return None
        return None

    def has_type(self, name: str) -> bool:
        return self.lookup(name) is not None

    def describe(self, name: str) -> TypeDescriptor | None:
        if name in PRIMITIVES:
            return primitive_descriptor(name)
        with self._lock:
            if name in self._cache:
                return self._cache[name]
        cls = self.lookup(name)
        d = self._describe_class(cls) if cls is not None else None
        with self._lock:
            self._cache[name] = d
        return d

    # ── Introspection ────────────────────────────────────────

    def _describe_class(self, cls: type) -> TypeDescriptor:
        d = TypeDescriptor(qualified_name(cls))
        d.module = cls.__module__
        d.bases = [qualified_name(b) for b in cls.__mro__[1:]]
        is_enum = issubclass(cls, enum.Enum)
        if is_enum:
            d.enum_members = list(cls.__members__)
        for klass in reversed(cls.__mro__):
            if klass is object or klass.__module__ == "builtins":
                continue
            self._collect_members(klass, d, is_enum)
        d.default_property = getattr(cls, "__default_property__", None)
        builder = getattr(cls, "__builder__", None)
        if isinstance(builder, type):
            d.builder = qualified_name(builder)
        d.copyable = bool(getattr(cls, "__copyable__", True))
        if issubclass(cls, list):
            d.collection = "list"
        elif issubclass(cls, dict):
            d.collection = "map"
        item = getattr(cls, "__item_type__", None)
        if item is not None:
            d.item_type = self.type_name(item, sys.modules.get(cls.__module__))
        d.constructors = [self._constructor(cls)]
        return d

    def _collect_members(self, klass: type, d: TypeDescriptor, is_enum: bool) -> None:
        module = sys.modules.get(klass.__module__)
        hints = klass.__dict__.get("__annotations__", {})
        for attr, annotation in hints.items():
            if attr.startswith("_") or _is_classvar(annotation):
                continue
            if isinstance(klass.__dict__.get(attr), (runtime.observable, runtime.observable_list, runtime.event)):
                continue
            d.properties[attr] = PropertyInfo(attr, self.type_name(annotation, module))
        for attr, value in klass.__dict__.items():
            if attr.startswith("_"):
                continue
            if isinstance(value, runtime.observable):
                type_name = "object"
                if value.type is not None:
                    type_name = self.type_name(value.type, module)
                elif attr in hints:
                    type_name = self.type_name(hints[attr], module)
                elif value.default is not None:
                    type_name = qualified_name(type(value.default))
                d.properties[attr] = PropertyInfo(attr, type_name, not value.read_only, True)
            elif isinstance(value, runtime.observable_list):
                item = "object"
                if value.item_type is not None:
                    item = self.type_name(value.item_type, module)
                d.properties[attr] = PropertyInfo(attr, "list[" + item + "]", False, False, "list")
            elif isinstance(value, runtime.event):
                event_type = "object"
                if value.type is not None:
                    event_type = self.type_name(value.type, module)
                d.events[attr] = event_type
                d.properties.pop(attr, None)
            elif isinstance(value, property):
                type_name = "object"
                if value.fget is not None:
                    type_name = self.type_name(_return_annotation(value.fget), module)
                kind = "value"
                if list_item_type(type_name) is not None and value.fset is None:
                    kind = "list"
                elif map_types(type_name) is not None and value.fset is None:
                    kind = "map"
                d.properties[attr] = PropertyInfo(attr, type_name, value.fset is not None, False, kind)
            elif isinstance(value, (staticmethod, classmethod)):
                self._collect_static(attr, value, d, module)
            elif inspect.isfunction(value):
                d.methods[attr] = [self._method(attr, value, module)]
            elif attr.isupper() and not is_enum and not callable(value):
                d.constants[attr] = qualified_name(type(value))

    def _collect_static(self, attr: str, value: staticmethod | classmethod, d: TypeDescriptor, module) -> None:
        fn = value.__func__
        try:
            params = list(inspect.signature(fn).parameters.values())
        except (TypeError, ValueError):
            return
        if isinstance(value, classmethod):
            params = params[1:]
        required = [p for p in params if p.default is inspect.Parameter.empty and p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)]
        if attr == "value_of":
            d.value_of = True
        elif attr.startswith("set_") and isinstance(value, staticmethod) and len(params) == 2:
            d.static_properties[attr[4:]] = self.type_name(params[1].annotation, module)
        elif len(required) == 0:
            d.factories[attr] = self.type_name(_return_annotation(fn), module)

    def _method(self, name: str, fn, module) -> MethodInfo:
        params: list[Param] = []
        varargs = False
        for p in list(inspect.signature(fn).parameters.values())[1:]:
            if p.kind == inspect.Parameter.VAR_POSITIONAL:
                varargs = True
                continue
            if p.kind in (inspect.Parameter.VAR_KEYWORD, inspect.Parameter.KEYWORD_ONLY):
                continue
            params.append(Param(p.name, self.type_name(p.annotation, module), p.default is not inspect.Parameter.empty))
        return MethodInfo(name, params, varargs)

    def _constructor(self, cls: type) -> Constructor:
        try:
            sig = inspect.signature(cls)
        except (TypeError, ValueError):
            return Constructor([])
        module = sys.modules.get(cls.__module__)
        params: list[Param] = []
        for p in sig.parameters.values():
            if p.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            params.append(Param(p.name, self.type_name(p.annotation, module), p.default is not inspect.Parameter.empty))
        return Constructor(params)

    # ── Annotations ──────────────────────────────────────────

    def type_name(self, annotation: object, module) -> str:
        """Translate an annotation into the oracle's type language."""
        if annotation is None or annotation is inspect.Parameter.empty:
            return "object"
        if isinstance(annotation, str):
            return self._parse_annotation(annotation.strip(), module)
        if isinstance(annotation, type) and not typing.get_args(annotation):
            return qualified_name(annotation)
        origin = typing.get_origin(annotation)
        args = typing.get_args(annotation)
        if origin in (list, typing.List) and len(args) == 1:
            return "list[" + self.type_name(args[0], module) + "]"
        if origin in (dict, typing.Dict) and len(args) == 2:
            return "dict[" + self.type_name(args[0], module) + ", " + self.type_name(args[1], module) + "]"
        if args and type(None) in args:
            rest = [a for a in args if a is not type(None)]
            if len(rest) == 1:
                return self.type_name(rest[0], module)
        return "object"

    def _parse_annotation(self, text: str, module) -> str:
        if len(text) >= 2 and text[0] in "'\"" and text[-1] == text[0]:
            text = text[1 : len(text) - 1]
        alternatives = [a for a in split_top_level(text, "|") if a != "None"]
        if len(alternatives) != 1:
            return "object"
        text = alternatives[0]
        if text.startswith("Optional[") and text.endswith("]"):
            return self._parse_annotation(text[9 : len(text) - 1], module)
        for prefix in ("list[", "List["):
            if text.startswith(prefix) and text.endswith("]"):
                return "list[" + self._parse_annotation(text[len(prefix) : len(text) - 1], module) + "]"
        for prefix in ("dict[", "Dict["):
            if text.startswith(prefix) and text.endswith("]"):
                parts = split_top_level(text[len(prefix) : len(text) - 1], ",")
                if len(parts) == 2:
                    return (
                        "dict["
                        + self._parse_annotation(parts[0], module)
                        + ", "
                        + self._parse_annotation(parts[1], module)
                        + "]"
                    )
                return "object"
        if text in PRIMITIVES:
            return text
        if "[" in text or text == "Any":
            return "object"
        parts = text.split(".")
        namespace = module.__dict__ if module is not None else {}
        obj = namespace.get(parts[0], getattr(builtins, parts[0], None))
        for attr in parts[1:]:
            obj = getattr(obj, attr, None)
        if isinstance(obj, type):
            return qualified_name(obj)
        return "object"


def _is_classvar(annotation: object) -> bool:
    if isinstance(annotation, str):
        return annotation.startswith("ClassVar") or annotation.startswith("typing.ClassVar")
    return typing.get_origin(annotation) is typing.ClassVar


def _return_annotation(fn) -> object:
    try:
        return inspect.signature(fn).return_annotation
    except (TypeError, ValueError):
        return None
