"""Runtime support library consumed by generated builders.

Generated code calls into this module for observable properties, event
slots, bindings, resource lookup, value coercion and controller selection.
Everything here is plain Python; nothing parses markup or reflects at load
time.
"""

from __future__ import annotations

import copy
import enum
import math
import operator
import posixpath
import re
from typing import Any, Callable

# ============================================================
# LITERAL PARSING
#
# Shared by the compile-time coercion table and coerce() below, so a
# literal coerced at build time and one coerced at run time agree.
# ============================================================

INT_PATTERN = re.compile(r"^[+-]?\d+$")
FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
FLOAT_SPECIALS: dict[str, float] = {
    "Infinity": math.inf,
    "+Infinity": math.inf,
    "-Infinity": -math.inf,
    "NaN": math.nan,
}


def parse_int(text: str) -> int:
    text = text.strip()
    if not INT_PATTERN.match(text):
        raise ValueError("not an integer: " + repr(text))
    return int(text)


def parse_float(text: str) -> float:
    text = text.strip()
    if text in FLOAT_SPECIALS:
        return FLOAT_SPECIALS[text]
    if not FLOAT_PATTERN.match(text):
        raise ValueError("not a number: " + repr(text))
    value = float(text)
    if not math.isfinite(value):
        raise ValueError("out of range: " + repr(text))
    return value


def parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValueError("not a boolean: " + repr(text))


def match_enum_member(members: list[str], text: str) -> str | None:
    """Exact match first, then a unique case-insensitive match."""
    text = text.strip()
    if text in members:
        return text
    found = [m for m in members if m.lower() == text.lower()]
    if len(found) == 1:
        return found[0]
    return None


def split_list(text: str) -> list[str]:
    """Comma-separated list literal; blank text is an empty list."""
    if text.strip() == "":
        return []
    return [part.strip() for part in text.split(",")]


def coerce(value: Any, target: Any) -> Any:
    """Convert value to target type, the same way literals are converted."""
    if value is None or target is None or target is object:
        return value
    if isinstance(target, type) and isinstance(value, target):
        if not (target is int and isinstance(value, bool)):
            return value
    if target is str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    if target is int:
        if isinstance(value, str):
            return parse_int(value)
        return int(value)
    if target is float:
        if isinstance(value, str):
            return parse_float(value)
        return float(value)
    if target is bool:
        if isinstance(value, str):
            return parse_bool(value)
        return bool(value)
    if isinstance(target, type) and issubclass(target, enum.Enum) and isinstance(value, str):
        name = match_enum_member(list(target.__members__), value)
        if name is None:
            raise ValueError(repr(value) + " is not a member of " + target.__name__)
        return target[name]
    value_of = getattr(target, "value_of", None)
    if callable(value_of):
        return value_of(value)
    raise TypeError("cannot coerce " + type(value).__name__ + " to " + getattr(target, "__name__", str(target)))


# ============================================================
# OBSERVABLES
# ============================================================


def _same(old: Any, new: Any) -> bool:
    if old is new:
        return True
    if type(old) is not type(new):
        return False
    return bool(old == new)


class ObservableValue:
    """A value that notifies listeners with (observable, old, new)."""

    def __init__(self) -> None:
        self._listeners: list[Callable[..., Any]] = []

    def get(self) -> Any:
        raise NotImplementedError

    def add_listener(self, listener: Callable[..., Any]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[..., Any]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _changed(self, old: Any, new: Any) -> None:
        if _same(old, new):
            return
        for listener in list(self._listeners):
            listener(self, old, new)


class Property(ObservableValue):
    """Observable, bindable property of one object."""

    def __init__(self, bean: Any, name: str, value: Any = None):
        super().__init__()
        self.bean = bean
        self.name: str = name
        self._value = value
        self._binding: ObservableValue | None = None

    def get(self) -> Any:
        return self._value

    def set(self, value: Any) -> None:
        if self._binding is not None:
            raise RuntimeError("a bound value cannot be set: " + self.name)
        self._store(value)

    def _store(self, value: Any) -> None:
        old = self._value
        self._value = value
        self._changed(old, value)

    def bind(self, source: Any) -> None:
        source = to_observable(source)
        self.unbind()
        self._binding = source
        source.add_listener(self._source_changed)
        self._store(source.get())

    def unbind(self) -> None:
        if self._binding is not None:
            self._binding.remove_listener(self._source_changed)
            self._binding = None

    def is_bound(self) -> bool:
        return self._binding is not None

    def _source_changed(self, source: ObservableValue, old: Any, new: Any) -> None:
        self._store(new)

    def __repr__(self) -> str:
        return "Property(" + self.name + "=" + repr(self._value) + ")"


class observable:
    """Declares an observable property on a class.

        class Label:
            text = observable("", str)
    """

    def __init__(self, default: Any = None, type: Any = None, read_only: bool = False):
        self.default = default
        self.type = type
        self.read_only: bool = read_only
        self.name: str = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def property(self, obj: Any) -> Property:
        props = obj.__dict__.setdefault("_observables", {})
        prop = props.get(self.name)
        if prop is None:
            prop = Property(obj, self.name, self.default)
            props[self.name] = prop
        return prop

    def __get__(self, obj: Any, owner: type | None = None) -> Any:
        if obj is None:
            return self
        return self.property(obj).get()

    def __set__(self, obj: Any, value: Any) -> None:
        if self.read_only:
            raise AttributeError("read-only property: " + self.name)
        self.property(obj).set(value)


class ListChange:
    """A change to an ObservableList."""

    def __init__(self, source: ObservableList, added: list[Any], removed: list[Any]):
        self.source = source
        self.added: list[Any] = added
        self.removed: list[Any] = removed

    def __repr__(self) -> str:
        return "ListChange(added=" + repr(self.added) + ", removed=" + repr(self.removed) + ")"


class ObservableList(list):
    """A list that notifies listeners with a ListChange."""

    def __init__(self, items: Any = ()) -> None:
        super().__init__(items)
        self._listeners: list[Callable[[ListChange], Any]] = []

    def add_listener(self, listener: Callable[[ListChange], Any]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[ListChange], Any]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _fire(self, added: list[Any], removed: list[Any]) -> None:
        if not added and not removed:
            return
        change = ListChange(self, added, removed)
        for listener in list(self._listeners):
            listener(change)

    def append(self, item: Any) -> None:
        super().append(item)
        self._fire([item], [])

    def extend(self, items: Any) -> None:
        items = list(items)
        super().extend(items)
        self._fire(items, [])

    def insert(self, index: Any, item: Any) -> None:
        super().insert(index, item)
        self._fire([item], [])

    def remove(self, item: Any) -> None:
        super().remove(item)
        self._fire([], [item])

    def pop(self, index: Any = -1) -> Any:
        item = super().pop(index)
        self._fire([], [item])
        return item

    def clear(self) -> None:
        removed = list(self)
        super().clear()
        self._fire([], removed)

    def __setitem__(self, index: Any, value: Any) -> None:
        removed = self[index]
        super().__setitem__(index, value)
        if isinstance(index, slice):
            self._fire(list(value), list(removed))
        else:
            self._fire([value], [removed])

    def __delitem__(self, index: Any) -> None:
        removed = self[index]
        super().__delitem__(index)
        self._fire([], list(removed) if isinstance(index, slice) else [removed])

    def __iadd__(self, items: Any) -> ObservableList:
        self.extend(items)
        return self


class observable_list:
    """Declares a read-only list property whose contents are observable."""

    def __init__(self, item_type: Any = None):
        self.item_type = item_type
        self.name: str = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: Any, owner: type | None = None) -> Any:
        if obj is None:
            return self
        lists = obj.__dict__.setdefault("_observable_lists", {})
        items = lists.get(self.name)
        if items is None:
            items = ObservableList()
            lists[self.name] = items
        return items

    def __set__(self, obj: Any, value: Any) -> None:
        raise AttributeError("read-only list property: " + self.name)


class event:
    """Declares an event-handler slot. Handlers are called with the event."""

    def __init__(self, type: Any = None):
        self.type = type
        self.name: str = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: Any, owner: type | None = None) -> Any:
        if obj is None:
            return self
        return obj.__dict__.get("_handlers", {}).get(self.name)

    def __set__(self, obj: Any, handler: Any) -> None:
        if handler is not None and not callable(handler):
            raise TypeError(self.name + " handler must be callable")
        obj.__dict__.setdefault("_handlers", {})[self.name] = handler


class Event:
    """Default event object passed to handlers by fire()."""

    def __init__(self, source: Any, name: str):
        self.source = source
        self.name: str = name

    def __repr__(self) -> str:
        return "Event(" + self.name + ")"


def fire(obj: Any, slot: str, evt: Any = None) -> Any:
    """Invoke the handler in an event slot, if one is set."""
    handler = getattr(obj, slot)
    if handler is None:
        return None
    if evt is None:
        evt = Event(obj, slot)
    return handler(evt)


def property_of(obj: Any, name: str) -> Property:
    """The Property behind an observable attribute of obj."""
    for klass in type(obj).__mro__:
        descriptor = klass.__dict__.get(name)
        if isinstance(descriptor, observable):
            return descriptor.property(obj)
        if descriptor is not None:
            break
    raise AttributeError(type(obj).__name__ + " has no observable property " + repr(name))


def ignore_event(method: Callable[[], Any]) -> Callable[[Any], Any]:
    """Adapt a no-argument method to an event slot."""

    def handler(evt: Any) -> Any:
        return method()

    return handler


def ignore_change(method: Callable[[], Any]) -> Callable[..., Any]:
    """Adapt a no-argument method to a change listener."""

    def listener(*args: Any) -> Any:
        return method()

    return listener


def as_handler(obj: Any) -> Callable[[Any], Any]:
    """Use a referenced object as an event handler."""
    if callable(obj):
        return obj
    handle = getattr(obj, "handle", None)
    if callable(handle):
        return handle
    raise TypeError(type(obj).__name__ + " is not an event handler")


# ============================================================
# EXPRESSIONS
#
# Continuously bound expressions are built from these nodes. Each node
# recomputes eagerly when one of its operands changes.
# ============================================================


def unwrap(value: Any) -> Any:
    if isinstance(value, ObservableValue):
        return value.get()
    return value


def to_observable(value: Any) -> ObservableValue:
    if isinstance(value, ObservableValue):
        return value
    return Constant(value)


def read(obj: Any, name: str) -> Any:
    """Property read used by expressions: attributes, or keys of a mapping."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name)


class Constant(ObservableValue):
    def __init__(self, value: Any):
        super().__init__()
        self._value = value

    def get(self) -> Any:
        return self._value


class Computed(ObservableValue):
    """Base for expression nodes over operand observables."""

    def __init__(self, *operands: Any):
        super().__init__()
        self._operands = operands
        for operand in operands:
            if isinstance(operand, ObservableValue):
                operand.add_listener(self._invalidate)
        self._value = self.compute()

    def compute(self) -> Any:
        raise NotImplementedError

    def get(self) -> Any:
        return self._value

    def _invalidate(self, *args: Any) -> None:
        old = self._value
        self._value = self.compute()
        self._changed(old, self._value)


class Selection(Computed):
    """source.name, following the source and the selected property."""

    def __init__(self, source: Any, name: str):
        self._name = name
        self._watched: Property | None = None
        super().__init__(source)

    def compute(self) -> Any:
        obj = unwrap(self._operands[0])
        self._watch(obj)
        return read(obj, self._name)

    def _watch(self, obj: Any) -> None:
        prop: Property | None = None
        if obj is not None and not isinstance(obj, dict):
            try:
                prop = property_of(obj, self._name)
            except AttributeError:
                prop = None
        if prop is self._watched:
            return
        if self._watched is not None:
            self._watched.remove_listener(self._invalidate)
        self._watched = prop
        if prop is not None:
            prop.add_listener(self._invalidate)


class Invocation(Computed):
    """source.name(*args), recomputed when the source or an argument changes."""

    def __init__(self, source: Any, name: str, *args: Any):
        self._name = name
        super().__init__(source, *args)

    def compute(self) -> Any:
        obj = unwrap(self._operands[0])
        if obj is None:
            return None
        args = [unwrap(a) for a in self._operands[1:]]
        return getattr(obj, self._name)(*args)


class ValueAt(Computed):
    """source[key]"""

    def __init__(self, source: Any, key: Any):
        self._watched: ObservableList | None = None
        super().__init__(source, key)

    def compute(self) -> Any:
        obj = unwrap(self._operands[0])
        key = unwrap(self._operands[1])
        watched = obj if isinstance(obj, ObservableList) else None
        if watched is not self._watched:
            if self._watched is not None:
                self._watched.remove_listener(self._invalidate)
            self._watched = watched
            if watched is not None:
                watched.add_listener(self._invalidate)
        if obj is None:
            return None
        if isinstance(obj, dict):
            return obj.get(key)
        if isinstance(key, int) and not 0 <= key < len(obj):
            return None
        return obj[key]


class Combination(Computed):
    """fn(*operands) over the current operand values."""

    def __init__(self, fn: Callable[..., Any], *operands: Any):
        self._fn = fn
        super().__init__(*operands)

    def compute(self) -> Any:
        return self._fn(*[unwrap(o) for o in self._operands])


def constant(value: Any) -> ObservableValue:
    return Constant(value)


def select(source: Any, name: str) -> ObservableValue:
    return Selection(source, name)


def call(source: Any, name: str, *args: Any) -> ObservableValue:
    return Invocation(source, name, *args)


def value_at(source: Any, key: Any) -> ObservableValue:
    return ValueAt(source, key)


def combine(fn: Callable[..., Any], *operands: Any) -> ObservableValue:
    return Combination(fn, *operands)


def bind(target: Property, source: Any) -> None:
    """Keep target equal to source from now on."""
    target.bind(source)


def add(a: Any, b: Any) -> Any:
    """+ concatenates when either side is a string."""
    if isinstance(a, str) or isinstance(b, str):
        return coerce(a, str) + coerce(b, str)
    return a + b


subtract = operator.sub
multiply = operator.mul
divide = operator.truediv
modulo = operator.mod
negate = operator.neg
equal = operator.eq
not_equal = operator.ne
less = operator.lt
less_equal = operator.le
greater = operator.gt
greater_equal = operator.ge


def invert(a: Any) -> bool:
    return not a


def both(a: Any, b: Any) -> bool:
    return bool(a) and bool(b)


def either(a: Any, b: Any) -> bool:
    return bool(a) or bool(b)


def make_list(*items: Any) -> list[Any]:
    return list(items)


def make_map(*pairs: Any) -> dict[Any, Any]:
    return {pairs[i]: pairs[i + 1] for i in range(0, len(pairs), 2)}


# ============================================================
# RESOURCES AND LOCATIONS
# ============================================================


class MissingResourceError(KeyError):
    """A %key lookup found no entry in the resource bundle."""


def parse_properties(text: str) -> dict[str, str]:
    """Parse key=value lines. '#' and '!' start comments."""
    result: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if line == "" or line[0] in "#!":
            continue
        sep = len(line)
        for i, c in enumerate(line):
            if c in "=:":
                sep = i
                break
        key = line[:sep].strip()
        value = line[sep + 1 :].strip() if sep < len(line) else ""
        result[key] = value
    return result


class ResourceBundle(dict):
    """String resources by key, as read from a key=value file."""

    @classmethod
    def from_text(cls, text: str) -> ResourceBundle:
        return cls(parse_properties(text))

    @classmethod
    def load(cls, path: str) -> ResourceBundle:
        with open(path, encoding="utf-8") as f:
            return cls.from_text(f.read())

    def __missing__(self, key: str) -> str:
        raise MissingResourceError(key)


def get_string(resources: Any, key: str) -> str:
    if resources is None:
        raise MissingResourceError("no resources supplied for %" + key)
    try:
        return resources[key]
    except KeyError:
        raise MissingResourceError(key) from None


def resolve_location(document: str, path: str) -> str:
    """Resolve @path against the directory of the document."""
    if path.startswith("/"):
        return posixpath.normpath(path[1:])
    base = posixpath.dirname(document)
    return posixpath.normpath(posixpath.join(base, path))


def copy_value(value: Any) -> Any:
    """Shallow copy; observable properties and lists get their own state."""
    result = copy.copy(value)
    state = getattr(result, "__dict__", None)
    if state is None:
        return result
    props = state.get("_observables")
    if props is not None:
        state["_observables"] = {name: Property(result, name, p.get()) for name, p in props.items()}
    lists = state.get("_observable_lists")
    if lists is not None:
        state["_observable_lists"] = {name: ObservableList(items) for name, items in lists.items()}
    return result


def require_root(root: Any, expected: type) -> Any:
    if root is None:
        raise RuntimeError("root has not been set; pass root= to build()")
    if not isinstance(root, expected):
        raise TypeError("root must be a " + expected.__name__ + ", got " + type(root).__name__)
    return root


# ============================================================
# BUILDERS
# ============================================================


class Builder:
    """Base class of generated builders."""

    CONTROLLER_TYPE: Any = None
    EXPORTS: tuple[str, ...] = ()
    LOCATION: str = ""

    def __init__(self, location: str | None = None):
        self.location: str = location if location is not None else self.LOCATION
        self.namespace: dict[str, Any] = {}
        self.controller: Any = None
        self.root: Any = None
        self.resources: Any = None

    def build(
        self,
        controller: Any = None,
        root: Any = None,
        resources: Any = None,
        controller_factory: Callable[[type], Any] | None = None,
    ) -> Any:
        raise NotImplementedError

    def select_controller(
        self, controller: Any, controller_factory: Callable[[type], Any] | None
    ) -> Any:
        """Provided instance, else the factory's, else a new CONTROLLER_TYPE."""
        if controller is None and self.CONTROLLER_TYPE is not None:
            if controller_factory is not None:
                controller = controller_factory(self.CONTROLLER_TYPE)
            else:
                controller = self.CONTROLLER_TYPE()
        self.controller = controller
        return controller

    def merge(self, sub: Builder, prefix: str) -> None:
        """Merge an included builder's ids under prefix, except exported ones."""
        for key, value in sub.namespace.items():
            if key in sub.EXPORTS:
                self.namespace[key] = value
            else:
                self.namespace[prefix + "." + key] = value


class Loader:
    """Finds the generated builder for a document location."""

    def __init__(self, builders: dict[str, type[Builder]] | None = None):
        self._builders: dict[str, type[Builder]] = dict(builders or {})

    def register(self, location: str, builder: type[Builder]) -> None:
        self._builders[location] = builder

    def locations(self) -> list[str]:
        return sorted(self._builders)

    def builder_for(self, location: str) -> type[Builder]:
        try:
            return self._builders[location]
        except KeyError:
            raise LookupError("no compiled builder for " + repr(location)) from None

    def load(
        self,
        location: str,
        controller: Any = None,
        root: Any = None,
        resources: Any = None,
        controller_factory: Callable[[type], Any] | None = None,
    ) -> Builder:
        """Build the document at location and return its builder."""
        builder = self.builder_for(location)()
        builder.build(controller, root, resources, controller_factory)
        return builder
