"""Controller binding: fx:id fields, handler methods and the initialize hook."""

from __future__ import annotations

from ..diagnostics import AMBIGUOUS_CONTROLLER_BINDING, UNKNOWN_REFERENCE
from ..oracle import MethodInfo, TypeDescriptor, TypeOracle

INITIALIZE = "initialize"


class BindingError(Exception):
    """A handler name matched no controller method, or more than one."""

    def __init__(self, kind: str, msg: str):
        self.kind: str = kind
        self.msg: str = msg
        super().__init__(msg)


class ControllerModel:
    """What the resolver knows about the declared controller type."""

    def __init__(self, descriptor: TypeDescriptor, oracle: TypeOracle):
        self.descriptor: TypeDescriptor = descriptor
        self.oracle: TypeOracle = oracle

    @property
    def type_name(self) -> str:
        return self.descriptor.name

    def field_type(self, name: str) -> str | None:
        """Declared type of a settable field, or None when there is none."""
        prop = self.descriptor.property(name)
        if prop is None or not prop.settable:
            return None
        return prop.type

    def has_initialize(self) -> bool:
        for sig in self.descriptor.methods.get(INITIALIZE, []):
            if sig.accepts(0):
                return True
        return False

    def handler(self, name: str, event_type: str) -> int:
        """Arity of the method bound to an event slot: 1 with the event, else 0."""
        signatures = self._signatures(name)
        with_event = [s for s in signatures if s.accepts(1)]
        if len(with_event) > 1:
            with_event = self._narrow(with_event, event_type)
        if len(with_event) == 1:
            return 1
        if len(with_event) > 1:
            raise BindingError(
                AMBIGUOUS_CONTROLLER_BINDING,
                "handler '#" + name + "' matches " + str(len(with_event)) + " methods of " + self.type_name,
            )
        plain = [s for s in signatures if s.accepts(0)]
        if len(plain) == 1:
            return 0
        if len(plain) > 1:
            raise BindingError(
                AMBIGUOUS_CONTROLLER_BINDING,
                "handler '#" + name + "' matches " + str(len(plain)) + " methods of " + self.type_name,
            )
        raise BindingError(
            UNKNOWN_REFERENCE,
            "method '" + name + "' of " + self.type_name + " takes too many arguments for a handler",
        )

    def listener(self, name: str, list_change: bool) -> int:
        """Arity of a change listener: 1 for list changes, 3 for value changes, or 0."""
        signatures = self._signatures(name)
        arity = 1 if list_change else 3
        for count in (arity, 0):
            matching = [s for s in signatures if s.accepts(count)]
            if len(matching) == 1:
                return count
            if len(matching) > 1:
                raise BindingError(
                    AMBIGUOUS_CONTROLLER_BINDING,
                    "listener '#" + name + "' matches " + str(len(matching)) + " methods of " + self.type_name,
                )
        raise BindingError(
            UNKNOWN_REFERENCE,
            "method '" + name + "' of " + self.type_name + " cannot be used as a change listener",
        )

    def _signatures(self, name: str) -> list[MethodInfo]:
        signatures = self.descriptor.methods.get(name)
        if not signatures:
            raise BindingError(
                UNKNOWN_REFERENCE, "controller " + self.type_name + " has no method '" + name + "'"
            )
        return signatures

    def _narrow(self, signatures: list[MethodInfo], event_type: str) -> list[MethodInfo]:
        """Keep the overloads whose parameter accepts the event, exact type first."""
        accepting = [
            s for s in signatures if len(s.params) > 0 and self.oracle.is_assignable(s.params[0].type, event_type)
        ]
        exact = [s for s in accepting if s.params[0].type == event_type]
        if len(exact) >= 1:
            return exact
        if len(accepting) >= 1:
            return accepting
        return signatures
