"""Literal coercion rule table.

Literal text is converted to a property's declared type by the first rule
that applies:

    str, object     text unchanged
    int             decimal integer, optional sign, unbounded
    float           decimal or exponent form, Infinity, -Infinity, NaN
    bool            true or false, any case
    list[T]         comma-separated, each part coerced to T
    enum            member name, exact match first, then unique case-insensitive
    other types     a constant of that name, else Type.value_of(text)

Anything else is an InvalidValue.
"""

from __future__ import annotations

from ..frontend.ast import Pos
from ..ir import ConstantValue, EnumValue, ListValue, LiteralValue, ParsedValue, Value
from ..oracle import TypeOracle, list_item_type, map_types
from ..runtime import match_enum_member, parse_bool, parse_float, parse_int, split_list


class CoercionError(Exception):
    """Literal text cannot be converted to the target type."""

    def __init__(self, msg: str):
        self.msg: str = msg
        super().__init__(msg)


def coerce_literal(text: str, type_name: str, oracle: TypeOracle, pos: Pos) -> Value:
    """Convert literal text to a value of type_name."""
    if type_name in ("str", "object"):
        return LiteralValue(pos, text)
    if type_name == "int":
        try:
            return LiteralValue(pos, parse_int(text))
        except ValueError:
            raise CoercionError("'" + text + "' is not a valid int") from None
    if type_name == "float":
        try:
            return LiteralValue(pos, parse_float(text))
        except ValueError:
            raise CoercionError("'" + text + "' is not a valid float") from None
    if type_name == "bool":
        try:
            return LiteralValue(pos, parse_bool(text))
        except ValueError:
            raise CoercionError("'" + text + "' is not a valid bool (expected true or false)") from None
    item = list_item_type(type_name)
    if item is not None:
        return ListValue(pos, [coerce_literal(part, item, oracle, pos) for part in split_list(text)])
    if map_types(type_name) is not None:
        raise CoercionError("literal text cannot be converted to " + type_name)
    d = oracle.describe(type_name)
    if d is None:
        raise CoercionError("cannot convert '" + text + "' to unknown type " + type_name)
    if d.is_enum():
        member = match_enum_member(d.enum_members, text)
        if member is None:
            raise CoercionError("'" + text + "' is not a member of " + type_name)
        return EnumValue(pos, type_name, member)
    name = text.strip()
    if name in d.constants and oracle.is_assignable(type_name, d.constants[name]):
        return ConstantValue(pos, type_name, name)
    if d.value_of:
        return ParsedValue(pos, type_name, text)
    if oracle.is_assignable(type_name, "str"):
        return LiteralValue(pos, text)
    raise CoercionError("cannot convert '" + text + "' to " + type_name)


def is_coercible(type_name: str, oracle: TypeOracle) -> bool:
    """Whether runtime.coerce can convert arbitrary values to type_name."""
    if type_name in ("str", "int", "float", "bool"):
        return True
    if type_name == "object" or list_item_type(type_name) is not None or map_types(type_name) is not None:
        return False
    d = oracle.describe(type_name)
    return d is not None and (d.is_enum() or d.value_of)
