"""Compact text dumps of expression and document trees for .tests files."""

from fx2py.frontend.ast import (
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
)


def dump_expr(expr: Expr | None) -> str:
    """S-expression form: (op args...), bare names for refs and literals."""
    if expr is None:
        return "!"
    if isinstance(expr, Text):
        return '(text "' + expr.text + '")'
    if isinstance(expr, Const):
        v = expr.value
        if v is None:
            return "null"
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, str):
            return '"' + v + '"'
        return repr(v)
    if isinstance(expr, Ref):
        return expr.name
    if isinstance(expr, Path):
        return "(. " + dump_expr(expr.target) + " " + expr.name + ")"
    if isinstance(expr, Call):
        parts = ["call", dump_expr(expr.target), expr.name] + [dump_expr(a) for a in expr.args]
        return "(" + " ".join(parts) + ")"
    if isinstance(expr, Index):
        return "([] " + dump_expr(expr.target) + " " + dump_expr(expr.key) + ")"
    if isinstance(expr, ListLit):
        return "(" + " ".join(["list"] + [dump_expr(i) for i in expr.items]) + ")"
    if isinstance(expr, MapLit):
        entries = ["(" + dump_expr(k) + " " + dump_expr(v) + ")" for k, v in expr.entries]
        return "(" + " ".join(["map"] + entries) + ")"
    if isinstance(expr, Unary):
        return "(" + expr.op + " " + dump_expr(expr.operand) + ")"
    if isinstance(expr, Binary):
        return "(" + expr.op + " " + dump_expr(expr.left) + " " + dump_expr(expr.right) + ")"
    if isinstance(expr, Binding):
        return "(bind " + dump_expr(expr.expr) + ")"
    if isinstance(expr, Resource):
        return "(res " + expr.key + ")"
    if isinstance(expr, Location):
        return "(loc " + expr.path + ")"
    if isinstance(expr, MethodRef):
        return "(method " + expr.name + ")"
    raise TypeError("cannot dump " + type(expr).__name__)


def _head(node: Node) -> str:
    fx_id = getattr(node, "fx_id", None)
    suffix = " #" + fx_id if fx_id is not None else ""
    if isinstance(node, Root):
        return "fx:root " + node.tag + suffix
    if isinstance(node, Value):
        return node.tag + suffix + " value=" + node.value
    if isinstance(node, Factory):
        return node.tag + suffix + " factory=" + node.method
    if isinstance(node, Instance):
        return node.tag + suffix
    if isinstance(node, Constant):
        return node.tag + suffix + " constant=" + node.name
    if isinstance(node, PropertyElement):
        return "<" + node.name + ">"
    if isinstance(node, StaticPropertyElement):
        return "<" + node.owner + "." + node.name + ">"
    if isinstance(node, Define):
        return "fx:define"
    if isinstance(node, Reference):
        return "fx:reference " + node.source
    if isinstance(node, Copy):
        return "fx:copy" + suffix + " " + node.source
    if isinstance(node, Include):
        return "fx:include" + suffix + " " + node.source
    raise TypeError("cannot dump " + type(node).__name__)


def dump_node(node: Node, depth: int = 0) -> list[str]:
    pad = "  " * depth
    lines = [pad + _head(node)]
    inner = "  " * (depth + 1)
    for attr in getattr(node, "attributes", []):
        name = attr.owner + "." + attr.name if attr.owner is not None else attr.name
        lines.append(inner + "@" + name + " = " + dump_expr(attr.value))
    text = getattr(node, "text", None)
    if text is not None:
        lines.append(inner + "text = " + dump_expr(text))
    for child in getattr(node, "children", []):
        lines.extend(dump_node(child, depth + 1))
    return lines


def dump_document(doc: Document) -> str:
    lines: list[str] = []
    for imp in doc.imports:
        lines.append("import " + imp.name + (".*" if imp.wildcard else ""))
    if doc.controller is not None:
        lines.append("controller " + doc.controller)
    if doc.exports:
        lines.append("export " + " ".join(doc.exports))
    if not doc.compile:
        lines.append("compile false")
    lines.extend(dump_node(doc.root))
    return "\n".join(lines)
