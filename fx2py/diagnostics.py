"""Diagnostics: positioned errors and warnings collected across the pipeline.

Syntax stages raise positioned exceptions; the pipeline turns them into
Diagnostic records. Resolution records diagnostics directly so that one pass
surfaces every independent problem in a document.
"""

from __future__ import annotations

# Severities
ERROR = "error"
WARNING = "warning"
INTERNAL = "internal"

# Error kinds
MALFORMED_EXPRESSION = "MalformedExpression"
MALFORMED_DOCUMENT = "MalformedDocument"
UNKNOWN_TYPE = "UnknownType"
UNKNOWN_ATTRIBUTE = "UnknownAttribute"
UNKNOWN_PROPERTY = "UnknownProperty"
INVALID_DEFAULT_PROPERTY = "InvalidDefaultProperty"
UNKNOWN_REFERENCE = "UnknownReference"
DUPLICATE_ID = "DuplicateId"
CYCLIC_DEPENDENCY = "CyclicDependency"
AMBIGUOUS_CONTROLLER_BINDING = "AmbiguousControllerBinding"
INVALID_VALUE = "InvalidValue"
NO_CONSTRUCTOR = "NoConstructor"
INCLUDE_FAILED = "IncludeFailed"
TYPE_MISMATCH = "TypeMismatch"
GENERATION_INVARIANT_VIOLATION = "GenerationInvariantViolation"
INTERNAL_ERROR = "InternalError"


class CompileError(Exception):
    """Positioned error raised by a syntax stage or by the generator."""

    kind: str = ""

    def __init__(self, msg: str, line: int, col: int):
        self.msg: str = msg
        self.line: int = line
        self.col: int = col
        super().__init__(msg + " at line " + str(line) + " col " + str(col))


class MalformedExpression(CompileError):
    """Attribute value that does not follow the expression grammar."""

    kind = MALFORMED_EXPRESSION


class MalformedDocument(CompileError):
    """Markup that is not well formed or uses unsupported constructs."""

    kind = MALFORMED_DOCUMENT


class GenerationInvariantViolation(CompileError):
    """The generator was handed a graph the resolver should have rejected."""

    kind = GENERATION_INVARIANT_VIOLATION


class Diagnostic:
    """A single error or warning with its source position."""

    def __init__(
        self,
        severity: str,
        kind: str,
        message: str,
        file: str,
        line: int,
        col: int,
        related: list[str] | None = None,
    ):
        self.severity: str = severity
        self.kind: str = kind
        self.message: str = message
        self.file: str = file
        self.line: int = line
        self.col: int = col
        # Element names a cycle runs through, in cycle order
        self.related: list[str] = related if related is not None else []

    def is_error(self) -> bool:
        return self.severity != WARNING

    def render(self) -> str:
        return (
            self.file
            + ":"
            + str(self.line)
            + ":"
            + str(self.col)
            + ": "
            + self.severity
            + ": ["
            + self.kind
            + "] "
            + self.message
        )

    def __repr__(self) -> str:
        return (
            self.severity
            + ":"
            + str(self.line)
            + ":"
            + str(self.col)
            + ": ["
            + self.kind
            + "] "
            + self.message
        )


class Diagnostics:
    """Ordered collection of diagnostics for one document or a whole batch."""

    def __init__(self, file: str = "<string>") -> None:
        self.file: str = file
        self._items: list[Diagnostic] = []

    def add_error(
        self,
        kind: str,
        message: str,
        line: int,
        col: int,
        related: list[str] | None = None,
    ) -> None:
        self._items.append(
            Diagnostic(ERROR, kind, message, self.file, line, col, related)
        )

    def add_warning(self, kind: str, message: str, line: int, col: int) -> None:
        self._items.append(Diagnostic(WARNING, kind, message, self.file, line, col))

    def add_internal(self, kind: str, message: str, line: int, col: int) -> None:
        self._items.append(Diagnostic(INTERNAL, kind, message, self.file, line, col))

    def add_exception(self, exc: CompileError) -> None:
        severity = ERROR
        if isinstance(exc, GenerationInvariantViolation):
            severity = INTERNAL
        self._items.append(
            Diagnostic(severity, exc.kind, exc.msg, self.file, exc.line, exc.col)
        )

    def extend(self, other: Diagnostics) -> None:
        self._items.extend(other.items())

    def items(self) -> list[Diagnostic]:
        return self._items

    def errors(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity == ERROR]

    def warnings(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity == WARNING]

    def internal(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity == INTERNAL]

    def of_kind(self, kind: str) -> list[Diagnostic]:
        return [d for d in self._items if d.kind == kind]

    def ok(self) -> bool:
        for d in self._items:
            if d.is_error():
                return False
        return True

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)
