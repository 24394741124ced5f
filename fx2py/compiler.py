"""Compilation pipeline: markup text -> generated builder module.

    parse -> resolve -> generate

compile_document runs one document. compile_batch runs many on a thread
pool; a document that fails contributes its diagnostics and no unit, and
the rest of the batch is unaffected. The oracle is the only object the
workers share and it is only read.
"""

from __future__ import annotations

import os
import posixpath
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from .backend import emit_index, emit_python
from .backend.util import to_identifier, to_pascal
from .diagnostics import (
    CYCLIC_DEPENDENCY,
    INCLUDE_FAILED,
    INTERNAL_ERROR,
    CompileError,
    Diagnostics,
)
from .frontend import parse
from .frontend.ast import Document
from .ir import ResolvedDocument
from .oracle import TypeOracle
from .resolve import IncludeError, IncludeTarget, resolve

STAGES: list[str] = ["parse", "resolve", "generate"]

Loader = Callable[[str], str]


class CompileOptions:
    """Settings shared by every document in a batch."""

    def __init__(
        self,
        package: str = "",
        source_root: str | None = None,
        resources: dict[str, str] | None = None,
        workers: int | None = None,
        loader: Loader | None = None,
        stop_at: str = "generate",
    ):
        self.package: str = package
        self.source_root: str | None = source_root
        # Compile-time bundle: when set, %key lookups are checked against it
        self.resources: dict[str, str] | None = resources
        self.workers: int | None = workers
        self.loader: Loader | None = loader
        self.stop_at: str = stop_at


class CompiledUnit:
    """Generated source for one document and what it exposes."""

    def __init__(
        self,
        path: str,
        module_name: str,
        class_name: str,
        source: str,
        ids: dict[str, str],
        root_type: str,
        controller_type: str | None,
        exports: list[str],
    ):
        self.path: str = path
        self.module_name: str = module_name
        self.class_name: str = class_name
        self.source: str = source
        self.ids: dict[str, str] = ids  # fx:id -> type name
        self.root_type: str = root_type
        self.controller_type: str | None = controller_type
        self.exports: list[str] = exports

    def filename(self) -> str:
        """Path of the module relative to an output directory."""
        return self.module_name.replace(".", "/") + ".py"

    def __repr__(self) -> str:
        return "CompiledUnit(" + self.path + " -> " + self.module_name + "." + self.class_name + ")"


class CompileResult:
    """Outcome of one document: a unit, or None with the reasons in diagnostics."""

    def __init__(self, path: str, diagnostics: Diagnostics):
        self.path: str = path
        self.diagnostics: Diagnostics = diagnostics
        self.unit: CompiledUnit | None = None
        self.document: Document | None = None
        self.resolved: ResolvedDocument | None = None
        self.skipped: bool = False  # <?compile false?>

    def ok(self) -> bool:
        return self.diagnostics.ok()

    def __repr__(self) -> str:
        status = "ok" if self.ok() else "failed"
        return "CompileResult(" + self.path + ", " + status + ")"


def relative_path(path: str, source_root: str | None) -> str:
    """Document path as reported: relative to source_root, '/'-separated."""
    if source_root is not None and os.path.isabs(path) == os.path.isabs(source_root):
        rel = os.path.relpath(path, source_root)
        if not rel.startswith(os.pardir):
            path = rel
    return posixpath.normpath(path.replace(os.sep, "/"))


def module_name_for(path: str, package: str = "") -> str:
    stem = posixpath.splitext(path)[0]
    parts = [to_identifier(p) for p in stem.split("/") if p not in ("", ".")]
    if package:
        parts.insert(0, package)
    return ".".join(parts)


def class_name_for(path: str) -> str:
    stem = posixpath.splitext(posixpath.basename(path))[0]
    return to_pascal(to_identifier(stem)) + "Builder"


class Compiler:
    """Compiles documents and answers include lookups for one batch."""

    def __init__(self, oracle: TypeOracle, options: CompileOptions, sources: dict[str, str] | None = None):
        self.oracle: TypeOracle = oracle
        self.options: CompileOptions = options
        self.sources: dict[str, str] = sources if sources is not None else {}
        self._includes: dict[str, IncludeTarget | IncludeError] = {}
        self._lock = threading.Lock()

    def read(self, path: str) -> str:
        """Text of a document by its relative path."""
        if path in self.sources:
            return self.sources[path]
        if self.options.loader is not None:
            return self.options.loader(path)
        root = self.options.source_root if self.options.source_root is not None else "."
        with open(os.path.join(root, path), encoding="utf-8") as f:
            return f.read()

    def compile(self, path: str, text: str) -> CompileResult:
        rel = relative_path(path, self.options.source_root)
        return self._compile(rel, text, [rel], self.options.stop_at)

    def _compile(self, path: str, text: str, stack: list[str], stop_at: str) -> CompileResult:
        result = CompileResult(path, Diagnostics(path))
        diags = result.diagnostics
        try:
            doc = parse(text, path)
        except CompileError as e:
            diags.add_exception(e)
            return result
        result.document = doc
        for e in doc.expression_errors:
            diags.add_exception(e)
        if not doc.compile:
            result.skipped = True
            return result
        if stop_at == "parse":
            return result
        module_name = module_name_for(path, self.options.package)
        class_name = class_name_for(path)
        reserved = {"fx2py"}
        if self.options.package:
            reserved.add(self.options.package.split(".", 1)[0])
        resolved = resolve(
            doc,
            self.oracle,
            diags,
            module_name,
            class_name,
            self.options.resources,
            lambda target: self.include(target, stack),
            reserved,
        )
        result.resolved = resolved
        if resolved is None or not diags.ok() or stop_at == "resolve":
            return result
        try:
            source = emit_python(resolved)
        except CompileError as e:
            diags.add_exception(e)
            return result
        ids = {fx_id: resolved.elements[var].type_name for fx_id, var in resolved.registry.items()}
        controller_type = resolved.controller.type_name if resolved.controller is not None else None
        result.unit = CompiledUnit(
            path,
            module_name,
            class_name,
            source,
            ids,
            resolved.root_type,
            controller_type,
            resolved.exports,
        )
        return result

    def include(self, path: str, stack: list[str]) -> IncludeTarget:
        """Resolve an included document, raising IncludeError when it fails."""
        if path in stack:
            raise IncludeError(CYCLIC_DEPENDENCY, "include cycle: " + " -> ".join(stack + [path]))
        with self._lock:
            cached = self._includes.get(path)
        if cached is None:
            cached = self._resolve_include(path, stack)
            with self._lock:
                self._includes[path] = cached
        if isinstance(cached, IncludeError):
            raise cached
        return cached

    def _resolve_include(self, path: str, stack: list[str]) -> IncludeTarget | IncludeError:
        try:
            text = self.read(path)
        except OSError as e:
            return IncludeError(INCLUDE_FAILED, "cannot read included document '" + path + "': " + str(e.strerror))
        except ValueError as e:
            return IncludeError(INCLUDE_FAILED, "cannot decode included document '" + path + "': " + str(e))
        sub = self._compile(path, text, stack + [path], "resolve")
        if not sub.ok():
            cycle = sub.diagnostics.of_kind(CYCLIC_DEPENDENCY)
            if cycle and cycle[0].message.startswith("include cycle"):
                return IncludeError(CYCLIC_DEPENDENCY, cycle[0].message)
            first = sub.diagnostics.errors()[0] if sub.diagnostics.errors() else None
            detail = ": " + first.render() if first is not None else ""
            return IncludeError(INCLUDE_FAILED, "included document '" + path + "' has errors" + detail)
        if sub.skipped or sub.resolved is None:
            return IncludeError(INCLUDE_FAILED, "included document '" + path + "' is not compiled")
        resolved = sub.resolved
        controller_type = resolved.controller.type_name if resolved.controller is not None else None
        return IncludeTarget(
            path,
            resolved.module_name,
            resolved.class_name,
            resolved.root_type,
            controller_type,
            resolved.exports,
        )


def compile_document(
    path: str, text: str, oracle: TypeOracle, options: CompileOptions | None = None
) -> CompileResult:
    """Compile one document. Includes are read through options.loader."""
    if options is None:
        options = CompileOptions()
    return Compiler(oracle, options).compile(path, text)


def compile_batch(
    sources: dict[str, str], oracle: TypeOracle, options: CompileOptions | None = None
) -> list[CompileResult]:
    """Compile many documents in parallel. Results come back in input order.

    Includes are looked up among the batch's own sources first.
    """
    if options is None:
        options = CompileOptions()
    batch = {relative_path(p, options.source_root): text for p, text in sources.items()}
    compiler = Compiler(oracle, options, batch)
    paths = list(sources)
    with ThreadPoolExecutor(max_workers=options.workers) as pool:
        return list(pool.map(lambda p: compile_member(compiler, p, sources[p]), paths))


def compile_member(compiler: Compiler, path: str, text: str) -> CompileResult:
    """Compile one batch document; an unexpected failure stays with that document."""
    try:
        return compiler.compile(path, text)
    except Exception as e:
        rel = relative_path(path, compiler.options.source_root)
        result = CompileResult(rel, Diagnostics(rel))
        result.diagnostics.add_internal(INTERNAL_ERROR, type(e).__name__ + ": " + str(e), 1, 1)
        return result


def index_source(results: list[CompileResult], package: str = "") -> str:
    """Builder index over the units a batch produced."""
    units = [r.unit for r in results if r.unit is not None]
    return emit_index(units, package)
