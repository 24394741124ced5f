"""fx2py public API: compile FXML-style markup to Python builder modules."""

from __future__ import annotations

from .compiler import (
    CompiledUnit,
    CompileOptions,
    CompileResult,
    compile_batch,
    compile_document,
    index_source,
)
from .diagnostics import Diagnostic, Diagnostics
from .oracle import CatalogOracle, PythonOracle, TypeOracle

__version__ = "0.1.0"
