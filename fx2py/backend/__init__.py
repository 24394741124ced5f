"""Backend package: resolved graph to Python source."""

from .python import emit_index, emit_python
