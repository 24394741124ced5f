"""Pytest configuration for the fx2py test suite."""

import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).parent
ROOT_DIR = TESTS_DIR.parent

# Project root for fx2py imports, tests dir for the widgets fixture module
sys.path.insert(0, str(ROOT_DIR))
sys.path.insert(0, str(TESTS_DIR))

from fx2py.oracle import PythonOracle  # noqa: E402


@pytest.fixture(scope="session")
def oracle() -> PythonOracle:
    """One introspecting oracle shared by every test, as a batch shares one."""
    return PythonOracle()
