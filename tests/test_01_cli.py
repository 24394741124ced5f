"""CLI tests for the fx2py entry point.

Test cases live in 01_cli/*.tests files. Format:

    === test name
    args: --stop-at resolve hello.fxml
    ---
    exit: 0
    stderr: error: some message
    stdout-contains: "keyword"
    stdout-empty: true
    stderr-empty: true
    exit-not: 2
    ---

The CLI runs with 01_cli/docs as its working directory, so document
arguments name the fixtures there.

Assertion directives in the expected section:
    exit:             exact exit code
    exit-not:         exit code must NOT equal this
    stderr:           exact stderr content (trailing newline added)
    stderr-contains:  stderr must contain substring
    stderr-empty:     stderr must be empty
    stdout-contains:  stdout must contain substring
    stdout-empty:     stdout must be empty
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

from fx2py import cli

CLI_DIR = Path(__file__).parent / "01_cli"
DOCS_DIR = CLI_DIR / "docs"
TESTS_DIR = Path(__file__).parent
ROOT_DIR = TESTS_DIR.parent


def parse_cli_test_file(path: Path) -> list[tuple[str, dict]]:
    """Parse a .tests file into (name, spec) tuples."""
    lines = path.read_text().split("\n")
    result: list[tuple[str, dict]] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith("=== "):
            test_name = line[4:].strip()
            i += 1
            input_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                input_lines.append(lines[i])
                i += 1
            if i < len(lines) and lines[i] == "---":
                i += 1
            expected_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                expected_lines.append(lines[i])
                i += 1
            if i < len(lines) and lines[i] == "---":
                i += 1
            spec = _parse_spec(input_lines, expected_lines)
            result.append((test_name, spec))
        else:
            i += 1
    return result


def _parse_spec(input_lines: list[str], expected_lines: list[str]) -> dict:
    """Parse input + expected lines into a test spec dict."""
    spec: dict = {"args": [], "assertions": []}
    if input_lines and input_lines[0].startswith("args:"):
        args_str = input_lines[0][5:].strip()
        spec["args"] = args_str.split() if args_str else []
    for line in expected_lines:
        line = line.strip()
        if not line:
            continue
        if line.startswith("exit:"):
            spec["assertions"].append(("exit", int(line[5:].strip())))
        elif line.startswith("exit-not:"):
            spec["assertions"].append(("exit-not", int(line[9:].strip())))
        elif line.startswith("stderr:"):
            spec["assertions"].append(("stderr", line[7:].strip()))
        elif line.startswith("stderr-contains:"):
            spec["assertions"].append(("stderr-contains", line[16:].strip()))
        elif line.startswith("stderr-empty:"):
            spec["assertions"].append(("stderr-empty", None))
        elif line.startswith("stdout-contains:"):
            spec["assertions"].append(("stdout-contains", line[16:].strip()))
        elif line.startswith("stdout-empty:"):
            spec["assertions"].append(("stdout-empty", None))
    return spec


def discover_cli_tests() -> list[tuple[str, dict]]:
    """Find all CLI tests across .tests files."""
    results = []
    for test_file in sorted(CLI_DIR.glob("*.tests")):
        for name, spec in parse_cli_test_file(test_file):
            results.append((f"{test_file.stem}/{name}", spec))
    return results


def run_cli(args: list[str], cwd: Path = DOCS_DIR) -> subprocess.CompletedProcess[bytes]:
    """Run the fx2py CLI with the widgets fixture module importable."""
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join([str(ROOT_DIR), str(TESTS_DIR)])
    return subprocess.run(
        [sys.executable, "-m", "fx2py", *args],
        capture_output=True,
        cwd=cwd,
        env=env,
    )


def check_assertions(result: subprocess.CompletedProcess[bytes], assertions: list[tuple]) -> None:
    """Check all assertions against a CLI result."""
    for kind, value in assertions:
        if kind == "exit":
            assert result.returncode == value, (
                f"expected exit {value}, got {result.returncode}"
                f"\nstderr: {result.stderr.decode(errors='replace')}"
            )
        elif kind == "exit-not":
            assert result.returncode != value, f"expected exit != {value}, got {result.returncode}"
        elif kind == "stderr":
            actual = result.stderr.decode(errors="replace").rstrip("\n")
            assert actual == value, f"expected stderr {value!r}, got {actual!r}"
        elif kind == "stderr-contains":
            actual = result.stderr.decode(errors="replace")
            assert value in actual, f"expected stderr to contain {value!r}, got {actual!r}"
        elif kind == "stderr-empty":
            assert result.stderr == b"", f"expected empty stderr, got {result.stderr!r}"
        elif kind == "stdout-contains":
            actual = result.stdout.decode(errors="replace")
            assert value in actual, f"expected stdout to contain {value!r}, got {actual!r}"
        elif kind == "stdout-empty":
            assert result.stdout == b"", f"expected empty stdout, got {result.stdout[:200]!r}"


def pytest_generate_tests(metafunc):
    """Parametrize test_cli over all .tests files."""
    if "cli_spec" in metafunc.fixturenames:
        tests = discover_cli_tests()
        params = [pytest.param(spec, id=test_id) for test_id, spec in tests]
        metafunc.parametrize("cli_spec", params)


def test_cli(cli_spec: dict) -> None:
    """Run a single CLI test case from .tests file."""
    result = run_cli(cli_spec["args"])
    check_assertions(result, cli_spec["assertions"])


def test_out_dir_writes_package_modules(tmp_path: Path) -> None:
    out = tmp_path / "out"
    result = run_cli(["--out-dir", str(out), "--package", "views", "--index", "--root", ".", "hello.fxml"])
    assert result.returncode == 0, result.stderr.decode(errors="replace")
    assert result.stdout == b""
    assert (out / "views" / "__init__.py").read_text() == ""
    assert "class HelloBuilder(runtime.Builder):" in (out / "views" / "hello.py").read_text()
    assert "import views.hello" in (out / "views" / "builders.py").read_text()


def test_write_file_creates_nested_packages(tmp_path: Path) -> None:
    assert cli.write_file(str(tmp_path), "a/b/c.py", "X = 1\n") == 0
    assert (tmp_path / "a" / "__init__.py").exists()
    assert (tmp_path / "a" / "b" / "__init__.py").exists()
    assert (tmp_path / "a" / "b" / "c.py").read_text() == "X = 1\n"
    assert not (tmp_path / "__init__.py").exists()


def test_parse_args_collects_options() -> None:
    args = cli.parse_args(["--jobs", "3", "--package", "app.ui", "--index", "a.fxml", "b.fxml"])
    assert args.jobs == 3
    assert args.package == "app.ui"
    assert args.index
    assert args.inputs == ["a.fxml", "b.fxml"]
    assert args.stop_at == "generate"


def test_collect_inputs_expands_directories() -> None:
    paths = cli.collect_inputs([str(DOCS_DIR / "multi")])
    assert [Path(p).name for p in paths] == ["one.fxml", "two.fxml"]
