"""Batch compilation, naming and the builder index."""

import os
import types

import pytest

from fx2py import cli
from fx2py.compiler import (
    CompileOptions,
    class_name_for,
    compile_batch,
    index_source,
    module_name_for,
    relative_path,
)


def label_doc(text: str) -> str:
    return f'<?import widgets.*?>\n<Label text="{text}"/>\n'


@pytest.mark.parametrize(
    "path,package,expected",
    [
        ("main.fxml", "", "main"),
        ("views/main.fxml", "", "views.main"),
        ("views/main.fxml", "app", "app.views.main"),
        ("MainWindow.fxml", "", "main_window"),
        ("my-view.fxml", "", "my_view"),
        ("class.fxml", "", "class_"),
        ("2col.fxml", "", "n_2col"),
    ],
)
def test_module_name_for(path, package, expected):
    assert module_name_for(path, package) == expected


@pytest.mark.parametrize(
    "path,expected",
    [
        ("main.fxml", "MainBuilder"),
        ("views/login_form.fxml", "LoginFormBuilder"),
        ("MainWindow.fxml", "MainWindowBuilder"),
        ("my-view.fxml", "MyViewBuilder"),
    ],
)
def test_class_name_for(path, expected):
    assert class_name_for(path) == expected


def test_relative_path():
    root = os.path.join("src", "ui")
    assert relative_path(os.path.join("src", "ui", "views", "a.fxml"), root) == "views/a.fxml"
    assert relative_path(os.path.join("other", "a.fxml"), root) == "other/a.fxml"
    assert relative_path("./views/../a.fxml", None) == "a.fxml"


def test_batch_keeps_input_order(oracle):
    sources = {f"doc_{i}.fxml": label_doc(str(i)) for i in range(12)}
    sources["bad.fxml"] = "<?import widgets.*?>\n<Lable/>\n"
    results = compile_batch(sources, oracle, CompileOptions(workers=4))
    assert [r.path for r in results] == list(sources)
    failed = [r.path for r in results if not r.ok()]
    assert failed == ["bad.fxml"]
    assert results[-1].unit is None
    assert all(r.unit is not None for r in results[:-1])


def test_batch_failure_does_not_touch_siblings(oracle):
    sources = {"a.fxml": "<VBox>\n", "b.fxml": label_doc("fine")}
    a, b = compile_batch(sources, oracle)
    assert [d.kind for d in a.diagnostics] == ["MalformedDocument"]
    assert b.ok() and b.unit.class_name == "BBuilder"


def include_doc(source: str) -> str:
    return f'<?import widgets.*?>\n<VBox>\n  <fx:include source="{source}"/>\n</VBox>\n'


def test_undecodable_include_fails_only_its_includer(oracle, tmp_path):
    (tmp_path / "bad.fxml").write_bytes(b"\xff\xfe<Label/>")
    sources = {"a.fxml": include_doc("bad.fxml"), "b.fxml": label_doc("fine")}
    a, b = compile_batch(sources, oracle, CompileOptions(source_root=str(tmp_path)))
    (error,) = a.diagnostics.errors()
    assert error.kind == "IncludeFailed"
    assert "cannot decode included document 'bad.fxml'" in error.message
    assert b.ok() and b.unit is not None


def test_unexpected_failure_is_internal_to_its_document(oracle):
    def loader(path):
        raise RuntimeError("loader exploded")

    sources = {"a.fxml": include_doc("elsewhere.fxml"), "b.fxml": label_doc("fine")}
    a, b = compile_batch(sources, oracle, CompileOptions(loader=loader, workers=2))
    (internal,) = a.diagnostics.internal()
    assert internal.kind == "InternalError"
    assert internal.message == "RuntimeError: loader exploded"
    assert a.unit is None and not a.ok()
    assert b.ok() and b.unit is not None


def test_batch_paths_relative_to_source_root(oracle):
    root = os.path.join("src", "ui")
    sources = {os.path.join(root, "views", "main.fxml"): label_doc("x")}
    (result,) = compile_batch(sources, oracle, CompileOptions(source_root=root, package="app"))
    assert result.path == "views/main.fxml"
    assert result.unit.module_name == "app.views.main"
    assert result.unit.filename() == "app/views/main.py"


def test_index_source(oracle):
    sources = {"b.fxml": label_doc("b"), "a/c.fxml": label_doc("c"), "bad.fxml": "<Lable/>"}
    results = compile_batch(sources, oracle, CompileOptions(package="app"))
    source = index_source(results, "app")
    lines = source.split("\n")
    assert lines[0] == '"""Builder index for app. Generated; do not edit."""'
    assert "import app.a.c" in lines
    assert "import app.b" in lines
    assert '    "a/c.fxml": app.a.c.CBuilder,' in lines
    assert '    "b.fxml": app.b.BBuilder,' in lines
    assert "bad.fxml" not in source
    assert lines[-2] == "loader = runtime.Loader(BUILDERS)"


def test_index_loads_builders(oracle, tmp_path, monkeypatch):
    results = compile_batch({"hello.fxml": label_doc("hi")}, oracle, CompileOptions(package="idx_app"))
    for r in results:
        cli.write_file(str(tmp_path), r.unit.filename(), r.unit.source)
    monkeypatch.syspath_prepend(str(tmp_path))
    module = types.ModuleType("idx_index")
    exec(compile(index_source(results, "idx_app"), "builders.py", "exec"), module.__dict__)
    builder = module.loader.load("hello.fxml")
    assert builder.root.text == "hi"
    assert module.loader.locations() == ["hello.fxml"]


def test_empty_index():
    source = index_source([])
    assert source.startswith('"""Builder index. Generated; do not edit."""')
    assert "BUILDERS = {\n}" in source
