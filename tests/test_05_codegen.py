"""Generated builder tests: compile a document, run the module, inspect the objects."""

import importlib
import types

import pytest

import widgets
from fx2py import cli, runtime
from fx2py.backend import emit_python
from fx2py.compiler import CompileOptions, compile_batch, compile_document
from fx2py.diagnostics import GenerationInvariantViolation

HELLO = """\
<?import widgets.*?>
<VBox spacing="4">
  <Label fx:id="lbl" text="Hello"/>
  <Button fx:id="btn" text="Save"/>
</VBox>
"""


def compile_ok(src: str, oracle, path: str = "main.fxml", **kwargs):
    result = compile_document(path, src, oracle, CompileOptions(**kwargs))
    assert result.ok(), "\n".join(d.render() for d in result.diagnostics)
    assert result.unit is not None
    return result.unit


def load(unit) -> types.ModuleType:
    module = types.ModuleType(unit.module_name)
    exec(compile(unit.source, unit.path, "exec"), module.__dict__)
    return module


def instantiate(unit) -> runtime.Builder:
    return getattr(load(unit), unit.class_name)()


def install(results, tmp_path, monkeypatch) -> None:
    """Write every unit under tmp_path and make it importable."""
    for result in results:
        assert result.ok(), "\n".join(d.render() for d in result.diagnostics)
        cli.write_file(str(tmp_path), result.unit.filename(), result.unit.source)
    monkeypatch.syspath_prepend(str(tmp_path))
    importlib.invalidate_caches()


# ── Structure ────────────────────────────────────────────────


def test_builds_tree_and_namespace(oracle):
    unit = compile_ok(HELLO, oracle)
    builder = instantiate(unit)
    root = builder.build()
    assert isinstance(root, widgets.VBox)
    assert root.spacing == 4.0
    lbl, btn = root.children
    assert isinstance(btn, widgets.Button)
    assert (lbl.text, lbl.id) == ("Hello", "lbl")
    assert builder.namespace == {"lbl": lbl, "btn": btn}
    assert builder.root is root
    assert unit.ids == {"lbl": "widgets.Label", "btn": "widgets.Button"}
    assert (unit.module_name, unit.class_name) == ("main", "MainBuilder")


def test_module_header(oracle):
    unit = compile_ok(HELLO, oracle, path="views/main.fxml")
    lines = unit.source.split("\n")
    assert lines[0] == '"""Generated from views/main.fxml. Do not edit."""'
    assert "from fx2py import runtime" in lines
    assert "import widgets" in lines
    assert '    LOCATION = "views/main.fxml"' in lines
    assert unit.filename() == "views/main.py"


def test_each_build_makes_fresh_objects(oracle):
    cls = getattr(load(compile_ok(HELLO, oracle)), "MainBuilder")
    assert cls().build() is not cls().build()


def test_forward_reference_is_read_after_construction(oracle):
    src = """\
<?import widgets.*?>
<VBox>
  <Label fx:id="first" text="$second.text"/>
  <Label fx:id="second" text="x"/>
</VBox>
"""
    root = instantiate(compile_ok(src, oracle)).build()
    first, second = root.children
    assert first.text == "x"
    second.text = "y"
    assert first.text == "x"


def test_id_named_like_an_import_root(oracle):
    src = '<?import widgets.*?>\n<VBox>\n  <Label fx:id="widgets" text="w"/>\n</VBox>\n'
    unit = compile_ok(src, oracle)
    assert "widgets_1 = widgets.Label()" in unit.source
    builder = instantiate(unit)
    builder.build()
    assert builder.namespace["widgets"].text == "w"


# ── Bindings ─────────────────────────────────────────────────


def test_bindings_follow_their_sources(oracle):
    src = """\
<?import widgets.*?>
<VBox>
  <Label fx:id="src" text="a"/>
  <Label fx:id="copy" text="${src.text}"/>
  <Label fx:id="flag" visible="${src.text != ''}"/>
  <Label fx:id="sum" text="${'n=' + src.text}"/>
</VBox>
"""
    builder = instantiate(compile_ok(src, oracle))
    builder.build()
    ns = builder.namespace
    assert (ns["copy"].text, ns["flag"].visible, ns["sum"].text) == ("a", True, "n=a")
    ns["src"].text = ""
    assert (ns["copy"].text, ns["flag"].visible, ns["sum"].text) == ("", False, "n=")


def test_binding_to_a_later_element(oracle):
    src = """\
<?import widgets.*?>
<VBox>
  <Label fx:id="a" text="${b.text}"/>
  <Label fx:id="b" text="late"/>
</VBox>
"""
    builder = instantiate(compile_ok(src, oracle))
    builder.build()
    assert builder.namespace["a"].text == "late"
    assert runtime.property_of(builder.namespace["a"], "text").is_bound()


# ── Controller ───────────────────────────────────────────────

CONTROLLED = """\
<?import widgets.*?>
<VBox fx:controller="widgets.MainController" onChildrenChange="#children_changed">
  <Label fx:id="lbl" text="a" onTextChange="#text_changed"/>
  <Button fx:id="btn" text="Save" onAction="#save"/>
  <Button fx:id="clear" onAction="#reset"/>
</VBox>
"""


def test_controller_fields_handlers_and_listeners(oracle):
    unit = compile_ok(CONTROLLED, oracle)
    assert "btn.on_action = controller.save" in unit.source
    assert "clear.on_action = runtime.ignore_event(controller.reset)" in unit.source
    builder = instantiate(unit)
    root = builder.build()
    c = builder.controller
    assert isinstance(c, widgets.MainController)
    assert c.initialized
    assert c.lbl is root.children[0]
    assert c.btn is root.children[1]
    runtime.fire(c.btn, "on_action")
    assert c.saved == 1
    assert c.events[0].source is c.btn
    runtime.fire(builder.namespace["clear"], "on_action")
    assert c.saved == 0
    assert c.changes == []
    c.lbl.text = "b"
    assert c.changes == [("a", "b")]
    assert c.list_changes == []
    root.children.append(widgets.Label())
    assert len(c.list_changes) == 1


def test_supplied_controller_is_used(oracle):
    builder = instantiate(compile_ok(CONTROLLED, oracle))
    mine = widgets.MainController()
    root = builder.build(controller=mine)
    assert builder.controller is mine
    assert mine.lbl is root.children[0]


def test_controller_factory_creates_the_controller(oracle):
    made = []

    def factory(cls):
        made.append(cls)
        return cls()

    builder = instantiate(compile_ok(CONTROLLED, oracle))
    builder.build(controller_factory=factory)
    assert made == [widgets.MainController]
    assert isinstance(builder.controller, widgets.MainController)


def test_handler_from_expression(oracle):
    src = '<?import widgets.*?>\n<Button fx:controller="widgets.MainController" onAction="$controller.save"/>\n'
    builder = instantiate(compile_ok(src, oracle))
    btn = builder.build()
    runtime.fire(btn, "on_action")
    assert builder.controller.saved == 1


# ── Values ───────────────────────────────────────────────────


def test_literal_coercion(oracle):
    src = """\
<?import widgets.*?>
<VBox padding="1, 2, 3, 4">
  <Label fx:id="a" alignment="center" font_size="14" max_lines="3" style_class="title, bold" VBox.margin="8"/>
</VBox>
"""
    root = instantiate(compile_ok(src, oracle)).build()
    assert root.padding == widgets.Insets(1.0, 2.0, 3.0, 4.0)
    (a,) = root.children
    assert a.alignment is widgets.Alignment.CENTER
    assert a.font_size == 14.0
    assert a.max_lines == 3
    assert list(a.style_class) == ["title", "bold"]
    assert widgets.VBox.get_margin(a) == 8


def test_construction_strategies(oracle):
    src = """\
<?import widgets.*?>
<VBox>
  <fx:define>
    <Double fx:id="gap" fx:value="2.5"/>
    <Settings fx:id="settings" theme="dark"/>
  </fx:define>
  <padding>
    <Insets fx:constant="EMPTY"/>
  </padding>
  <Label fx:id="white">
    <fill><Color fx:factory="white"/></fill>
  </Label>
  <Label fx:id="rgb">
    <fill><Color r="1" g="2" b="3"/></fill>
  </Label>
  <Rectangle fx:id="rect" width="10" height="20"/>
</VBox>
"""
    unit = compile_ok(src, oracle)
    assert "rect_builder = widgets.RectangleBuilder()" in unit.source
    builder = instantiate(unit)
    root = builder.build()
    ns = builder.namespace
    assert ns["gap"] == 2.5
    assert ns["settings"] == {"theme": "dark"}
    assert root.padding is widgets.Insets.EMPTY
    assert (ns["white"].fill.r, ns["white"].fill.g, ns["white"].fill.b) == (255, 255, 255)
    assert (ns["rgb"].fill.r, ns["rgb"].fill.g, ns["rgb"].fill.b) == (1, 2, 3)
    assert (ns["rect"].width, ns["rect"].height) == (10.0, 20.0)
    assert ns["rect"].id == "rect"
    assert root.children == [ns["white"], ns["rgb"], ns["rect"]]


def test_element_text_uses_single_argument_constructor(oracle):
    src = '<?import widgets.*?>\n<VBox spacing="$gap">\n  <fx:define>\n    <Double fx:id="gap">3</Double>\n  </fx:define>\n</VBox>\n'
    root = instantiate(compile_ok(src, oracle)).build()
    assert root.spacing == 3.0


def test_define_reference_and_copy(oracle):
    src = """\
<?import widgets.*?>
<VBox>
  <fx:define>
    <Insets fx:id="pad" top="5"/>
  </fx:define>
  <padding>
    <fx:reference source="pad"/>
  </padding>
  <Label fx:id="orig" text="x"/>
  <fx:copy fx:id="dup" source="orig"/>
</VBox>
"""
    builder = instantiate(compile_ok(src, oracle))
    root = builder.build()
    ns = builder.namespace
    assert root.padding is ns["pad"]
    assert ns["pad"] == widgets.Insets(5.0, 0.0, 0.0, 0.0)
    orig, dup = root.children
    assert orig is ns["orig"]
    assert dup is ns["dup"]
    assert dup is not orig
    assert dup.text == "x"
    dup.text = "y"
    assert orig.text == "x"


def test_location_is_relative_to_the_document(oracle):
    src = '<?import widgets.*?>\n<ImageView url="@icons/app.png"/>\n'
    view = instantiate(compile_ok(src, oracle, path="views/main.fxml")).build()
    assert view.url == "views/icons/app.png"


def test_resources_are_looked_up_at_build_time(oracle):
    src = '<?import widgets.*?>\n<Label text="%greeting" max_lines="%lines"/>\n'
    builder = instantiate(compile_ok(src, oracle))
    label = builder.build(resources={"greeting": "Hi", "lines": "4"})
    assert (label.text, label.max_lines) == ("Hi", 4)
    with pytest.raises(runtime.MissingResourceError):
        builder.build()


def test_expression_value_is_coerced(oracle):
    src = '<?import widgets.*?>\n<VBox>\n  <Label fx:id="count" text="5"/>\n  <Label max_lines="$count.text"/>\n</VBox>\n'
    result = compile_document("main.fxml", src, oracle)
    assert [d.kind for d in result.diagnostics.warnings()] == ["TypeMismatch"]
    assert "runtime.coerce(count.text, int)" in result.unit.source
    root = instantiate(result.unit).build()
    assert root.children[1].max_lines == 5


# ── Roots ────────────────────────────────────────────────────


def test_fx_root_uses_the_supplied_object(oracle):
    src = '<?import widgets.*?>\n<fx:root type="VBox" spacing="2">\n  <Label text="in"/>\n</fx:root>\n'
    builder = instantiate(compile_ok(src, oracle))
    mine = widgets.VBox()
    assert builder.build(root=mine) is mine
    assert mine.spacing == 2.0
    assert mine.children[0].text == "in"
    with pytest.raises(RuntimeError):
        builder.build()
    with pytest.raises(TypeError):
        builder.build(root=widgets.Label())


# ── Includes ─────────────────────────────────────────────────

HEADER = """\
<?import widgets.*?>
<?export title?>
<VBox fx:controller="widgets.HeaderController">
  <Label fx:id="title" text="Header"/>
  <Label fx:id="subtitle" text="Sub"/>
</VBox>
"""

MAIN_WITH_HEADER = """\
<?import widgets.*?>
<VBox fx:controller="widgets.MainController">
  <fx:include fx:id="header" source="header.fxml"/>
  <Label fx:id="lbl"/>
</VBox>
"""


def test_include_merges_namespace_and_controller(oracle, tmp_path, monkeypatch):
    sources = {"main.fxml": MAIN_WITH_HEADER, "header.fxml": HEADER}
    results = compile_batch(sources, oracle, CompileOptions(package="incl_ns"))
    install(results, tmp_path, monkeypatch)
    module = importlib.import_module("incl_ns.main")
    builder = module.MainBuilder()
    root = builder.build()
    ns = builder.namespace
    header = root.children[0]
    assert ns["header"] is header
    assert ns["title"] is header.children[0]
    assert ns["header.subtitle"].text == "Sub"
    assert "subtitle" not in ns
    c = builder.controller
    assert isinstance(c.header_controller, widgets.HeaderController)
    assert c.header_controller.initialized
    assert c.header_controller.title is ns["title"]
    assert c.lbl is root.children[1]


def test_include_in_subdirectory(oracle, tmp_path, monkeypatch):
    sources = {
        "app/main.fxml": '<?import widgets.*?>\n<VBox>\n  <fx:include source="parts/item.fxml"/>\n</VBox>\n',
        "app/parts/item.fxml": '<?import widgets.*?>\n<ImageView url="@icon.png"/>\n',
    }
    results = compile_batch(sources, oracle, CompileOptions(package="incl_dir"))
    install(results, tmp_path, monkeypatch)
    module = importlib.import_module("incl_dir.app.main")
    root = module.MainBuilder().build()
    assert root.children[0].url == "app/parts/icon.png"


def test_include_cycle_fails_both_documents(oracle):
    sources = {
        "a.fxml": '<?import widgets.*?>\n<VBox>\n  <fx:include source="b.fxml"/>\n</VBox>\n',
        "b.fxml": '<?import widgets.*?>\n<VBox>\n  <fx:include source="a.fxml"/>\n</VBox>\n',
    }
    for result in compile_batch(sources, oracle):
        assert result.unit is None
        (cycle,) = result.diagnostics.of_kind("CyclicDependency")
        assert cycle.message.startswith("include cycle: ")


# ── Skipping and invariants ──────────────────────────────────


def test_compile_false_skips_generation(oracle):
    result = compile_document("main.fxml", "<?compile false?>\n<Lable/>\n", oracle)
    assert result.skipped
    assert result.ok()
    assert result.unit is None


def test_generator_rejects_an_order_that_breaks_dependencies(oracle):
    result = compile_document("main.fxml", HELLO, oracle, CompileOptions(stop_at="resolve"))
    resolved = result.resolved
    resolved.order.reverse()
    with pytest.raises(GenerationInvariantViolation):
        emit_python(resolved)


def test_generator_rejects_unknown_elements(oracle):
    result = compile_document("main.fxml", HELLO, oracle, CompileOptions(stop_at="resolve"))
    resolved = result.resolved
    resolved.order.insert(0, "ghost")
    with pytest.raises(GenerationInvariantViolation) as info:
        emit_python(resolved)
    assert info.value.msg == "construction order names unknown element ghost"
