"""Runtime support library tests."""

import math

import pytest

import widgets
from fx2py import runtime

# ── Coercion ─────────────────────────────────────────────────


@pytest.mark.parametrize(
    "value,target,expected",
    [
        ("42", int, 42),
        ("-7", int, -7),
        (3.9, int, 3),
        ("2.5", float, 2.5),
        ("1e3", float, 1000.0),
        (4, float, 4.0),
        ("TRUE", bool, True),
        ("false", bool, False),
        (True, str, "true"),
        (12, str, "12"),
        ("center", widgets.Alignment, widgets.Alignment.CENTER),
        ("1, 2, 3, 4", widgets.Insets, widgets.Insets(1.0, 2.0, 3.0, 4.0)),
        (None, int, None),
        ("x", object, "x"),
    ],
)
def test_coerce(value, target, expected):
    assert runtime.coerce(value, target) == expected


def test_coerce_keeps_matching_values():
    insets = widgets.Insets()
    assert runtime.coerce(insets, widgets.Insets) is insets


def test_coerce_bool_to_int_converts():
    result = runtime.coerce(True, int)
    assert result == 1 and type(result) is int


def test_coerce_special_floats():
    assert runtime.coerce("Infinity", float) == math.inf
    assert math.isnan(runtime.coerce("NaN", float))


@pytest.mark.parametrize(
    "value,target,error",
    [
        ("4.5", int, ValueError),
        ("yes", bool, ValueError),
        ("abc", float, ValueError),
        ("1e999", float, ValueError),
        ("-1e999", float, ValueError),
        ("middle", widgets.Alignment, ValueError),
        (3, widgets.Color, TypeError),
    ],
)
def test_coerce_rejects(value, target, error):
    with pytest.raises(error):
        runtime.coerce(value, target)


def test_split_list_blank_is_empty():
    assert runtime.split_list("  ") == []
    assert runtime.split_list("a, b ,c") == ["a", "b", "c"]


def test_match_enum_member():
    members = ["LEFT", "left", "RIGHT"]
    assert runtime.match_enum_member(members, "left") == "left"
    assert runtime.match_enum_member(members, "right") == "RIGHT"
    assert runtime.match_enum_member(members, "Left") is None


# ── Observables ──────────────────────────────────────────────


def test_property_notifies_on_change_only():
    label = widgets.Label()
    seen = []
    runtime.property_of(label, "text").add_listener(lambda obs, old, new: seen.append((old, new)))
    label.text = "a"
    label.text = "a"
    label.text = "b"
    assert seen == [("", "a"), ("a", "b")]


def test_property_is_per_instance():
    a, b = widgets.Label(), widgets.Label()
    a.text = "x"
    assert b.text == ""
    assert runtime.property_of(a, "text") is runtime.property_of(a, "text")
    assert runtime.property_of(a, "text") is not runtime.property_of(b, "text")


def test_property_of_rejects_plain_attributes():
    with pytest.raises(AttributeError):
        runtime.property_of(widgets.Label(), "tooltip")


def test_bound_property_follows_and_refuses_set():
    src, dst = widgets.Label(), widgets.Label()
    src.text = "a"
    target = runtime.property_of(dst, "text")
    runtime.bind(target, runtime.select(src, "text"))
    assert dst.text == "a"
    src.text = "b"
    assert dst.text == "b"
    with pytest.raises(RuntimeError):
        dst.text = "c"
    target.unbind()
    src.text = "z"
    assert dst.text == "b"
    dst.text = "c"
    assert dst.text == "c"


def test_bind_to_constant():
    label = widgets.Label()
    runtime.bind(runtime.property_of(label, "text"), runtime.constant("fixed"))
    assert label.text == "fixed"
    assert runtime.property_of(label, "text").is_bound()


def test_selection_retargets_when_source_changes():
    holder, first, second = widgets.Label(), widgets.Label(), widgets.Label()
    first.text = "one"
    second.text = "two"
    holder_fill = runtime.property_of(holder, "fill")
    holder_fill.set(first)
    chain = runtime.select(runtime.select(holder, "fill"), "text")
    assert chain.get() == "one"
    holder.fill = second
    assert chain.get() == "two"
    first.text = "changed"
    assert chain.get() == "two"
    second.text = "again"
    assert chain.get() == "again"


def test_selection_through_none_is_none():
    holder = widgets.Label()
    assert runtime.select(runtime.select(holder, "fill"), "r").get() is None


def test_combination_recomputes():
    a, b = widgets.Label(), widgets.Label()
    a.max_lines = 2
    b.max_lines = 3
    total = runtime.combine(runtime.multiply, runtime.select(a, "max_lines"), runtime.select(b, "max_lines"))
    assert total.get() == 6
    a.max_lines = 5
    assert total.get() == 15


def test_add_concatenates_strings():
    assert runtime.add("n=", 3) == "n=3"
    assert runtime.add(True, "!") == "true!"
    assert runtime.add(2, 3) == 5


def test_value_at_follows_list_changes():
    box = widgets.VBox()
    first = runtime.value_at(runtime.select(box, "children"), 0)
    assert first.get() is None
    label = widgets.Label()
    box.children.append(label)
    assert first.get() is label


def test_make_map_pairs():
    assert runtime.make_map("a", 1, "b", 2) == {"a": 1, "b": 2}


def test_observable_list_reports_changes():
    items = runtime.ObservableList([1, 2])
    changes = []
    items.add_listener(changes.append)
    items.append(3)
    items.extend([4, 5])
    items.remove(1)
    items[0] = 9
    del items[0:2]
    items.clear()
    items.extend([])
    assert [(c.added, c.removed) for c in changes] == [
        ([3], []),
        ([4, 5], []),
        ([], [1]),
        ([9], [2]),
        ([], [9, 3]),
        ([], [4, 5]),
    ]
    assert changes[0].source is items


def test_observable_list_property_is_read_only():
    box = widgets.VBox()
    with pytest.raises(AttributeError):
        box.children = []


# ── Events ───────────────────────────────────────────────────


def test_fire_passes_event():
    btn = widgets.Button()
    got = []
    btn.on_action = got.append
    runtime.fire(btn, "on_action")
    assert got[0].source is btn
    assert got[0].name == "on_action"


def test_fire_without_handler_is_noop():
    assert runtime.fire(widgets.Button(), "on_action") is None


def test_event_slot_requires_callable():
    with pytest.raises(TypeError):
        widgets.Button().on_action = "save"


def test_handler_adapters():
    calls = []
    runtime.ignore_event(lambda: calls.append("event"))(object())
    runtime.ignore_change(lambda: calls.append("change"))(None, 1, 2)
    assert calls == ["event", "change"]


def test_as_handler_accepts_handle_objects():
    class Handler:
        def handle(self, evt):
            return "handled"

    assert runtime.as_handler(Handler())(None) == "handled"
    with pytest.raises(TypeError):
        runtime.as_handler(42)


# ── Resources and locations ──────────────────────────────────


def test_parse_properties():
    text = "# comment\n! also\n\ngreeting = Hello\nfarewell: Bye\nempty\nurl=a=b\n"
    assert runtime.parse_properties(text) == {
        "greeting": "Hello",
        "farewell": "Bye",
        "empty": "",
        "url": "a=b",
    }


def test_resource_bundle(tmp_path):
    path = tmp_path / "strings.properties"
    path.write_text("greeting = Hello\n", encoding="utf-8")
    bundle = runtime.ResourceBundle.load(str(path))
    assert bundle == {"greeting": "Hello"}
    assert runtime.get_string(bundle, "greeting") == "Hello"
    with pytest.raises(runtime.MissingResourceError):
        bundle["farewell"]


def test_get_string_raises_missing_resource():
    assert runtime.get_string({"k": "v"}, "k") == "v"
    with pytest.raises(runtime.MissingResourceError):
        runtime.get_string({}, "k")
    with pytest.raises(KeyError):
        runtime.get_string(None, "k")


@pytest.mark.parametrize(
    "document,path,expected",
    [
        ("main.fxml", "icon.png", "icon.png"),
        ("views/main.fxml", "icons/a.png", "views/icons/a.png"),
        ("views/main.fxml", "../shared/a.png", "shared/a.png"),
        ("views/main.fxml", "/top.png", "top.png"),
    ],
)
def test_resolve_location(document, path, expected):
    assert runtime.resolve_location(document, path) == expected


def test_copy_value_detaches_observables():
    box = widgets.VBox()
    box.spacing = 3.0
    box.children.append(widgets.Label())
    dup = runtime.copy_value(box)
    dup.spacing = 7.0
    dup.children.append(widgets.Label())
    assert box.spacing == 3.0
    assert len(box.children) == 1
    assert len(dup.children) == 2
    assert runtime.copy_value(5) == 5


# ── Builders and loader ──────────────────────────────────────


class PanelBuilder(runtime.Builder):
    CONTROLLER_TYPE = widgets.HeaderController
    EXPORTS = ("title",)
    LOCATION = "panel.fxml"

    def build(self, controller=None, root=None, resources=None, controller_factory=None):
        controller = self.select_controller(controller, controller_factory)
        title = widgets.Label()
        self.namespace["title"] = title
        self.namespace["body"] = widgets.Label()
        controller.title = title
        self.root = title
        return title


def test_select_controller_order():
    builder = PanelBuilder()
    mine = widgets.HeaderController()
    assert builder.select_controller(mine, lambda cls: None) is mine
    made = builder.select_controller(None, lambda cls: cls())
    assert isinstance(made, widgets.HeaderController)
    assert isinstance(builder.select_controller(None, None), widgets.HeaderController)
    assert builder.controller is not mine


def test_builder_without_controller_type():
    builder = runtime.Builder()
    assert builder.select_controller(None, None) is None
    with pytest.raises(NotImplementedError):
        builder.build()


def test_merge_prefixes_unexported_ids():
    sub = PanelBuilder()
    sub.build()
    parent = runtime.Builder()
    parent.merge(sub, "panel")
    assert set(parent.namespace) == {"title", "panel.body"}


def test_builder_location_override():
    assert PanelBuilder().location == "panel.fxml"
    assert PanelBuilder("other/panel.fxml").location == "other/panel.fxml"


def test_loader():
    loader = runtime.Loader({"panel.fxml": PanelBuilder})
    assert loader.locations() == ["panel.fxml"]
    builder = loader.load("panel.fxml")
    assert isinstance(builder, PanelBuilder)
    assert builder.controller.title is builder.root
    with pytest.raises(LookupError):
        loader.builder_for("missing.fxml")
    loader.register("again.fxml", PanelBuilder)
    assert loader.locations() == ["again.fxml", "panel.fxml"]


def test_require_root():
    box = widgets.VBox()
    assert runtime.require_root(box, widgets.Pane) is box
    with pytest.raises(RuntimeError):
        runtime.require_root(None, widgets.VBox)
    with pytest.raises(TypeError):
        runtime.require_root(widgets.Label(), widgets.VBox)
