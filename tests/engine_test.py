import pytest

from bridge import Capabilities, DEFAULT_TYPES, DEFAULT_FUNCTIONS
from bytecode import ActionDescriptor
from diagnostics import EnginePhase, Severity
from engine import Engine, RunStatus, RunTimeout
from natives import ViewNode
from state import StateStore, LogBuffer, Binding, Action
from values import UNIT, Int, Bool, String

COUNTER_APP = """
import SwiftUI

struct AppView: View {
    @State private var count = 0
    let title = "Counter"

    var body: some View {
        VStack {
            Text(title)
            Text("Count: \\(count)")
            if count > 0 {
                Text("clicked")
            } else {
                Text("idle")
            }
            ForEach(1...3) { n in
                Text("Row \\(n)")
            }
            Button("Increment") { count = 1 }
        }
        .padding()
    }
}
"""


def texts(view):
    return [c.prop("text").value for c in view.children if c.name == "Text"]


def test_counter_app_renders_and_reacts():
    engine = Engine()
    store = StateStore()

    result = engine.execute(COUNTER_APP, state_store=store)
    assert result.ok, result.diagnostics
    assert result.status is RunStatus.SUCCESS
    view = result.view
    assert isinstance(view, ViewNode)
    assert view.name == "VStack"
    assert len(view.children) == 7
    assert view.modifiers == (("padding", ()),)
    assert texts(view) == ["Counter", "Count: 0", "idle", "Row 1", "Row 2", "Row 3"]

    button = view.children[6]
    assert button.prop("title") == String("Increment")
    button.prop("action").payload.perform()
    assert store.get("count") == Int(1)

    again = engine.execute(COUNTER_APP, state_store=store)
    assert texts(again.view)[1:3] == ["Count: 1", "clicked"]


def test_view_tree_serializes():
    result = Engine().execute(COUNTER_APP)
    data = result.view.to_dict()
    assert data["type"] == "VStack"
    assert data["children"][0] == {
        "type": "Text", "props": {"text": "Counter"}, "children": [], "modifiers": [],
    }
    assert data["children"][6]["props"]["action"] == {"action": "count"}
    assert result.view.children[0].describe() == 'Text(text: "Counter")'


def test_controls_carry_bindings():
    source = (
        "struct AppView: View {\n"
        "  @State var on = true\n"
        "  @State var level = 0.5\n"
        "  var body: some View {\n"
        "    VStack {\n"
        '      Toggle("Power", isOn: $on)\n'
        "      Slider(value: $level, in: 0...2)\n"
        "    }\n"
        "  }\n"
        "}\n"
    )
    result = Engine().execute(source)
    assert result.ok, result.diagnostics
    toggle, slider = result.view.children
    assert toggle.prop("isOn") == Bool(True)
    assert toggle.prop("binding") == String("on")
    assert slider.prop("max").value == 2.0
    assert slider.prop("value").value == 0.5


def test_missing_entry_point():
    result = Engine().execute("let x = 1")
    assert result.status is RunStatus.FAILURE
    diag = result.diagnostics[-1]
    assert diag.phase is EnginePhase.COMPILE
    assert diag.message == "Missing entry point. Define struct AppView: View with a body."


def test_parse_error_is_reported_with_location():
    result = Engine().execute("struct AppView: View {\n  var body: some View {\n")
    assert not result.ok
    diag = result.diagnostics[-1]
    assert diag.phase is EnginePhase.PARSE
    assert diag.severity is Severity.ERROR
    assert diag.line is not None


def test_bridge_refusal_is_a_bridge_diagnostic():
    caps = Capabilities(DEFAULT_TYPES, {"String": []}, DEFAULT_FUNCTIONS)
    source = 'struct AppView: View {\n  var body: some View { Text("hi".uppercased()) }\n}'
    result = Engine(caps).execute(source)
    assert not result.ok
    diag = result.diagnostics[-1]
    assert diag.phase is EnginePhase.BRIDGE
    assert diag.message == "API not allowed: uppercased."


def test_runtime_error_mentions_pc():
    source = "struct AppView: View {\n  var body: some View { Text(1 / 0) }\n}"
    result = Engine().execute(source)
    diag = result.diagnostics[-1]
    assert diag.phase is EnginePhase.RUNTIME
    assert diag.message.startswith("Division by zero.")
    assert "pc:" in diag.message


def test_non_view_result():
    result = Engine().execute("struct AppView: View {\n  var body: some View { 42 }\n}")
    assert not result.ok
    assert result.diagnostics[-1].message == "Program did not return a View."


def test_warnings_travel_with_success():
    source = "struct AppView: View {\n  var body: some View { Text(nothing) }\n}"
    result = Engine().execute(source)
    assert result.ok
    assert result.diagnostics[0].severity is Severity.WARNING
    assert result.view.prop("text") == String("()")


def test_timeout():
    engine = Engine(timeout_ms=1)
    program = engine.compile("var i = 0\nwhile i < 200000 { i = i + 1 }\ni")
    with pytest.raises(RunTimeout) as info:
        engine.run(program)
    assert str(info.value) == "Execution timed out."


def test_timeout_disabled_runs_inline():
    engine = Engine(timeout_ms=0)
    assert engine.run(engine.compile("2 + 2")) == Int(4)


def test_runtime_errors_cross_the_worker_thread():
    engine = Engine()
    with pytest.raises(Exception) as info:
        engine.run(engine.compile("1 / 0"))
    assert "Division by zero." in str(info.value)


def test_log_buffer_keeps_latest_lines():
    log = LogBuffer(max_lines=2)
    for line in ("a", "b", "c"):
        log.log(line)
    assert log.snapshot() == ["b", "c"]
    log.clear()
    assert log.snapshot() == []


def test_state_store_defaults_do_not_overwrite():
    store = StateStore({"count": 3})
    store.set_default("count", 0)
    store.set_default("name", "x")
    assert store.get("count") == Int(3)
    assert store.get("name") == String("x")
    assert store.get("absent") is UNIT
    assert "name" in store
    store.reset()
    assert store.snapshot() == {}


def test_binding_and_action_write_the_store():
    store = StateStore()
    binding = Binding(store, "flag")
    binding.set(True)
    assert binding.get() == Bool(True)
    assert binding.describe() == "Binding($flag = true)"

    action = Action(store, ActionDescriptor("flag", Bool(False)))
    action()
    assert store.get("flag") == Bool(False)
    assert action.state_name == "flag"


def test_oversized_literal_fails_compilation():
    source = "struct AppView: View {\n  var body: some View { Text(99999999999999999999) }\n}"
    result = Engine().execute(source)
    assert result.status is RunStatus.FAILURE
    diag = result.diagnostics[-1]
    assert diag.phase is EnginePhase.COMPILE
    assert diag.message == "Integer literal overflows Int"
    assert diag.line == 2


def test_deep_nesting_fails_cleanly():
    source = "struct AppView: View {\n  var body: some View { Text(" + "(" * 3000 + "1" + ")" * 3000 + ") }\n}"
    result = Engine().execute(source)
    assert not result.ok
    assert result.diagnostics[-1].phase is EnginePhase.PARSE


def test_stepper_value_is_clamped():
    source = (
        "struct AppView: View {\n"
        "  @State var level = 9\n"
        '  var body: some View { Stepper("Level", value: $level, in: 0...5) }\n'
        "}\n"
    )
    result = Engine().execute(source)
    assert result.ok, result.diagnostics
    stepper = result.view
    assert stepper.prop("value") == Int(5)
    assert stepper.prop("max") == Int(5)
    assert stepper.prop("binding") == String("level")
