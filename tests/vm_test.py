import struct

import pytest
from hypothesis import given, strategies as st

from bridge import Capabilities, DEFAULT_TYPES, DEFAULT_FUNCTIONS
from bytecode import Bytecode, CompiledProgram, Opcode
from compiler import Compiler, CompileContext
from parser import parse_source
from state import StateStore, LogBuffer
from values import UNIT, Int, Double, Bool, String, NativeHandle, Record
from vm import (
    VM, run, StackUnderflow, InvalidSymbol, InvalidStringIndex, InvalidLocalSlot,
    DivideByZero, BridgeNotAllowed, InvalidReturnValue,
)


def run_source(source, caps=None, log=None, store=None, context=None):
    program = Compiler().compile(parse_source(source), context)
    return VM(caps or Capabilities.default(), logger=log, state_store=store).run(program)


def raw(*chunks):
    return CompiledProgram(b"".join(chunks))


def op(code):
    return bytes([code])


def i64(n):
    return struct.pack("<q", n)


@given(st.integers(min_value=-2**40, max_value=2**40), st.integers(min_value=-2**40, max_value=2**40))
def test_push_and_add(a, b):
    bc = Bytecode()
    for n in (a, b):
        bc.append_op(Opcode.PUSH_INT)
        bc.append_int(n)
    bc.append_op(Opcode.ADD)
    assert run(CompiledProgram(bc.to_bytes()), Capabilities.none()) == Int(a + b)


def test_empty_program_returns_unit():
    assert run(CompiledProgram(), Capabilities.none()) is UNIT


def test_if_else_branches():
    assert run_source("if false { 1 } else { 2 }") == Int(2)
    assert run_source("if true { 1 } else { 2 }") == Int(1)
    assert run_source("if 1 > 2 { 1 } else if 2 > 1 { 3 } else { 4 }") == Int(3)


def test_arithmetic_and_equality():
    assert run_source("4 * 2 == 8") == Bool(True)
    assert run_source("10 - 4 / 2") == Int(8)
    assert run_source("1.5 + 1") == Double(2.5)
    assert run_source("1 == 1.0") == Bool(True)
    assert run_source('"a" == "a"') == Bool(True)
    assert run_source('"1" == 1') == Bool(False)


def test_integer_division_truncates_toward_zero():
    assert run_source("-7 / 2") == Int(-3)
    assert run_source("7 / -2") == Int(-3)
    assert run_source("7 / 2") == Int(3)


def test_string_concatenation():
    assert run_source('"n=" + 4') == String("n=4")
    assert run_source('let name = "Ada"\n"Hi \\(name)!"') == String("Hi Ada!")


def test_comparisons():
    assert run_source("3 > 2") == Bool(True)
    assert run_source("2 >= 2") == Bool(True)
    assert run_source("3 <= 2") == Bool(False)
    assert run_source("1 != 2") == Bool(True)
    assert run_source("!true") == Bool(False)


def test_ternary_and_coalesce():
    assert run_source('1 < 2 ? "yes" : "no"') == String("yes")
    assert run_source("nil ?? 5") == Int(5)
    assert run_source("3 ?? 5") == Int(3)


def test_logic_short_circuits():
    # undefinedFn would fail the sandbox check if it were ever called
    assert run_source("false && undefinedFn()") == Bool(False)
    assert run_source("true || undefinedFn()") == Bool(True)
    with pytest.raises(BridgeNotAllowed):
        run_source("true && undefinedFn()")


def test_while_loop():
    source = "var sum = 0\nvar i = 0\nwhile i < 5 {\n  sum = sum + i\n  i = i + 1\n}\nsum"
    assert run_source(source) == Int(10)


def test_user_functions():
    assert run_source("func square(_ n: Int) -> Int {\n  return n * n\n}\nsquare(7)") == Int(49)

    fact = (
        "func fact(_ n: Int) -> Int {\n"
        "  if n < 2 {\n"
        "    return 1\n"
        "  }\n"
        "  return n * fact(n - 1)\n"
        "}\n"
        "fact(5)"
    )
    assert run_source(fact) == Int(120)


def test_function_without_return_gives_unit():
    assert run_source("func nothing() { }\nnothing()") is UNIT


def test_error_inside_function_has_frames():
    with pytest.raises(DivideByZero) as info:
        run_source("func bad() {\n  return 1 / 0\n}\nbad()")
    assert info.value.frames[0]["func"] == "bad"
    assert "at func bad" in info.value.format()


def test_divide_by_zero():
    with pytest.raises(DivideByZero):
        run_source("5 / 0")
    with pytest.raises(DivideByZero):
        run_source("5.0 / 0.0")


def test_error_records_pc():
    with pytest.raises(DivideByZero) as info:
        run_source("1 / 0")
    assert info.value.pc == 18
    assert "Division by zero." in str(info.value)


def test_bridge_methods_and_properties():
    assert run_source('"hello".uppercased()') == String("HELLO")
    assert run_source('"abc".count') == Int(3)
    assert run_source('"abc".hasPrefix("ab")') == Bool(True)
    assert run_source("(1...5).contains(3)") == Bool(True)
    assert run_source("(1...5).upperBound") == Int(5)


def test_method_outside_allow_list_is_refused():
    caps = Capabilities(DEFAULT_TYPES, {"String": []}, DEFAULT_FUNCTIONS)
    with pytest.raises(BridgeNotAllowed) as info:
        run_source('"hello".uppercased()', caps=caps)
    assert info.value.name == "uppercased"
    assert info.value.describe() == "API not allowed: uppercased."


def test_type_outside_allow_list_is_refused():
    with pytest.raises(BridgeNotAllowed) as info:
        run_source('Text("x")', caps=Capabilities.none())
    assert info.value.name == "Text"


def test_unknown_property_is_invalid():
    with pytest.raises(InvalidReturnValue):
        run_source("5.foo")


def test_records():
    source = "struct Point { var x: Int; var y: Int }\nlet p = Point(x: 3, y: 4)\np.x + p.y"
    caps = Capabilities.default().merged(Capabilities(allowed_types={"Point"}))
    assert run_source(source, caps=caps) == Int(7)

    value = run_source("struct Point { var x: Int; var y: Int }\nPoint(x: 1, y: 2)", caps=caps)
    assert value == Record("Point", {"x": Int(1), "y": Int(2)})

    with pytest.raises(BridgeNotAllowed):
        run_source(source)


def test_native_functions():
    assert run_source("min(3, 1, 2)") == Int(1)
    assert run_source("max(1, 2.5)") == Double(2.5)
    assert run_source("abs(-4)") == Int(4)
    with pytest.raises(InvalidReturnValue):
        run_source('min("a")')


def test_print_goes_to_log_buffer():
    log = LogBuffer()
    assert run_source('print("a", 1, true)', log=log) is UNIT
    assert log.snapshot() == ["a 1 true"]


def test_state_and_bindings():
    store = StateStore({"count": 2})
    context = CompileContext(state_names={"count"}, state_defaults={"count": 0})
    assert run_source("count + 1", store=store, context=context) == Int(3)

    handle = run_source("$count", store=store, context=context)
    assert isinstance(handle, NativeHandle) and handle.kind == "Binding"
    handle.payload.set(5)
    assert store.get("count") == Int(5)


def test_unset_state_reads_unit():
    context = CompileContext(state_names={"missing"})
    assert run_source("missing ?? 9", context=context) == Int(9)


def test_fresh_vms_agree():
    program = Compiler().compile(parse_source("var i = 0\nwhile i < 3 { i = i + 1 }\ni * 10"))
    assert VM(Capabilities.default()).run(program) == VM(Capabilities.default()).run(program) == Int(30)


def test_non_bool_condition():
    with pytest.raises(StackUnderflow):
        run_source("if 1 { 2 }")


def test_arithmetic_on_non_numbers():
    with pytest.raises(StackUnderflow):
        run_source("true + 1")


def test_empty_stack():
    with pytest.raises(StackUnderflow):
        run(raw(op(Opcode.ADD)), Capabilities.none())


def test_unknown_opcode_returns():
    program = raw(op(Opcode.PUSH_INT), i64(7), op(0xFF), op(Opcode.PUSH_INT), i64(9))
    assert run(program, Capabilities.none()) == Int(7)


def test_truncated_operand():
    with pytest.raises(InvalidReturnValue):
        run(raw(op(Opcode.PUSH_INT), b"\x01\x02"), Capabilities.none())


def test_bad_pool_indices():
    with pytest.raises(InvalidStringIndex) as info:
        run(raw(op(Opcode.PUSH_STRING), i64(5)), Capabilities.none())
    assert info.value.describe() == "Invalid string pool index 5."

    with pytest.raises(InvalidSymbol) as info:
        run(raw(op(Opcode.LOAD_STATE), i64(3)), Capabilities.none())
    assert info.value.describe() == "Invalid symbol id 3."

    with pytest.raises(InvalidSymbol):
        run(raw(op(Opcode.PUSH_ACTION), i64(0)), Capabilities.none())


def test_bad_local_slot():
    with pytest.raises(InvalidLocalSlot) as info:
        run(raw(op(Opcode.LOAD_LOCAL), i64(0)), Capabilities.none())
    assert info.value.slot == 0


def test_negative_jump_target():
    with pytest.raises(InvalidReturnValue):
        run(raw(op(Opcode.JUMP), i64(-100)), Capabilities.none())


@given(st.integers(min_value=-2**63, max_value=2**63 - 1), st.integers(min_value=-2**63, max_value=2**63 - 1))
def test_int_addition_stays_in_64_bits(a, b):
    bc = Bytecode()
    for n in (a, b):
        bc.append_op(Opcode.PUSH_INT)
        bc.append_int(n)
    bc.append_op(Opcode.ADD)
    program = CompiledProgram(bc.to_bytes())
    if -2**63 <= a + b < 2**63:
        assert run(program, Capabilities.none()) == Int(a + b)
    else:
        with pytest.raises(InvalidReturnValue):
            run(program, Capabilities.none())


def test_int_overflow_traps():
    with pytest.raises(InvalidReturnValue):
        run_source("9223372036854775807 + 1")
    with pytest.raises(InvalidReturnValue):
        run_source("-9223372036854775808 - 1")
    with pytest.raises(InvalidReturnValue):
        run_source("-9223372036854775808 / -1")
    with pytest.raises(InvalidReturnValue):
        run_source("4611686018427387904 * 2")
    with pytest.raises(InvalidReturnValue):
        run_source("abs(-9223372036854775808)")
    assert run_source("9223372036854775807 + 0") == Int(2**63 - 1)
