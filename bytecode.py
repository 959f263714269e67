import struct
from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType

INT_WIDTH = 8
BOOL_WIDTH = 1
DOUBLE_WIDTH = 8

_INT = struct.Struct("<q")
_DOUBLE = struct.Struct("<d")


class Opcode(IntEnum):
    PUSH_INT = 0
    PUSH_BOOL = 1
    PUSH_DOUBLE = 2
    PUSH_STRING = 3
    PUSH_NIL = 4
    ADD = 5
    SUBTRACT = 6
    MULTIPLY = 7
    DIVIDE = 8
    LESS_THAN = 9
    EQUAL = 10
    JUMP = 11
    JUMP_IF_FALSE = 12
    LOAD_LOCAL = 13
    STORE_LOCAL = 14
    LOAD_STATE = 15
    PUSH_BINDING = 16
    PUSH_ACTION = 17
    CALL_METHOD = 18
    CALL_FUNCTION = 19
    GET_PROPERTY = 20
    CONSTRUCT_TYPE = 21
    COALESCE = 22
    RETURN_VALUE = 23


# operand layout per opcode: "i" = i64, "b" = u8 bool, "d" = f64
OPERANDS = {
    Opcode.PUSH_INT: "i",
    Opcode.PUSH_BOOL: "b",
    Opcode.PUSH_DOUBLE: "d",
    Opcode.PUSH_STRING: "i",
    Opcode.JUMP: "i",
    Opcode.JUMP_IF_FALSE: "i",
    Opcode.LOAD_LOCAL: "i",
    Opcode.STORE_LOCAL: "i",
    Opcode.LOAD_STATE: "i",
    Opcode.PUSH_BINDING: "i",
    Opcode.PUSH_ACTION: "i",
    Opcode.CALL_METHOD: "ii",
    Opcode.CALL_FUNCTION: "ii",
    Opcode.GET_PROPERTY: "i",
    Opcode.CONSTRUCT_TYPE: "ii",
}

MNEMONICS = {
    Opcode.PUSH_INT: "pushInt",
    Opcode.PUSH_BOOL: "pushBool",
    Opcode.PUSH_DOUBLE: "pushDouble",
    Opcode.PUSH_STRING: "pushString",
    Opcode.PUSH_NIL: "pushNil",
    Opcode.ADD: "add",
    Opcode.SUBTRACT: "subtract",
    Opcode.MULTIPLY: "multiply",
    Opcode.DIVIDE: "divide",
    Opcode.LESS_THAN: "lessThan",
    Opcode.EQUAL: "equal",
    Opcode.JUMP: "jump",
    Opcode.JUMP_IF_FALSE: "jumpIfFalse",
    Opcode.LOAD_LOCAL: "loadLocal",
    Opcode.STORE_LOCAL: "storeLocal",
    Opcode.LOAD_STATE: "loadState",
    Opcode.PUSH_BINDING: "pushBinding",
    Opcode.PUSH_ACTION: "pushAction",
    Opcode.CALL_METHOD: "callMethod",
    Opcode.CALL_FUNCTION: "callFunction",
    Opcode.GET_PROPERTY: "getProperty",
    Opcode.CONSTRUCT_TYPE: "constructType",
    Opcode.COALESCE: "coalesce",
    Opcode.RETURN_VALUE: "returnValue",
}


class Bytecode:
    def __init__(self, data=b""):
        self.data = bytearray(data)

    @property
    def count(self) -> int:
        return len(self.data)

    def append_op(self, op):
        self.data.append(int(op))

    def append_int(self, value: int):
        self.data += _INT.pack(value)

    def append_bool(self, value: bool):
        self.data.append(1 if value else 0)

    def append_double(self, value: float):
        self.data += _DOUBLE.pack(value)

    def write_int_at(self, index: int, value: int):
        # fixed width, so patching never shifts later bytes
        _INT.pack_into(self.data, index, value)

    def to_bytes(self) -> bytes:
        return bytes(self.data)


# -------- readers (shared by the VM and the disassembler) --------

def read_int(code, pc: int) -> int:
    return _INT.unpack_from(code, pc)[0]


def read_double(code, pc: int) -> float:
    return _DOUBLE.unpack_from(code, pc)[0]


def read_bool(code, pc: int) -> bool:
    return code[pc] != 0


@dataclass(frozen=True)
class TypeInfo:
    name: str
    field_names: tuple = ()


@dataclass(frozen=True)
class ActionDescriptor:
    state_name: str
    value: object  # values.Value


@dataclass(frozen=True)
class FunctionInfo:
    name: str
    entry: int
    param_count: int


@dataclass(frozen=True)
class CompiledProgram:
    bytecode: bytes = b""
    string_pool: tuple = ()
    symbol_pool: tuple = ()
    type_table: tuple = ()
    state_defaults: dict = field(default_factory=dict)
    action_pool: tuple = ()
    function_table: dict = field(default_factory=dict)

    def __post_init__(self):
        # freeze whatever the caller handed in
        object.__setattr__(self, "bytecode", bytes(self.bytecode))
        object.__setattr__(self, "string_pool", tuple(self.string_pool))
        object.__setattr__(self, "symbol_pool", tuple(self.symbol_pool))
        object.__setattr__(self, "type_table", tuple(self.type_table))
        object.__setattr__(self, "state_defaults", MappingProxyType(dict(self.state_defaults)))
        object.__setattr__(self, "action_pool", tuple(self.action_pool))
        object.__setattr__(self, "function_table", MappingProxyType(dict(self.function_table)))

    def find_type(self, name: str):
        for info in self.type_table:
            if info.name == name:
                return info
        return None


def disassemble(program: CompiledProgram):
    code = program.bytecode
    lines = []
    pc = 0
    while pc < len(code):
        start = pc
        raw = code[pc]
        pc += 1
        try:
            op = Opcode(raw)
        except ValueError:
            lines.append(f"{start:04d}  <unknown 0x{raw:02x}>")
            continue

        operands = []
        for kind in OPERANDS.get(op, ""):
            if kind == "i":
                if pc + INT_WIDTH > len(code):
                    operands.append("<truncated>")
                    pc = len(code)
                    break
                operands.append(read_int(code, pc))
                pc += INT_WIDTH
            elif kind == "d":
                if pc + DOUBLE_WIDTH > len(code):
                    operands.append("<truncated>")
                    pc = len(code)
                    break
                operands.append(read_double(code, pc))
                pc += DOUBLE_WIDTH
            else:
                if pc + BOOL_WIDTH > len(code):
                    operands.append("<truncated>")
                    pc = len(code)
                    break
                operands.append("true" if read_bool(code, pc) else "false")
                pc += BOOL_WIDTH

        text = f"{start:04d}  {MNEMONICS[op]}"
        if op in (Opcode.JUMP, Opcode.JUMP_IF_FALSE) and isinstance(operands[0], int):
            text += f" {operands[0]:+d} -> {pc + operands[0]:04d}"
        elif op == Opcode.PUSH_STRING and _in_range(operands[0], program.string_pool):
            text += f" {operands[0]} ({program.string_pool[operands[0]]!r})"
        elif op in (Opcode.LOAD_STATE, Opcode.PUSH_BINDING, Opcode.GET_PROPERTY,
                    Opcode.CALL_METHOD, Opcode.CALL_FUNCTION, Opcode.CONSTRUCT_TYPE) \
                and _in_range(operands[0], program.symbol_pool):
            rest = "".join(f" {x}" for x in operands[1:])
            text += f" {operands[0]} ({program.symbol_pool[operands[0]]}){rest}"
        elif operands:
            text += "".join(f" {x}" for x in operands)
        lines.append(text)
    return lines


def _in_range(index, pool) -> bool:
    return isinstance(index, int) and 0 <= index < len(pool)
