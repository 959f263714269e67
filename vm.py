from dataclasses import dataclass

from loguru import logger

from bytecode import (
    Opcode, MNEMONICS, INT_WIDTH, BOOL_WIDTH, DOUBLE_WIDTH, read_int, read_bool, read_double,
)
from diagnostics import SwiftletError, EnginePhase
from natives import CONSTRUCTORS, FUNCTIONS, NativeTypeError, lookup_method, lookup_property
from state import StateStore, Binding, Action
from values import (
    INT_MIN, INT_MAX, UNIT, Unit, Int, Double, Bool, String, Record, NativeHandle,
    as_number, stringify, values_equal, receiver_kind,
)


class InterpreterRuntimeError(SwiftletError):
    kind = "Runtime"
    phase = EnginePhase.RUNTIME

    def __init__(self, pc: int | None = None):
        super().__init__(self.describe())
        self.pc = pc
        self.frames = []  # most recent first

    def describe(self) -> str:
        return "Runtime error."

    def format(self, indent: str = "") -> str:
        lines = [f"{indent}Runtime error: {self.describe()}"]
        if self.pc is not None:
            lines.append(f"{indent}  pc={self.pc:04d}")
        for fr in self.frames:
            lines.append(f"{indent}  at func {fr['func']} (return pc={fr['return_pc']:04d})")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format()


class StackUnderflow(InterpreterRuntimeError):
    kind = "StackUnderflow"

    def describe(self):
        return "Stack underflow."


class InvalidSymbol(InterpreterRuntimeError):
    kind = "InvalidSymbol"

    def __init__(self, symbol_id: int, pc: int | None = None):
        self.symbol_id = symbol_id
        super().__init__(pc)

    def describe(self):
        return f"Invalid symbol id {self.symbol_id}."


class InvalidStringIndex(InterpreterRuntimeError):
    kind = "InvalidStringIndex"

    def __init__(self, index: int, pc: int | None = None):
        self.index = index
        super().__init__(pc)

    def describe(self):
        return f"Invalid string pool index {self.index}."


class InvalidLocalSlot(InterpreterRuntimeError):
    kind = "InvalidLocalSlot"

    def __init__(self, slot: int, pc: int | None = None):
        self.slot = slot
        super().__init__(pc)

    def describe(self):
        return f"Invalid local slot {self.slot}."


class DivideByZero(InterpreterRuntimeError):
    kind = "DivideByZero"

    def describe(self):
        return "Division by zero."


class BridgeNotAllowed(InterpreterRuntimeError):
    # the sandbox refused a well-formed operation; always user-visible
    kind = "BridgeNotAllowed"
    phase = EnginePhase.BRIDGE

    def __init__(self, name: str, pc: int | None = None):
        self.name = name
        super().__init__(pc)

    def describe(self):
        return f"API not allowed: {self.name}."


class InvalidReturnValue(InterpreterRuntimeError):
    kind = "InvalidReturnValue"

    def describe(self):
        return "Invalid return value."


@dataclass(frozen=True)
class CallFrame:
    return_pc: int
    stack_base: int
    locals_index: int
    function: str = "<main>"


class VM:
    def __init__(self, capabilities, logger=None, state_store=None, trace=False):
        self.capabilities = capabilities
        self.logger = logger
        self.state_store = state_store
        self.trace = trace
        self._reset(None)

    def _reset(self, program):
        self.program = program
        self.code = program.bytecode if program is not None else b""
        self.pc = 0
        self.op_pc = 0
        self.stack = []
        self.frames = []
        self.locals = [[]]
        self.store = self.state_store

    def run(self, program):
        self._reset(program)
        if self.store is None:
            self.store = StateStore()
        for name, value in program.state_defaults.items():
            self.store.set_default(name, value)

        try:
            while self.pc < len(self.code):
                self.step()
        except InterpreterRuntimeError as e:
            if e.pc is None:
                e.pc = self.op_pc
            e.frames = self.build_stacktrace()
            raise

        return self.stack[-1] if self.stack else UNIT

    def build_stacktrace(self):
        return [{"func": fr.function, "return_pc": fr.return_pc} for fr in reversed(self.frames)]

    # -------- decoding --------
    def _need(self, width):
        # a truncated operand cannot produce a meaningful value
        if self.pc + width > len(self.code):
            raise InvalidReturnValue()

    def next_int(self) -> int:
        self._need(INT_WIDTH)
        value = read_int(self.code, self.pc)
        self.pc += INT_WIDTH
        return value

    def next_bool(self) -> bool:
        self._need(BOOL_WIDTH)
        value = read_bool(self.code, self.pc)
        self.pc += BOOL_WIDTH
        return value

    def next_double(self) -> float:
        self._need(DOUBLE_WIDTH)
        value = read_double(self.code, self.pc)
        self.pc += DOUBLE_WIDTH
        return value

    def symbol(self, symbol_id: int) -> str:
        pool = self.program.symbol_pool
        if not 0 <= symbol_id < len(pool):
            raise InvalidSymbol(symbol_id)
        return pool[symbol_id]

    # -------- stack --------
    def push(self, value):
        self.stack.append(value)

    def pop(self):
        if not self.stack:
            raise StackUnderflow()
        return self.stack.pop()

    def pop_values(self, count: int):
        # returned in original left-to-right order
        if count < 0 or count > len(self.stack):
            raise StackUnderflow()
        if count == 0:
            return []
        values = self.stack[-count:]
        del self.stack[-count:]
        return values

    def log(self, message: str):
        if self.logger is None:
            return
        sink = getattr(self.logger, "log", self.logger)
        sink(message)

    # -------- execution --------
    def step(self):
        self.op_pc = self.pc
        raw = self.code[self.pc]
        self.pc += 1
        try:
            op = Opcode(raw)
        except ValueError:
            # unknown bytes end the run like returnValue
            op = Opcode.RETURN_VALUE

        if self.trace:
            logger.debug("pc={:04d} {} stack={}", self.op_pc, MNEMONICS[op], len(self.stack))

        if op == Opcode.PUSH_INT:
            self.push(Int(self.next_int()))
            return

        if op == Opcode.PUSH_BOOL:
            self.push(Bool(self.next_bool()))
            return

        if op == Opcode.PUSH_DOUBLE:
            self.push(Double(self.next_double()))
            return

        if op == Opcode.PUSH_STRING:
            index = self.next_int()
            pool = self.program.string_pool
            if not 0 <= index < len(pool):
                raise InvalidStringIndex(index)
            self.push(String(pool[index]))
            return

        if op == Opcode.PUSH_NIL:
            self.push(UNIT)
            return

        if op in (Opcode.ADD, Opcode.SUBTRACT, Opcode.MULTIPLY, Opcode.DIVIDE, Opcode.LESS_THAN):
            rhs = self.pop()
            lhs = self.pop()
            self.push(self.arithmetic(op, lhs, rhs))
            return

        if op == Opcode.EQUAL:
            rhs = self.pop()
            lhs = self.pop()
            self.push(Bool(values_equal(lhs, rhs)))
            return

        if op == Opcode.COALESCE:
            rhs = self.pop()
            lhs = self.pop()
            self.push(rhs if isinstance(lhs, Unit) else lhs)
            return

        if op == Opcode.JUMP:
            offset = self.next_int()
            self.jump_to(self.pc + offset)
            return

        if op == Opcode.JUMP_IF_FALSE:
            offset = self.next_int()
            cond = self.pop()
            # a non-Bool condition is reported like an empty stack
            if not isinstance(cond, Bool):
                raise StackUnderflow()
            if not cond.value:
                self.jump_to(self.pc + offset)
            return

        if op == Opcode.LOAD_LOCAL:
            slot = self.next_int()
            frame = self.locals[-1]
            if not 0 <= slot < len(frame):
                raise InvalidLocalSlot(slot)
            self.push(frame[slot])
            return

        if op == Opcode.STORE_LOCAL:
            slot = self.next_int()
            value = self.pop()
            if slot < 0:
                raise InvalidLocalSlot(slot)
            frame = self.locals[-1]
            while len(frame) <= slot:
                frame.append(UNIT)
            frame[slot] = value
            return

        if op == Opcode.LOAD_STATE:
            name = self.symbol(self.next_int())
            self.push(self.store.get(name))
            return

        if op == Opcode.PUSH_BINDING:
            name = self.symbol(self.next_int())
            self.push(NativeHandle("Binding", Binding(self.store, name)))
            return

        if op == Opcode.PUSH_ACTION:
            index = self.next_int()
            pool = self.program.action_pool
            if not 0 <= index < len(pool):
                raise InvalidSymbol(index)
            self.push(NativeHandle("Action", Action(self.store, pool[index])))
            return

        if op == Opcode.CALL_METHOD:
            symbol_id = self.next_int()
            argc = self.next_int()
            args = self.pop_values(argc)
            receiver = self.pop()
            self.push(self.call_method(receiver, self.symbol(symbol_id), args))
            return

        if op == Opcode.CALL_FUNCTION:
            symbol_id = self.next_int()
            argc = self.next_int()
            args = self.pop_values(argc)
            name = self.symbol(symbol_id)
            info = self.program.function_table.get(name)
            if info is not None:
                self.enter_function(info, args)
                return
            self.push(self.call_function(name, args))
            return

        if op == Opcode.GET_PROPERTY:
            name = self.symbol(self.next_int())
            receiver = self.pop()
            self.push(self.get_property(receiver, name))
            return

        if op == Opcode.CONSTRUCT_TYPE:
            symbol_id = self.next_int()
            argc = self.next_int()
            name = self.symbol(symbol_id)
            args = self.pop_values(argc)
            self.push(self.construct(name, args))
            return

        if op == Opcode.RETURN_VALUE:
            value = self.stack.pop() if self.stack else UNIT
            if not self.frames:
                self.pc = len(self.code)
                self.push(value)
                return
            frame = self.frames.pop()
            self.pc = frame.return_pc
            del self.stack[frame.stack_base:]
            del self.locals[frame.locals_index:]
            self.push(value)
            return

    def jump_to(self, target):
        if target < 0:
            raise InvalidReturnValue()
        self.pc = target

    def arithmetic(self, op, lhs, rhs):
        if op == Opcode.ADD and (isinstance(lhs, String) or isinstance(rhs, String)):
            return String(stringify(lhs) + stringify(rhs))

        a = as_number(lhs)
        b = as_number(rhs)
        if a is None or b is None:
            raise StackUnderflow()
        both_int = isinstance(lhs, Int) and isinstance(rhs, Int)
        if not both_int:
            a, b = float(a), float(b)

        if op == Opcode.ADD:
            result = a + b
        elif op == Opcode.SUBTRACT:
            result = a - b
        elif op == Opcode.MULTIPLY:
            result = a * b
        elif op == Opcode.DIVIDE:
            if b == 0:
                raise DivideByZero()
            if both_int:
                # truncate toward zero
                q = abs(a) // abs(b)
                result = q if (a < 0) == (b < 0) else -q
            else:
                result = a / b
        else:
            return Bool(a < b)

        if not both_int:
            return Double(result)
        if not INT_MIN <= result <= INT_MAX:
            # overflow traps instead of widening past 64 bits
            raise InvalidReturnValue()
        return Int(result)

    # -------- calls --------
    def enter_function(self, info, args):
        params = list(args[:info.param_count])
        while len(params) < info.param_count:
            params.append(UNIT)
        self.frames.append(CallFrame(self.pc, len(self.stack), len(self.locals), info.name))
        self.locals.append(params)
        self.jump_to(info.entry)

    def call_function(self, name, args):
        if not self.capabilities.allows_function(name):
            raise BridgeNotAllowed(name)
        fn = FUNCTIONS.get(name)
        if fn is None:
            raise BridgeNotAllowed(name)
        try:
            return fn(args, self.log)
        except NativeTypeError as e:
            raise InvalidReturnValue() from e

    def call_method(self, receiver, name, args):
        kind = receiver_kind(receiver)
        if not self.capabilities.allows_method(kind, name):
            raise BridgeNotAllowed(name)
        if isinstance(receiver, Record):
            # record methods are field reads
            if name in receiver.fields:
                return receiver.fields[name]
            raise InvalidReturnValue()
        fn = lookup_method(kind, name)
        if fn is None:
            raise BridgeNotAllowed(name)
        return fn(receiver, args)

    def get_property(self, receiver, name):
        if isinstance(receiver, Record):
            if name in receiver.fields:
                return receiver.fields[name]
            raise InvalidReturnValue()
        kind = receiver_kind(receiver)
        prop = lookup_property(kind, name)
        if prop is None:
            raise InvalidReturnValue()
        if not self.capabilities.allows_method(kind, name):
            raise BridgeNotAllowed(name)
        return prop(receiver)

    def construct(self, name, args):
        if not self.capabilities.allows_type(name):
            raise BridgeNotAllowed(name)
        ctor = CONSTRUCTORS.get(name)
        if ctor is not None:
            return ctor(args)
        info = self.program.find_type(name)
        fields = {}
        if info is not None:
            for field_name, value in zip(info.field_names, args):
                fields[field_name] = value
        return Record(name, fields)


def run(program, capabilities, logger=None, state_store=None):
    return VM(capabilities, logger=logger, state_store=state_store).run(program)
