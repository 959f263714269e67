from dataclasses import dataclass, field

from loguru import logger

from ast_nodes import (
    SourceFile, Block, StructDecl, VarDecl, FuncDecl, Import,
    If, While, Return, Assign,
    Literal, StringInterpolation, ArrayLiteral, Identifier, MemberAccess,
    Closure, Call, Binary, Prefix, Ternary,
    STATEMENT_NODES,
)
from bytecode import (
    Bytecode, Opcode, CompiledProgram, TypeInfo, ActionDescriptor, FunctionInfo, INT_WIDTH,
)
from diagnostics import CompileError, Diagnostic, EnginePhase, Severity
from values import INT_MIN, INT_MAX, Int, Double, Bool, String, from_python

ENTRY_TYPE = "AppView"
ENTRY_PROPERTY = "body"
RANGE_TYPE = "ClosedRange"

# total ForEach items one compile may unroll, nested loops included
MAX_UNROLL = 1000

# containers whose trailing closure is only a list of child views
STACK_CONTAINERS = {"VStack", "HStack", "ZStack", "Group"}

# containers that take ordinary arguments followed by closure children
LABELED_CONTAINERS = {"Toggle", "Stepper", "NavigationLink", "NavigationStack", "List"}

SIMPLE_OPS = {
    "+": Opcode.ADD,
    "-": Opcode.SUBTRACT,
    "*": Opcode.MULTIPLY,
    "/": Opcode.DIVIDE,
    "<": Opcode.LESS_THAN,
    "==": Opcode.EQUAL,
    "??": Opcode.COALESCE,
}


def is_type_name(name: str) -> bool:
    # Capitalization is the only signal that a bare call constructs a type.
    return bool(name) and name[0].isupper()


@dataclass
class CompileContext:
    state_names: set = field(default_factory=set)
    state_defaults: dict = field(default_factory=dict)       # name -> Value | literal
    computed_properties: dict = field(default_factory=dict)  # name -> expression node
    literal_bindings: dict = field(default_factory=dict)     # name -> Value | literal


class Compiler:
    def __init__(self, on_warning=None):
        self.on_warning = on_warning
        self.diagnostics = []
        self.reset()

    def reset(self):
        self.bc = Bytecode()
        self.strings = []
        self.string_ids = {}
        self.symbols = []
        self.symbol_ids = {}
        self.types = []
        self.actions = []
        self.functions = {}
        self.locals = {}
        self.state_names = set()
        self.state_defaults = {}
        self.literal_bindings = {}
        self.computed = {}
        self._expanding = set()
        self.unroll_budget = MAX_UNROLL

    # -------- diagnostics --------
    def warn(self, message, node=None):
        line = getattr(node, "line", None)
        column = getattr(node, "column", None)
        diag = Diagnostic(EnginePhase.COMPILE, Severity.WARNING, message, line, column)
        self.diagnostics.append(diag)
        logger.warning("compile: {}{}", message, f" (line {line})" if line else "")
        if self.on_warning is not None:
            self.on_warning(diag)

    # -------- pools --------
    def intern_string(self, text: str) -> int:
        idx = self.string_ids.get(text)
        if idx is None:
            idx = len(self.strings)
            self.strings.append(text)
            self.string_ids[text] = idx
        return idx

    def intern_symbol(self, name: str) -> int:
        idx = self.symbol_ids.get(name)
        if idx is None:
            idx = len(self.symbols)
            self.symbols.append(name)
            self.symbol_ids[name] = idx
        return idx

    def allocate_local(self, name: str) -> int:
        # one slot per name per function; re-declaring reuses it
        if name not in self.locals:
            self.locals[name] = len(self.locals)
        return self.locals[name]

    def declare_type(self, node):
        if any(info.name == node.name for info in self.types):
            self.warn(f"Type '{node.name}' declared more than once", node)
            return
        fields = tuple(
            m.name for m in node.members
            if isinstance(m, VarDecl) and not m.is_computed
        )
        self.types.append(TypeInfo(node.name, fields))

    # -------- emission --------
    def emit(self, op, *operands):
        self.bc.append_op(op)
        for operand in operands:
            self.bc.append_int(operand)

    def emit_jump(self, op) -> int:
        self.bc.append_op(op)
        at = self.bc.count
        self.bc.append_int(0)
        return at

    def patch_jump(self, at: int, target: int):
        # offset is relative to the pc right after the operand
        self.bc.write_int_at(at, target - (at + INT_WIDTH))

    def check_int(self, value, node=None):
        if isinstance(value, Int) and not INT_MIN <= value.value <= INT_MAX:
            raise CompileError("Integer literal overflows Int",
                               getattr(node, "line", None), getattr(node, "column", None))
        return value

    def emit_literal(self, value, node=None):
        self.check_int(value, node)
        if isinstance(value, Bool):
            self.bc.append_op(Opcode.PUSH_BOOL)
            self.bc.append_bool(value.value)
        elif isinstance(value, Int):
            self.emit(Opcode.PUSH_INT, value.value)
        elif isinstance(value, Double):
            self.bc.append_op(Opcode.PUSH_DOUBLE)
            self.bc.append_double(value.value)
        elif isinstance(value, String):
            self.emit(Opcode.PUSH_STRING, self.intern_string(value.value))
        else:
            self.emit(Opcode.PUSH_NIL)

    def emit_construct(self, name: str, argc: int):
        self.emit(Opcode.CONSTRUCT_TYPE, self.intern_symbol(name), argc)

    def finish(self) -> CompiledProgram:
        return CompiledProgram(
            bytecode=self.bc.to_bytes(),
            string_pool=self.strings,
            symbol_pool=self.symbols,
            type_table=self.types,
            state_defaults=self.state_defaults,
            action_pool=self.actions,
            function_table=self.functions,
        )

    # -------- entry --------
    def compile(self, root, context=None, require_entry=False) -> CompiledProgram:
        if not isinstance(root, SourceFile):
            raise CompileError("Compiler expects a SourceFile node at the top")
        try:
            return self.compile_root(root, context, require_entry)
        except RecursionError as e:
            raise CompileError("Expression nested too deeply") from e

    def compile_root(self, root, context, require_entry):
        self.reset()
        self.diagnostics = []
        if context is not None:
            self.apply_context(context)

        entry = self.find_entry(root)
        if entry is None and require_entry:
            raise CompileError("Missing entry point. Define struct AppView: View with a body.")

        if entry is None:
            top_level = root.statements
            func_decls = [s for s in top_level if isinstance(s, FuncDecl)]
            for stmt in top_level:
                if isinstance(stmt, StructDecl):
                    self.declare_type(stmt)
        else:
            app, body = entry
            top_level = []
            func_decls = [s for s in root.statements if isinstance(s, FuncDecl)]
            func_decls += [m for m in app.members if isinstance(m, FuncDecl)]
            for stmt in root.statements:
                if isinstance(stmt, StructDecl) and stmt is not app:
                    self.declare_type(stmt)
                elif not isinstance(stmt, (StructDecl, FuncDecl, Import)):
                    self.warn("Top-level statement ignored; only AppView.body runs", stmt)
            self.collect_members(app, body)

        self.compile_functions(func_decls)

        if entry is None:
            for stmt in top_level:
                self.compile_stmt(stmt)
        else:
            self.compile_entry_body(entry[1])

        return self.finish()

    def apply_context(self, context):
        self.state_names.update(context.state_names)
        for name, value in context.state_defaults.items():
            self.state_defaults[name] = from_python(value)
        for name, value in context.literal_bindings.items():
            self.literal_bindings[name] = from_python(value)
        self.computed.update(context.computed_properties)

    def find_entry(self, root):
        for stmt in root.statements:
            if not isinstance(stmt, StructDecl) or stmt.name != ENTRY_TYPE:
                continue
            for member in stmt.members:
                if isinstance(member, VarDecl) and member.name == ENTRY_PROPERTY:
                    if member.is_computed or member.value is not None:
                        return stmt, member
        return None

    def collect_members(self, app, body):
        for member in app.members:
            if not isinstance(member, VarDecl) or member is body:
                continue
            if "State" in member.attributes:
                self.declare_state(member)
            elif member.is_computed:
                expr = self.single_expression(member.getter)
                if expr is None:
                    self.warn(f"Computed property '{member.name}' must be a single expression", member)
                else:
                    self.computed[member.name] = expr
            elif member.value is not None:
                value = self.literal_value(member.value)
                if value is None:
                    self.warn(f"Property '{member.name}' must be initialized with a literal", member)
                else:
                    self.literal_bindings[member.name] = value

    def declare_state(self, node):
        self.state_names.add(node.name)
        if node.value is None:
            return
        value = self.literal_value(node.value)
        if value is None:
            self.warn(f"@State '{node.name}' must be initialized with a literal", node)
            return
        self.state_defaults[node.name] = value

    def compile_entry_body(self, body):
        if body.is_computed:
            for stmt in body.getter.statements:
                self.compile_stmt(stmt)
        else:
            self.compile_value(body.value)

    def compile_functions(self, decls):
        if not decls:
            return

        # Pass 1: register every signature so calls may precede definitions.
        for decl in decls:
            if decl.name in self.functions:
                raise CompileError(f"Function already defined: {decl.name}", decl.line, decl.column)
            self.functions[decl.name] = None

        # Pass 2: bodies, jumped over by the entry code.
        skip = self.emit_jump(Opcode.JUMP)
        for decl in decls:
            self.compile_funcdef(decl)
        self.patch_jump(skip, self.bc.count)

    def compile_funcdef(self, node):
        entry = self.bc.count
        self.functions[node.name] = FunctionInfo(node.name, entry, len(node.params))

        outer = self.locals
        self.locals = {}
        for param in node.params:
            self.allocate_local(param)
        self.compile_block(node.body)
        self.locals = outer

        # implicit return when control falls off the end
        self.emit(Opcode.PUSH_NIL)
        self.emit(Opcode.RETURN_VALUE)

    # -------- statements --------
    def compile_stmt(self, node):
        if isinstance(node, Import):
            return

        if isinstance(node, StructDecl):
            # top-level types are already declared up front
            if not any(info.name == node.name for info in self.types):
                self.declare_type(node)
            return

        if isinstance(node, FuncDecl):
            # top-level functions are compiled up front
            if node.name not in self.functions:
                self.warn(f"Nested function '{node.name}' is not supported", node)
            return

        if isinstance(node, VarDecl):
            self.compile_var(node, keep_value=True)
            return

        if isinstance(node, Assign):
            self.compile_assign(node)
            return

        if isinstance(node, If):
            self.compile_if(node)
            return

        if isinstance(node, While):
            self.compile_while(node)
            return

        if isinstance(node, Return):
            if node.expr is None:
                self.emit(Opcode.PUSH_NIL)
            else:
                self.compile_value(node.expr)
            self.emit(Opcode.RETURN_VALUE)
            return

        # expression statement: its value stays on the stack
        self.compile_value(node)

    def compile_block(self, block):
        for stmt in block.statements:
            self.compile_stmt(stmt)

    def compile_var(self, node, keep_value):
        if "State" in node.attributes:
            self.declare_state(node)
            return
        if node.is_computed:
            expr = self.single_expression(node.getter)
            if expr is None:
                self.warn(f"Computed property '{node.name}' must be a single expression", node)
            else:
                self.computed[node.name] = expr
            return

        slot = self.allocate_local(node.name)
        if node.value is None:
            return
        self.compile_value(node.value)
        self.emit(Opcode.STORE_LOCAL, slot)
        if keep_value:
            self.emit(Opcode.LOAD_LOCAL, slot)

    def compile_assign(self, node):
        target = node.target
        if isinstance(target, Identifier) and target.name in self.locals:
            self.compile_value(node.value)
            self.emit(Opcode.STORE_LOCAL, self.locals[target.name])
            return
        if isinstance(target, Identifier) and target.name in self.state_names:
            self.warn(f"State '{target.name}' can only be assigned from a Button action", node)
            return
        self.warn("Unsupported assignment target; statement ignored", node)

    def compile_if(self, node):
        self.compile_value(node.condition)
        jump_false = self.emit_jump(Opcode.JUMP_IF_FALSE)

        self.compile_block(node.then_block)
        jump_end = self.emit_jump(Opcode.JUMP)

        self.patch_jump(jump_false, self.bc.count)
        if isinstance(node.else_block, Block):
            self.compile_block(node.else_block)
        elif node.else_block is not None:
            # else-if chain
            self.compile_if(node.else_block)

        self.patch_jump(jump_end, self.bc.count)

    def compile_while(self, node):
        loop_start = self.bc.count
        self.compile_value(node.condition)
        jump_exit = self.emit_jump(Opcode.JUMP_IF_FALSE)

        self.compile_block(node.body)

        back = self.emit_jump(Opcode.JUMP)
        self.patch_jump(back, loop_start)
        self.patch_jump(jump_exit, self.bc.count)

    # -------- expressions --------
    def compile_value(self, node):
        # like compile_expr, but always leaves exactly one value behind
        if not self.compile_expr(node):
            self.emit(Opcode.PUSH_NIL)

    def compile_expr(self, node) -> bool:
        if isinstance(node, Literal):
            if node.value is None:
                self.emit(Opcode.PUSH_NIL)
            else:
                self.emit_literal(from_python(node.value), node)
            return True

        if isinstance(node, StringInterpolation):
            self.compile_interpolation(node)
            return True

        if isinstance(node, Identifier):
            self.compile_identifier(node)
            return True

        if isinstance(node, Binary):
            return self.compile_binary(node)

        if isinstance(node, Prefix):
            return self.compile_prefix(node)

        if isinstance(node, Ternary):
            self.compile_ternary(node)
            return True

        if isinstance(node, Call):
            return self.compile_call(node)

        if isinstance(node, MemberAccess):
            return self.compile_member(node)

        if isinstance(node, Closure):
            self.warn("Closures are not values here", node)
            self.emit(Opcode.PUSH_NIL)
            return True

        if isinstance(node, ArrayLiteral):
            self.warn("Array literals are only supported as ForEach data", node)
            self.emit(Opcode.PUSH_NIL)
            return True

        if isinstance(node, STATEMENT_NODES):
            self.warn(f"{node.__class__.__name__} cannot be used as a value", node)
            return False

        raise CompileError(f"Unknown expression node: {node.__class__.__name__}",
                           getattr(node, "line", None), getattr(node, "column", None))

    def compile_interpolation(self, node):
        segments = [s for i, s in enumerate(node.segments) if i == 0 or s != ""]
        first = True
        for seg in segments:
            if isinstance(seg, str):
                self.emit(Opcode.PUSH_STRING, self.intern_string(seg))
            else:
                self.compile_value(seg)
            if not first:
                self.emit(Opcode.ADD)
            first = False
        if first:
            self.emit(Opcode.PUSH_STRING, self.intern_string(""))

    def compile_identifier(self, node):
        name = node.name
        # locals, then state, then literal bindings, then computed properties
        if name in self.locals:
            self.emit(Opcode.LOAD_LOCAL, self.locals[name])
            return
        if name in self.state_names:
            self.emit(Opcode.LOAD_STATE, self.intern_symbol(name))
            return
        if name in self.literal_bindings:
            self.emit_literal(self.literal_bindings[name], node)
            return
        if name in self.computed:
            if name in self._expanding:
                self.warn(f"Computed property '{name}' refers to itself", node)
                self.emit(Opcode.PUSH_NIL)
                return
            self._expanding.add(name)
            try:
                self.compile_value(self.computed[name])
            finally:
                self._expanding.discard(name)
            return

        self.warn(f"Unresolved identifier '{name}' evaluates to ()", node)
        self.emit(Opcode.PUSH_NIL)

    def compile_binary(self, node) -> bool:
        op = node.op

        if op == "&&":
            self.compile_value(node.left)
            jump_false = self.emit_jump(Opcode.JUMP_IF_FALSE)
            self.compile_value(node.right)
            jump_end = self.emit_jump(Opcode.JUMP)
            self.patch_jump(jump_false, self.bc.count)
            self.emit_literal(Bool(False))
            self.patch_jump(jump_end, self.bc.count)
            return True

        if op == "||":
            self.compile_value(node.left)
            jump_right = self.emit_jump(Opcode.JUMP_IF_FALSE)
            self.emit_literal(Bool(True))
            jump_end = self.emit_jump(Opcode.JUMP)
            self.patch_jump(jump_right, self.bc.count)
            self.compile_value(node.right)
            self.patch_jump(jump_end, self.bc.count)
            return True

        if op in SIMPLE_OPS:
            self.compile_value(node.left)
            self.compile_value(node.right)
            self.emit(SIMPLE_OPS[op])
            return True

        if op == "...":
            self.compile_value(node.left)
            self.compile_value(node.right)
            self.emit_construct(RANGE_TYPE, 2)
            return True

        # comparisons without their own opcode
        if op == ">":
            self.compile_value(node.right)
            self.compile_value(node.left)
            self.emit(Opcode.LESS_THAN)
            return True

        if op == "<=":
            self.compile_value(node.right)
            self.compile_value(node.left)
            self.emit(Opcode.LESS_THAN)
            self.emit_negate()
            return True

        if op == ">=":
            self.compile_value(node.left)
            self.compile_value(node.right)
            self.emit(Opcode.LESS_THAN)
            self.emit_negate()
            return True

        if op == "!=":
            self.compile_value(node.left)
            self.compile_value(node.right)
            self.emit(Opcode.EQUAL)
            self.emit_negate()
            return True

        self.warn(f"Unsupported operator '{op}'", node)
        return False

    def emit_negate(self):
        self.emit_literal(Bool(False))
        self.emit(Opcode.EQUAL)

    def compile_prefix(self, node) -> bool:
        if node.op == "$":
            inner = node.expr
            if isinstance(inner, Identifier) and inner.name in self.state_names:
                self.emit(Opcode.PUSH_BINDING, self.intern_symbol(inner.name))
                return True
            self.compile_value(inner)
            return True

        if node.op == "-":
            # -9223372036854775808 only fits once the sign is folded in
            folded = self.literal_value(node)
            if isinstance(folded, (Int, Double)) and isinstance(node.expr, Literal):
                self.emit_literal(folded, node)
                return True
            self.compile_value(node.expr)
            self.emit_literal(Int(-1))
            self.emit(Opcode.MULTIPLY)
            return True

        if node.op == "!":
            self.compile_value(node.expr)
            self.emit_negate()
            return True

        self.warn(f"Unsupported prefix operator '{node.op}'", node)
        return False

    def compile_ternary(self, node):
        # same two-branch shape as if/else
        self.compile_value(node.condition)
        jump_else = self.emit_jump(Opcode.JUMP_IF_FALSE)
        self.compile_value(node.then_expr)
        jump_end = self.emit_jump(Opcode.JUMP)
        self.patch_jump(jump_else, self.bc.count)
        self.compile_value(node.else_expr)
        self.patch_jump(jump_end, self.bc.count)

    def compile_member(self, node) -> bool:
        if node.base is None:
            # implicit member (.red, .title) travels as its name
            self.emit(Opcode.PUSH_STRING, self.intern_string(node.name))
            return True

        base = node.base
        if isinstance(base, Identifier) and self.is_static_type_ref(base.name):
            # Color.red -> Color("red")
            self.emit(Opcode.PUSH_STRING, self.intern_string(node.name))
            self.emit_construct(base.name, 1)
            return True

        self.compile_value(base)
        self.emit(Opcode.GET_PROPERTY, self.intern_symbol(node.name))
        return True

    def is_static_type_ref(self, name):
        if not is_type_name(name):
            return False
        if name in self.locals or name in self.state_names or name in self.literal_bindings:
            return False
        return not any(info.name == name for info in self.types)

    # -------- calls --------
    def compile_call(self, node) -> bool:
        callee = node.callee

        if isinstance(callee, MemberAccess):
            if callee.base is None:
                self.warn(f"Cannot call implicit member '.{callee.name}'", node)
                self.emit(Opcode.PUSH_NIL)
                return True
            self.compile_value(callee.base)
            for arg in node.args:
                self.compile_value(arg.value)
            self.emit(Opcode.CALL_METHOD, self.intern_symbol(callee.name), len(node.args))
            return True

        if not isinstance(callee, Identifier):
            self.warn("Unsupported call target", node)
            self.emit(Opcode.PUSH_NIL)
            return True

        name = callee.name

        if node.trailing_closure is not None and name in STACK_CONTAINERS:
            count = self.compile_children(node.trailing_closure)
            self.emit_construct(name, count)
            return True

        if node.trailing_closure is not None and name in LABELED_CONTAINERS:
            plain = [a for a in node.args if not isinstance(a.value, Closure)]
            for arg in plain:
                self.compile_value(arg.value)
            count = self.compile_children(node.trailing_closure)
            self.emit_construct(name, len(plain) + count)
            return True

        if name == "Button":
            self.compile_button(node)
            return True

        if name == "ForEach":
            self.warn("ForEach is only supported inside a container", node)
            self.emit(Opcode.PUSH_NIL)
            return True

        for arg in node.args:
            self.compile_value(arg.value)
        argc = len(node.args)
        if node.trailing_closure is not None:
            self.warn(f"Trailing closure passed to '{name}' is ignored", node.trailing_closure)

        if name in self.functions or not is_type_name(name):
            self.emit(Opcode.CALL_FUNCTION, self.intern_symbol(name), argc)
        else:
            self.emit_construct(name, argc)
        return True

    def compile_button(self, node):
        closure_args = any(isinstance(a.value, Closure) for a in node.args)
        argc = 0
        for arg in node.args:
            if isinstance(arg.value, Closure):
                self.emit_action(arg.value)
            else:
                self.compile_value(arg.value)
            argc += 1

        trailing = node.trailing_closure
        if trailing is not None:
            if closure_args:
                # Button(action: {...}) { label }
                argc += self.compile_children(trailing)
            else:
                # Button("Title") { action }
                self.emit_action(trailing)
                argc += 1

        self.emit_construct("Button", argc)

    def emit_action(self, closure):
        descriptor = self.action_descriptor(closure)
        if descriptor is None:
            self.warn("Button action must assign a literal to a @State property", closure)
            self.emit(Opcode.PUSH_NIL)
            return
        index = len(self.actions)
        self.actions.append(descriptor)
        self.emit(Opcode.PUSH_ACTION, index)

    def action_descriptor(self, closure):
        if not closure.statements:
            return None
        first = closure.statements[0]
        if not isinstance(first, Assign) or not isinstance(first.target, Identifier):
            return None
        name = first.target.name
        if name not in self.state_names:
            return None
        value = self.literal_value(first.value)
        if value is None:
            return None
        return ActionDescriptor(name, value)

    def compile_children(self, closure) -> int:
        # Each child leaves exactly one value; the count becomes the argc.
        count = 0
        for stmt in closure.statements:
            if isinstance(stmt, If):
                count += self.compile_if_child(stmt)
                continue

            if isinstance(stmt, Call) and isinstance(stmt.callee, Identifier) \
                    and stmt.callee.name == "ForEach":
                count += self.compile_for_each(stmt)
                continue

            if isinstance(stmt, VarDecl):
                self.compile_var(stmt, keep_value=False)
                continue

            if isinstance(stmt, STATEMENT_NODES):
                self.warn(f"{stmt.__class__.__name__} is not allowed among view children", stmt)
                continue

            self.compile_value(stmt)
            count += 1
        return count

    def compile_if_child(self, node) -> int:
        if not self.is_expression_if(node):
            self.warn("Only if/else with a single view per branch is supported here", node)
            return 0
        self.compile_if_expression(node)
        return 1

    def is_expression_if(self, node) -> bool:
        if self.single_expression(node.then_block) is None:
            return False
        if node.else_block is None:
            return True
        if isinstance(node.else_block, If):
            return self.is_expression_if(node.else_block)
        return self.single_expression(node.else_block) is not None

    def compile_if_expression(self, node):
        # keeps the child count static: a missing else renders EmptyView
        self.compile_value(node.condition)
        jump_else = self.emit_jump(Opcode.JUMP_IF_FALSE)
        self.compile_value(self.single_expression(node.then_block))
        jump_end = self.emit_jump(Opcode.JUMP)
        self.patch_jump(jump_else, self.bc.count)
        if node.else_block is None:
            self.emit_construct("EmptyView", 0)
        elif isinstance(node.else_block, If):
            self.compile_if_expression(node.else_block)
        else:
            self.compile_value(self.single_expression(node.else_block))
        self.patch_jump(jump_end, self.bc.count)

    def compile_for_each(self, node) -> int:
        closure = node.trailing_closure
        if closure is None or not node.args:
            self.warn("ForEach needs data and a trailing closure", node)
            return 0

        items = self.unroll_items(node.args[0].value)
        if items is None:
            self.warn("ForEach data must be a literal array or a literal range", node)
            return 0
        self.check_unroll(len(items), node)
        self.unroll_budget -= len(items)

        param = closure.params[0] if closure.params else "$0"
        had_previous = param in self.literal_bindings
        previous = self.literal_bindings.get(param)

        total = 0
        for value in items:
            self.literal_bindings[param] = value
            total += self.compile_children(closure)

        if had_previous:
            self.literal_bindings[param] = previous
        else:
            self.literal_bindings.pop(param, None)
        return total

    def unroll_items(self, data):
        if isinstance(data, ArrayLiteral):
            items = []
            for item in data.items:
                value = self.literal_value(item)
                if value is None:
                    self.warn("ForEach element is not a literal; skipped", item)
                    continue
                items.append(value)
            return items

        if isinstance(data, Binary) and data.op == "...":
            low = self.literal_value(data.left)
            high = self.literal_value(data.right)
            if isinstance(low, Int) and isinstance(high, Int):
                self.check_unroll(high.value - low.value + 1, data)
                return [Int(i) for i in range(low.value, high.value + 1)]
        return None

    def check_unroll(self, count, node):
        if count > self.unroll_budget:
            raise CompileError(f"ForEach unrolls more than {MAX_UNROLL} items",
                               getattr(node, "line", None), getattr(node, "column", None))

    # -------- helpers --------
    def literal_value(self, node):
        if isinstance(node, Literal) and node.value is not None:
            return self.check_int(from_python(node.value), node)
        if isinstance(node, Prefix) and node.op == "-" and isinstance(node.expr, Literal) \
                and isinstance(node.expr.value, (int, float)) and not isinstance(node.expr.value, bool):
            return self.check_int(from_python(-node.expr.value), node)
        if isinstance(node, Identifier) and node.name in self.literal_bindings:
            return self.literal_bindings[node.name]
        return None

    def single_expression(self, block):
        # { expr } or { return expr }
        if block is None or len(block.statements) != 1:
            return None
        stmt = block.statements[0]
        if isinstance(stmt, Return):
            return stmt.expr
        if isinstance(stmt, STATEMENT_NODES):
            return None
        return stmt


def compile_program(root, context=None, require_entry=False, on_warning=None):
    return Compiler(on_warning=on_warning).compile(root, context, require_entry)
