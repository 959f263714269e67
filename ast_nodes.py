class ASTNode:
    # Optional source position (1-based). Parser may set these.
    line: int | None = None
    column: int | None = None


class SourceFile(ASTNode):
    def __init__(self, statements):
        self.statements = statements


class Block(ASTNode):
    def __init__(self, statements):
        self.statements = statements


# -------- declarations --------

class StructDecl(ASTNode):
    def __init__(self, name, members, conformances=None):
        self.name = name
        self.members = members              # list[VarDecl | FuncDecl]
        self.conformances = conformances or []


class VarDecl(ASTNode):
    def __init__(self, name, value=None, is_let=False, attributes=None, type_name=None, getter=None):
        self.name = name
        self.value = value                  # initializer expr | None
        self.is_let = is_let
        self.attributes = attributes or []  # e.g. ["State"]
        self.type_name = type_name          # annotation text, informational only
        self.getter = getter                # Block for computed properties

    @property
    def is_computed(self):
        return self.getter is not None


class FuncDecl(ASTNode):
    def __init__(self, name, params, body, return_type=None):
        self.name = name
        self.params = params                # list[str] (internal names)
        self.body = body                    # Block
        self.return_type = return_type


class Import(ASTNode):
    def __init__(self, module):
        self.module = module


# -------- statements --------

class If(ASTNode):
    def __init__(self, condition, then_block, else_block=None):
        self.condition = condition
        self.then_block = then_block
        self.else_block = else_block        # Block | If | None


class While(ASTNode):
    def __init__(self, condition, body):
        self.condition = condition
        self.body = body


class Return(ASTNode):
    def __init__(self, expr=None):
        self.expr = expr


class Assign(ASTNode):
    def __init__(self, target, value):
        self.target = target                # expr (Identifier for supported targets)
        self.value = value


# -------- expressions --------

class Literal(ASTNode):
    def __init__(self, value):
        self.value = value                  # int | float | bool | str


class StringInterpolation(ASTNode):
    def __init__(self, segments):
        self.segments = segments            # list[str | expr]


class ArrayLiteral(ASTNode):
    def __init__(self, items):
        self.items = items


class Identifier(ASTNode):
    def __init__(self, name):
        self.name = name


class MemberAccess(ASTNode):
    def __init__(self, base, name):
        self.base = base                    # expr | None (implicit member: .red)
        self.name = name


class Argument(ASTNode):
    def __init__(self, value, label=None):
        self.value = value
        self.label = label


class Closure(ASTNode):
    def __init__(self, params, statements):
        self.params = params                # list[str]
        self.statements = statements


class Call(ASTNode):
    def __init__(self, callee, args, trailing_closure=None):
        self.callee = callee
        self.args = args                    # list[Argument]
        self.trailing_closure = trailing_closure


class Binary(ASTNode):
    def __init__(self, left, op, right):
        self.left = left
        self.op = op
        self.right = right


class Prefix(ASTNode):
    def __init__(self, op, expr):
        self.op = op
        self.expr = expr


class Ternary(ASTNode):
    def __init__(self, condition, then_expr, else_expr):
        self.condition = condition
        self.then_expr = then_expr
        self.else_expr = else_expr


STATEMENT_NODES = (StructDecl, VarDecl, FuncDecl, Import, If, While, Return, Assign)
