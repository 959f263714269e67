import json
import sys
import traceback

from colorama import Fore, Style, just_fix_windows_console
from loguru import logger

from ast_nodes import ASTNode, SourceFile, StructDecl, FuncDecl, VarDecl, Literal, STATEMENT_NODES
from bridge import Capabilities, load_capabilities
from bytecode import disassemble
from compiler import Compiler
from diagnostics import SwiftletError, diagnostics_from_error, format_diagnostic
from engine import Engine
from parser import parse_source
from state import StateStore, LogBuffer
from values import Int, Double, Bool, String, Unit, stringify, to_python
from vm import VM

USAGE = [
    "Usage:",
    "  swiftlet parse <file.swift>",
    "  swiftlet build <file.swift>",
    "  swiftlet run <file.swift> [--caps caps.json] [--state state.json] [--timeout ms] [--trace]",
    "  swiftlet repl [--caps caps.json]",
    "  (optional) --debug to show Python traceback and debug logs",
]


# AST printer (so you can SEE what the parser built)
def ast_to_dict(node):
    if node is None:
        return None
    if isinstance(node, list):
        return [ast_to_dict(x) for x in node]
    if not isinstance(node, ASTNode):
        return node

    d = {"type": node.__class__.__name__}
    for key, value in vars(node).items():
        if key in ("line", "column"):
            continue
        d[key] = ast_to_dict(value)
    return d


def pretty(obj, indent=0):
    sp = "  " * indent
    if isinstance(obj, dict):
        lines = []
        for k, v in obj.items():
            if isinstance(v, (dict, list)) and v:
                lines.append(f"{sp}{k}:")
                lines.append(pretty(v, indent + 1))
            else:
                lines.append(f"{sp}{k}: {v!r}" if isinstance(v, str) else f"{sp}{k}: {v}")
        return "\n".join(lines)
    if isinstance(obj, list):
        lines = []
        for item in obj:
            lines.append(f"{sp}-")
            lines.append(pretty(item, indent + 1))
        return "\n".join(lines)
    return f"{sp}{obj}"


def configure_logging(debug: bool):
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "WARNING",
        format="<level>{level: <7}</level> {message}",
        colorize=sys.stderr.isatty(),
    )


def report(err, debug: bool):
    if debug:
        traceback.print_exc()
    color = sys.stdout.isatty()
    for diag in diagnostics_from_error(err):
        print(format_diagnostic(diag, color=color))


def read_source(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def take_option(args, name):
    # removes "--name value" from args and returns value (or None)
    if name not in args:
        return None
    i = args.index(name)
    if i + 1 >= len(args):
        raise SwiftletError(f"{name} needs a value")
    value = args[i + 1]
    del args[i:i + 2]
    return value


def take_flag(args, name):
    if name in args:
        args.remove(name)
        return True
    return False


def cmd_parse(path, debug: bool = False):
    try:
        tree = ast_to_dict(parse_source(read_source(path)))
    except (OSError, SwiftletError) as e:
        report(e, debug)
        sys.exit(1)
    print(pretty(tree))


def cmd_build(path, debug: bool = False):
    try:
        program = Compiler().compile(parse_source(read_source(path)))
    except (OSError, SwiftletError) as e:
        report(e, debug)
        sys.exit(1)

    print("STRINGS:")
    for i, s in enumerate(program.string_pool):
        print(f"  [{i}] {s!r}")

    print("\nSYMBOLS:")
    for i, s in enumerate(program.symbol_pool):
        print(f"  [{i}] {s}")

    if program.type_table:
        print("\nTYPES:")
        for info in program.type_table:
            print(f"  {info.name}({', '.join(info.field_names)})")

    if program.state_defaults:
        print("\nSTATE:")
        for name, value in program.state_defaults.items():
            print(f"  {name} = {stringify(value)}")

    if program.action_pool:
        print("\nACTIONS:")
        for i, action in enumerate(program.action_pool):
            print(f"  [{i}] {action.state_name} = {stringify(action.value)}")

    if program.function_table:
        print("\nFUNCTIONS:")
        for name, info in program.function_table.items():
            print(f"  {name}  entry={info.entry:04d}  params={info.param_count}")

    print("\nBYTECODE:")
    for line in disassemble(program):
        print(f"  {line}")


def load_state(path):
    if path is None:
        return StateStore()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SwiftletError(f"Cannot load state file {path}: {e}") from e
    if not isinstance(data, dict):
        raise SwiftletError(f"State file {path} must hold a JSON object")
    return StateStore(data)


def cmd_run(path, caps_path=None, state_path=None, timeout_ms=250, trace=False, debug: bool = False):
    log = LogBuffer()
    try:
        caps = load_capabilities(caps_path) if caps_path else Capabilities.default()
        engine = Engine(caps, timeout_ms=timeout_ms, trace=trace)
        program = engine.compile(read_source(path))
        store = load_state(state_path)
        value = engine.run(program, log, store)
    except (OSError, SwiftletError) as e:
        for line in log.snapshot():
            print(line)
        report(e, debug)
        sys.exit(1)

    for line in log.snapshot():
        print(line)
    if not isinstance(value, Unit):
        print(stringify(value))


def _count_braces_delta(line: str) -> int:
    # Minimal brace balancer for REPL multiline input.
    # Ignores braces inside "..." strings and after // (best-effort).
    delta = 0
    in_string = False
    i = 0
    while i < len(line):
        ch = line[i]
        if not in_string and line.startswith("//", i):
            break
        if ch == "\\" and in_string:
            i += 2
            continue
        if ch == '"':
            in_string = not in_string
        elif not in_string:
            if ch in "{(":
                delta += 1
            elif ch in "})":
                delta -= 1
        i += 1
    return delta


class ReplSession:
    """Runs each snippet in a fresh VM.

    Top-level variables survive between snippets by being re-declared with
    their last literal value; declarations and @State names are replayed.
    """

    def __init__(self, capabilities):
        self.capabilities = capabilities
        self.store = StateStore()
        self.log = LogBuffer()
        self.decls = []      # StructDecl / FuncDecl / @State VarDecl nodes
        self.variables = {}  # name -> Value

    def prelude(self):
        stmts = list(self.decls)
        for name, value in self.variables.items():
            stmts.append(VarDecl(name, Literal(to_python(value))))
        return stmts

    def remember(self, stmts):
        for stmt in stmts:
            if isinstance(stmt, (StructDecl, FuncDecl)) or (
                isinstance(stmt, VarDecl) and "State" in stmt.attributes
            ):
                self.decls = [d for d in self.decls if getattr(d, "name", None) != stmt.name]
                self.decls.append(stmt)

    def execute(self, source):
        parsed = parse_source(source)
        prelude = self.prelude()
        root = SourceFile(prelude + parsed.statements)

        compiler = Compiler()
        program = compiler.compile(root)
        vm = VM(self.capabilities, logger=self.log, state_store=self.store)
        value = vm.run(program)

        frame = vm.locals[0] if vm.locals else []
        for name, slot in compiler.locals.items():
            if slot < len(frame) and isinstance(frame[slot], (Int, Double, Bool, String)):
                self.variables[name] = frame[slot]
        self.remember(parsed.statements)

        lines = self.log.snapshot()
        self.log.clear()
        stmts = parsed.statements
        is_expression = bool(stmts) and not isinstance(stmts[-1], STATEMENT_NODES)
        if is_expression and not isinstance(value, Unit):
            lines.append(stringify(value))
        return lines


def cmd_repl(caps_path=None, debug: bool = False):
    try:
        caps = load_capabilities(caps_path) if caps_path else Capabilities.default()
    except SwiftletError as e:
        report(e, debug)
        sys.exit(1)

    session = ReplSession(caps)
    print("Swiftlet REPL. Type :q to quit.")

    buffer_lines = []
    depth = 0
    while True:
        prompt = "swiftlet> " if not buffer_lines else "...> "
        try:
            line = input(prompt)
        except (EOFError, KeyboardInterrupt):
            print()
            break

        stripped = line.strip()
        if not buffer_lines and stripped in (":q", ":quit", "quit", "exit"):
            break

        if not buffer_lines and stripped == ":state":
            for name, value in session.store.snapshot().items():
                print(f"{name} = {stringify(value)}")
            continue

        # Allow blank lines to submit when not inside a block.
        if not stripped and depth == 0 and not buffer_lines:
            continue

        buffer_lines.append(line)
        depth += _count_braces_delta(line)

        # Wait for block completion if braces aren't balanced yet.
        if depth > 0:
            continue

        source = "\n".join(buffer_lines) + "\n"
        buffer_lines = []
        depth = 0

        try:
            for out in session.execute(source):
                print(out)
        except SwiftletError as e:
            report(e, debug)


def main():
    just_fix_windows_console()
    args = sys.argv[1:]

    debug = take_flag(args, "--debug")
    trace = take_flag(args, "--trace")
    configure_logging(debug or trace)

    try:
        caps_path = take_option(args, "--caps")
        state_path = take_option(args, "--state")
        timeout = take_option(args, "--timeout")
        timeout_ms = int(timeout) if timeout is not None else 250
    except (SwiftletError, ValueError) as e:
        print(f"{Fore.RED}{e}{Style.RESET_ALL}")
        sys.exit(1)

    if not args:
        print("\n".join(USAGE))
        sys.exit(1)

    cmd = args[0]

    if cmd == "repl":
        if len(args) != 1:
            print("\n".join(USAGE))
            sys.exit(1)
        cmd_repl(caps_path, debug=debug)
        return

    if len(args) != 2:
        print("\n".join(USAGE))
        sys.exit(1)

    path = args[1]

    if cmd == "parse":
        cmd_parse(path, debug=debug)
    elif cmd == "build":
        cmd_build(path, debug=debug)
    elif cmd == "run":
        cmd_run(path, caps_path, state_path, timeout_ms, trace, debug=debug)
    else:
        print(f"Unknown command: {cmd}")
        sys.exit(1)


if __name__ == "__main__":
    main()
