from dataclasses import dataclass
from enum import Enum

from colorama import Fore, Style


class EnginePhase(Enum):
    PARSE = "Parse"
    COMPILE = "Compile"
    RUNTIME = "Runtime"
    BRIDGE = "Bridge"


class Severity(Enum):
    ERROR = "Error"
    WARNING = "Warning"


@dataclass(frozen=True)
class Diagnostic:
    phase: EnginePhase
    severity: Severity
    message: str
    line: int | None = None
    column: int | None = None

    def location(self) -> str:
        if self.line is None:
            return ""
        if self.column is None:
            return f"line {self.line}"
        return f"line {self.line}, col {self.column}"


class SwiftletError(Exception):
    pass


class SourceError(SwiftletError):
    phase = EnginePhase.COMPILE

    def __init__(self, message: str, line: int | None = None, column: int | None = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        if self.column is None:
            return f"{self.message} at line {self.line}"
        return f"{self.message} at line {self.line}, col {self.column}"


class ParseError(SourceError):
    phase = EnginePhase.PARSE


class CompileError(SourceError):
    phase = EnginePhase.COMPILE


def diagnostics_from_error(err):
    if isinstance(err, SourceError):
        return [Diagnostic(err.phase, Severity.ERROR, err.message, err.line, err.column)]

    # runtime kinds live in vm.py; matched by attribute so this module stays leaf-level
    kind = getattr(err, "kind", None)
    if kind is not None:
        if kind == "BridgeNotAllowed":
            return [Diagnostic(EnginePhase.BRIDGE, Severity.ERROR, f"API not allowed: {err.name}.")]
        message = err.describe()
        pc = getattr(err, "pc", None)
        if pc is not None:
            message += f" (pc: {pc})"
        return [Diagnostic(EnginePhase.RUNTIME, Severity.ERROR, message)]

    phase = getattr(err, "phase", EnginePhase.RUNTIME)
    return [Diagnostic(phase, Severity.ERROR, str(err) or err.__class__.__name__)]


_SEVERITY_COLORS = {
    Severity.ERROR: Fore.RED,
    Severity.WARNING: Fore.YELLOW,
}


def format_diagnostic(diag: Diagnostic, color: bool = True) -> str:
    head = f"{diag.phase.value} {diag.severity.value.lower()}"
    loc = diag.location()
    text = f"{head}: {diag.message}"
    if loc:
        text += f" ({loc})"
    if not color:
        return text
    return f"{_SEVERITY_COLORS[diag.severity]}{Style.BRIGHT}{head}{Style.RESET_ALL}: {diag.message}" + (
        f" ({loc})" if loc else ""
    )
