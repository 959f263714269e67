import threading
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from bridge import Capabilities
from compiler import Compiler
from diagnostics import SwiftletError, EnginePhase, diagnostics_from_error
from natives import ViewNode
from parser import parse_source
from values import NativeHandle
from vm import VM


class RunTimeout(SwiftletError):
    phase = EnginePhase.RUNTIME

    def __init__(self, timeout_ms):
        super().__init__("Execution timed out.")
        self.timeout_ms = timeout_ms


class RenderError(SwiftletError):
    phase = EnginePhase.RUNTIME


class RunStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class RunResult:
    status: RunStatus
    view: ViewNode | None = None
    program: object = None
    value: object = None
    diagnostics: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS


class Engine:
    """Compile source, run it in the sandbox, and hand back the root view.

    A run that exceeds timeout_ms is abandoned: the worker thread is a daemon
    and is left to finish on its own, its result discarded.
    """

    def __init__(self, capabilities=None, timeout_ms=250, trace=False):
        self.capabilities = capabilities or Capabilities.default()
        self.timeout_ms = timeout_ms
        self.trace = trace
        self.last_diagnostics = []

    def compile(self, source, context=None, require_entry=False, on_warning=None):
        root = parse_source(source)
        compiler = Compiler(on_warning=on_warning)
        program = compiler.compile(root, context, require_entry=require_entry)
        self.last_diagnostics = list(compiler.diagnostics)
        return program

    def run(self, program, log_buffer=None, state_store=None):
        vm = VM(self.capabilities, logger=log_buffer, state_store=state_store, trace=self.trace)
        if not self.timeout_ms:
            return vm.run(program)

        outcome = {}

        def work():
            try:
                outcome["value"] = vm.run(program)
            except Exception as e:
                # handed to the waiting thread and re-raised there
                outcome["error"] = e

        worker = threading.Thread(target=work, name="swiftlet-run", daemon=True)
        worker.start()
        worker.join(self.timeout_ms / 1000)
        if worker.is_alive():
            logger.warning("run exceeded {} ms; result discarded", self.timeout_ms)
            raise RunTimeout(self.timeout_ms)
        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]

    def render_root(self, value):
        if isinstance(value, NativeHandle) and value.kind == "View":
            return value.payload
        raise RenderError("Program did not return a View.")

    def execute(self, source, log_buffer=None, state_store=None, context=None) -> RunResult:
        warnings = []
        program = None
        try:
            program = self.compile(source, context, require_entry=True, on_warning=warnings.append)
            value = self.run(program, log_buffer, state_store)
            view = self.render_root(value)
        except SwiftletError as e:
            return RunResult(
                RunStatus.FAILURE,
                program=program,
                diagnostics=warnings + diagnostics_from_error(e),
            )
        return RunResult(RunStatus.SUCCESS, view, program, value, warnings)
