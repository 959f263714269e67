import threading
from collections import deque

from loguru import logger

from values import UNIT, from_python, stringify


class StateStore:
    """Reactive key/value store shared between runs and the renderer.

    Runs read it through loadState; bindings and actions write it back.
    """

    def __init__(self, values=None):
        self._lock = threading.Lock()
        self._values = {}
        for name, value in (values or {}).items():
            self._values[name] = from_python(value)

    def get(self, name):
        with self._lock:
            return self._values.get(name, UNIT)

    def set(self, name, value):
        with self._lock:
            self._values[name] = from_python(value)

    def set_default(self, name, value):
        # only seeds names nobody has written yet
        with self._lock:
            if name not in self._values:
                self._values[name] = from_python(value)

    def reset(self):
        with self._lock:
            self._values.clear()

    def snapshot(self):
        with self._lock:
            return dict(self._values)

    def __contains__(self, name):
        with self._lock:
            return name in self._values


class LogBuffer:
    def __init__(self, max_lines=500):
        self.max_lines = max_lines
        self._lock = threading.Lock()
        self._lines = deque(maxlen=max_lines)

    def log(self, message: str):
        logger.debug("script: {}", message)
        with self._lock:
            self._lines.append(message)

    def snapshot(self):
        with self._lock:
            return list(self._lines)

    def clear(self):
        with self._lock:
            self._lines.clear()


class Binding:
    # getter/setter pair produced by pushBinding ($name)
    def __init__(self, store, name):
        self.store = store
        self.name = name

    def get(self):
        return self.store.get(self.name)

    def set(self, value):
        self.store.set(self.name, value)

    def describe(self):
        return f"Binding(${self.name} = {stringify(self.get())})"


class Action:
    # zero-argument callback produced by pushAction; writes one literal back
    def __init__(self, store, descriptor):
        self.store = store
        self.descriptor = descriptor

    @property
    def state_name(self):
        return self.descriptor.state_name

    def perform(self):
        self.store.set(self.descriptor.state_name, self.descriptor.value)

    def __call__(self):
        self.perform()

    def describe(self):
        return f"Action({self.descriptor.state_name} = {stringify(self.descriptor.value)})"
