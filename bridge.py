import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from jsonschema import Draft202012Validator

from diagnostics import SwiftletError

DEFAULT_TYPES = (
    "Button", "Circle", "ClosedRange", "Color", "EmptyView", "Group", "HStack",
    "List", "NavigationLink", "NavigationStack", "Rectangle", "Slider", "Spacer",
    "Stepper", "Text", "TextField", "Toggle", "VStack", "ZStack",
)

DEFAULT_METHODS = {
    "String": ("uppercased", "lowercased", "count", "hasPrefix", "hasSuffix", "isEmpty"),
    "Int": ("description",),
    "Double": ("description",),
    "View": ("padding", "foregroundColor", "bold", "font"),
    "ClosedRange": ("contains", "lowerBound", "upperBound"),
}

DEFAULT_FUNCTIONS = ("print", "min", "max", "abs")

_NAMES = {"type": "array", "items": {"type": "string", "minLength": 1}, "uniqueItems": True}

CAPABILITY_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "extends": {"enum": ["default", "none"]},
        "types": _NAMES,
        "methods": {"type": "object", "additionalProperties": _NAMES},
        "functions": _NAMES,
    },
}


class CapabilityConfigError(SwiftletError):
    pass


@dataclass(frozen=True)
class Capabilities:
    """The allow-list consulted before every native construction, call and property read.

    Immutable: a run can never widen its own sandbox.
    """

    allowed_types: frozenset = frozenset()
    allowed_methods: dict = field(default_factory=dict)
    allowed_functions: frozenset = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "allowed_types", frozenset(self.allowed_types))
        methods = {kind: frozenset(names) for kind, names in dict(self.allowed_methods).items()}
        object.__setattr__(self, "allowed_methods", MappingProxyType(methods))
        object.__setattr__(self, "allowed_functions", frozenset(self.allowed_functions))

    def allows_type(self, name: str) -> bool:
        return name in self.allowed_types

    def allows_method(self, kind: str, name: str) -> bool:
        return name in self.allowed_methods.get(kind, ())

    def allows_function(self, name: str) -> bool:
        return name in self.allowed_functions

    @classmethod
    def default(cls):
        return cls(DEFAULT_TYPES, DEFAULT_METHODS, DEFAULT_FUNCTIONS)

    @classmethod
    def none(cls):
        return cls()

    def merged(self, other):
        methods = {kind: set(names) for kind, names in self.allowed_methods.items()}
        for kind, names in other.allowed_methods.items():
            methods.setdefault(kind, set()).update(names)
        return Capabilities(
            self.allowed_types | other.allowed_types,
            methods,
            self.allowed_functions | other.allowed_functions,
        )

    @classmethod
    def from_dict(cls, data):
        validator = Draft202012Validator(CAPABILITY_SCHEMA)
        errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
        if errors:
            details = "; ".join(
                f"{'/'.join(str(x) for x in e.path) or '<root>'}: {e.message}" for e in errors
            )
            raise CapabilityConfigError(f"Invalid capability manifest: {details}")

        caps = cls(
            data.get("types", ()),
            data.get("methods", {}),
            data.get("functions", ()),
        )
        if data.get("extends", "none") == "default":
            caps = cls.default().merged(caps)
        return caps

    def to_dict(self):
        return {
            "types": sorted(self.allowed_types),
            "methods": {kind: sorted(names) for kind, names in sorted(self.allowed_methods.items())},
            "functions": sorted(self.allowed_functions),
        }


def load_capabilities(path) -> Capabilities:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise CapabilityConfigError(f"Cannot read capability manifest {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise CapabilityConfigError(f"Capability manifest {p} is not valid JSON: {e}") from e
    return Capabilities.from_dict(data)
