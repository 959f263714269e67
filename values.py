from dataclasses import dataclass, field
from types import MappingProxyType


class Value:
    # Base of the closed runtime value union. Only the classes below subclass it.
    __slots__ = ()


@dataclass(frozen=True)
class Unit(Value):
    def __repr__(self):
        return "Unit"


UNIT = Unit()


# Int is a signed 64-bit integer
INT_MIN = -2**63
INT_MAX = 2**63 - 1


@dataclass(frozen=True)
class Int(Value):
    value: int


@dataclass(frozen=True)
class Double(Value):
    value: float


@dataclass(frozen=True)
class Bool(Value):
    value: bool


@dataclass(frozen=True)
class String(Value):
    value: str


@dataclass(frozen=True)
class NativeHandle(Value):
    # Produced only by the native tables behind the capability bridge.
    kind: str
    payload: object = None


@dataclass(frozen=True)
class Record(Value):
    type_name: str
    fields: dict = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def __eq__(self, other):
        if not isinstance(other, Record):
            return NotImplemented
        return self.type_name == other.type_name and dict(self.fields) == dict(other.fields)


def format_double(x: float) -> str:
    if x != x:
        return "nan"
    if x in (float("inf"), float("-inf")):
        return "inf" if x > 0 else "-inf"
    if x == int(x) and abs(x) < 1e16:
        return f"{int(x)}.0"
    return repr(x)


def stringify(value) -> str:
    if isinstance(value, String):
        return value.value
    if isinstance(value, Int):
        return str(value.value)
    if isinstance(value, Double):
        return format_double(value.value)
    if isinstance(value, Bool):
        return "true" if value.value else "false"
    if isinstance(value, Unit):
        return "()"
    if isinstance(value, Record):
        parts = [f"{name}: {stringify(v)}" for name, v in value.fields.items()]
        return f"{value.type_name}({', '.join(parts)})"
    if isinstance(value, NativeHandle):
        describe = getattr(value.payload, "describe", None)
        if describe is not None:
            return describe()
        return f"<{value.kind}>"
    raise TypeError(f"not a runtime value: {value!r}")


def as_number(value):
    # Int and Double are the only numeric variants; Bool is not numeric.
    if isinstance(value, Int):
        return value.value
    if isinstance(value, Double):
        return value.value
    return None


def values_equal(lhs, rhs) -> bool:
    if isinstance(lhs, Int) and isinstance(rhs, Int):
        return lhs.value == rhs.value
    if isinstance(lhs, (Int, Double)) and isinstance(rhs, (Int, Double)):
        return float(lhs.value) == float(rhs.value)
    if isinstance(lhs, Bool) and isinstance(rhs, Bool):
        return lhs.value == rhs.value
    if isinstance(lhs, String) and isinstance(rhs, String):
        return lhs.value == rhs.value
    return False


def receiver_kind(value) -> str:
    if isinstance(value, String):
        return "String"
    if isinstance(value, Int):
        return "Int"
    if isinstance(value, Double):
        return "Double"
    if isinstance(value, Bool):
        return "Bool"
    if isinstance(value, Unit):
        return "Unit"
    if isinstance(value, NativeHandle):
        return value.kind
    if isinstance(value, Record):
        return value.type_name
    raise TypeError(f"not a runtime value: {value!r}")


def from_python(obj):
    if isinstance(obj, Value):
        return obj
    if obj is None:
        return UNIT
    # bool before int: bool is an int subclass
    if isinstance(obj, bool):
        return Bool(obj)
    if isinstance(obj, int):
        return Int(obj)
    if isinstance(obj, float):
        return Double(obj)
    if isinstance(obj, str):
        return String(obj)
    raise TypeError(f"cannot convert {type(obj).__name__} to a runtime value")


def to_python(value):
    if isinstance(value, (Int, Double, Bool, String)):
        return value.value
    if isinstance(value, Unit):
        return None
    if isinstance(value, Record):
        return {name: to_python(v) for name, v in value.fields.items()}
    return value
