"""Fixed native implementations reachable through the capability bridge.

Nothing here checks permissions: the VM consults the allow-list first and only
then dispatches into these tables. View constructors build an inert ViewNode
tree; turning that tree into real widgets is the embedder's job.
"""
import json
from dataclasses import dataclass

from values import (
    INT_MIN, UNIT, Int, Double, Bool, String, NativeHandle, as_number, stringify,
)
from state import Binding, Action


class NativeTypeError(Exception):
    pass


# -------- handle payloads --------

@dataclass(frozen=True)
class ViewNode:
    name: str
    props: tuple = ()        # ((key, Value), ...)
    children: tuple = ()     # (ViewNode, ...)
    modifiers: tuple = ()    # ((name, (Value, ...)), ...)

    def prop(self, key, default=None):
        for k, v in self.props:
            if k == key:
                return v
        return default

    def with_modifier(self, name, args):
        return ViewNode(self.name, self.props, self.children, self.modifiers + ((name, tuple(args)),))

    def describe(self):
        text = self.name
        if self.props:
            text += "(" + ", ".join(f"{k}: {_render(v)}" for k, v in self.props) + ")"
        if self.children:
            text += " { " + "; ".join(c.describe() for c in self.children) + " }"
        for name, args in self.modifiers:
            text += f".{name}(" + ", ".join(_render(a) for a in args) + ")"
        return text

    def to_dict(self):
        return {
            "type": self.name,
            "props": {k: _plain(v) for k, v in self.props},
            "children": [c.to_dict() for c in self.children],
            "modifiers": [{"name": n, "args": [_plain(a) for a in args]} for n, args in self.modifiers],
        }


@dataclass(frozen=True)
class ClosedRangeSpan:
    lower: object   # Int | Double
    upper: object

    def contains(self, value):
        x = as_number(value)
        if x is None:
            return False
        return as_number(self.lower) <= x <= as_number(self.upper)

    def describe(self):
        return f"{stringify(self.lower)}...{stringify(self.upper)}"


@dataclass(frozen=True)
class NamedColor:
    name: str

    def describe(self):
        return f"Color.{self.name}"


def _render(value):
    if isinstance(value, String):
        return json.dumps(value.value)
    if isinstance(value, ViewNode):
        return value.describe()
    return stringify(value)


def _plain(value):
    if isinstance(value, (Int, Double, Bool, String)):
        return value.value
    if isinstance(value, NativeHandle):
        if isinstance(value.payload, Action):
            return {"action": value.payload.state_name}
        if isinstance(value.payload, Binding):
            return {"binding": value.payload.name}
        if isinstance(value.payload, ViewNode):
            return value.payload.to_dict()
    return stringify(value)


def view(node):
    return NativeHandle("View", node)


def views_in(args):
    return tuple(a.payload for a in args if isinstance(a, NativeHandle) and a.kind == "View")


def unwrap(value):
    # a binding stands in for its current value when used as an initial value
    if isinstance(value, NativeHandle) and isinstance(value.payload, Binding):
        return value.payload.get()
    return value


def first_of(args, kind):
    for a in args:
        a = unwrap(a)
        if isinstance(a, kind):
            return a
    return None


def first_handle(args, payload_type):
    for a in args:
        if isinstance(a, NativeHandle) and isinstance(a.payload, payload_type):
            return a.payload
    return None


def range_of(value):
    if isinstance(value, NativeHandle) and isinstance(value.payload, ClosedRangeSpan):
        return value.payload
    return None


def binding_prop(args):
    binding = first_handle(args, Binding)
    if binding is None:
        return ()
    return (("binding", String(binding.name)),)


# -------- constructors --------

def make_text(args):
    content = stringify(unwrap(args[0])) if args else ""
    return view(ViewNode("Text", (("text", String(content)),)))


def make_container(name):
    def construct(args):
        return view(ViewNode(name, children=views_in(args)))
    return construct


def make_leaf(name):
    def construct(args):
        return view(ViewNode(name))
    return construct


def make_navigation_link(args):
    title = first_of(args, String)
    props = (("title", title),) if title is not None else ()
    return view(ViewNode("NavigationLink", props, views_in(args)))


def make_button(args):
    props = []
    title = first_of(args, String)
    children = views_in(args)
    if title is not None:
        props.append(("title", title))
    elif not children:
        props.append(("title", String("Button")))
    action = first_handle(args, Action)
    if action is not None:
        props.append(("action", NativeHandle("Action", action)))
    return view(ViewNode("Button", tuple(props), children))


def make_slider(args):
    value = as_number(unwrap(args[0])) if args else None
    value = float(value) if value is not None else 0.0
    low, high = 0.0, 1.0
    span = range_of(args[1]) if len(args) > 1 else None
    if span is not None:
        low, high = float(as_number(span.lower)), float(as_number(span.upper))
    elif len(args) == 2:
        high = _float_or(args[1], 1.0)
    elif len(args) >= 3:
        low = _float_or(args[1], 0.0)
        high = _float_or(args[2], 1.0)
    if high <= low:
        high = low + 1
    value = min(max(value, low), high)
    props = (("value", Double(value)), ("min", Double(low)), ("max", Double(high))) + binding_prop(args)
    return view(ViewNode("Slider", props))


def make_toggle(args):
    children = views_in(args)
    is_on = first_of(args, Bool) or Bool(False)
    props = [("isOn", is_on)]
    if not children:
        label = args[0] if args and isinstance(args[0], String) else String("Toggle")
        props.insert(0, ("label", label))
    return view(ViewNode("Toggle", tuple(props) + binding_prop(args), children))


def make_text_field(args):
    placeholder = args[0] if args and isinstance(args[0], String) else String("Text")
    initial = unwrap(args[1]) if len(args) > 1 else String("")
    if not isinstance(initial, String):
        initial = String(stringify(initial))
    props = (("placeholder", placeholder), ("text", initial)) + binding_prop(args)
    return view(ViewNode("TextField", props))


def make_stepper(args):
    children = views_in(args)
    value = first_of(args, Int) or Int(0)
    low, high = 0, 10
    span = range_of(args[-1]) if args else None
    if span is not None:
        low, high = int(as_number(span.lower)), int(as_number(span.upper))
    elif len(args) == 3:
        high = _int_or(args[2], high)
    elif len(args) >= 4:
        low = _int_or(args[2], low)
        high = _int_or(args[3], high)
    if high <= low:
        high = low + 1
    value = Int(min(max(value.value, low), high))
    props = [("value", value), ("min", Int(low)), ("max", Int(high))]
    if not children:
        label = args[0] if args and isinstance(args[0], String) else String("Stepper")
        props.insert(0, ("label", label))
    return view(ViewNode("Stepper", tuple(props) + binding_prop(args), children))


def make_closed_range(args):
    lower = unwrap(args[0]) if args else Int(0)
    upper = unwrap(args[1]) if len(args) > 1 else lower
    if as_number(lower) is None:
        lower = Int(0)
    if as_number(upper) is None:
        upper = lower
    if not (isinstance(lower, Int) and isinstance(upper, Int)):
        lower, upper = Double(float(as_number(lower))), Double(float(as_number(upper)))
    return NativeHandle("ClosedRange", ClosedRangeSpan(lower, upper))


def make_color(args):
    name = stringify(args[0]) if args else "primary"
    return NativeHandle("Color", NamedColor(name))


def _float_or(value, default):
    x = as_number(unwrap(value))
    return float(x) if x is not None else default


def _int_or(value, default):
    x = as_number(unwrap(value))
    return int(x) if x is not None else default


CONSTRUCTORS = {
    "Text": make_text,
    "VStack": make_container("VStack"),
    "HStack": make_container("HStack"),
    "ZStack": make_container("ZStack"),
    "Group": make_container("Group"),
    "List": make_container("List"),
    "NavigationStack": make_container("NavigationStack"),
    "NavigationLink": make_navigation_link,
    "Spacer": make_leaf("Spacer"),
    "EmptyView": make_leaf("EmptyView"),
    "Rectangle": make_leaf("Rectangle"),
    "Circle": make_leaf("Circle"),
    "Button": make_button,
    "Slider": make_slider,
    "Toggle": make_toggle,
    "TextField": make_text_field,
    "Stepper": make_stepper,
    "ClosedRange": make_closed_range,
    "Color": make_color,
}


# -------- methods & properties --------

def _text_arg(args):
    return stringify(unwrap(args[0])) if args else ""


def _modifier(name):
    def apply(receiver, args):
        return view(receiver.payload.with_modifier(name, args))
    return apply


def _description(receiver, args):
    return String(stringify(receiver))


METHODS = {
    "String": {
        "uppercased": lambda r, a: String(r.value.upper()),
        "lowercased": lambda r, a: String(r.value.lower()),
        "count": lambda r, a: Int(len(r.value)),
        "hasPrefix": lambda r, a: Bool(r.value.startswith(_text_arg(a))),
        "hasSuffix": lambda r, a: Bool(r.value.endswith(_text_arg(a))),
        "isEmpty": lambda r, a: Bool(r.value == ""),
    },
    "Int": {
        "description": _description,
    },
    "Double": {
        "description": _description,
    },
    "View": {
        "padding": _modifier("padding"),
        "foregroundColor": _modifier("foregroundColor"),
        "bold": _modifier("bold"),
        "font": _modifier("font"),
    },
    "ClosedRange": {
        "contains": lambda r, a: Bool(bool(a) and r.payload.contains(unwrap(a[0]))),
        "lowerBound": lambda r, a: r.payload.lower,
        "upperBound": lambda r, a: r.payload.upper,
    },
}

# synthetic properties readable through getProperty (same allow-list as methods)
PROPERTIES = {
    "String": {
        "count": lambda r: Int(len(r.value)),
        "isEmpty": lambda r: Bool(r.value == ""),
    },
    "Int": {
        "description": lambda r: String(stringify(r)),
    },
    "Double": {
        "description": lambda r: String(stringify(r)),
    },
    "ClosedRange": {
        "lowerBound": lambda r: r.payload.lower,
        "upperBound": lambda r: r.payload.upper,
    },
}


def lookup_method(kind, name):
    return METHODS.get(kind, {}).get(name)


def lookup_property(kind, name):
    return PROPERTIES.get(kind, {}).get(name)


# -------- free functions --------

def fn_print(args, log):
    message = " ".join(stringify(a) for a in args)
    if log is not None:
        log(message)
    return UNIT


def _numbers(name, args):
    if not args:
        raise NativeTypeError(f"{name}() needs at least one argument")
    nums = [unwrap(a) for a in args]
    for n in nums:
        if as_number(n) is None:
            raise NativeTypeError(f"{name}() expects numbers")
    return nums


def _fold(pick):
    def call(args, log):
        nums = _numbers(pick.__name__, args)
        result = pick(as_number(n) for n in nums)
        if all(isinstance(n, Int) for n in nums):
            return Int(result)
        return Double(float(result))
    return call


def fn_abs(args, log):
    (x,) = _numbers("abs", args[:1])
    if isinstance(x, Int):
        if x.value == INT_MIN:
            raise NativeTypeError("abs() overflows Int")
        return Int(abs(x.value))
    return Double(abs(x.value))


FUNCTIONS = {
    "print": fn_print,
    "min": _fold(min),
    "max": _fold(max),
    "abs": fn_abs,
}
