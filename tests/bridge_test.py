import dataclasses
import json

import pytest

from bridge import (
    Capabilities, CapabilityConfigError, DEFAULT_TYPES, DEFAULT_FUNCTIONS, load_capabilities,
)


def test_default_allow_list():
    caps = Capabilities.default()
    assert caps.allows_type("Text")
    assert caps.allows_type("VStack")
    assert not caps.allows_type("FileManager")
    assert caps.allows_method("String", "uppercased")
    assert not caps.allows_method("Int", "uppercased")
    assert caps.allows_function("print")
    assert not caps.allows_function("exit")


def test_none_allows_nothing():
    caps = Capabilities.none()
    assert not caps.allows_type("Text")
    assert not caps.allows_method("String", "count")
    assert not caps.allows_function("print")


def test_capabilities_are_frozen():
    caps = Capabilities.default()
    with pytest.raises(dataclasses.FrozenInstanceError):
        caps.allowed_types = frozenset()
    with pytest.raises(TypeError):
        caps.allowed_methods["String"] = frozenset()
    assert isinstance(caps.allowed_functions, frozenset)


def test_merged_is_a_union():
    extra = Capabilities({"Point"}, {"String": ["reversed"]}, ["log"])
    caps = Capabilities.default().merged(extra)
    assert caps.allows_type("Point") and caps.allows_type("Text")
    assert caps.allows_method("String", "reversed") and caps.allows_method("String", "count")
    assert caps.allows_function("log") and caps.allows_function("print")


def test_from_dict_replaces_by_default():
    caps = Capabilities.from_dict({"types": ["Text"], "methods": {"View": ["padding"]}})
    assert caps.allowed_types == frozenset({"Text"})
    assert caps.allows_method("View", "padding")
    assert caps.allowed_functions == frozenset()


def test_from_dict_can_extend_defaults():
    caps = Capabilities.from_dict({"extends": "default", "types": ["Point"]})
    assert caps.allows_type("Point")
    assert set(DEFAULT_TYPES) <= caps.allowed_types
    assert set(DEFAULT_FUNCTIONS) <= caps.allowed_functions


def test_from_dict_rejects_bad_manifests():
    with pytest.raises(CapabilityConfigError) as info:
        Capabilities.from_dict({"types": "Text"})
    assert "types" in str(info.value)

    with pytest.raises(CapabilityConfigError):
        Capabilities.from_dict({"everything": True})

    with pytest.raises(CapabilityConfigError):
        Capabilities.from_dict({"extends": "all"})


def test_to_dict_is_sorted():
    caps = Capabilities({"b", "a"}, {"String": ["y", "x"]}, ["print"])
    assert caps.to_dict() == {
        "types": ["a", "b"],
        "methods": {"String": ["x", "y"]},
        "functions": ["print"],
    }


def test_to_dict_feeds_from_dict():
    caps = Capabilities.default()
    assert Capabilities.from_dict(caps.to_dict()).to_dict() == caps.to_dict()


def test_load_capabilities(tmp_path):
    path = tmp_path / "caps.json"
    path.write_text(json.dumps({"types": ["Text"], "functions": ["print"]}), encoding="utf-8")
    caps = load_capabilities(path)
    assert caps.allows_type("Text")
    assert caps.allows_function("print")


def test_load_capabilities_errors(tmp_path):
    with pytest.raises(CapabilityConfigError):
        load_capabilities(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(CapabilityConfigError) as info:
        load_capabilities(bad)
    assert "not valid JSON" in str(info.value)
