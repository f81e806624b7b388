"""
Unit tests for Registry and capability descriptors
"""

import pytest

from backend.promptx.errors import CapabilityExistsError
from backend.promptx.runtime.capability import Primitive, sanitize_schema
from backend.promptx.runtime.registry import Registry
from backend.promptx.runtime.types import CapabilityKind


class Echo(Primitive):
    name = "echo"
    description = "Echo the message back"
    parameters = {
        "type": "object",
        "properties": {
            "tags": {"type": "array"},
            "nested": {
                "type": "object",
                "properties": {"grid": {"type": "array", "items": {"type": "array"}}},
            },
        },
        "required": [],
    }

    def receive(self, message, context):
        return message


def test_register_and_get():
    """Test register, get, exists and names"""
    registry = Registry()
    echo = registry.register(Echo())

    assert registry.get("echo") is echo
    assert registry.exists("echo")
    assert "echo" in registry
    assert registry.names() == ["echo"]
    assert registry.get("missing") is None


def test_duplicate_registration_rejected():
    """Test names are unique unless replace is requested"""
    registry = Registry()
    registry.register(Echo())

    with pytest.raises(CapabilityExistsError):
        registry.register(Echo())

    replacement = Echo()
    registry.register(replacement, replace=True)
    assert registry.get("echo") is replacement


def test_unregister_then_register_again():
    """Test the latest registration after unregister wins"""
    registry = Registry()
    registry.register(Echo())

    assert registry.unregister("echo") is True
    assert registry.unregister("echo") is False

    second = Echo(description="second")
    registry.register(second)
    assert registry.get("echo").description == "second"


def test_list_by_kind(runtime, make_entity):
    """Test filtering by primitive and entity kind"""
    solver = make_entity("solver")

    entities = runtime.registry.list(CapabilityKind.ENTITY)
    primitives = runtime.registry.list(CapabilityKind.PRIMITIVE)

    assert entities == [solver]
    assert runtime.registry.entities() == [solver]
    assert "read_file" in [p.name for p in primitives]
    assert solver not in primitives
    assert runtime.registry.is_entity("solver")
    assert not runtime.registry.is_entity("read_file")
    assert len(runtime.registry.all()) == len(entities) + len(primitives)


def test_descriptor_sanitizes_array_items():
    """Test every array property in a descriptor carries items"""
    descriptor = Echo().descriptor()
    props = descriptor["schema"]["properties"]

    assert descriptor["name"] == "echo"
    assert descriptor["description"] == "Echo the message back"
    assert props["tags"]["items"] == {}
    assert props["nested"]["properties"]["grid"]["items"]["items"] == {}


def test_sanitize_does_not_mutate_input():
    """Test sanitize_schema returns a copy"""
    schema = {"type": "object", "properties": {"xs": {"type": "array"}}}
    sanitized = sanitize_schema(schema)

    assert "items" not in schema["properties"]["xs"]
    assert sanitized["properties"]["xs"]["items"] == {}


def test_descriptors_for_skips_unknown():
    """Test descriptors_for returns descriptors for registered names only"""
    registry = Registry()
    registry.register(Echo())

    descriptors = registry.descriptors_for(["echo", "missing"])
    assert [d["name"] for d in descriptors] == ["echo"]


def test_instances_do_not_share_schema():
    """Test per-instance parameter schemas"""
    a, b = Echo(), Echo()
    a.parameters["properties"]["extra"] = {"type": "string"}

    assert "extra" not in b.parameters["properties"]
    assert "extra" not in Echo.parameters["properties"]
