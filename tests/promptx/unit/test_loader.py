"""
Unit tests for definition loading
"""

import os

import pytest

from backend.promptx.errors import DefinitionLoadError
from backend.promptx.runtime.loader import load_entity_definition, parse_front_matter
from backend.promptx.runtime.types import ChatResponse, ToolCall


GOOD_ENTITY = """\
---
name: researcher
description: Finds things out
capabilities:
  - read_file
  - http_get
model_hint: fast
---

# Researcher

You research topics carefully.
"""

SHOUT_PRIMITIVE = """\
from backend.promptx.runtime.capability import Primitive


class Shout(Primitive):
    name = "shout"
    description = "Upper-case the message"

    def receive(self, message, context):
        return str(message.get("text", "")).upper()
"""


def test_parse_front_matter():
    """Test config and body are split"""
    config, body = parse_front_matter(GOOD_ENTITY)

    assert config["name"] == "researcher"
    assert config["capabilities"] == ["read_file", "http_get"]
    assert config["model_hint"] == "fast"
    assert body.startswith("# Researcher")


def test_parse_without_front_matter():
    """Test a plain markdown file is all body"""
    config, body = parse_front_matter("Just a body\n")
    assert config == {}
    assert body == "Just a body"


def test_entity_name_defaults_to_file_stem(tmp_path):
    """Test a definition without a name takes the file name"""
    path = tmp_path / "helper.md"
    path.write_text("---\ndescription: Helps\n---\n\nYou help.\n")

    definition = load_entity_definition(str(path))
    assert definition.name == "helper"
    assert definition.config["capabilities"] == []


@pytest.mark.parametrize(
    "text",
    [
        "---\nname: [unclosed\n---\n\nbody\n",
        "---\n- just\n- a list\n---\n\nbody\n",
        "---\nname: bad\ncapabilities: read_file\n---\n\nbody\n",
        "---\nname: bad\ncapabilities:\n  - 3\n---\n\nbody\n",
    ],
)
def test_malformed_entity_definitions(tmp_path, text):
    """Test malformed definitions raise DefinitionLoadError"""
    path = tmp_path / "bad.md"
    path.write_text(text)

    with pytest.raises(DefinitionLoadError) as exc_info:
        load_entity_definition(str(path))
    assert exc_info.value.path == str(path)


def test_load_entities_isolates_failures(runtime):
    """Test one malformed entity does not stop the rest from loading"""
    directory = runtime.config.objects_dir

    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, "researcher.md"), "w") as f:
        f.write(GOOD_ENTITY)
    with open(os.path.join(directory, "broken.md"), "w") as f:
        f.write("---\nname: [unclosed\n---\n\nbody\n")
    with open(os.path.join(directory, "writer.md"), "w") as f:
        f.write("---\nname: writer\ncapabilities: [write_file]\n---\n\nYou write.\n")

    report = runtime.load_entities()

    assert sorted(report.loaded) == ["researcher", "writer"]
    assert len(report.failed) == 1
    assert report.failed[0].path.endswith("broken.md")
    assert not report.ok

    researcher = runtime.entity("researcher")
    assert researcher.declared_capabilities == ["read_file", "http_get"]
    assert researcher.config["model_hint"] == "fast"
    assert researcher.body.startswith("# Researcher")


def test_duplicate_entity_reported(runtime, make_entity, tmp_path):
    """Test a definition whose name is taken is reported, not raised"""
    make_entity("researcher")
    directory = tmp_path / "more"
    directory.mkdir()
    (directory / "researcher.md").write_text(GOOD_ENTITY)

    report = runtime.load_entities(str(directory))

    assert report.loaded == []
    assert len(report.failed) == 1
    assert runtime.entity("researcher").description == "The researcher entity"


def test_load_primitives_isolates_failures(runtime, tmp_path):
    """Test syntax and import errors are confined to their file"""
    directory = tmp_path / "primitives"
    directory.mkdir()
    (directory / "shout.py").write_text(SHOUT_PRIMITIVE)
    (directory / "syntax_error.py").write_text("def broken(:\n    pass\n")
    (directory / "import_error.py").write_text("import module_that_does_not_exist_anywhere\n")
    (directory / "empty.py").write_text("X = 1\n")
    (directory / "_private.py").write_text("raise RuntimeError('never imported')\n")

    report = runtime.load_primitives(str(directory))

    assert report.loaded == ["shout"]
    failed = sorted(e.path.rsplit("/", 1)[-1] for e in report.failed)
    assert failed == ["empty.py", "import_error.py", "syntax_error.py"]

    shout = runtime.get("shout")
    assert shout.receive({"text": "hi"}, runtime.context()) == "HI"


@pytest.mark.asyncio
async def test_loaded_primitive_is_callable_by_entity(runtime, mock_chat, make_entity, tmp_path):
    """Test an entity can call a primitive loaded from a file"""
    directory = tmp_path / "primitives"
    directory.mkdir()
    (directory / "shout.py").write_text(SHOUT_PRIMITIVE)
    runtime.load_primitives(str(directory))

    caller = make_entity("caller", capabilities=["shout"])
    mock_chat.script(
        ChatResponse(tool_calls=[ToolCall("call_1", "shout", {"text": "quiet"})]),
        ChatResponse(content="done"),
    )

    await runtime.send_message("caller", "shout something")

    assert caller.history[2].results[0].content == "QUIET"


def test_missing_directory_gives_empty_report(runtime, tmp_path):
    """Test loading from a missing directory reports nothing"""
    report = runtime.load_entities(str(tmp_path / "nope"))
    assert report.loaded == []
    assert report.ok
