"""
modify_prompt: let an entity edit its own (or another entity's) body.

Only the markdown body changes; declared capabilities are managed with
add_capability and remove_capability.
"""

import re
from typing import Any, Optional

from .capabilities import ENTITY_MODIFIED, _field, _resolve_entity
from ..runtime.capability import Primitive
from ..runtime.context import Context

OPERATIONS = ("append", "prepend", "replace_section", "rewrite")

_HEADING = re.compile(r"^(#+)\s")


def append_content(body: str, content: str) -> str:
    return f"{body.rstrip()}\n\n{content}" if body.strip() else content


def prepend_content(body: str, content: str) -> str:
    return f"{content}\n\n{body.lstrip()}" if body.strip() else content


def replace_section(body: str, heading: str, content: str) -> str:
    """
    Replace a markdown section, from its heading up to the next heading of
    the same or a higher level. A missing section is appended.
    """
    heading = heading.strip()
    if not heading.startswith("#"):
        heading = f"## {heading}"
    level = len(heading) - len(heading.lstrip("#"))
    wanted = heading.lower()

    lines = body.splitlines(keepends=True)
    start: Optional[int] = None
    end: Optional[int] = None
    for i, line in enumerate(lines):
        text = line.strip().lower()
        if start is None:
            if text == wanted or text.startswith(f"{wanted} "):
                start = i
            continue
        match = _HEADING.match(line)
        if match and len(match.group(1)) <= level:
            end = i
            break

    if start is None:
        return append_content(body, f"{heading}\n\n{content}")

    before = "".join(lines[:start]).rstrip()
    after = "".join(lines[end:]).lstrip() if end is not None else ""
    return f"{before}\n\n{heading}\n\n{content}\n\n{after}".strip()


class ModifyPrompt(Primitive):
    name = "modify_prompt"
    description = (
        "Modify an entity's markdown body (its identity and behavior prompt). Can append, prepend, "
        "replace a section, or rewrite it entirely. Does NOT change capabilities; use add_capability for that."
    )
    parameters = {
        "type": "object",
        "properties": {
            "target": {
                "type": "string",
                "description": "Name of the entity to modify. Use 'self' for the current entity.",
            },
            "operation": {
                "type": "string",
                "enum": list(OPERATIONS),
                "description": (
                    "'append' adds to the end, 'prepend' adds to the beginning, 'replace_section' "
                    "replaces one section, 'rewrite' replaces the whole prompt"
                ),
            },
            "content": {"type": "string", "description": "The new content to add or replace with"},
            "section": {
                "type": "string",
                "description": (
                    "For replace_section only: the heading to replace (e.g. '## Learnings'). The section "
                    "runs until the next heading of the same or higher level."
                ),
            },
        },
        "required": ["target", "operation", "content"],
    }

    def receive(self, message: Any, context: Context) -> str:
        entity, error = _resolve_entity(context, _field(message, "target"))
        if error:
            return error

        operation = _field(message, "operation")
        content = _field(message, "content") or ""
        section = _field(message, "section")
        body = entity.body or ""

        if operation == "append":
            new_body = append_content(body, content)
        elif operation == "prepend":
            new_body = prepend_content(body, content)
        elif operation == "replace_section":
            if not section:
                return "Error: 'section' parameter required for replace_section operation"
            new_body = replace_section(body, section, content)
        elif operation == "rewrite":
            new_body = content
        else:
            return f"Error: Unknown operation '{operation}'. Use: {', '.join(OPERATIONS)}"

        entity.body = new_body
        saved = entity.save()
        context.runtime.notify(ENTITY_MODIFIED, {"entity": entity.name, "prompt": operation})

        if not saved:
            return f"Modified '{entity.name}' prompt (in-memory only, could not save to file)."
        if operation == "replace_section":
            return f"Replaced section '{section}' in '{entity.name}' prompt and saved to file."
        past = {"append": "Appended content to", "prepend": "Prepended content to"}.get(operation)
        if past:
            return f"{past} '{entity.name}' prompt and saved to file."
        return f"Rewrote '{entity.name}' prompt entirely and saved to file."
