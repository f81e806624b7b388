"""
Primitive authoring tools.

Entities write their own deterministic tools at runtime. A custom primitive
is a generated Python file in the configured primitives directory holding
one ``Primitive`` subclass whose ``receive`` body is the code the entity
supplied; it is loaded the same way as primitives found at startup.
Built-in and universal primitives are never rewritten or deleted.
"""

import asyncio
import difflib
import inspect
import json
import os
import textwrap
from typing import Any, Dict, List, Optional, Tuple

from .capabilities import ENTITY_MODIFIED, _NAME, _field
from ..errors import DefinitionLoadError
from ..primitives import BUILTIN_PRIMITIVES
from ..runtime.capability import Primitive, empty_schema
from ..runtime.context import Context
from ..runtime.loader import load_primitive_classes
from ..runtime.types import CapabilityKind
from ...utils.logger import get_logger

logger = get_logger(__name__)

BUILTIN_NAMES = frozenset(cls.name for cls in BUILTIN_PRIMITIVES)

NO_PRIMITIVES_DIR = "Error: No primitives directory configured (set PROMPTX_PRIMITIVES_DIR)."
BAD_NAME = "Error: Name must be lowercase letters, numbers, and underscores, starting with a letter."

_SOURCE_TEMPLATE = '''"""
Generated primitive: {name}
"""

from backend.promptx.runtime.capability import Primitive


class {class_name}(Primitive):
    name = {name!r}
    description = {description!r}
    parameters = {parameters!r}

    def receive(self, message, context):
{body}
'''

_INDENT = " " * 8


# ============================================
# Source generation
# ============================================


def class_name_for(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_"))


def _indent_body(code: str) -> str:
    body = textwrap.dedent(code or "").strip("\n").rstrip()
    return textwrap.indent(body or "pass", _INDENT, lambda line: True)


def render_primitive_source(name: str, description: str, parameters: Dict[str, Any], code: str) -> str:
    """
    Python source for a primitive whose ``receive(self, message, context)``
    body is ``code``. ``message`` is the tool call's argument mapping.
    """
    return _SOURCE_TEMPLATE.format(
        name=name,
        class_name=class_name_for(name),
        description=description,
        parameters=parameters,
        body=_indent_body(code),
    )


def check_syntax(code: str) -> Optional[str]:
    """Error text for a ``receive`` body that does not compile; None when it does."""
    try:
        compile(f"def receive(self, message, context):\n{_indent_body(code)}\n", "<primitive>", "exec")
    except SyntaxError as e:
        line = (e.lineno or 1) - 1
        return f"{e.msg} (line {max(line, 1)})"
    return None


def parse_schema(value: Any) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """``(schema, error)`` for a parameters schema given as a mapping or JSON text."""
    if value is None or value == "":
        return empty_schema(), None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            return None, f"Error: parameters_schema is not valid JSON - {e}"
    if not isinstance(value, dict):
        return None, "Error: parameters_schema must be a JSON object"
    return value, None


# ============================================
# Registry helpers
# ============================================


def primitive_path(context: Context, name: str) -> Optional[str]:
    directory = context.runtime.config.primitives_dir
    if not directory:
        return None
    return os.path.join(directory, f"{name}.py")


def is_universal(context: Context, name: str) -> bool:
    return name in context.runtime.universal_capabilities


def install_primitive(
    context: Context,
    name: str,
    description: str,
    parameters: Dict[str, Any],
    code: str,
    replace: bool = False,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Write, load and register a generated primitive.

    Returns ``(path, error)``. On failure the previous file is restored (or
    the new one removed) and the registry is left unchanged.
    """
    path = primitive_path(context, name)
    if path is None:
        return None, NO_PRIMITIVES_DIR

    previous = None
    if os.path.isfile(path):
        with open(path, "r", encoding="utf-8") as f:
            previous = f.read()

    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(render_primitive_source(name, description, parameters, code))
    except OSError as e:
        return None, f"Error: Could not write {path}: {e}"

    try:
        primitive = next(cls for cls in load_primitive_classes(path) if cls.name == name)()
    except (DefinitionLoadError, StopIteration) as e:
        _restore(path, previous)
        reason = e.reason if isinstance(e, DefinitionLoadError) else "generated class not found"
        logger.warning("Primitive install failed", primitive=name, path=path, reason=reason)
        return None, f"Error creating primitive: {reason}"

    context.registry.register(primitive, replace=replace)
    logger.info("Primitive installed", primitive=name, path=path, replaced=replace)
    return path, None


def _restore(path: str, previous: Optional[str]) -> None:
    try:
        if previous is None:
            os.remove(path)
        else:
            with open(path, "w", encoding="utf-8") as f:
                f.write(previous)
    except OSError as e:
        logger.error("Failed to restore primitive file", path=path, error=str(e))


def calling_entity(context: Context) -> Tuple[Any, Optional[str]]:
    """``(entity, error)`` for the entity making the current call."""
    caller = context.calling_entity
    if not caller:
        return None, "Error: No calling entity context. This capability works on the current entity."
    entity = context.registry.get(caller)
    if entity is None or entity.kind != CapabilityKind.ENTITY:
        return None, f"Error: Could not find calling entity '{caller}'."
    return entity, None


def grant(context: Context, entity: Any, capability: str) -> bool:
    """Declare ``capability`` on ``entity``, persist and notify; returns whether the file was saved."""
    entity.declared_capabilities.append(capability)
    saved = entity.save()
    context.runtime.notify(ENTITY_MODIFIED, {"entity": entity.name, "added": capability})
    return saved


def grant_to_caller(context: Context, name: str) -> Optional[str]:
    entity, error = calling_entity(context)
    if error or name in entity.declared_capabilities:
        return None
    saved = grant(context, entity, name)
    return f"Added '{name}' to your capabilities{' and saved to file' if saved else ''}."


# ============================================
# Tools
# ============================================


class CreatePrimitive(Primitive):
    name = "create_primitive"
    description = (
        "Create a new primitive (deterministic Python tool). The primitive is saved to the "
        "primitives directory and added to your capabilities."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {
                "type": "string",
                "description": "Name for the primitive (lowercase, underscores allowed, e.g. 'parse_json')",
            },
            "description": {"type": "string", "description": "Brief description of what this primitive does"},
            "code": {
                "type": "string",
                "description": (
                    "Python body of receive(self, message, context). `message` is a dict of the "
                    "arguments described by parameters_schema. Should return a string."
                ),
            },
            "parameters_schema": {
                "type": "object",
                "description": "Optional JSON Schema for the parameters this primitive accepts",
            },
        },
        "required": ["name", "description", "code"],
    }

    def receive(self, message: Any, context: Context) -> str:
        prim_name = _field(message, "name") or ""
        if not _NAME.match(prim_name):
            return BAD_NAME
        if context.registry.exists(prim_name):
            return f"Error: A capability named '{prim_name}' already exists. Use modify_primitive to update it."

        schema, error = parse_schema(_field(message, "parameters_schema"))
        if error:
            return error

        code = _field(message, "code") or ""
        syntax_error = check_syntax(code)
        if syntax_error:
            return f"Error: Invalid Python syntax - {syntax_error}"

        path, error = install_primitive(context, prim_name, _field(message, "description") or "", schema, code)
        if error:
            return error

        result = f"Created primitive '{prim_name}' at {path}."
        added = grant_to_caller(context, prim_name)
        return f"{result} {added}" if added else result


class AddPrimitive(Primitive):
    name = "add_primitive"
    description = (
        "Add a primitive (deterministic Python tool) to your capabilities. "
        "Use list_primitives first to see what's available."
    )
    parameters = {
        "type": "object",
        "properties": {
            "primitive": {
                "type": "string",
                "description": "Name of the primitive to add (e.g. 'read_file', 'write_file')",
            },
        },
        "required": ["primitive"],
    }

    def receive(self, message: Any, context: Context) -> str:
        primitive_name = _field(message, "primitive") or ""

        entity, error = calling_entity(context)
        if error:
            return error

        primitive = context.registry.get(primitive_name)
        if primitive is None:
            return self._suggest(primitive_name, context)
        if primitive.kind != CapabilityKind.PRIMITIVE:
            return f"Error: '{primitive_name}' is not a primitive (it's an entity). Use add_capability for entities."
        if is_universal(context, primitive_name):
            return f"Error: '{primitive_name}' is a universal capability and is already available to all entities."
        if primitive_name in entity.declared_capabilities:
            return f"You already have the '{primitive_name}' primitive."

        if grant(context, entity, primitive_name):
            return f"Added '{primitive_name}' to your capabilities and saved to file. You can now use it."
        return f"Added '{primitive_name}' to your capabilities (in-memory only). You can now use it."

    def _suggest(self, name: str, context: Context) -> str:
        available = [p.name for p in context.registry.primitives() if not is_universal(context, p.name)]
        suggestions = [n for n in available if name and (name in n or n in name)]
        for close in difflib.get_close_matches(name, available, n=3, cutoff=0.6):
            if close not in suggestions:
                suggestions.append(close)

        if suggestions:
            return f"Error: Primitive '{name}' not found. Did you mean: {', '.join(suggestions)}?"
        return f"Error: Primitive '{name}' not found. Available primitives: {', '.join(available)}"


class ModifyPrimitive(Primitive):
    name = "modify_primitive"
    description = (
        "Modify an existing primitive's code. Only custom primitives (from the primitives "
        "directory) can be modified, not built-in ones."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Name of the primitive to modify"},
            "code": {"type": "string", "description": "New Python body of receive(self, message, context)"},
            "description": {"type": "string", "description": "Optional: Update the description"},
            "parameters_schema": {"type": "object", "description": "Optional: Update the parameters schema"},
            "reason": {"type": "string", "description": "Brief explanation of why this change is needed"},
        },
        "required": ["name", "code"],
    }

    def receive(self, message: Any, context: Context) -> str:
        prim_name = _field(message, "name") or ""

        primitive = context.registry.get(prim_name)
        if primitive is None:
            return f"Error: Primitive '{prim_name}' not found."
        if primitive.kind != CapabilityKind.PRIMITIVE:
            return f"Error: '{prim_name}' is not a primitive."
        if prim_name in BUILTIN_NAMES:
            return f"Error: Cannot modify built-in primitive '{prim_name}'."
        if is_universal(context, prim_name):
            return f"Error: Cannot modify universal capability '{prim_name}'."

        path = primitive_path(context, prim_name)
        if path is None or not os.path.isfile(path):
            return f"Error: Cannot find primitive file at {path}. Only custom primitives can be modified."

        code = _field(message, "code") or ""
        syntax_error = check_syntax(code)
        if syntax_error:
            return f"Error: Invalid Python syntax - {syntax_error}"

        schema = primitive.parameters
        if _field(message, "parameters_schema") is not None:
            schema, error = parse_schema(_field(message, "parameters_schema"))
            if error:
                return error

        description = _field(message, "description") or primitive.description
        path, error = install_primitive(context, prim_name, description, schema, code, replace=True)
        if error:
            return error

        logger.info("Primitive modified", primitive=prim_name, reason=_field(message, "reason") or "")
        return f"Modified primitive '{prim_name}'. Changes saved to {path}."


class DeletePrimitive(Primitive):
    name = "delete_primitive"
    description = (
        "Delete a custom primitive file from the primitives directory. This is DESTRUCTIVE: use it "
        "to recover when a broken primitive is causing problems. Built-in primitives cannot be deleted."
    )
    parameters = {
        "type": "object",
        "properties": {
            "primitive": {"type": "string", "description": "Name of the primitive to delete"},
            "confirm": {"type": "string", "description": "Must be 'true' to confirm deletion."},
        },
        "required": ["primitive", "confirm"],
    }

    def receive(self, message: Any, context: Context) -> str:
        primitive_name = _field(message, "primitive") or ""

        if str(_field(message, "confirm")).lower() != "true":
            return "Error: Must set confirm='true' to delete a primitive. This is a destructive operation."
        if primitive_name in BUILTIN_NAMES:
            return f"Error: Cannot delete built-in primitive '{primitive_name}'."
        if is_universal(context, primitive_name):
            return f"Error: Cannot delete universal capability '{primitive_name}'."

        path = primitive_path(context, primitive_name)
        if path is None or not os.path.isfile(path):
            return f"Error: Primitive file not found at {path}. It may be built in or may not exist."

        context.registry.unregister(primitive_name)
        try:
            os.remove(path)
        except OSError as e:
            return f"Error deleting file: {e}. Primitive was unregistered from memory."

        logger.info("Primitive deleted", primitive=primitive_name, path=path)
        return f"Deleted primitive '{primitive_name}' and removed it from the registry. File: {path}"


class ListPrimitives(Primitive):
    name = "list_primitives"
    description = (
        "List available primitives (deterministic Python tools). Filter: 'builtin', 'custom' "
        "(from the primitives directory), 'active' (on this entity), or 'available' (all)."
    )
    parameters = {
        "type": "object",
        "properties": {
            "filter": {
                "type": "string",
                "enum": ["available", "active", "builtin", "custom"],
                "description": "Which primitives to list. Default: 'available'",
            },
        },
        "required": [],
    }

    def receive(self, message: Any, context: Context) -> str:
        which = _field(message, "filter") or "available"

        primitives = [p for p in context.registry.primitives() if not is_universal(context, p.name)]
        builtin = [p for p in primitives if p.name in BUILTIN_NAMES]
        others = [p for p in primitives if p.name not in BUILTIN_NAMES]

        if which == "builtin":
            return _format_section("Built-in Primitives", builtin)
        if which == "custom":
            if not others:
                where = context.runtime.config.primitives_dir or "(no primitives directory configured)"
                return f"No custom primitives found.\nCustom primitives are stored in: {where}"
            return _format_section("Custom Primitives", others)
        if which == "active":
            entity, error = calling_entity(context)
            if error:
                return error
            active = [p for p in primitives if p.name in entity.declared_capabilities]
            if not active:
                return (
                    f"No primitives currently active on {entity.name}.\n"
                    "Use add_primitive to add primitives to your capabilities."
                )
            return _format_section(f"Active Primitives on {entity.name}", active)
        if which == "available":
            sections = [_format_section(title, group) for title, group in
                        (("Built-in Primitives", builtin), ("Custom Primitives", others)) if group]
            return "\n\n".join(sections) if sections else "No primitives available."

        return f"Error: Unknown filter '{which}'. Use: available, active, builtin, or custom."


def _format_section(title: str, primitives: List[Any]) -> str:
    if not primitives:
        return f"{title}: (none)"
    return "\n".join([f"## {title}", ""] + [f"- **{p.name}**: {p.description}" for p in primitives])


def _truncate(text: str, limit: int) -> str:
    return f"{text[:limit]}..." if len(text) > limit else text


class VerifyPrimitive(Primitive):
    name = "verify_primitive"
    description = (
        "Test a primitive with sample inputs to verify it works correctly. "
        "Useful after creating or modifying a primitive."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Name of the primitive to test"},
            "tests": {
                "type": "array",
                "description": (
                    "Test cases. Each has 'input' (the arguments) and optionally 'expected' (exact match), "
                    "'expected_contains' (substring) or 'expected_error' (true if an error is expected)"
                ),
                "items": {
                    "type": "object",
                    "properties": {
                        "input": {"type": "object", "description": "Arguments passed to the primitive"},
                        "expected": {"description": "Expected output (exact match)"},
                        "expected_contains": {"type": "string", "description": "Text the output must contain"},
                        "expected_error": {"type": "boolean", "description": "True if this test should error"},
                    },
                },
            },
        },
        "required": ["name", "tests"],
    }

    async def receive(self, message: Any, context: Context) -> str:
        prim_name = _field(message, "name") or ""
        tests = _field(message, "tests") or []

        primitive = context.registry.get(prim_name)
        if primitive is None:
            return f"Error: Primitive '{prim_name}' not found."
        if primitive.kind != CapabilityKind.PRIMITIVE:
            return f"Error: '{prim_name}' is not a primitive."
        if not isinstance(tests, list) or not tests:
            return "Error: No test cases provided. Include at least one test with 'input' parameters."

        results = []
        for number, test in enumerate(tests, start=1):
            results.append(await self._run(primitive, test if isinstance(test, dict) else {}, number, context))

        return self._report(prim_name, results)

    async def _run(self, primitive: Primitive, test: Dict[str, Any], number: int, context: Context) -> Dict[str, Any]:
        arguments = test.get("input") if isinstance(test.get("input"), dict) else {}
        outcome = {"number": number, "input": arguments, "passed": False, "output": None}

        try:
            output = primitive.receive(arguments, context)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            # A raised error is an outcome to report, not a failure of this tool
            outcome["passed"] = bool(test.get("expected_error"))
            outcome["failure"] = None if outcome["passed"] else f"Unexpected error: {type(e).__name__}: {e}"
            outcome["output"] = f"{type(e).__name__}: {e}"
            return outcome

        outcome["output"] = output
        errored = isinstance(output, str) and output.startswith("Error")

        if test.get("expected_error"):
            outcome["passed"] = errored
            if not errored:
                outcome["failure"] = f"Expected an error but got: {_truncate(str(output), 100)}"
        elif "expected" in test:
            outcome["passed"] = output == test["expected"]
            if not outcome["passed"]:
                outcome["failure"] = (
                    f"Expected: {_truncate(repr(test['expected']), 100)}, Got: {_truncate(repr(output), 100)}"
                )
        elif test.get("expected_contains"):
            outcome["passed"] = str(test["expected_contains"]) in str(output)
            if not outcome["passed"]:
                outcome["failure"] = f"Expected output to contain '{test['expected_contains']}'"
        else:
            outcome["passed"] = True
        return outcome

    def _report(self, prim_name: str, results: List[Dict[str, Any]]) -> str:
        passed = sum(1 for r in results if r["passed"])
        failed = len(results) - passed
        status = "✓ All tests passed" if failed == 0 else f"✗ {failed} test(s) failed"

        lines = [
            f"## Verification Results for '{prim_name}'",
            "",
            f"**Status**: {status} ({passed}/{len(results)})",
            "",
            "### Test Details",
        ]
        for r in results:
            icon = "✓" if r["passed"] else "✗"
            lines.append(f"{icon} Test {r['number']}: input={json.dumps(r['input'], default=str)}")
            if not r["passed"]:
                lines.append(f"  **FAILED**: {r.get('failure')}")
            if r["output"] is not None:
                label = "Output" if r["passed"] else "Actual output"
                lines.append(f"  {label}: {_truncate(str(r['output']), 80)}")
        return "\n".join(lines)


class RequestPrimitive(Primitive):
    name = "request_primitive"
    description = (
        "Request a new primitive from the human. Use this when you need a tool that doesn't exist. "
        "The human can approve it, supply different code, or reject the request."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Suggested name for the primitive (lowercase, underscores)"},
            "description": {"type": "string", "description": "What this primitive should do"},
            "reason": {"type": "string", "description": "Why you need this primitive"},
            "suggested_code": {
                "type": "string",
                "description": "Optional: suggested Python body of receive(self, message, context)",
            },
            "parameters_schema": {"type": "object", "description": "Optional: suggested JSON Schema for parameters"},
        },
        "required": ["name", "description", "reason"],
    }

    async def receive(self, message: Any, context: Context) -> str:
        prim_name = _field(message, "name") or ""
        if not _NAME.match(prim_name):
            return BAD_NAME
        if context.registry.exists(prim_name):
            return f"Error: A capability named '{prim_name}' already exists."

        description = _field(message, "description") or ""
        reason = _field(message, "reason") or ""
        suggested = _field(message, "suggested_code")
        schema, error = parse_schema(_field(message, "parameters_schema"))
        if error:
            return error

        if context.queue_mode:
            response = await self._ask_via_queue(prim_name, description, reason, suggested, context)
        else:
            response = await self._ask_on_console(prim_name, description, reason, suggested, context)

        return self._handle_response(response, prim_name, description, suggested, schema, context)

    async def _ask_via_queue(self, prim_name, description, reason, suggested, context: Context) -> str:
        asker = context.calling_entity or context.current_capability or "unknown"
        lines = [
            f"**Primitive Request: {prim_name}**",
            "",
            f"**Description:** {description}",
            "",
            f"**Reason:** {reason}",
        ]
        if suggested:
            lines.extend(["", "**Suggested Code:**", "```python", suggested, "```"])

        request = context.human_queue.enqueue(asker, "\n".join(lines), ["approve", "reject"])
        context.bus.publish(asker, "human", f"[primitive request] {prim_name}: {description}")
        return await request.wait_for_response()

    async def _ask_on_console(self, prim_name, description, reason, suggested, context: Context) -> str:
        asker = context.calling_entity or context.current_capability or "assistant"
        lines = [
            "",
            "┌─ Primitive Request ─────────────────────────────",
            "│",
            f"│  From: {asker}",
            f"│  Requested: {prim_name}",
            f"│  Description: {description}",
            f"│  Reason: {reason}",
            "│",
        ]
        if suggested:
            lines.append("│  Suggested Code:")
            lines.extend(f"│    {line}" for line in suggested.splitlines())
            lines.append("│")
        lines.extend([
            "├─────────────────────────────────────────────────",
            "│  [a] Approve (use suggested code)",
            "│  [e] Edit (provide different code)",
            "│  [r] Reject",
            "└─────────────────────────────────────────────────",
        ])
        print("\n".join(lines))

        try:
            choice = (await asyncio.to_thread(input, "Your choice: ")).strip().lower()
            if choice in ("e", "edit") or (choice in ("a", "approve") and not suggested):
                print("Enter the Python body of receive(); finish with END on its own line:")
                return await asyncio.to_thread(_read_until_end)
        except EOFError:
            return ""

        if choice in ("a", "approve"):
            return "approve"
        if choice in ("r", "reject"):
            return "reject"
        return ""

    def _handle_response(self, response, prim_name, description, suggested, schema, context: Context) -> str:
        answer = str(response or "").strip()
        if answer.lower() in ("approve", "approved", "yes", "y"):
            if not suggested:
                return "Request approved but no code provided. The human should create the primitive manually."
            code = suggested
        elif answer.lower() in ("reject", "rejected", "no", "n"):
            return "Request rejected by human."
        elif not answer:
            return "Request deferred."
        else:
            # Anything else is code the human wrote for the primitive
            code = str(response)

        syntax_error = check_syntax(code)
        if syntax_error:
            return f"Error: Invalid Python syntax - {syntax_error}"

        path, error = install_primitive(context, prim_name, description, schema, code)
        if error:
            return error

        requester = context.calling_entity or context.current_capability or "unknown"
        context.bus.publish("human", requester, f"[approved] Created primitive '{prim_name}'")

        result = f"Primitive '{prim_name}' created at {path}."
        added = grant_to_caller(context, prim_name)
        return f"{result} {added}" if added else result


def _read_until_end() -> str:
    lines = []
    while True:
        try:
            line = input()
        except EOFError:
            break
        if line.strip() == "END":
            break
        lines.append(line)
    return "\n".join(lines)
