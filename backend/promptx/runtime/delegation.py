"""
PromptX Delegation

Entity-to-entity calls run in a fresh delegation thread owned by the target,
with a preamble that tells the target who called it and through which chain.
"""

from typing import Any, Optional, TYPE_CHECKING

from .context import Context
from .types import CapabilityKind, ToolCall
from ...utils.logger import get_logger

if TYPE_CHECKING:
    from .entity import Entity

logger = get_logger(__name__)

DELEGATION_STARTED = "delegation_started"
DELEGATION_COMPLETED = "delegation_completed"


def build_delegation_chain(store, thread_id: Optional[str]) -> Optional[str]:
    """
    Human-readable chain such as ``human → coordinator → solver → you (observer)``.
    """
    if store is None or not thread_id:
        return None

    lineage = store.get_thread_lineage(thread_id)
    if not lineage:
        return None

    chain = ["human"]
    chain.extend(thread.owner for thread in lineage[:-1] if thread.owner)
    chain.append(f"you ({lineage[-1].owner})")
    return " → ".join(chain)


def env_data_available(store, thread_id: Optional[str]) -> bool:
    if store is None or not thread_id:
        return False
    root_thread_id = store.resolve_root_thread(thread_id)
    if root_thread_id is None:
        return False
    return bool(store.list_env_data(root_thread_id))


def build_delegation_preamble(context: Context, thread_id: Optional[str]) -> Optional[str]:
    """Preamble for a delegated message; None unless the caller is an entity."""
    if not context.calling_entity:
        return None

    caller = context.registry.get(context.calling_entity)
    if caller is None or caller.kind != CapabilityKind.ENTITY:
        return None

    parts = [
        "---",
        "[Delegation Context]",
        f"Called by: {caller.name}",
        f'{caller.name} is: "{caller.description}"',
    ]

    chain = build_delegation_chain(context.store, thread_id)
    if chain:
        parts.append(f"Delegation chain: {chain}")

    if env_data_available(context.store, thread_id):
        parts.append(
            "Shared environment data is available. Call list_env_data() to see what context has been stored."
        )

    parts.append("---")
    return "\n".join(parts)


def enrich_delegation_message(arguments: Any, preamble: Optional[str]) -> Any:
    """
    Prepend the preamble to the delegated message.

    Returns new arguments; the caller's arguments are never modified.
    """
    if not preamble:
        return arguments

    if isinstance(arguments, dict):
        original = arguments.get("message")
        if original is None:
            original = ""
        enriched = dict(arguments)
        enriched["message"] = f"{preamble}\n\n{original}"
        return enriched

    return f"{preamble}\n\n{arguments if arguments is not None else ''}"


async def delegate(caller: "Entity", target: "Entity", tool_call: ToolCall, context: Context) -> str:
    """
    Run ``target`` on behalf of ``caller`` in an isolated delegation thread.

    Observers get ``delegation_started`` before execution and
    ``delegation_completed`` afterwards, even when the target fails.
    Without a thread store the target runs directly in its current thread.

    A target busy in another call chain is never waited on: the caller
    already holds its own lock, so waiting could close a cycle. The caller
    gets an error tool result instead and may retry later.
    """
    runtime = caller.runtime

    if target.is_busy and not target.held_by_current_chain:
        logger.warning("Delegation target busy", target=target.name, caller=caller.name)
        return f"Error: '{target.name}' is busy with another conversation"

    # No await until the target's lock is taken in receive, so the check above holds
    thread_id = target.create_delegation_thread(
        parent_entity=caller.name,
        parent_thread_id=caller.current_thread_id,
        parent_message_id=caller.last_message_id(),
    )

    # The chain is read from the new thread's lineage, so this follows thread creation
    arguments = enrich_delegation_message(
        tool_call.arguments,
        build_delegation_preamble(context, thread_id),
    )

    payload = {
        "target": target.name,
        "caller": caller.name,
        "thread_id": thread_id,
        "tool_call_id": tool_call.id,
    }
    logger.info("Delegation started", **payload)
    runtime.notify(DELEGATION_STARTED, payload)

    try:
        if thread_id:
            return await target.receive_in_thread(arguments, context, thread_id)
        return await target.receive(arguments, context)
    finally:
        runtime.notify(DELEGATION_COMPLETED, payload)
        logger.info("Delegation completed", **payload)
