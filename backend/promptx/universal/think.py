"""
think: an internal reasoning step that is logged and published, not acted on.
"""

from typing import Any

from ..runtime.capability import Primitive, get_argument
from ..runtime.context import Context
from ...utils.logger import get_logger

logger = get_logger(__name__)


class Think(Primitive):
    name = "think"
    description = (
        "Internal reasoning step. Use this to think through a problem before acting. "
        "The thought is logged but not shown prominently to the human."
    )
    parameters = {
        "type": "object",
        "properties": {
            "thought": {"type": "string", "description": "Your internal reasoning or thought process"},
        },
        "required": ["thought"],
    }

    def receive(self, message: Any, context: Context) -> str:
        thought = get_argument(message, "thought", "")
        logger.info("Thought", entity=context.calling_entity, thought=thought)
        return "Thought recorded."
