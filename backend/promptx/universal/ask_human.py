"""
ask_human: pause and get an answer from the human.

In queue mode the request goes on the human queue and the calling task waits
until some other context responds. Otherwise the question is asked on the
console.
"""

import asyncio
from typing import Any, List, Optional

from ..runtime.capability import Primitive
from ..runtime.context import Context
from ...utils.logger import get_logger

logger = get_logger(__name__)


def parse_options(options: Any) -> Optional[List[str]]:
    if options is None or options == "":
        return None
    if isinstance(options, (list, tuple)):
        return [str(o) for o in options]
    return [o.strip() for o in str(options).split(",") if o.strip()]


class AskHuman(Primitive):
    name = "ask_human"
    description = (
        "Pause and ask the human a question. "
        "Use this when you need confirmation, clarification, or input."
    )
    parameters = {
        "type": "object",
        "properties": {
            "question": {"type": "string", "description": "The question to ask the human"},
            "options": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Optional list of choices to present",
            },
        },
        "required": ["question"],
    }

    async def receive(self, message: Any, context: Context) -> str:
        if isinstance(message, dict):
            question = message.get("question") or ""
            options = parse_options(message.get("options"))
        else:
            question, options = str(message or ""), None

        if context.queue_mode:
            return await self._ask_via_queue(question, options, context)
        return await self._ask_on_console(question, options, context)

    async def _ask_via_queue(self, question: str, options: Optional[List[str]], context: Context) -> Any:
        asker = context.calling_entity or context.current_capability or "unknown"

        request = context.human_queue.enqueue(asker, question, options)
        context.bus.publish(asker, "human", f"[waiting] {question}")

        response = await request.wait_for_response()

        context.bus.publish("human", asker, response)
        return response

    async def _ask_on_console(self, question: str, options: Optional[List[str]], context: Context) -> str:
        asker = context.calling_entity or "assistant"

        lines = ["", f"┌─ {asker} asks ─────────────────────────────", "│", f"│  {question}", "│"]
        if options:
            lines.extend(f"│  [{i}] {option}" for i, option in enumerate(options, start=1))
            lines.append("│")
        lines.append("└────────────────────────────────────────────")
        print("\n".join(lines))

        prompt = f"Your choice (1-{len(options)}): " if options else "Your answer: "
        try:
            answer = (await asyncio.to_thread(input, prompt)).strip()
        except EOFError:
            answer = ""

        if options and answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1]
        return answer
