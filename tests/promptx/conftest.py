"""
Shared fixtures for PromptX tests
"""

import inspect
import os
import tempfile

import pytest

from backend.promptx.config import RuntimeConfig
from backend.promptx.persistence import ThreadStore
from backend.promptx.runtime.chat import Chat
from backend.promptx.runtime.environment import Runtime


class MockChat(Chat):
    """
    Scripted chat collaborator.

    Each call pops the next scripted item: a ChatResponse is returned, an
    exception is raised, and a callable is invoked with
    ``(system, messages, tools)`` (awaited if it returns a coroutine).
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def script(self, *responses) -> "MockChat":
        self.responses.extend(responses)
        return self

    async def chat(self, system, messages, tools=None):
        self.calls.append({"system": system, "messages": list(messages), "tools": tools})
        if not self.responses:
            raise AssertionError("MockChat has no scripted response left")

        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(system, messages, tools)
            if inspect.isawaitable(response):
                response = await response
        return response


@pytest.fixture
def temp_db():
    """Create a temporary database for testing"""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield f"sqlite:///{path}"
    os.unlink(path)


@pytest.fixture
def store(temp_db):
    """ThreadStore on a temp database"""
    service = ThreadStore(temp_db)
    yield service
    service.close()


@pytest.fixture
def mock_chat():
    return MockChat()


@pytest.fixture
def runtime(temp_db, mock_chat, tmp_path):
    """Runtime with a temp store, scripted chat and an objects directory"""
    config = RuntimeConfig(
        anthropic_api_key="test-key",
        database_url=temp_db,
        objects_dir=str(tmp_path / "objects"),
        log_level="DEBUG",
    )
    rt = Runtime(config=config, chat=mock_chat)
    yield rt
    rt.store.close()


@pytest.fixture
def memory_runtime(mock_chat):
    """Runtime without a thread store"""
    rt = Runtime(config=RuntimeConfig(anthropic_api_key="test-key", database_url=None), chat=mock_chat)
    yield rt


@pytest.fixture
def make_entity(runtime):
    """Factory registering an entity on the runtime fixture"""

    def factory(name, capabilities=None, description=None, body=None, target=None):
        rt = target or runtime
        return rt.register_entity(
            {
                "name": name,
                "description": description or f"The {name} entity",
                "capabilities": list(capabilities or []),
            },
            body or f"You are {name}.",
        )

    return factory
