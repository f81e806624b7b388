"""
Unit tests for AnthropicChat message conversion and response parsing
"""

from types import SimpleNamespace

import pytest

from backend.promptx.config import RuntimeConfig
from backend.promptx.runtime.chat import AnthropicChat
from backend.promptx.runtime.types import Message, ToolCall, ToolResult


class FakeMessages:
    def __init__(self, response):
        self.response = response
        self.requests = []

    async def create(self, **params):
        self.requests.append(params)
        return self.response


class FakeClient:
    def __init__(self, response):
        self.messages = FakeMessages(response)
        self.closed = False

    async def close(self):
        self.closed = True


def make_response(*blocks, usage=None):
    return SimpleNamespace(content=list(blocks), usage=usage)


def text_block(text):
    return SimpleNamespace(type="text", text=text)


def tool_block(block_id, name, arguments):
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=arguments)


@pytest.fixture
def config():
    return RuntimeConfig(anthropic_api_key="test-key", model="test-model", max_tokens=256, temperature=0.5)


@pytest.mark.asyncio
async def test_request_parameters(config):
    """Test history and tools are converted to Anthropic format"""
    client = FakeClient(make_response(text_block("hi")))
    chat = AnthropicChat(config, client=client)

    history = [
        Message.user("read a.txt"),
        Message.assistant(tool_calls=[ToolCall("toolu_1", "read_file", {"path": "a.txt"})]),
        Message.tool([ToolResult("toolu_1", "read_file", "contents")]),
    ]
    tools = [{"name": "read_file", "description": "Read", "schema": {"type": "object", "properties": {}}}]

    await chat.chat(system="You are solver.", messages=history, tools=tools)

    request = client.messages.requests[0]
    assert request["model"] == "test-model"
    assert request["max_tokens"] == 256
    assert request["temperature"] == 0.5
    assert request["system"] == "You are solver."
    assert request["tools"] == [
        {"name": "read_file", "description": "Read", "input_schema": {"type": "object", "properties": {}}}
    ]
    assert request["messages"] == [
        {"role": "user", "content": "read a.txt"},
        {
            "role": "assistant",
            "content": [{"type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {"path": "a.txt"}}],
        },
        {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "contents"}],
        },
    ]


@pytest.mark.asyncio
async def test_tools_omitted_when_empty(config):
    client = FakeClient(make_response(text_block("hi")))
    chat = AnthropicChat(config, client=client)

    await chat.chat(system="s", messages=[Message.user("hello")], tools=[])

    assert "tools" not in client.messages.requests[0]


@pytest.mark.asyncio
async def test_parse_text_and_tool_use(config):
    """Test text and tool_use blocks become a ChatResponse"""
    usage = SimpleNamespace(input_tokens=10, output_tokens=5)
    client = FakeClient(
        make_response(
            text_block("Let me check."),
            tool_block("toolu_2", "list_files", {"path": "."}),
            usage=usage,
        )
    )
    chat = AnthropicChat(config, client=client)

    response = await chat.chat(system="s", messages=[Message.user("list")])

    assert response.content == "Let me check."
    assert response.has_tool_calls
    assert response.tool_calls[0].id == "toolu_2"
    assert response.tool_calls[0].arguments == {"path": "."}
    assert response.usage["input_tokens"] == 10
    assert response.usage["cache_read_tokens"] == 0
    assert response.usage["model"] == "test-model"


@pytest.mark.asyncio
async def test_empty_text_is_none(config):
    client = FakeClient(make_response())
    chat = AnthropicChat(config, client=client)

    response = await chat.chat(system="s", messages=[Message.user("hi")])

    assert response.content is None
    assert response.tool_calls == []
    assert response.usage is None


@pytest.mark.asyncio
async def test_close(config):
    client = FakeClient(make_response())
    chat = AnthropicChat(config, client=client)

    await chat.close()
    assert client.closed
