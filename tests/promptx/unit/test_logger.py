"""
Unit tests for the logging helpers
"""

import logging

from backend.utils.logger import PromptXFormatter, get_logger, render_context


def test_logger_names_live_under_promptx():
    assert get_logger("backend.promptx.runtime.entity").logger.name == "promptx.runtime.entity"
    assert get_logger("promptx.runtime.entity").logger.name == "promptx.runtime.entity"
    assert get_logger().logger.name == "promptx"


def test_keyword_arguments_become_context():
    logger = get_logger("tests.logger")
    msg, kwargs = logger.process("Delegation started", {"caller": "coordinator", "exc_info": False})

    assert msg == "Delegation started"
    assert kwargs["exc_info"] is False
    assert kwargs["extra"]["context"] == {"caller": "coordinator"}


def test_bind_carries_context():
    logger = get_logger("tests.logger").bind(entity="solver")
    _, kwargs = logger.process("hello", {"thread_id": "t1"})

    assert kwargs["extra"]["context"] == {"thread_id": "t1", "entity": "solver"}


def test_formatter_renders_context():
    formatter = PromptXFormatter("%(levelname_colored)s|%(message)s%(context_str)s", use_colors=False)
    record = logging.LogRecord("promptx.test", logging.INFO, __file__, 10, "Entity loaded", None, None)
    record.context = {"entity": "solver", "capabilities": 3}

    assert formatter.format(record) == "INFO    |Entity loaded | entity=solver capabilities=3"


def test_call_keywords_override_bound_context():
    logger = get_logger("tests.logger").bind(entity="solver", thread_id="t0")
    _, kwargs = logger.process("hello", {"thread_id": "t1"})

    assert kwargs["extra"]["context"] == {"entity": "solver", "thread_id": "t1"}


def test_render_context_quotes_spaces():
    assert render_context(None) == ""
    assert render_context({"entity": "solver", "error": "disk full"}) == " | entity=solver error='disk full'"
