from __future__ import annotations

import logging

from cross_account_deploy.stack_orchestrator.confirm import InteractiveConfirm
from cross_account_deploy.stack_orchestrator.logging_utils import StageFilter


def _record(msg: str, level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("cross_account_deploy", level, __file__, 1, msg, None, None)


def test_interactive_confirm_accepts_only_yes() -> None:
    prompts: list[str] = []

    def _answer(reply: str):
        def _input(prompt: str) -> str:
            prompts.append(prompt)
            return reply

        return _input

    assert InteractiveConfirm(_answer("y")).confirm("Stack X already exists.") is True
    assert InteractiveConfirm(_answer("YES ")).confirm("Stack X already exists.") is True
    assert InteractiveConfirm(_answer("")).confirm("Stack X already exists.") is False
    assert InteractiveConfirm(_answer("n")).confirm("Stack X already exists.") is False
    assert prompts[0] == "Stack X already exists. Do you want to continue? (y/N): "


def test_interactive_confirm_declines_on_eof() -> None:
    def _closed(prompt: str) -> str:
        raise EOFError

    assert InteractiveConfirm(_closed).confirm("Stack X already exists.") is False


def test_stage_filter_keeps_narrative_and_warnings() -> None:
    stage_filter = StageFilter()

    assert stage_filter.filter(_record("XAD: submitting create (stack=x)")) is True
    assert stage_filter.filter(_record("connection pool resized")) is False
    assert stage_filter.filter(_record("connection pool exhausted", logging.WARNING)) is True
