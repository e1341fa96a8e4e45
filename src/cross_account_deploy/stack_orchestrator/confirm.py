"""Confirmation providers gating updates of existing stacks."""

from __future__ import annotations

from typing import Callable, Protocol


class ConfirmationProvider(Protocol):
    def confirm(self, message: str) -> bool:
        ...


class AlwaysConfirm:
    def confirm(self, message: str) -> bool:
        return True


class NeverConfirm:
    def confirm(self, message: str) -> bool:
        return False


class InteractiveConfirm:
    """Ask on the terminal; anything but ``y``/``yes`` declines."""

    def __init__(self, input_fn: Callable[[str], str] = input) -> None:
        self.input_fn = input_fn

    def confirm(self, message: str) -> bool:
        try:
            reply = self.input_fn(f"{message} Do you want to continue? (y/N): ")
        except EOFError:
            return False
        return reply.strip().lower() in {"y", "yes"}
