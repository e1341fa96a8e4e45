"""Read named outputs from a completed stack."""

from __future__ import annotations

import logging
from typing import Iterable

from .control_plane import ControlPlane
from .models import StackDescriptor

logger = logging.getLogger(__name__)


class OutputExtractor:
    def __init__(self, control_plane: ControlPlane) -> None:
        self.control_plane = control_plane

    def extract(self, descriptor: StackDescriptor, requested_keys: Iterable[str]) -> dict[str, str]:
        """Fresh read of the stack outputs filtered to ``requested_keys``.

        Keys the stack does not export are left out and reported as a notice.
        """
        outputs = self.control_plane.get_stack_outputs(descriptor.name)
        extracted: dict[str, str] = {}
        for key in requested_keys:
            if key in outputs:
                extracted[key] = outputs[key]
            else:
                logger.warning("XAD: stack output missing (stack=%s, key=%s)", descriptor.name, key)
        return extracted
