"""Compensating-step runner for writes that span both stores."""
from __future__ import annotations

import logging
from typing import Callable

from wa_analyzer.domain.errors import WorkItemStorageError

logger = logging.getLogger(__name__)

Step = Callable[[], None]


class Saga:
    """Run steps in order and undo the completed ones when a later step fails.

    There is no transaction spanning the metadata table and the object store,
    so every forward step that succeeds registers the action that reverses
    it. ``compensate`` replays those in reverse order.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._undo: list[tuple[str, Step]] = []

    def run(self, description: str, action: Step, compensation: Step | None = None) -> None:
        logger.debug("%s: %s", self.name, description)
        action()
        if compensation is not None:
            self._undo.append((description, compensation))

    def compensate(self) -> list[str]:
        """Undo completed steps; return the descriptions that could not be undone."""

        leftovers: list[str] = []
        while self._undo:
            description, compensation = self._undo.pop()
            try:
                compensation()
            except WorkItemStorageError as exc:
                logger.error("%s: failed to undo %s: %s", self.name, description, exc)
                leftovers.append(description)
            else:
                logger.info("%s: undid %s", self.name, description)
        return leftovers
