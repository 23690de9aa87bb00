"""Contract between the story core and the layers that render it.

Renderers and editors read the live graph, replace it wholesale, and
subscribe to a signal fired after every successful replacement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Literal, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

ChangeReason = Literal["restore", "import", "sample"]


@runtime_checkable
class GraphHost(Protocol):
    """Whatever owns the live story graph."""

    def read_current_graph(self) -> dict | None:
        """Return the live graph in file layout, or None if none is loaded yet."""
        ...

    def write_graph(self, state: dict) -> bool:
        """Replace the live graph. Returns False when the state was rejected."""
        ...


@dataclass(frozen=True)
class StateChanged:
    """Fired after the live graph was replaced."""

    reason: ChangeReason


Listener = Callable[[StateChanged], None]


class StateChangedSignal:
    """Explicit observer list for graph replacement notifications."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: StateChanged) -> None:
        """Notify every listener. One failing listener does not stop the rest."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"State-changed listener {listener!r} failed")

    def __len__(self) -> int:
        return len(self._listeners)
