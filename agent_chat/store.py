"""The single place the current ``AppState`` lives."""

from __future__ import annotations

import logging
from collections.abc import Callable

from agent_chat.actions import Action
from agent_chat.reducer import app_reducer
from agent_chat.state import AppState, initial_state

logger = logging.getLogger(__name__)

Listener = Callable[[AppState], None]


class ChatStore:
    """Holds the current state and applies intents to it in arrival order.

    Listeners are called after every intent that produced a new state
    object; referential no-ops do not notify.
    """

    def __init__(self, state: AppState | None = None) -> None:
        self._state = state if state is not None else initial_state()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> AppState:
        return self._state

    def dispatch(self, action: Action) -> None:
        previous = self._state
        self._state = app_reducer(previous, action)
        logger.debug("Dispatched %s", action.type)
        if self._state is previous:
            return
        for listener in list(self._listeners):
            listener(self._state)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
