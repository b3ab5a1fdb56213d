"""
Projector: applies one decoded event to the projection.

The projector is the only writer of aggregates on the event path. For each
event it holds the write locks of every aggregate the event touches, runs the
pure handler against the current state and commits the resulting Mutation.
"""

import logging
from typing import Callable, Dict, Type

from .errors import InvalidTransitionError
from .handlers import DEFAULT_HANDLERS, Mutation, ProjectableEvent, ProjectionView, touched_keys
from .. import metrics

logger = logging.getLogger(__name__)

# Handler signature: (projection view, event) -> Mutation
Handler = Callable[[ProjectionView, ProjectableEvent], Mutation]


class Projector:
    """
    Registry of event handlers bound to a projection store.

    Usage:
        projector = Projector(store)
        projector.apply(event)
    """

    def __init__(self, store, register_defaults: bool = True) -> None:
        """
        Args:
            store: ProjectionStore to read from and commit to
            register_defaults: Register the built-in handler for every event type
        """
        self.store = store
        self._handlers: Dict[Type, Handler] = {}
        if register_defaults:
            for event_type, handler in DEFAULT_HANDLERS.items():
                self.register(event_type, handler)

    def register(self, event_type: Type, handler: Handler) -> None:
        self._handlers[event_type] = handler

    def apply(self, event: ProjectableEvent) -> Mutation:
        """
        Apply one event.

        Must only be called after the IdempotencyGuard admitted the event.

        Returns:
            The committed Mutation

        Raises:
            InvalidTransitionError: No handler, or the transition is illegal
            MissingDependencyError: A referenced aggregate is not projected yet
        """
        event_type = type(event)
        handler = self._handlers.get(event_type)
        if handler is None:
            raise InvalidTransitionError(f"No handler for event type: {event_type.__name__}")

        with self.store.locks.hold(touched_keys(event)):
            mutation = handler(self.store, event)
            self.store.commit(mutation)

        metrics.track_event_applied(event_type.__name__)
        logger.debug(
            f"Applied {event_type.__name__} {event.meta.key} at block {event.meta.block_number}"
        )
        return mutation
