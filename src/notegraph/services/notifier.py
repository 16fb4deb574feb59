"""Change notification for committed note mutations."""
import logging
from typing import List, Protocol, runtime_checkable

from notegraph.models.schema import ChangeEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class ChangeNotifier(Protocol):
    """Receives one event per committed create, replace or delete."""

    def notify(self, event: ChangeEvent) -> None:
        ...


class NullNotifier:
    """Notifier that drops every event."""

    def notify(self, event: ChangeEvent) -> None:
        return None


class CompositeNotifier:
    """Fans an event out to several notifiers.

    A failing notifier does not stop delivery to the others.
    """

    def __init__(self, notifiers: List[ChangeNotifier]):
        self.notifiers = list(notifiers)

    def notify(self, event: ChangeEvent) -> None:
        for notifier in self.notifiers:
            dispatch(notifier, event)


def dispatch(notifier: ChangeNotifier, event: ChangeEvent) -> bool:
    """Deliver an event, logging instead of raising on failure.

    The mutation behind the event is already committed, so a notifier
    failure must not reach the caller.

    Returns:
        True if the notifier accepted the event.
    """
    try:
        notifier.notify(event)
        return True
    except Exception as e:
        logger.warning(
            f"Change notifier failed for note {event.note_id} ({event.kind.value}): {e}"
        )
        return False
