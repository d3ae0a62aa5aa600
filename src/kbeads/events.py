"""
kbeads Events -- the event-stream collaborator seen by the hook subscriber.

Subjects are dot-separated tokens (``beads.session.end``). Subscription
patterns follow NATS rules: ``*`` matches exactly one token and a trailing
``>`` matches one or more remaining tokens.

LocalEventBus is an in-process implementation for single-process
deployments and tests; anything exposing ``subscribe`` with the same
contract can stand in for it.
"""

import logging
import queue
import threading
from typing import Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger("kbeads.events")

SESSION_TOPIC_PATTERN = "beads.session.>"

TOPIC_SESSION_END = "beads.session.end"
TOPIC_SESSION_BEFORE_COMMIT = "beads.session.before-commit"
TOPIC_SESSION_BEFORE_PUSH = "beads.session.before-push"
TOPIC_SESSION_BEFORE_HANDOFF = "beads.session.before-handoff"

_TRIGGER_TOPICS = {
    "session-end": TOPIC_SESSION_END,
    "before-commit": TOPIC_SESSION_BEFORE_COMMIT,
    "before-push": TOPIC_SESSION_BEFORE_PUSH,
    "before-handoff": TOPIC_SESSION_BEFORE_HANDOFF,
}

# Queue item marking the end of a subscription
CLOSED = None


class SubscribeError(RuntimeError):
    """Subscribing to the event stream failed."""


class BusClosedError(RuntimeError):
    """The bus no longer accepts publishes or subscriptions."""


class Subscriber(Protocol):
    def subscribe(self, topic: str) -> Tuple["queue.Queue[Optional[bytes]]", Callable[[], None]]:
        """Deliver raw payloads for ``topic`` on the returned queue.

        Calling the returned function unsubscribes and puts CLOSED on the queue.
        Raises SubscribeError if the subscription cannot be made.
        """
        ...


def session_topic(trigger: str) -> str:
    """Subject a session event for ``trigger`` is published on."""
    return _TRIGGER_TOPICS.get(trigger, f"beads.session.{trigger}")


def subject_matches(pattern: str, subject: str) -> bool:
    """NATS-style subject match of ``subject`` against ``pattern``."""
    p_tokens = pattern.split(".")
    s_tokens = subject.split(".")
    for i, tok in enumerate(p_tokens):
        if tok == ">":
            return i == len(p_tokens) - 1 and len(s_tokens) > i
        if i >= len(s_tokens):
            return False
        if tok != "*" and tok != s_tokens[i]:
            return False
    return len(p_tokens) == len(s_tokens)


class LocalEventBus:
    """Thread-safe in-process publish/subscribe bus."""

    def __init__(self, maxsize: int = 0):
        self._lock = threading.Lock()
        self._subs: Dict[int, Tuple[str, "queue.Queue[Optional[bytes]]"]] = {}
        self._next_id = 0
        self._maxsize = maxsize
        self._closed = False

    def subscribe(self, topic: str) -> Tuple["queue.Queue[Optional[bytes]]", Callable[[], None]]:
        if not topic:
            raise SubscribeError("empty subscription topic")
        with self._lock:
            if self._closed:
                raise SubscribeError("event bus is closed")
            sub_id = self._next_id
            self._next_id += 1
            ch: "queue.Queue[Optional[bytes]]" = queue.Queue(maxsize=self._maxsize)
            self._subs[sub_id] = (topic, ch)

        def cancel() -> None:
            with self._lock:
                entry = self._subs.pop(sub_id, None)
            if entry is not None:
                entry[1].put(CLOSED)

        logger.debug("subscribed %d to %s", sub_id, topic)
        return ch, cancel

    def publish(self, subject: str, payload: bytes) -> int:
        """Deliver ``payload`` to every matching subscription. Returns the count."""
        with self._lock:
            if self._closed:
                raise BusClosedError("event bus is closed")
            targets: List["queue.Queue[Optional[bytes]]"] = [
                ch for pattern, ch in self._subs.values() if subject_matches(pattern, subject)
            ]
        for ch in targets:
            ch.put(payload)
        return len(targets)

    def close(self) -> None:
        """Close every open subscription and refuse further use."""
        with self._lock:
            self._closed = True
            subs = list(self._subs.values())
            self._subs.clear()
        for _, ch in subs:
            ch.put(CLOSED)
