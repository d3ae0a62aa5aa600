"""
kbeads Advice Hooks -- run matching advice hooks for session lifecycle events.

For each SessionEvent the handler fetches open advice, keeps the records
whose trigger and labels match the agent, runs their commands and folds the
results into a HookResponse according to each record's failure policy:

- block: stop at the first failing blocking hook and report why
- warn: collect a warning and keep going
- ignore: keep going silently

Store outages and malformed advice fail open: they never block a session.
"""

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from kbeads.advice import (
    CATEGORY_ADVICE,
    ON_FAILURE_BLOCK,
    ON_FAILURE_WARN,
    STATUS_OPEN,
    AdviceFields,
    AdviceFieldsError,
    AdviceRecord,
    AdviceStore,
    parse_advice_fields,
)
from kbeads.events import CLOSED, SESSION_TOPIC_PATTERN, Subscriber, SubscribeError
from kbeads.executor import HookResult, execute
from kbeads.subscriptions import build_agent_subscriptions, matches_subscriptions

logger = logging.getLogger("kbeads.hooks")

# How often the subscriber loop re-checks its stop event while idle
_STOP_POLL_S = 0.1

Executor = Callable[..., HookResult]


# ---------------------------------------------------------------------------
# Events and responses
# ---------------------------------------------------------------------------


@dataclass
class SessionEvent:
    """A session lifecycle event published by an agent."""

    agent_id: str = ""
    trigger: str = ""
    cwd: str = ""

    @classmethod
    def from_json(cls, payload: Any) -> "SessionEvent":
        """Decode an event-stream payload. Raises ValueError when malformed."""
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError(f"session event must be a JSON object, got {type(data).__name__}")
        values = {}
        for key in ("agent_id", "trigger", "cwd"):
            val = data.get(key)
            if val is None:
                continue
            if not isinstance(val, str):
                raise ValueError(f"session event field {key} must be a string")
            values[key] = val
        return cls(**values)

    def to_json(self) -> bytes:
        data = {"agent_id": self.agent_id, "trigger": self.trigger}
        if self.cwd:
            data["cwd"] = self.cwd
        return json.dumps(data).encode("utf-8")


@dataclass
class HookResponse:
    """Aggregated decision for one session event."""

    block: bool = False
    reason: str = ""
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape with empty values omitted."""
        data: Dict[str, Any] = {}
        if self.block:
            data["block"] = True
        if self.reason:
            data["reason"] = self.reason
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data

    def merge(self, other: "HookResponse") -> None:
        """Fold ``other`` into this response; an existing block reason wins."""
        if other.block and not self.block:
            self.block = True
            self.reason = other.reason
        self.warnings.extend(other.warnings)


# ---------------------------------------------------------------------------
# Per-candidate outcome
# ---------------------------------------------------------------------------

OUTCOME_NONE = "none"
OUTCOME_WARN = "warn"
OUTCOME_BLOCK = "block"


@dataclass(frozen=True)
class Outcome:
    kind: str = OUTCOME_NONE
    text: str = ""


NO_OUTCOME = Outcome()


def evaluate_outcome(record: AdviceRecord, fields: AdviceFields, result: HookResult) -> Outcome:
    """Map one executed hook to none/warn/block using its failure policy."""
    if result.ok:
        return NO_OUTCOME
    if fields.hook_on_failure == ON_FAILURE_BLOCK:
        return Outcome(
            OUTCOME_BLOCK,
            f"Advice hook blocked: {record.title}\n"
            f"Command: {fields.hook_command}\n"
            f"Error: {result.error}\n"
            f"Output: {result.output}",
        )
    if fields.hook_on_failure == ON_FAILURE_WARN:
        return Outcome(
            OUTCOME_WARN,
            f"Advice hook warning: {record.title} - {result.output} (exit: {result.error})",
        )
    return NO_OUTCOME


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


class HookHandler:
    """Evaluates advice hooks against an advice store."""

    def __init__(self, store: AdviceStore, executor: Executor = execute, log: Optional[logging.Logger] = None):
        self.store = store
        self.executor = executor
        self.logger = log or logger

    def _candidates(self) -> Optional[List[AdviceRecord]]:
        try:
            return list(self.store.list_candidates(CATEGORY_ADVICE, STATUS_OPEN))
        except Exception as e:
            self.logger.error("hooks: failed to list advice beads: %s", e)
            return None

    def handle_session_event(self, event: SessionEvent, cancel: Optional[threading.Event] = None) -> HookResponse:
        """Run the advice hooks that apply to ``event`` and aggregate the results.

        ``cancel`` aborts the hook currently running when set; the aborted
        hook counts as failed under its own policy.
        """
        resp = HookResponse()
        if not event.agent_id or not event.trigger:
            return resp

        candidates = self._candidates()
        if not candidates:
            return resp

        agent_subs = build_agent_subscriptions(event.agent_id, None)
        env = {"AGENT_ID": event.agent_id, "KD_AGENT": event.agent_id}

        for record in candidates:
            try:
                fields = parse_advice_fields(record.fields)
            except AdviceFieldsError as e:
                self.logger.warning("hooks: bad fields on advice bead %s: %s", record.id, e)
                continue

            if not fields.hook_command or fields.hook_trigger != event.trigger:
                continue
            if not matches_subscriptions(record.labels, agent_subs):
                continue

            result = self.executor(fields.hook_command, fields.hook_timeout, event.cwd, env, cancel=cancel)
            self.logger.info(
                "hooks: executed advice hook id=%s trigger=%s ok=%s",
                record.id, event.trigger, result.ok,
            )

            outcome = evaluate_outcome(record, fields, result)
            if outcome.kind == OUTCOME_BLOCK:
                resp.block = True
                resp.reason = outcome.text
                break
            if outcome.kind == OUTCOME_WARN:
                resp.warnings.append(outcome.text)

        return resp

    def run_subscriber(
        self,
        subscriber: Subscriber,
        stop: Optional[threading.Event] = None,
        topic: str = SESSION_TOPIC_PATTERN,
    ) -> None:
        """Handle session events from the event stream until stopped.

        Returns when ``stop`` is set or the subscription is closed. Events are
        handled one at a time; decisions have no caller to go back to, so
        blocks and warnings are logged.
        """
        stop = stop or threading.Event()
        try:
            ch, unsubscribe = subscriber.subscribe(topic)
        except SubscribeError:
            raise
        except Exception as e:
            raise SubscribeError(f"hooks: subscribe: {e}") from e

        self.logger.info("hooks: subscriber started on %s", topic)
        try:
            while not stop.is_set():
                try:
                    raw = ch.get(timeout=_STOP_POLL_S)
                except queue.Empty:
                    continue
                if raw is CLOSED:
                    self.logger.info("hooks: subscription channel closed")
                    return

                try:
                    event = SessionEvent.from_json(raw)
                except (ValueError, UnicodeDecodeError) as e:
                    self.logger.warning("hooks: bad event payload: %s", e)
                    continue

                resp = self.handle_session_event(event, cancel=stop)
                if resp.block:
                    self.logger.warning("hooks: blocked by advice hook: %s", resp.reason)
                for warning in resp.warnings:
                    self.logger.warning("hooks: %s", warning)
            self.logger.info("hooks: subscriber stopping")
        finally:
            unsubscribe()

    def start_subscriber(self, subscriber: Subscriber, topic: str = SESSION_TOPIC_PATTERN) -> "SubscriberThread":
        """Run the subscriber loop on a background thread."""
        worker = SubscriberThread(self, subscriber, topic)
        worker.start()
        return worker


class SubscriberThread:
    """Background runner for HookHandler.run_subscriber with a blocking stop()."""

    def __init__(self, handler: HookHandler, subscriber: Subscriber, topic: str = SESSION_TOPIC_PATTERN):
        self._handler = handler
        self._subscriber = subscriber
        self._topic = topic
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None

    def _run(self) -> None:
        try:
            self._handler.run_subscriber(self._subscriber, stop=self._stop, topic=self._topic)
        except SubscribeError as e:
            self.error = e
            logger.error("%s", e)

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, daemon=True, name="kbeads-hook-subscriber")
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
