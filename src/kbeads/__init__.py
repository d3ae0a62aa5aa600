"""kbeads -- advice hooks and live presence for autonomous coding agents.

Direct Python API::

    from kbeads import HookHandler, SessionEvent, StaticAdviceStore, Tracker
    handler = HookHandler(StaticAdviceStore.from_file("advice.json"))
    resp = handler.handle_session_event(SessionEvent("beads/crew/arch-eel", "session-end"))

For the HTTP hook server: ``pip install kbeads`` and run ``kbeads serve``.
"""

__version__ = "0.4.0"

from kbeads.advice import (
    AdviceFields,
    AdviceFieldsError,
    AdviceRecord,
    AdviceStore,
    StaticAdviceStore,
    parse_advice_fields,
)
from kbeads.events import LocalEventBus, SubscribeError, session_topic
from kbeads.executor import HookResult, execute
from kbeads.hooks import HookHandler, HookResponse, Outcome, SessionEvent, evaluate_outcome
from kbeads.presence import Entry, HookEvent, ReaperConfig, Tracker
from kbeads.subscriptions import (
    SubscriptionOverrides,
    build_agent_subscriptions,
    matches_subscriptions,
    parse_groups,
    strip_group_prefix,
)

__all__ = [
    # Matching
    "build_agent_subscriptions",
    "matches_subscriptions",
    "parse_groups",
    "strip_group_prefix",
    "SubscriptionOverrides",
    # Advice
    "AdviceRecord",
    "AdviceFields",
    "AdviceFieldsError",
    "AdviceStore",
    "StaticAdviceStore",
    "parse_advice_fields",
    # Hooks
    "execute",
    "HookResult",
    "HookHandler",
    "HookResponse",
    "SessionEvent",
    "Outcome",
    "evaluate_outcome",
    # Events
    "LocalEventBus",
    "SubscribeError",
    "session_topic",
    # Presence
    "Tracker",
    "HookEvent",
    "Entry",
    "ReaperConfig",
    # Meta
    "__version__",
]
