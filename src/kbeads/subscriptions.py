"""
kbeads Subscriptions -- decide which advice applies to which agent.

Agents never declare what they listen to; their subscription labels are
derived from the agent ID (``rig/role_plural/name``):

    >>> build_agent_subscriptions("beads/crew/arch-eel")
    ['global', 'agent:beads/crew/arch-eel', 'rig:beads', 'role:crew']

Advice labels are matched against that set:
- ``rig:X`` and ``agent:X`` labels are required matches (scoping filters)
- ``gN:`` prefixed labels are ANDed within group N
- groups are ORed; an unprefixed label is a group of its own
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger("kbeads.subscriptions")

# Unprefixed labels get synthetic group ids starting here, well clear of
# any explicit gN: group a human would write.
_UNPREFIXED_GROUP_BASE = 1000

_REQUIRED_PREFIXES = ("rig:", "agent:")


def strip_group_prefix(label: str) -> str:
    """Remove a ``gN:`` prefix from a label if present.

    "g0:role:polecat" -> "role:polecat", "global" -> "global", "g:bad" -> "g:bad".
    """
    if len(label) >= 3 and label[0] == "g":
        for i in range(1, len(label)):
            ch = label[i]
            if ch == ":" and i > 1:
                return label[i + 1:]
            if not "0" <= ch <= "9":
                break
    return label


def _group_number(label: str) -> Optional[int]:
    if not label.startswith("g"):
        return None
    idx = label.find(":")
    if idx <= 1:
        return None
    digits = label[1:idx]
    if not digits.isascii() or not digits.isdigit():
        return None
    return int(digits)


def parse_groups(labels: Iterable[str]) -> Dict[int, List[str]]:
    """Partition advice labels into AND-groups.

    ``gN:rest`` contributes ``rest`` to group N. Every other label becomes
    its own group so plain labels keep their OR behaviour.
    """
    groups: Dict[int, List[str]] = {}
    next_unprefixed = _UNPREFIXED_GROUP_BASE
    for label in labels:
        num = _group_number(label)
        if num is not None:
            groups.setdefault(num, []).append(label[label.index(":") + 1:])
            continue
        groups.setdefault(next_unprefixed, []).append(label)
        next_unprefixed += 1
    return groups


def matches_subscriptions(advice_labels: Sequence[str], subscriptions: Iterable[str]) -> bool:
    """Return True if advice with ``advice_labels`` should reach an agent.

    rig:/agent: labels must be present in ``subscriptions`` regardless of
    any group match, so rig-scoped advice never leaks to other rigs through
    a role label. Advice without labels never matches.
    """
    subs = set(subscriptions)

    for label in advice_labels:
        clean = strip_group_prefix(label)
        if clean.startswith(_REQUIRED_PREFIXES) and clean not in subs:
            return False

    for members in parse_groups(advice_labels).values():
        if members and all(m in subs for m in members):
            return True
    return False


def _singularize(plural: str) -> str:
    if plural.endswith("s"):
        return plural[:-1]
    return plural


def build_agent_subscriptions(agent_id: str, extra: Optional[Iterable[str]] = None) -> List[str]:
    """Build the auto-subscription labels for an agent.

    Always includes "global" and "agent:<agent_id>", plus rig/role labels
    parsed from the ID. ``extra`` labels come first, unchanged.
    """
    subs = list(extra or [])
    subs.append("global")
    subs.append(f"agent:{agent_id}")

    parts = agent_id.split("/")
    if parts[0]:
        subs.append(f"rig:{parts[0]}")
    if len(parts) >= 2:
        role_plural = parts[1]
        subs.append(f"role:{role_plural}")
        role_singular = _singularize(role_plural)
        if role_singular != role_plural:
            subs.append(f"role:{role_singular}")
    return subs


@dataclass
class SubscriptionOverrides:
    """Explicit per-agent additions and removals on top of the derived labels.

    This is only a shape: nothing in the hook path looks overrides up for an
    agent. Callers holding an agent's overrides apply them themselves.
    """

    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)

    def apply(self, subscriptions: Iterable[str]) -> List[str]:
        excluded = set(self.exclude)
        seen = set()
        result = []
        for label in list(subscriptions) + list(self.include):
            if label in excluded or label in seen:
                continue
            seen.add(label)
            result.append(label)
        return result
