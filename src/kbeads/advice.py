"""
kbeads Advice -- advice records and the read-only store they come from.

An advice record is a bead of type "advice" pairing a lifecycle trigger and
a shell command with subscription labels and a failure policy. The hook
fields live in the bead's free-form ``fields`` blob and are decoded on
demand; a record whose blob cannot be decoded is skipped, never fatal.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

logger = logging.getLogger("kbeads.advice")

# Hook triggers (values of the hook_trigger field)
TRIGGER_SESSION_END = "session-end"
TRIGGER_BEFORE_COMMIT = "before-commit"
TRIGGER_BEFORE_PUSH = "before-push"
TRIGGER_BEFORE_HANDOFF = "before-handoff"

TRIGGERS = (
    TRIGGER_SESSION_END,
    TRIGGER_BEFORE_COMMIT,
    TRIGGER_BEFORE_PUSH,
    TRIGGER_BEFORE_HANDOFF,
)

# Failure policies (values of the hook_on_failure field)
ON_FAILURE_BLOCK = "block"
ON_FAILURE_WARN = "warn"
ON_FAILURE_IGNORE = "ignore"

CATEGORY_ADVICE = "advice"
STATUS_OPEN = "open"

RawFields = Union[None, str, bytes, Mapping[str, Any]]


class AdviceFieldsError(ValueError):
    """The fields blob of an advice record could not be decoded."""


@dataclass
class AdviceRecord:
    """An advice bead as returned by the store."""

    id: str
    title: str = ""
    labels: List[str] = field(default_factory=list)
    fields: RawFields = None
    category: str = CATEGORY_ADVICE
    status: str = STATUS_OPEN


@dataclass
class AdviceFields:
    """Hook settings decoded from an advice record. Every field is optional."""

    hook_command: str = ""
    hook_trigger: str = ""
    hook_timeout: int = 0
    hook_on_failure: str = ""
    subscriptions: List[str] = field(default_factory=list)
    subscriptions_exclude: List[str] = field(default_factory=list)


_STRING_FIELDS = ("hook_command", "hook_trigger", "hook_on_failure")
_LIST_FIELDS = ("subscriptions", "subscriptions_exclude")


def parse_advice_fields(raw: RawFields) -> AdviceFields:
    """Decode the hook fields of an advice record.

    Accepts a mapping or its JSON encoding. Missing keys keep their defaults,
    unknown keys are ignored, and explicit nulls count as missing. Raises
    AdviceFieldsError when the blob is not a JSON object or a known field
    has the wrong type.
    """
    if raw is None:
        return AdviceFields()
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        if not raw.strip():
            return AdviceFields()
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AdviceFieldsError(f"invalid JSON: {e}") from e
    if not isinstance(raw, Mapping):
        raise AdviceFieldsError(f"expected a JSON object, got {type(raw).__name__}")

    values: Dict[str, Any] = {}
    for name in _STRING_FIELDS:
        val = raw.get(name)
        if val is None:
            continue
        if not isinstance(val, str):
            raise AdviceFieldsError(f"{name} must be a string, got {type(val).__name__}")
        values[name] = val

    timeout = raw.get("hook_timeout")
    if timeout is not None:
        # bool is an int subclass; a JSON true is not a timeout
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            raise AdviceFieldsError(f"hook_timeout must be an integer, got {type(timeout).__name__}")
        if isinstance(timeout, float) and not timeout.is_integer():
            raise AdviceFieldsError(f"hook_timeout must be an integer, got {timeout}")
        values["hook_timeout"] = int(timeout)

    for name in _LIST_FIELDS:
        val = raw.get(name)
        if val is None:
            continue
        if not isinstance(val, list) or not all(isinstance(v, str) for v in val):
            raise AdviceFieldsError(f"{name} must be a list of strings")
        values[name] = list(val)

    return AdviceFields(**values)


class AdviceStore(Protocol):
    """Read-only lookup of candidate advice records."""

    def list_candidates(self, category: str, status: str) -> List[AdviceRecord]:
        ...


class StaticAdviceStore:
    """In-memory advice store, optionally loaded from a JSON file.

    The file holds a JSON array of bead objects::

        [{"id": "kd-1", "title": "run tests", "labels": ["role:crew"],
          "fields": {"hook_command": "make test", "hook_trigger": "session-end",
                     "hook_on_failure": "block"}}]
    """

    def __init__(self, records: Optional[List[AdviceRecord]] = None):
        self._records = list(records or [])

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: AdviceRecord) -> None:
        self._records.append(record)

    def list_candidates(self, category: str, status: str) -> List[AdviceRecord]:
        return [r for r in self._records if r.category == category and r.status == status]

    @classmethod
    def from_file(cls, path: Path) -> "StaticAdviceStore":
        """Load records from a JSON file. A missing file yields an empty store."""
        path = Path(path)
        if not path.exists():
            logger.info("advice file %s not found, starting with no advice", path)
            return cls()
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a JSON array of advice records")
        return cls([record_from_dict(item) for item in data])


def record_from_dict(data: Mapping[str, Any]) -> AdviceRecord:
    """Build an AdviceRecord from a bead-shaped dict."""
    if not isinstance(data, Mapping):
        raise ValueError(f"advice record must be an object, got {type(data).__name__}")
    record_id = data.get("id")
    if not record_id:
        raise ValueError("advice record is missing an id")
    labels = data.get("labels") or []
    if not isinstance(labels, list):
        raise ValueError(f"advice record {record_id}: labels must be a list")
    return AdviceRecord(
        id=str(record_id),
        title=str(data.get("title", "")),
        labels=[str(label) for label in labels],
        fields=data.get("fields"),
        category=str(data.get("type") or data.get("category") or CATEGORY_ADVICE),
        status=str(data.get("status") or STATUS_OPEN),
    )
