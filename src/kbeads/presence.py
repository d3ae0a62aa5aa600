"""
kbeads Presence -- live agent roster fed by hook activity.

The hosting server calls Tracker.record_event() for every hook event it
receives. A background reaper marks agents dead once they have been idle
past a threshold and later evicts them from memory:

    tracker = Tracker()
    tracker.start_reaper(ReaperConfig(on_dead=notify))
    tracker.record_event(HookEvent(actor="beads/crew/arch-eel", hook_type="PreToolUse"))
    roster = tracker.roster(timedelta(minutes=30))
    tracker.stop()

An agent that reports activity after being reaped is resurrected with its
history intact. Nothing here survives a restart.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("kbeads.presence")

DEFAULT_DEAD_THRESHOLD = timedelta(minutes=15)
DEFAULT_EVICT_AFTER = timedelta(minutes=30)
DEFAULT_SWEEP_INTERVAL = timedelta(seconds=60)

# Agents with few events are likely ephemeral; evict them sooner
LOW_SIGNAL_EVENT_COUNT = 10
LOW_SIGNAL_EVICT_AFTER = timedelta(minutes=5)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HookEvent:
    """The parts of a hook emit request that presence tracking needs."""

    actor: str
    hook_type: str = ""  # "SessionStart", "Stop", "PreToolUse", "PostToolUse"
    tool_name: str = ""
    session_id: str = ""
    cwd: str = ""


@dataclass(frozen=True)
class Entry:
    """Snapshot of one agent's presence, computed when the roster was taken."""

    actor: str
    last_seen: datetime
    first_seen: datetime
    last_event: str
    tool_name: str
    session_id: str
    cwd: str
    idle_secs: float
    event_count: int
    session_duration_secs: float
    reaped: bool = False
    reaped_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "actor": self.actor,
            "last_seen": self.last_seen.isoformat(),
            "first_seen": self.first_seen.isoformat(),
            "last_event": self.last_event,
            "idle_secs": self.idle_secs,
            "event_count": self.event_count,
            "session_duration_secs": self.session_duration_secs,
        }
        for key in ("tool_name", "session_id", "cwd"):
            val = getattr(self, key)
            if val:
                data[key] = val
        if self.reaped:
            data["reaped"] = True
        if self.reaped_at is not None:
            data["reaped_at"] = self.reaped_at.isoformat()
        return data


@dataclass
class ReaperConfig:
    """Settings for the dead-agent reaper. None or a non-positive value means the default.

    on_dead(actor, session_id) runs once per agent newly marked dead, after
    the tracker lock is released, so it may block or call back into the tracker.
    """

    dead_threshold: Optional[timedelta] = None
    evict_after: Optional[timedelta] = None
    sweep_interval: Optional[timedelta] = None
    on_dead: Optional[Callable[[str, str], None]] = None

    def with_defaults(self) -> "ReaperConfig":
        return ReaperConfig(
            dead_threshold=_positive_or(self.dead_threshold, DEFAULT_DEAD_THRESHOLD),
            evict_after=_positive_or(self.evict_after, DEFAULT_EVICT_AFTER),
            sweep_interval=_positive_or(self.sweep_interval, DEFAULT_SWEEP_INTERVAL),
            on_dead=self.on_dead,
        )


def _positive_or(value: Optional[timedelta], default: timedelta) -> timedelta:
    if value is None or value <= timedelta(0):
        return default
    return value


@dataclass
class _ActorState:
    first_seen: datetime
    last_seen: datetime
    last_event: str = ""
    tool_name: str = ""
    session_id: str = ""
    cwd: str = ""
    event_count: int = 0
    reaped: bool = False
    reaped_at: Optional[datetime] = None


class _RWLock:
    """Readers-writer lock: many concurrent readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class Tracker:
    """In-memory roster of agents keyed by actor name."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or _utcnow
        self._lock = _RWLock()
        self._actors: Dict[str, _ActorState] = {}

        self._reaper_lock = threading.Lock()
        self._reaper_stop: Optional[threading.Event] = None
        self._reaper_thread: Optional[threading.Thread] = None

    def __len__(self) -> int:
        self._lock.acquire_read()
        try:
            return len(self._actors)
        finally:
            self._lock.release_read()

    def record_event(self, ev: HookEvent) -> None:
        """Update an agent's presence from a hook event. Empty actors are ignored."""
        if not ev.actor:
            return

        now = self._clock()
        resurrected = False
        self._lock.acquire_write()
        try:
            state = self._actors.get(ev.actor)
            if state is None:
                state = _ActorState(first_seen=now, last_seen=now)
                self._actors[ev.actor] = state

            if state.reaped:
                state.reaped = False
                state.reaped_at = None
                resurrected = True

            state.last_seen = now
            state.last_event = ev.hook_type
            state.event_count += 1

            # Sticky fields: only overwrite with real values
            if ev.tool_name:
                state.tool_name = ev.tool_name
            if ev.session_id:
                state.session_id = ev.session_id
            if ev.cwd:
                state.cwd = ev.cwd
        finally:
            self._lock.release_write()

        if resurrected:
            logger.info("presence: actor resurrected: %s", ev.actor)

    def roster(self, stale_threshold: Optional[timedelta] = None) -> List[Entry]:
        """Snapshot tracked agents, most recently active first.

        Agents idle longer than ``stale_threshold`` are left out; None or a
        non-positive threshold includes every agent still in memory.
        """
        self._lock.acquire_read()
        try:
            now = self._clock()
            entries = []
            for actor, state in self._actors.items():
                idle = now - state.last_seen
                if stale_threshold is not None and stale_threshold > timedelta(0) and idle > stale_threshold:
                    continue
                entries.append(Entry(
                    actor=actor,
                    last_seen=state.last_seen,
                    first_seen=state.first_seen,
                    last_event=state.last_event,
                    tool_name=state.tool_name,
                    session_id=state.session_id,
                    cwd=state.cwd,
                    idle_secs=idle.total_seconds(),
                    event_count=state.event_count,
                    session_duration_secs=(now - state.first_seen).total_seconds(),
                    reaped=state.reaped,
                    reaped_at=state.reaped_at,
                ))
        finally:
            self._lock.release_read()

        entries.sort(key=lambda e: e.last_seen, reverse=True)
        return entries

    # ------------------------------------------------------------------
    # Reaper
    # ------------------------------------------------------------------

    def sweep(self, config: ReaperConfig) -> List[str]:
        """Run one reaper pass. Returns the actors newly marked dead."""
        cfg = config.with_defaults()
        now = self._clock()
        newly_dead = []
        evicted = 0

        self._lock.acquire_write()
        try:
            for actor, state in list(self._actors.items()):
                if state.reaped:
                    evict_after = cfg.evict_after
                    if state.event_count < LOW_SIGNAL_EVENT_COUNT:
                        evict_after = LOW_SIGNAL_EVICT_AFTER
                    if state.reaped_at is not None and now - state.reaped_at > evict_after:
                        del self._actors[actor]
                        evicted += 1
                    continue
                if now - state.last_seen > cfg.dead_threshold:
                    state.reaped = True
                    state.reaped_at = now
                    newly_dead.append((actor, state.session_id))
        finally:
            self._lock.release_write()

        if evicted:
            logger.debug("presence: evicted %d reaped actor(s)", evicted)
        for actor, session_id in newly_dead:
            logger.info("presence: reaper marked agent dead: %s (threshold %s)", actor, cfg.dead_threshold)
            if cfg.on_dead is None:
                continue
            try:
                cfg.on_dead(actor, session_id)
            except Exception:
                logger.exception("presence: on_dead callback failed for %s", actor)
        return [actor for actor, _ in newly_dead]

    def _reap_loop(self, cfg: ReaperConfig, stop: threading.Event) -> None:
        interval = cfg.sweep_interval.total_seconds()
        while not stop.wait(interval):
            try:
                self.sweep(cfg)
            except Exception:
                logger.exception("presence: sweep failed")

    def start_reaper(self, config: Optional[ReaperConfig] = None) -> None:
        """Start the background reaper. Restarts it if already running."""
        cfg = (config or ReaperConfig()).with_defaults()
        self.stop()
        with self._reaper_lock:
            stop = threading.Event()
            thread = threading.Thread(
                target=self._reap_loop, args=(cfg, stop), daemon=True, name="kbeads-presence-reaper",
            )
            self._reaper_stop = stop
            self._reaper_thread = thread
            thread.start()
        logger.info(
            "presence: reaper started (dead_threshold=%s, sweep_interval=%s)",
            cfg.dead_threshold, cfg.sweep_interval,
        )

    def stop(self) -> None:
        """Stop the reaper and wait for it to exit. Safe to call at any time."""
        with self._reaper_lock:
            stop, thread = self._reaper_stop, self._reaper_thread
            self._reaper_stop = None
            self._reaper_thread = None
        if stop is None or thread is None:
            return
        stop.set()
        if thread is not threading.current_thread():
            thread.join()
