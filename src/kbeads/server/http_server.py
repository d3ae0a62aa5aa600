"""kbeads HTTP Server -- hook endpoints and the live agent roster.

Wraps the hook handler and presence tracker in a Starlette ASGI app:
- POST /v1/hooks/emit      every agent hook event; records presence and, for
                           agents with a bead id, checks git and runs
                           session-end advice on Stop
- POST /v1/hooks/execute   evaluate advice hooks for one lifecycle trigger
- GET  /v1/agents/roster   live presence roster
- GET  /health

Hook commands run in a worker thread so a slow hook never stalls the loop.
"""

import asyncio
import contextlib
import json
import logging
import os
import time
import traceback
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from kbeads.advice import TRIGGER_SESSION_END
from kbeads.autocheck import check_commit_push
from kbeads.config import Settings, kbeads_home
from kbeads.hooks import HookHandler, HookResponse, SessionEvent
from kbeads.presence import HookEvent, ReaperConfig, Tracker

logger = logging.getLogger("kbeads.server.http_server")

DEFAULT_ROSTER_STALE = timedelta(minutes=30)


def _secure_append(log_path: Path, data: str):
    """Append to a file with secure permissions (0o600)."""
    log_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    fd = os.open(str(log_path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
    try:
        os.write(fd, data.encode("utf-8"))
    finally:
        os.close(fd)


def _log_hook_error(endpoint: str, error: Exception):
    """Log hook errors to $KBEADS_HOME/hooks.log."""
    try:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        tb = traceback.format_exc()
        _secure_append(kbeads_home() / "hooks.log", f"[{timestamp}] http/{endpoint}: {error}\n{tb}\n")
    except OSError:
        logger.debug("could not write hooks.log", exc_info=True)


def _log_timing(endpoint: str, elapsed_ms: float, resp: HookResponse):
    """Log hook timing and outcome to $KBEADS_HOME/hooks.log."""
    outcome = "BLOCK" if resp.block else ("WARN" if resp.warnings else "OK")
    try:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        _secure_append(kbeads_home() / "hooks.log", f"[{timestamp}] http/{endpoint}: {outcome} ({elapsed_ms:.0f}ms)\n")
    except OSError:
        logger.debug("could not write hooks.log", exc_info=True)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


async def _read_json(request: Request):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _str_field(body: dict, key: str) -> str:
    val = body.get(key)
    return val if isinstance(val, str) else ""


def create_app(
    handler: HookHandler,
    tracker: Tracker,
    reaper_config: ReaperConfig | None = None,
    start_reaper: bool = True,
) -> Starlette:
    """Create the Starlette app.

    Args:
        handler: Advice hook handler used by the hook endpoints.
        tracker: Presence tracker fed by /v1/hooks/emit.
        reaper_config: Reaper settings; defaults apply when None.
        start_reaper: Run the tracker's reaper for the app's lifetime.
    """

    async def run_hooks(endpoint: str, event: SessionEvent) -> HookResponse:
        t0 = time.monotonic()
        loop = asyncio.get_running_loop()
        try:
            resp = await loop.run_in_executor(None, handler.handle_session_event, event)
        except Exception as e:
            # Fail open: a broken handler must not block the agent
            logger.error("advice hooks failed for %s: %s", event.agent_id, e)
            _log_hook_error(endpoint, e)
            return HookResponse()
        _log_timing(endpoint, (time.monotonic() - t0) * 1000, resp)
        return resp

    async def health(request: Request):
        return JSONResponse({"status": "ok", "server": "kbeads"})

    async def hooks_execute(request: Request):
        body = await _read_json(request)
        if body is None:
            return _bad_request("invalid JSON body")
        agent_id = _str_field(body, "agent_id")
        trigger = _str_field(body, "trigger")
        if not agent_id:
            return _bad_request("agent_id is required")
        if not trigger:
            return _bad_request("trigger is required")

        event = SessionEvent(agent_id=agent_id, trigger=trigger, cwd=_str_field(body, "cwd"))
        resp = await run_hooks("execute", event)
        return JSONResponse(resp.to_dict())

    async def hooks_emit(request: Request):
        body = await _read_json(request)
        if body is None:
            return _bad_request("invalid JSON body")
        actor = _str_field(body, "actor")
        hook_type = _str_field(body, "hook_type")
        cwd = _str_field(body, "cwd")

        if actor:
            tracker.record_event(HookEvent(
                actor=actor,
                hook_type=hook_type,
                tool_name=_str_field(body, "tool_name"),
                session_id=_str_field(body, "claude_session_id"),
                cwd=cwd,
            ))

        resp = HookResponse()
        agent_bead_id = _str_field(body, "agent_bead_id")
        # Without an agent bead there is nothing to check
        if not agent_bead_id:
            return JSONResponse(resp.to_dict())

        if cwd:
            loop = asyncio.get_running_loop()
            warning = await loop.run_in_executor(None, check_commit_push, cwd)
            if warning:
                resp.warnings.append(warning)

        if hook_type == "Stop":
            event = SessionEvent(agent_id=actor or agent_bead_id, trigger=TRIGGER_SESSION_END, cwd=cwd)
            resp.merge(await run_hooks("emit", event))

        return JSONResponse(resp.to_dict())

    async def agents_roster(request: Request):
        stale = DEFAULT_ROSTER_STALE
        raw = request.query_params.get("stale_threshold_secs")
        if raw:
            try:
                secs = int(raw)
            except ValueError:
                secs = 0
            if secs > 0:
                stale = timedelta(seconds=secs)
        entries = tracker.roster(stale)
        return JSONResponse({"actors": [e.to_dict() for e in entries]})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if start_reaper:
            tracker.start_reaper(reaper_config)
        try:
            yield
        finally:
            tracker.stop()

    app = Starlette(
        routes=[
            Route("/health", endpoint=health),
            Route("/v1/hooks/execute", endpoint=hooks_execute, methods=["POST"]),
            Route("/v1/hooks/emit", endpoint=hooks_emit, methods=["POST"]),
            Route("/v1/agents/roster", endpoint=agents_roster, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    return app


def _on_dead(actor: str, session_id: str) -> None:
    logger.warning("agent %s went silent (session %s)", actor, session_id or "unknown")


async def run_http(settings: Settings) -> None:
    """Build handler, tracker and app from settings and serve with uvicorn."""
    import uvicorn

    from kbeads.advice import StaticAdviceStore

    store = StaticAdviceStore.from_file(settings.advice_file)
    logger.info("loaded %d advice record(s) from %s", len(store), settings.advice_file)

    handler = HookHandler(store)
    tracker = Tracker()
    reaper_config = ReaperConfig(
        dead_threshold=settings.dead_threshold,
        evict_after=settings.evict_after,
        sweep_interval=settings.sweep_interval,
        on_dead=_on_dead,
    )

    app = create_app(handler, tracker, reaper_config=reaper_config)
    config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    srv = uvicorn.Server(config)
    await srv.serve()
