"""kbeads CLI -- run advice hooks, inspect subscriptions, serve the hook API."""

import argparse
import json
import logging
import sys
from pathlib import Path

from kbeads.config import Settings

# Exit code a blocking hook result maps to (the agent runtime treats 2 as "blocked")
EXIT_BLOCKED = 2


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_serve(args, settings: Settings):
    """Run the HTTP hook server with the presence reaper."""
    import asyncio

    from kbeads.server.http_server import run_http

    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    print(f"Starting kbeads hook server on {settings.host}:{settings.port}...", file=sys.stderr)
    try:
        asyncio.run(run_http(settings))
    except KeyboardInterrupt:
        print("\nServer stopped.", file=sys.stderr)


def cmd_run_hooks(args, settings: Settings) -> int:
    """Evaluate advice hooks once for an agent and trigger."""
    from kbeads.advice import StaticAdviceStore
    from kbeads.hooks import HookHandler, SessionEvent

    advice_file = Path(args.advice) if args.advice else settings.advice_file
    try:
        store = StaticAdviceStore.from_file(advice_file)
    except (OSError, ValueError) as e:
        print(f"Error: cannot load advice from {advice_file}: {e}", file=sys.stderr)
        return 1

    handler = HookHandler(store)
    resp = handler.handle_session_event(SessionEvent(agent_id=args.agent, trigger=args.trigger, cwd=args.cwd or ""))

    if args.json:
        print(json.dumps(resp.to_dict(), indent=2))
    else:
        for warning in resp.warnings:
            print(f"[WARN] {warning}")
        if resp.block:
            print(f"[BLOCKED] {resp.reason}")
        elif not resp.warnings:
            print("OK: no advice hooks blocked")
    return EXIT_BLOCKED if resp.block else 0


def cmd_subscriptions(args, settings: Settings) -> int:
    """Print the subscription labels derived from an agent ID."""
    from kbeads.subscriptions import build_agent_subscriptions

    subs = build_agent_subscriptions(args.agent_id)
    if args.json:
        print(json.dumps(subs))
    else:
        for label in subs:
            print(label)
    return 0


def cmd_match(args, settings: Settings) -> int:
    """Check whether advice labels would reach an agent."""
    from kbeads.subscriptions import build_agent_subscriptions, matches_subscriptions

    subs = build_agent_subscriptions(args.agent_id)
    matched = matches_subscriptions(args.labels, subs)
    print("match" if matched else "no match")
    return 0 if matched else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="kbeads",
        description="kbeads: advice hooks and live presence for coding agents",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP hook server")
    serve_parser.add_argument("--host", help="Bind address (default: $KBEADS_HOST or 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, help="HTTP port (default: $KBEADS_PORT or 8787)")

    run_parser = subparsers.add_parser("run-hooks", help="Run matching advice hooks for an agent and trigger")
    run_parser.add_argument("--agent", required=True, help="Agent ID (rig/role/name)")
    run_parser.add_argument(
        "--trigger",
        required=True,
        choices=["session-end", "before-commit", "before-push", "before-handoff"],
        help="Lifecycle trigger",
    )
    run_parser.add_argument("--cwd", help="Working directory for hook commands")
    run_parser.add_argument("--advice", help="Advice JSON file (default: $KBEADS_ADVICE_FILE)")
    run_parser.add_argument("--json", action="store_true", help="Output as JSON")

    subs_parser = subparsers.add_parser("subscriptions", help="Show an agent's subscription labels")
    subs_parser.add_argument("agent_id", help="Agent ID (rig/role/name)")
    subs_parser.add_argument("--json", action="store_true", help="Output as JSON")

    match_parser = subparsers.add_parser("match", help="Check if advice labels match an agent")
    match_parser.add_argument("agent_id", help="Agent ID (rig/role/name)")
    match_parser.add_argument("labels", nargs="+", help="Advice labels, e.g. g0:role:crew g0:rig:beads")

    args = parser.parse_args(argv)

    settings = Settings.from_env()
    _setup_logging(settings.log_level)

    commands = {
        "serve": cmd_serve,
        "run-hooks": cmd_run_hooks,
        "subscriptions": cmd_subscriptions,
        "match": cmd_match,
    }

    if args.command not in commands:
        parser.print_help()
        return 0
    return commands[args.command](args, settings) or 0


if __name__ == "__main__":
    sys.exit(main())
