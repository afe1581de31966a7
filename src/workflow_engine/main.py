"""CLI entrypoint for the workflow engine."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError as SettingsValidationError

from workflow_engine import __version__
from workflow_engine.config import EngineSettings
from workflow_engine.errors import (
    DefinitionError,
    PersistenceError,
    TransitionError,
    ValidationError,
)
from workflow_engine.factory import build_session
from workflow_engine.session.conversation import START_TRIGGER, AdvanceResult

logger = logging.getLogger(__name__)


def _parse_vars(values: list[str] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {item!r}")
        out[key.strip()] = value
    return out


def _add_conversation_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--conversation",
        "--conversation-id",
        dest="conversation_id",
        required=True,
        help="Conversation identifier",
    )
    parser.add_argument("--role", default=None, help="Actor role (defaults to VIBE_ROLE)")
    parser.add_argument(
        "--var",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Instruction variable, e.g. --var PROJECT_PATH=/src (repeatable)",
    )
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-engine",
        description="Drive an AI coding agent through a multi-phase development workflow",
    )
    parser.add_argument(
        "--version", action="version", version=f"agent-workflow-engine {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-workflows", help="List available workflow definitions")

    start = subparsers.add_parser("start", help="Start a conversation at the initial state")
    _add_conversation_args(start)
    start.add_argument(
        "--workflow",
        default=None,
        help="Workflow name (defaults to WORKFLOW_ENGINE_DEFAULT_WORKFLOW)",
    )

    advance = subparsers.add_parser("advance", help="Take a transition")
    _add_conversation_args(advance)
    advance.add_argument("--trigger", required=True, help="Transition trigger")
    advance.add_argument(
        "--review-performed",
        action="store_true",
        help="Declare that the reviews required for this transition were conducted",
    )
    advance.add_argument(
        "--deadline-seconds",
        type=float,
        default=None,
        help="Time budget for instruction decoration by plugins",
    )

    whats_next = subparsers.add_parser(
        "whats-next", help="Show the current phase instructions without changing state"
    )
    _add_conversation_args(whats_next)

    transitions = subparsers.add_parser(
        "transitions", help="List the transitions available from a state"
    )
    transitions.add_argument("--workflow", required=True, help="Workflow name")
    transitions.add_argument("--state", required=True, help="State name")
    transitions.add_argument("--role", default=None, help="Actor role")

    serve = subparsers.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=8000, help="Bind port")

    return parser


def _print_result(result: AdvanceResult, *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return
    moved = f"{result.from_state} -> {result.to_state}" if result.from_state else result.to_state
    print(f"[{result.conversation_id}] {moved}")
    print()
    print(result.instructions)
    for review in result.review_perspectives:
        print()
        print(f"Review ({review.role}): {review.prompt}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except SettingsValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    settings.setup_logging()

    if args.command == "serve":
        import uvicorn

        from workflow_engine.server.app import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level="info")
        return 0

    try:
        session = build_session(settings)
        variables = _parse_vars(getattr(args, "var", None))

        if args.command == "list-workflows":
            for name in session.workflows.list_workflows():
                print(name)
            return 0

        if args.command == "start":
            result = session.advance(
                args.conversation_id,
                START_TRIGGER,
                args.role,
                workflow_name=args.workflow,
                substitutions=variables,
            )
            _print_result(result, as_json=args.json)
            return 0

        if args.command == "advance":
            result = session.advance(
                args.conversation_id,
                args.trigger,
                args.role,
                substitutions=variables,
                review_performed=args.review_performed,
                deadline_seconds=args.deadline_seconds,
            )
            _print_result(result, as_json=args.json)
            return 0

        if args.command == "whats-next":
            result = session.whats_next(args.conversation_id, args.role, variables)
            _print_result(result, as_json=args.json)
            return 0

        if args.command == "transitions":
            definition = session.workflows.load_workflow(args.workflow)
            for transition in session.engine.available_transitions(
                definition, args.state, args.role
            ):
                scope = f" (role: {transition.role})" if transition.role else ""
                print(f"{transition.trigger} -> {transition.to}{scope}")
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except argparse.ArgumentTypeError as e:
        print(str(e), file=sys.stderr)
        return 2

    except (TransitionError, ValidationError) as e:
        # Expected outcomes the agent can act on; not logged as failures.
        print(str(e), file=sys.stderr)
        return 2

    except (DefinitionError, PersistenceError) as e:
        logger.error(str(e), extra={"command": args.command})
        print(str(e), file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
