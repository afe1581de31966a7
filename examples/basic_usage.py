#!/usr/bin/env python3
"""Programmatic session example.

This demonstrates using the engine components directly:

* load settings from `.env`
* start a conversation on a bundled workflow
* take one transition and print the next phase's instructions

State is persisted under `WORKFLOW_ENGINE_STATE_PATH` (default `.vibe/conversations`).
"""

from __future__ import annotations

import argparse
from typing import Sequence

from workflow_engine.config import EngineSettings
from workflow_engine.errors import TransitionError, ValidationError
from workflow_engine.factory import build_session
from workflow_engine.logging import configure_logging
from workflow_engine.session.conversation import START_TRIGGER


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start a conversation and take one step.")
    parser.add_argument("--conversation", required=True, help="Conversation identifier")
    parser.add_argument("--workflow", default="epcc", help="Workflow name")
    parser.add_argument("--trigger", default="explore_done", help="Trigger to take after start")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    configure_logging(settings.log_level)

    session = build_session(settings)

    try:
        started = session.advance(args.conversation, START_TRIGGER, workflow_name=args.workflow)
        print(f"Started in {started.to_state}; triggers: {', '.join(started.available_triggers)}")
        result = session.advance(args.conversation, args.trigger)
    except (TransitionError, ValidationError) as exc:
        print(str(exc))
        return 1

    print(f"{result.from_state} -> {result.to_state}: {result.transition_reason}")
    print()
    print(result.instructions)
    print(f"Plan file: {result.plan_file_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
