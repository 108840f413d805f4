"""CLI entrypoint: build and inspect program definitions stored as JSON.

The CLI never runs sessions (JSON programs carry no plugs); it is a tool for
checking configuration and exploring the phase graph.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from phaseflow import __version__
from phaseflow.config import EngineSettings
from phaseflow.errors import ConfigurationError
from phaseflow.introspection import Introspector
from phaseflow.program import ProgramDefinition, build_program

logger = logging.getLogger(__name__)


def _load_program(path: Path) -> ProgramDefinition:
    if not path.exists():
        raise FileNotFoundError(f"Program file not found: {path}")
    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ConfigurationError([f"{path}: top-level JSON value must be an object"])
    return build_program(raw)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phaseflow",
        description="Validate and inspect declarative workflow programs",
    )
    parser.add_argument("--version", action="version", version=f"phaseflow {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Build a program and report violations")
    check.add_argument("program", type=Path, help="Path to a JSON program definition")

    paths = subparsers.add_parser("paths", help="List every path from the initial phase")
    paths.add_argument("program", type=Path, help="Path to a JSON program definition")

    actions = subparsers.add_parser("actions", help="List user-facing actions per phase")
    actions.add_argument("program", type=Path, help="Path to a JSON program definition")

    reach = subparsers.add_parser("reach", help="Check whether one phase can reach another")
    reach.add_argument("program", type=Path, help="Path to a JSON program definition")
    reach.add_argument("source", help="Phase to start from")
    reach.add_argument("target", help="Phase to reach")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = EngineSettings()
    settings.setup_logging()

    try:
        program = _load_program(args.program)
        introspector = Introspector(program)

        if args.command == "check":
            print(
                f"OK: program '{program.id}' v{program.version} "
                f"({len(program.phases)} phases, {len(program.operations)} operations)"
            )
            return 0

        if args.command == "paths":
            for path in introspector.all_paths():
                print(" -> ".join(path))
            return 0

        if args.command == "actions":
            for action in introspector.all_actions():
                print(f"{action.phase}\t{action.name}\t{action.label}")
            return 0

        if args.command == "reach":
            reachable = introspector.can_reach(args.source, args.target)
            print("reachable" if reachable else "unreachable")
            return 0 if reachable else 4

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ConfigurationError as e:
        for violation in e.violations:
            print(violation, file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
