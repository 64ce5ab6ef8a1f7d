"""
cardcore CLI - Command-line interface for the engine.

Usage:
    cardcore validate <definition.json>     Check a merged definition document
    cardcore run <definition.json>          Play a definition to completion
    cardcore war                            Play the built-in War game

Pending inputs are answered by an input policy (first option or seeded
random); the run prints the result and can dump the event trace.
"""

import argparse
import json
import sys

from .config import EngineConfig
from .logging_config import setup_logging


def main(argv=None):
    """Main CLI entry point. Returns the process exit code."""
    parser = argparse.ArgumentParser(
        description="cardcore - Declarative card game rules runtime",
        prog="cardcore",
    )
    parser.add_argument("--log-level", help="Override CARDCORE_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a definition document")
    validate_parser.add_argument("definition_file", help="Path to definition JSON")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run a definition to completion")
    run_parser.add_argument("definition_file", help="Path to definition JSON")
    _add_run_options(run_parser)
    run_parser.add_argument("--players", type=int, default=2, help="Number of seats")

    # War quick start
    war_parser = subparsers.add_parser("war", help="Play the built-in War game")
    _add_run_options(war_parser)

    args = parser.parse_args(argv)

    config = EngineConfig.from_env()
    setup_logging(args.log_level or config.log_level, config.log_format)

    if args.command == "validate":
        return cmd_validate(args)
    if args.command == "run":
        return cmd_run(args, config)
    if args.command == "war":
        return cmd_war(args, config)
    parser.print_help()
    return 1


def _add_run_options(parser: argparse.ArgumentParser):
    parser.add_argument("--seed", type=int, help="PRNG seed")
    parser.add_argument("--policy", choices=["first", "random"], default="first",
                        help="How pending inputs are answered")
    parser.add_argument("--max-steps", type=int, default=1000, help="Advance budget")
    parser.add_argument("--trace", help="Write the event trace to this JSON file")


def _load_document(path: str):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: File not found: {path}")
    except json.JSONDecodeError as exc:
        print(f"Error: {path} is not valid JSON: {exc}")
    return None


def _load_definition(path: str):
    """Load and validate a definition; prints problems and returns None on failure."""
    from .spec_schema import GameDefinition, validate_definition

    document = _load_document(path)
    if document is None:
        return None, None
    try:
        definition = GameDefinition.from_dict(document)
    except (KeyError, TypeError, ValueError) as exc:
        print(f"Error: definition could not be loaded: {exc}")
        return None, None
    return definition, validate_definition(definition)


def cmd_validate(args):
    """Validate a definition document."""
    print(f"Validating: {args.definition_file}")
    definition, result = _load_definition(args.definition_file)
    if definition is None:
        return 1

    if result.warnings:
        print("\nWarnings:")
        for w in result.warnings:
            print(f"  - {w}")

    if result.errors:
        print("\nErrors:")
        for e in result.errors:
            print(f"  - {e}")
        return 1

    print(f"OK: {definition.name} ({definition.min_players}-{definition.max_players} players, "
          f"{len(definition.rules)} rule(s))")
    return 0


def cmd_run(args, config):
    """Run a definition document with automated input answers."""
    definition, result = _load_definition(args.definition_file)
    if definition is None:
        return 1
    if result.errors:
        print("Definition failed validation:")
        for e in result.errors:
            print(f"  - {e}")
        return 1
    return _play(definition, args.players, args, config)


def cmd_war(args, config):
    """Quick start War."""
    from .games.war import create_war_definition

    print("Starting War...")
    return _play(create_war_definition(), 2, args, config)


def _play(definition, num_players, args, config):
    from .bots import make_policy
    from .engine_core.errors import EngineError
    from .session import GameLoop, SessionManager

    manager = SessionManager(config)
    try:
        session = manager.create_session(definition, num_players, seed=args.seed)
    except EngineError as exc:
        print(f"Error: could not start the game: {exc}")
        return 1

    print(f"Session created: {session.session_id} (seed {session.state.seed})")
    loop = GameLoop(session, policy=make_policy(args.policy, seed=args.seed))
    outcome = loop.run(max_steps=args.max_steps)

    print(f"\nLoop ended: {outcome.loop_state.value}")
    print(f"Steps: {outcome.steps}, inputs answered: {outcome.inputs_answered}")
    if outcome.failures:
        print(f"Failures: {len(outcome.failures)}")
        for failure in outcome.failures[:10]:
            print(f"  - [{failure.rule_id}] {failure.action}: {failure.reason}")
    if outcome.result:
        print(f"Winners: {outcome.result.winners} ({outcome.result.reason})")

    if args.trace:
        with open(args.trace, "w", encoding="utf-8") as f:
            json.dump(session.trace, f, indent=2, default=str)
        print(f"Trace written to {args.trace} ({len(session.trace)} events)")

    manager.end_session(session.session_id)
    return 0 if outcome.loop_state.value in ("game_over", "step_limit") else 2


if __name__ == "__main__":
    sys.exit(main())
