#!/usr/bin/env python3
"""
Command-line interface for the change-notification service.

Usage:
    uv run python cli.py [command] [options]

Commands:
    demo        Run demo scenarios
    topics      List the topic taxonomy
    test        Run the test suite
    serve       Start the operations API server

Examples:
    uv run python cli.py demo freelancer-assigned
    uv run python cli.py demo all
    uv run python cli.py topics
    uv run python cli.py serve
"""

import argparse
import subprocess
import sys

from shared.config import NotifierConfig, configure_logging


def run_demo(scenario: str) -> None:
    """Run one demo scenario, or all of them."""
    from notifier.demo import SCENARIOS, print_report, run_scenario

    config = NotifierConfig.from_env()
    names = list(SCENARIOS) if scenario == "all" else [scenario]
    for name in names:
        try:
            report = run_scenario(name, config)
        except ValueError as e:
            print(e)
            sys.exit(1)
        print_report(report)


def list_topics() -> None:
    """Print every topic and the party it notifies."""
    from notifier.registry import get_registry
    from shared.topics import ChangeTopic

    registry = get_registry()
    handled = set(registry.topics())
    print(f"{'TOPIC':<24} {'ENTITY':<10} {'CHANGE':<22} NOTIFIES")
    for topic in ChangeTopic:
        notifies = registry.strategy_for(topic).kind.value if topic in handled else "-"
        print(f"{topic.wire_name:<24} {topic.entity_kind.value:<10} {topic.change_kind.value:<22} {notifies}")


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = ["uv", "run", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    cmd = ["uv", "run", "uvicorn", "api.main:app", f"--host={host}", f"--port={port}"]
    if reload:
        cmd.append("--reload")

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    subprocess.run(cmd)


def main() -> None:
    """Main CLI entry point."""
    from notifier.demo import SCENARIOS

    parser = argparse.ArgumentParser(
        description="Change Notification Service CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s demo freelancer-assigned
  %(prog)s demo all
  %(prog)s topics
  %(prog)s test -v
  %(prog)s serve --reload
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run demo scenarios")
    demo_parser.add_argument(
        "scenario",
        choices=list(SCENARIOS) + ["all"],
        help="Which scenario to run",
    )

    # Topics command
    subparsers.add_parser("topics", help="List the topic taxonomy")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()
    configure_logging(NotifierConfig.from_env().log_level)

    if args.command == "demo":
        run_demo(args.scenario)
    elif args.command == "topics":
        list_topics()
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
