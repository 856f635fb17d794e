"""CLI entrypoints for orgdocs commands."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .context import PipelineContext
from .errors import OrgDocsError
from .logging import configure_logging
from .orchestrator import EXIT_FATAL, Orchestrator, RunSummary


_RUN_COMMANDS = (
    ("discover", "List the organization's repositories and which are in scope."),
    ("sync", "Add, update and remove repository links to match the desired set."),
    ("update", "Refresh the content tree from the linked repositories."),
    ("build", "Run the external site builder on the current content tree."),
    ("pipeline", "Run discover, sync, update and build in sequence."),
)


def _add_verbose_option(parser: argparse.ArgumentParser, *, inherit: bool = False) -> None:
    # Subcommands default to SUPPRESS so "orgdocs -v sync" keeps the top-level value.
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=argparse.SUPPRESS if inherit else False,
        help="Log debug detail, including every git call and skipped repository.",
    )


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    _add_verbose_option(parser, inherit=True)
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run summary as JSON instead of text.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orgdocs",
        description="Aggregate documentation from an organization's repositories into one site.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "-C",
        "--workdir",
        default=".",
        help="Working tree holding orgdocs.yml, link state and the site (defaults to current directory).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to orgdocs.yml (defaults to <workdir>/orgdocs.yml).",
    )
    parser.add_argument(
        "--ignorelist",
        default=None,
        help="Standalone ignorelist file overriding the 'ignore' section.",
    )
    parser.add_argument(
        "--org",
        default=None,
        help="Organization to aggregate (overrides the configuration).",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    commands = {}
    for name, help_text in _RUN_COMMANDS:
        commands[name] = subparsers.add_parser(name, help=help_text)
        _add_run_options(commands[name])
    commands["pipeline"].add_argument(
        "--no-build",
        action="store_true",
        help="Stop after updating the content tree.",
    )

    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve an HTTP API for on-demand pipeline runs.",
    )
    _add_verbose_option(serve_parser, inherit=True)
    serve_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for orgdocs commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_file = Path(args.log_file) if args.log_file else None
    configure_logging(verbose=bool(args.verbose), log_file=log_file)

    try:
        context = PipelineContext.load(
            args.workdir,
            config_path=Path(args.config) if args.config else None,
            ignorelist=Path(args.ignorelist) if args.ignorelist else None,
            organization=args.org,
        )
    except OrgDocsError as exc:
        parser.exit(EXIT_FATAL, f"orgdocs: {exc}\n")

    if args.command == "serve":
        from .service import run_service

        run_service(context, host=args.host, port=args.port)
        return

    orchestrator = Orchestrator(context)
    try:
        if args.command == "discover":
            summary = orchestrator.run_discover()
        elif args.command == "sync":
            summary = orchestrator.run_sync()
        elif args.command == "update":
            summary = orchestrator.run_update()
        elif args.command == "build":
            summary = orchestrator.run_build()
        elif args.command == "pipeline":
            summary = orchestrator.run_pipeline(build=not bool(getattr(args, "no_build", False)))
        else:  # pragma: no cover - argparse enforces choices
            parser.exit(EXIT_FATAL, "Unknown command\n")
    except Exception as exc:  # pragma: no cover
        parser.exit(
            EXIT_FATAL,
            f"orgdocs {args.command} failed: {exc}\nRun with --verbose for more details.\n",
        )

    _print_summary(summary, as_json=bool(getattr(args, "json", False)))
    sys.exit(summary.exit_code)


def _print_summary(summary: RunSummary, *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(summary.to_dict(), indent=2, sort_keys=True))
        return
    if summary.command == "discover" and summary.error is None:
        for name in summary.desired:
            print(f"+ {name}")
        for name, reason in summary.excluded:
            print(f"- {name} ({reason})")
    print(summary.render())


if __name__ == "__main__":
    main(sys.argv[1:])
