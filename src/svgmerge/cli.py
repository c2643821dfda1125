"""Command-line interface for composing and optimizing merged SVG images."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from .assets import DEFAULT_ASSET_PATTERNS
from .diagnostics import Diagnostic
from .layout import LayoutError
from .markup import MarkupError
from .pipeline import merge_layout
from .postprocess import PROFILES, optimize_profile
from .publish import PublishError, commit_if_changed
from .resolver import DEFAULT_TIMEOUT

DEFAULT_OUTPUT = "README.svg"


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="svgmerge",
        description="Compose positioned SVG/raster fragments into one SVG and optimize it.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--verbose", action="store_true", help="Log progress to stderr")

    subparsers = parser.add_subparsers(dest="command")

    compose_parser = subparsers.add_parser("compose", help="Merge a layout into one SVG")
    compose_parser.add_argument("--layout", help="Layout JSON array (default: $INPUT_LAYOUT)")
    compose_parser.add_argument("--layout-file", help="Read the layout JSON from a file")
    compose_parser.add_argument(
        "--assets",
        help=f"Comma-separated asset globs (default: $INPUT_ASSETS or {DEFAULT_ASSET_PATTERNS})",
    )
    compose_parser.add_argument("--root", help="Directory the asset globs are relative to (default: cwd)")
    compose_parser.add_argument("-o", "--output", default=DEFAULT_OUTPUT, help="Optimized SVG path")
    compose_parser.add_argument("--merged", help="Also write the unoptimized composite here")
    compose_parser.add_argument("--stdout", action="store_true", help="Write SVG to stdout")
    compose_parser.add_argument("--no-optimize", action="store_true", help="Skip the optimizer pass")
    compose_parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="HTTP timeout in seconds")
    compose_parser.add_argument("--commit", action="store_true", help="Commit and push the output if it changed")
    compose_parser.add_argument("--token", help="Access token for pushing (default: $INPUT_TOKEN)")
    compose_parser.add_argument("--repository", help="owner/name to push to (default: $GITHUB_REPOSITORY)")

    optimize_parser = subparsers.add_parser("optimize", help="Optimize an existing SVG")
    optimize_parser.add_argument("input", help="Input .svg file")
    optimize_parser.add_argument("-o", "--output", help="Output .svg path (default: overwrite input)")
    optimize_parser.add_argument("--stdout", action="store_true", help="Write SVG to stdout")
    optimize_parser.add_argument(
        "--profile",
        choices=sorted(PROFILES),
        default="animation-safe",
        help="Pass set to run; 'default' also rewrites paths, ids and groups",
    )

    return parser


def _configure_logging(debug: bool, verbose: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def _read_text(path: Path, code: str = "E_IO_READ") -> str:
    if not path.exists():
        raise CliError(code, f"input file not found: {path}", exit_code=2, file=str(path))
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CliError(code, f"failed to read input file: {path}", hint=str(exc), exit_code=2, file=str(path))


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _layout_source(args: argparse.Namespace) -> str:
    if args.layout is not None and args.layout_file:
        raise CliError(
            "E_ARGS",
            "--layout cannot be combined with --layout-file",
            hint="Use either --layout or --layout-file.",
            exit_code=2,
        )
    if args.layout_file:
        return _read_text(Path(args.layout_file))
    layout = args.layout if args.layout is not None else os.getenv("INPUT_LAYOUT")
    if not layout or not layout.strip():
        raise CliError(
            "E_ARGS",
            "no layout provided",
            hint="Pass --layout, --layout-file or set INPUT_LAYOUT.",
            exit_code=2,
        )
    return layout


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, LayoutError):
        return CliError(
            exc.code,
            str(exc),
            hint="The layout must be a JSON array of {url, type, x, y, width, height} objects.",
            exit_code=2,
            retryable=True,
        )
    if isinstance(exc, MarkupError):
        return CliError(
            "E_PARSE_XML",
            str(exc),
            hint="Ensure input is well-formed XML and escape &, <, > in text.",
            exit_code=2,
            line=exc.line,
            column=exc.column,
            retryable=True,
        )
    if isinstance(exc, PublishError):
        return CliError(
            exc.code,
            str(exc),
            hint="Check the token's push permission and the repository name.",
            exit_code=5,
            retryable=True,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "line": err.line,
            "column": err.column,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _emit_warnings(diagnostics: List[Diagnostic], *, error_format: str) -> None:
    for entry in diagnostics:
        if error_format == "json":
            sys.stderr.write(json.dumps(entry.to_dict()) + "\n")
        else:
            sys.stderr.write(f"warning: {entry}\n")


def _handle_compose(args: argparse.Namespace) -> int:
    if args.stdout and args.commit:
        raise CliError(
            "E_ARGS",
            "--stdout and --commit are mutually exclusive",
            hint="Commit needs an output file; drop --stdout.",
            exit_code=2,
        )
    if args.timeout <= 0:
        raise CliError("E_ARGS", "--timeout must be > 0", hint="Use a positive number of seconds.", exit_code=2)

    layout = _layout_source(args)
    assets = args.assets or os.getenv("INPUT_ASSETS") or DEFAULT_ASSET_PATTERNS
    token = args.token or os.getenv("INPUT_TOKEN")
    repository = args.repository or os.getenv("GITHUB_REPOSITORY")
    if args.commit and not token:
        raise CliError(
            "E_ARGS",
            "--commit requires a token",
            hint="Pass --token or set INPUT_TOKEN.",
            exit_code=2,
        )

    result = merge_layout(
        layout,
        assets,
        root=Path(args.root) if args.root else None,
        timeout=args.timeout,
        optimize_output=not args.no_optimize,
    )
    _emit_warnings(result.diagnostics, error_format=args.error_format)

    if args.stdout:
        sys.stdout.write(result.output)
        if not result.output.endswith("\n"):
            sys.stdout.write("\n")
        return 0

    if args.merged:
        _write_text(Path(args.merged), result.merged)
    output_path = Path(args.output)
    _write_text(output_path, result.output)
    print(f"Wrote {output_path} ({result.placed}/{len(result.items)} items placed)")

    if args.commit:
        if commit_if_changed(output_path, token, repository):
            print(f"Committed and pushed {output_path}")
        else:
            print("No changes to commit")
    return 0


def _handle_optimize(args: argparse.Namespace) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )
    input_path = Path(args.input)
    svg_text = optimize_profile(_read_text(input_path), args.profile)

    if args.stdout:
        sys.stdout.write(svg_text + "\n")
        return 0

    output_path = Path(args.output) if args.output else input_path
    _write_text(output_path, svg_text)
    print(f"Wrote {output_path}")
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: compose, optimize.",
            exit_code=2,
        )
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("SVGMERGE_DEBUG") == "1"
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format
        _configure_logging(debug_enabled, args.verbose)

        if args.command == "compose":
            return _handle_compose(args)
        if args.command == "optimize":
            return _handle_optimize(args)

        raise CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: compose, optimize.",
            exit_code=2,
        )
    except UsageError as exc:
        err = CliError(
            "E_ARGS",
            str(exc),
            hint="Use subcommands: compose, optimize.",
            exit_code=2,
        )
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in integration tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
