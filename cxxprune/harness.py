#!/usr/bin/env python3
"""cxxprune/harness.py — fixture runner for the optimizer.

Usage examples
--------------
    # Detect the system include paths once and cache them
    cxxprune-harness prepare flags.json

    # Run one case directory against the cached flags
    cxxprune-harness run flags.json tests/cases/unused_function

    # Keep the optimizer output in a chosen directory
    cxxprune-harness run flags.json tests/cases/merge --temp /tmp/out

Case directories
----------------
    input.cpp       source handed to the optimizer
    expected.cpp    expected output, compared line by line
    case.json       optional: {"flags": [...], "macros": [...],
                               "identifiers": [...]}

Exit codes
----------
    0   Output matches the fixture.
    1   Output differs, or the front end rejected the input.
    2   Infrastructure failure (missing file, unreadable cache, …).
"""

from __future__ import annotations

import argparse
import difflib
import json
import logging
import shutil
import subprocess
import sys
import tempfile
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from termcolor import colored, cprint

from . import __version__
from .config import DEFAULT_FLAGS
from .errors import FrontEndFailure
from .optimizer import optimize

_log = logging.getLogger("cxxprune")

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2

CACHE_VERSION = 1
PROBE_COMPILERS: Tuple[str, ...] = ("clang++", "g++", "c++")

_SEARCH_START = "#include <...> search starts here:"
_SEARCH_END = "End of search list."


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the root ``cxxprune`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("cxxprune")
    root.setLevel(level)
    root.addHandler(handler)


# ===========================================================================
# Front-end flags cache
# ===========================================================================

def parse_search_list(output: str) -> List[str]:
    """Extract the ``#include <...>`` search directories from ``-v`` output."""
    dirs: List[str] = []
    inside = False
    for line in output.splitlines():
        stripped = line.strip()
        if stripped == _SEARCH_START:
            inside = True
        elif stripped == _SEARCH_END:
            break
        elif inside and stripped:
            dirs.append(stripped.replace(" (framework directory)", ""))
    return dirs


def probe_compiler(compilers: Iterable[str] = PROBE_COMPILERS) -> Tuple[str, List[str]]:
    """Return the first working compiler and its system include directories."""
    for compiler in compilers:
        exe = shutil.which(compiler)
        if exe is None:
            _log.debug("%s not found on PATH", compiler)
            continue
        try:
            proc = subprocess.run(
                [exe, "-E", "-x", "c++", "-", "-v"],
                input="", capture_output=True, text=True, timeout=60,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            _log.warning("probing %s failed: %s", compiler, exc)
            continue
        dirs = parse_search_list(proc.stderr)
        if dirs:
            _log.info("%s: %d system include directories", compiler, len(dirs))
            return compiler, dirs
    return "", []


@dataclass
class FlagsCache:
    compiler: str
    flags: List[str] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps({"version": CACHE_VERSION, "compiler": self.compiler,
                           "flags": self.flags}, indent=2)

    @classmethod
    def load(cls, path: Path) -> "FlagsCache":
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict) or data.get("version") != CACHE_VERSION:
            raise ValueError(f"{path}: not a version {CACHE_VERSION} flags cache")
        return cls(compiler=str(data.get("compiler", "")),
                   flags=[str(f) for f in data.get("flags", [])])


def build_flags(include_dirs: Sequence[str]) -> List[str]:
    return list(DEFAULT_FLAGS) + [f"-isystem{d}" for d in include_dirs]


# ===========================================================================
# Case directories
# ===========================================================================

@dataclass
class FixtureCase:
    """One fixture directory."""

    root: Path
    flags: List[str] = field(default_factory=list)
    macros: List[str] = field(default_factory=list)
    identifiers: List[str] = field(default_factory=list)

    @property
    def input(self) -> Path:
        return self.root / "input.cpp"

    @property
    def expected(self) -> Path:
        return self.root / "expected.cpp"

    @classmethod
    def load(cls, root: Path) -> "FixtureCase":
        case = cls(root=root)
        options = root / "case.json"
        if options.exists():
            data = json.loads(options.read_text(encoding="utf-8"))
            case.flags = list(data.get("flags", []))
            case.macros = list(data.get("macros", []))
            case.identifiers = list(data.get("identifiers", []))
        return case


def colorize_diff(lines: Iterable[str]) -> List[str]:
    out: List[str] = []
    for line in lines:
        if line.startswith(("+++", "---")):
            out.append(colored(line, attrs=["bold"]))
        elif line.startswith("@@"):
            out.append(colored(line, "cyan"))
        elif line.startswith("+"):
            out.append(colored(line, "green"))
        elif line.startswith("-"):
            out.append(colored(line, "red"))
        else:
            out.append(line)
    return out


def compare(expected: str, actual: str, name: str) -> List[str]:
    """Unified diff between fixture and output; empty when they match."""
    return list(difflib.unified_diff(
        expected.splitlines(keepends=True),
        actual.splitlines(keepends=True),
        fromfile=f"{name}/expected.cpp",
        tofile=f"{name}/result.cpp",
    ))


# ===========================================================================
# Commands
# ===========================================================================

def cmd_prepare(args: argparse.Namespace) -> int:
    compiler, dirs = probe_compiler()
    if not compiler:
        _log.warning("no compiler found; caching default flags only")
    cache = FlagsCache(compiler=compiler, flags=build_flags(dirs))
    target = Path(args.cache)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(cache.to_json() + "\n", encoding="utf-8")
    _log.info("wrote %s (%d flags)", target, len(cache.flags))
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    try:
        cache = FlagsCache.load(Path(args.cache))
    except (OSError, ValueError) as exc:
        _log.error("cannot read flags cache: %s", exc)
        return EXIT_INFRA

    case = FixtureCase.load(Path(args.case_dir))
    if not case.input.exists() or not case.expected.exists():
        _log.error("%s: input.cpp and expected.cpp are required", case.root)
        return EXIT_INFRA
    name = case.root.name

    try:
        result = optimize(str(case.input), cache.flags + case.flags,
                          case.macros, case.identifiers)
    except FrontEndFailure as exc:
        print(exc.message)
        cprint(f"FAIL {name}", "red", attrs=["bold"])
        return EXIT_ERROR

    out_dir = Path(args.temp) if args.temp else Path(tempfile.mkdtemp(prefix="cxxprune-"))
    out_dir.mkdir(parents=True, exist_ok=True)
    out_file = out_dir / f"{name}.result.cpp"
    out_file.write_text(result, encoding="utf-8", errors="surrogateescape")
    _log.info("output written to %s", out_file)

    expected = case.expected.read_text(encoding="utf-8", errors="surrogateescape")
    diff = compare(expected, result, name)
    if not diff:
        cprint(f"PASS {name}", "green", attrs=["bold"])
        return EXIT_OK
    sys.stdout.writelines(colorize_diff(diff))
    cprint(f"FAIL {name}", "red", attrs=["bold"])
    return EXIT_ERROR


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cxxprune-harness",
        description="Fixture runner for the cxxprune optimizer.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              cxxprune-harness prepare flags.json
              cxxprune-harness run flags.json cases/unused_function
        """),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )
    subparsers = parser.add_subparsers(dest="command", title="commands", metavar="<command>")

    p = subparsers.add_parser("prepare", help="Detect and cache front-end flags.")
    p.add_argument("cache", metavar="CACHE", help="Flags cache file to write.")
    p.set_defaults(func=cmd_prepare)

    p = subparsers.add_parser("run", help="Run one fixture directory.")
    p.add_argument("cache", metavar="CACHE", help="Flags cache written by 'prepare'.")
    p.add_argument("case_dir", metavar="CASE_DIR", help="Directory with input.cpp / expected.cpp.")
    p.add_argument("--temp", metavar="DIR", default=None,
                   help="Directory for the optimizer output (default: a fresh temp dir).")
    p.set_defaults(func=cmd_run)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the harness CLI; returns the exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except OSError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
