"""
cxxprune.config
===============

Run configuration for one optimizer invocation.

Environment
-----------
``CXXPRUNE_LIBCLANG``
    Path to the libclang shared library.  When unset, the library bundled
    with the ``libclang`` wheel (or found by ``clang.cindex``) is used.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Tuple

LIBCLANG_ENV = "CXXPRUNE_LIBCLANG"

DEFAULT_FLAGS: Tuple[str, ...] = ("-x", "c++", "-std=c++17")

DELAYED_PARSING_ON = "-fdelayed-template-parsing"
DELAYED_PARSING_OFF = "-fno-delayed-template-parsing"


@dataclass(frozen=True)
class OptimizerConfig:
    """
    Attributes
    ----------
    flags : tuple of str
        Front-end command line (include paths, language standard, defines).
        ``DEFAULT_FLAGS`` are used when empty.
    macros_to_keep : frozenset of str
        Macros whose definitions and conditional blocks are never removed.
    identifiers_to_keep : frozenset of str
        Declaration names treated as additional roots.
    entry_point : str
        Name of the namespace-scope function the program starts from.
    libclang_path : str, optional
        Explicit libclang location; defaults to ``$CXXPRUNE_LIBCLANG``.
    """
    flags: Tuple[str, ...] = ()
    macros_to_keep: FrozenSet[str] = frozenset()
    identifiers_to_keep: FrozenSet[str] = frozenset()
    entry_point: str = "main"
    libclang_path: Optional[str] = field(
        default_factory=lambda: os.environ.get(LIBCLANG_ENV) or None)

    @classmethod
    def create(
        cls,
        flags: Iterable[str] = (),
        macros_to_keep: Iterable[str] = (),
        identifiers_to_keep: Iterable[str] = (),
        **kwargs,
    ) -> "OptimizerConfig":
        return cls(
            flags=tuple(flags),
            macros_to_keep=frozenset(macros_to_keep),
            identifiers_to_keep=frozenset(identifiers_to_keep),
            **kwargs,
        )

    def front_end_flags(self) -> List[str]:
        return list(self.flags) if self.flags else list(DEFAULT_FLAGS)

    def delayed_template_parsing(self) -> bool:
        """Whether the front end will defer template bodies for these flags."""
        flags = self.front_end_flags()
        for flag in reversed(flags):
            if flag == DELAYED_PARSING_ON:
                return True
            if flag == DELAYED_PARSING_OFF:
                return False
        return sys.platform == "win32"
