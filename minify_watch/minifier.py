"""Pluggable JavaScript minification backends.

A backend turns source text into minified text plus, optionally, a
source map. Backends must raise :class:`MinifyError` for input they
reject; the build pipeline relies on that to leave existing output
untouched.

Two backends ship with the package:

  esprima  parse with esprima, then re-emit the token stream without
           comments and redundant whitespace (supports source maps)
  rjsmin   validate with esprima, minify with rjsmin (no source maps)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import esprima
import rjsmin
from esprima.error_handler import Error as EsprimaError

from minify_watch.exceptions import ConfigError, MinifyError
from minify_watch.sourcemap import SourceMapBuilder

logger = logging.getLogger(__name__)

_WORD_EXTRA = "_$\\"
# A line break after these tokens never affects parsing.
_NO_BREAK_AFTER = frozenset(";{,([")
# Nor before these.
_NO_BREAK_BEFORE = frozenset(")]},;")


@dataclass
class MinifyResult:
    """Output of one minifier run."""
    code: str
    source_map: dict[str, Any] | None = None


class Minifier:
    """Base class for minification backends.

    Subclasses set ``name``, ``option_names`` and implement :meth:`minify`.
    Options are the passthrough ``minifier_options`` from the watcher
    configuration.
    """

    name = ""
    supports_source_maps = False
    option_names: frozenset[str] = frozenset()

    def __init__(self, options: Mapping[str, Any] | None = None):
        self.options = dict(options or {})
        unknown = sorted(set(self.options) - self.option_names)
        if unknown:
            raise ConfigError(
                f"Unknown option(s) for minifier '{self.name}': {', '.join(unknown)}"
            )

    def minify(
        self,
        source: str,
        *,
        source_name: str,
        output_name: str,
        source_map: bool = False,
    ) -> MinifyResult:
        raise NotImplementedError

    def _check_syntax(self, source: str, source_name: str) -> None:
        parse = esprima.parseModule if self.options.get("module") else esprima.parseScript
        try:
            parse(source)
        except EsprimaError as exc:
            raise MinifyError(
                f"Syntax error in {source_name}: {_describe(exc)}", source_name
            ) from exc

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.options!r}>"


def _describe(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc) or type(exc).__name__


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in _WORD_EXTRA or ord(ch) > 127


def _needs_space(prev, token) -> bool:
    """Return True if *prev* and *token* would fuse without a separator."""
    left = prev.value[-1]
    right = token.value[0]
    if _is_word_char(left) and _is_word_char(right):
        return True
    if (left, right) in (("+", "+"), ("-", "-"), ("<", "!")):
        return True
    if left == "/" and right in "/*":
        return True
    if prev.type == "RegularExpression" and _is_word_char(right):
        return True
    if prev.type == "Numeric" and right == ".":
        return True
    return False


def _keeps_line_break(prev, token) -> bool:
    if prev.loc.end.line >= token.loc.start.line:
        return False
    return prev.value not in _NO_BREAK_AFTER and token.value not in _NO_BREAK_BEFORE


class EsprimaMinifier(Minifier):
    """Whitespace- and comment-stripping minifier built on esprima's tokenizer.

    Every token is copied verbatim, so the output has the same token
    stream as the input. Line breaks the grammar may depend on (automatic
    semicolon insertion, ``return``/``throw`` and postfix operators) are
    preserved.
    """

    name = "esprima"
    supports_source_maps = True
    option_names = frozenset({"module"})

    def minify(self, source, *, source_name, output_name, source_map=False):
        self._check_syntax(source, source_name)
        tokens = esprima.tokenize(source, {"loc": True})

        builder = SourceMapBuilder(output_name, source_name) if source_map else None
        parts: list[str] = []
        gen_line = 0
        gen_column = 0
        prev = None
        for token in tokens:
            if prev is not None:
                if _keeps_line_break(prev, token):
                    parts.append("\n")
                    gen_line += 1
                    gen_column = 0
                elif _needs_space(prev, token):
                    parts.append(" ")
                    gen_column += 1
            if builder is not None:
                start = token.loc.start
                builder.add(gen_line, gen_column, start.line - 1, start.column)
            text = token.value
            parts.append(text)
            newlines = text.count("\n")
            if newlines:
                gen_line += newlines
                gen_column = len(text) - text.rfind("\n") - 1
            else:
                gen_column += len(text)
            prev = token

        return MinifyResult(
            code="".join(parts),
            source_map=builder.to_dict() if builder is not None else None,
        )


class RjsminMinifier(Minifier):
    """rjsmin-backed minifier; input is syntax-checked with esprima first."""

    name = "rjsmin"
    option_names = frozenset({"module", "keep_bang_comments"})

    def minify(self, source, *, source_name, output_name, source_map=False):
        if source_map:
            raise MinifyError("rjsmin cannot generate source maps", source_name)
        self._check_syntax(source, source_name)
        keep = bool(self.options.get("keep_bang_comments", False))
        return MinifyResult(code=rjsmin.jsmin(source, keep_bang_comments=keep))


MINIFIERS: dict[str, type[Minifier]] = {
    EsprimaMinifier.name: EsprimaMinifier,
    RjsminMinifier.name: RjsminMinifier,
}


def get_minifier(
    minifier: str | Minifier = "esprima",
    options: Mapping[str, Any] | None = None,
) -> Minifier:
    """Resolve a backend name (or pass through an instance)."""
    if isinstance(minifier, Minifier):
        if options:
            raise ConfigError("minifier_options cannot be combined with a minifier instance")
        return minifier
    try:
        cls = MINIFIERS[minifier]
    except (KeyError, TypeError):
        raise ConfigError(
            f"Unknown minifier {minifier!r}; expected one of {', '.join(sorted(MINIFIERS))}"
        ) from None
    logger.debug("Using %s minifier with options %r", cls.name, options)
    return cls(options)
