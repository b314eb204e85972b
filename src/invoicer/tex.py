"""Line-oriented LaTeX template rendering.

Templates are plain ``.tex`` files with two special line forms:

    \\input{letterhead}     spliced in verbatim from ``letterhead.tex``
    %$INVOICE_POSITIONS    marker; the registered callback writes after it

Included files are copied verbatim, markers and nested ``\\input`` lines
inside them are not expanded.
"""

import logging
import re
from pathlib import Path
from typing import Callable, Iterable, TextIO

logger = logging.getLogger("invoicer.tex")

INCLUDE_RE = re.compile(r"^\\input\{([^}]*)\}")
TOKEN_RE = re.compile(r"^%\$([A-Za-z_][A-Za-z0-9_]*)$")

TokenCallback = Callable[[TextIO], None]


def tex_command(w: TextIO, name: str, value: str | None) -> None:
    """Write ``\\newcommand{\\name}{value}``; absent values emit nothing."""
    if value is None:
        return
    w.write(f"\\newcommand{{\\{name}}}{{{value}}}\n")


def tex_commands(w: TextIO, prefix: str, fields: Iterable[tuple[str, str | None]]) -> None:
    for name, value in fields:
        tex_command(w, f"{prefix}{name}", value)


class TexTemplate:
    """A template file plus the token callbacks to expand while rendering."""

    def __init__(self, path: Path, include_dir: Path | None = None):
        self.path = Path(path)
        self.include_dir = Path(include_dir) if include_dir is not None else self.path.parent
        self._tokens: dict[str, TokenCallback] = {}

    def register(self, name: str, callback: TokenCallback) -> "TexTemplate":
        self._tokens[name] = callback
        return self

    @property
    def tokens(self) -> list[str]:
        return list(self._tokens)

    def _include_path(self, name: str) -> Path:
        name = name.strip()
        if not name.endswith(".tex"):
            name += ".tex"
        return self.include_dir / name

    def _include(self, name: str, w: TextIO) -> None:
        path = self._include_path(name)
        try:
            with open(path, encoding="utf-8") as f:
                for line in f:
                    w.write(line.rstrip("\r\n") + "\n")
        except OSError as e:
            logger.warning("Could not include %s: %s", path, e)

    def render(self, w: TextIO) -> None:
        try:
            f = open(self.path, encoding="utf-8")
        except OSError as e:
            logger.error("Could not open template %s: %s", self.path, e)
            return

        with f:
            for raw in f:
                line = raw.rstrip("\r\n")

                include = INCLUDE_RE.match(line)
                if include:
                    self._include(include.group(1), w)
                    continue

                w.write(line + "\n")

                token = TOKEN_RE.match(line.strip())
                if token:
                    callback = self._tokens.get(token.group(1))
                    if callback is not None:
                        callback(w)
