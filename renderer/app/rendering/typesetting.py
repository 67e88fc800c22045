"""
Typesetters.

A typesetter turns substituted template source into the final document
binary. It also declares the Jinja delimiters and filters its templates
are written with, so template bodies stay readable in their target
language.

Two typesetters are provided:

- ``LuaLaTeXTypesetter``: compiles LaTeX to PDF with LuaLaTeX.
  Compilation runs without shell escape, halts on the first error and is
  bounded by a timeout.
- ``PlainTextTypesetter``: emits the substituted source as UTF-8 text.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import anyio

from renderer.app.errors import DocumentRenderError

logger = logging.getLogger("renderer.typesetting")


class Typesetter(Protocol):
    name: str
    media_type: str
    file_extension: str
    jinja_options: Mapping[str, Any]
    filters: Mapping[str, Callable[..., Any]]

    async def typeset(self, source: str) -> bytes:
        ...


# ----------------------------------------------------------------------
# Plain text
# ----------------------------------------------------------------------


class PlainTextTypesetter:
    name = "text"
    media_type = "text/plain; charset=utf-8"
    file_extension = "txt"
    jinja_options: Mapping[str, Any] = {}
    filters: Mapping[str, Callable[..., Any]] = {}

    async def typeset(self, source: str) -> bytes:
        return source.encode("utf-8")


# ----------------------------------------------------------------------
# LuaLaTeX
# ----------------------------------------------------------------------

LATEX_JINJA_OPTIONS: Dict[str, Any] = {
    "block_start_string": r"\BLOCK{",
    "block_end_string": "}",
    "variable_start_string": r"\VAR{",
    "variable_end_string": "}",
    "comment_start_string": r"\#{",
    "comment_end_string": "}",
}

_TEX_SPECIALS = {
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
}

_TEX_PATTERN = re.compile("|".join(re.escape(c) for c in _TEX_SPECIALS))


def escape_tex(value: Any) -> str:
    """Escape LaTeX special characters in ``value``."""
    return _TEX_PATTERN.sub(lambda m: _TEX_SPECIALS[m.group(0)], str(value))


class LuaLaTeXTypesetter:
    name = "lualatex"
    media_type = "application/pdf"
    file_extension = "pdf"
    jinja_options: Mapping[str, Any] = LATEX_JINJA_OPTIONS
    filters: Mapping[str, Callable[..., Any]] = {"tex": escape_tex}

    def __init__(
        self,
        *,
        template_dir: Optional[Path] = None,
        timeout_seconds: float = 60.0,
        executable: str = "lualatex",
    ) -> None:
        if template_dir is not None and not template_dir.is_dir():
            raise RuntimeError(f"template_dir does not exist: {template_dir}")
        self._template_dir = template_dir.resolve() if template_dir else None
        self._timeout = timeout_seconds
        self._executable = executable

    async def typeset(self, source: str) -> bytes:
        """
        Compile ``source`` to PDF.

        IMPORTANT INVARIANTS:
        - No shell escape.
        - Compilation halted on LaTeX errors.
        - On failure, a DocumentRenderError is raised with the
          compiler output attached.
        """
        tmp = await anyio.to_thread.run_sync(partial(tempfile.mkdtemp, prefix="render-"))
        try:
            return await self._compile(Path(tmp), source)
        finally:
            with anyio.CancelScope(shield=True):
                await anyio.to_thread.run_sync(
                    partial(shutil.rmtree, tmp, ignore_errors=True)
                )

    async def _compile(self, outdir: Path, source: str) -> bytes:
        tex_file = outdir / "document.tex"
        await anyio.Path(tex_file).write_text(source, encoding="utf-8")

        command = [
            self._executable,
            "-interaction=nonstopmode",
            "-halt-on-error",
            "-no-shell-escape",
            f"-output-directory={outdir}",
            tex_file.name,
        ]

        env_vars = os.environ.copy()
        if self._template_dir is not None:
            existing_texinputs = env_vars.get("TEXINPUTS", "")
            env_vars["TEXINPUTS"] = (
                f"{self._template_dir}{os.pathsep}{existing_texinputs}"
            )

        try:
            with anyio.fail_after(self._timeout):
                process = await anyio.run_process(
                    command,
                    cwd=outdir,
                    env=env_vars,
                    check=False,
                )
        except TimeoutError as exc:
            raise DocumentRenderError(
                f"LuaLaTeX did not finish within {self._timeout}s"
            ) from exc
        except OSError as exc:
            raise DocumentRenderError(
                f"Failed to invoke LuaLaTeX: {exc}"
            ) from exc

        if process.returncode != 0:
            stdout = process.stdout.decode("utf-8", errors="ignore")
            logger.warning(
                "lualatex_compilation_failed",
                extra={"returncode": process.returncode},
            )
            raise DocumentRenderError(
                "LuaLaTeX compilation failed.\n\n"
                "STDOUT:\n"
                f"{stdout[-4000:]}"
            )

        pdf_file = anyio.Path(outdir / "document.pdf")
        if not await pdf_file.exists():
            raise DocumentRenderError(
                "LuaLaTeX reported success, but no PDF output was produced."
            )

        return await pdf_file.read_bytes()


def build_typesetter(
    name: str,
    *,
    template_dir: Optional[Path] = None,
    timeout_seconds: float = 60.0,
) -> Typesetter:
    if name == PlainTextTypesetter.name:
        return PlainTextTypesetter()
    if name == LuaLaTeXTypesetter.name:
        return LuaLaTeXTypesetter(
            template_dir=template_dir, timeout_seconds=timeout_seconds
        )
    raise ValueError(f"Unknown typesetter '{name}'")
