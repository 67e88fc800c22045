import os
import shutil
import stat
import sys

import pytest

from renderer.app.errors import DocumentRenderError
from renderer.app.injection.values import InjectableValue, ValueType
from renderer.app.rendering.substitution import TemplateSubstitution
from renderer.app.rendering.typesetting import (
    LATEX_JINJA_OPTIONS,
    LuaLaTeXTypesetter,
    PlainTextTypesetter,
    build_typesetter,
    escape_tex,
)
from renderer.tests.helpers import key, make_template

pytestmark = pytest.mark.anyio

NAME = key(ValueType.STRING, "name")


async def test_plain_text_is_utf8():
    assert await PlainTextTypesetter().typeset("Grüße") == "Grüße".encode("utf-8")


def test_escape_tex_handles_specials():
    assert escape_tex("50% & $5_#") == r"50\% \& \$5\_\#"


def test_latex_delimiters_and_filters():
    substitution = TemplateSubstitution(
        jinja_options=LATEX_JINJA_OPTIONS,
        filters=LuaLaTeXTypesetter.filters,
    )
    template = make_template(
        "g",
        body=r"\textbf{\VAR{name|tex}} \VAR{document.template_id}",
        placeholders=[NAME],
    )

    source = substitution.render(
        template,
        {NAME: InjectableValue.of(ValueType.STRING, "R&D")},
        {"template_id": "g"},
    )

    assert source == r"\textbf{R\&D} g"


def test_missing_value_fails_substitution():
    substitution = TemplateSubstitution()
    template = make_template("g", body="{{ name }}", placeholders=[NAME])

    with pytest.raises(DocumentRenderError):
        substitution.render(template, {}, {})


def test_unknown_typesetter_name():
    with pytest.raises(ValueError):
        build_typesetter("postscript")


async def test_missing_lualatex_binary_is_a_render_error():
    typesetter = LuaLaTeXTypesetter(executable="lualatex-not-installed")

    with pytest.raises(DocumentRenderError):
        await typesetter.typeset(r"\documentclass{article}\begin{document}x\end{document}")


@pytest.mark.skipif(shutil.which("lualatex") is None, reason="lualatex not installed")
async def test_lualatex_produces_pdf():
    pdf = await LuaLaTeXTypesetter(timeout_seconds=120).typeset(
        r"\documentclass{article}\begin{document}Hello\end{document}"
    )

    assert pdf.startswith(b"%PDF")


def _fake_compiler(tmp_path, script: str):
    path = tmp_path / "fake-lualatex"
    path.write_text("#!/bin/sh\npwd > \"" + str(tmp_path / "workdir") + "\"\n" + script)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
async def test_compiler_output_is_returned_and_scratch_dir_removed(tmp_path):
    executable = _fake_compiler(
        tmp_path,
        'cat document.tex > document.pdf\n',
    )

    pdf = await LuaLaTeXTypesetter(executable=executable).typeset("%PDF source")

    assert pdf == b"%PDF source"
    workdir = (tmp_path / "workdir").read_text().strip()
    assert os.path.basename(workdir).startswith("render-")
    assert not os.path.exists(workdir)


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
async def test_failed_compilation_reports_output_and_cleans_up(tmp_path):
    executable = _fake_compiler(tmp_path, 'echo "! Undefined control sequence."\nexit 1\n')

    with pytest.raises(DocumentRenderError) as excinfo:
        await LuaLaTeXTypesetter(executable=executable).typeset(r"\bogus")

    assert "Undefined control sequence" in str(excinfo.value)
    workdir = (tmp_path / "workdir").read_text().strip()
    assert not os.path.exists(workdir)


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
async def test_missing_pdf_output_is_a_render_error(tmp_path):
    executable = _fake_compiler(tmp_path, "exit 0\n")

    with pytest.raises(DocumentRenderError, match="no PDF output"):
        await LuaLaTeXTypesetter(executable=executable).typeset("x")
