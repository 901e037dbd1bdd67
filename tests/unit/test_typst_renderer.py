import base64
import stat
import sys

import pytest

from typstchat.renderers import RenderRequest, TypstRenderer
from typstchat.renderers.typst import page_number

FAKE_TYPST = """#!/bin/sh
out="$3"
dir=$(dirname "$out")
case "$out" in
  *.pdf) printf 'pdf-bytes' > "$out" ;;
  *) printf 'one' > "$dir/page-1.png"
     printf 'ten' > "$dir/page-10.png"
     printf 'two' > "$dir/page-2.png" ;;
esac
"""

BROKEN_TYPST = """#!/bin/sh
echo "error: unknown variable: foo" >&2
exit 1
"""

SILENT_TYPST = """#!/bin/sh
exit 3
"""

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


def _script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


@pytest.mark.parametrize(
    "filename,number",
    [("page-1.png", 1), ("page-12.svg", 12), ("document.pdf", 0)],
)
def test_page_number(filename, number):
    assert page_number(filename) == number


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["", "   \n"])
async def test_empty_code_is_a_render_failure(code):
    result = await TypstRenderer().render(RenderRequest(code=code))
    assert result.success is False
    assert result.error == "No Typst code provided"


@pytest.mark.asyncio
async def test_missing_binary_is_a_render_failure(tmp_path):
    renderer = TypstRenderer(binary=str(tmp_path / "no-such-typst"))
    result = await renderer.render(RenderRequest(code="= Hi"))
    assert result.success is False
    assert result.error


@posix_only
@pytest.mark.asyncio
async def test_pages_are_returned_in_numeric_order(tmp_path):
    renderer = TypstRenderer(binary=_script(tmp_path, "typst", FAKE_TYPST))

    result = await renderer.render(RenderRequest(code="= Hi", format="png"))

    assert result.success is True
    assert result.mime_type == "image/png"
    assert [base64.b64decode(p) for p in result.pages] == [b"one", b"two", b"ten"]


@posix_only
@pytest.mark.asyncio
async def test_pdf_is_returned_as_single_blob(tmp_path):
    renderer = TypstRenderer(binary=_script(tmp_path, "typst", FAKE_TYPST))

    result = await renderer.render(RenderRequest(code="= Hi", format="pdf"))

    assert result.success is True
    assert result.pages is None
    assert base64.b64decode(result.data) == b"pdf-bytes"
    assert result.mime_type == "application/pdf"


@posix_only
@pytest.mark.asyncio
async def test_compiler_error_reports_stderr(tmp_path):
    renderer = TypstRenderer(binary=_script(tmp_path, "typst", BROKEN_TYPST))
    result = await renderer.render(RenderRequest(code="#foo"))
    assert result.success is False
    assert result.error == "error: unknown variable: foo"


@posix_only
@pytest.mark.asyncio
async def test_silent_compiler_error_reports_exit_code(tmp_path):
    renderer = TypstRenderer(binary=_script(tmp_path, "typst", SILENT_TYPST))
    result = await renderer.render(RenderRequest(code="#foo"))
    assert result.error == "Typst exited with code 3"


@posix_only
@pytest.mark.asyncio
async def test_working_directory_is_removed(tmp_path):
    work = tmp_path / "work"
    renderer = TypstRenderer(binary=_script(tmp_path, "typst", FAKE_TYPST), temp_dir=str(work))
    await renderer.render(RenderRequest(code="= Hi"))
    assert list(work.iterdir()) == []
