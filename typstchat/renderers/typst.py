"""Renderer that shells out to the ``typst`` compiler."""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from .base import MIME_TYPES, Renderer, RenderRequest, RenderResult

logger = logging.getLogger(__name__)

_PAGE_SUFFIX = re.compile(r"-(\d+)\.\w+$")


def page_number(filename: str) -> int:
    """Return the numeric page suffix of a generated page file name."""
    match = _PAGE_SUFFIX.search(filename)
    return int(match.group(1)) if match else 0


class TypstRenderer(Renderer):
    """Compile Typst markup with the ``typst compile`` command line tool."""

    def __init__(
        self,
        binary: str = "typst",
        temp_dir: Optional[str] = None,
        timeout: float = 60.0,
    ) -> None:
        self.binary = binary
        self.temp_dir = temp_dir
        self.timeout = timeout

    async def render(self, request: RenderRequest) -> RenderResult:
        if not request.code or not request.code.strip():
            return RenderResult.failure("No Typst code provided")

        if self.temp_dir:
            Path(self.temp_dir).mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="typstchat-", dir=self.temp_dir))
        try:
            return await self._compile(request, workdir)
        except Exception as exc:
            logger.warning(f"Typst render failed unexpectedly: {exc}")
            return RenderResult.failure(str(exc) or "Unknown error")
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    async def _compile(self, request: RenderRequest, workdir: Path) -> RenderResult:
        paged = request.format in ("png", "svg")
        source = workdir / "document.typ"
        source.write_text(request.code, encoding="utf-8")
        # typst expands {n} to the page number for multi-page output
        output = workdir / (
            f"page-{{n}}.{request.format}" if paged else f"document.{request.format}"
        )

        proc = await asyncio.create_subprocess_exec(
            self.binary,
            "compile",
            str(source),
            str(output),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return RenderResult.failure(f"Typst timed out after {self.timeout:g} seconds")

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            return RenderResult.failure(message or f"Typst exited with code {proc.returncode}")

        mime_type = MIME_TYPES[request.format]
        if not paged:
            data = base64.b64encode(output.read_bytes()).decode("ascii")
            return RenderResult(success=True, data=data, mime_type=mime_type)

        page_files = sorted(
            workdir.glob(f"page-*.{request.format}"), key=lambda p: page_number(p.name)
        )
        pages = []
        for page_file in page_files:
            if request.format == "svg":
                pages.append(page_file.read_text(encoding="utf-8"))
            else:
                pages.append(base64.b64encode(page_file.read_bytes()).decode("ascii"))
        logger.debug(f"Typst produced {len(pages)} {request.format} page(s)")
        return RenderResult(success=True, pages=pages, mime_type=mime_type)
