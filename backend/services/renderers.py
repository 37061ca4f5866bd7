"""
Report renderers and the (platform, template) dispatch table.

A renderer turns a CanonicalProject into an artifact file:

    await renderer.render(project, configuration, progress) -> artifact path

``progress`` is awaited with the renderer's own 0-100 completion; the
orchestrator maps it into its job progress window.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from connectors.models import CanonicalProject
from services.analytics import summarize
from services.filenames import storage_filename
from services.pdf_generator import generate_pdf
from services.report_content import TEMPLATES, build_report_markdown

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]
PdfWriter = Callable[..., bytes]

# Extra styling per platform (accent colour of the section rules)
PLATFORM_CSS: dict[str, str] = {
    "jira": "h2 { border-bottom-color: #0052cc; }",
    "monday": "h2 { border-bottom-color: #ff3d57; }",
    "trofos": "h2 { border-bottom-color: #2f9e44; }",
}


class UnsupportedPlatformError(ValueError):
    """No renderer (or connector) exists for the requested platform."""


class UnsupportedTemplateError(ValueError):
    """The platform is known but the template is not."""


class RenderError(RuntimeError):
    """Raised by a renderer that could not produce its artifact."""


class ReportRenderer(Protocol):
    async def render(
        self,
        project: CanonicalProject,
        configuration: dict[str, Any],
        progress: ProgressCallback,
    ) -> str: ...


class MarkdownPdfRenderer:
    """Builds the report as markdown and renders it to PDF."""

    extension: str = ".pdf"

    def __init__(
        self,
        platform: str,
        template: str,
        output_dir: str | Path,
        pdf_writer: PdfWriter = generate_pdf,
    ) -> None:
        self.platform = platform
        self.template = template
        self.output_dir = Path(output_dir)
        self._pdf_writer = pdf_writer

    async def render(
        self,
        project: CanonicalProject,
        configuration: dict[str, Any],
        progress: ProgressCallback,
    ) -> str:
        await progress(0)
        analytics = summarize(project)
        markdown_content = build_report_markdown(project, analytics, self.template, configuration)
        await progress(30)

        try:
            pdf_bytes: bytes = await asyncio.to_thread(
                self._pdf_writer,
                markdown_content,
                PLATFORM_CSS.get(self.platform),
                title=configuration.get("title") or project.name,
            )
        except Exception as exc:
            raise RenderError(f"PDF rendering failed: {exc}") from exc
        await progress(80)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        job_tag = str(configuration.get("job_id") or "").replace("-", "")[-8:]
        path = self.output_dir / storage_filename(
            self.platform, self.template, project.name, self.extension, tag=job_tag or None
        )
        await asyncio.to_thread(path.write_bytes, pdf_bytes)
        logger.info(
            "Rendered %s report",
            self.template,
            extra={"platform": self.platform, "artifact": path.name, "bytes": len(pdf_bytes)},
        )
        await progress(100)
        return str(path)


class RendererRegistry:
    """(platform, template) -> renderer."""

    def __init__(self) -> None:
        self._renderers: dict[tuple[str, str], ReportRenderer] = {}

    def register(self, platform: str, template: str, renderer: ReportRenderer) -> None:
        self._renderers[(platform.lower(), template.lower())] = renderer

    @property
    def platforms(self) -> set[str]:
        return {platform for platform, _ in self._renderers}

    def resolve(self, platform: str, template: str) -> ReportRenderer:
        key = (platform.lower(), template.lower())
        renderer = self._renderers.get(key)
        if renderer is not None:
            return renderer
        if key[0] not in self.platforms:
            raise UnsupportedPlatformError(f"Unsupported platform: {platform}")
        raise UnsupportedTemplateError(f"Unsupported template '{template}' for platform {platform}")


def build_default_registry(
    output_dir: str | Path,
    platforms: tuple[str, ...] = ("jira", "monday", "trofos"),
    pdf_writer: PdfWriter = generate_pdf,
) -> RendererRegistry:
    registry = RendererRegistry()
    for platform in platforms:
        for template in TEMPLATES:
            registry.register(
                platform,
                template,
                MarkdownPdfRenderer(platform, template, output_dir, pdf_writer=pdf_writer),
            )
    return registry
