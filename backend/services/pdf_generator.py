"""
PDF generation for project reports.

Converts report markdown to HTML with python-markdown and renders it with
WeasyPrint. WeasyPrint is imported on first use: it needs native Pango
libraries, and the API should still start (and report a clear job error)
on hosts without them.
"""
from __future__ import annotations

import io
import logging
from typing import Any, Optional

import markdown

logger = logging.getLogger(__name__)

WEASYPRINT_INSTALL_DOCS: str = (
    "https://doc.courtbouillon.org/weasyprint/stable/first_steps.html#installation"
)

REPORT_CSS: str = """
@page {
    size: A4;
    margin: 1.8cm 2cm;
    @bottom-right {
        content: "Page " counter(page) " of " counter(pages);
        font-size: 8pt;
        color: #888;
    }
}

body {
    font-family: "Inter", "Helvetica Neue", Arial, sans-serif;
    font-size: 10.5pt;
    line-height: 1.5;
    color: #1f2933;
}

h1 {
    font-size: 22pt;
    margin: 0 0 4pt 0;
    color: #102a43;
}

h2 {
    font-size: 15pt;
    margin: 22pt 0 8pt 0;
    padding-bottom: 4pt;
    border-bottom: 2px solid #d9e2ec;
    color: #243b53;
}

h3 {
    font-size: 12pt;
    margin: 14pt 0 6pt 0;
    color: #334e68;
}

table {
    width: 100%;
    border-collapse: collapse;
    margin: 8pt 0 14pt 0;
    font-size: 9.5pt;
}

th, td {
    padding: 5pt 8pt;
    border-bottom: 1px solid #e4e7eb;
    text-align: left;
}

th {
    background-color: #f0f4f8;
    font-weight: 600;
}

blockquote {
    margin: 10pt 0;
    padding: 6pt 12pt;
    border-left: 4px solid #829ab1;
    background-color: #f8fafc;
}

ul {
    padding-left: 18pt;
}
"""


def markdown_to_html(markdown_content: str, title: str = "Project Report") -> str:
    """Convert report markdown into a standalone HTML document."""
    md = markdown.Markdown(extensions=["tables", "sane_lists", "attr_list"])
    body: str = md.convert(markdown_content)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{title}</title>
</head>
<body>
{body}
</body>
</html>"""


def _load_weasyprint() -> tuple[Any, Any, Any]:
    try:
        from weasyprint import CSS, HTML
        from weasyprint.text.fonts import FontConfiguration
    except (ImportError, OSError) as exc:
        raise RuntimeError(
            f"WeasyPrint is unavailable ({exc}); see the installation guide: {WEASYPRINT_INSTALL_DOCS}"
        ) from exc
    return HTML, CSS, FontConfiguration


def generate_pdf(
    markdown_content: str,
    custom_css: Optional[str] = None,
    title: str = "Project Report",
) -> bytes:
    """
    Render report markdown to PDF bytes.

    Args:
        markdown_content: Markdown-formatted report
        custom_css: Optional CSS appended to REPORT_CSS
        title: HTML document title (PDF metadata)

    Raises:
        RuntimeError: WeasyPrint or its native libraries are missing
    """
    HTML, CSS, FontConfiguration = _load_weasyprint()
    logger.info("[PDFGenerator] Starting PDF generation")

    css_content: str = REPORT_CSS
    if custom_css:
        css_content += "\n" + custom_css

    font_config = FontConfiguration()
    html_doc = HTML(string=markdown_to_html(markdown_content, title=title))
    css_doc = CSS(string=css_content, font_config=font_config)

    pdf_buffer = io.BytesIO()
    html_doc.write_pdf(pdf_buffer, stylesheets=[css_doc], font_config=font_config)

    pdf_bytes: bytes = pdf_buffer.getvalue()
    logger.info("[PDFGenerator] Generated PDF: %d bytes", len(pdf_bytes))
    return pdf_bytes
