import pytest

from services import pdf_generator


def test_generate_pdf_raises_helpful_error_when_weasyprint_missing(monkeypatch):
    def _missing():
        raise RuntimeError(
            f"WeasyPrint is unavailable (missing libgobject); see the installation guide: "
            f"{pdf_generator.WEASYPRINT_INSTALL_DOCS}"
        )

    monkeypatch.setattr(pdf_generator, "_load_weasyprint", _missing)

    with pytest.raises(RuntimeError) as excinfo:
        pdf_generator.generate_pdf("# hello")

    assert "WeasyPrint is unavailable" in str(excinfo.value)
    assert "installation" in str(excinfo.value)


def test_load_weasyprint_wraps_native_library_errors(monkeypatch):
    import builtins

    real_import = builtins.__import__

    def failing_import(name, *args, **kwargs):
        if name.startswith("weasyprint"):
            raise OSError("cannot load library 'libpango-1.0-0'")
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(builtins, "__import__", failing_import)

    with pytest.raises(RuntimeError) as excinfo:
        pdf_generator._load_weasyprint()

    assert "libpango" in str(excinfo.value)
    assert pdf_generator.WEASYPRINT_INSTALL_DOCS in str(excinfo.value)


def test_markdown_to_html_renders_tables():
    html = pdf_generator.markdown_to_html("| A | B |\n| --- | --- |\n| 1 | 2 |", title="Weekly")

    assert "<title>Weekly</title>" in html
    assert "<table>" in html
    assert "<td>1</td>" in html
