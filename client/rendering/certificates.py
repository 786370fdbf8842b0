"""Certificate rendering - HTML to PDF.

This module turns the server-generated certificate HTML into a downloadable
PDF without any help from the backend:

1. inline every image as a PNG data URI (see rendering.images)
2. mount the result in an off-screen 900x600 container
3. wait for fonts and a short settle delay
4. rasterize the container at 2x on a white background
5. remove the container (always, even when rasterizing fails)
6. size the PDF page from the raster's aspect ratio (no letterboxing)
7. place the raster full-bleed and write the file

Certificate business logic (fetching, naming, verification) lives in
services/certificates_service.py.
"""

import asyncio
import os
import tempfile
import webbrowser
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from io import BytesIO
from pathlib import Path
from typing import Protocol

import httpx
from bs4 import BeautifulSoup, Doctype
from PIL import Image
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas as pdf_canvas

from core.config import get_settings
from core.logger import get_logger
from rendering.images import preload_images

logger = get_logger(__name__)

# Page sizing follows A4: landscape pages are 297mm wide, portrait 210mm tall
LANDSCAPE_WIDTH_MM = 297.0
PORTRAIT_HEIGHT_MM = 210.0

# CSS pixels are 1/96in, PDF points 1/72in
_POINTS_PER_CSS_PX = 72 / 96

CONTAINER_ID = "certificate-container"


class CertificateRenderError(Exception):
    """Raised when any step of the HTML-to-PDF pipeline fails."""


class Rasterizer(Protocol):
    """Turns a mounted certificate page into a bitmap."""

    def load_fonts(self) -> None: ...

    def rasterize(
        self, page_path: Path, *, width: int, height: int, scale: float
    ) -> Image.Image: ...


class WeasyPrintRasterizer:
    """Lays the page out with WeasyPrint and rasterizes it with PDFium.

    WeasyPrint has no bitmap output, so the page is laid out as a one-page
    PDF of exactly the container size and PDFium renders that page.
    """

    def __init__(self) -> None:
        self._font_config = None

    def load_fonts(self) -> None:
        """Build the font configuration up front so @font-face rules resolve."""
        _import_weasyprint()
        from weasyprint.text.fonts import FontConfiguration

        self._font_config = FontConfiguration()

    def rasterize(
        self, page_path: Path, *, width: int, height: int, scale: float
    ) -> Image.Image:
        weasyprint = _import_weasyprint()
        import pypdfium2 as pdfium

        if self._font_config is None:
            self.load_fonts()

        page_css = weasyprint.CSS(
            string=f"@page {{ size: {width}px {height}px; margin: 0; }}",
            font_config=self._font_config,
        )
        pdf_bytes = weasyprint.HTML(filename=str(page_path)).write_pdf(
            stylesheets=[page_css], font_config=self._font_config
        )

        document = pdfium.PdfDocument(pdf_bytes)
        try:
            page = document[0]
            # pdfium scale 1.0 is one pixel per point
            bitmap = page.render(
                scale=scale / _POINTS_PER_CSS_PX,
                fill_color=(255, 255, 255, 255),
            )
            image = bitmap.to_pil()
            page.close()
        finally:
            document.close()
        return image


def _import_weasyprint():
    """Import WeasyPrint, translating a missing Pango into an actionable error.

    Raises:
        RuntimeError: If the Pango library is not installed on the system
    """
    try:
        import weasyprint
    except OSError as e:
        raise RuntimeError(
            "PDF generation requires the Pango library. "
            "On macOS: brew install pango. "
            "On Ubuntu/Debian: apt-get install libpango-1.0-0 libpangoft2-1.0-0. "
            "On Alpine: apk add pango."
        ) from e
    return weasyprint


def compute_pdf_page_size(width_px: int, height_px: int) -> tuple[float, float]:
    """Return the (width, height) in mm of a page that fits the raster exactly.

    Landscape rasters get a 297mm wide page, everything else a 210mm tall
    one; the other side follows the aspect ratio so there is no letterboxing.
    """
    if width_px <= 0 or height_px <= 0:
        raise ValueError(f"Invalid raster size {width_px}x{height_px}")

    aspect_ratio = width_px / height_px
    if aspect_ratio > 1:
        return LANDSCAPE_WIDTH_MM, LANDSCAPE_WIDTH_MM / aspect_ratio
    return PORTRAIT_HEIGHT_MM * aspect_ratio, PORTRAIT_HEIGHT_MM


def _split_document(html: str) -> tuple[str, str]:
    """Split HTML into (head markup, body markup) for re-mounting."""
    soup = BeautifulSoup(html, "html.parser")
    for node in list(soup.contents):
        if isinstance(node, Doctype):
            node.extract()

    head = soup.find("head")
    head_markup = head.decode_contents() if head else ""
    if head:
        head.extract()

    body = soup.find("body") or soup.find("html") or soup
    return head_markup, body.decode_contents()


def build_container_page(html: str, *, width: int, height: int) -> str:
    """Wrap certificate HTML in a fixed-size, white, clipped container page."""
    head_markup, body_markup = _split_document(html)
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  html, body {{ margin: 0; padding: 0; background: #ffffff; }}
  #{CONTAINER_ID} {{
    position: relative;
    width: {width}px;
    height: {height}px;
    overflow: hidden;
    background: white;
    font-family: Arial, sans-serif;
    box-sizing: border-box;
  }}
</style>
{head_markup}
</head>
<body><div id="{CONTAINER_ID}">{body_markup}</div></body>
</html>"""


@contextmanager
def _mounted_container(html: str, *, width: int, height: int) -> Iterator[Path]:
    """Stage the container page in a temporary directory for the duration of a render.

    The directory is removed when the block exits, on success or error.
    """
    with tempfile.TemporaryDirectory(prefix="certificate-render-") as staging_dir:
        page_path = Path(staging_dir) / "page.html"
        page_path.write_text(
            build_container_page(html, width=width, height=height), encoding="utf-8"
        )
        yield page_path


def _flatten(image: Image.Image) -> Image.Image:
    """Composite onto white so transparent pixels never render black."""
    if image.mode == "RGB":
        return image
    rgba = image.convert("RGBA")
    background = Image.new("RGB", rgba.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def build_certificate_pdf(image: Image.Image) -> bytes:
    """Place the raster full-bleed on a single page sized to its aspect ratio."""
    width_mm, height_mm = compute_pdf_page_size(*image.size)
    page_width, page_height = width_mm * mm, height_mm * mm

    buffer = BytesIO()
    c = pdf_canvas.Canvas(buffer, pagesize=(page_width, page_height))
    c.drawImage(
        ImageReader(_flatten(image)), 0, 0, width=page_width, height=page_height
    )
    c.showPage()
    c.save()
    return buffer.getvalue()


def _write_file(path: Path, data: bytes) -> None:
    """Write via a sibling temp file so a crash never leaves half a PDF."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


async def generate_certificate_pdf(
    html: str,
    file_name: str = "certificate.pdf",
    *,
    output_dir: Path | str | None = None,
    rasterizer: Rasterizer | None = None,
    client: httpx.AsyncClient | None = None,
    base_url: str | None = None,
) -> Path:
    """Render certificate HTML to a PDF file and return its path.

    Args:
        html: Certificate HTML as generated by the server
        file_name: Name of the PDF file to write
        output_dir: Target directory (defaults to settings.output_dir_path)
        rasterizer: Page rasterizer (defaults to WeasyPrintRasterizer)
        client: HTTP client for image preloading
        base_url: Base for resolving relative image sources

    Raises:
        CertificateRenderError: If any step fails; nothing is left behind and
            the whole pipeline must be restarted
    """
    logger.info("certificate.pdf_started", file_name=file_name)
    try:
        settings = get_settings()
        width = settings.certificate_width
        height = settings.certificate_height
        rasterizer = rasterizer or WeasyPrintRasterizer()
        target_dir = Path(output_dir) if output_dir else settings.output_dir_path
        output_path = target_dir / file_name

        processed_html = await preload_images(html, client=client, base_url=base_url)

        with _mounted_container(processed_html, width=width, height=height) as page:
            await asyncio.to_thread(rasterizer.load_fonts)
            await asyncio.sleep(settings.certificate_settle_delay)
            raster = await asyncio.to_thread(
                rasterizer.rasterize,
                page,
                width=width,
                height=height,
                scale=settings.certificate_raster_scale,
            )

        logger.debug("certificate.rasterized", width=raster.width, height=raster.height)
        pdf_bytes = build_certificate_pdf(raster)
        _write_file(output_path, pdf_bytes)
    except Exception as exc:
        logger.error("certificate.pdf_failed", file_name=file_name, error=str(exc))
        raise CertificateRenderError(f"Failed to generate PDF: {exc}") from exc

    logger.info("certificate.pdf_saved", path=str(output_path))
    return output_path


def download_certificate_html(
    html: str,
    file_name: str = "certificate.html",
    *,
    output_dir: Path | str | None = None,
) -> Path:
    """Save the raw certificate HTML next to the PDFs."""
    target_dir = Path(output_dir) if output_dir else get_settings().output_dir_path
    output_path = target_dir / file_name
    try:
        _write_file(output_path, html.encode("utf-8"))
    except OSError as exc:
        raise CertificateRenderError(f"Failed to download HTML: {exc}") from exc
    return output_path


def preview_certificate(
    html: str, *, opener: Callable[[str], object] | None = None
) -> Path:
    """Open the raw certificate HTML in a new browser tab.

    No images are inlined; this shows the template exactly as the server
    generated it. The preview file stays in the temp directory so the
    browser can keep reading it.
    """
    opener = opener or webbrowser.open_new_tab
    fd, name = tempfile.mkstemp(prefix="certificate-preview-", suffix=".html")
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(html)

    preview_path = Path(name)
    opener(preview_path.as_uri())
    logger.info("certificate.preview_opened", path=str(preview_path))
    return preview_path
