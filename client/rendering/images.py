"""Image inlining for certificate HTML.

Certificate templates reference logos, signatures and backgrounds by remote
URL. Before rasterizing, every ``<img>`` is fetched and rewritten to a
``data:image/png;base64,...`` URI so the renderer never touches the network
and never sees a cross-origin resource.

Loading rules:
- all images load concurrently; the call returns once every one has settled
- each image races a fixed timeout (10s by default) on its own
- an image that times out or fails is hidden (``display:none``) instead of
  failing the certificate
- images that are already data URIs are left untouched, so inlining is
  idempotent
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from enum import Enum as PyEnum
from io import BytesIO
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, Tag
from PIL import Image

from core.config import get_settings
from core.logger import get_logger

logger = get_logger(__name__)

_DATA_URI_PREFIX = "data:"
_PNG_DATA_URI_PREFIX = "data:image/png;base64,"

# PIL modes that PNG can store without conversion
_PNG_MODES = {"1", "L", "LA", "I", "P", "RGB", "RGBA"}


class ImageLoadState(str, PyEnum):
    PENDING = "pending"
    LOADED = "loaded"
    FAILED_TIMEOUT = "failed_timeout"
    FAILED_ERROR = "failed_error"


@dataclass
class ImageReference:
    """Tracks one ``<img>`` through preloading; never outlives the render."""

    original_src: str
    resolved_data_uri: str | None = None
    load_state: ImageLoadState = ImageLoadState.PENDING


def _is_svg(content: bytes, content_type: str | None) -> bool:
    if content_type and "svg" in content_type.lower():
        return True
    head = content[:512].lstrip().lower()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head)


def _svg_to_png(content: bytes) -> bytes:
    """Rasterize SVG bytes at their intrinsic size.

    Raises:
        RuntimeError: If cairo library is not installed on the system
    """
    try:
        import cairosvg
    except OSError as e:
        if "cairo" in str(e).lower():
            raise RuntimeError(
                "SVG images require the Cairo library. "
                "On macOS: brew install cairo. "
                "On Ubuntu/Debian: apt-get install libcairo2-dev. "
                "On Alpine: apk add cairo-dev."
            ) from e
        raise

    return cairosvg.svg2png(bytestring=content)


def encode_png_data_uri(content: bytes, content_type: str | None = None) -> str:
    """Decode image bytes at their natural size and re-encode them as a PNG data URI.

    SVG sources are rasterized with CairoSVG since Pillow cannot read them.
    """
    if _is_svg(content, content_type):
        png_bytes = _svg_to_png(content)
    else:
        with Image.open(BytesIO(content)) as image:
            image.load()
            if image.mode not in _PNG_MODES:
                image = image.convert("RGBA")
            buffer = BytesIO()
            image.save(buffer, format="PNG")
            png_bytes = buffer.getvalue()

    return _PNG_DATA_URI_PREFIX + base64.b64encode(png_bytes).decode("ascii")


def _hide(element: Tag) -> None:
    style = (element.get("style") or "").strip().rstrip(";")
    element["style"] = f"{style}; display:none" if style else "display:none"


def _resolve_src(src: str, base_url: str | None) -> str:
    url = urljoin(base_url, src) if base_url else src
    if urlparse(url).scheme not in ("http", "https"):
        raise ValueError(f"Unsupported image source: {src!r}")
    return url


async def _load_image(
    client: httpx.AsyncClient,
    element: Tag,
    reference: ImageReference,
    *,
    index: int,
    timeout: float,
    base_url: str | None,
) -> None:
    """Load one image and rewrite or hide its element. Never raises."""
    src = reference.original_src

    if src.startswith(_DATA_URI_PREFIX):
        reference.resolved_data_uri = src
        reference.load_state = ImageLoadState.LOADED
        return

    try:
        async with asyncio.timeout(timeout):
            response = await client.get(_resolve_src(src, base_url))
            response.raise_for_status()
        data_uri = encode_png_data_uri(
            response.content, response.headers.get("content-type")
        )
    except TimeoutError:
        reference.load_state = ImageLoadState.FAILED_TIMEOUT
        _hide(element)
        logger.warning("certificate.image_timeout", index=index, src=src)
        return
    except Exception as exc:
        # A broken image degrades the certificate, it must not abort it
        reference.load_state = ImageLoadState.FAILED_ERROR
        _hide(element)
        logger.warning(
            "certificate.image_failed",
            index=index,
            src=src,
            error=f"{type(exc).__name__}: {exc}",
        )
        return

    element["src"] = data_uri
    reference.resolved_data_uri = data_uri
    reference.load_state = ImageLoadState.LOADED
    logger.debug("certificate.image_inlined", index=index, src=src)


async def inline_images(
    html: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
    base_url: str | None = None,
) -> tuple[str, list[ImageReference]]:
    """Inline every ``<img>`` of ``html`` and report what happened to each.

    Args:
        html: Certificate HTML document or fragment
        client: HTTP client for fetching images (a short-lived one is created
            when omitted)
        timeout: Per-image timeout in seconds (defaults to settings)
        base_url: Base for resolving relative ``src`` values

    Returns:
        Tuple of (serialized HTML, per-image references in document order)
    """
    if timeout is None:
        timeout = get_settings().image_preload_timeout

    soup = BeautifulSoup(html, "html.parser")
    elements = soup.find_all("img")
    if not elements:
        logger.debug("certificate.no_images")
        return str(soup), []

    logger.info("certificate.preloading_images", count=len(elements))

    references: list[ImageReference] = []
    jobs: list[tuple[Tag, ImageReference]] = []
    for element in elements:
        reference = ImageReference(original_src=(element.get("src") or "").strip())
        references.append(reference)
        if not reference.original_src:
            reference.load_state = ImageLoadState.FAILED_ERROR
            _hide(element)
            continue
        jobs.append((element, reference))

    async def _run(http_client: httpx.AsyncClient) -> None:
        await asyncio.gather(
            *(
                _load_image(
                    http_client,
                    element,
                    reference,
                    index=index,
                    timeout=timeout,
                    base_url=base_url,
                )
                for index, (element, reference) in enumerate(jobs)
            )
        )

    if client is not None:
        await _run(client)
    else:
        async with httpx.AsyncClient(follow_redirects=True) as http_client:
            await _run(http_client)

    loaded = sum(1 for r in references if r.load_state == ImageLoadState.LOADED)
    logger.info(
        "certificate.images_preloaded",
        loaded=loaded,
        failed=len(references) - loaded,
    )
    return str(soup), references


async def preload_images(
    html: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
    base_url: str | None = None,
) -> str:
    """Return ``html`` with every image inlined as a PNG data URI or hidden."""
    inlined, _ = await inline_images(
        html, client=client, timeout=timeout, base_url=base_url
    )
    return inlined
