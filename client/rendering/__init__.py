"""Rendering module for presentation concerns.

This module handles all presentation/rendering logic:
- Image inlining for certificate HTML
- HTML to PDF conversion
- Raw HTML preview and export

This separates presentation concerns from the API-facing services.
"""

from rendering.certificates import (
    CertificateRenderError,
    compute_pdf_page_size,
    download_certificate_html,
    generate_certificate_pdf,
    preview_certificate,
)
from rendering.images import (
    ImageLoadState,
    ImageReference,
    inline_images,
    preload_images,
)

__all__ = [
    "CertificateRenderError",
    "ImageLoadState",
    "ImageReference",
    "compute_pdf_page_size",
    "download_certificate_html",
    "generate_certificate_pdf",
    "inline_images",
    "preload_images",
    "preview_certificate",
]
