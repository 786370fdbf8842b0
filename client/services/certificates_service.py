"""Certificate operations for the events client.

This module handles certificate business logic on the client side:
- Issuing a certificate for a registration
- Downloading a certificate as a PDF (delegating to the rendering module)
- Exporting and previewing the raw HTML
- Public verification lookups, cached briefly

The HTML-to-PDF pipeline itself lives in rendering/certificates.py.
"""

import logging
from pathlib import Path

from cachetools import TTLCache

from core.api_client import ApiClient, ApiError
from core.config import get_settings
from rendering.certificates import (
    download_certificate_html as _download_certificate_html,
)
from rendering.certificates import (
    generate_certificate_pdf as _generate_certificate_pdf,
)
from rendering.certificates import (
    preview_certificate as _preview_certificate,
)
from rendering.certificates import Rasterizer
from schemas import Certificate, CertificateStatus, CertificateVerification
from services import events_api

logger = logging.getLogger(__name__)

VERIFICATION_CACHE_TTL_SECONDS = 300
VERIFICATION_CACHE_MAX_SIZE = 1000

# Verification results keyed by verification code. Revocations can take up
# to the TTL to show, which is acceptable for a public lookup page.
_verification_cache: TTLCache[str, CertificateVerification] = TTLCache(
    maxsize=VERIFICATION_CACHE_MAX_SIZE,
    ttl=VERIFICATION_CACHE_TTL_SECONDS,
)


class CertificateNotRenderableError(Exception):
    """Raised when a certificate record carries no HTML to render."""

    def __init__(self, certificate_id: str):
        self.certificate_id = certificate_id
        super().__init__(f"Certificate {certificate_id} has no generated HTML")


def clear_verification_cache() -> None:
    _verification_cache.clear()


async def _fetch_renderable(api: ApiClient, certificate_id: str) -> Certificate:
    certificate = await events_api.download_certificate(api, certificate_id)
    if not certificate.generated_html:
        raise CertificateNotRenderableError(certificate_id)
    if certificate.status != CertificateStatus.ISSUED:
        logger.warning(
            "certificate.not_issued",
            extra={
                "certificate_id": certificate_id,
                "status": certificate.status.value,
            },
        )
    return certificate


async def issue_certificate(api: ApiClient, registration_id: str) -> Certificate:
    """Issue (or re-fetch) the certificate for an attended registration."""
    certificate = await events_api.issue_certificate(api, registration_id)
    logger.info(
        "certificate.issued",
        extra={
            "registration_id": registration_id,
            "certificate_id": certificate.certificate_id,
        },
    )
    return certificate


async def download_certificate_pdf(
    api: ApiClient,
    certificate_id: str,
    *,
    output_dir: Path | str | None = None,
    file_name: str | None = None,
    rasterizer: Rasterizer | None = None,
) -> Path:
    """Fetch a certificate and render it to ``<RecipientName>_Certificate.pdf``.

    Raises:
        ApiError: If the certificate cannot be fetched
        CertificateNotRenderableError: If the record has no HTML
        CertificateRenderError: If rendering fails (safe to retry)
    """
    certificate = await _fetch_renderable(api, certificate_id)
    return await _generate_certificate_pdf(
        certificate.generated_html,
        file_name or certificate.pdf_file_name,
        output_dir=output_dir,
        rasterizer=rasterizer,
        base_url=get_settings().api_origin,
    )


async def download_certificate_html(
    api: ApiClient,
    certificate_id: str,
    *,
    output_dir: Path | str | None = None,
) -> Path:
    certificate = await _fetch_renderable(api, certificate_id)
    file_name = certificate.pdf_file_name.removesuffix(".pdf") + ".html"
    return _download_certificate_html(
        certificate.generated_html, file_name, output_dir=output_dir
    )


async def preview(api: ApiClient, certificate_id: str) -> Path:
    certificate = await _fetch_renderable(api, certificate_id)
    return _preview_certificate(certificate.generated_html)


async def verify_certificate(api: ApiClient, code: str) -> CertificateVerification:
    """Look up a verification code; unknown codes yield an invalid result.

    Only 404 means "not valid". Other API errors propagate so a backend
    outage is never reported as a forged certificate.
    """
    code = code.strip()
    cached = _verification_cache.get(code)
    if cached is not None:
        return cached

    try:
        result = await events_api.verify_certificate(api, code)
    except ApiError as exc:
        if exc.status_code != 404:
            raise
        result = CertificateVerification(
            is_valid=False,
            message=exc.message or "Certificate not found or invalid verification code",
        )

    _verification_cache[code] = result
    return result
