#!/usr/bin/env python3
"""CLI for Xyzon certificate tasks.

Usage:
    python -m cli <command>

Commands:
    certificate-pdf      Download a certificate and render it to PDF
    certificate-html     Download a certificate's raw HTML
    certificate-preview  Open a certificate's raw HTML in the browser
    verify               Look up a public verification code
    render-file          Render a local certificate HTML file to PDF
"""

import argparse
import asyncio
import sys
from pathlib import Path

from pydantic import ValidationError

from core.api_client import ApiClient, ApiError, close_http_client
from core.auth import AuthSession
from core.config import get_settings
from core.logger import configure_logging, get_logger
from rendering.certificates import CertificateRenderError, generate_certificate_pdf
from services import certificates_service

logger = get_logger(__name__)


def _api() -> ApiClient:
    settings = get_settings()
    return ApiClient(AuthSession(access_token=settings.api_token or None))


async def _with_client(coro):
    try:
        return await coro
    finally:
        await close_http_client()


def cmd_certificate_pdf(certificate_id: str, output_dir: str | None) -> int:
    """Download a certificate and render it to PDF."""
    path = asyncio.run(
        _with_client(
            certificates_service.download_certificate_pdf(
                _api(), certificate_id, output_dir=output_dir
            )
        )
    )
    print(path)
    return 0


def cmd_certificate_html(certificate_id: str, output_dir: str | None) -> int:
    """Download a certificate's raw HTML."""
    path = asyncio.run(
        _with_client(
            certificates_service.download_certificate_html(
                _api(), certificate_id, output_dir=output_dir
            )
        )
    )
    print(path)
    return 0


def cmd_certificate_preview(certificate_id: str) -> int:
    """Open a certificate's raw HTML in the browser."""
    asyncio.run(_with_client(certificates_service.preview(_api(), certificate_id)))
    return 0


def cmd_verify(code: str) -> int:
    """Look up a public verification code."""
    result = asyncio.run(
        _with_client(certificates_service.verify_certificate(_api(), code))
    )
    if not result.is_valid:
        print(f"INVALID: {result.message}")
        return 1

    issued = result.issue_date.strftime("%B %d, %Y") if result.issue_date else "-"
    print(f"VALID: {result.recipient_name} - {result.title} (issued {issued})")
    return 0


def cmd_render_file(html_path: str, output: str | None) -> int:
    """Render a local certificate HTML file to PDF."""
    source = Path(html_path)
    html = source.read_text(encoding="utf-8")
    target = Path(output) if output else source.with_suffix(".pdf")
    path = asyncio.run(
        generate_certificate_pdf(html, target.name, output_dir=target.parent)
    )
    print(path)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Xyzon events CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    pdf_parser = subparsers.add_parser(
        "certificate-pdf",
        help="Download a certificate and render it to PDF",
    )
    pdf_parser.add_argument("certificate_id")
    pdf_parser.add_argument("--output-dir", default=None)

    html_parser = subparsers.add_parser(
        "certificate-html",
        help="Download a certificate's raw HTML",
    )
    html_parser.add_argument("certificate_id")
    html_parser.add_argument("--output-dir", default=None)

    preview_parser = subparsers.add_parser(
        "certificate-preview",
        help="Open a certificate's raw HTML in the browser",
    )
    preview_parser.add_argument("certificate_id")

    verify_parser = subparsers.add_parser(
        "verify",
        help="Look up a public verification code",
    )
    verify_parser.add_argument("code")

    render_parser = subparsers.add_parser(
        "render-file",
        help="Render a local certificate HTML file to PDF",
    )
    render_parser.add_argument("html_path")
    render_parser.add_argument("--output", default=None)

    args = parser.parse_args()
    configure_logging()

    try:
        if args.command == "certificate-pdf":
            return cmd_certificate_pdf(args.certificate_id, args.output_dir)
        elif args.command == "certificate-html":
            return cmd_certificate_html(args.certificate_id, args.output_dir)
        elif args.command == "certificate-preview":
            return cmd_certificate_preview(args.certificate_id)
        elif args.command == "verify":
            return cmd_verify(args.code)
        elif args.command == "render-file":
            return cmd_render_file(args.html_path, args.output)
        else:
            parser.print_help()
            return 1
    except ApiError as exc:
        logger.error("cli.api_error", status=exc.status_code, error=exc.message)
        return 2
    except (CertificateRenderError, certificates_service.CertificateNotRenderableError) as exc:
        logger.error("cli.render_error", error=str(exc))
        return 3
    except ValidationError as exc:
        logger.error("cli.config_error", error=str(exc))
        return 4


if __name__ == "__main__":
    sys.exit(main())
