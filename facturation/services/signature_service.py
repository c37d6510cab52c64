"""
Service de signature
====================

Incruste une signature manuscrite (PNG) dans un PDF déjà généré.

La zone est donnée en millimètres depuis le coin supérieur gauche, comme
les mises en page. Une page de surimpression est dessinée avec reportlab
puis fusionnée sur la dernière page avec PyPDF2. Toute erreur sur l'image
remplace la signature par la mention "Signé": le document signé est
toujours produit.
"""

import io
import logging
import warnings
from datetime import datetime

from PyPDF2 import PdfReader, PdfWriter
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from facturation.exceptions import RenderFallbackWarning
from facturation.utils.geometry import Rect, flip_y, mm_to_pt, fit_within
from facturation.utils.helpers import decode_base64

logger = logging.getLogger(__name__)

# Encadré "Bon pour accord" d'un devis d'une seule ligne
DEFAULT_SIGNATURE_RECT = Rect(148, 142, 48, 20)

PADDING_MM = 1.5
FALLBACK_MARKER = "Signé"


def _fallback(c, rect: Rect, page_height: float, reason):
    """Mention texte à la place de l'image"""
    message = f"Signature remplacée par la mention '{FALLBACK_MARKER}': {reason}"
    logger.warning(message)
    warnings.warn(message, RenderFallbackWarning, stacklevel=3)

    c.setFont('Helvetica-Bold', 12)
    c.setFillColor(colors.black)
    c.drawCentredString(
        mm_to_pt(rect.x + rect.width / 2),
        flip_y(rect.y + rect.height / 2 + 1.5, page_height_pt=page_height),
        FALLBACK_MARKER
    )


def _draw_signature(c, signature_b64: str, rect: Rect, page_height: float):
    """Image inscrite dans la zone (marge 1.5 mm), aspect ratio préservé"""
    inner = rect.inset(PADDING_MM)
    try:
        reader = ImageReader(io.BytesIO(decode_base64(signature_b64, 'Signature')))
        img_w, img_h = reader.getSize()
        width, height = fit_within(img_w, img_h, inner.width, inner.height)
        x = inner.x + (inner.width - width) / 2
        y = inner.y + (inner.height - height) / 2
        c.drawImage(
            reader, mm_to_pt(x), flip_y(y, height, page_height),
            mm_to_pt(width), mm_to_pt(height), mask='auto'
        )
    except Exception as e:
        _fallback(c, rect, page_height, e)


def _build_overlay(signature_b64, signer_name, signed_on, rect, page_width, page_height) -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(page_width, page_height))

    _draw_signature(c, signature_b64, rect, page_height)

    # Signataire et date sous la zone
    c.setFont('Helvetica', 8)
    c.setFillColor(colors.black)
    x_pt = mm_to_pt(rect.x)
    if signer_name:
        c.drawString(x_pt, flip_y(rect.y + rect.height + 4, page_height_pt=page_height), signer_name)
    c.drawString(x_pt, flip_y(rect.y + rect.height + 8, page_height_pt=page_height), f"Signé le {signed_on}")

    c.showPage()
    c.save()
    return buffer.getvalue()


def embed_signature(pdf_bytes: bytes, signature_b64: str, signer_first_name: str = '',
                    signer_last_name: str = '', signed_at: datetime = None, rect: Rect = None) -> bytes:
    """
    Incruste la signature sur la dernière page du PDF.

    Args:
        pdf_bytes: PDF source
        signature_b64: PNG en base64 (préfixe data URI accepté)
        signer_first_name, signer_last_name: Signataire
        signed_at: Date de signature (maintenant par défaut)
        rect: Zone en mm, coin supérieur gauche (encadré par défaut sinon)

    Returns:
        bytes: PDF signé, ou le PDF source inchangé s'il est illisible
    """
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        last_page = reader.pages[len(reader.pages) - 1]
        page_width = float(last_page.mediabox.width)
        page_height = float(last_page.mediabox.height)
    except Exception as e:
        message = f"PDF source illisible, signature non incrustée: {e}"
        logger.warning(message)
        warnings.warn(message, RenderFallbackWarning, stacklevel=2)
        return pdf_bytes

    rect = rect or DEFAULT_SIGNATURE_RECT
    signed_at = signed_at or datetime.utcnow()
    signer_name = f"{signer_first_name or ''} {signer_last_name or ''}".strip()

    overlay_bytes = _build_overlay(
        signature_b64, signer_name, signed_at.date().isoformat(), rect, page_width, page_height
    )
    overlay_page = PdfReader(io.BytesIO(overlay_bytes)).pages[0]
    last_page.merge_page(overlay_page)

    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    if reader.metadata:
        writer.add_metadata({k: v for k, v in reader.metadata.items() if isinstance(v, str)})

    output = io.BytesIO()
    writer.write(output)

    logger.info(f"Signature de {signer_name or 'signataire inconnu'} incrustée ({rect.to_dict()})")
    return output.getvalue()
