"""
Service d'export PDF des devis et factures
==========================================

Génère les devis et factures au format A4. Les positions sont exprimées en
millimètres depuis le coin supérieur gauche puis converties par
utils.geometry. Le tableau des lignes est mesuré avant d'être dessiné: sa
position finale détermine celle des blocs conditions, totaux et signature.
"""

import io
import base64
import logging
from dataclasses import dataclass
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, Table, TableStyle

from facturation.services.document_view import DocumentView
from facturation.utils.geometry import Rect, PAGE_WIDTH_MM, PAGE_HEIGHT_MM, flip_y, mm_to_pt, pt_to_mm, rect_to_pt
from facturation.utils.helpers import (
    format_currency_eur, format_date_fr, decode_base64, hex_to_rgb, EM_DASH
)

logger = logging.getLogger(__name__)

LOGO_MAX_WIDTH_MM = 45

# Encadré des conditions
TERMS_TEXT_WIDTH_MM = 84
TERMS_FONT_SIZE = 8
TERMS_MAX_LINES = 4

BLACK = (0, 0, 0)
WHITE = (255, 255, 255)
MUTED = (100, 116, 139)
LABEL = (71, 85, 105)
ROW_FILL = (248, 250, 252)

DEFAULT_TERMS = (
    "Paiement à 30 jours par chèque ou virement. En cas de retard, pénalités de "
    "retard et indemnité forfaitaire selon art. L441-6 du code de commerce."
)

# Largeurs des colonnes Prix unitaire HT | Unité | Quantité | Montant HT (mm)
NUMERIC_COLUMNS_MM = (28, 18, 22, 28)
TABLE_HEADERS = ("Description", "Prix unitaire HT", "Unité", "Quantité", "Montant HT")

TOTALS_BOX_WIDTH_OFFSET = 52
TOTALS_BOX_HEIGHT = 30
SIGNATURE_BOX_WIDTH = 48
SIGNATURE_BOX_HEIGHT = 20


@dataclass(frozen=True)
class Layout:
    """Constantes de mise en page (mm) propres à un type de document"""
    margin: float
    logo_max_height: float
    col_right_x: float
    line_height: float
    head_fill: tuple
    border: tuple
    client_title: str
    terms_title: str


QUOTE_LAYOUT = Layout(
    margin=10, logo_max_height=12, col_right_x=105, line_height=5.5,
    head_fill=(51, 65, 85), border=(203, 213, 225),
    client_title="Nom du client", terms_title="Modalités et conditions de règlement",
)

INVOICE_LAYOUT = Layout(
    margin=15, logo_max_height=20, col_right_x=PAGE_WIDTH_MM - 80, line_height=5,
    head_fill=(100, 116, 139), border=(226, 232, 240),
    client_title="Facturé à", terms_title="Conditions de paiement",
)


@dataclass
class RenderResult:
    """Résultat d'un rendu PDF"""
    data: bytes
    filename: str
    signature_rect: Optional[Rect] = None
    content_type: str = 'application/pdf'

    def to_base64(self) -> str:
        """Contenu encodé en base64, sans préfixe data URI"""
        return base64.b64encode(self.data).decode('ascii')


def relative_luminance(rgb) -> float:
    """Luminance relative WCAG d'une couleur sRGB (0-255)"""
    def channel(value):
        c = value / 255
        return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4

    r, g, b = (channel(v) for v in rgb)
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def header_text_color(fill) -> tuple:
    """Texte blanc sur fond sombre, noir sinon"""
    return WHITE if relative_luminance(fill) < 0.5 else BLACK


def logo_size(img_w, img_h, max_height, max_width=LOGO_MAX_WIDTH_MM):
    """Taille du logo en mm: hauteur maximale d'abord, largeur plafonnée, proportions conservées"""
    if img_w <= 0 or img_h <= 0:
        raise ValueError('Invalid image dimensions')
    height = max_height
    width = img_w / img_h * height
    if width > max_width:
        width = max_width
        height = width * img_h / img_w
    return width, height


def terms_lines(text):
    """Conditions découpées à la largeur de l'encadré, tronquées à 4 lignes"""
    lines = simpleSplit(text or '', 'Helvetica', TERMS_FONT_SIZE, mm_to_pt(TERMS_TEXT_WIDTH_MM))
    return lines[:TERMS_MAX_LINES]


def _rgb(values):
    return colors.Color(values[0] / 255, values[1] / 255, values[2] / 255)


class DocumentRenderer:
    """Dessine un DocumentView sur une page A4"""

    def __init__(self, view: DocumentView):
        self.view = view
        self.layout = QUOTE_LAYOUT if view.is_quote else INVOICE_LAYOUT
        self.head_fill = hex_to_rgb(view.company.theme_color) or self.layout.head_fill
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Configure les styles des cellules du tableau"""
        self.cell_style = ParagraphStyle(
            'CellNormal',
            parent=self.styles['Normal'],
            fontName='Helvetica',
            fontSize=9,
            leading=9 * 1.15
        )

        self.cell_bold_style = ParagraphStyle(
            'CellBold',
            parent=self.cell_style,
            fontName='Helvetica-Bold'
        )

        # Sous-lignes indentées sous leur agrégat
        self.cell_child_style = ParagraphStyle(
            'CellChild',
            parent=self.cell_style,
            leftIndent=4 * mm
        )

        self.head_style = ParagraphStyle(
            'CellHead',
            parent=self.cell_style,
            fontName='Helvetica-Bold',
            fontSize=10,
            leading=10 * 1.15,
            textColor=_rgb(header_text_color(self.head_fill))
        )

    # ==================== PRIMITIVES ====================

    def _text(self, x, y, text, size=10, bold=False, color=BLACK, align='left'):
        """Texte dont la ligne de base est à (x, y) mm"""
        self.c.setFont('Helvetica-Bold' if bold else 'Helvetica', size)
        self.c.setFillColor(_rgb(color))
        x_pt, y_pt = mm_to_pt(x), flip_y(y)
        if align == 'right':
            self.c.drawRightString(x_pt, y_pt, text)
        elif align == 'center':
            self.c.drawCentredString(x_pt, y_pt, text)
        else:
            self.c.drawString(x_pt, y_pt, text)
        self.c.setFillColor(colors.black)

    def _lines(self, x, y, lines, size, color=BLACK):
        """Plusieurs lignes, interligne 1.15"""
        step = pt_to_mm(size * 1.15)
        for i, line in enumerate(lines):
            self._text(x, y + i * step, line, size=size, color=color)

    def _rect(self, x, y, width, height, stroke=BLACK):
        self.c.setStrokeColor(_rgb(stroke))
        self.c.rect(*rect_to_pt(Rect(x, y, width, height)), stroke=1, fill=0)

    def _split(self, text, width_mm, size):
        return simpleSplit(text or '', 'Helvetica', size, mm_to_pt(width_mm))

    # ==================== BLOCS ====================

    def _draw_logo(self, x, y):
        """Logo avec aspect ratio préservé, "Logo" si absent ou illisible"""
        logo = self.view.company.logo
        max_h = self.layout.logo_max_height
        if logo:
            try:
                reader = ImageReader(io.BytesIO(decode_base64(logo, 'Logo')))
                width, height = logo_size(*reader.getSize(), max_h)
                self.c.drawImage(
                    reader, mm_to_pt(x), flip_y(y, height),
                    mm_to_pt(width), mm_to_pt(height), mask='auto'
                )
                return
            except Exception as e:
                logger.warning(f"Logo illisible, remplacé par un texte: {e}")

        self._text(x, y + 5, "Logo", size=10)

    def _draw_header(self, y):
        lay, view = self.layout, self.view
        self._draw_logo(lay.margin, y)

        date_str = format_date_fr(view.issued_on)
        city = view.company.city_postal
        city_label = f"{city}, le {date_str}" if city else f"Le {date_str}"
        number = view.number or "À renseigner"

        if view.is_quote:
            self._text(lay.col_right_x, y + 4, "Devis N°", size=11, bold=True)
            self._text(lay.col_right_x + 22, y + 4, number, size=10)
            self._text(lay.col_right_x, y + 10, city_label, size=9, color=MUTED)
        else:
            self._text(lay.col_right_x, y + 4, "FACTURE", size=14, bold=True)
            self._text(lay.col_right_x, y + 10, "N°", size=11, bold=True)
            self._text(lay.col_right_x + 8, y + 10, number, size=10)
            self._text(lay.col_right_x, y + 16, city_label, size=9, color=MUTED)

        return y + lay.logo_max_height + 6

    def _draw_parties(self, y):
        """Entreprise à gauche, encadré client à droite"""
        lay, company, view = self.layout, self.view.company, self.view
        lh = lay.line_height

        self._text(lay.margin, y, company.name or "Nom de l'entreprise", size=10, bold=True)
        y += lh
        for value, placeholder in (
            (company.address, "Adresse"),
            (company.city_postal, "Ville et Code Postal"),
            (company.phone, "Numéro de téléphone"),
            (company.email, "Email"),
        ):
            self._text(lay.margin, y, (value or '').strip() or placeholder, size=10)
            y += lh
        y += 2

        box_y = y - (5 * lh + 2)
        box_x = lay.col_right_x
        self._rect(box_x, box_y, PAGE_WIDTH_MM - box_x - lay.margin, 5 * lh + 6)
        self._text(box_x + 3, box_y + 5, lay.client_title, size=10, bold=True)
        for i, value in enumerate((view.client_name, view.client_address, view.client_phone, view.client_email)):
            self._text(box_x + 3, box_y + 10 + 5 * i, value or EM_DASH, size=10)

        return y + 4

    def _draw_subject(self, y):
        """Objet du devis, deux lignes au plus"""
        view, lay = self.view, self.layout
        if not (view.project_type or view.project_description):
            return y
        self._text(lay.margin, y, "Objet du devis", size=9, bold=True, color=LABEL)
        y += lay.line_height
        subject = " — ".join(part for part in (view.project_type, view.project_description) if part)
        lines = self._split(subject, PAGE_WIDTH_MM - 2 * lay.margin, 9)[:2]
        self._lines(lay.margin, y, lines, 9)
        return y + len(lines) * lay.line_height + 4

    def _draw_dates(self, y):
        """Date d'émission et d'échéance de la facture"""
        m = self.layout.margin
        self._text(m, y, "Date d'émission:", size=9, color=LABEL)
        self._text(m + 35, y, format_date_fr(self.view.issued_on), size=9)
        self._text(m + 80, y, "Date d'échéance:", size=9, color=LABEL)
        self._text(m + 115, y, format_date_fr(self.view.due_date), size=9)
        return y + self.layout.line_height + 4

    def _build_table(self):
        width_mm = PAGE_WIDTH_MM - 2 * self.layout.margin
        desc_mm = width_mm - sum(NUMERIC_COLUMNS_MM)
        col_widths = [mm_to_pt(w) for w in (desc_mm,) + NUMERIC_COLUMNS_MM]

        data = [[Paragraph(escape(h), self.head_style) for h in TABLE_HEADERS]]
        bold_rows = []
        for index, row in enumerate(self.view.rows, start=1):
            if row.kind == 'aggregate':
                style = self.cell_bold_style
                bold_rows.append(index)
            elif row.kind == 'child':
                style = self.cell_child_style
            else:
                style = self.cell_style
            data.append([
                Paragraph(escape(row.description), style),
                row.unit_price, row.unit, row.quantity, row.amount
            ])

        commands = [
            # En-tête
            ('BACKGROUND', (0, 0), (-1, 0), _rgb(self.head_fill)),
            ('TOPPADDING', (0, 0), (-1, 0), 4 * mm),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 4 * mm),
            ('LEFTPADDING', (0, 0), (-1, 0), 4 * mm),
            ('RIGHTPADDING', (0, 0), (-1, 0), 4 * mm),

            # Corps
            ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 1), (-1, -1), 9),
            ('TOPPADDING', (0, 1), (-1, -1), 3 * mm),
            ('BOTTOMPADDING', (0, 1), (-1, -1), 3 * mm),
            ('LEFTPADDING', (0, 1), (-1, -1), 3 * mm),
            ('RIGHTPADDING', (0, 1), (-1, -1), 3 * mm),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, _rgb(ROW_FILL)]),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),

            # Alignement des colonnes numériques
            ('ALIGN', (1, 1), (1, -1), 'RIGHT'),
            ('ALIGN', (2, 1), (3, -1), 'CENTER'),
            ('ALIGN', (4, 1), (4, -1), 'RIGHT'),
        ]
        for index in bold_rows:
            commands.append(('FONTNAME', (1, index), (-1, index), 'Helvetica-Bold'))

        table = Table(data, colWidths=col_widths)
        table.setStyle(TableStyle(commands))
        return table

    def _draw_table(self, y):
        """Dessine le tableau et renvoie son ordonnée de fin (mm)"""
        table = self._build_table()
        x_pt = mm_to_pt(self.layout.margin)
        avail_w = mm_to_pt(PAGE_WIDTH_MM - 2 * self.layout.margin)
        _, height_pt = table.wrapOn(self.c, avail_w, A4[1])
        table.drawOn(self.c, x_pt, flip_y(y) - height_pt)
        return y + pt_to_mm(height_pt)

    def _draw_terms(self, final_y):
        lay = self.layout
        y = final_y + 10
        self._text(lay.margin, y, lay.terms_title, size=10, bold=True)
        y += lay.line_height
        self._rect(lay.margin, y - 2, 88, 24, stroke=lay.border)
        text = DEFAULT_TERMS if self.view.is_quote else (self.view.payment_terms or DEFAULT_TERMS)
        self._lines(lay.margin + 2, y + 3, terms_lines(text), TERMS_FONT_SIZE)

    def _draw_totals(self, final_y, totals_x):
        lay, view = self.layout, self.view
        box_x = totals_x - 3
        self._rect(box_x, final_y + 6, PAGE_WIDTH_MM - lay.margin - box_x, TOTALS_BOX_HEIGHT, stroke=lay.border)

        value_x = PAGE_WIDTH_MM - lay.margin - 3
        self._text(totals_x, final_y + 14, "Total HT", size=10)
        self._text(value_x, final_y + 14, format_currency_eur(view.subtotal_ht), size=10, align='right')
        self._text(totals_x, final_y + 23, "TVA 20 %", size=10)
        self._text(value_x, final_y + 23, format_currency_eur(view.tva_amount), size=10, align='right')
        self._text(totals_x, final_y + 32, "Total TTC", size=11, bold=True)
        self._text(value_x, final_y + 32, format_currency_eur(view.total_ttc), size=11, bold=True, align='right')

    def _draw_acceptance(self, final_y, totals_x):
        """Validité de l'offre et encadré "Bon pour accord" (devis)"""
        y = final_y + 6 + TOTALS_BOX_HEIGHT + 6
        valid_until = format_date_fr(self.view.valid_until) if self.view.valid_until else EM_DASH
        self._text(totals_x, y, f"Offre valable jusqu'au {valid_until}", size=9, color=LABEL)
        self._text(totals_x, y + 10, "Bon pour accord", size=9)
        rect = Rect(totals_x, y + 12, SIGNATURE_BOX_WIDTH, SIGNATURE_BOX_HEIGHT)
        self._rect(rect.x, rect.y, rect.width, rect.height, stroke=self.layout.border)
        return rect

    def _draw_notes(self, final_y):
        """Notes de facture, trois lignes au plus"""
        if not self.view.notes:
            return
        m = self.layout.margin
        y = final_y + 6 + TOTALS_BOX_HEIGHT + 6
        self._text(m, y, "Notes:", size=8, color=LABEL)
        self._lines(m, y + 5, self._split(self.view.notes, PAGE_WIDTH_MM - 2 * m, 8)[:3], 8)

    def _draw_footer(self):
        company = self.view.company
        siret = company.siret.strip() if company.siret else ''
        siret_str = f"N° Siret : {siret}" if siret else "N° Siret : …"
        footer = (company.legal or '').strip() or f"Société au capital de … € — {siret_str} — RCS — N° TVA : …"
        self._text(PAGE_WIDTH_MM / 2, PAGE_HEIGHT_MM - 10, footer, size=7, color=MUTED, align='center')

    # ==================== RENDU ====================

    def render(self) -> RenderResult:
        buffer = io.BytesIO()
        self.c = canvas.Canvas(buffer, pagesize=A4)
        self.c.setTitle(self.view.filename[:-4])
        self.c.setAuthor(self.view.company.name or '')

        y = self._draw_header(self.layout.margin)
        y = self._draw_parties(y)
        if self.view.is_quote:
            y = self._draw_subject(y)
        else:
            y = self._draw_dates(y)

        final_y = self._draw_table(y)
        totals_x = PAGE_WIDTH_MM - self.layout.margin - TOTALS_BOX_WIDTH_OFFSET

        self._draw_terms(final_y)
        self._draw_totals(final_y, totals_x)

        signature_rect = None
        if self.view.is_quote:
            signature_rect = self._draw_acceptance(final_y, totals_x)
        else:
            self._draw_notes(final_y)

        self._draw_footer()
        self.c.showPage()
        self.c.save()

        logger.debug(f"PDF {self.view.filename} généré (fin du tableau à {final_y:.1f} mm)")
        return RenderResult(
            data=buffer.getvalue(),
            filename=self.view.filename,
            signature_rect=signature_rect
        )


def render_quote(view: DocumentView) -> RenderResult:
    return DocumentRenderer(view).render()


def render_invoice(view: DocumentView) -> RenderResult:
    return DocumentRenderer(view).render()
