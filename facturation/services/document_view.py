"""
Vue document
============

Données normalisées consommées par le moteur PDF: identité de l'entreprise,
client, lignes déjà formatées, totaux et dates. Construites une seule fois à
partir d'un devis ou d'une facture.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from flask import current_app

from facturation.utils.helpers import (
    format_currency_eur, format_quantity, build_pdf_filename, EM_DASH
)

QUOTE = 'devis'
INVOICE = 'facture'


@dataclass
class CompanyInfo:
    """Identité de l'entreprise imprimée en en-tête et pied de page"""
    name: str = ''
    address: str = ''
    city_postal: str = ''
    phone: str = ''
    email: str = ''
    siret: str = ''
    legal: str = ''
    theme_color: str = ''
    logo: str = ''  # data URI

    @classmethod
    def from_config(cls, overrides: Optional[dict] = None) -> 'CompanyInfo':
        """Configuration COMPANY_* / THEME_COLOR, surchargée par la requête"""
        cfg = current_app.config
        info = cls(
            name=cfg.get('COMPANY_NAME', ''),
            address=cfg.get('COMPANY_ADDRESS', ''),
            city_postal=cfg.get('COMPANY_CITY_POSTAL', ''),
            phone=cfg.get('COMPANY_PHONE', ''),
            email=cfg.get('COMPANY_EMAIL', ''),
            siret=cfg.get('COMPANY_SIRET', ''),
            legal=cfg.get('COMPANY_LEGAL', ''),
            theme_color=cfg.get('THEME_COLOR', ''),
        )
        for key, value in (overrides or {}).items():
            if hasattr(info, key) and isinstance(value, str) and value.strip():
                setattr(info, key, value.strip())
        return info


@dataclass
class TableRow:
    description: str
    unit_price: str
    unit: str
    quantity: str
    amount: str
    kind: str = 'item'  # item | aggregate | child


@dataclass
class DocumentView:
    kind: str
    number: Optional[str]
    issued_on: date
    company: CompanyInfo
    client_name: str
    client_email: str = ''
    client_phone: str = ''
    client_address: str = ''
    rows: List[TableRow] = field(default_factory=list)
    subtotal_ht: float = 0
    tva_amount: float = 0
    total_ttc: float = 0
    # Devis
    project_type: str = ''
    project_description: str = ''
    valid_until: Optional[date] = None
    # Facture
    due_date: Optional[date] = None
    payment_terms: str = ''
    notes: str = ''

    @property
    def is_quote(self) -> bool:
        return self.kind == QUOTE

    @property
    def filename(self) -> str:
        return build_pdf_filename(self.kind, self.number, self.client_name, self.issued_on)


def build_rows(line_items) -> List[TableRow]:
    """Lignes du tableau: agrégat en gras puis sous-lignes indentées"""
    rows = []
    for item in line_items:
        if item.is_aggregate:
            rows.append(TableRow(
                description=item.description or EM_DASH,
                unit_price=EM_DASH,
                unit=EM_DASH,
                quantity=EM_DASH,
                amount=format_currency_eur(item.total),
                kind='aggregate'
            ))
            for sub in item.sub_items:
                rows.append(TableRow(
                    description=sub.description or EM_DASH,
                    unit_price=format_currency_eur(sub.unit_price),
                    unit=sub.unit or EM_DASH,
                    quantity=format_quantity(sub.quantity),
                    amount=format_currency_eur(sub.total),
                    kind='child'
                ))
        else:
            rows.append(TableRow(
                description=item.description or EM_DASH,
                unit_price=format_currency_eur(item.unit_price),
                unit=item.unit or EM_DASH,
                quantity=format_quantity(item.quantity),
                amount=format_currency_eur(item.total),
            ))
    return rows


def build_quote_view(quote, number, company: CompanyInfo, today: date = None) -> DocumentView:
    total_ht = quote.total_ht or 0
    total_ttc = quote.total_ttc or 0
    expires_at = quote.expires_at
    return DocumentView(
        kind=QUOTE,
        number=number,
        issued_on=today or date.today(),
        company=company,
        client_name=quote.client_name or '',
        client_email=quote.client_email or '',
        client_phone=quote.client_phone or '',
        client_address=quote.client_address or '',
        rows=build_rows(quote.line_items()),
        subtotal_ht=total_ht,
        tva_amount=round(total_ttc - total_ht, 2),
        total_ttc=total_ttc,
        project_type=quote.project_type or '',
        project_description=quote.project_description or '',
        valid_until=expires_at.date() if expires_at else None,
        notes=quote.notes or '',
    )


def build_invoice_view(invoice, company: CompanyInfo) -> DocumentView:
    return DocumentView(
        kind=INVOICE,
        number=invoice.invoice_number,
        issued_on=invoice.invoice_date or date.today(),
        company=company,
        client_name=invoice.client_name or '',
        client_email=invoice.client_email or '',
        client_phone=invoice.client_phone or '',
        client_address=invoice.client_address or '',
        rows=build_rows(invoice.line_items()),
        subtotal_ht=invoice.subtotal_ht or 0,
        tva_amount=invoice.tva_amount or 0,
        total_ttc=invoice.total_ttc or 0,
        due_date=invoice.due_date,
        payment_terms=invoice.payment_terms or '',
        notes=invoice.notes or '',
    )
