"""Invoice service: facturation et rapprochement des paiements.

Handles:
- Création manuelle ou depuis un devis accepté
- Numérotation FAC-AAAA-NNNNN par compte
- Enregistrement / suppression des paiements (ligne facture verrouillée)
- Statut recalculé à partir des paiements à chaque lecture
- Statistiques du tableau de bord
- Export PDF
"""
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, date
from typing import Optional, List, Dict, Any
import logging

from flask import current_app
from sqlalchemy import extract

from facturation import db
from facturation.exceptions import ValidationError, NotFoundError, ImmutableStateError, OverpaymentError
from facturation.models import Invoice, Payment, InvoiceStatus, PaymentMethod, QuoteStatus, parse_items
from facturation.services import store, document_view, pdf_export_service
from facturation.services.quote_service import compute_totals, get_quote
from facturation.utils.helpers import parse_date, due_date_from_terms

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
TOLERANCE = Decimal('0.01')

DRAFT = InvoiceStatus.BROUILLON.value
SENT = InvoiceStatus.ENVOYEE.value
PARTIAL = InvoiceStatus.PARTIELLEMENT_PAYEE.value
PAID = InvoiceStatus.PAYEE.value
CANCELLED = InvoiceStatus.ANNULEE.value

CLIENT_FIELDS = ('client_name', 'client_email', 'client_phone', 'client_address')


def _dec(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def paid_total(payments) -> Decimal:
    """Somme des paiements, arrondie au centime"""
    return _dec(sum((Decimal(str(p.amount if hasattr(p, 'amount') else p)) for p in payments), Decimal('0')))


def reconcile_status(invoice_status: str, total_ttc, payments) -> str:
    """Statut réel d'une facture d'après ses paiements.

    Tolérance d'un centime pour considérer la facture comme payée.
    Fonction pure et idempotente.

    Args:
        invoice_status: Statut enregistré
        total_ttc: Montant TTC
        payments: Paiements (objets Payment ou montants)

    Returns:
        str: annulée, payée, partiellement_payée, envoyée ou brouillon
    """
    if invoice_status == CANCELLED:
        return CANCELLED

    paid = paid_total(payments)
    total = _dec(total_ttc)

    if paid >= total - TOLERANCE:
        return PAID
    if paid > 0:
        return PARTIAL
    return SENT if invoice_status == SENT else DRAFT


def remaining_amount(invoice: Invoice) -> Decimal:
    return _dec(invoice.total_ttc) - paid_total(invoice.payments)


def invoice_to_dict(invoice: Invoice) -> Dict[str, Any]:
    """Sérialisation avec statut réconcilié et montants dérivés"""
    paid = paid_total(invoice.payments)
    return invoice.to_dict(
        status=reconcile_status(invoice.status, invoice.total_ttc, invoice.payments),
        paid_amount=float(paid),
        remaining_amount=float(_dec(invoice.total_ttc) - paid),
    )


def generate_invoice_number(owner_id: str, year: int = None) -> str:
    """Numéro de facture: FAC-AAAA-NNNNN, séquence par compte et par année"""
    year = year or datetime.utcnow().year
    pattern = f"FAC-{year}-%"
    query = Invoice.query.filter(
        Invoice.owner_id == owner_id,
        Invoice.invoice_number.like(pattern)
    ).order_by(Invoice.invoice_number.desc())
    rows = store.fetch_all(query.limit(1)).unwrap()

    next_seq = 1
    if rows:
        try:
            next_seq = int(rows[0].invoice_number.split('-')[-1]) + 1
        except (ValueError, IndexError):
            next_seq = Invoice.query.filter_by(owner_id=owner_id).count() + 1

    return f"FAC-{year}-{next_seq:05d}"


def _apply_items(invoice: Invoice, items):
    """Lignes normalisées + HT / TVA / TTC recalculés"""
    total_ht, total_ttc = compute_totals(items)
    invoice.items = [item.to_dict() for item in items]
    invoice.subtotal_ht = float(total_ht)
    invoice.tva_amount = float(total_ttc - total_ht)
    invoice.total_ttc = float(total_ttc)


def _validate_explicit_status(status):
    if status not in InvoiceStatus.editable_states():
        allowed = ', '.join(InvoiceStatus.editable_states())
        raise ValidationError(f'Statut invalide. Valeurs: {allowed}')
    return status


# ==================== LECTURE ====================

def get_invoice(owner_id: str, invoice_id: str, for_update: bool = False) -> Invoice:
    """Facture non annulée du compte (verrouillée si for_update)"""
    return store.fetch_owned(
        Invoice, owner_id, invoice_id, 'Facture non trouvée',
        for_update=for_update, include_deleted=False
    ).unwrap()


def list_invoices(owner_id: str, client_id: str = None, chantier_id: str = None,
                  status: str = None, year: int = None) -> List[Dict[str, Any]]:
    """Factures non annulées, plus récentes en premier, statut réconcilié.

    Le filtre de statut s'applique au statut réconcilié.
    """
    query = Invoice.query.filter(Invoice.owner_id == owner_id, Invoice.deleted_at.is_(None))
    if client_id:
        query = query.filter(Invoice.client_id == client_id)
    if chantier_id:
        query = query.filter(Invoice.chantier_id == chantier_id)
    if year:
        query = query.filter(extract('year', Invoice.invoice_date) == int(year))

    invoices = store.fetch_all(query.order_by(Invoice.invoice_date.desc(), Invoice.created_at.desc())).unwrap()
    results = [invoice_to_dict(inv) for inv in invoices]
    if status:
        results = [r for r in results if r['status'] == status]
    return results


def get_stats(owner_id: str, today: date = None) -> Dict[str, Any]:
    """Indicateurs du tableau de bord sur les factures non annulées"""
    today = today or date.today()
    invoices = list_invoices(owner_id)

    total_revenue = Decimal('0')
    paid_amount = Decimal('0')
    unpaid_amount = Decimal('0')
    overdue_amount = Decimal('0')
    paid_count = 0
    unpaid_count = 0

    for inv in invoices:
        total = _dec(inv['total_ttc'])
        paid = _dec(inv['paidAmount'])
        remaining = _dec(inv['remainingAmount'])
        status = inv['status']
        total_revenue += total

        if status == PAID:
            paid_amount += total
            paid_count += 1
        elif status == PARTIAL:
            paid_amount += paid
            unpaid_amount += remaining
            unpaid_count += 1
        elif status in (SENT, DRAFT):
            unpaid_amount += total
            unpaid_count += 1

        due = parse_date(inv['due_date']) if inv['due_date'] else None
        if due and due < today and status in (SENT, PARTIAL) and remaining > 0:
            overdue_amount += remaining

    return {
        'totalRevenue': float(total_revenue),
        'paidAmount': float(paid_amount),
        'unpaidAmount': float(unpaid_amount),
        'overdueAmount': float(overdue_amount),
        'invoiceCount': len(invoices),
        'paidCount': paid_count,
        'unpaidCount': unpaid_count
    }


# ==================== CRÉATION ====================

def _build_invoice(owner_id: str, payload: Dict[str, Any]) -> Invoice:
    client_name = (payload.get('client_name') or '').strip()
    if not client_name:
        raise ValidationError('Nom du client requis')

    invoice_date = parse_date(payload['invoice_date'], 'date de facture') if payload.get('invoice_date') else date.today()
    payment_terms = payload.get('payment_terms') or current_app.config.get('DEFAULT_PAYMENT_TERMS')
    if payload.get('due_date'):
        due_date = parse_date(payload['due_date'], "date d'échéance")
    else:
        due_date = due_date_from_terms(invoice_date, payment_terms)
    if due_date < invoice_date:
        raise ValidationError("La date d'échéance doit suivre la date de facture")

    invoice = Invoice(
        owner_id=owner_id,
        quote_id=payload.get('quote_id'),
        chantier_id=payload.get('chantier_id'),
        client_id=payload.get('client_id'),
        client_name=client_name,
        client_email=payload.get('client_email'),
        client_phone=payload.get('client_phone'),
        client_address=payload.get('client_address'),
        invoice_date=invoice_date,
        due_date=due_date,
        payment_terms=payment_terms,
        notes=payload.get('notes'),
        status=_validate_explicit_status(payload['status']) if payload.get('status') else DRAFT,
    )
    _apply_items(invoice, parse_items(payload.get('items')))
    invoice.invoice_number = generate_invoice_number(owner_id, invoice_date.year)
    return invoice


def create_invoice(owner_id: str, payload: Dict[str, Any]) -> Invoice:
    """Création manuelle d'une facture"""
    if not isinstance(payload, dict):
        raise ValidationError('Données requises')
    if payload.get('quote_id'):
        return create_from_quote(owner_id, payload['quote_id'], payload)

    invoice = _build_invoice(owner_id, payload)
    db.session.add(invoice)
    store.commit().unwrap()

    logger.info(f"Facture {invoice.invoice_number} créée pour {owner_id}")
    return invoice


def create_from_quote(owner_id: str, quote_id: str, overrides: Optional[Dict[str, Any]] = None) -> Invoice:
    """Facture un devis accepté, validé ou signé.

    Le client et les lignes sont copiés depuis le devis. Un devis 'accepté'
    passe en 'validé' dans la même transaction. Un devis ne peut avoir
    qu'une seule facture active.
    """
    quote = get_quote(owner_id, quote_id)

    if quote.status not in QuoteStatus.accepted_states():
        raise ValidationError('Seul un devis accepté, validé ou signé peut être facturé')

    existing = store.fetch_all(
        Invoice.query.filter(
            Invoice.owner_id == owner_id,
            Invoice.quote_id == quote_id,
            Invoice.deleted_at.is_(None)
        ).limit(1)
    ).unwrap()
    if existing:
        raise ValidationError(f'Ce devis a déjà une facture ({existing[0].invoice_number})')

    payload = {
        'quote_id': quote.id,
        'chantier_id': quote.chantier_id,
        'items': quote.items,
        'notes': quote.notes,
    }
    for field in CLIENT_FIELDS:
        payload[field] = getattr(quote, field)
    for key, value in (overrides or {}).items():
        if key not in ('quote_id', 'items') and value is not None:
            payload[key] = value

    invoice = _build_invoice(owner_id, payload)
    db.session.add(invoice)

    if quote.status == QuoteStatus.ACCEPTE.value:
        quote.status = QuoteStatus.VALIDE.value
        quote.updated_at = datetime.utcnow()

    store.commit().unwrap()

    logger.info(f"Facture {invoice.invoice_number} créée depuis le devis {quote_id}")
    return invoice


# ==================== MODIFICATION ====================

def update_invoice(owner_id: str, invoice_id: str, fields: Dict[str, Any]) -> Invoice:
    """Modifie une facture non soldée.

    Raises:
        ImmutableStateError: facture payée ou annulée
    """
    if not isinstance(fields, dict):
        raise ValidationError('Données requises')

    invoice = get_invoice(owner_id, invoice_id)
    current = reconcile_status(invoice.status, invoice.total_ttc, invoice.payments)
    if current in (PAID, CANCELLED):
        raise ImmutableStateError(f'Une facture {current} ne peut plus être modifiée')

    # Validation complète avant toute écriture
    if 'client_name' in fields and not (fields.get('client_name') or '').strip():
        raise ValidationError('Nom du client requis')
    if fields.get('status') is not None:
        _validate_explicit_status(fields['status'])
    items = parse_items(fields['items']) if 'items' in fields else None
    invoice_date = parse_date(fields['invoice_date'], 'date de facture') if fields.get('invoice_date') else invoice.invoice_date
    due_date = parse_date(fields['due_date'], "date d'échéance") if fields.get('due_date') else invoice.due_date
    if due_date and invoice_date and due_date < invoice_date:
        raise ValidationError("La date d'échéance doit suivre la date de facture")

    for field in CLIENT_FIELDS + ('chantier_id', 'client_id', 'payment_terms', 'notes'):
        if field in fields:
            value = fields[field]
            setattr(invoice, field, value.strip() if isinstance(value, str) else value)
    invoice.invoice_date = invoice_date
    invoice.due_date = due_date

    if items is not None:
        _apply_items(invoice, items)

    if fields.get('status') is not None:
        invoice.status = fields['status']
    invoice.status = reconcile_status(invoice.status, invoice.total_ttc, invoice.payments)

    store.commit().unwrap()
    logger.info(f"Facture {invoice.invoice_number} modifiée")
    return invoice


def mark_sent(owner_id: str, invoice_id: str) -> Invoice:
    """Passe une facture brouillon en 'envoyée' (après envoi au client)"""
    invoice = get_invoice(owner_id, invoice_id)
    current = reconcile_status(invoice.status, invoice.total_ttc, invoice.payments)

    if current == DRAFT:
        invoice.status = SENT
        store.commit().unwrap()
        logger.info(f"Facture {invoice.invoice_number} envoyée")
    return invoice


def cancel_invoice(owner_id: str, invoice_id: str) -> Invoice:
    """Annule une facture (suppression logique)"""
    invoice = get_invoice(owner_id, invoice_id, for_update=True)
    current = reconcile_status(invoice.status, invoice.total_ttc, invoice.payments)
    if current == PAID:
        db.session.rollback()
        raise ImmutableStateError('Une facture payée ne peut pas être annulée')

    invoice.status = CANCELLED
    invoice.deleted_at = datetime.utcnow()
    store.commit().unwrap()

    logger.info(f"Facture {invoice.invoice_number} annulée")
    return invoice


# ==================== PAIEMENTS ====================

def _validate_payment(amount, payment_date, payment_method):
    try:
        value = _dec(amount)
    except ArithmeticError:
        raise ValidationError('Montant invalide')
    if not value.is_finite():
        raise ValidationError('Montant invalide')
    if amount is None or value <= 0:
        raise ValidationError('Le montant doit être positif')

    if not payment_method or not PaymentMethod.is_valid(payment_method):
        valid = ', '.join(m.value for m in PaymentMethod)
        raise ValidationError(f'Moyen de paiement invalide. Valeurs: {valid}')

    on_date = parse_date(payment_date, 'date de paiement') if payment_date else date.today()
    return value, on_date


def record_payment(owner_id: str, invoice_id: str, amount, payment_date=None,
                   payment_method: str = None, reference: str = None, notes: str = None) -> Invoice:
    """Enregistre un paiement et met à jour le statut, en une seule transaction.

    La facture est verrouillée pendant la lecture des paiements existants:
    deux paiements simultanés ne peuvent pas dépasser le restant dû.

    Raises:
        OverpaymentError: montant supérieur au restant dû
        ImmutableStateError: facture annulée
    """
    value, on_date = _validate_payment(amount, payment_date, payment_method)

    invoice = get_invoice(owner_id, invoice_id, for_update=True)
    if invoice.status == CANCELLED:
        db.session.rollback()
        raise ImmutableStateError('Impossible d\'enregistrer un paiement sur une facture annulée')

    remaining = remaining_amount(invoice)
    if value > remaining:
        db.session.rollback()
        raise OverpaymentError(float(max(remaining, Decimal('0'))))

    payment = Payment(
        invoice_id=invoice.id,
        owner_id=owner_id,
        amount=float(value),
        payment_date=on_date,
        payment_method=payment_method,
        reference=reference,
        notes=notes
    )
    invoice.payments.append(payment)
    invoice.status = reconcile_status(invoice.status, invoice.total_ttc, invoice.payments)

    store.commit().unwrap()
    logger.info(
        f"Paiement de {value} € enregistré sur {invoice.invoice_number} "
        f"(statut: {invoice.status})"
    )
    return invoice


def delete_payment(owner_id: str, invoice_id: str, payment_id: str) -> Invoice:
    """Supprime un paiement et recalcule le statut, en une seule transaction"""
    invoice = get_invoice(owner_id, invoice_id, for_update=True)

    payment = next((p for p in invoice.payments if p.id == payment_id and p.owner_id == owner_id), None)
    if payment is None:
        db.session.rollback()
        raise NotFoundError('Paiement non trouvé')

    invoice.payments.remove(payment)
    invoice.status = reconcile_status(invoice.status, invoice.total_ttc, invoice.payments)

    store.commit().unwrap()
    logger.info(f"Paiement {payment_id} supprimé de {invoice.invoice_number} (statut: {invoice.status})")
    return invoice


# ==================== PDF ====================

def render_invoice_pdf(owner_id: str, invoice_id: str, company=None):
    """PDF de la facture (conditions de paiement, pas de zone de signature)"""
    invoice = get_invoice(owner_id, invoice_id)
    view = document_view.build_invoice_view(invoice, company or document_view.CompanyInfo.from_config())
    result = pdf_export_service.render_invoice(view)
    logger.info(f"PDF de la facture {invoice.invoice_number} généré ({len(result.data)} octets)")
    return result
