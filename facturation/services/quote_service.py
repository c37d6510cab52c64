"""
Service Devis - Cycle de vie des devis
======================================

brouillon → envoyé → {accepté | refusé | expiré} → validé → signé

- validé: facture émise, le devis ne peut plus revenir en arrière
- signé: plus aucune modification possible
- L'expiration est calculée à la lecture, jamais enregistrée automatiquement
- La numérotation (AAAA-NNN) est positionnelle et recalculée à chaque appel
"""

from datetime import datetime, timedelta
from decimal import Decimal
import logging

from flask import current_app
from sqlalchemy import update, or_
from sqlalchemy.exc import SQLAlchemyError

from facturation import db
from facturation.exceptions import ValidationError, ImmutableStateError
from facturation.models import Quote, QuoteStatus, parse_items, items_total
from facturation.models.line_item import money
from facturation.services import store
from facturation.services import document_view, pdf_export_service, signature_service
from facturation.utils.geometry import Rect

logger = logging.getLogger(__name__)

SIGNED = QuoteStatus.SIGNE.value
VALIDATED = QuoteStatus.VALIDE.value

# Champs modifiables directement depuis l'API
EDITABLE_FIELDS = (
    'client_name', 'client_email', 'client_phone', 'client_address',
    'chantier_id', 'project_type', 'project_description', 'notes',
)


def compute_totals(items):
    """(total HT, total TTC) à partir des lignes normalisées"""
    vat_rate = Decimal(str(current_app.config.get('VAT_RATE', 0.20)))
    total_ht = items_total(items)
    return total_ht, money(total_ht * (1 + vat_rate))


def _validity_days(value) -> int:
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Durée de validité invalide')
    if days <= 0:
        raise ValidationError('La durée de validité doit être positive')
    return days


def _validate_status(status):
    if not QuoteStatus.is_valid(status):
        valid = ', '.join(s.value for s in QuoteStatus)
        raise ValidationError(f'Statut invalide. Valeurs: {valid}')
    return status


def _validate_payload(fields: dict, is_update: bool = False) -> dict:
    """
    Valide la totalité du payload avant toute écriture.

    Returns:
        dict des attributs à appliquer sur le modèle
    """
    if not isinstance(fields, dict):
        raise ValidationError('Données requises')

    changes = {}

    if not is_update or 'client_name' in fields:
        client_name = (fields.get('client_name') or '').strip()
        if not client_name:
            raise ValidationError('Nom du client requis')
        changes['client_name'] = client_name

    for field in EDITABLE_FIELDS:
        if field in fields and field not in changes:
            value = fields[field]
            changes[field] = value.strip() if isinstance(value, str) else value

    if not is_update or 'items' in fields:
        items = parse_items(fields.get('items'))
        total_ht, total_ttc = compute_totals(items)
        changes['items'] = [item.to_dict() for item in items]
        changes['total_ht'] = float(total_ht)
        changes['total_ttc'] = float(total_ttc)

    if 'validity_days' in fields:
        changes['validity_days'] = _validity_days(fields['validity_days'])
    elif not is_update:
        changes['validity_days'] = current_app.config.get('DEFAULT_VALIDITY_DAYS', 30)

    if fields.get('status') is not None:
        changes['status'] = _validate_status(fields['status'])

    return changes


# ==================== LECTURE ====================

def get_quote(owner_id: str, quote_id: str) -> Quote:
    return store.fetch_owned(Quote, owner_id, quote_id, 'Devis non trouvé').unwrap()


def is_expired(quote, now: datetime = None) -> bool:
    """Vrai si la date courante dépasse created_at + validity_days"""
    if not quote.created_at:
        return False
    now = now or datetime.utcnow()
    validity = quote.validity_days or 30
    return now > quote.created_at + timedelta(days=validity)


def compute_display_number(quotes, quote_id: str):
    """
    Numéro d'affichage AAAA-NNN d'un devis.

    NNN = rang (base 1) parmi les devis de la même année civile, triés par
    date de création croissante. Une suppression décale les numéros suivants.

    Args:
        quotes: Devis du compte (objets avec id et created_at)
        quote_id: Devis à numéroter

    Returns:
        str ou None si le devis est absent
    """
    target = next((q for q in quotes if q.id == quote_id), None)
    if target is None or not target.created_at:
        return None

    year = target.created_at.year
    same_year = sorted(
        (q for q in quotes if q.created_at and q.created_at.year == year),
        key=lambda q: (q.created_at, q.id)
    )
    rank = next(i for i, q in enumerate(same_year, start=1) if q.id == quote_id)
    return f"{year}-{rank:03d}"


def _owner_numbering_rows(owner_id: str):
    query = db.session.query(Quote.id, Quote.created_at).filter(Quote.owner_id == owner_id)
    return store.fetch_all(query).unwrap()


def display_number(owner_id: str, quote: Quote):
    return compute_display_number(_owner_numbering_rows(owner_id), quote.id)


def quote_to_dict(quote: Quote, number=None, now: datetime = None) -> dict:
    return quote.to_dict(number=number, is_expired=is_expired(quote, now))


def list_quotes(owner_id: str, status: str = None, chantier_id: str = None) -> list:
    """
    Devis du compte, plus récents en premier, avec numéro et expiration.
    Le filtre 'brouillon' inclut les devis sans statut.
    """
    rows = _owner_numbering_rows(owner_id)

    query = Quote.query.filter_by(owner_id=owner_id)
    if status:
        if status == QuoteStatus.BROUILLON.value:
            query = query.filter(or_(Quote.status.is_(None), Quote.status == status))
        else:
            query = query.filter(Quote.status == status)
    if chantier_id:
        query = query.filter(Quote.chantier_id == chantier_id)

    quotes = store.fetch_all(query.order_by(Quote.created_at.desc())).unwrap()
    now = datetime.utcnow()
    return [quote_to_dict(q, compute_display_number(rows, q.id), now) for q in quotes]


# ==================== ÉCRITURE ====================

def create_quote(owner_id: str, payload: dict) -> Quote:
    """Crée un devis. Le statut reste vide (brouillon) sauf s'il est fourni."""
    changes = _validate_payload(payload)

    quote = Quote(owner_id=owner_id, **changes)
    db.session.add(quote)
    store.commit().unwrap()

    logger.info(f"Devis {quote.id} créé pour {owner_id} ({quote.total_ttc} € TTC)")
    return quote


def submit_update(owner_id: str, quote_id: str, fields: dict) -> Quote:
    """
    Modifie un devis.

    Raises:
        ImmutableStateError: devis signé, ou retour en arrière d'un devis validé
        ValidationError: payload invalide (rien n'est écrit)
    """
    quote = get_quote(owner_id, quote_id)

    if quote.status == SIGNED:
        raise ImmutableStateError('Ce devis est signé et ne peut plus être modifié')

    changes = _validate_payload(fields, is_update=True)

    new_status = changes.get('status')
    if quote.status == VALIDATED and new_status and new_status not in QuoteStatus.locked_states():
        raise ImmutableStateError('Un devis validé ne peut pas revenir à un statut antérieur')

    if new_status and new_status != quote.status and new_status in QuoteStatus.accepted_states():
        changes['accepted_at'] = datetime.utcnow()

    for attr, value in changes.items():
        setattr(quote, attr, value)

    store.commit().unwrap()
    logger.info(f"Devis {quote_id} modifié ({', '.join(sorted(changes))})")
    return quote


def _write_quote(owner_id: str, quote_id: str, values: dict):
    db.session.execute(
        update(Quote)
        .where(Quote.id == quote_id, Quote.owner_id == owner_id)
        .values(**values)
    )
    db.session.commit()


def set_status(owner_id: str, quote_id: str, status: str) -> Quote:
    """
    Change le statut d'un devis.

    Toute transition est permise sauf depuis 'signé'. Pour accepté / validé / signé,
    accepted_at est horodaté; si la colonne n'existe pas en base, l'écriture est
    rejouée sans elle.
    """
    _validate_status(status)
    quote = get_quote(owner_id, quote_id)

    if quote.status == SIGNED:
        if status == SIGNED:
            return quote
        raise ImmutableStateError('Ce devis est signé, son statut ne peut plus changer')

    previous = quote.display_status
    now = datetime.utcnow()
    values = {'status': status, 'updated_at': now}
    if status in QuoteStatus.accepted_states():
        values['accepted_at'] = now

    try:
        _write_quote(owner_id, quote_id, values)
    except SQLAlchemyError as e:
        db.session.rollback()
        if 'accepted_at' not in values or not store.is_missing_column(e, 'accepted_at'):
            logger.error(f"Erreur changement de statut du devis {quote_id}: {e}")
            store.StoreResult.from_error(e).unwrap()

        logger.warning(f"Colonne accepted_at absente, statut du devis {quote_id} écrit sans horodatage")
        values.pop('accepted_at')
        try:
            _write_quote(owner_id, quote_id, values)
        except SQLAlchemyError as retry_error:
            db.session.rollback()
            logger.error(f"Erreur changement de statut du devis {quote_id}: {retry_error}")
            store.StoreResult.from_error(retry_error).unwrap()

    logger.info(f"Devis {quote_id}: {previous} → {status}")
    return get_quote(owner_id, quote_id)


def delete_quote(owner_id: str, quote_id: str):
    """Suppression définitive. Refusée pour un devis signé ou déjà facturé."""
    quote = get_quote(owner_id, quote_id)

    if quote.status == SIGNED:
        raise ImmutableStateError('Un devis signé ne peut pas être supprimé')
    if quote.invoices.count() > 0:
        raise ImmutableStateError('Ce devis est lié à une facture et ne peut pas être supprimé')

    db.session.delete(quote)
    store.commit().unwrap()
    logger.info(f"Devis {quote_id} supprimé")


def sign_quote(owner_id: str, quote_id: str, signature: dict, company=None):
    """
    Signature électronique d'un devis.

    Génère le PDF du devis, y incruste la signature, enregistre le signataire
    et passe le devis en 'signé'.

    Args:
        signature: {signature_data (PNG base64), first_name, last_name, rect?}
        company: CompanyInfo pour l'en-tête du PDF (configuration par défaut)

    Returns:
        RenderResult du PDF signé
    """
    quote = get_quote(owner_id, quote_id)
    if quote.status == SIGNED:
        raise ImmutableStateError('Ce devis est déjà signé')

    signature = signature or {}
    first_name = (signature.get('first_name') or '').strip()
    last_name = (signature.get('last_name') or '').strip()
    if not first_name or not last_name:
        raise ValidationError('Nom et prénom du signataire requis')
    signature_data = signature.get('signature_data') or ''

    rect = None
    if signature.get('rect'):
        try:
            rect = Rect.from_dict(signature['rect'])
        except (KeyError, TypeError, ValueError):
            raise ValidationError('Zone de signature invalide')

    number = display_number(owner_id, quote)
    view = document_view.build_quote_view(quote, number, company or document_view.CompanyInfo.from_config())
    rendered = pdf_export_service.render_quote(view)

    signed_at = datetime.utcnow()
    signed_pdf = signature_service.embed_signature(
        rendered.data, signature_data, first_name, last_name, signed_at,
        rect=rect or rendered.signature_rect
    )

    quote.signature_data = signature_data
    quote.signer_first_name = first_name
    quote.signer_last_name = last_name
    quote.signed_at = signed_at
    quote.status = SIGNED
    quote.accepted_at = quote.accepted_at or signed_at
    store.commit().unwrap()

    logger.info(f"Devis {quote_id} signé par {first_name} {last_name}")
    return pdf_export_service.RenderResult(
        data=signed_pdf, filename=rendered.filename, signature_rect=rendered.signature_rect
    )


def render_quote_pdf(owner_id: str, quote_id: str, company=None):
    """PDF du devis (numéro d'affichage, lignes et encadré "Bon pour accord")"""
    quote = get_quote(owner_id, quote_id)
    number = display_number(owner_id, quote)
    view = document_view.build_quote_view(quote, number, company or document_view.CompanyInfo.from_config())
    result = pdf_export_service.render_quote(view)
    logger.info(f"PDF du devis {quote_id} généré ({len(result.data)} octets)")
    return result
