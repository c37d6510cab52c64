"""
Fonctions utilitaires
Helpers réutilisables dans toute l'application
"""

import re
import base64
import binascii
from datetime import datetime, date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from facturation.exceptions import ValidationError

NBSP = '\u00a0'
EM_DASH = '\u2014'


def format_currency_eur(amount):
    """
    Formate un montant en euros à la française

    Args:
        amount: Montant (float, Decimal ou None)

    Returns:
        str: ex. "1 234,56 €" (espace insécable comme séparateur de milliers)
    """
    value = Decimal(str(amount or 0)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    sign = '-' if value < 0 else ''
    integer, decimals = f"{abs(value):.2f}".split('.')
    groups = []
    while len(integer) > 3:
        groups.insert(0, integer[-3:])
        integer = integer[:-3]
    groups.insert(0, integer)
    return f"{sign}{NBSP.join(groups)},{decimals} €"


def format_quantity(quantity):
    """Quantité affichée sans décimales inutiles, tiret cadratin si absente"""
    if quantity is None or quantity == '':
        return EM_DASH
    value = Decimal(str(quantity))
    if value == value.to_integral_value():
        return str(int(value))
    return f"{value.normalize():f}".replace('.', ',')


def format_date_fr(value):
    """date / datetime / ISO → JJ/MM/AAAA"""
    if not value:
        return ''
    if isinstance(value, str):
        value = parse_date(value)
    return value.strftime('%d/%m/%Y')


def parse_date(value, field_name='date'):
    """
    Parse une date ISO (YYYY-MM-DD, éventuellement suivie d'une heure)

    Raises:
        ValidationError: format invalide
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except (ValueError, TypeError):
        raise ValidationError(f'Format de {field_name} invalide (YYYY-MM-DD)')


def due_date_from_terms(invoice_date, payment_terms):
    """
    Date d'échéance déduite des conditions de paiement:
    à réception → même jour, 30 / 45 / 60 jours, 30 jours par défaut
    """
    terms = (payment_terms or '').lower()
    if 'réception' in terms:
        days = 0
    elif '30' in terms:
        days = 30
    elif '45' in terms:
        days = 45
    elif '60' in terms:
        days = 60
    else:
        days = 30
    return invoice_date + timedelta(days=days)


def sanitize_filename(value, fallback):
    """Espaces → tirets, suppression de tout ce qui n'est pas [A-Za-z0-9-]"""
    safe = re.sub(r'\s+', '-', value or '')
    safe = re.sub(r'[^A-Za-z0-9-]', '', safe)
    return safe or fallback


def build_pdf_filename(kind, number, client_name, on_date):
    """
    Nom de fichier d'un PDF

    Returns:
        str: {devis|facture}-{numéro}-{client}-{YYYY-MM-DD}.pdf
    """
    parts = [kind]
    if number:
        parts.append(number)
    parts.append(sanitize_filename(client_name, kind))
    parts.append(on_date.strftime('%Y-%m-%d'))
    return '-'.join(parts) + '.pdf'


def strip_data_uri(data):
    """Retire un éventuel préfixe data:image/...;base64,"""
    if not data:
        return ''
    if data.startswith('data:') and ',' in data:
        return data.split(',', 1)[1]
    return data


def decode_base64(data, field_name='image'):
    """
    Décode un contenu base64 (préfixe data URI accepté)

    Raises:
        ValidationError: contenu vide ou non décodable
    """
    encoded = strip_data_uri(data).strip()
    if not encoded:
        raise ValidationError(f'{field_name} requis')
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(f'{field_name} invalide (base64 attendu)')


def hex_to_rgb(value):
    """#RRGGBB → (r, g, b), None si invalide"""
    m = re.match(r'^#?([a-fA-F0-9]{2})([a-fA-F0-9]{2})([a-fA-F0-9]{2})$', (value or '').strip())
    if not m:
        return None
    return tuple(int(part, 16) for part in m.groups())
