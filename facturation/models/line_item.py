"""
Lignes de devis / facture
=========================

Représentation typée des lignes stockées en JSON sur les devis et factures.
Les totaux sont toujours recalculés ici: ceux envoyés par le client sont ignorés.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Dict, Any

from facturation.exceptions import ValidationError

_TRAILING_UNIT = re.compile(r'\s*\(([^)]+)\)\s*$')

TWO_PLACES = Decimal('0.01')


def infer_unit(description: str) -> str:
    """Déduit l'unité depuis la description ("Pose (U)" → "U", "(forfait)" → "Forfait")"""
    m = _TRAILING_UNIT.search(description or '')
    if not m:
        return ''
    raw = m.group(1).strip()
    if raw.lower() == 'u':
        return 'U'
    if raw.lower() == 'forfait':
        return 'Forfait'
    return raw


def to_decimal(value, label: str, default: Optional[Decimal] = Decimal('0')) -> Optional[Decimal]:
    """Convertit un montant ou une quantité, ValidationError si illisible ou non fini"""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise ValidationError(f'{label} invalide')
    try:
        result = Decimal(str(value).replace(',', '.'))
    except ArithmeticError:
        raise ValidationError(f'{label} invalide')
    if not result.is_finite():
        raise ValidationError(f'{label} invalide')
    return result


def money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _number(value: Decimal):
    """Décimal → int si entier, float sinon (sérialisation JSON)"""
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass
class SubItem:
    """Sous-ligne d'une ligne de devis (un seul niveau d'imbrication)"""
    description: str
    quantity: Optional[Decimal]
    unit_price: Decimal
    unit: str = ''

    @property
    def total(self) -> Decimal:
        return money((self.quantity or Decimal('0')) * self.unit_price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'description': self.description,
            'quantity': _number(self.quantity),
            'unitPrice': float(self.unit_price),
            'total': float(self.total),
            'unit': self.unit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SubItem':
        if not isinstance(data, dict):
            raise ValidationError('Sous-ligne invalide')
        description = (data.get('description') or '').strip()
        return cls(
            description=description,
            quantity=to_decimal(data.get('quantity'), 'Quantité', default=None),
            unit_price=to_decimal(data.get('unitPrice', data.get('unit_price')), 'Prix unitaire'),
            unit=(data.get('unit') or '').strip() or infer_unit(description),
        )


@dataclass
class LineItem:
    """
    Ligne de devis ou de facture.

    Avec des sous-lignes, la ligne est un agrégat: son total est la somme des
    sous-lignes et sa quantité / son prix unitaire ne sont pas affichés.
    """
    description: str
    quantity: Optional[Decimal]
    unit_price: Decimal
    unit: str = ''
    sub_items: List[SubItem] = field(default_factory=list)

    @property
    def is_aggregate(self) -> bool:
        return len(self.sub_items) > 0

    @property
    def total(self) -> Decimal:
        if self.is_aggregate:
            return money(sum((sub.total for sub in self.sub_items), Decimal('0')))
        return money((self.quantity or Decimal('0')) * self.unit_price)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'description': self.description,
            'quantity': _number(self.quantity),
            'unitPrice': float(self.unit_price),
            'total': float(self.total),
            'unit': self.unit,
        }
        if self.sub_items:
            data['subItems'] = [sub.to_dict() for sub in self.sub_items]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LineItem':
        if not isinstance(data, dict):
            raise ValidationError('Ligne invalide')
        description = (data.get('description') or '').strip()
        raw_subs = data.get('subItems', data.get('sub_items')) or []
        return cls(
            description=description,
            quantity=to_decimal(data.get('quantity'), 'Quantité', default=None),
            unit_price=to_decimal(data.get('unitPrice', data.get('unit_price')), 'Prix unitaire'),
            unit=(data.get('unit') or '').strip() or infer_unit(description),
            sub_items=[SubItem.from_dict(sub) for sub in raw_subs],
        )


def parse_items(raw_items, require_description: bool = True) -> List[LineItem]:
    """
    Normalise une liste de lignes reçue de l'API.

    Raises:
        ValidationError: liste vide, ligne sans description ou valeur illisible
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError('Au moins une ligne est requise')
    items = [LineItem.from_dict(raw) for raw in raw_items]
    if require_description and not any(item.description for item in items):
        raise ValidationError('Au moins une ligne avec une description est requise')
    return items


def load_items(stored: Optional[list]) -> List[LineItem]:
    """Relit les lignes stockées en base (sans validation stricte)"""
    return [LineItem.from_dict(raw) for raw in (stored or []) if isinstance(raw, dict)]


def items_total(items: List[LineItem]) -> Decimal:
    return money(sum((item.total for item in items), Decimal('0')))
