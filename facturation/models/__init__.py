"""
Modèles de l'application
Export centralisé de tous les modèles SQLAlchemy
"""

from facturation.models.enums import QuoteStatus, InvoiceStatus, PaymentMethod
from facturation.models.line_item import LineItem, SubItem, infer_unit, parse_items, items_total
from facturation.models.quote import Quote
from facturation.models.invoice import Invoice
from facturation.models.payment import Payment

__all__ = [
    # Enums
    'QuoteStatus',
    'InvoiceStatus',
    'PaymentMethod',
    # Lignes
    'LineItem',
    'SubItem',
    'infer_unit',
    'parse_items',
    'items_total',
    # Models
    'Quote',
    'Invoice',
    'Payment'
]
