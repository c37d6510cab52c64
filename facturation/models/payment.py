"""
Modèle Payment - Paiements reçus sur une facture
Ajout / suppression uniquement, jamais de modification
"""

from facturation import db
from facturation.models.enums import PaymentMethod
from datetime import datetime
import uuid


class Payment(db.Model):
    """Paiement (total ou partiel) d'une facture"""
    __tablename__ = 'payments'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    invoice_id = db.Column(db.String(36), db.ForeignKey('invoices.id'), nullable=False, index=True)
    owner_id = db.Column(db.String(36), nullable=False, index=True)

    amount = db.Column(db.Numeric(18, 2, asdecimal=False), nullable=False)
    payment_date = db.Column(db.Date, nullable=False, default=datetime.utcnow)

    # virement, cheque, especes, carte, autre
    payment_method = db.Column(db.String(20), nullable=False)

    # Référence externe (numéro de chèque, libellé de virement...)
    reference = db.Column(db.String(100))
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        """Sérialisation en dictionnaire"""
        return {
            'id': self.id,
            'invoice_id': self.invoice_id,
            'amount': self.amount,
            'payment_date': self.payment_date.isoformat() if self.payment_date else None,
            'payment_method': self.payment_method,
            'payment_method_label': PaymentMethod.get_label(self.payment_method),
            'reference': self.reference,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
