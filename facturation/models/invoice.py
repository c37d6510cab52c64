"""
Modèle Invoice - Factures clients
Facture créée manuellement ou à partir d'un devis accepté
"""

from facturation import db
from facturation.models.enums import InvoiceStatus
from facturation.models.line_item import load_items
from datetime import datetime
import uuid


class Invoice(db.Model):
    """
    Facture émise pour un client.
    Le statut stocké est recalculé à partir des paiements à chaque lecture.
    """
    __tablename__ = 'invoices'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = db.Column(db.String(36), nullable=False, index=True)

    # Numéro de facture (ex: FAC-2024-00001), unique par compte
    invoice_number = db.Column(db.String(50), nullable=False)

    # Origine
    quote_id = db.Column(db.String(36), db.ForeignKey('quotes.id'), index=True)
    chantier_id = db.Column(db.String(36), index=True)
    client_id = db.Column(db.String(36), index=True)

    # Instantané client
    client_name = db.Column(db.String(200), nullable=False)
    client_email = db.Column(db.String(200))
    client_phone = db.Column(db.String(50))
    client_address = db.Column(db.Text)

    # Lignes et montants
    items = db.Column(db.JSON, default=list)
    subtotal_ht = db.Column(db.Numeric(18, 2, asdecimal=False), default=0)
    tva_amount = db.Column(db.Numeric(18, 2, asdecimal=False), default=0)
    total_ttc = db.Column(db.Numeric(18, 2, asdecimal=False), default=0)

    # Dates
    invoice_date = db.Column(db.Date, default=datetime.utcnow)
    due_date = db.Column(db.Date)
    payment_terms = db.Column(db.Text)

    # Statut: brouillon, envoyée, partiellement_payée, payée, annulée
    status = db.Column(db.String(30), default='brouillon')

    notes = db.Column(db.Text)

    # Métadonnées
    deleted_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relations
    quote = db.relationship('Quote', backref=db.backref('invoices', lazy='dynamic'))
    payments = db.relationship(
        'Payment', backref='invoice', lazy='select',
        cascade='all, delete-orphan', order_by='Payment.payment_date.desc()'
    )

    __table_args__ = (
        db.UniqueConstraint('owner_id', 'invoice_number', name='uq_invoice_owner_number'),
    )

    def line_items(self):
        return load_items(self.items)

    def to_dict(self, status=None, paid_amount=None, remaining_amount=None):
        """Sérialisation en dictionnaire (statut et montants réconciliés fournis par le service)"""
        return {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'quote_id': self.quote_id,
            'chantier_id': self.chantier_id,
            'client_id': self.client_id,
            'client_name': self.client_name,
            'client_email': self.client_email,
            'client_phone': self.client_phone,
            'client_address': self.client_address,
            'items': [item.to_dict() for item in self.line_items()],
            'subtotal_ht': self.subtotal_ht,
            'tva_amount': self.tva_amount,
            'total_ttc': self.total_ttc,
            'invoice_date': self.invoice_date.isoformat() if self.invoice_date else None,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'payment_terms': self.payment_terms,
            'status': status or self.status,
            'status_label': InvoiceStatus.get_label(status or self.status),
            'notes': self.notes,
            'payments': [p.to_dict() for p in self.payments],
            'paidAmount': paid_amount,
            'remainingAmount': remaining_amount,
            'deleted_at': self.deleted_at.isoformat() if self.deleted_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
