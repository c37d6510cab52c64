"""
Modèle Quote - Devis
Devis client avec lignes, totaux et signature électronique
"""

from facturation import db
from facturation.models.enums import QuoteStatus
from facturation.models.line_item import load_items
from datetime import datetime, timedelta
import uuid


class Quote(db.Model):
    """
    Devis émis pour un client.
    Le client est copié à la création (instantané), les lignes sont stockées en JSON.
    """
    __tablename__ = 'quotes'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = db.Column(db.String(36), nullable=False, index=True)

    # Instantané client
    client_name = db.Column(db.String(200), nullable=False)
    client_email = db.Column(db.String(200))
    client_phone = db.Column(db.String(50))
    client_address = db.Column(db.Text)

    # Projet
    chantier_id = db.Column(db.String(36), index=True)
    project_type = db.Column(db.String(200))
    project_description = db.Column(db.Text)

    # Lignes et montants
    items = db.Column(db.JSON, default=list)
    total_ht = db.Column(db.Numeric(18, 2, asdecimal=False), default=0)
    total_ttc = db.Column(db.Numeric(18, 2, asdecimal=False), default=0)

    validity_days = db.Column(db.Integer, default=30)

    # Statut: NULL (brouillon), envoyé, accepté, refusé, expiré, validé, signé
    status = db.Column(db.String(20))
    accepted_at = db.Column(db.DateTime)

    notes = db.Column(db.Text)

    # Signature
    signature_data = db.Column(db.Text)
    signer_first_name = db.Column(db.String(100))
    signer_last_name = db.Column(db.String(100))
    signed_at = db.Column(db.DateTime)

    # Métadonnées
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_status(self) -> str:
        return self.status or 'brouillon'

    @property
    def expires_at(self):
        if not self.created_at:
            return None
        return self.created_at + timedelta(days=self.validity_days or 30)

    def line_items(self):
        return load_items(self.items)

    def to_dict(self, number=None, is_expired=None):
        """Sérialisation en dictionnaire"""
        return {
            'id': self.id,
            'number': number,
            'status': self.display_status,
            'status_label': QuoteStatus.get_label(self.display_status),
            'client_name': self.client_name,
            'client_email': self.client_email,
            'client_phone': self.client_phone,
            'client_address': self.client_address,
            'chantier_id': self.chantier_id,
            'project_type': self.project_type,
            'project_description': self.project_description,
            'items': [item.to_dict() for item in self.line_items()],
            'total_ht': self.total_ht,
            'tva_amount': round((self.total_ttc or 0) - (self.total_ht or 0), 2),
            'total_ttc': self.total_ttc,
            'validity_days': self.validity_days,
            'is_expired': is_expired,
            'notes': self.notes,
            'accepted_at': self.accepted_at.isoformat() if self.accepted_at else None,
            'signer_first_name': self.signer_first_name,
            'signer_last_name': self.signer_last_name,
            'signed_at': self.signed_at.isoformat() if self.signed_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
