"""Fixtures partagées: application de test, base SQLite en mémoire, jetons JWT."""
import base64
import io

import pytest
from flask_jwt_extended import create_access_token
from PIL import Image

from facturation import create_app, db
from facturation.models import QuoteStatus

OWNER_ID = 'owner-1'
OTHER_OWNER_ID = 'owner-2'


@pytest.fixture
def app():
    """Application configurée pour les tests, schéma créé puis supprimé."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    """En-têtes d'un titulaire de compte."""
    token = create_access_token(identity=OWNER_ID)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def delegate_headers(app):
    """En-têtes d'un membre d'équipe agissant pour OWNER_ID."""
    token = create_access_token(identity='member-7', additional_claims={'acting_for': OWNER_ID})
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def sample_items():
    return [
        {'description': 'Pose carrelage (U)', 'quantity': 10, 'unitPrice': 45},
        {'description': 'Déplacement (forfait)', 'quantity': 1, 'unitPrice': 50},
    ]


@pytest.fixture
def make_quote(app, sample_items):
    """Fabrique de devis persistés (totaux calculés par le service)."""
    from facturation.services import quote_service

    def _make(owner_id=OWNER_ID, status=None, created_at=None, validity_days=None, items=None, **fields):
        payload = {'client_name': 'Jean Dupont', 'items': items or sample_items}
        payload.update(fields)
        if validity_days is not None:
            payload['validity_days'] = validity_days
        quote = quote_service.create_quote(owner_id, payload)
        if status is not None:
            quote.status = status
        if created_at is not None:
            quote.created_at = created_at
        db.session.commit()
        return quote

    return _make


@pytest.fixture
def accepted_quote(make_quote):
    return make_quote(status=QuoteStatus.ACCEPTE.value)


@pytest.fixture
def make_invoice(app):
    """Fabrique de factures manuelles avec un montant TTC donné (TVA 20 %)."""
    from facturation.services import invoice_service

    def _make(total_ttc=1200, owner_id=OWNER_ID, **fields):
        ht = round(total_ttc / 1.2, 2)
        payload = {
            'client_name': 'Marie Curie',
            'items': [{'description': 'Prestation', 'quantity': 1, 'unitPrice': ht}],
        }
        payload.update(fields)
        return invoice_service.create_invoice(owner_id, payload)

    return _make


@pytest.fixture
def png_base64():
    """Signature PNG 120x40 en base64."""
    buffer = io.BytesIO()
    Image.new('RGBA', (120, 40), (10, 20, 200, 255)).save(buffer, format='PNG')
    return base64.b64encode(buffer.getvalue()).decode('ascii')
