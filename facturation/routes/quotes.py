"""
Routes Devis
============

CRUD des devis, changement de statut, export PDF, signature électronique
et facturation d'un devis accepté.
"""

from flask import Blueprint, request, jsonify, g
import logging

from facturation import limiter
from facturation.routes import company_from_request, pdf_response
from facturation.services import quote_service, invoice_service
from facturation.utils.decorators import user_required

logger = logging.getLogger(__name__)

quotes_bp = Blueprint('quotes', __name__)

pdf_limit = limiter.limit("30 per minute", error_message="Trop de générations PDF. Réessayez dans 1 minute.")


def _quote_payload(quote):
    owner_id = g.actor.owner_id
    return quote_service.quote_to_dict(quote, quote_service.display_number(owner_id, quote))


@quotes_bp.route('', methods=['GET'])
@user_required
def list_quotes():
    """
    Liste des devis du compte

    Query params:
        - status: brouillon (inclut les devis sans statut), envoyé, accepté...
        - chantierId: Filtrer par chantier
    """
    quotes = quote_service.list_quotes(
        g.actor.owner_id,
        status=request.args.get('status'),
        chantier_id=request.args.get('chantierId')
    )
    return jsonify({'quotes': quotes})


@quotes_bp.route('', methods=['POST'])
@user_required
def create_quote():
    data = request.get_json(silent=True) or {}
    quote = quote_service.create_quote(g.actor.owner_id, data)
    return jsonify({
        'message': 'Devis créé',
        'quote': _quote_payload(quote)
    }), 201


@quotes_bp.route('/<quote_id>', methods=['GET'])
@user_required
def get_quote(quote_id):
    quote = quote_service.get_quote(g.actor.owner_id, quote_id)
    return jsonify({'quote': _quote_payload(quote)})


@quotes_bp.route('/<quote_id>', methods=['PUT'])
@user_required
def update_quote(quote_id):
    data = request.get_json(silent=True) or {}
    quote = quote_service.submit_update(g.actor.owner_id, quote_id, data)
    return jsonify({
        'message': 'Devis mis à jour',
        'quote': _quote_payload(quote)
    })


@quotes_bp.route('/<quote_id>', methods=['DELETE'])
@user_required
def delete_quote(quote_id):
    quote_service.delete_quote(g.actor.owner_id, quote_id)
    return jsonify({'message': 'Devis supprimé'})


@quotes_bp.route('/<quote_id>/status', methods=['POST'])
@user_required
def set_status(quote_id):
    data = request.get_json(silent=True) or {}
    if not data.get('status'):
        return jsonify({'error': 'Statut requis', 'code': 'VALIDATION_ERROR'}), 400

    quote = quote_service.set_status(g.actor.owner_id, quote_id, data['status'])
    return jsonify({
        'message': 'Statut mis à jour',
        'quote': _quote_payload(quote)
    })


@quotes_bp.route('/<quote_id>/pdf', methods=['GET', 'POST'])
@user_required
@pdf_limit
def export_pdf(quote_id):
    """
    PDF du devis

    Body (POST, optionnel): company, theme_color, logo (data URI)
    Query params:
        - format=base64: JSON {filename, pdf_base64} au lieu du fichier
    """
    data = request.get_json(silent=True) or {}
    result = quote_service.render_quote_pdf(g.actor.owner_id, quote_id, company_from_request(data))
    return pdf_response(result)


@quotes_bp.route('/<quote_id>/sign', methods=['POST'])
@user_required
@pdf_limit
def sign_quote(quote_id):
    """
    Signature électronique

    Body: signature_data (PNG base64), first_name, last_name,
          rect {x, y, width, height} en mm (optionnel), company, theme_color, logo
    """
    data = request.get_json(silent=True) or {}
    result = quote_service.sign_quote(g.actor.owner_id, quote_id, data, company_from_request(data))
    quote = quote_service.get_quote(g.actor.owner_id, quote_id)

    return jsonify({
        'message': 'Devis signé',
        'quote': _quote_payload(quote),
        'filename': result.filename,
        'pdf_base64': result.to_base64()
    })


@quotes_bp.route('/<quote_id>/invoice', methods=['POST'])
@user_required
def create_invoice(quote_id):
    """Facture le devis (accepté, validé ou signé)"""
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.create_from_quote(g.actor.owner_id, quote_id, data)
    return jsonify({
        'message': 'Facture créée',
        'invoice': invoice_service.invoice_to_dict(invoice)
    }), 201
