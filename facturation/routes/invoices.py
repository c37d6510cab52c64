"""
Routes Factures
===============

CRUD des factures, paiements, envoi / annulation et export PDF.
"""

from flask import Blueprint, request, jsonify, g
import logging

from facturation import limiter
from facturation.routes import company_from_request, pdf_response
from facturation.services import invoice_service
from facturation.utils.decorators import user_required

logger = logging.getLogger(__name__)

invoices_bp = Blueprint('invoices', __name__)


@invoices_bp.route('', methods=['GET'])
@user_required
def list_invoices():
    """
    Liste des factures (hors annulées)

    Query params:
        - clientId, chantierId: Filtres
        - status: Statut réconcilié (brouillon, envoyée, partiellement_payée, payée)
        - year: Année de facturation
    """
    invoices = invoice_service.list_invoices(
        g.actor.owner_id,
        client_id=request.args.get('clientId'),
        chantier_id=request.args.get('chantierId'),
        status=request.args.get('status'),
        year=request.args.get('year', type=int)
    )
    return jsonify({'invoices': invoices})


@invoices_bp.route('/stats', methods=['GET'])
@user_required
def get_stats():
    """Indicateurs du tableau de bord"""
    return jsonify({'stats': invoice_service.get_stats(g.actor.owner_id)})


@invoices_bp.route('/<invoice_id>', methods=['GET'])
@user_required
def get_invoice(invoice_id):
    invoice = invoice_service.get_invoice(g.actor.owner_id, invoice_id)
    return jsonify({'invoice': invoice_service.invoice_to_dict(invoice)})


@invoices_bp.route('', methods=['POST'])
@user_required
def create_invoice():
    """Facture manuelle, ou depuis un devis si quote_id est fourni"""
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.create_invoice(g.actor.owner_id, data)
    return jsonify({
        'message': 'Facture créée',
        'invoice': invoice_service.invoice_to_dict(invoice)
    }), 201


@invoices_bp.route('/<invoice_id>', methods=['PUT'])
@user_required
def update_invoice(invoice_id):
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.update_invoice(g.actor.owner_id, invoice_id, data)
    return jsonify({
        'message': 'Facture mise à jour',
        'invoice': invoice_service.invoice_to_dict(invoice)
    })


@invoices_bp.route('/<invoice_id>/payments', methods=['POST'])
@user_required
def record_payment(invoice_id):
    """
    Enregistre un paiement

    Body: amount, payment_method, payment_date (AAAA-MM-JJ), reference, notes
    """
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.record_payment(
        g.actor.owner_id,
        invoice_id,
        data.get('amount'),
        payment_date=data.get('payment_date'),
        payment_method=data.get('payment_method'),
        reference=data.get('reference'),
        notes=data.get('notes')
    )
    return jsonify({
        'message': 'Paiement enregistré',
        'invoice': invoice_service.invoice_to_dict(invoice)
    }), 201


@invoices_bp.route('/<invoice_id>/payments/<payment_id>', methods=['DELETE'])
@user_required
def delete_payment(invoice_id, payment_id):
    invoice = invoice_service.delete_payment(g.actor.owner_id, invoice_id, payment_id)
    return jsonify({
        'message': 'Paiement supprimé',
        'invoice': invoice_service.invoice_to_dict(invoice)
    })


@invoices_bp.route('/<invoice_id>/send', methods=['POST'])
@user_required
def mark_sent(invoice_id):
    invoice = invoice_service.mark_sent(g.actor.owner_id, invoice_id)
    return jsonify({
        'message': 'Facture envoyée',
        'invoice': invoice_service.invoice_to_dict(invoice)
    })


@invoices_bp.route('/<invoice_id>/cancel', methods=['POST'])
@user_required
def cancel_invoice(invoice_id):
    invoice = invoice_service.cancel_invoice(g.actor.owner_id, invoice_id)
    logger.info(f"Facture {invoice.invoice_number} annulée par {g.actor.user_id}")
    return jsonify({'message': 'Facture annulée'})


@invoices_bp.route('/<invoice_id>/pdf', methods=['GET', 'POST'])
@user_required
@limiter.limit("30 per minute", error_message="Trop de générations PDF. Réessayez dans 1 minute.")
def export_pdf(invoice_id):
    """
    PDF de la facture

    Body (POST, optionnel): company, theme_color, logo (data URI)
    Query params:
        - format=base64: JSON {filename, pdf_base64} au lieu du fichier
    """
    data = request.get_json(silent=True) or {}
    result = invoice_service.render_invoice_pdf(g.actor.owner_id, invoice_id, company_from_request(data))
    return pdf_response(result)
