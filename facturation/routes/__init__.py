"""
Routes API
==========

Blueprints devis (/api/quotes) et factures (/api/invoices), plus les
utilitaires communs aux exports PDF.
"""

from flask import request, jsonify, Response

from facturation.services.document_view import CompanyInfo

COMPANY_FIELDS = ('name', 'address', 'city_postal', 'phone', 'email', 'siret', 'legal')


def company_from_request(data: dict) -> CompanyInfo:
    """Identité de l'entreprise: configuration, surchargée par le corps de la requête"""
    overrides = {}
    company = data.get('company') if isinstance(data.get('company'), dict) else {}
    for key in COMPANY_FIELDS:
        if company.get(key):
            overrides[key] = company[key]
    if data.get('theme_color'):
        overrides['theme_color'] = data['theme_color']
    if data.get('logo'):
        overrides['logo'] = data['logo']
    return CompanyInfo.from_config(overrides)


def pdf_response(result):
    """PDF en pièce jointe, ou JSON base64 si ?format=base64"""
    if request.args.get('format') == 'base64':
        return jsonify({
            'filename': result.filename,
            'pdf_base64': result.to_base64()
        })

    return Response(
        result.data,
        mimetype=result.content_type,
        headers={
            'Content-Disposition': f'attachment; filename="{result.filename}"',
            'Content-Length': len(result.data)
        }
    )
