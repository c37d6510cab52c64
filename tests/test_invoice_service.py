"""Tests de la facturation et du rapprochement des paiements."""
import random
from datetime import date
from decimal import Decimal

import pytest

from facturation.exceptions import (
    ValidationError, NotFoundError, ImmutableStateError, OverpaymentError
)
from facturation.services import invoice_service, quote_service
from facturation.services.invoice_service import reconcile_status

OWNER = 'owner-1'


class TestReconcileStatus:
    """Statut déduit des paiements."""

    def test_full_payment_in_two_parts(self):
        assert reconcile_status('envoyée', 1000, [400, 600]) == 'payée'

    def test_one_cent_tolerance(self):
        assert reconcile_status('envoyée', 1000, [999.99]) == 'payée'

    def test_partial_payment(self):
        assert reconcile_status('envoyée', 1000, [400]) == 'partiellement_payée'

    def test_no_payment_keeps_sent(self):
        assert reconcile_status('envoyée', 1000, []) == 'envoyée'

    def test_no_payment_reverts_paid_to_draft(self):
        assert reconcile_status('payée', 1000, []) == 'brouillon'

    def test_cancelled_is_sticky(self):
        assert reconcile_status('annulée', 1000, [1000]) == 'annulée'

    def test_never_paid_below_tolerance(self):
        rng = random.Random(42)
        for _ in range(200):
            total = Decimal(rng.randint(100, 500000)) / 100
            paid = total - Decimal('0.02') - Decimal(rng.randint(0, 10000)) / 100
            if paid <= 0:
                continue
            parts = [paid / 2, paid - paid / 2]
            assert reconcile_status('envoyée', total, parts) != 'payée'

    def test_idempotent(self):
        for payments in ([], [100], [1000]):
            once = reconcile_status('envoyée', 1000, payments)
            assert reconcile_status(once, 1000, payments) == once


class TestInvoiceNumbering:

    def test_sequence_per_owner_and_year(self, make_invoice):
        first = make_invoice(invoice_date='2024-02-01')
        second = make_invoice(invoice_date='2024-03-01')
        other = make_invoice(owner_id='owner-2', invoice_date='2024-03-01')
        assert first.invoice_number == 'FAC-2024-00001'
        assert second.invoice_number == 'FAC-2024-00002'
        assert other.invoice_number == 'FAC-2024-00001'

    def test_new_year_restarts(self, make_invoice):
        make_invoice(invoice_date='2024-12-31')
        assert make_invoice(invoice_date='2025-01-02').invoice_number == 'FAC-2025-00001'


class TestCreateInvoice:

    def test_totals_and_defaults(self, make_invoice):
        invoice = make_invoice(total_ttc=1200, invoice_date='2024-04-01')
        assert invoice.subtotal_ht == 1000
        assert invoice.tva_amount == 200
        assert invoice.total_ttc == 1200
        assert invoice.status == 'brouillon'
        assert invoice.payment_terms == 'Paiement à 30 jours (net)'
        assert invoice.due_date == date(2024, 5, 1)

    def test_terms_on_receipt(self, make_invoice):
        invoice = make_invoice(invoice_date='2024-04-01', payment_terms='Paiement à réception')
        assert invoice.due_date == date(2024, 4, 1)

    def test_due_date_before_invoice_date(self, app):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(OWNER, {
                'client_name': 'A',
                'items': [{'description': 'x', 'quantity': 1, 'unitPrice': 1}],
                'invoice_date': '2024-04-10',
                'due_date': '2024-04-01',
            })

    def test_client_name_required(self, app):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(OWNER, {'items': [{'description': 'x', 'quantity': 1, 'unitPrice': 1}]})

    def test_paid_status_cannot_be_set_directly(self, make_invoice):
        with pytest.raises(ValidationError):
            make_invoice(status='payée')


class TestCreateFromQuote:

    def test_copies_quote_and_validates_it(self, accepted_quote):
        invoice = invoice_service.create_from_quote(OWNER, accepted_quote.id)
        assert invoice.quote_id == accepted_quote.id
        assert invoice.client_name == 'Jean Dupont'
        assert invoice.subtotal_ht == 500
        assert invoice.total_ttc == 600
        assert len(invoice.items) == 2
        assert quote_service.get_quote(OWNER, accepted_quote.id).status == 'validé'

    def test_draft_quote_rejected(self, make_quote):
        quote = make_quote(status='envoyé')
        with pytest.raises(ValidationError):
            invoice_service.create_from_quote(OWNER, quote.id)

    def test_signed_quote_stays_signed(self, make_quote):
        quote = make_quote(status='signé')
        invoice_service.create_from_quote(OWNER, quote.id)
        assert quote_service.get_quote(OWNER, quote.id).status == 'signé'

    def test_single_live_invoice_per_quote(self, accepted_quote):
        invoice_service.create_from_quote(OWNER, accepted_quote.id)
        with pytest.raises(ValidationError):
            invoice_service.create_from_quote(OWNER, accepted_quote.id)

    def test_create_invoice_with_quote_id_delegates(self, accepted_quote):
        invoice = invoice_service.create_invoice(OWNER, {'quote_id': accepted_quote.id, 'notes': 'Merci'})
        assert invoice.quote_id == accepted_quote.id
        assert invoice.notes == 'Merci'


class TestPayments:

    def test_partial_then_full(self, make_invoice):
        invoice = make_invoice(total_ttc=1000, status='envoyée')

        invoice = invoice_service.record_payment(OWNER, invoice.id, 400, payment_method='virement')
        data = invoice_service.invoice_to_dict(invoice)
        assert data['status'] == 'partiellement_payée'
        assert data['remainingAmount'] == 600.0

        invoice = invoice_service.record_payment(OWNER, invoice.id, 600, payment_method='cheque')
        data = invoice_service.invoice_to_dict(invoice)
        assert data['status'] == 'payée'
        assert data['paidAmount'] == 1000.0
        assert data['remainingAmount'] == 0.0
        assert len(data['payments']) == 2

    def test_overpayment_rejected_with_remaining(self, make_invoice):
        invoice = make_invoice(total_ttc=1000)
        invoice_service.record_payment(OWNER, invoice.id, 400, payment_method='virement')

        with pytest.raises(OverpaymentError) as exc_info:
            invoice_service.record_payment(OWNER, invoice.id, 700, payment_method='virement')

        assert exc_info.value.remaining == 600.0
        assert '600.00' in exc_info.value.message
        assert len(invoice_service.get_invoice(OWNER, invoice.id).payments) == 1

    def test_invalid_amount(self, make_invoice):
        invoice = make_invoice()
        with pytest.raises(ValidationError):
            invoice_service.record_payment(OWNER, invoice.id, 0, payment_method='virement')
        with pytest.raises(ValidationError):
            invoice_service.record_payment(OWNER, invoice.id, 'abc', payment_method='virement')

    @pytest.mark.parametrize('amount', ['NaN', 'Infinity', float('nan')])
    def test_non_finite_amount_rejected(self, make_invoice, amount):
        invoice = make_invoice()
        with pytest.raises(ValidationError):
            invoice_service.record_payment(OWNER, invoice.id, amount, payment_method='virement')
        assert invoice_service.get_invoice(OWNER, invoice.id).payments == []

    def test_invalid_method(self, make_invoice):
        invoice = make_invoice()
        with pytest.raises(ValidationError):
            invoice_service.record_payment(OWNER, invoice.id, 10, payment_method='bitcoin')

    def test_payment_date_parsed(self, make_invoice):
        invoice = make_invoice()
        invoice = invoice_service.record_payment(
            OWNER, invoice.id, 10, payment_date='2024-06-15', payment_method='especes', reference='R-1'
        )
        assert invoice.payments[0].payment_date == date(2024, 6, 15)
        assert invoice.payments[0].reference == 'R-1'

    def test_delete_payment_reverts_status(self, make_invoice):
        invoice = make_invoice(total_ttc=1000, status='envoyée')
        invoice = invoice_service.record_payment(OWNER, invoice.id, 1000, payment_method='virement')
        assert invoice.status == 'payée'
        payment_id = invoice.payments[0].id

        invoice = invoice_service.delete_payment(OWNER, invoice.id, payment_id)
        assert invoice.status == 'brouillon'
        assert invoice_service.invoice_to_dict(invoice)['remainingAmount'] == 1000.0

    def test_delete_unknown_payment(self, make_invoice):
        invoice = make_invoice()
        with pytest.raises(NotFoundError):
            invoice_service.delete_payment(OWNER, invoice.id, 'missing')

    def test_other_owner_cannot_pay(self, make_invoice):
        invoice = make_invoice()
        with pytest.raises(NotFoundError):
            invoice_service.record_payment('owner-2', invoice.id, 10, payment_method='virement')


class TestUpdateAndCancel:

    def test_update_recomputes_totals(self, make_invoice):
        invoice = make_invoice()
        updated = invoice_service.update_invoice(OWNER, invoice.id, {
            'items': [{'description': 'Reprise', 'quantity': 2, 'unitPrice': 50}]
        })
        assert updated.subtotal_ht == 100
        assert updated.total_ttc == 120

    def test_paid_invoice_is_immutable(self, make_invoice):
        invoice = make_invoice(total_ttc=120)
        invoice_service.record_payment(OWNER, invoice.id, 120, payment_method='carte')
        with pytest.raises(ImmutableStateError):
            invoice_service.update_invoice(OWNER, invoice.id, {'notes': 'trop tard'})

    def test_mark_sent(self, make_invoice):
        invoice = make_invoice()
        assert invoice_service.mark_sent(OWNER, invoice.id).status == 'envoyée'

    def test_cancel_hides_invoice(self, make_invoice):
        invoice = make_invoice()
        invoice_service.cancel_invoice(OWNER, invoice.id)
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(OWNER, invoice.id)
        assert invoice_service.list_invoices(OWNER) == []

    def test_paid_invoice_cannot_be_cancelled(self, make_invoice):
        invoice = make_invoice(total_ttc=120)
        invoice_service.record_payment(OWNER, invoice.id, 120, payment_method='carte')
        with pytest.raises(ImmutableStateError):
            invoice_service.cancel_invoice(OWNER, invoice.id)

    def test_cancelled_quote_invoice_allows_new_one(self, accepted_quote):
        invoice = invoice_service.create_from_quote(OWNER, accepted_quote.id)
        invoice_service.cancel_invoice(OWNER, invoice.id)
        replacement = invoice_service.create_from_quote(OWNER, accepted_quote.id)
        assert replacement.id != invoice.id


class TestListAndStats:

    def test_filters(self, make_invoice):
        a = make_invoice(client_id='cl-1', invoice_date='2024-01-10')
        make_invoice(client_id='cl-2', invoice_date='2023-05-10')

        assert [i['id'] for i in invoice_service.list_invoices(OWNER, client_id='cl-1')] == [a.id]
        assert [i['id'] for i in invoice_service.list_invoices(OWNER, year=2024)] == [a.id]

    def test_status_filter_uses_reconciled_status(self, make_invoice):
        invoice = make_invoice(total_ttc=1000, status='envoyée')
        invoice_service.record_payment(OWNER, invoice.id, 100, payment_method='virement')
        make_invoice()

        result = invoice_service.list_invoices(OWNER, status='partiellement_payée')
        assert [i['id'] for i in result] == [invoice.id]

    def test_most_recent_first(self, make_invoice):
        old = make_invoice(invoice_date='2024-01-01')
        new = make_invoice(invoice_date='2024-06-01')
        assert [i['id'] for i in invoice_service.list_invoices(OWNER)] == [new.id, old.id]

    def test_stats(self, make_invoice):
        today = date(2024, 7, 1)
        paid = make_invoice(total_ttc=1200, invoice_date='2024-05-01', status='envoyée')
        invoice_service.record_payment(OWNER, paid.id, 1200, payment_method='virement')

        partial = make_invoice(total_ttc=1000, invoice_date='2024-06-20', status='envoyée')
        invoice_service.record_payment(OWNER, partial.id, 400, payment_method='virement')

        make_invoice(total_ttc=600, invoice_date='2024-05-01', status='envoyée')

        stats = invoice_service.get_stats(OWNER, today=today)
        assert stats['invoiceCount'] == 3
        assert stats['totalRevenue'] == 2800.0
        assert stats['paidAmount'] == 1600.0
        assert stats['unpaidAmount'] == 1200.0
        assert stats['overdueAmount'] == 600.0
        assert stats['paidCount'] == 1
        assert stats['unpaidCount'] == 2


class TestRenderInvoicePdf:

    def test_render(self, make_invoice):
        invoice = make_invoice(invoice_date='2024-04-01', notes='Merci de votre confiance')
        result = invoice_service.render_invoice_pdf(OWNER, invoice.id)
        assert result.data.startswith(b'%PDF')
        assert result.signature_rect is None
        assert result.filename == 'facture-FAC-2024-00001-Marie-Curie-2024-04-01.pdf'
