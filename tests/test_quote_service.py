"""Tests du cycle de vie des devis."""
import io
import logging
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from PyPDF2 import PdfReader
from sqlalchemy.exc import OperationalError

from facturation.exceptions import ValidationError, NotFoundError, ImmutableStateError, RenderFallbackWarning
from facturation.models import Quote, QuoteStatus
from facturation.services import quote_service, invoice_service
from facturation.services.signature_service import FALLBACK_MARKER

OWNER = 'owner-1'


class TestCreateQuote:

    def test_totals_are_computed(self, make_quote):
        quote = make_quote()
        assert quote.total_ht == 500
        assert quote.total_ttc == 600
        assert quote.validity_days == 30

    def test_status_defaults_to_draft(self, make_quote):
        quote = make_quote()
        assert quote.status is None
        assert quote.display_status == 'brouillon'

    def test_client_name_required(self, app, sample_items):
        with pytest.raises(ValidationError):
            quote_service.create_quote(OWNER, {'client_name': ' ', 'items': sample_items})

    def test_non_finite_quantity_rejected(self, app):
        items = [{'description': 'Pose', 'quantity': 'Infinity', 'unitPrice': 10}]
        with pytest.raises(ValidationError):
            quote_service.create_quote(OWNER, {'client_name': 'A', 'items': items})

    def test_validity_must_be_positive(self, app, sample_items):
        with pytest.raises(ValidationError):
            quote_service.create_quote(OWNER, {'client_name': 'A', 'items': sample_items, 'validity_days': 0})

    def test_invalid_status_rejected(self, app, sample_items):
        with pytest.raises(ValidationError):
            quote_service.create_quote(OWNER, {'client_name': 'A', 'items': sample_items, 'status': 'perdu'})

    def test_other_owner_cannot_read(self, make_quote):
        quote = make_quote()
        with pytest.raises(NotFoundError):
            quote_service.get_quote('owner-2', quote.id)


class TestExpiration:

    def _quote(self, validity_days):
        return Quote(created_at=datetime(2024, 3, 1, 9, 0), validity_days=validity_days)

    def test_expired_after_validity(self):
        now = datetime(2024, 3, 1, 9, 0) + timedelta(days=31)
        assert quote_service.is_expired(self._quote(30), now) is True

    def test_not_expired_on_last_day(self):
        now = datetime(2024, 3, 1, 9, 0) + timedelta(days=31)
        assert quote_service.is_expired(self._quote(31), now) is False

    def test_expiration_is_not_persisted(self, make_quote):
        quote = make_quote(created_at=datetime.utcnow() - timedelta(days=40))
        data = quote_service.quote_to_dict(quote)
        assert data['is_expired'] is True
        assert quote.status is None


class TestDisplayNumber:

    def _rows(self):
        return [
            SimpleNamespace(id='a', created_at=datetime(2024, 1, 5)),
            SimpleNamespace(id='b', created_at=datetime(2024, 2, 1)),
            SimpleNamespace(id='c', created_at=datetime(2024, 3, 9)),
            SimpleNamespace(id='z', created_at=datetime(2023, 12, 30)),
        ]

    def test_rank_within_year(self):
        rows = self._rows()
        assert quote_service.compute_display_number(rows, 'a') == '2024-001'
        assert quote_service.compute_display_number(rows, 'c') == '2024-003'
        assert quote_service.compute_display_number(rows, 'z') == '2023-001'

    def test_deletion_shifts_following_numbers(self):
        rows = [r for r in self._rows() if r.id != 'a']
        assert quote_service.compute_display_number(rows, 'c') == '2024-002'

    def test_unknown_quote(self):
        assert quote_service.compute_display_number(self._rows(), 'missing') is None

    def test_list_includes_numbers(self, make_quote):
        first = make_quote(created_at=datetime(2024, 1, 1))
        make_quote(created_at=datetime(2024, 1, 2))
        quotes = quote_service.list_quotes(OWNER)
        numbers = {q['id']: q['number'] for q in quotes}
        assert numbers[first.id] == '2024-001'
        assert len(numbers) == 2


class TestListQuotes:

    def test_draft_filter_includes_null_status(self, make_quote):
        draft = make_quote()
        explicit = make_quote(status='brouillon')
        make_quote(status='envoyé')
        ids = {q['id'] for q in quote_service.list_quotes(OWNER, status='brouillon')}
        assert ids == {draft.id, explicit.id}

    def test_chantier_filter(self, make_quote):
        quote = make_quote(chantier_id='ch-1')
        make_quote(chantier_id='ch-2')
        result = quote_service.list_quotes(OWNER, chantier_id='ch-1')
        assert [q['id'] for q in result] == [quote.id]

    def test_owner_isolation(self, make_quote):
        make_quote(owner_id='owner-2')
        assert quote_service.list_quotes(OWNER) == []


class TestSubmitUpdate:

    def test_items_recomputed(self, make_quote):
        quote = make_quote()
        updated = quote_service.submit_update(OWNER, quote.id, {
            'items': [{'description': 'Pose', 'quantity': 2, 'unitPrice': 100}]
        })
        assert updated.total_ht == 200
        assert updated.total_ttc == 240

    def test_signed_quote_is_immutable(self, make_quote):
        quote = make_quote(status='signé')
        with pytest.raises(ImmutableStateError):
            quote_service.submit_update(OWNER, quote.id, {'client_name': 'Autre client', 'notes': 'x'})

        reloaded = quote_service.get_quote(OWNER, quote.id)
        assert reloaded.client_name == 'Jean Dupont'
        assert reloaded.notes is None

    def test_validated_quote_cannot_go_back(self, make_quote):
        quote = make_quote(status='validé')
        with pytest.raises(ImmutableStateError):
            quote_service.submit_update(OWNER, quote.id, {'status': 'envoyé'})

    def test_invalid_payload_writes_nothing(self, make_quote):
        quote = make_quote()
        with pytest.raises(ValidationError):
            quote_service.submit_update(OWNER, quote.id, {'notes': 'nouvelle note', 'items': []})
        assert quote_service.get_quote(OWNER, quote.id).notes is None

    def test_acceptance_is_timestamped(self, make_quote):
        quote = make_quote(status='envoyé')
        updated = quote_service.submit_update(OWNER, quote.id, {'status': 'accepté'})
        assert updated.accepted_at is not None


class TestSetStatus:

    def test_transition_stamps_accepted_at(self, make_quote):
        quote = make_quote()
        updated = quote_service.set_status(OWNER, quote.id, 'accepté')
        assert updated.status == 'accepté'
        assert updated.accepted_at is not None

    def test_refused_does_not_stamp(self, make_quote):
        quote = make_quote()
        updated = quote_service.set_status(OWNER, quote.id, 'refusé')
        assert updated.status == 'refusé'
        assert updated.accepted_at is None

    def test_signed_quote_cannot_change(self, make_quote):
        quote = make_quote(status='signé')
        with pytest.raises(ImmutableStateError):
            quote_service.set_status(OWNER, quote.id, 'brouillon')

    def test_signed_to_signed_is_noop(self, make_quote):
        quote = make_quote(status='signé')
        assert quote_service.set_status(OWNER, quote.id, 'signé').status == 'signé'

    def test_missing_accepted_at_column_degrades(self, make_quote, monkeypatch, caplog):
        """Sans colonne accepted_at, le statut est écrit sans horodatage."""
        quote = make_quote(status='envoyé')
        original = quote_service._write_quote
        calls = []

        def flaky_write(owner_id, quote_id, values):
            calls.append(dict(values))
            if 'accepted_at' in values:
                raise OperationalError('UPDATE quotes', {}, Exception('no such column: accepted_at'))
            original(owner_id, quote_id, values)

        monkeypatch.setattr(quote_service, '_write_quote', flaky_write)

        with caplog.at_level(logging.WARNING):
            updated = quote_service.set_status(OWNER, quote.id, 'accepté')

        assert updated.status == 'accepté'
        assert updated.accepted_at is None
        assert len(calls) == 2
        assert 'accepted_at' not in calls[1]
        assert 'accepted_at' in caplog.text

    def test_other_store_errors_propagate(self, make_quote, monkeypatch):
        quote = make_quote()

        def broken_write(owner_id, quote_id, values):
            raise OperationalError('UPDATE quotes', {}, Exception('database is locked'))

        monkeypatch.setattr(quote_service, '_write_quote', broken_write)

        from facturation.exceptions import StoreUnavailableError
        with pytest.raises(StoreUnavailableError):
            quote_service.set_status(OWNER, quote.id, 'envoyé')


class TestDeleteQuote:

    def test_delete(self, make_quote):
        quote = make_quote()
        quote_service.delete_quote(OWNER, quote.id)
        with pytest.raises(NotFoundError):
            quote_service.get_quote(OWNER, quote.id)

    def test_signed_quote_cannot_be_deleted(self, make_quote):
        quote = make_quote(status='signé')
        with pytest.raises(ImmutableStateError):
            quote_service.delete_quote(OWNER, quote.id)

    def test_invoiced_quote_cannot_be_deleted(self, accepted_quote):
        invoice_service.create_from_quote(OWNER, accepted_quote.id)
        with pytest.raises(ImmutableStateError):
            quote_service.delete_quote(OWNER, accepted_quote.id)


class TestSignQuote:

    def _signature(self, png_base64, **extra):
        data = {'signature_data': png_base64, 'first_name': 'Jean', 'last_name': 'Dupont'}
        data.update(extra)
        return data

    def test_sign_produces_pdf_and_locks_quote(self, make_quote, png_base64):
        quote = make_quote(status='envoyé')
        result = quote_service.sign_quote(OWNER, quote.id, self._signature(png_base64))

        assert result.data.startswith(b'%PDF')
        assert result.filename.startswith('devis-')

        signed = quote_service.get_quote(OWNER, quote.id)
        assert signed.status == QuoteStatus.SIGNE.value
        assert signed.signer_first_name == 'Jean'
        assert signed.signer_last_name == 'Dupont'
        assert signed.signed_at is not None
        assert signed.accepted_at is not None

    def test_sign_with_explicit_rect(self, make_quote, png_base64):
        quote = make_quote()
        rect = {'x': 20, 'y': 200, 'width': 60, 'height': 25}
        result = quote_service.sign_quote(OWNER, quote.id, self._signature(png_base64, rect=rect))
        assert result.data.startswith(b'%PDF')

    def test_signer_names_required(self, make_quote, png_base64):
        quote = make_quote()
        with pytest.raises(ValidationError):
            quote_service.sign_quote(OWNER, quote.id, self._signature(png_base64, last_name=''))
        assert quote_service.get_quote(OWNER, quote.id).status is None

    @pytest.mark.parametrize('signature_data', ['%%%', ''])
    def test_unreadable_signature_still_signs(self, make_quote, signature_data):
        """Une image illisible ou absente donne un devis signé avec la mention texte."""
        quote = make_quote(status='envoyé')
        with pytest.warns(RenderFallbackWarning):
            result = quote_service.sign_quote(OWNER, quote.id, self._signature(signature_data))

        text = PdfReader(io.BytesIO(result.data)).pages[-1].extract_text()
        assert text.count(FALLBACK_MARKER[:4]) >= 2
        assert quote_service.get_quote(OWNER, quote.id).status == QuoteStatus.SIGNE.value

    def test_invalid_rect(self, make_quote, png_base64):
        quote = make_quote()
        with pytest.raises(ValidationError):
            quote_service.sign_quote(OWNER, quote.id, self._signature(png_base64, rect={'x': 1}))

    def test_cannot_sign_twice(self, make_quote, png_base64):
        quote = make_quote()
        quote_service.sign_quote(OWNER, quote.id, self._signature(png_base64))
        with pytest.raises(ImmutableStateError):
            quote_service.sign_quote(OWNER, quote.id, self._signature(png_base64))


class TestRenderQuotePdf:

    def test_render(self, make_quote):
        quote = make_quote()
        result = quote_service.render_quote_pdf(OWNER, quote.id)
        assert result.data.startswith(b'%PDF')
        assert result.signature_rect is not None
        year = quote.created_at.year
        assert result.filename.startswith(f'devis-{year}-001-Jean-Dupont-')
