"""
Exceptions métier
=================

Taxonomie des erreurs remontées par les services. Les routes les convertissent
en réponses JSON via les error handlers enregistrés dans create_app().
"""


class FacturationError(Exception):
    """Base class for all domain errors."""

    status_code = 400
    code = 'ERROR'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': self.message, 'code': self.code}


class ValidationError(FacturationError):
    """Champ requis manquant ou mal formé. Message transmis tel quel."""

    status_code = 400
    code = 'VALIDATION_ERROR'


class NotFoundError(FacturationError):
    """Ressource absente (ou appartenant à un autre compte)."""

    status_code = 404
    code = 'NOT_FOUND'


class ImmutableStateError(FacturationError):
    """Mutation tentée sur un devis signé ou une facture payée/annulée."""

    status_code = 403
    code = 'IMMUTABLE_STATE'


class OverpaymentError(FacturationError):
    """Paiement supérieur au montant restant dû."""

    status_code = 400
    code = 'OVERPAYMENT'

    def __init__(self, remaining: float):
        self.remaining = round(remaining, 2)
        super().__init__(
            f"Montant supérieur au montant restant ({self.remaining:.2f} €)"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['remaining_amount'] = self.remaining
        return data


class ExternalServiceError(FacturationError):
    """Base de données injoignable ou schéma incomplet. Erreur ré-essayable."""

    status_code = 503
    code = 'EXTERNAL_SERVICE_ERROR'
    retryable = True

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['retryable'] = self.retryable
        return data


class StoreUnavailableError(ExternalServiceError):
    code = 'STORE_UNAVAILABLE'


class SchemaMissingError(ExternalServiceError):
    code = 'SCHEMA_MISSING'


class RenderFallbackWarning(UserWarning):
    """Signature remplacée par un marqueur texte. Journalisée, jamais levée."""
