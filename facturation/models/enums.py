"""
Enums - Types énumérés pour les modèles
=======================================

Statuts des devis, des factures et moyens de paiement.
Les valeurs sont celles stockées en base (français, avec accents).
"""

import enum


class QuoteStatus(enum.Enum):
    """Statuts possibles d'un devis"""
    BROUILLON = 'brouillon'      # Affiché tant que le statut n'est pas renseigné
    ENVOYE = 'envoyé'
    ACCEPTE = 'accepté'
    REFUSE = 'refusé'
    EXPIRE = 'expiré'
    VALIDE = 'validé'            # Verrouillé: facture émise
    SIGNE = 'signé'              # Verrouillé définitivement

    @classmethod
    def get_label(cls, status: str, lang: str = 'fr') -> str:
        """Retourne le label traduit d'un statut"""
        labels = {
            'fr': {
                'brouillon': 'Brouillon',
                'envoyé': 'Envoyé',
                'accepté': 'Accepté',
                'refusé': 'Refusé',
                'expiré': 'Expiré',
                'validé': 'Validé',
                'signé': 'Signé'
            },
            'en': {
                'brouillon': 'Draft',
                'envoyé': 'Sent',
                'accepté': 'Accepted',
                'refusé': 'Refused',
                'expiré': 'Expired',
                'validé': 'Validated',
                'signé': 'Signed'
            }
        }
        return labels.get(lang, labels['fr']).get(status or 'brouillon', status)

    @classmethod
    def accepted_states(cls) -> list:
        """Statuts qui horodatent accepted_at et autorisent la facturation"""
        return [cls.ACCEPTE.value, cls.VALIDE.value, cls.SIGNE.value]

    @classmethod
    def locked_states(cls) -> list:
        return [cls.VALIDE.value, cls.SIGNE.value]

    @classmethod
    def is_valid(cls, status: str) -> bool:
        """Vérifie si un statut est valide"""
        return status in [s.value for s in cls]


class InvoiceStatus(enum.Enum):
    """Statuts possibles d'une facture"""
    BROUILLON = 'brouillon'
    ENVOYEE = 'envoyée'
    PARTIELLEMENT_PAYEE = 'partiellement_payée'
    PAYEE = 'payée'
    ANNULEE = 'annulée'

    @classmethod
    def get_label(cls, status: str, lang: str = 'fr') -> str:
        labels = {
            'fr': {
                'brouillon': 'Brouillon',
                'envoyée': 'Envoyée',
                'partiellement_payée': 'Partiellement payée',
                'payée': 'Payée',
                'annulée': 'Annulée'
            },
            'en': {
                'brouillon': 'Draft',
                'envoyée': 'Sent',
                'partiellement_payée': 'Partially paid',
                'payée': 'Paid',
                'annulée': 'Cancelled'
            }
        }
        return labels.get(lang, labels['fr']).get(status, status)

    @classmethod
    def editable_states(cls) -> list:
        """Statuts qu'un utilisateur peut fixer explicitement"""
        return [cls.BROUILLON.value, cls.ENVOYEE.value]


class PaymentMethod(enum.Enum):
    """Moyens de paiement"""
    VIREMENT = 'virement'
    CHEQUE = 'cheque'
    ESPECES = 'especes'
    CARTE = 'carte'
    AUTRE = 'autre'

    @classmethod
    def get_label(cls, method: str) -> str:
        labels = {
            'virement': 'Virement',
            'cheque': 'Chèque',
            'especes': 'Espèces',
            'carte': 'Carte bancaire',
            'autre': 'Autre'
        }
        return labels.get(method, method)

    @classmethod
    def is_valid(cls, method: str) -> bool:
        return method in [m.value for m in cls]
