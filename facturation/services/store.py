"""
Accès base de données
=====================

Toutes les lectures / écritures des services passent par ici. Les erreurs
SQLAlchemy sont classées dans un StoreResult explicite (ok, introuvable,
base indisponible, schéma incomplet) au lieu d'être journalisées puis
transformées en None.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from facturation import db
from facturation.exceptions import NotFoundError, StoreUnavailableError, SchemaMissingError

logger = logging.getLogger(__name__)

# Codes PostgreSQL: colonne / table inexistante
UNDEFINED_COLUMN = '42703'
UNDEFINED_TABLE = '42P01'

_SCHEMA_MARKERS = ('no such column', 'no such table', 'does not exist', 'could not find the table')


class StoreStatus(enum.Enum):
    OK = 'ok'
    NOT_FOUND = 'not_found'
    UNAVAILABLE = 'unavailable'
    SCHEMA_MISSING = 'schema_missing'


@dataclass
class StoreResult:
    """Résultat d'un accès base"""
    status: StoreStatus
    value: Any = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, value=None) -> 'StoreResult':
        return cls(StoreStatus.OK, value)

    @classmethod
    def not_found(cls, message: str) -> 'StoreResult':
        return cls(StoreStatus.NOT_FOUND, message=message)

    @classmethod
    def from_error(cls, error: SQLAlchemyError) -> 'StoreResult':
        if is_schema_error(error):
            return cls(StoreStatus.SCHEMA_MISSING, message='Schéma de base de données incomplet')
        return cls(StoreStatus.UNAVAILABLE, message='Base de données indisponible')

    def unwrap(self):
        """Renvoie la valeur ou lève l'exception métier correspondante"""
        if self.status is StoreStatus.OK:
            return self.value
        if self.status is StoreStatus.NOT_FOUND:
            raise NotFoundError(self.message)
        if self.status is StoreStatus.SCHEMA_MISSING:
            raise SchemaMissingError(self.message)
        raise StoreUnavailableError(self.message)


def error_code(error: SQLAlchemyError) -> Optional[str]:
    """Code SQLSTATE de l'erreur DBAPI sous-jacente, si disponible"""
    orig = getattr(error, 'orig', None)
    return getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)


def is_schema_error(error: SQLAlchemyError) -> bool:
    if error_code(error) in (UNDEFINED_COLUMN, UNDEFINED_TABLE):
        return True
    message = str(getattr(error, 'orig', error)).lower()
    return any(marker in message for marker in _SCHEMA_MARKERS)


def is_missing_column(error: SQLAlchemyError, column: str) -> bool:
    """Vrai si l'erreur signale l'absence de la colonne donnée, et d'aucune autre"""
    message = str(getattr(error, 'orig', error)).strip()
    # la première ligne seule: PostgreSQL cite ensuite la requête fautive
    first_line = message.splitlines()[0] if message else ''
    if column not in first_line:
        return False
    return is_schema_error(error)


def fetch_owned(model, owner_id: str, record_id: str, label: str,
                for_update: bool = False, include_deleted: bool = True) -> StoreResult:
    """
    Charge une ligne appartenant au compte.

    Args:
        model: Classe du modèle
        owner_id: Compte propriétaire
        record_id: Identifiant
        label: Message d'erreur si introuvable
        for_update: Verrouille la ligne (SELECT ... FOR UPDATE)
        include_deleted: Si False, ignore les lignes avec deleted_at
    """
    try:
        query = model.query.filter_by(id=record_id, owner_id=owner_id)
        if not include_deleted:
            query = query.filter(model.deleted_at.is_(None))
        if for_update:
            query = query.with_for_update()
        row = query.first()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Erreur lecture {model.__tablename__}/{record_id}: {e}")
        return StoreResult.from_error(e)

    if row is None:
        return StoreResult.not_found(label)
    return StoreResult.ok(row)


def fetch_all(query) -> StoreResult:
    try:
        return StoreResult.ok(query.all())
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Erreur lecture: {e}")
        return StoreResult.from_error(e)


def commit() -> StoreResult:
    """Valide la transaction courante, rollback en cas d'échec"""
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Erreur écriture: {e}")
        return StoreResult.from_error(e)
    return StoreResult.ok()
