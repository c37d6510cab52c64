from functools import wraps
from dataclasses import dataclass
from flask import request, jsonify, g
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request, get_jwt
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """
    Utilisateur authentifié et compte pour lequel il agit.
    owner_id == user_id sauf pour un membre d'équipe agissant pour un titulaire.
    """
    user_id: str
    owner_id: str

    @property
    def is_delegate(self) -> bool:
        return self.user_id != self.owner_id


def user_required(fn):
    """
    Décorateur qui vérifie:
    1. JWT valide
    2. Identité présente
    3. Claim optionnel 'acting_for' (membre d'équipe agissant pour un titulaire)

    Stocke l'Actor dans g.actor, transmis explicitement aux services par les routes
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        # Skip JWT verification for OPTIONS (CORS preflight)
        if request.method == 'OPTIONS':
            return fn(*args, **kwargs)

        try:
            verify_jwt_in_request()
        except Exception as e:
            logger.warning(f"JWT verification failed: {e}")
            return jsonify({'error': 'Token invalide', 'code': 'UNAUTHORIZED'}), 401

        user_id = get_jwt_identity()
        if not user_id:
            return jsonify({'error': 'Token invalide', 'code': 'UNAUTHORIZED'}), 401

        claims = get_jwt()
        owner_id = claims.get('acting_for') or user_id

        g.actor = Actor(user_id=str(user_id), owner_id=str(owner_id))
        if g.actor.is_delegate:
            logger.debug(f"User {user_id} acting for owner {owner_id}")

        return fn(*args, **kwargs)

    return wrapper
