"""
Application Flask - Facturation Backend
API REST pour les devis, factures et paiements
"""

from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from config import config
import logging

db = SQLAlchemy()
jwt = JWTManager()
migrate = Migrate()


def get_rate_limit_key():
    """
    Retourne la clé pour le rate limiting.
    - 'preflight' pour les requêtes OPTIONS (CORS preflight)
    - IP de l'utilisateur sinon
    """
    if request.method == 'OPTIONS':
        return 'preflight'

    ip = get_remote_address()
    if not ip:
        ip = request.headers.get('X-Forwarded-For', request.headers.get('X-Real-IP', '127.0.0.1'))
        if ',' in ip:
            ip = ip.split(',')[0].strip()

    return ip or '127.0.0.1'


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=["1000 per day", "200 per hour"],
)

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(config_name='default'):
    """
    Factory function pour créer l'application Flask

    Args:
        config_name: Nom de la configuration (development, production, testing)

    Returns:
        Flask app configurée
    """
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    logging.getLogger('facturation').setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    if config_name == 'production':
        config[config_name].init_app(app)

    # Initialisation des extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    cors_origins = app.config.get('CORS_ORIGINS', ['http://localhost:3000'])
    CORS(app, resources={
        r"/api/*": {
            "origins": cors_origins,
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": app.config.get('CORS_ALLOW_HEADERS', ["Content-Type", "Authorization"]),
            "expose_headers": app.config.get('CORS_EXPOSE_HEADERS', ["Content-Disposition"]),
            "supports_credentials": app.config.get('CORS_SUPPORTS_CREDENTIALS', True)
        }
    })

    @app.after_request
    def add_security_headers(response):
        if config_name == 'production':
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        return response

    # ==================== BLUEPRINTS ====================

    from facturation.routes.quotes import quotes_bp
    app.register_blueprint(quotes_bp, url_prefix='/api/quotes')

    from facturation.routes.invoices import invoices_bp
    app.register_blueprint(invoices_bp, url_prefix='/api/invoices')

    # ==================== ERROR HANDLERS ====================

    from facturation.exceptions import FacturationError, ExternalServiceError

    @app.errorhandler(FacturationError)
    def domain_error(error):
        if isinstance(error, ExternalServiceError):
            logger.error(f"Erreur base de données: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return {'error': 'Requête invalide', 'code': 'BAD_REQUEST'}, 400

    @app.errorhandler(401)
    def unauthorized(error):
        return {'error': 'Non autorisé', 'code': 'UNAUTHORIZED'}, 401

    @app.errorhandler(404)
    def not_found(error):
        return {'error': 'Ressource non trouvée', 'code': 'NOT_FOUND'}, 404

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        return {'error': 'Trop de requêtes. Réessayez plus tard.', 'code': 'RATE_LIMITED'}, 429

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Erreur interne: {str(error)}")
        return {'error': 'Erreur interne du serveur', 'code': 'INTERNAL_ERROR'}, 500

    # ==================== HEALTH CHECK ====================

    @app.route('/api/health')
    def health_check():
        """Endpoint de vérification de santé"""
        return {'status': 'healthy', 'version': '1.0.0'}

    logger.info(f"Application démarrée en mode {config_name}")

    return app
