"""
Flask Application Factory
Initializes and configures the Flask application
"""

import os
from flask import Flask, g, jsonify, request
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException

from config import config
from fueldesk.errors import FuelDeskError
from fueldesk.models import db, User

# Initialize extensions
login_manager = LoginManager()
migrate = Migrate()
csrf = CSRFProtect()


def _error_response(code, message, status_code, details=None):
    return jsonify({
        'success': False,
        'error': {'code': code, 'message': message, 'details': details or {}}
    }), status_code


def create_app(config_name='default'):
    """
    Application factory pattern
    Creates and configures Flask application
    """
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])

    # Validate secret key in production
    if config_name == 'production':
        if not app.config.get('SECRET_KEY') or app.config['SECRET_KEY'] == 'dev-secret-key-change-in-production':
            raise ValueError("Production requires a secure SECRET_KEY. Set it via environment variable.")

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        """Load user by ID for Flask-Login"""
        return db.session.get(User, int(user_id))

    @login_manager.request_loader
    def load_user_from_request(req):
        """
        Identity is established upstream; the proxy forwards the
        authenticated user id in a header.
        """
        header = app.config.get('ACTOR_HEADER', 'X-Actor-Id')
        value = req.headers.get(header)
        if not value:
            return None
        try:
            user_id = int(value)
        except ValueError:
            return None
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @app.before_request
    def reset_request_identity():
        """Identity is resolved per request even when the app context outlives it"""
        g.pop('_login_user', None)
        g.pop('actor', None)

    @login_manager.unauthorized_handler
    def unauthorized():
        return _error_response('Unauthorized', 'Authentication required', 401)

    os.makedirs(app.config['LOG_FOLDER'], exist_ok=True)

    # Register blueprints; the JSON API is header-authenticated, not cookie-based
    from fueldesk.routes.readings import bp as readings_bp
    from fueldesk.routes.closures import bp as closures_bp
    from fueldesk.routes.creditors import bp as creditors_bp
    from fueldesk.routes.stations import bp as stations_bp

    for blueprint in (readings_bp, closures_bp, creditors_bp, stations_bp):
        csrf.exempt(blueprint)
        app.register_blueprint(blueprint)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'service': app.config.get('BUSINESS_NAME', 'FuelDesk')})

    # Error handlers
    @app.errorhandler(FuelDeskError)
    def handle_core_error(error):
        db.session.rollback()
        app.logger.info(f"{error.code} on {request.method} {request.path}: {error.message}")
        return _error_response(error.code, error.message, error.status_code, error.details)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(error):
        return _error_response('CSRFError', 'CSRF token missing or invalid', 400)

    @app.errorhandler(404)
    def not_found_error(error):
        return _error_response('NotFound', 'Resource not found', 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error_response('MethodNotAllowed', 'Method not allowed', 405)

    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException):
            return _error_response(error.name.replace(' ', ''), error.description, error.code)
        db.session.rollback()
        from fueldesk.utils.error_logger import log_error
        log_error(error, 500)
        return _error_response('InternalError', 'An unexpected error occurred', 500)

    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses"""
        # Prevent clickjacking
        response.headers['X-Frame-Options'] = 'DENY'

        # Prevent MIME type sniffing
        response.headers['X-Content-Type-Options'] = 'nosniff'

        # Referrer policy
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        return response

    return app
