from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from datetime import timedelta
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    return int(raw)


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(seconds=_env_int('JWT_ACCESS_TOKEN_EXPIRES', 8 * 3600))
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['VISITOR_REQUEST_TTL_HOURS'] = _env_int('VISITOR_REQUEST_TTL_HOURS', 24)
    app.config['COMPANY_CACHE_TTL_SECONDS'] = _env_int('COMPANY_CACHE_TTL_SECONDS', 300)
    app.config['EXPORT_MAX_ROWS'] = _env_int('EXPORT_MAX_ROWS', 10000)
    app.config['QR_SERVICE_URL'] = os.getenv('QR_SERVICE_URL', 'https://api.qrserver.com/v1/create-qr-code/')
    app.config['QR_SIZE'] = _env_int('QR_SIZE', 200)
    app.config['PUBLIC_BASE_URL'] = os.getenv('PUBLIC_BASE_URL', 'http://localhost:5173')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    app.logger.setLevel(getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO))

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .services.cache import TTLCache
    app.extensions['company_cache'] = TTLCache(app.config['COMPANY_CACHE_TTL_SECONDS'])

    from .routes.iam import iam_bp
    from .routes.permits import permits_bp
    from .routes.meters import meters_bp
    from .routes.checkin import checkin_bp
    from .routes.companies import companies_bp
    from .routes.preapprovals import preapprovals_bp
    from .routes.dashboard import dashboard_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(permits_bp, url_prefix='/permits')
    app.register_blueprint(meters_bp, url_prefix='/meters')
    app.register_blueprint(checkin_bp, url_prefix='/vms/checkin')
    app.register_blueprint(companies_bp, url_prefix='/vms')
    app.register_blueprint(preapprovals_bp, url_prefix='/vms/preapprovals')
    app.register_blueprint(dashboard_bp, url_prefix='/dashboard')

    @app.teardown_appcontext
    def remove_session(exc=None):
        SessionLocal.remove()

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            error_code = getattr(e, 'error_code', None)
            if error_code:
                payload['error']['code'] = error_code
            extra = getattr(e, 'extra', None)
            if extra:
                payload['error'].update(extra)
            return payload, e.code
        # Persistence and other unexpected failures surface as a generic 500
        app.logger.exception('Unhandled exception')
        try:
            get_db().rollback()
        except Exception:
            app.logger.warning('Session rollback failed after unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    from .openapi import build_openapi_spec

    @app.route('/openapi.json')
    def openapi_spec():
        return build_openapi_spec()

    @app.route('/docs')
    def docs_index():
        # Redoc from CDN, no local install
        return (
            "<!DOCTYPE html><html><head><title>PermitDesk API Docs</title>"
            "<link rel=\"stylesheet\" href=\"https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.css\" />"
            "</head><body><redoc spec-url='/openapi.json'></redoc>"
            "<script src='https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.js'></script>"
            "</body></html>"
        )

    return app


def get_db():
    return SessionLocal()
