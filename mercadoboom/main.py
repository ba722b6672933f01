# mercadoboom/main.py
import logging
import time

from flask import Flask, g, jsonify, request, session
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from mercadoboom.config import Config
from mercadoboom.database import Base, close_db, engine, get_db, session_scope
from mercadoboom.models import User
from mercadoboom.blueprints.addresses import addresses_bp
from mercadoboom.blueprints.admin import admin_bp
from mercadoboom.blueprints.auth import auth_bp
from mercadoboom.blueprints.cart import cart_bp
from mercadoboom.blueprints.catalog import catalog_bp
from mercadoboom.blueprints.objects import objects_bp
from mercadoboom.blueprints.orders import orders_bp
from mercadoboom.blueprints.payments import payments_bp
from mercadoboom.blueprints.promotions import promotions_bp
from mercadoboom.blueprints.security import security_bp
from mercadoboom.blueprints.support import support_bp
from mercadoboom.observability import (
    check_database_health,
    configure_logging,
    increment_counter,
    observe_latency,
)
from mercadoboom.observability.logging_config import ensure_request_id
from mercadoboom.seed import seed_defaults

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)

for blueprint in (
    auth_bp,
    security_bp,
    catalog_bp,
    promotions_bp,
    addresses_bp,
    cart_bp,
    orders_bp,
    payments_bp,
    support_bp,
    objects_bp,
    admin_bp,
):
    app.register_blueprint(blueprint)

logger = logging.getLogger(__name__)


def init_database():
    """Create tables and the startup data."""
    try:
        Base.metadata.create_all(bind=engine)
        with session_scope() as session:
            seed_defaults(session)
        logger.info("Database tables initialized successfully")
    except SQLAlchemyError as e:
        logger.exception("Error initializing database: %s", e)


init_database()


@app.before_request
def before_request_logging():
    g.current_user = None
    if 'user_id' in session:
        user = get_db().get(User, session['user_id'])
        if user is None or user.is_blocked:
            # Blocked or deleted accounts lose their session immediately
            session.pop('user_id', None)
        else:
            g.current_user = user
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    if response.status_code >= 500:
        increment_counter(
            "http_errors_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    request_id = getattr(g, 'request_id', None)
    if request_id:
        response.headers[Config.REQUEST_ID_HEADER] = request_id
    return response


@app.teardown_appcontext
def teardown_db(exception):
    close_db(exception)


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return jsonify({"error": error.description}), error.code
    db = g.get('db')
    if db is not None:
        db.rollback()
    increment_counter(
        "http_unhandled_exceptions_total",
        labels={"endpoint": request.endpoint or request.path, "exception": type(error).__name__},
    )
    logger.exception("Unhandled error while serving %s", request.path)
    return jsonify({"error": "Error interno del servidor"}), 500


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status
        }
    }), status_code
