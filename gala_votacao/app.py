import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from flask import Flask, current_app, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .admission import cast_vote
from .audit import record_action
from .auth import authenticate, require_admin
from .config import DEFAULT_JWT_SECRET, cors_origins, database_uri, engine_options, load_settings
from .errors import InternalError, ValidationError, VotingAppError
from .listing import list_candidates
from .models import db
from .rate_limit import DatabaseRateLimitStore, LoginRateLimiter, MemoryRateLimitStore, VoteRateLimiter
from .stats import build_dashboard
from .store import DataStore, SQLAlchemyStore, SupabaseStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXTENSION_KEY = 'gala_votacao'
CONFIG_KEYS = ('votacao_ativa', 'data_inicio_votacao', 'data_fim_votacao', 'mostrar_confete', 'data_gala')
MASKED_FIELDS = ('password', 'dispositivo_id')

# User-facing message for internal errors, per endpoint
INTERNAL_ERROR_MESSAGES = {
    'votar': 'Erro ao processar seu voto. Por favor, tente novamente.',
    'listar': 'Erro ao buscar candidatos',
    'dashboard': 'Erro ao buscar estatísticas',
    'login': 'Erro no servidor. Tente novamente mais tarde.',
}


def client_ip() -> str:
    """First X-Forwarded-For hop, else the socket address."""
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or 'unknown'


def get_store() -> DataStore:
    return current_app.extensions[EXTENSION_KEY]['store']


def config_value(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return None
    return str(value)


def build_store(app: Flask) -> DataStore:
    if app.config['DATA_STORE'] == 'supabase':
        logger.info("✅ Using Supabase data store")
        return SupabaseStore(app.config['SUPABASE_URL'], app.config['SUPABASE_KEY'],
                             timeout=app.config['STORE_TIMEOUT'])
    logger.info(f"✅ Using SQL data store ({app.config['SQLALCHEMY_DATABASE_URI'].split(':', 1)[0]})")
    return SQLAlchemyStore(db)


def create_app(config: Optional[Dict[str, Any]] = None, store: Optional[DataStore] = None) -> Flask:
    settings = load_settings()
    if config:
        settings.update(config)

    app = Flask(__name__)
    app.config.update(settings)

    if app.config['JWT_SECRET'] == DEFAULT_JWT_SECRET:
        logger.warning("⚠ JWT_SECRET not found in environment, using the development default.")

    # Database configuration
    uri = app.config.get('SQLALCHEMY_DATABASE_URI') or database_uri(app.config.get('DATABASE_URL'))
    app.config['SQLALCHEMY_DATABASE_URI'] = uri
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', engine_options(uri))
    db.init_app(app)

    if store is None:
        store = build_store(app)
    if isinstance(store, SQLAlchemyStore) or app.config['RATE_LIMIT_BACKEND'] == 'database':
        with app.app_context():
            db.create_all()

    if app.config['RATE_LIMIT_BACKEND'] == 'database':
        limiter_store = DatabaseRateLimitStore(db)
        # Clean up stale counters on startup
        with app.app_context():
            limiter_store.cleanup_expired()
    else:
        limiter_store = MemoryRateLimitStore()

    app.extensions[EXTENSION_KEY] = {
        'store': store,
        'vote_limiter': VoteRateLimiter(limiter_store),
        'login_limiter': LoginRateLimiter(limiter_store),
    }

    origins = cors_origins(app.config.get('FRONTEND_URL'), app.config.get('ALLOWED_ORIGIN', ''))
    CORS(app,
         origins=origins,
         methods=["GET", "POST", "PUT", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization"],
         max_age=3600)
    logger.info(f"✅ CORS configured for origins: {origins}")

    # Add request logging middleware
    @app.before_request
    def log_request_info():
        """Log incoming requests for debugging"""
        logger.info(f"📥 {request.method} {request.path} from {request.origin or request.remote_addr}")
        if request.method in ['POST', 'PUT']:
            data = request.get_json(silent=True)
            if isinstance(data, dict):
                # Log request data but mask sensitive fields
                safe_data = {k: ('***' if k in MASKED_FIELDS else v) for k, v in data.items()}
                logger.debug(f"Request data: {safe_data}")

    # Add global error handlers
    def internal_error_response(message: str):
        body = {
            "success": False,
            "message": INTERNAL_ERROR_MESSAGES.get(request.endpoint, "Erro interno do servidor"),
            "error": message if app.config.get('DEBUG_ERRORS') else None,
        }
        return jsonify(body), 500

    @app.errorhandler(VotingAppError)
    def handle_app_error(error):
        if isinstance(error, InternalError) and error.status_code >= 500:
            logger.error(f"❌ {request.method} {request.path} failed: {error.message}", exc_info=True)
            return internal_error_response(error.message)
        logger.warning(f"⚠ {request.method} {request.path} rejected ({error.status_code}): {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 errors"""
        logger.warning(f"⚠ 404 Not Found: {request.path}")
        return jsonify({
            "success": False,
            "message": "Endpoint não encontrado"
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            "success": False,
            "message": "Método não permitido"
        }), 405

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle all unhandled exceptions"""
        if isinstance(e, HTTPException):
            return jsonify({"success": False, "message": e.description}), e.code
        logger.error(f"❌ Unhandled exception: {e}", exc_info=True)
        return internal_error_response(str(e))

    @app.get("/api/health")
    def health_check():
        """Health check endpoint to verify backend is running"""
        connected = get_store().ping()
        return jsonify({
            "status": "ok",
            "message": "Backend is running",
            "database": "connected" if connected else "error",
            "timestamp": datetime.now().isoformat()
        }), 200

    @app.post("/votar")
    def votar():
        """Cast a vote; one vote per device per category per day"""
        ip = client_ip()
        current_app.extensions[EXTENSION_KEY]['vote_limiter'].hit(ip)

        data = request.get_json(silent=True)
        if not data or not isinstance(data, dict):
            raise ValidationError('Dados inválidos')

        result = cast_vote(get_store(), data, ip, request.headers.get('User-Agent', ''))
        return jsonify({"success": True, **result}), 201

    @app.get("/listar")
    def listar():
        """Candidates with filters, ordering and pagination"""
        return jsonify(list_candidates(get_store(), request.args))

    @app.get("/dashboard")
    def dashboard():
        started = time.perf_counter()
        stats = build_dashboard(get_store(), include_monthly=request.args.get('include_monthly') == 'true')
        return jsonify({
            "success": True,
            "data": stats,
            "timestamp": datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            "generated_in": f"{round(time.perf_counter() - started, 3)}s"
        })

    @app.post("/login")
    def login():
        """Admin login with email and password"""
        ip = client_ip()
        limiter = current_app.extensions[EXTENSION_KEY]['login_limiter']
        data = request.get_json(silent=True)
        if not data or not isinstance(data, dict):
            limiter.check(ip)
            raise ValidationError('Dados inválidos')

        result = authenticate(
            get_store(),
            limiter,
            data.get('email', ''),
            data.get('password', ''),
            data.get('remember', False),
            ip,
            request.headers.get('User-Agent', ''),
            app.config['JWT_SECRET'],
        )
        return jsonify({"success": True, **result})

    @app.get("/admin/config")
    @require_admin
    def get_admin_config():
        store = get_store()
        return jsonify({
            "success": True,
            "data": {key: store.get_config(key) for key in CONFIG_KEYS}
        })

    @app.put("/admin/config")
    @require_admin
    def update_admin_config():
        """Update operational flags (admin only)"""
        data = request.get_json(silent=True)
        if not data or not isinstance(data, dict):
            raise ValidationError('Dados inválidos')
        unknown = sorted(set(data) - set(CONFIG_KEYS))
        if unknown:
            raise ValidationError(f"Chaves de configuração desconhecidas: {', '.join(unknown)}")

        store = get_store()
        for key, value in data.items():
            store.set_config(key, config_value(value))

        admin_id = g.admin.get('id')
        record_action(store, 'config_update', tabela='configuracoes', admin_id=admin_id,
                      detalhes={key: config_value(value) for key, value in data.items()},
                      ip_address=client_ip())
        logger.info(f"✅ Config updated by admin {admin_id}: {sorted(data)}")
        return jsonify({
            "success": True,
            "message": "Configurações atualizadas",
            "data": {key: store.get_config(key) for key in CONFIG_KEYS}
        })

    return app
