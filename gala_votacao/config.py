"""
Settings read from the environment (and a .env file if present).
create_app() layers an explicit mapping on top of these.
"""
import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = 'change_this_secret_key_in_production'
DEFAULT_SQLITE_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'votacao.db')


def _bool_env(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() == 'true'


def load_settings() -> Dict[str, Any]:
    load_dotenv()
    return {
        'DATABASE_URL': os.getenv('DATABASE_URL'),
        'DATA_STORE': os.getenv('DATA_STORE', 'sql').strip().lower(),
        'SUPABASE_URL': os.getenv('SUPABASE_URL'),
        'SUPABASE_KEY': os.getenv('SUPABASE_KEY'),
        'STORE_TIMEOUT': float(os.getenv('STORE_TIMEOUT', '30')),
        'JWT_SECRET': os.getenv('JWT_SECRET') or DEFAULT_JWT_SECRET,
        'DEBUG_ERRORS': _bool_env('DEBUG'),
        'RATE_LIMIT_BACKEND': os.getenv('RATE_LIMIT_BACKEND', 'memory').strip().lower(),
        'FRONTEND_URL': os.getenv('FRONTEND_URL'),
        'ALLOWED_ORIGIN': os.getenv('ALLOWED_ORIGIN', '').strip(),
    }


def database_uri(database_url: Optional[str]) -> str:
    """SQLAlchemy URI; SQLite file next to the package when DATABASE_URL is not set."""
    if not database_url:
        return f'sqlite:///{DEFAULT_SQLITE_PATH}'
    # Convert postgres:// to postgresql:// for SQLAlchemy
    db_url = database_url.replace('postgres://', 'postgresql://', 1)
    if db_url.startswith('postgresql') and 'sslmode' not in db_url.lower() and '@localhost' not in db_url:
        separator = '&' if '?' in db_url else '?'
        db_url = f"{db_url}{separator}sslmode=require"
    return db_url


def engine_options(uri: str) -> Dict[str, Any]:
    if not uri.startswith('postgresql'):
        return {}
    return {
        "pool_pre_ping": True,  # Test connections before using them
        "pool_recycle": 300,     # Recycle connections after 5 minutes
        "pool_size": 5,
        "max_overflow": 10,
        "connect_args": {"connect_timeout": 10},
    }


def cors_origins(frontend_url: Optional[str], allowed_origin: str) -> List[str]:
    if frontend_url:
        return [frontend_url]
    if allowed_origin:
        return [o.strip() for o in allowed_origin.split(',') if o.strip()]
    return ['*']
