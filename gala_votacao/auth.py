"""
Admin authentication: password check, bearer token issuance and the
``require_admin`` guard for protected routes.
"""
import logging
import re
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Dict, Optional, Tuple

import jwt
from flask import current_app, g, request
from werkzeug.security import check_password_hash

from .audit import record_action
from .errors import AuthError, StoreError, ValidationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = 'HS256'
TOKEN_TTL = timedelta(hours=24)
REMEMBER_TOKEN_TTL = timedelta(days=30)
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def issue_token(admin: Dict[str, Any], secret: str, remember: bool = False,
                now: Optional[datetime] = None) -> Tuple[str, int]:
    """Sign a token for the admin. Returns (token, lifetime in seconds)."""
    now = now or datetime.now()
    expires_in = int((REMEMBER_TOKEN_TTL if remember else TOKEN_TTL).total_seconds())
    issued_at = int(now.timestamp())
    payload = {
        'id': admin['id'],
        'email': admin['email'],
        'nome': admin['nome'],
        'nivel_acesso': admin['nivel_acesso'],
        'iat': issued_at,
        'exp': issued_at + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM), expires_in


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError('Sessão expirada. Faça login novamente.')
    except jwt.InvalidTokenError:
        raise AuthError('Token inválido')


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        logger.warning("Stored password hash uses an unsupported format")
        return False


def _login_failed(store, limiter, ip: str, email: str, motivo: str, admin_id: Optional[int] = None,
                  registro_id: Optional[int] = None) -> None:
    limiter.register_failure(ip)
    record_action(store, 'login_falha', tabela='administradores', registro_id=registro_id, admin_id=admin_id,
                  detalhes={'email': email, 'motivo': motivo}, ip_address=ip)
    logger.warning(f"⚠ Failed admin login ({motivo}) for {email}")


def authenticate(store, limiter, email: str, password: str, remember: bool, ip: str, user_agent: str,
                 secret: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Check credentials and return the /login success body."""
    now = now or datetime.now()
    limiter.check(ip)

    if not all(value is None or isinstance(value, str) for value in (email, password)):
        limiter.register_failure(ip)
        raise ValidationError('Dados inválidos')
    email = (email or '').strip()
    if not email or not password:
        limiter.register_failure(ip)
        raise ValidationError('Email e senha são obrigatórios')
    if not EMAIL_PATTERN.match(email):
        limiter.register_failure(ip)
        raise ValidationError('Email inválido')

    rows = store.select('administradores', 'id,nome,email,senha_hash,nivel_acesso,ativo', {'email': email}, limit=1)
    if not rows:
        _login_failed(store, limiter, ip, email, 'usuario_nao_encontrado')
        raise AuthError('Email ou senha incorretos')
    admin = rows[0]

    if not admin['ativo']:
        _login_failed(store, limiter, ip, email, 'usuario_inativo', registro_id=admin['id'])
        raise AuthError('Conta desativada. Entre em contato com o administrador.', status_code=403)

    if not verify_password(password, admin.get('senha_hash')):
        _login_failed(store, limiter, ip, email, 'senha_incorreta', admin_id=admin['id'], registro_id=admin['id'])
        raise AuthError('Email ou senha incorretos')

    limiter.register_success(ip)
    remember = remember is True or remember == 'true'
    token, expires_in = issue_token(admin, secret, remember, now)

    record_action(store, 'login', tabela='administradores', registro_id=admin['id'], admin_id=admin['id'], detalhes={
        'email': email,
        'user_agent': user_agent or '',
        'remember': remember,
    }, ip_address=ip)

    try:
        store.update('administradores', {'updated_at': now.strftime('%Y-%m-%d %H:%M:%S')}, {'id': admin['id']})
    except StoreError as e:
        logger.warning(f"⚠ Could not update last login for admin {admin['id']}: {e}")

    logger.info(f"✅ Admin {admin['id']} logged in")
    return {
        'message': 'Login realizado com sucesso',
        'token': token,
        'expires_in': expires_in,
        'user': {
            'id': admin['id'],
            'nome': admin['nome'],
            'email': admin['email'],
            'nivel_acesso': admin['nivel_acesso'],
        },
    }


def require_admin(view):
    """Reject the request unless it carries a valid bearer token; the claims land in ``g.admin``."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        header = request.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            raise AuthError('Token de acesso ausente')
        g.admin = decode_token(header[len('Bearer '):].strip(), current_app.config['JWT_SECRET'])
        return view(*args, **kwargs)
    return wrapper
