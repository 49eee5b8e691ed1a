"""
Database management script for initializing tables in production.
Run this after setting DATABASE_URL environment variable.

Usage:
    gala-votacao-db            (or: python -m gala_votacao.manage_db)

This script will:
- Create all tables defined in models.py (SQLite when DATABASE_URL is not set)
- Seed the default configuration keys without overwriting existing values
- Create an administrator from ADMIN_EMAIL / ADMIN_PASSWORD / ADMIN_NOME if given
"""
import os
from typing import Optional

from werkzeug.security import generate_password_hash

from .app import create_app
from .models import db
from .store import DataStore


DEFAULT_CONFIG = {
    'votacao_ativa': 'false',
    'data_inicio_votacao': '',
    'data_fim_votacao': '',
    'mostrar_confete': 'true',
    'data_gala': '',
}


def seed_config(store: DataStore) -> int:
    """Insert missing config keys. Returns how many were created."""
    created = 0
    for key, value in DEFAULT_CONFIG.items():
        if store.select('configuracoes', 'id', {'chave': key}, limit=1):
            continue
        store.insert('configuracoes', {'chave': key, 'valor': value})
        created += 1
    return created


def seed_admin(store: DataStore, email: str, password: str, nome: str = 'Administrador',
               nivel_acesso: str = 'admin') -> Optional[int]:
    """Create the administrator unless the email is already registered."""
    existing = store.select('administradores', 'id', {'email': email}, limit=1)
    if existing:
        return None
    rows = store.insert('administradores', {
        'nome': nome,
        'email': email,
        'senha_hash': generate_password_hash(password),
        'nivel_acesso': nivel_acesso,
        'ativo': True,
    })
    return rows[0]['id'] if rows else None


def main() -> None:
    app = create_app()
    with app.app_context():
        store = app.extensions['gala_votacao']['store']
        db.create_all()
        print("✓ Tables created")

        created = seed_config(store)
        print(f"✓ {created} config keys seeded")

        email = os.getenv('ADMIN_EMAIL')
        password = os.getenv('ADMIN_PASSWORD')
        if email and password:
            admin_id = seed_admin(store, email, password, os.getenv('ADMIN_NOME', 'Administrador'))
            if admin_id:
                print(f"✓ Administrator {email} created (id {admin_id})")
            else:
                print(f"ℹ Administrator {email} already exists")


if __name__ == "__main__":
    main()
