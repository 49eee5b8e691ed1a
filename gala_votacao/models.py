"""
Database models using SQLAlchemy for PostgreSQL support.
Falls back to SQLite if DATABASE_URL is not set.
"""
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class Category(db.Model):
    __tablename__ = 'categorias'

    id = db.Column(db.Integer, primary_key=True)
    nome = db.Column(db.String(255), nullable=False)
    icone = db.Column(db.String(100), nullable=True)
    cor = db.Column(db.String(20), nullable=True)
    ativo = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'nome': self.nome,
            'icone': self.icone,
            'cor': self.cor,
            'ativo': self.ativo,
            'created_at': _iso(self.created_at)
        }


class Candidate(db.Model):
    __tablename__ = 'candidatos'

    id = db.Column(db.Integer, primary_key=True)
    categoria_id = db.Column(db.Integer, db.ForeignKey('categorias.id'), nullable=False)
    nome = db.Column(db.String(255), nullable=False)
    foto_url = db.Column(db.String(500), nullable=True)
    biografia = db.Column(db.Text, nullable=True)
    descricao_curta = db.Column(db.String(500), nullable=True)
    ativo = db.Column(db.Boolean, nullable=False, default=True)
    total_votos = db.Column(db.Integer, nullable=False, default=0)  # denormalized, recomputed per vote
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'categoria_id': self.categoria_id,
            'nome': self.nome,
            'foto_url': self.foto_url,
            'biografia': self.biografia,
            'descricao_curta': self.descricao_curta,
            'ativo': self.ativo,
            'total_votos': self.total_votos,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class Vote(db.Model):
    __tablename__ = 'votos'

    id = db.Column(db.Integer, primary_key=True)
    candidato_id = db.Column(db.Integer, db.ForeignKey('candidatos.id'), nullable=False)
    categoria_id = db.Column(db.Integer, db.ForeignKey('categorias.id'), nullable=False)
    dispositivo_id = db.Column(db.String(200), nullable=False)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    # Calendar date and timestamp are kept as server-local strings
    data_voto = db.Column(db.String(10), nullable=False, index=True)
    hora_voto = db.Column(db.String(19), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('dispositivo_id', 'categoria_id', 'data_voto', name='unique_device_category_day'),
        db.Index('idx_votos_candidato', 'candidato_id'),
        db.Index('idx_votos_categoria', 'categoria_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'candidato_id': self.candidato_id,
            'categoria_id': self.categoria_id,
            'dispositivo_id': self.dispositivo_id,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'data_voto': self.data_voto,
            'hora_voto': self.hora_voto
        }


class Config(db.Model):
    """Operational flags (votacao_ativa, data_inicio_votacao, ...)"""
    __tablename__ = 'configuracoes'

    id = db.Column(db.Integer, primary_key=True)
    chave = db.Column(db.String(50), unique=True, nullable=False)
    valor = db.Column(db.String(255), nullable=True)  # Store as string, parse as needed
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'chave': self.chave,
            'valor': self.valor,
            'updated_at': _iso(self.updated_at)
        }


class AuditEntry(db.Model):
    """Append-only log of admin and voting actions"""
    __tablename__ = 'historico_acoes'

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey('administradores.id'), nullable=True)
    acao = db.Column(db.String(50), nullable=False)
    tabela = db.Column(db.String(50), nullable=True)
    registro_id = db.Column(db.Integer, nullable=True)
    detalhes = db.Column(db.Text, nullable=True)  # JSON string
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'admin_id': self.admin_id,
            'acao': self.acao,
            'tabela': self.tabela,
            'registro_id': self.registro_id,
            'detalhes': self.detalhes,
            'ip_address': self.ip_address,
            'created_at': _iso(self.created_at)
        }


class AdminUser(db.Model):
    __tablename__ = 'administradores'

    id = db.Column(db.Integer, primary_key=True)
    nome = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    senha_hash = db.Column(db.String(255), nullable=False)
    nivel_acesso = db.Column(db.String(50), nullable=False, default='admin')
    ativo = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'nome': self.nome,
            'email': self.email,
            'senha_hash': self.senha_hash,
            'nivel_acesso': self.nivel_acesso,
            'ativo': self.ativo,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class RateLimitEntry(db.Model):
    """DB-backed rate limit counters for persistence across container restarts"""
    __tablename__ = 'rate_limits'

    key = db.Column(db.String(128), primary_key=True)  # scope + hashed client IP
    count = db.Column(db.Integer, nullable=False, default=0)
    window_start = db.Column(db.Float, nullable=True)  # epoch seconds
    locked_until = db.Column(db.Float, nullable=True)  # epoch seconds

    def to_dict(self):
        return {
            'count': self.count,
            'window_start': self.window_start,
            'locked_until': self.locked_until
        }


# Table name -> model, used by the SQL data store
TABLES = {
    'categorias': Category,
    'candidatos': Candidate,
    'votos': Vote,
    'configuracoes': Config,
    'historico_acoes': AuditEntry,
    'administradores': AdminUser,
}
