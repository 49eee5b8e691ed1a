"""
Data store collaborator: filtered CRUD over the voting tables.

Two backends implement the same contract:

- SQLAlchemyStore talks to the Flask-SQLAlchemy models (SQLite locally,
  PostgreSQL when DATABASE_URL is set).
- SupabaseStore talks to a Supabase/PostgREST endpoint over HTTP.

Filters are ``{field: value}`` for equality or ``{field: (operator, value)}``
with one of OPERATORS. ``*`` in like/ilike patterns matches any substring;
``%`` and ``_`` match themselves.
"""
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests
from sqlalchemy import DateTime, func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from .errors import DuplicateRecordError, StoreError
from .models import TABLES, db

logger = logging.getLogger(__name__)

OPERATORS = ('eq', 'neq', 'gt', 'gte', 'lt', 'lte', 'like', 'ilike', 'in', 'is')

Filters = Optional[Dict[str, Any]]
Row = Dict[str, Any]


def normalize_filters(filters: Filters) -> List[Tuple[str, str, Any]]:
    """Turn a filter mapping into (field, operator, value) triples."""
    normalized = []
    for field, value in (filters or {}).items():
        if isinstance(value, tuple):
            if len(value) != 2 or value[0] not in OPERATORS:
                raise StoreError(f"Invalid filter for '{field}': {value!r}")
            normalized.append((field, value[0], value[1]))
        else:
            normalized.append((field, 'eq', value))
    return normalized


def escape_like(pattern: Any) -> str:
    """Backslash-escape LIKE metacharacters so only ``*`` acts as a wildcard."""
    return str(pattern).replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def parse_fields(fields: str) -> Optional[List[str]]:
    if not fields or fields.strip() == '*':
        return None
    return [f.strip() for f in fields.split(',') if f.strip()]


def retry_db_operation(operation: Callable, max_retries: int = 3, delay: float = 0.5,
                       on_retry: Optional[Callable] = None) -> Any:
    """
    Retry a database operation with exponential backoff.
    Handles PostgreSQL SSL connection errors and other transient database errors.
    """
    for attempt in range(max_retries):
        try:
            return operation()
        except SQLAlchemyError as e:
            error_str = str(e).lower()
            is_retryable = isinstance(e, OperationalError) and (
                'ssl' in error_str or
                'connection' in error_str or
                'eof' in error_str or
                'timeout' in error_str
            )
            if not is_retryable or attempt == max_retries - 1:
                raise
            wait_time = delay * (2 ** attempt)
            logger.warning(f"⚠️ Database operation failed (attempt {attempt + 1}/{max_retries}): {e}. Retrying in {wait_time}s...")
            if on_retry:
                on_retry()
            time.sleep(wait_time)


class DataStore:
    """Contract every backend implements. Config helpers are built on top of it."""

    def select(self, table: str, fields: str = '*', filters: Filters = None, order: Optional[str] = None,
               order_dir: str = 'asc', limit: Optional[int] = None, offset: Optional[int] = None) -> List[Row]:
        raise NotImplementedError

    def insert(self, table: str, data: Union[Row, List[Row]]) -> List[Row]:
        raise NotImplementedError

    def update(self, table: str, data: Row, filters: Filters) -> List[Row]:
        raise NotImplementedError

    def delete(self, table: str, filters: Filters) -> int:
        raise NotImplementedError

    def count(self, table: str, filters: Filters = None) -> int:
        raise NotImplementedError

    def count_distinct(self, table: str, field: str, filters: Filters = None) -> int:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError

    def get_config(self, key: str) -> Optional[str]:
        rows = self.select('configuracoes', 'valor', {'chave': key}, limit=1)
        return rows[0].get('valor') if rows else None

    def set_config(self, key: str, value: Optional[str]) -> None:
        existing = self.select('configuracoes', 'id', {'chave': key}, limit=1)
        if existing:
            self.update('configuracoes',
                        {'valor': value, 'updated_at': datetime.now().strftime('%Y-%m-%d %H:%M:%S')},
                        {'chave': key})
        else:
            self.insert('configuracoes', {'chave': key, 'valor': value})


class SQLAlchemyStore(DataStore):
    """Store backed by the Flask-SQLAlchemy models. Needs an app context."""

    def __init__(self, database=None, tables: Optional[Dict[str, Any]] = None,
                 max_retries: int = 2, retry_delay: float = 0.3):
        self.db = database or db
        self.tables = tables or TABLES
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _model(self, table: str):
        model = self.tables.get(table)
        if model is None:
            raise StoreError(f"Unknown table: {table}")
        return model

    @staticmethod
    def _column(model, field: str):
        if field not in model.__table__.columns:
            raise StoreError(f"Unknown column: {model.__tablename__}.{field}")
        return getattr(model, field)

    @staticmethod
    def _condition(column, op: str, value: Any):
        if op == 'eq':
            return column == value
        if op == 'neq':
            return column != value
        if op == 'gt':
            return column > value
        if op == 'gte':
            return column >= value
        if op == 'lt':
            return column < value
        if op == 'lte':
            return column <= value
        if op == 'like':
            return column.like(escape_like(value).replace('*', '%'), escape='\\')
        if op == 'ilike':
            return column.ilike(escape_like(value).replace('*', '%'), escape='\\')
        if op == 'in':
            return column.in_(list(value))
        return column.is_(None if value in (None, 'null') else value)

    def _apply_filters(self, query, model, filters: Filters):
        for field, op, value in normalize_filters(filters):
            query = query.filter(self._condition(self._column(model, field), op, value))
        return query

    def _coerce(self, model, data: Row) -> Row:
        values = {}
        for key, value in data.items():
            column = model.__table__.columns.get(key)
            if column is None:
                raise StoreError(f"Unknown column: {model.__tablename__}.{key}")
            if isinstance(column.type, DateTime) and isinstance(value, str):
                value = datetime.fromisoformat(value)
            values[key] = value
        return values

    @staticmethod
    def _is_unique_violation(error: IntegrityError) -> bool:
        message = str(error.orig).lower()
        return 'unique' in message or 'duplicate' in message

    def _run(self, operation: Callable, description: str) -> Any:
        try:
            return retry_db_operation(operation, max_retries=self.max_retries, delay=self.retry_delay,
                                      on_retry=self.db.session.rollback)
        except IntegrityError as e:
            self.db.session.rollback()
            if self._is_unique_violation(e):
                logger.warning(f"⚠ Duplicate record on {description}: {e.orig}")
                raise DuplicateRecordError() from e
            logger.error(f"❌ Integrity error on {description}: {e.orig}")
            raise StoreError(str(e.orig)) from e
        except SQLAlchemyError as e:
            self.db.session.rollback()
            logger.error(f"❌ Database error on {description}: {e}", exc_info=True)
            raise StoreError(str(e)) from e

    def select(self, table, fields='*', filters=None, order=None, order_dir='asc', limit=None, offset=None):
        model = self._model(table)
        columns = parse_fields(fields)
        for name in columns or []:
            self._column(model, name)
        order_column = self._column(model, order) if order else None

        def run():
            query = self._apply_filters(model.query, model, filters)
            if order_column is not None:
                if order_dir == 'desc':
                    query = query.order_by(order_column.desc(), model.id.desc())
                else:
                    query = query.order_by(order_column.asc(), model.id.asc())
            if offset:
                query = query.offset(int(offset))
            if limit is not None:
                query = query.limit(int(limit))
            rows = [obj.to_dict() for obj in query.all()]
            if columns is None:
                return rows
            return [{name: row.get(name) for name in columns} for row in rows]

        return self._run(run, f"select {table}")

    def insert(self, table, data):
        model = self._model(table)
        rows = data if isinstance(data, list) else [data]
        values = [self._coerce(model, row) for row in rows]

        def run():
            objects = [model(**row) for row in values]
            self.db.session.add_all(objects)
            self.db.session.commit()
            return [obj.to_dict() for obj in objects]

        return self._run(run, f"insert {table}")

    def update(self, table, data, filters):
        if not filters:
            raise StoreError("Filters are required for UPDATE")
        model = self._model(table)
        values = self._coerce(model, data)

        def run():
            objects = self._apply_filters(model.query, model, filters).all()
            for obj in objects:
                for key, value in values.items():
                    setattr(obj, key, value)
            self.db.session.commit()
            return [obj.to_dict() for obj in objects]

        return self._run(run, f"update {table}")

    def delete(self, table, filters):
        if not filters:
            raise StoreError("Filters are required for DELETE")
        model = self._model(table)

        def run():
            affected = self._apply_filters(model.query, model, filters).delete(synchronize_session=False)
            self.db.session.commit()
            return affected

        return self._run(run, f"delete {table}")

    def count(self, table, filters=None):
        model = self._model(table)
        return self._run(lambda: self._apply_filters(model.query, model, filters).count(), f"count {table}")

    def count_distinct(self, table, field, filters=None):
        model = self._model(table)
        column = self._column(model, field)

        def run():
            query = self.db.session.query(func.count(func.distinct(column))).select_from(model)
            return self._apply_filters(query, model, filters).scalar() or 0

        return self._run(run, f"count distinct {table}.{field}")

    def ping(self):
        try:
            self.db.session.execute(self.db.text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database ping failed: {e}")
            self.db.session.rollback()
            return False


class SupabaseStore(DataStore):
    """Store backed by the Supabase REST API (PostgREST)."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30,
                 session: Optional[requests.Session] = None):
        if not base_url or not api_key:
            raise StoreError("Supabase credentials are not configured")
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'apikey': api_key,
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json',
            'Prefer': 'return=representation',
        })

    @staticmethod
    def _encode(value: Any) -> str:
        if value is True:
            return 'true'
        if value is False:
            return 'false'
        if value is None:
            return 'null'
        return str(value)

    def _filter_params(self, filters: Filters) -> List[Tuple[str, str]]:
        params = []
        for field, op, value in normalize_filters(filters):
            if op == 'in':
                encoded = '(' + ','.join(self._encode(v) for v in value) + ')'
            elif op in ('like', 'ilike'):
                encoded = escape_like(value)
            else:
                encoded = self._encode(value)
            params.append((field, f'{op}.{encoded}'))
        return params

    def _request(self, method: str, table: str, description: str, **kwargs) -> requests.Response:
        url = f'{self.base_url}/rest/v1/{table}'
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"❌ Supabase {description} on {table} failed: {e}")
            raise StoreError(str(e)) from e
        if response.status_code == 409:
            logger.warning(f"⚠ Duplicate record on {description} {table}: {response.text}")
            raise DuplicateRecordError()
        if response.status_code >= 400:
            logger.error(f"{description} error on {table} - Status: {response.status_code} - Body: {response.text}")
            raise StoreError(f"{description} error on {table}: HTTP {response.status_code}")
        return response

    @staticmethod
    def _json(response: requests.Response) -> List[Row]:
        if not response.text:
            return []
        return response.json()

    def select(self, table, fields='*', filters=None, order=None, order_dir='asc', limit=None, offset=None):
        params = [('select', fields or '*')] + self._filter_params(filters)
        if limit is not None:
            params.append(('limit', str(int(limit))))
        if offset:
            params.append(('offset', str(int(offset))))
        if order:
            params.append(('order', f'{order}.{order_dir}'))
        return self._json(self._request('GET', table, 'Select', params=params))

    def insert(self, table, data):
        rows = data if isinstance(data, list) else [data]
        return self._json(self._request('POST', table, 'Insert', json=rows))

    def update(self, table, data, filters):
        if not filters:
            raise StoreError("Filters are required for UPDATE")
        return self._json(self._request('PATCH', table, 'Update', params=self._filter_params(filters), json=data))

    def delete(self, table, filters):
        if not filters:
            raise StoreError("Filters are required for DELETE")
        return len(self._json(self._request('DELETE', table, 'Delete', params=self._filter_params(filters))))

    def count(self, table, filters=None):
        params = [('select', 'id'), ('limit', '1')] + self._filter_params(filters)
        response = self._request('GET', table, 'Count', params=params, headers={'Prefer': 'count=exact'})
        return parse_content_range(response.headers.get('Content-Range'))

    def count_distinct(self, table, field, filters=None):
        rows = self.select(table, field, filters)
        return len({row.get(field) for row in rows})

    def ping(self):
        try:
            response = self.session.get(f'{self.base_url}/rest/v1/', timeout=self.timeout)
            return response.status_code < 400
        except requests.RequestException as e:
            logger.error(f"Supabase ping failed: {e}")
            return False


def parse_content_range(header: Optional[str]) -> int:
    """Total from a PostgREST Content-Range header such as ``0-0/42`` or ``*/0``."""
    if not header or '/' not in header:
        return 0
    total = header.rsplit('/', 1)[1]
    return int(total) if total.isdigit() else 0
