"""Candidate listing: query-string filters, ordering, pagination and enrichment."""
import logging
import math
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

CANDIDATE_FIELDS = 'id,categoria_id,nome,foto_url,biografia,descricao_curta,total_votos,ativo,created_at,updated_at'
VALID_ORDER_FIELDS = ('nome', 'total_votos', 'created_at', 'id')
DEFAULT_ORDER_BY = 'created_at'
DEFAULT_ORDER_DIR = 'desc'
DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100
PREVIEW_LENGTH = 200

CATEGORY_FALLBACK = {'nome': 'Sem Categoria', 'icone': 'fa-question', 'cor': '#CCCCCC'}


def percentage(part: float, whole: float, digits: int = 2) -> float:
    return round(part / whole * 100, digits) if whole > 0 else 0


def category_info(store, categoria_id: Any, cache: Optional[Dict] = None) -> Dict[str, Any]:
    """Name, icon and colour of a category, with placeholders when it is missing."""
    if cache is not None and categoria_id in cache:
        return cache[categoria_id]
    rows = store.select('categorias', 'nome,icone,cor', {'id': categoria_id}, limit=1)
    info = rows[0] if rows else dict(CATEGORY_FALLBACK)
    if cache is not None:
        cache[categoria_id] = info
    return info


def _int_arg(args: Mapping[str, Any], name: str, default: int) -> int:
    try:
        return int(args.get(name, default))
    except (TypeError, ValueError):
        return default


def _flag(args: Mapping[str, Any], name: str) -> bool:
    return args.get(name) == 'true'


def parse_listing_args(args: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate query parameters into store filters, ordering and page bounds."""
    filters: Dict[str, Any] = {}

    categoria_id = _int_arg(args, 'categoria_id', 0) if args.get('categoria_id') else 0
    if categoria_id:
        filters['categoria_id'] = categoria_id
    if 'ativo' in args:
        filters['ativo'] = args.get('ativo') == 'true'
    record_id = _int_arg(args, 'id', 0) if args.get('id') else 0
    if record_id:
        filters['id'] = record_id
    search = (args.get('search') or '').strip()
    if search:
        filters['nome'] = ('ilike', f'*{search}*')

    order_by = args.get('order_by') or DEFAULT_ORDER_BY
    if order_by not in VALID_ORDER_FIELDS:
        order_by = DEFAULT_ORDER_BY
    order_dir = args.get('order_dir') or DEFAULT_ORDER_DIR
    if order_dir not in ('asc', 'desc'):
        order_dir = DEFAULT_ORDER_DIR

    page = max(1, _int_arg(args, 'page', 1))
    per_page = min(MAX_PER_PAGE, max(1, _int_arg(args, 'per_page', DEFAULT_PER_PAGE)))

    return {
        'filters': filters,
        'order_by': order_by,
        'order_dir': order_dir,
        'page': page,
        'per_page': per_page,
        'preview': _flag(args, 'preview'),
        'include_stats': _flag(args, 'include_stats'),
        'debug': _flag(args, 'debug'),
    }


def _format_timestamp(value: Any) -> Optional[str]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed.strftime('%d/%m/%Y %H:%M')


def enrich_candidate(store, candidato: Dict[str, Any], today: str, preview: bool,
                     category_cache: Dict, category_totals: Dict) -> Dict[str, Any]:
    categoria_id = candidato.get('categoria_id')
    info = category_info(store, categoria_id, category_cache)
    candidato['categoria_nome'] = info.get('nome')
    candidato['categoria_icone'] = info.get('icone')
    candidato['categoria_cor'] = info.get('cor')

    candidato['votos_hoje'] = store.count('votos', {'candidato_id': candidato['id'], 'data_voto': today})

    if categoria_id not in category_totals:
        category_totals[categoria_id] = store.count('votos', {'categoria_id': categoria_id})
    candidato['percentual_votos'] = percentage(candidato.get('total_votos') or 0, category_totals[categoria_id])

    candidato['created_at_formatted'] = _format_timestamp(candidato.get('created_at'))
    if candidato.get('updated_at'):
        candidato['updated_at_formatted'] = _format_timestamp(candidato['updated_at'])

    if preview:
        biografia = candidato.get('biografia') or ''
        candidato['biografia_preview'] = (
            biografia[:PREVIEW_LENGTH] + '...' if len(biografia) > PREVIEW_LENGTH else biografia
        )
    return candidato


def list_candidates(store, args: Mapping[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build the /listar response body."""
    now = now or datetime.now()
    query = parse_listing_args(args)
    filters = query['filters']
    page, per_page = query['page'], query['per_page']

    candidatos = store.select(
        'candidatos',
        CANDIDATE_FIELDS,
        filters,
        order=query['order_by'],
        order_dir=query['order_dir'],
        limit=per_page,
        offset=(page - 1) * per_page,
    )

    today = now.strftime('%Y-%m-%d')
    category_cache: Dict = {}
    category_totals: Dict = {}
    for candidato in candidatos:
        enrich_candidate(store, candidato, today, query['preview'], category_cache, category_totals)

    total = store.count('candidatos', filters)
    total_pages = math.ceil(total / per_page)

    response: Dict[str, Any] = {
        'success': True,
        'data': candidatos,
        'pagination': {
            'current_page': page,
            'per_page': per_page,
            'total': total,
            'total_pages': total_pages,
            'has_next': page < total_pages,
            'has_prev': page > 1,
            'from': (page - 1) * per_page + 1,
            'to': min(page * per_page, total),
        },
    }

    if query['include_stats']:
        total_votos = sum(c.get('total_votos') or 0 for c in candidatos)
        ativos = sum(1 for c in candidatos if c.get('ativo'))
        response['stats'] = {
            'total_candidatos': total,
            'candidatos_ativos': ativos,
            'candidatos_inativos': total - ativos,
            'total_votos': total_votos,
            'media_votos': round(total_votos / total, 2) if total > 0 else 0,
        }

    if query['debug']:
        response['filters_applied'] = {
            key: list(value) if isinstance(value, tuple) else value for key, value in filters.items()
        }
        response['order'] = {'by': query['order_by'], 'dir': query['order_dir']}

    logger.debug(f"Listed {len(candidatos)} candidates (page {page}/{total_pages})")
    return response
