"""
Dashboard statistics: read-only aggregation over votes, candidates,
categories and the audit trail.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .audit import mask_ip
from .listing import category_info, percentage

logger = logging.getLogger(__name__)

WEEKDAYS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')
RECENT_ACTIVITY_LIMIT = 20
TOP_CANDIDATES_LIMIT = 10
ENGAGEMENT_BASELINE = 10000


def growth_percentage(today: int, yesterday: int) -> float:
    """Day-over-day growth; 100 when there were no votes yesterday but some today."""
    if yesterday > 0:
        return round((today - yesterday) / yesterday * 100, 1)
    return 100 if today > 0 else 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse store timestamps into naive server-local datetimes."""
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def hourly_histogram(timestamps: Iterable[Any]) -> List[int]:
    counts = [0] * 24
    for value in timestamps:
        parsed = parse_timestamp(value)
        if parsed:
            counts[parsed.hour] += 1
    return counts


def peak_hour(counts: List[int]) -> Tuple[int, int]:
    """(hour, total) of the first hour with the most votes."""
    total = max(counts)
    return counts.index(total), total


def format_hour(hour: int) -> str:
    return f'{hour:02d}:00'


def relative_time(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return 'Agora mesmo'
    if seconds < 3600:
        minutes = seconds // 60
        return f"{minutes} minuto{'s' if minutes > 1 else ''} atrás"
    if seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hora{'s' if hours > 1 else ''} atrás"
    days = seconds // 86400
    return f"{days} dia{'s' if days > 1 else ''} atrás"


def days_until(target: datetime, now: datetime) -> int:
    return max(0, math.ceil((target - now).total_seconds() / 86400))


def engagement_rate(unique_voters: int) -> float:
    if unique_voters <= 0:
        return 0
    return round(unique_voters / max(unique_voters, ENGAGEMENT_BASELINE) * 100, 2)


def daily_series(store, now: datetime, days: int, with_weekday: bool = False) -> List[Dict[str, Any]]:
    series = []
    for offset in range(days - 1, -1, -1):
        day = now.date() - timedelta(days=offset)
        item: Dict[str, Any] = {'data': day.isoformat(), 'data_formatada': day.strftime('%d/%m')}
        if with_weekday:
            item['dia_semana'] = WEEKDAYS[day.weekday()]
        item['total_votos'] = store.count('votos', {'data_voto': day.isoformat()})
        series.append(item)
    return series


def votes_by_category(store, total_votos: int) -> List[Dict[str, Any]]:
    rows = []
    for categoria in store.select('categorias', 'id,nome,icone,cor', {'ativo': True}):
        votos = store.count('votos', {'categoria_id': categoria['id']})
        rows.append({
            'categoria_id': categoria['id'],
            'categoria_nome': categoria['nome'],
            'icone': categoria.get('icone'),
            'cor': categoria.get('cor'),
            'total_votos': votos,
            'percentual': percentage(votos, total_votos),
        })
    rows.sort(key=lambda row: row['total_votos'], reverse=True)
    return rows


def top_candidates(store, limit: int = TOP_CANDIDATES_LIMIT) -> List[Dict[str, Any]]:
    candidatos = store.select(
        'candidatos', 'id,nome,foto_url,categoria_id,total_votos', {'ativo': True},
        order='total_votos', order_dir='desc', limit=limit,
    )
    category_cache: Dict = {}
    category_totals: Dict = {}
    for candidato in candidatos:
        categoria_id = candidato['categoria_id']
        info = category_info(store, categoria_id, category_cache)
        candidato['categoria_nome'] = info.get('nome')
        candidato['categoria_icone'] = info.get('icone')
        candidato['categoria_cor'] = info.get('cor')
        if categoria_id not in category_totals:
            category_totals[categoria_id] = store.count('votos', {'categoria_id': categoria_id})
        candidato['percentual'] = percentage(candidato.get('total_votos') or 0, category_totals[categoria_id])
    return candidatos


def recent_activity(store, now: datetime, limit: int = RECENT_ACTIVITY_LIMIT) -> List[Dict[str, Any]]:
    rows = store.select(
        'historico_acoes', 'id,admin_id,acao,tabela,registro_id,created_at,ip_address',
        order='created_at', order_dir='desc', limit=limit,
    )
    admin_names: Dict[Any, str] = {}
    for row in rows:
        admin_id = row.get('admin_id')
        if admin_id:
            if admin_id not in admin_names:
                admins = store.select('administradores', 'nome', {'id': admin_id}, limit=1)
                admin_names[admin_id] = admins[0]['nome'] if admins else 'Desconhecido'
            row['admin_nome'] = admin_names[admin_id]
        else:
            row['admin_nome'] = 'Sistema'

        created = parse_timestamp(row.get('created_at'))
        row['tempo_relativo'] = relative_time((now - created).total_seconds()) if created else None
        row['created_at_formatted'] = created.strftime('%d/%m/%Y %H:%M:%S') if created else None
        row['ip_address_masked'] = mask_ip(row.pop('ip_address', None))
    return rows


def average_per_day(store, total_votos: int, now: datetime) -> Tuple[float, int]:
    """(votes per day, days since the first vote)"""
    first = store.select('votos', 'data_voto', order='data_voto', order_dir='asc', limit=1)
    start = parse_timestamp(first[0]['data_voto']) if first else None
    if not start:
        return 0, 0
    dias = math.ceil((now - start).total_seconds() / 86400)
    if dias > 0:
        return round(total_votos / dias, 2), dias
    return total_votos, 1


def build_dashboard(store, now: Optional[datetime] = None, include_monthly: bool = False) -> Dict[str, Any]:
    """All dashboard statistics, in the order the admin panel renders them."""
    now = now or datetime.now()
    today = now.strftime('%Y-%m-%d')
    yesterday = (now.date() - timedelta(days=1)).isoformat()
    stats: Dict[str, Any] = {}

    total_votos = store.count('votos')
    stats['total_votos'] = total_votos
    stats['total_candidatos'] = store.count('candidatos', {'ativo': True})
    stats['total_categorias'] = store.count('categorias', {'ativo': True})
    stats['votantes_unicos'] = store.count_distinct('votos', 'dispositivo_id')

    votos_hoje = store.count('votos', {'data_voto': today})
    votos_ontem = store.count('votos', {'data_voto': yesterday})
    stats['votos_hoje'] = votos_hoje
    stats['votos_ontem'] = votos_ontem
    stats['crescimento_hoje'] = growth_percentage(votos_hoje, votos_ontem)
    stats['votantes_hoje'] = store.count_distinct('votos', 'dispositivo_id', {'data_voto': today})

    stats['votos_por_categoria'] = votes_by_category(store, total_votos)
    stats['evolucao_7_dias'] = daily_series(store, now, 7, with_weekday=True)
    if include_monthly:
        stats['evolucao_30_dias'] = daily_series(store, now, 30)

    stats['top_candidatos'] = top_candidates(store)

    counts = hourly_histogram(row['hora_voto'] for row in store.select('votos', 'hora_voto', {'data_voto': today}))
    stats['votos_por_hora_hoje'] = [
        {'hora': format_hour(hour), 'total_votos': total} for hour, total in enumerate(counts)
    ]
    hour, peak = peak_hour(counts)
    stats['pico_votos'] = {'total': peak, 'hora': format_hour(hour)}

    stats['atividade_recente'] = recent_activity(store, now)

    gala = parse_timestamp(store.get_config('data_gala'))
    if gala:
        stats['dias_ate_gala'] = days_until(gala, now)
        stats['data_gala'] = gala.strftime('%d/%m/%Y %H:%M')
    else:
        stats['dias_ate_gala'] = 0
        stats['data_gala'] = None

    stats['media_votos_dia'], stats['dias_votacao'] = average_per_day(store, total_votos, now)
    stats['taxa_engajamento'] = engagement_rate(stats['votantes_unicos'])

    return stats
