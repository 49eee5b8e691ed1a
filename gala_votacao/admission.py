"""
Vote admission: the ordered eligibility guards a vote must pass before it is
recorded, plus the writes that follow an accepted vote.

A vote belongs to the server-local calendar date in ``data_voto``; "already
voted today" is an exact match on that string, not a time range.
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from .audit import mask_device_id, record_action
from .errors import (
    ConflictError,
    DuplicateRecordError,
    ForbiddenError,
    NotFoundError,
    StateError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEVICE_ID_PATTERN = re.compile(r'[A-Za-z0-9_\-]+')
DEVICE_ID_MIN_LENGTH = 10
DEVICE_ID_MAX_LENGTH = 200

SUCCESS_MESSAGE = 'Voto registrado com sucesso! Obrigado por participar! 🎉'


def validate_device_id(device_id: Any) -> bool:
    if not isinstance(device_id, str):
        return False
    if not DEVICE_ID_MIN_LENGTH <= len(device_id) <= DEVICE_ID_MAX_LENGTH:
        return False
    return DEVICE_ID_PATTERN.fullmatch(device_id) is not None


def parse_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError('Dados inválidos')
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Dados inválidos')
    if parsed <= 0:
        raise ValidationError('Dados inválidos')
    return parsed


def format_br_date(value: str) -> str:
    """'2025-03-01' (or a timestamp starting with it) -> '01/03/2025'"""
    try:
        return datetime.strptime(value[:10], '%Y-%m-%d').strftime('%d/%m/%Y')
    except ValueError:
        return value


def next_vote_date(now: datetime) -> str:
    return (now.date() + timedelta(days=1)).strftime('%d/%m/%Y')


def already_voted_error(now: datetime) -> ConflictError:
    return ConflictError(
        'Você já votou nesta categoria hoje! Volte amanhã para votar novamente.',
        already_voted=True,
        next_vote_date=next_vote_date(now),
    )


def check_voting_window(store, today: str) -> None:
    """Global switch first, then the optional start/end dates (compared as YYYY-MM-DD strings)."""
    if store.get_config('votacao_ativa') != 'true':
        raise StateError('A votação não está ativa no momento. Aguarde o período de votação.')

    data_inicio = store.get_config('data_inicio_votacao')
    if data_inicio and today < data_inicio:
        raise StateError(f'A votação ainda não começou. Inicia em {format_br_date(data_inicio)}.')

    data_fim = store.get_config('data_fim_votacao')
    if data_fim and today > data_fim:
        raise StateError('O período de votação já encerrou. Obrigado pela participação!')


def _fetch_one(store, table: str, fields: str, record_id: int) -> Optional[Dict[str, Any]]:
    rows = store.select(table, fields, {'id': record_id}, limit=1)
    return rows[0] if rows else None


def refresh_candidate_total(store, candidato_id: int) -> Optional[int]:
    """Recount the candidate's votes and persist total_votos. None if the store failed."""
    try:
        total = store.count('votos', {'candidato_id': candidato_id})
        store.update('candidatos', {'total_votos': total}, {'id': candidato_id})
        return total
    except StoreError as e:
        logger.error(f"❌ Could not refresh total_votos for candidate {candidato_id}, counter is stale: {e}")
        return None


def cast_vote(store, payload: Dict[str, Any], client_ip: str, user_agent: str,
              now: Optional[datetime] = None) -> Dict[str, Any]:
    """Run every admission guard, record the vote and return the success body."""
    now = now or datetime.now()

    candidato_id = payload.get('candidato_id')
    categoria_id = payload.get('categoria_id')
    dispositivo_id = payload.get('dispositivo_id')

    if not candidato_id or not categoria_id or not dispositivo_id:
        raise ValidationError('Dados incompletos. Candidato, categoria e dispositivo são obrigatórios.')
    if not validate_device_id(dispositivo_id):
        raise ValidationError('ID de dispositivo inválido')
    candidato_id = parse_id(candidato_id)
    categoria_id = parse_id(categoria_id)

    today = now.strftime('%Y-%m-%d')
    check_voting_window(store, today)

    candidato = _fetch_one(store, 'candidatos', 'id,nome,categoria_id,ativo', candidato_id)
    if not candidato:
        raise NotFoundError('Candidato não encontrado')
    if not candidato['ativo']:
        raise ForbiddenError('Este candidato não está mais disponível para votação')
    if int(candidato['categoria_id']) != categoria_id:
        raise ValidationError('O candidato não pertence a esta categoria')

    categoria = _fetch_one(store, 'categorias', 'id,nome,ativo', categoria_id)
    if not categoria:
        raise NotFoundError('Categoria não encontrada')
    if not categoria['ativo']:
        raise ForbiddenError('Esta categoria não está mais disponível para votação')

    existing = store.select('votos', 'id', {
        'dispositivo_id': dispositivo_id,
        'categoria_id': categoria_id,
        'data_voto': today,
    }, limit=1)
    if existing:
        raise already_voted_error(now)

    try:
        inserted = store.insert('votos', {
            'candidato_id': candidato_id,
            'categoria_id': categoria_id,
            'dispositivo_id': dispositivo_id,
            'ip_address': client_ip,
            'user_agent': user_agent or '',
            'data_voto': today,
            'hora_voto': now.strftime('%Y-%m-%d %H:%M:%S'),
        })
    except DuplicateRecordError:
        # A concurrent request from the same device won the insert
        logger.warning(f"⚠ Concurrent duplicate vote rejected: category {categoria_id}, device {mask_device_id(dispositivo_id)}")
        raise already_voted_error(now)
    vote_id = inserted[0].get('id') if inserted else None

    total_votos = refresh_candidate_total(store, candidato_id)

    record_action(store, 'votar', tabela='votos', registro_id=vote_id, detalhes={
        'candidato_id': candidato_id,
        'candidato_nome': candidato['nome'],
        'categoria_id': categoria_id,
        'categoria_nome': categoria['nome'],
        'dispositivo_id': mask_device_id(dispositivo_id),
    }, ip_address=client_ip)

    try:
        show_confetti = store.get_config('mostrar_confete') == 'true'
    except StoreError:
        show_confetti = False

    logger.info(f"✅ Vote recorded: candidate {candidato_id}, category {categoria_id}, vote {vote_id}")
    return {
        'message': SUCCESS_MESSAGE,
        'showConfetti': show_confetti,
        'data': {
            'candidato': candidato['nome'],
            'categoria': categoria['nome'],
            'data_voto': today,
            'hora_voto': now.strftime('%H:%M:%S'),
            'total_votos_candidato': total_votos,
            'proxima_votacao': next_vote_date(now),
        },
    }
