"""Audit trail (historico_acoes) helpers and privacy masks."""
import json
import logging
from typing import Any, Dict, Optional

from .errors import StoreError

logger = logging.getLogger(__name__)


def mask_ip(ip: Optional[str]) -> str:
    """Keep the first IPv4 octet, or the first 5 characters of anything else."""
    if not ip:
        return '***.***.***.***'
    parts = ip.split('.')
    if len(parts) == 4:
        return parts[0] + '.***.***.***'
    return ip[:5] + '***'


def mask_device_id(device_id: str) -> str:
    return device_id[:10] + '...'


def record_action(store, acao: str, tabela: Optional[str] = None, registro_id: Optional[int] = None,
                  admin_id: Optional[int] = None, detalhes: Optional[Dict[str, Any]] = None,
                  ip_address: Optional[str] = None) -> bool:
    """Append an audit entry. Failures are logged, never raised."""
    entry = {
        'acao': acao,
        'tabela': tabela,
        'registro_id': registro_id,
        'admin_id': admin_id,
        'detalhes': json.dumps(detalhes, ensure_ascii=False) if detalhes is not None else None,
        'ip_address': ip_address,
    }
    try:
        store.insert('historico_acoes', entry)
        return True
    except StoreError as e:
        logger.error(f"Error writing audit entry '{acao}': {e}", exc_info=True)
        return False
