from datetime import datetime

import pytest

from gala_votacao.listing import list_candidates, parse_listing_args

NOW = datetime(2026, 10, 17, 15, 0, 0)


def names(body):
    return [candidate['nome'] for candidate in body['data']]


@pytest.fixture
def listed(seeded):
    seeded.insert('votos', [
        {'candidato_id': 10, 'categoria_id': 1, 'dispositivo_id': 'device_0000000001',
         'data_voto': '2026-10-17', 'hora_voto': '2026-10-17 10:00:00'},
        {'candidato_id': 10, 'categoria_id': 1, 'dispositivo_id': 'device_0000000001',
         'data_voto': '2026-10-16', 'hora_voto': '2026-10-16 10:00:00'},
        {'candidato_id': 11, 'categoria_id': 1, 'dispositivo_id': 'device_0000000002',
         'data_voto': '2026-10-17', 'hora_voto': '2026-10-17 11:00:00'},
    ])
    seeded.update('candidatos', {'total_votos': 2}, {'id': 10})
    seeded.update('candidatos', {'total_votos': 1}, {'id': 11})
    return seeded


def test_parse_listing_args_defaults():
    query = parse_listing_args({})
    assert query == {
        'filters': {},
        'order_by': 'created_at',
        'order_dir': 'desc',
        'page': 1,
        'per_page': 20,
        'preview': False,
        'include_stats': False,
        'debug': False,
    }


@pytest.mark.parametrize("args,page,per_page", [
    ({'per_page': '500'}, 1, 100),
    ({'per_page': '0'}, 1, 1),
    ({'per_page': 'abc', 'page': 'xyz'}, 1, 20),
    ({'page': '-3'}, 1, 20),
    ({'page': '4', 'per_page': '5'}, 4, 5),
])
def test_parse_listing_args_clamps_pages(args, page, per_page):
    query = parse_listing_args(args)
    assert query['page'] == page
    assert query['per_page'] == per_page


def test_parse_listing_args_ignores_unknown_ordering():
    query = parse_listing_args({'order_by': 'senha; DROP TABLE', 'order_dir': 'sideways'})
    assert query['order_by'] == 'created_at'
    assert query['order_dir'] == 'desc'


def test_parse_listing_args_filters():
    query = parse_listing_args({'categoria_id': '2', 'ativo': 'false', 'search': '  ana ', 'id': 'x'})
    assert query['filters'] == {'categoria_id': 2, 'ativo': False, 'nome': ('ilike', '*ana*')}


def test_list_orders_and_paginates(listed):
    body = list_candidates(listed, {'order_by': 'id', 'order_dir': 'asc', 'per_page': '2', 'page': '2'}, now=NOW)
    assert names(body) == ['Carla Dias', 'Diego Rocha']
    assert body['pagination'] == {
        'current_page': 2,
        'per_page': 2,
        'total': 6,
        'total_pages': 3,
        'has_next': True,
        'has_prev': True,
        'from': 3,
        'to': 4,
    }


def test_list_page_beyond_end(listed):
    body = list_candidates(listed, {'page': '9'}, now=NOW)
    assert body['data'] == []
    assert body['pagination']['has_next'] is False
    assert body['pagination']['to'] == 6


def test_list_filters_by_category_and_status(listed):
    body = list_candidates(listed, {'categoria_id': '1', 'ativo': 'true', 'order_by': 'nome', 'order_dir': 'asc'},
                           now=NOW)
    assert names(body) == ['Ana Souza', 'Bruno Lima']
    assert body['pagination']['total'] == 2


def test_list_search_is_case_insensitive(listed):
    body = list_candidates(listed, {'search': 'SOUZA'}, now=NOW)
    assert names(body) == ['Ana Souza']


def test_list_enriches_candidates(listed):
    body = list_candidates(listed, {'id': '10'}, now=NOW)
    ana = body['data'][0]
    assert ana['categoria_nome'] == 'Melhor Artista'
    assert ana['categoria_icone'] == 'fa-star'
    assert ana['categoria_cor'] == '#FFD700'
    assert ana['votos_hoje'] == 1
    assert ana['percentual_votos'] == pytest.approx(66.67)
    assert ana['created_at_formatted'] is not None
    assert 'biografia_preview' not in ana


def test_list_missing_category_uses_placeholder(listed):
    orphan = list_candidates(listed, {'id': '40'}, now=NOW)['data'][0]
    assert orphan['categoria_nome'] == 'Sem Categoria'
    assert orphan['categoria_icone'] == 'fa-question'
    assert orphan['categoria_cor'] == '#CCCCCC'
    assert orphan['percentual_votos'] == 0


def test_list_preview_truncates_biography(listed):
    body = list_candidates(listed, {'preview': 'true', 'categoria_id': '1', 'order_by': 'id', 'order_dir': 'asc'},
                           now=NOW)
    ana, bruno, carla = body['data']
    assert len(ana['biografia_preview']) == 203
    assert ana['biografia_preview'].endswith('...')
    assert bruno['biografia_preview'] == 'Ator'
    assert carla['biografia_preview'] == ''


def test_list_include_stats(listed):
    body = list_candidates(listed, {'categoria_id': '1', 'include_stats': 'true'}, now=NOW)
    assert body['stats'] == {
        'total_candidatos': 3,
        'candidatos_ativos': 2,
        'candidatos_inativos': 1,
        'total_votos': 3,
        'media_votos': 1.0,
    }


def test_list_debug_echoes_query(listed):
    body = list_candidates(listed, {'debug': 'true', 'search': 'ana', 'order_by': 'nome'}, now=NOW)
    assert body['filters_applied'] == {'nome': ['ilike', '*ana*']}
    assert body['order'] == {'by': 'nome', 'dir': 'desc'}
    assert 'stats' not in list_candidates(listed, {}, now=NOW)


def test_list_empty_result(seeded):
    body = list_candidates(seeded, {'search': 'ninguém'}, now=NOW)
    assert body['data'] == []
    assert body['pagination']['total'] == 0
    assert body['pagination']['total_pages'] == 0
    assert body['pagination']['has_next'] is False


@pytest.mark.parametrize("search", ['%', '_', 'a_s'])
def test_list_search_treats_wildcards_literally(listed, search):
    body = list_candidates(listed, {'search': search}, now=NOW)
    assert body['data'] == []
    assert body['pagination']['total'] == 0
