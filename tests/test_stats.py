from datetime import datetime

import pytest

from gala_votacao.stats import (
    build_dashboard,
    days_until,
    engagement_rate,
    growth_percentage,
    hourly_histogram,
    peak_hour,
    relative_time,
)

NOW = datetime(2026, 10, 17, 15, 0, 0)


def add_vote(store, candidato_id, categoria_id, device, day, time='12:00:00'):
    store.insert('votos', {
        'candidato_id': candidato_id,
        'categoria_id': categoria_id,
        'dispositivo_id': device,
        'ip_address': '10.0.0.1',
        'user_agent': 'pytest',
        'data_voto': day,
        'hora_voto': f'{day} {time}',
    })


@pytest.fixture
def voted(seeded):
    add_vote(seeded, 10, 1, 'device_0000000001', '2026-10-15', '09:10:00')
    add_vote(seeded, 10, 1, 'device_0000000001', '2026-10-16', '20:00:00')
    add_vote(seeded, 10, 1, 'device_0000000001', '2026-10-17', '14:05:00')
    add_vote(seeded, 11, 1, 'device_0000000002', '2026-10-17', '14:45:00')
    add_vote(seeded, 20, 2, 'device_0000000002', '2026-10-17', '09:30:00')
    seeded.update('candidatos', {'total_votos': 3}, {'id': 10})
    seeded.update('candidatos', {'total_votos': 1}, {'id': 11})
    seeded.update('candidatos', {'total_votos': 1}, {'id': 20})
    return seeded


@pytest.mark.parametrize("today,yesterday,expected", [
    (10, 0, 100),
    (0, 0, 0),
    (15, 10, 50.0),
    (5, 10, -50.0),
    (1, 3, -66.7),
])
def test_growth_percentage(today, yesterday, expected):
    assert growth_percentage(today, yesterday) == expected


def test_hourly_histogram_is_zero_filled():
    counts = hourly_histogram(['2026-10-17 00:15:00', '2026-10-17 23:59:59', '2026-10-17 23:00:00', None, 'garbage'])
    assert len(counts) == 24
    assert counts[0] == 1
    assert counts[23] == 2
    assert sum(counts) == 3


def test_peak_hour_prefers_earliest_tie():
    counts = [0] * 24
    counts[9] = 4
    counts[18] = 4
    assert peak_hour(counts) == (9, 4)
    assert peak_hour([0] * 24) == (0, 0)


@pytest.mark.parametrize("seconds,expected", [
    (0, 'Agora mesmo'),
    (59, 'Agora mesmo'),
    (60, '1 minuto atrás'),
    (150, '2 minutos atrás'),
    (3600, '1 hora atrás'),
    (7300, '2 horas atrás'),
    (86400, '1 dia atrás'),
    (3 * 86400, '3 dias atrás'),
])
def test_relative_time(seconds, expected):
    assert relative_time(seconds) == expected


def test_days_until():
    assert days_until(datetime(2026, 10, 20, 20, 0), NOW) == 4
    assert days_until(datetime(2026, 10, 18, 15, 0), NOW) == 1
    assert days_until(datetime(2026, 10, 1), NOW) == 0


def test_engagement_rate():
    assert engagement_rate(0) == 0
    assert engagement_rate(500) == 5.0
    assert engagement_rate(20000) == 100.0


def test_dashboard_on_empty_database(seeded):
    stats = build_dashboard(seeded, now=NOW)
    assert stats['total_votos'] == 0
    assert stats['votantes_unicos'] == 0
    assert stats['crescimento_hoje'] == 0
    assert stats['pico_votos'] == {'total': 0, 'hora': '00:00'}
    assert stats['media_votos_dia'] == 0
    assert stats['dias_votacao'] == 0
    assert stats['dias_ate_gala'] == 0
    assert stats['data_gala'] is None
    assert stats['taxa_engajamento'] == 0
    assert all(row['percentual'] == 0 for row in stats['votos_por_categoria'])


def test_dashboard_totals(voted):
    stats = build_dashboard(voted, now=NOW)

    assert stats['total_votos'] == 5
    assert stats['total_candidatos'] == 5
    assert stats['total_categorias'] == 2
    assert stats['votantes_unicos'] == 2
    assert stats['votos_hoje'] == 3
    assert stats['votos_ontem'] == 1
    assert stats['crescimento_hoje'] == 200.0
    assert stats['votantes_hoje'] == 2
    assert stats['taxa_engajamento'] == 0.02
    assert 'evolucao_30_dias' not in stats


def test_dashboard_votes_by_category(voted):
    rows = build_dashboard(voted, now=NOW)['votos_por_categoria']
    assert [row['categoria_id'] for row in rows] == [1, 2]
    assert rows[0]['total_votos'] == 4
    assert rows[0]['percentual'] == 80.0
    assert rows[0]['icone'] == 'fa-star'
    assert rows[1]['percentual'] == 20.0


def test_dashboard_seven_day_series(voted):
    series = build_dashboard(voted, now=NOW)['evolucao_7_dias']
    assert len(series) == 7
    assert series[0]['data'] == '2026-10-11'
    assert series[-1] == {'data': '2026-10-17', 'data_formatada': '17/10', 'dia_semana': 'Sat', 'total_votos': 3}
    assert [day['total_votos'] for day in series] == [0, 0, 0, 0, 1, 1, 3]


def test_dashboard_monthly_series_on_request(voted):
    series = build_dashboard(voted, now=NOW, include_monthly=True)['evolucao_30_dias']
    assert len(series) == 30
    assert 'dia_semana' not in series[0]
    assert sum(day['total_votos'] for day in series) == 5


def test_dashboard_top_candidates(voted):
    top = build_dashboard(voted, now=NOW)['top_candidatos']
    assert top[0]['nome'] == 'Ana Souza'
    assert top[0]['categoria_nome'] == 'Melhor Artista'
    assert top[0]['percentual'] == 75.0
    assert all(candidate['nome'] != 'Carla Dias' for candidate in top)
    orphan = next(candidate for candidate in top if candidate['id'] == 40)
    assert orphan['categoria_nome'] == 'Sem Categoria'
    assert orphan['percentual'] == 0


def test_dashboard_hourly_peak(voted):
    stats = build_dashboard(voted, now=NOW)
    hours = stats['votos_por_hora_hoje']
    assert len(hours) == 24
    assert hours[14] == {'hora': '14:00', 'total_votos': 2}
    assert stats['pico_votos'] == {'total': 2, 'hora': '14:00'}


def test_dashboard_average_per_day(voted):
    stats = build_dashboard(voted, now=NOW)
    # first vote on 2026-10-15 00:00, now 2026-10-17 15:00
    assert stats['dias_votacao'] == 3
    assert stats['media_votos_dia'] == 1.67


def test_dashboard_gala_countdown(voted):
    voted.set_config('data_gala', '2026-10-20 20:00:00')
    stats = build_dashboard(voted, now=NOW)
    assert stats['dias_ate_gala'] == 4
    assert stats['data_gala'] == '20/10/2026 20:00'


def test_dashboard_recent_activity(voted, admins):
    admin_id = admins['admin@gala.com.br']['id']
    voted.insert('historico_acoes', [
        {'acao': 'votar', 'tabela': 'votos', 'ip_address': '203.0.113.7', 'created_at': '2026-10-17 14:58:30'},
        {'acao': 'login', 'admin_id': admin_id, 'ip_address': '2001:db8::1', 'created_at': '2026-10-17 13:00:00'},
        {'acao': 'login', 'admin_id': admin_id, 'ip_address': None, 'created_at': '2026-10-14 10:00:00'},
    ])
    activity = build_dashboard(voted, now=NOW)['atividade_recente']

    assert [row['acao'] for row in activity] == ['votar', 'login', 'login']
    first, second, third = activity
    assert first['admin_nome'] == 'Sistema'
    assert first['tempo_relativo'] == '1 minuto atrás'
    assert first['ip_address_masked'] == '203.***.***.***'
    assert first['created_at_formatted'] == '17/10/2026 14:58:30'
    assert 'ip_address' not in first
    assert second['admin_nome'] == 'Maria Admin'
    assert second['tempo_relativo'] == '2 horas atrás'
    assert second['ip_address_masked'] == '2001:***'
    assert third['tempo_relativo'] == '3 dias atrás'
    assert third['ip_address_masked'] == '***.***.***.***'


def test_dashboard_recent_activity_unknown_admin(voted):
    voted.insert('historico_acoes', {'acao': 'login', 'admin_id': 999, 'created_at': '2026-10-17 14:00:00'})
    activity = build_dashboard(voted, now=NOW)['atividade_recente']
    assert activity[0]['admin_nome'] == 'Desconhecido'
