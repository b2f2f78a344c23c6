def test_variations(client):
    res = client.get('/api/variations')
    assert res.status_code == 200
    data = res.get_json()
    assert set(data['variations']) == {'traditional', 'allfives', 'allsevens', 'bergen', 'blind', 'fiveup'}
    assert data['variations']['allsevens']['score_multiple'] == 7


def test_parse_layout(client):
    res = client.post('/api/layout/parse', json={'text': '3|3=(3|6,3|4-4|5)', 'set_id': 6})
    assert res.status_code == 200
    data = res.get_json()
    assert data['text'] == '3|3=(3|4-4|5,3|6)'
    assert data['layout']['open_ends'] == [3, 3, 5, 6]
    assert len(data['layout']['nodes']) == 4


def test_parse_layout_error_position(client):
    res = client.post('/api/layout/parse', json={'text': '3|3=(3|4-5|5)'})
    assert res.status_code == 400
    data = res.get_json()
    assert data['ok'] is False
    assert data['position'] == 9
    assert data['fragment'].startswith('5|5')


def test_generate_layout(client):
    res = client.post('/api/layout/generate', json={'seed': 42, 'max_tiles': 28, 'set_id': 6})
    assert res.status_code == 200
    data = res.get_json()
    assert len(data['layout']['nodes']) <= 28
    again = client.post('/api/layout/generate', json={'seed': 42, 'max_tiles': 28, 'set_id': 6}).get_json()
    assert again['text'] == data['text']

    res = client.post('/api/layout/generate', json={'seed': 1, 'max_tiles': 29, 'set_id': 6})
    assert res.status_code == 400


def test_legal_moves_endpoint(client):
    res = client.post('/api/legal_moves', json={'text': '6|6', 'hand': ['6|2', '1|0', '6|5']})
    assert res.status_code == 200
    data = res.get_json()
    assert [m['move'] for m in data['moves']] == ['6|2@0:6', '6|5@0:6']
    assert data['moves'][0]['exposed'] == 2

    res = client.post('/api/legal_moves', json={'text': '6|6', 'hand': ['6|2', '6|2']})
    assert res.status_code == 400


def test_ai_vs_ai_session(client):
    res = client.post('/api/new_game', json={
        'session_id': 'bots',
        'variation': 'allfives',
        'seed': 9,
        'players': [{'kind': 'heuristic', 'difficulty': 2}, {'kind': 'heuristic', 'difficulty': 1}],
    })
    assert res.status_code == 200
    assert res.get_json()['state']['meta']['tile_total'] == 28

    phase = res.get_json()['state']['meta']['phase']
    steps = 0
    while phase != 'game_over' and steps < 500:
        step = client.post('/api/ai_step', json={'session_id': 'bots'})
        assert step.status_code == 200
        phase = step.get_json()['state']['meta']['phase']
        steps += 1
    assert phase == 'game_over'

    state = client.get('/api/state?session_id=bots').get_json()['state']
    assert state['meta']['end_reason'] in ('out', 'block', 'block_tie')
    assert client.post('/api/ai_step', json={'session_id': 'bots'}).status_code == 400


def test_human_seat(client):
    res = client.post('/api/new_game', json={
        'session_id': 'human',
        'variation': 'traditional',
        'seed': 3,
        'players': [{'kind': 'human'}, {'kind': 'human'}],
    })
    assert res.status_code == 200
    data = res.get_json()
    assert data['players'] == ['human', 'human']

    step = client.post('/api/ai_step', json={'session_id': 'human'})
    assert step.status_code == 400

    bad = client.post('/api/play', json={'session_id': 'human', 'tile': '0|0', 'end': [5, 5]})
    assert bad.status_code == 400

    opening = data['state']['legal_moves'][0]
    ok = client.post('/api/play', json={'session_id': 'human', 'tile': opening, 'end': None})
    assert ok.status_code == 200
    assert ok.get_json()['event']['type'] == 'play'
    assert ok.get_json()['state']['meta']['current'] == 1 - data['state']['meta']['current']


def test_suggest_endpoint(client):
    client.post('/api/new_game', json={'session_id': 's', 'variation': 'allfives', 'seed': 4})
    res = client.post('/api/suggest', json={'session_id': 's', 'top_n': 3, 'difficulty': 2})
    assert res.status_code == 200
    data = res.get_json()
    assert data['session_id'] == 's'
    assert 1 <= len(data['suggestions']) <= 3


def test_unknown_session(client):
    assert client.get('/api/state?session_id=missing').status_code == 404
    assert client.post('/api/draw', json={'session_id': 'missing'}).status_code == 404
    assert client.post('/api/suggest', json={'session_id': 'missing'}).status_code == 404


def test_bad_new_game(client):
    res = client.post('/api/new_game', json={'variation': 'chickenfoot'})
    assert res.status_code == 400
    res = client.post('/api/new_game', json={'players': [{'kind': 'heuristic', 'difficulty': 9}, {'kind': 'human'}]})
    assert res.status_code == 400
