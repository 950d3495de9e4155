"""
Tests for the Flask JSON API.
"""
import os


def create(client, fmt='SINGLE_ELIM', count=4, **extra):
    payload = {
        'name': 'Friday Cup',
        'format': fmt,
        'players': [{'id': f'p{i}', 'name': f'Player {i}', 'seed': i} for i in range(1, count + 1)],
    }
    payload.update(extra)
    response = client.post('/api/tournaments', json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()['tournament']


def play(client, tournament_id, match_id, winner_id, scores):
    return client.post(f'/api/tournaments/{tournament_id}/matches/{match_id}',
                       json={'winnerId': winner_id, 'scores': scores})


class TestCreateTournament:
    """Tests for POST /api/tournaments."""

    def test_create_single_elim(self, client):
        tournament = create(client)
        assert tournament['format'] == 'SINGLE_ELIM'
        assert [p['id'] for p in tournament['players']] == ['p1', 'p2', 'p3', 'p4']
        assert tournament['bracket']['rounds'][0][0]['player1Id'] == 'p1'

    def test_written_to_data_dir(self, client):
        import app as app_module
        tournament = create(client)
        assert os.path.exists(os.path.join(app_module.DATA_DIR, f"{tournament['id']}.yaml"))

    def test_names_only(self, client):
        response = client.post('/api/tournaments', json={
            'name': 'Quick', 'format': 'ROUND_ROBIN', 'players': ['Ann', 'Ben', 'Cat'],
        })
        assert response.status_code == 201
        players = response.get_json()['tournament']['players']
        assert [p['name'] for p in players] == ['Ann', 'Ben', 'Cat']
        assert len({p['id'] for p in players}) == 3

    def test_groups(self, client):
        tournament = create(client, 'GROUPS_TO_BRACKET', count=6,
                            groupSettings={'groupCount': 2, 'qualifiers': [2, 1], 'consolation': True})
        assert len(tournament['groupStage']['groups']) == 2
        assert tournament['groupStage']['settings']['consolation'] is True
        assert tournament['groupStagePlayoffs'] is None

    def test_shuffle_keeps_players(self, client):
        tournament = create(client, shuffle=True, count=8)
        assert sorted(p['id'] for p in tournament['players']) == sorted(f'p{i}' for i in range(1, 9))
        assert [p['seed'] for p in tournament['players']] == list(range(1, 9))

    def test_too_few_players(self, client):
        response = client.post('/api/tournaments', json={'name': 'Solo', 'players': ['Ann']})
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'INVALID_RESULT'

    def test_bad_format(self, client):
        response = client.post('/api/tournaments', json={'name': 'X', 'format': 'SWISS', 'players': ['A', 'B']})
        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_bad_player_entry(self, client):
        response = client.post('/api/tournaments', json={'name': 'X', 'players': ['A', {'name': 'B', 'elo': 'high'}]})
        assert response.status_code == 400


class TestReadAndDelete:
    """Tests for listing, fetching and deleting tournaments."""

    def test_list(self, client):
        first = create(client)
        second = create(client, 'ROUND_ROBIN')
        summaries = client.get('/api/tournaments').get_json()['tournaments']
        assert {s['id'] for s in summaries} == {first['id'], second['id']}
        assert all(s['playerCount'] == 4 for s in summaries)

    def test_get_with_round_names(self, client):
        tournament = create(client, count=8)
        body = client.get(f"/api/tournaments/{tournament['id']}").get_json()
        assert body['tournament'] == tournament
        assert body['roundNames']['bracket'] == ['Quarterfinal', 'Semifinal', 'Final']

    def test_double_elim_round_names(self, client):
        tournament = create(client, 'DOUBLE_ELIM', count=8)
        names = client.get(f"/api/tournaments/{tournament['id']}").get_json()['roundNames']
        assert len(names['winners']) == 3
        assert len(names['losers']) == 4
        assert names['winners'][-1] == 'Winners Final'

    def test_get_unknown(self, client):
        response = client.get('/api/tournaments/missing')
        assert response.status_code == 404
        assert response.get_json()['kind'] == 'NOT_FOUND'

    def test_delete(self, client):
        tournament = create(client)
        assert client.delete(f"/api/tournaments/{tournament['id']}").status_code == 200
        assert client.get(f"/api/tournaments/{tournament['id']}").status_code == 404
        assert client.delete(f"/api/tournaments/{tournament['id']}").status_code == 404


class TestRecordMatch:
    """Tests for POST /api/tournaments/<id>/matches/<match_id>."""

    def test_record_and_advance(self, client):
        tournament = create(client)
        response = play(client, tournament['id'], 'W1-M1', 'p1', [[3, 1]])
        assert response.status_code == 200
        updated = response.get_json()['tournament']
        assert updated['bracket']['rounds'][0][0]['winnerId'] == 'p1'
        assert updated['bracket']['rounds'][1][0]['player1Id'] == 'p1'
        stored = client.get(f"/api/tournaments/{tournament['id']}").get_json()['tournament']
        assert stored == updated

    def test_clear(self, client):
        tournament = create(client)
        play(client, tournament['id'], 'W1-M1', 'p1', [[3, 1]])
        response = play(client, tournament['id'], 'W1-M1', None, [])
        assert response.status_code == 200
        assert response.get_json()['tournament']['bracket']['rounds'][0][0]['winnerId'] is None

    def test_invalid_scores(self, client):
        tournament = create(client)
        response = play(client, tournament['id'], 'W1-M1', 'p1', [[1, 3]])
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'INVALID_RESULT'
        stored = client.get(f"/api/tournaments/{tournament['id']}").get_json()['tournament']
        assert stored['bracket']['rounds'][0][0]['winnerId'] is None

    def test_walkover_flag(self, client):
        tournament = create(client)
        response = client.post(f"/api/tournaments/{tournament['id']}/matches/W1-M1",
                               json={'winnerId': 'p4', 'scores': [], 'walkover': True})
        assert response.status_code == 200
        assert response.get_json()['tournament']['bracket']['rounds'][0][0]['winnerId'] == 'p4'

    def test_walkover_must_be_boolean(self, client):
        tournament = create(client)
        response = client.post(f"/api/tournaments/{tournament['id']}/matches/W1-M1",
                               json={'winnerId': 'p4', 'scores': [[3, 0]], 'walkover': 'false'})
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'INVALID_RESULT'
        stored = client.get(f"/api/tournaments/{tournament['id']}").get_json()['tournament']
        assert stored['bracket']['rounds'][0][0]['winnerId'] is None

    def test_unknown_match(self, client):
        tournament = create(client)
        response = play(client, tournament['id'], 'W9-M9', 'p1', [[3, 0]])
        assert response.status_code == 404

    def test_unknown_tournament(self, client):
        assert play(client, 'missing', 'W1-M1', 'p1', [[3, 0]]).status_code == 404

    def test_champion(self, client):
        tournament = create(client, count=2)
        body = play(client, tournament['id'], 'W1-M1', 'p2', [[0, 3]]).get_json()
        assert body['tournament']['winnerId'] == 'p2'
        assert body['tournament']['completedAt'] is not None


class TestReorderPlayers:
    """Tests for POST /api/tournaments/<id>/players/order."""

    def test_reorder(self, client):
        tournament = create(client)
        response = client.post(f"/api/tournaments/{tournament['id']}/players/order",
                               json={'playerIds': ['p4', 'p3', 'p2', 'p1']})
        assert response.status_code == 200
        assert response.get_json()['tournament']['bracket']['rounds'][0][0]['player1Id'] == 'p4'

    def test_rejected_after_results(self, client):
        tournament = create(client)
        play(client, tournament['id'], 'W1-M1', 'p1', [[3, 0]])
        response = client.post(f"/api/tournaments/{tournament['id']}/players/order",
                               json={'playerIds': ['p4', 'p3', 'p2', 'p1']})
        assert response.status_code == 400

    def test_missing_list(self, client):
        tournament = create(client)
        response = client.post(f"/api/tournaments/{tournament['id']}/players/order", json={})
        assert response.status_code == 400


class TestStandingsAndResults:
    """Tests for the standings and results endpoints."""

    def test_round_robin_standings(self, client):
        tournament = create(client, 'ROUND_ROBIN')
        match = tournament['schedule']['rounds'][0]['matches'][0]
        play(client, tournament['id'], match['id'], match['player1Id'], [[3, 0]])
        standings = client.get(f"/api/tournaments/{tournament['id']}/standings").get_json()['standings']
        assert standings[0]['playerId'] == match['player1Id']
        assert standings[0]['points'] == 2
        assert len(standings) == 4

    def test_group_standings(self, client):
        tournament = create(client, 'GROUPS_TO_BRACKET', groupSettings={'groupCount': 2, 'qualifiers': [1, 1]})
        body = client.get(f"/api/tournaments/{tournament['id']}/standings").get_json()
        assert set(body['groups']) == {'g1', 'g2'}
        assert body['complete'] is False
        assert 'advancers' not in body

        seeds = {p['id']: p['seed'] for p in tournament['players']}
        for group in tournament['groupStage']['groups']:
            for r in group['schedule']['rounds']:
                for m in r['matches']:
                    winner = min(m['player1Id'], m['player2Id'], key=seeds.get)
                    scores = [[3, 0]] if winner == m['player1Id'] else [[0, 3]]
                    assert play(client, tournament['id'], m['id'], winner, scores).status_code == 200

        body = client.get(f"/api/tournaments/{tournament['id']}/standings").get_json()
        assert body['complete'] is True
        assert [e['id'] for e in body['advancers']['main']] == ['p1', 'p2']
        assert body['advancers']['bracketTargetSize'] == 2

    def test_no_standings_for_brackets(self, client):
        tournament = create(client)
        response = client.get(f"/api/tournaments/{tournament['id']}/standings")
        assert response.status_code == 400

    def test_results(self, client):
        tournament = create(client)
        for match_id, winner in (('W1-M1', 'p1'), ('W1-M2', 'p2'), ('W2-M1', 'p1'), ('3P', 'p3')):
            current = client.get(f"/api/tournaments/{tournament['id']}").get_json()['tournament']
            bracket = current['bracket']
            match = next(m for m in [x for r in bracket['rounds'] for x in r] + [bracket['thirdPlaceMatch']]
                         if m['id'] == match_id)
            scores = [[3, 0]] if match['player1Id'] == winner else [[0, 3]]
            assert play(client, tournament['id'], match_id, winner, scores).status_code == 200

        body = client.get(f"/api/tournaments/{tournament['id']}/results").get_json()
        assert body['winnerId'] == 'p1'
        assert [(r['playerId'], r['rankStart']) for r in body['results']] == [
            ('p1', 1), ('p2', 2), ('p3', 3), ('p4', 4),
        ]


class TestHttpErrors:
    """Tests for the JSON error handler."""

    def test_unknown_route(self, client):
        response = client.get('/api/nothing-here')
        assert response.status_code == 404
        assert response.get_json()['success'] is False

    def test_method_not_allowed(self, client):
        assert client.put('/api/tournaments').status_code == 405
