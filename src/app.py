"""
Flask JSON API for the tournament engine.
"""
import os
import uuid
import logging
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from engine import double_elimination, elimination
from engine.errors import ErrorKind, EngineError, invalid_result, not_found
from engine.group_stage import compute_group_advancers, get_group_standings, is_group_stage_complete
from engine.models import Format, GroupStageSettings, Player, ScoreMode
from engine.results import build_tournament_results
from engine.round_robin import compute_standings
from engine.tournament import create_tournament, group_max_sets, record_match_result, reorder_players, shuffle_players
from storage import PersistenceService, YamlStorageAdapter

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('TOURNAMENT_DATA_DIR', os.path.join(BASE_DIR, 'data'))
LOCK_TIMEOUT = float(os.environ.get('TOURNAMENT_LOCK_TIMEOUT', '10'))

store = PersistenceService(YamlStorageAdapter(DATA_DIR, lock_timeout=LOCK_TIMEOUT))

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_RESULT: 400,
    ErrorKind.INVARIANT_VIOLATION: 500,
}


def error_response(error: EngineError):
    """JSON body and status code for an engine error."""
    status = ERROR_STATUS.get(error.kind, 400)
    if status >= 500:
        app.logger.error(f'{error.kind.value}: {error.message}')
    return jsonify({'success': False, 'error': error.message, 'kind': error.kind.value}), status


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({'success': False, 'error': e.description, 'kind': e.name}), e.code


def _summary(tournament) -> dict:
    return {
        'id': tournament.id,
        'name': tournament.name,
        'format': tournament.format.value,
        'playerCount': len(tournament.players),
        'createdAt': tournament.created_at,
        'completedAt': tournament.completed_at,
        'winnerId': tournament.winner_id,
    }


def _round_names(tournament) -> dict:
    """Display names of the bracket rounds, keyed by section."""
    if tournament.format == Format.SINGLE_ELIM:
        return {'bracket': elimination.get_round_names(tournament.bracket)}
    if tournament.format == Format.DOUBLE_ELIM:
        state = tournament.double_elim
        total = len(state.losers.rounds)
        return {
            'winners': [double_elimination.get_winners_round_name(len(r) * 2) for r in state.winners.rounds],
            'losers': [double_elimination.get_losers_round_name(i, total) for i in range(total)],
        }
    return {}


def parse_players(raw) -> tuple:
    """Build players from request JSON. Returns (players, error)."""
    if not isinstance(raw, list):
        return None, invalid_result('players must be a list')
    players = []
    for entry in raw:
        if isinstance(entry, str):
            entry = {'name': entry}
        if not isinstance(entry, dict):
            return None, invalid_result('Each player must be a name or an object')
        name = str(entry.get('name') or '').strip()
        if not name:
            return None, invalid_result('Every player needs a name')
        try:
            seed = int(entry['seed']) if entry.get('seed') is not None else None
            elo = float(entry['elo']) if entry.get('elo') is not None else None
        except (TypeError, ValueError):
            return None, invalid_result(f'Invalid seed or elo for {name}')
        players.append(Player(id=str(entry.get('id') or uuid.uuid4().hex), name=name, seed=seed, elo=elo))
    return players, None


def parse_group_settings(raw):
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError('groupSettings must be an object')
    return GroupStageSettings.from_dict({'groupCount': int(raw.get('groupCount', 1)), **{
        key: raw[key] for key in ('qualifiers', 'consolation', 'bracketType') if key in raw
    }})


def _optional_int(data: dict, key: str):
    return int(data[key]) if data.get(key) is not None else None


@app.route('/api/tournaments', methods=['GET'])
def list_tournaments():
    return jsonify({'success': True, 'tournaments': [_summary(t) for t in store.load_all()]})


@app.route('/api/tournaments', methods=['POST'])
def api_create_tournament():
    data = request.get_json(silent=True) or {}
    players, error = parse_players(data.get('players', []))
    if error:
        return error_response(error)
    if data.get('shuffle'):
        players = shuffle_players(players)

    try:
        fmt = Format(data.get('format', Format.SINGLE_ELIM.value))
        scoring_mode = ScoreMode(data.get('scoringMode', ScoreMode.SETS.value))
        max_sets = int(data.get('maxSets', 5))
        group_settings = parse_group_settings(data.get('groupSettings'))
        group_stage_max_sets = _optional_int(data, 'groupStageMaxSets')
        bracket_max_sets = _optional_int(data, 'bracketMaxSets')
    except (KeyError, TypeError, ValueError) as e:
        return error_response(invalid_result(f'Invalid tournament settings: {e}'))

    tournament, error = create_tournament(
        data.get('name', ''), players, fmt,
        scoring_mode=scoring_mode, max_sets=max_sets, group_settings=group_settings,
        group_stage_max_sets=group_stage_max_sets, bracket_max_sets=bracket_max_sets,
    )
    if error:
        return error_response(error)
    store.save(tournament)
    app.logger.info(f'Created tournament {tournament.id} "{tournament.name}"')
    return jsonify({'success': True, 'tournament': tournament.to_dict()}), 201


@app.route('/api/tournaments/<tournament_id>', methods=['GET'])
def get_tournament(tournament_id):
    tournament = store.load(tournament_id)
    if tournament is None:
        return error_response(not_found('Tournament', tournament_id))
    return jsonify({'success': True, 'tournament': tournament.to_dict(), 'roundNames': _round_names(tournament)})


@app.route('/api/tournaments/<tournament_id>', methods=['DELETE'])
def delete_tournament(tournament_id):
    if store.load(tournament_id) is None:
        return error_response(not_found('Tournament', tournament_id))
    store.delete(tournament_id)
    app.logger.info(f'Deleted tournament {tournament_id}')
    return jsonify({'success': True})


@app.route('/api/tournaments/<tournament_id>/matches/<match_id>', methods=['POST'])
def api_record_match(tournament_id, match_id):
    """Record a result; ``winnerId: null`` clears the match."""
    data = request.get_json(silent=True) or {}
    winner_id = data.get('winnerId')
    scores = data.get('scores') or []
    walkover = data.get('walkover', False)
    if not isinstance(walkover, bool):
        return error_response(invalid_result('walkover must be true or false'))

    tournament, error = store.update(
        tournament_id,
        lambda t: record_match_result(t, match_id, winner_id, scores, walkover),
    )
    if error:
        return error_response(error)
    return jsonify({'success': True, 'tournament': tournament.to_dict()})


@app.route('/api/tournaments/<tournament_id>/players/order', methods=['POST'])
def api_reorder_players(tournament_id):
    data = request.get_json(silent=True) or {}
    player_ids = data.get('playerIds')
    if not isinstance(player_ids, list):
        return error_response(invalid_result('playerIds must be a list'))

    tournament, error = store.update(tournament_id, lambda t: reorder_players(t, player_ids))
    if error:
        return error_response(error)
    return jsonify({'success': True, 'tournament': tournament.to_dict()})


@app.route('/api/tournaments/<tournament_id>/standings', methods=['GET'])
def get_standings(tournament_id):
    tournament = store.load(tournament_id)
    if tournament is None:
        return error_response(not_found('Tournament', tournament_id))

    if tournament.format == Format.ROUND_ROBIN:
        standings = compute_standings(tournament.schedule, tournament.players,
                                      tournament.scoring_mode, tournament.max_sets)
        return jsonify({'success': True, 'standings': [row.to_dict() for row in standings]})

    if tournament.format == Format.GROUPS_TO_BRACKET:
        group_stage = tournament.group_stage
        max_sets = group_max_sets(tournament)
        groups = get_group_standings(group_stage, tournament.players, tournament.scoring_mode, max_sets)
        body = {
            'success': True,
            'groups': {group_id: [row.to_dict() for row in rows] for group_id, rows in groups.items()},
            'complete': is_group_stage_complete(group_stage),
        }
        if body['complete']:
            advancers = compute_group_advancers(group_stage.groups, group_stage.settings, tournament.players,
                                                tournament.scoring_mode, max_sets)
            body['advancers'] = advancers.to_dict()
        return jsonify(body)

    return error_response(invalid_result('Standings are only kept for round robin and group formats'))


@app.route('/api/tournaments/<tournament_id>/results', methods=['GET'])
def get_results(tournament_id):
    tournament = store.load(tournament_id)
    if tournament is None:
        return error_response(not_found('Tournament', tournament_id))
    results = build_tournament_results(tournament)
    return jsonify({
        'success': True,
        'winnerId': tournament.winner_id,
        'results': [row.to_dict() for row in results],
    })


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True, port=5000)
