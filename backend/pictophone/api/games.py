from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from pictophone.errors import InvalidTransition, NotFound, PermissionDenied
from pictophone.services.games import get_services


games = Blueprint('games', __name__)


def _content_rating_for(player, requested):
    """Players hiding mature content only ever see safe games."""
    if player.hide_mature_content:
        if requested == 'mature':
            raise InvalidTransition('Mature content is hidden for this player')
        return 'safe'
    return requested


@games.route('/turns', methods=['POST'])
@login_required
def request_turn():
    data = request.get_json(silent=True) or {}
    rating = _content_rating_for(current_user, data.get('content_rating'))
    turn = get_services().matchmaker.find_or_create_turn(current_user.id, data.get('type'), rating)
    payload = turn.to_dict()
    if turn.order_index > 0:
        # The previous turn is what this player responds to
        previous = next(t for t in turn.game.active_turns() if t.order_index == turn.order_index - 1)
        payload['previous'] = previous.to_dict()
    return jsonify(payload), 201


@games.route('/turns/<int:turn_id>/complete', methods=['POST'])
@login_required
def complete_turn(turn_id):
    data = request.get_json(silent=True) or {}
    services = get_services()
    turn = services.lifecycle.find_turn(turn_id)
    if turn is None:
        raise NotFound(f'Turn {turn_id} not found')
    if turn.player_id != current_user.id:
        raise PermissionDenied('You can only complete your own turns')
    content = data.get('content')
    if not isinstance(content, str) or not content.strip():
        return jsonify({'error': 'content is required'}), 400
    turn = services.lifecycle.complete_turn(turn_id, data.get('type'), content)
    return jsonify(turn.to_dict())


@games.route('/turns/pending', methods=['GET'])
@login_required
def pending_turns():
    party_only = request.args.get('party_only') in ('1', 'true')
    turns = get_services().lifecycle.pending_turns_for_player(current_user.id, party_only=party_only)
    return jsonify([t.to_dict() for t in turns])


@games.route('/games/available', methods=['GET'])
@login_required
def available_games():
    available = get_services().matchmaker.available_game_types(current_user.id)
    if current_user.hide_mature_content:
        available['writing_mature'] = False
        available['drawing_mature'] = False
    return jsonify(available)


@games.route('/games/<int:game_id>', methods=['GET'])
@login_required
def get_game(game_id):
    lifecycle = get_services().lifecycle
    game = lifecycle.find_game_admin(game_id) if current_user.is_admin else lifecycle.find_game(game_id)
    if game is None:
        raise NotFound(f'Game {game_id} not found')
    return jsonify(game.to_dict())


@games.route('/turns/<int:turn_id>/flag', methods=['POST'])
@login_required
def flag_turn(turn_id):
    data = request.get_json(silent=True) or {}
    flag = get_services().flags.flag_turn(turn_id, current_user.id, data.get('reason'), data.get('explanation'))
    return jsonify(flag.to_dict()), 201

