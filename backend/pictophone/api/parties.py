from datetime import datetime, timezone

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from pictophone.errors import InvalidTransition
from pictophone.services.games import get_services


parties = Blueprint('parties', __name__)


def _parse_deadline(value):
    if not value:
        return None
    try:
        deadline = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidTransition(f'Invalid start_deadline {value!r}')
    if deadline.tzinfo is not None:
        deadline = deadline.astimezone(timezone.utc).replace(tzinfo=None)
    return deadline


def _int_list(values):
    try:
        return [int(v) for v in values or []]
    except (TypeError, ValueError):
        raise InvalidTransition('player_ids must be a list of integers')


@parties.route('', methods=['GET'])
@login_required
def list_parties():
    return jsonify(get_services().parties.active_parties_for_player(current_user.id))


@parties.route('', methods=['POST'])
@login_required
def open_party():
    data = request.get_json(silent=True) or {}
    try:
        min_players = int(data.get('min_players', 2))
        max_players = int(data.get('max_players', 8))
    except (TypeError, ValueError):
        raise InvalidTransition('min_players and max_players must be integers')
    party = get_services().parties.open_party(
        current_user.id,
        data.get('title'),
        min_players=min_players,
        max_players=max_players,
        start_deadline=_parse_deadline(data.get('start_deadline')),
        turn_passing_algorithm=data.get('turn_passing_algorithm', 'round-robin'),
        allow_player_invites=bool(data.get('allow_player_invites', False)),
        invited_player_ids=_int_list(data.get('player_ids')),
    )
    return jsonify(party.to_dict()), 201


@parties.route('/<int:party_id>', methods=['GET'])
@login_required
def party_details(party_id):
    return jsonify(get_services().parties.party_details(party_id, current_user.id))


@parties.route('/<int:party_id>/invite', methods=['POST'])
@login_required
def invite(party_id):
    data = request.get_json(silent=True) or {}
    added = get_services().parties.invite_players(party_id, _int_list(data.get('player_ids')), current_user.id)
    return jsonify({'invited': added})


@parties.route('/<int:party_id>/accept', methods=['POST'])
@login_required
def accept(party_id):
    party = get_services().parties.accept_invitation(party_id, current_user.id)
    return jsonify(party.to_dict())


@parties.route('/<int:party_id>/start', methods=['POST'])
@login_required
def start(party_id):
    party = get_services().parties.start_party(party_id, current_user.id)
    return jsonify(party.to_dict())


@parties.route('/<int:party_id>/cancel', methods=['POST'])
@login_required
def cancel(party_id):
    get_services().parties.cancel_party(party_id, current_user.id)
    return jsonify({'success': True})
