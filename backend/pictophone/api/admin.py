from functools import wraps

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from pictophone.errors import PermissionDenied
from pictophone.services.games import get_services


admin = Blueprint('admin', __name__)


def admin_required(view):
    @wraps(view)
    @login_required
    def wrapper(*args, **kwargs):
        if not current_user.is_admin:
            raise PermissionDenied('Admin access required')
        return view(*args, **kwargs)
    return wrapper


@admin.route('/flags', methods=['GET'])
@admin_required
def open_flags():
    return jsonify([f.to_dict() for f in get_services().flags.open_flags()])


@admin.route('/flags/<int:flag_id>/confirm', methods=['POST'])
@admin_required
def confirm_flag(flag_id):
    return jsonify(get_services().flags.confirm_flag(flag_id).to_dict())


@admin.route('/flags/<int:flag_id>/dismiss', methods=['POST'])
@admin_required
def dismiss_flag(flag_id):
    return jsonify(get_services().flags.dismiss_flag(flag_id).to_dict())


@admin.route('/expire', methods=['POST'])
@admin_required
def run_expirations():
    turns, games = get_services().expirations.perform_expirations()
    return jsonify({'turns': turns, 'games': games})


@admin.route('/games/<int:game_id>', methods=['DELETE'])
@admin_required
def delete_game(game_id):
    game = get_services().lifecycle.soft_delete_game(game_id)
    return jsonify(game.to_dict())
