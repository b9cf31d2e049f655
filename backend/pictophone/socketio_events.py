from flask_socketio import join_room, leave_room, emit
from flask_login import current_user
from pictophone import socketio


def _player_room(player_id: int) -> str:
    return f"player:{player_id}"


def handle_connect():
    # Logged-in sockets get their notifications without asking
    if current_user.is_authenticated:
        join_room(_player_room(current_user.id))
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_player(data=None):
    if not current_user.is_authenticated:
        emit('error', {'message': 'Login required'})
        return
    room = _player_room(current_user.id)
    join_room(room)
    emit('joined', {'room': room})


def handle_leave_player(data=None):
    if not current_user.is_authenticated:
        emit('error', {'message': 'Login required'})
        return
    room = _player_room(current_user.id)
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Player notification events live on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_player', handle_join_player, namespace='/ws')
    socketio.on_event('leave_player', handle_leave_player, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')
