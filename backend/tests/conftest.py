import os
import sys
from datetime import timedelta

import pytest

# Ensure the backend root (containing the `pictophone` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from pictophone import create_app, db, socketio
from pictophone.durations import utcnow


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    DEFAULT_MIN_TURNS = 2
    DEFAULT_MAX_TURNS = 4
    WRITING_TIMEOUT = '5s'
    DRAWING_TIMEOUT = '10s'
    GAME_TIMEOUT = '1h'
    PARTY_TURN_TIMEOUT = '7d'
    PARTY_GAME_TIMEOUT = '365d'
    PARTY_MAX_PLAYERS_LIMIT = 50
    SCHEDULER_ENABLED = False
    SCHEDULER_POLL_SEC = 1
    SCHEDULER_TIMER_HORIZON_SEC = 600
    EXPIRATION_SWEEP_SEC = 1
    JOB_MAX_ATTEMPTS = 3
    JOB_RETRY_BACKOFF_SEC = 2


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import pictophone.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app, client):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=client,
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def services(flask_app):
    from pictophone.services.games import get_services
    return get_services()


@pytest.fixture()
def make_player(flask_app):
    from pictophone.models import Player
    counter = {'n': 0}

    def _make(username=None, password='password', is_admin=False, hide_mature_content=True):
        counter['n'] += 1
        player = Player(
            username=username or f'player{counter["n"]}',
            is_admin=is_admin,
            hide_mature_content=hide_mature_content,
        )
        player.set_password(password)
        db.session.add(player)
        db.session.commit()
        return player

    return _make


@pytest.fixture()
def login(client):
    def _login(player, password='password'):
        res = client.post('/login', json={'username': player.username, 'password': password})
        assert res.status_code == 200
        return res.get_json()['user']
    return _login


@pytest.fixture()
def later():
    """A timestamp comfortably past every short test deadline."""
    return utcnow() + timedelta(hours=2)


@pytest.fixture()
def play(services):
    """Complete a turn with content matching its type."""
    def _play(turn, content=None):
        return services.lifecycle.complete_turn(turn.id, turn.turn_type, content or f"content for turn {turn.id}")
    return _play
