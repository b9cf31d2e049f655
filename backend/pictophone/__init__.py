from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from pictophone.config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from pictophone.errors import GameError

    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        return jsonify(exc.to_dict()), exc.status

    from pictophone.main import main
    flask_app.register_blueprint(main)

    from pictophone.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api')

    from pictophone.api.parties import parties
    flask_app.register_blueprint(parties, url_prefix='/api/parties')

    from pictophone.api.admin import admin
    flask_app.register_blueprint(admin, url_prefix='/api/admin')

    from pictophone.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from pictophone.models import Player

    @login_manager.user_loader
    def load_player(player_id):
        return db.session.get(Player, int(player_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Login required', 'code': 'UNAUTHORIZED'}), 401

    # Explicit service handles, built once per app
    from pictophone.services.games import build_services
    services = build_services(flask_app)

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from pictophone.services.games.matchmaking import fetch_default_game_config
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            fetch_default_game_config()

            for name in ['testuser1', 'testuser2', 'testuser3']:
                player = Player(username=name)
                player.set_password('password')
                db.session.add(player)
            admin_player = Player(username='admin', is_admin=True)
            admin_player.set_password('password')
            db.session.add(admin_player)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('expire')
    def expire_command():
        """Runs one fallback expiration sweep."""
        with flask_app.app_context():
            turns, games = services.expirations.perform_expirations()
            print(f'Swept {turns} expired turns and {games} expired games')

    @click.command('run-due')
    def run_due_command():
        """Fires every delayed job that is due now."""
        with flask_app.app_context():
            fired = services.delay.run_due()
            print(f'Fired {fired} delayed jobs')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(expire_command)
    flask_app.cli.add_command(run_due_command)

    if flask_app.config.get('SCHEDULER_ENABLED') and not flask_app.config.get('TESTING'):
        services.start_background_tasks()

    return flask_app
