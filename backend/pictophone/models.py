from pictophone import db, bcrypt
from pictophone.durations import format_duration, parse_duration, utcnow
from flask_login import UserMixin
import json


def _iso(value):
    return value.isoformat() if value else None


class Player(UserMixin, db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False, default='')
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    # Opting out of mature content also vetoes mature parties
    hide_mature_content = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        if not self.password_hash:
            return False
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'is_admin': self.is_admin,
        }


class GameConfig(db.Model):
    __tablename__ = 'game_config'
    id = db.Column(db.Integer, primary_key=True)
    # Only the shared default row is named
    name = db.Column(db.String(32), unique=True, nullable=True)
    min_turns = db.Column(db.Integer, nullable=False)
    max_turns = db.Column(db.Integer, nullable=True)  # null = unbounded
    writing_timeout = db.Column(db.String(32), nullable=False)
    drawing_timeout = db.Column(db.String(32), nullable=False)
    game_timeout = db.Column(db.String(32), nullable=False)
    content_rating = db.Column(db.String(16), nullable=False, default='safe')  # safe, mature

    def turn_timeout(self, is_drawing):
        return parse_duration(self.drawing_timeout if is_drawing else self.writing_timeout)

    def copy(self, **overrides):
        values = {
            'min_turns': self.min_turns,
            'max_turns': self.max_turns,
            'writing_timeout': self.writing_timeout,
            'drawing_timeout': self.drawing_timeout,
            'game_timeout': self.game_timeout,
            'content_rating': self.content_rating,
        }
        values.update(overrides)
        return GameConfig(**values)

    def to_dict(self):
        return {
            'min_turns': self.min_turns,
            'max_turns': self.max_turns,
            'writing_timeout': self.writing_timeout,
            'drawing_timeout': self.drawing_timeout,
            'game_timeout': self.game_timeout,
            'content_rating': self.content_rating,
        }


class Game(db.Model):
    __tablename__ = 'game'
    # ids feed job keys, so they must never be reused
    __table_args__ = {'sqlite_autoincrement': True}
    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True, index=True)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)
    expires_at = db.Column(db.DateTime, nullable=True, index=True)
    config_id = db.Column(db.Integer, db.ForeignKey('game_config.id'), nullable=False)
    season_id = db.Column(db.Integer, db.ForeignKey('season.id', ondelete='SET NULL'), nullable=True, index=True)
    config = db.relationship('GameConfig')
    season = db.relationship('Season', back_populates='games')
    turns = db.relationship('Turn', backref='game', lazy='dynamic', order_by='Turn.order_index')

    @property
    def is_party(self):
        return self.season_id is not None

    def active_turns(self):
        """Non-rejected turns ordered by position."""
        return self.turns.filter(Turn.rejected_at.is_(None)).all()

    def completed_count(self):
        return self.turns.filter(Turn.completed_at.isnot(None), Turn.rejected_at.is_(None)).count()

    def to_dict(self, turns=None):
        if turns is None:
            turns = self.active_turns()
        return {
            'id': self.id,
            'created_at': _iso(self.created_at),
            'completed_at': _iso(self.completed_at),
            'deleted_at': _iso(self.deleted_at),
            'expires_at': _iso(self.expires_at),
            'party_id': self.season_id,
            'config': self.config.to_dict() if self.config else None,
            'turns': [t.to_dict() for t in turns],
        }


class Turn(db.Model):
    __tablename__ = 'turn'
    __table_args__ = {'sqlite_autoincrement': True}
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    content = db.Column(db.Text, nullable=False, default='')
    is_drawing = db.Column(db.Boolean, nullable=False, default=False)
    order_index = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True, index=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True, index=True)
    player = db.relationship('Player')
    flags = db.relationship('TurnFlag', backref='turn', lazy='dynamic')

    @property
    def status(self):
        if self.rejected_at:
            return 'rejected'
        if self.completed_at:
            return 'completed'
        return 'pending'

    @property
    def turn_type(self):
        return 'drawing' if self.is_drawing else 'writing'

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'player_id': self.player_id,
            'content': self.content,
            'is_drawing': self.is_drawing,
            'order_index': self.order_index,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'completed_at': _iso(self.completed_at),
            'expires_at': _iso(self.expires_at),
            'time_limit': format_duration(self.expires_at - self.created_at) if self.expires_at else None,
        }


class TurnFlag(db.Model):
    __tablename__ = 'turn_flag'
    id = db.Column(db.Integer, primary_key=True)
    turn_id = db.Column(db.Integer, db.ForeignKey('turn.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    reason = db.Column(db.String(32), nullable=False)  # spam, offensive, other
    explanation = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    resolved_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'turn_id': self.turn_id,
            'player_id': self.player_id,
            'reason': self.reason,
            'explanation': self.explanation,
            'resolved_at': _iso(self.resolved_at),
        }


class Season(db.Model):
    """A private party. Status: open, active, completed, closed."""
    __tablename__ = 'season'
    id = db.Column(db.Integer, primary_key=True)
    created_by = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    title = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='open', index=True)
    min_players = db.Column(db.Integer, nullable=False, default=2)
    max_players = db.Column(db.Integer, nullable=False, default=8)
    start_deadline = db.Column(db.DateTime, nullable=True)
    turn_passing_algorithm = db.Column(db.String(16), nullable=False, default='round-robin')  # round-robin, algorithmic
    allow_player_invites = db.Column(db.Boolean, nullable=False, default=False)
    game_config_id = db.Column(db.Integer, db.ForeignKey('game_config.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    game_config = db.relationship('GameConfig')
    roster = db.relationship(
        'PlayerInSeason', backref='season', cascade='all, delete-orphan',
        order_by=lambda: [PlayerInSeason.invited_at, PlayerInSeason.id],
    )
    games = db.relationship('Game', back_populates='season', order_by='Game.id')

    def joined_player_ids(self):
        """Joined players in invitation order."""
        return [p.player_id for p in self.roster if p.joined_at is not None]

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'created_by': self.created_by,
            'status': self.status,
            'min_players': self.min_players,
            'max_players': self.max_players,
            'start_deadline': _iso(self.start_deadline),
            'turn_passing_algorithm': self.turn_passing_algorithm,
            'allow_player_invites': self.allow_player_invites,
            'game_config': self.game_config.to_dict() if self.game_config else None,
            'players': [p.to_dict() for p in self.roster],
        }


class PlayerInSeason(db.Model):
    __tablename__ = 'player_in_season'
    __table_args__ = (db.UniqueConstraint('season_id', 'player_id', name='uq_player_in_season'),)
    id = db.Column(db.Integer, primary_key=True)
    season_id = db.Column(db.Integer, db.ForeignKey('season.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    invited_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    joined_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'invited_at': _iso(self.invited_at),
            'joined_at': _iso(self.joined_at),
        }


class Notification(db.Model):
    __tablename__ = 'notification'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False)
    data = db.Column(db.Text, nullable=True)  # JSON-encoded
    dedupe_key = db.Column(db.String(64), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type,
            'data': json.loads(self.data) if self.data else {},
            'created_at': _iso(self.created_at),
        }


class ScheduledJob(db.Model):
    """Durable delayed callback. One row per idempotent key."""
    __tablename__ = 'scheduled_job'
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), unique=True, nullable=False, index=True)
    kind = db.Column(db.String(32), nullable=False)
    payload = db.Column(db.Text, nullable=False)  # JSON-encoded
    fire_at = db.Column(db.DateTime, nullable=False, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
