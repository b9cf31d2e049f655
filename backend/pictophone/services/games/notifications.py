import json
from typing import Optional

from flask import current_app

from pictophone import db, socketio
from pictophone.models import Notification


class Notifier:
    """Fire-and-forget notification sink.

    Stores a row and pushes a ``notification`` event to the player's room on
    ``/ws``. Nothing raised here ever reaches the caller.
    """

    def notify(self, user_id: int, type: str, data: Optional[dict] = None, dedupe_key: Optional[str] = None) -> None:
        try:
            note = Notification(user_id=user_id, type=type, data=json.dumps(data or {}), dedupe_key=dedupe_key)
            db.session.add(note)
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.error(f"[notify-error] user={user_id} type={type}", exc_info=True)
            return
        try:
            socketio.emit('notification', note.to_dict(), to=f"player:{user_id}", namespace='/ws')
        except Exception:
            current_app.logger.warning(f"[notify-push-failed] user={user_id} type={type}", exc_info=True)

    def already_sent(self, type: str, dedupe_key: str) -> bool:
        return Notification.query.filter_by(type=type, dedupe_key=dedupe_key).first() is not None
