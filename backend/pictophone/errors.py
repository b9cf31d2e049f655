"""Error taxonomy for game, turn and party operations.

Expiration paths treat NotFound and stale state as benign; every other
caller gets these exceptions unchanged. The HTTP layer renders them as
``{'error': ..., 'code': ...}`` with ``status``.
"""


class GameError(Exception):
    status = 400
    code = 'GAME_ERROR'

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class NotFound(GameError):
    status = 404
    code = 'NOT_FOUND'


class AlreadyPending(GameError):
    """The player already owns an uncompleted turn."""
    status = 409
    code = 'ALREADY_PENDING'


class AlreadyCompleted(GameError):
    status = 409
    code = 'ALREADY_COMPLETED'


class AlreadyResolved(GameError):
    status = 409
    code = 'ALREADY_RESOLVED'


class InvalidTransition(GameError):
    status = 400
    code = 'INVALID_TRANSITION'


class PermissionDenied(GameError):
    status = 403
    code = 'PERMISSION_DENIED'
