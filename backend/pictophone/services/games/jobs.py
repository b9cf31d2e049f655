"""Delayed job kinds.

Every scheduled callback is one of a closed set of frozen dataclasses. The
key doubles as the idempotent job id: scheduling the same key again moves
the deadline instead of adding a second job.
"""

import json
from dataclasses import asdict, dataclass
from typing import ClassVar, Dict, Type, Union


@dataclass(frozen=True)
class TurnExpiry:
    kind: ClassVar[str] = 'turn-expiration'
    turn_id: int

    @property
    def key(self) -> str:
        return f'turn-{self.turn_id}'


@dataclass(frozen=True)
class GameExpiry:
    kind: ClassVar[str] = 'game-expiration'
    game_id: int

    @property
    def key(self) -> str:
        return f'game-{self.game_id}'


@dataclass(frozen=True)
class PartyDeadline:
    kind: ClassVar[str] = 'party-deadline'
    party_id: int

    @property
    def key(self) -> str:
        return f'party-{self.party_id}'


Job = Union[TurnExpiry, GameExpiry, PartyDeadline]

JOB_KINDS: Dict[str, Type] = {cls.kind: cls for cls in (TurnExpiry, GameExpiry, PartyDeadline)}


def encode_payload(job: Job) -> str:
    return json.dumps(asdict(job))


def decode_job(kind: str, payload: str) -> Job:
    try:
        cls = JOB_KINDS[kind]
    except KeyError:
        raise ValueError(f'Unknown job kind: {kind}')
    return cls(**json.loads(payload))
