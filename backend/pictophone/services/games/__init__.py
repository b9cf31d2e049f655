"""Game domain services: matchmaking, turn lifecycle, expirations, parties.

This package contains the domain logic imported by HTTP routes, socket
handlers and CLI commands, keeping transport concerns separated from
core game mechanics. Services are plain objects built once per app by
``build_services`` and wired to each other explicitly.
"""

from dataclasses import dataclass

from flask import current_app

from .expiration import ExpirationScheduler
from .flags import FlagService
from .lifecycle import GameLifecycle
from .matchmaking import Matchmaker
from .notifications import Notifier
from .parties import PartyOrchestrator
from .scheduler import DelayService

EXTENSION_KEY = 'pictophone'


@dataclass
class GameServices:
    delay: DelayService
    notifier: Notifier
    lifecycle: GameLifecycle
    matchmaker: Matchmaker
    expirations: ExpirationScheduler
    parties: PartyOrchestrator
    flags: FlagService

    def start_background_tasks(self) -> None:
        self.delay.start()
        self.expirations.start()


def build_services(app) -> GameServices:
    delay = DelayService(app)
    notifier = Notifier()
    lifecycle = GameLifecycle(delay, notifier)
    expirations = ExpirationScheduler(app, delay, lifecycle)
    parties = PartyOrchestrator(lifecycle, delay, notifier)
    expirations.on_party_deadline(parties.activate_if_ready)

    services = GameServices(
        delay=delay,
        notifier=notifier,
        lifecycle=lifecycle,
        matchmaker=Matchmaker(lifecycle),
        expirations=expirations,
        parties=parties,
        flags=FlagService(lifecycle, notifier),
    )
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> GameServices:
    return current_app.extensions[EXTENSION_KEY]
