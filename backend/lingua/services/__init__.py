"""Chat domain services: rating ledger, chat rooms, messages and users.

These objects hold the core rules and are built once per application in
``create_app``. HTTP routes and socket handlers fetch them with
``get_services()`` instead of importing module-level instances.
"""

from flask import current_app

from .chat_rooms import ChatRoomRegistry
from .ledger import RatingLedger, UserLocks
from .messages import CorrectionStore, MessageStore
from .users import UserDirectory


class Services:
    def __init__(self, ledger, chat_rooms, messages, corrections, users):
        self.ledger = ledger
        self.chat_rooms = chat_rooms
        self.messages = messages
        self.corrections = corrections
        self.users = users


def init_services(app) -> Services:
    cfg = app.config
    ledger = RatingLedger(entry_cost=int(cfg.get('CHAT_ENTRY_COST', 10)))
    services = Services(
        ledger=ledger,
        chat_rooms=ChatRoomRegistry(ledger),
        messages=MessageStore(),
        corrections=CorrectionStore(ledger, reward=int(cfg.get('CORRECTION_REWARD', 1))),
        users=UserDirectory(
            ledger,
            reports_threshold=int(cfg.get('REPORTS_BAN_THRESHOLD', 3)),
            supported_languages=cfg.get('SUPPORTED_LANGUAGES') or [],
        ),
    )
    app.extensions['lingua'] = services
    return services


def get_services() -> Services:
    return current_app.extensions['lingua']


__all__ = [
    'ChatRoomRegistry',
    'CorrectionStore',
    'MessageStore',
    'RatingLedger',
    'Services',
    'UserDirectory',
    'UserLocks',
    'get_services',
    'init_services',
]
