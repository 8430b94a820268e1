from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from lingua import db
from lingua.errors import LinguaError, NotFoundError
from lingua.models import Correction, Message, User
from lingua.responses import failure, success

from .ledger import checked_user_id


class MessageStore:
    """Append-only store of chat messages."""

    @checked_user_id
    def add_message(self, user_id, text):
        try:
            if db.session.get(User, user_id) is None:
                raise NotFoundError(f'User {user_id} not found')
            message = Message(author_id=user_id, text=text)
            db.session.add(message)
            db.session.commit()
        except (LinguaError, SQLAlchemyError) as exc:
            db.session.rollback()
            current_app.logger.info(f"[message] user={user_id} rejected: {exc}")
            return failure(exc)
        return success([message.to_dict()])

    def get_corrections_written_for_user(self, user_id):
        """Corrections other users wrote on this user's messages, newest message first."""
        messages = Message.query.filter_by(author_id=user_id).order_by(Message.date.desc(), Message.id.desc()).all()
        return success([
            {'id': m.id, 'text': m.text, 'corrections': [c.to_dict(expand=True) for c in m.corrections]}
            for m in messages
        ])


class CorrectionStore:
    """Attaches corrections to messages and rewards their authors."""

    def __init__(self, ledger, reward: int = 1):
        self.ledger = ledger
        self.reward = reward

    @checked_user_id
    def add_correction(self, user_id, message_id, error_phrase, correct_phrase, comments=''):
        with self.ledger.locks.hold(user_id):
            try:
                message = db.session.get(Message, message_id)
                if message is None:
                    raise NotFoundError('Message not found')
                correction = Correction(
                    creator_id=user_id,
                    message=message,
                    error_phrase=error_phrase,
                    correct_phrase=correct_phrase,
                    comments=comments or '',
                )
                db.session.add(correction)
                points = self.ledger.credit_points(user_id, self.reward)
                db.session.commit()
            except (LinguaError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.info(f"[correction] user={user_id} message={message_id} rejected: {exc}")
                return failure(exc)
        current_app.logger.info(f"[correction] user={user_id} message={message_id} points={points}")
        return success(correction.to_dict(expand=True))
