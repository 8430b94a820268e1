from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from lingua import db
from lingua.errors import LinguaError, NotFoundError, ValidationError
from lingua.models import (
    ChatRoom,
    ChatRoomRating,
    Correction,
    Message,
    User,
    chat_room_messages,
    user_reports,
)
from lingua.responses import failure, success

from .ledger import checked_user_id


def _required_text(name, value):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{name} is required')
    return value


def _optional_text(name, value):
    if value is not None and not isinstance(value, str):
        raise ValidationError(f'{name} must be text')
    return value


class UserDirectory:
    """Signup, credentials, profile changes, reports and pen-pal discovery."""

    def __init__(self, ledger, reports_threshold=3, supported_languages=None):
        self.ledger = ledger
        self.reports_threshold = reports_threshold
        self.supported_languages = list(supported_languages or [])

    def _check_languages(self, languages):
        if languages is None:
            return []
        if not isinstance(languages, list) or not all(isinstance(lang, str) for lang in languages):
            raise ValidationError('Languages must be a list of language names')
        unsupported = [lang for lang in languages if lang not in self.supported_languages]
        if unsupported:
            raise ValidationError(f"Unsupported language: {', '.join(unsupported)}")
        return languages

    def create(self, username, email, password, native_languages=None, learning_languages=None, about=None):
        try:
            _required_text('Username', username)
            if not isinstance(email, str) or '@' not in email:
                raise ValidationError('A valid email is required')
            _required_text('Password', password)
            email = email.strip().lower()
            if User.query.filter_by(email=email).first():
                raise ValidationError('Account with that email address already exists')
            user = User(
                username=username,
                email=email,
                native_languages=self._check_languages(native_languages),
                learning_languages=self._check_languages(learning_languages),
                about=_optional_text('About', about),
            )
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
        except (LinguaError, SQLAlchemyError) as exc:
            db.session.rollback()
            return failure(exc)
        current_app.logger.info(f"[signup] user={user.id}")
        return success(user)

    def authenticate(self, email, password):
        if not isinstance(email, str) or not isinstance(password, str) or not password:
            return None
        user = User.query.filter_by(email=email.strip().lower()).first()
        if user and user.check_password(password):
            return user
        return None

    def is_banned(self, user) -> bool:
        return len(user.reports) >= self.reports_threshold

    @checked_user_id
    def update(self, user_id, username=None, about=None, native_languages=None, learning_languages=None,
               password=None):
        """Change profile fields; arguments left as ``None`` keep their stored value."""
        try:
            user = db.session.get(User, user_id)
            if user is None:
                raise NotFoundError('User not found')
            if username is not None:
                user.username = _required_text('Username', username)
            if about is not None:
                user.about = _optional_text('About', about)
            if native_languages is not None:
                user.native_languages = self._check_languages(native_languages)
            if learning_languages is not None:
                user.learning_languages = self._check_languages(learning_languages)
            if password is not None:
                user.set_password(_required_text('Password', password))
            db.session.commit()
        except (LinguaError, SQLAlchemyError) as exc:
            db.session.rollback()
            return failure(exc)
        current_app.logger.info(f"[profile] user={user_id} updated")
        return success(user.to_dict(private=True))

    def _partner_ids(self, user_id):
        pairs = (
            db.session.query(ChatRoom.first_user_id, ChatRoom.second_user_id)
            .filter(ChatRoom.involving(user_id))
            .all()
        )
        return sorted({first if second == user_id else second for first, second in pairs})

    @checked_user_id
    def remove(self, user_id):
        """Delete an account with its messages, corrections, reports and chat rooms.

        Removing a room takes away the rating the partner received there, so
        each former partner's average is rebuilt in the same transaction.
        """
        try:
            partners = self._partner_ids(user_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            return failure(exc)

        with self.ledger.locks.hold(user_id, *partners):
            try:
                self.ledger.lock_user(user_id)
                if not set(self._partner_ids(user_id)) <= set(partners):
                    raise ValidationError('Chat rooms changed during removal, try again')
                room_ids = [rid for (rid,) in db.session.query(ChatRoom.id).filter(ChatRoom.involving(user_id))]
                message_ids = [mid for (mid,) in db.session.query(Message.id).filter(Message.author_id == user_id)]

                Correction.query.filter(
                    or_(Correction.creator_id == user_id, Correction.message_id.in_(message_ids))
                ).delete(synchronize_session=False)
                db.session.execute(chat_room_messages.delete().where(or_(
                    chat_room_messages.c.chat_room_id.in_(room_ids),
                    chat_room_messages.c.message_id.in_(message_ids),
                )))
                ChatRoomRating.query.filter(ChatRoomRating.chat_room_id.in_(room_ids)).delete(synchronize_session=False)
                ChatRoom.query.filter(ChatRoom.id.in_(room_ids)).delete(synchronize_session=False)
                Message.query.filter(Message.id.in_(message_ids)).delete(synchronize_session=False)
                db.session.execute(user_reports.delete().where(or_(
                    user_reports.c.user_id == user_id,
                    user_reports.c.reporter_id == user_id,
                )))
                User.query.filter_by(id=user_id).delete(synchronize_session=False)
                for partner_id in partners:
                    self.ledger.rebuild_rating(partner_id)
                db.session.commit()
            except (LinguaError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.warning(f"[account-remove-fail] user={user_id}: {exc}")
                return failure(exc)

        current_app.logger.info(f"[account-remove] user={user_id} rooms={len(room_ids)} partners={partners}")
        return success(user_id)

    def report(self, user_id, reporter_id):
        """Record that ``reporter_id`` reported ``user_id``; repeat reports count once."""
        try:
            user = db.session.get(User, user_id)
            reporter = db.session.get(User, reporter_id)
            if user is None or reporter is None:
                raise NotFoundError('User not found')
            user.reports.add(reporter)
            db.session.commit()
        except (LinguaError, SQLAlchemyError) as exc:
            db.session.rollback()
            return failure(exc)
        current_app.logger.info(f"[report] user={user_id} reporter={reporter_id} total={len(user.reports)}")
        return success(len(user.reports))

    def potential_pen_pals(self, user_id):
        """Everyone except the user and the banned, public fields only."""
        report_counts = (
            db.session.query(user_reports.c.user_id, func.count().label('total'))
            .group_by(user_reports.c.user_id)
            .subquery()
        )
        users = (
            User.query.outerjoin(report_counts, User.id == report_counts.c.user_id)
            .filter(User.id != user_id)
            .filter(func.coalesce(report_counts.c.total, 0) < self.reports_threshold)
            .order_by(User.id)
            .all()
        )
        return success([u.to_dict() for u in users])
