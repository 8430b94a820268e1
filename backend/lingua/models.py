from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import or_
from sqlalchemy.orm import validates

from lingua import db, bcrypt
from lingua.errors import ValidationError

# A room rating is always one of these half steps
POSSIBLE_RATINGS = (0, 0.5, 1, 1.5, 2, 2.5, 3, 3.5, 4, 4.5, 5)
DEFAULT_ROOM_RATING = 3
# Average rating of a user who has not joined any chat yet
DEFAULT_USER_RATING = 0
MAX_USER_RATING = 5
DEFAULT_POINTS = 50


def _utcnow():
    return datetime.now(timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


user_reports = db.Table(
    'user_report',
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
    db.Column('reporter_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
)

chat_room_messages = db.Table(
    'chat_room_message',
    db.Column('chat_room_id', db.Integer, db.ForeignKey('chat_room.id'), primary_key=True),
    db.Column('message_id', db.Integer, db.ForeignKey('message.id'), primary_key=True),
)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    # Not unique: many people share names
    username = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(128), nullable=False)
    native_languages = db.Column(db.JSON, nullable=False, default=list)
    learning_languages = db.Column(db.JSON, nullable=False, default=list)
    about = db.Column(db.Text, nullable=True)
    rating = db.Column(db.Float, nullable=False, default=DEFAULT_USER_RATING)
    points = db.Column(db.Integer, nullable=False, default=DEFAULT_POINTS)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    reports = db.relationship(
        'User',
        secondary=user_reports,
        primaryjoin=lambda: User.id == user_reports.c.user_id,
        secondaryjoin=lambda: User.id == user_reports.c.reporter_id,
        collection_class=set,
    )

    @validates('rating')
    def validate_rating(self, key, rating):
        if rating is None or not 0 <= rating <= MAX_USER_RATING:
            raise ValidationError('Rating must satisfy 0<=rating<=5')
        return rating

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self, private=False):
        data = {
            'id': self.id,
            'username': self.username,
            'nativeLanguages': list(self.native_languages or []),
            'learningLanguages': list(self.learning_languages or []),
            'about': self.about,
            'rating': self.rating,
        }
        if private:
            data['email'] = self.email
            data['points'] = self.points
            data['reports'] = sorted(reporter.id for reporter in self.reports)
        return data

    def to_summary(self):
        """Public fields embedded in an expanded chat room."""
        return {
            'id': self.id,
            'username': self.username,
            'rating': self.rating,
            'reports': sorted(reporter.id for reporter in self.reports),
        }


def _user_id(user):
    return getattr(user, 'id', user)


def validate_user_id(value) -> int:
    if isinstance(value, bool):
        raise ValidationError(f'Invalid user id: {value!r}')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid user id: {value!r}')


def validate_users(users):
    """Return the two participant ids, or raise if they are not two distinct users."""
    ids = [_user_id(u) for u in (users or [])]
    if len(ids) != 2 or None in ids:
        raise ValidationError('Chat Room must contain exactly two different users')
    first, second = validate_user_id(ids[0]), validate_user_id(ids[1])
    if first == second:
        raise ValidationError('Chat Room must contain exactly two different users')
    return first, second


def normalize_rating_value(value):
    if isinstance(value, bool):
        raise ValidationError('Rating must be one of 0, 0.5, 1, ..., 5')
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ValidationError('Rating must be one of 0, 0.5, 1, ..., 5')
    if value not in POSSIBLE_RATINGS:
        raise ValidationError('Rating must be one of 0, 0.5, 1, ..., 5')
    return value


def validate_ratings(ratings, user_ids=None):
    """Check a ``[{userId, ratingFromRoom}, ...]`` array and return ``{user_id: value}``.

    The array must hold exactly two entries on different users with values
    from ``POSSIBLE_RATINGS``. When ``user_ids`` is given the entries must
    cover exactly those users.
    """
    ratings = list(ratings or [])
    try:
        ids = [int(entry['userId']) for entry in ratings]
    except (KeyError, TypeError, ValueError):
        raise ValidationError('Each rating needs a userId and a ratingFromRoom')
    if len(ids) != 2 or ids[0] == ids[1]:
        raise ValidationError('Chat Room must contain exactly two ratings on different users')
    if user_ids is not None and set(ids) != {int(u) for u in user_ids}:
        raise ValidationError('Ratings must belong to the users of the chat room')
    return {uid: normalize_rating_value(entry.get('ratingFromRoom')) for uid, entry in zip(ids, ratings)}


class ChatRoom(db.Model):
    """A conversation between exactly two users.

    The pair is stored canonically (lower id first) so that a pair maps to
    one row no matter which user opened the chat.
    """
    __tablename__ = 'chat_room'
    __table_args__ = (
        db.UniqueConstraint('first_user_id', 'second_user_id', name='uq_chat_room_pair'),
        db.CheckConstraint('first_user_id < second_user_id', name='ck_chat_room_distinct_users'),
    )
    id = db.Column(db.Integer, primary_key=True)
    first_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    second_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    first_user = db.relationship('User', foreign_keys=[first_user_id])
    second_user = db.relationship('User', foreign_keys=[second_user_id])
    ratings = db.relationship(
        'ChatRoomRating', back_populates='chat_room', cascade='all, delete-orphan', order_by='ChatRoomRating.user_id'
    )
    messages = db.relationship('Message', secondary=chat_room_messages, order_by='Message.date')

    def __init__(self, users=None, ratings=None, **kwargs):
        super(ChatRoom, self).__init__(**kwargs)
        self.first_user_id, self.second_user_id = self.pair_key(*validate_users(users))
        if ratings is None:
            ratings = [{'userId': uid, 'ratingFromRoom': DEFAULT_ROOM_RATING} for uid in self.user_ids]
        self.set_ratings(ratings)

    @staticmethod
    def pair_key(user_a, user_b):
        a, b = validate_user_id(_user_id(user_a)), validate_user_id(_user_id(user_b))
        return (a, b) if a < b else (b, a)

    @classmethod
    def involving(cls, user_id):
        return or_(cls.first_user_id == user_id, cls.second_user_id == user_id)

    @classmethod
    def between(cls, user_a, user_b):
        first, second = cls.pair_key(user_a, user_b)
        return cls.query.filter_by(first_user_id=first, second_user_id=second)

    @property
    def user_ids(self):
        return [self.first_user_id, self.second_user_id]

    @property
    def users(self):
        return [self.first_user, self.second_user]

    def has_user(self, user_id):
        return str(user_id) in {str(uid) for uid in self.user_ids}

    def partner_of(self, user_id):
        if not self.has_user(user_id):
            raise ValidationError('User is not a participant of this chat room')
        return self.second_user_id if str(self.first_user_id) == str(user_id) else self.first_user_id

    def rating_for(self, user_id):
        for row in self.ratings:
            if str(row.user_id) == str(user_id):
                return row.rating_from_room
        return None

    def set_ratings(self, ratings):
        values = validate_ratings(ratings, self.user_ids)
        rows = {row.user_id: row for row in self.ratings}
        for uid, value in values.items():
            if uid in rows:
                rows[uid].rating_from_room = value
            else:
                self.ratings.append(ChatRoomRating(user_id=uid, rating_from_room=value))

    def ratings_list(self):
        return [row.to_dict() for row in self.ratings]

    def to_dict(self, expand=False):
        if expand:
            users = [u.to_summary() for u in self.users]
            messages = [m.to_dict(expand=True) for m in self.messages]
        else:
            users = self.user_ids
            messages = [m.id for m in self.messages]
        return {
            'id': self.id,
            'users': users,
            'messages': messages,
            'ratings': self.ratings_list(),
            'created_at': _isoformat(self.created_at),
        }


class ChatRoomRating(db.Model):
    __tablename__ = 'chat_room_rating'
    __table_args__ = (
        db.UniqueConstraint('chat_room_id', 'user_id', name='uq_chat_room_rating_user'),
    )
    id = db.Column(db.Integer, primary_key=True)
    chat_room_id = db.Column(db.Integer, db.ForeignKey('chat_room.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    rating_from_room = db.Column('ratingFromRoom', db.Float, nullable=False, default=DEFAULT_ROOM_RATING)
    chat_room = db.relationship('ChatRoom', back_populates='ratings')

    @validates('rating_from_room')
    def validate_rating_from_room(self, key, value):
        return normalize_rating_value(value)

    def to_dict(self):
        return {'userId': self.user_id, 'ratingFromRoom': self.rating_from_room}


class Message(db.Model):
    __tablename__ = 'message'
    id = db.Column(db.Integer, primary_key=True)
    author_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    date = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    author = db.relationship('User')
    corrections = db.relationship('Correction', back_populates='message', order_by='Correction.date')

    @validates('text')
    def validate_text(self, key, text):
        if not isinstance(text, str):
            raise ValidationError('Message text must be a string')
        if not text.strip():
            raise ValidationError('User can not send an empty message')
        return text

    def to_dict(self, expand=False):
        return {
            'id': self.id,
            'author': {'id': self.author.id, 'username': self.author.username} if expand else self.author_id,
            'text': self.text,
            'corrections': [c.to_dict(expand=True) if expand else c.id for c in self.corrections],
            'date': _isoformat(self.date),
        }


class Correction(db.Model):
    __tablename__ = 'correction'
    id = db.Column(db.Integer, primary_key=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    message_id = db.Column(db.Integer, db.ForeignKey('message.id'), nullable=False, index=True)
    error_phrase = db.Column('errorPhrase', db.Text, nullable=False)
    correct_phrase = db.Column('correctPhrase', db.Text, nullable=False)
    comments = db.Column(db.Text, nullable=False, default='')
    date = db.Column(db.DateTime(timezone=True), default=_utcnow)
    creator = db.relationship('User')
    message = db.relationship('Message', back_populates='corrections')

    @validates('error_phrase')
    def validate_error_phrase(self, key, value):
        if not isinstance(value, str) or not value:
            raise ValidationError('User can not post a correction on no text.')
        return value

    @validates('correct_phrase')
    def validate_correct_phrase(self, key, value):
        if not isinstance(value, str) or not value:
            raise ValidationError('User can not post an empty correction')
        return value

    @validates('comments')
    def validate_comments(self, key, value):
        if not isinstance(value, str):
            raise ValidationError('Correction comments must be text')
        return value

    def to_dict(self, expand=False):
        return {
            'id': self.id,
            'creator': {'id': self.creator.id, 'username': self.creator.username} if expand else self.creator_id,
            'messageId': self.message_id,
            'errorPhrase': self.error_phrase,
            'correctPhrase': self.correct_phrase,
            'comments': self.comments,
            'date': _isoformat(self.date),
        }
