from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from lingua import db
from lingua.errors import LinguaError, NotFoundError, StaleRatingError, ValidationError
from lingua.models import (
    DEFAULT_ROOM_RATING,
    ChatRoom,
    ChatRoomRating,
    Message,
    User,
    normalize_rating_value,
    validate_ratings,
    validate_user_id,
    validate_users,
)
from lingua.responses import failure, success


def _rating_value_for(ratings, user_id):
    for entry in ratings or []:
        if isinstance(entry, dict) and str(entry.get('userId')) == str(user_id):
            return normalize_rating_value(entry.get('ratingFromRoom'))
    raise ValidationError(f'No rating given for user {user_id}')


class ChatRoomRegistry:
    """Creates two-person chat rooms and keeps room ratings and user averages in step.

    Anything that changes a room rating also changes the rated user's
    average in the same transaction, under that user's ledger lock.
    """

    def __init__(self, ledger):
        self.ledger = ledger

    def _get_room(self, room_id) -> ChatRoom:
        room = db.session.get(ChatRoom, room_id)
        if room is None:
            raise NotFoundError('Chat room not found')
        return room

    def count_rooms(self, user_id) -> int:
        return ChatRoom.query.filter(ChatRoom.involving(user_id)).count()

    def find_room(self, user_a, user_b):
        """Room shared by two users, whichever of them is passed first."""
        return ChatRoom.between(user_a, user_b).first()

    def create_room(self, user_a, user_b):
        """Create a room with default ratings and fold them into both averages.

        The room insert and both ledger updates commit together; if any step
        fails nothing is kept.
        """
        try:
            first, second = validate_users([user_a, user_b])
        except ValidationError as exc:
            return failure(exc)

        with self.ledger.locks.hold(first, second):
            try:
                for uid in (first, second):
                    if db.session.get(User, uid) is None:
                        raise NotFoundError(f'User {uid} not found')
                if self.find_room(first, second) is not None:
                    raise ValidationError('Chat room already exists for these users')
                room = ChatRoom(users=[first, second])
                db.session.add(room)
                db.session.flush()
                for uid in room.user_ids:
                    # Room count includes the room just inserted
                    self.ledger.apply_rating(uid, 0, DEFAULT_ROOM_RATING, self.count_rooms(uid), True)
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                current_app.logger.info(f"[room-create] duplicate pair users={first},{second}")
                return failure('Chat room already exists for these users')
            except (LinguaError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.warning(f"[room-create-fail] users={first},{second}: {exc}")
                return failure(exc)

        current_app.logger.info(f"[room-create] room={room.id} users={first},{second}")
        return success([room.to_dict()])

    def add_message(self, room_id, message_id):
        try:
            room = self._get_room(room_id)
            message = db.session.get(Message, message_id)
            if message is None:
                raise NotFoundError('Message not found')
            if message not in room.messages:
                room.messages.append(message)
            db.session.commit()
        except IntegrityError:
            # A concurrent insert of the same reference already won
            db.session.rollback()
        except (LinguaError, SQLAlchemyError) as exc:
            db.session.rollback()
            return failure(exc)
        return success()

    def get_room(self, room_id):
        room = db.session.get(ChatRoom, room_id)
        if room is None:
            return failure('Chat room not found')
        return success([room.to_dict(expand=True)])

    def list_rooms_for_user(self, user_id):
        rooms = ChatRoom.query.filter(ChatRoom.involving(user_id)).order_by(ChatRoom.id).all()
        return success([room.to_dict(expand=True) for room in rooms])

    def update_rating(self, room_id, rated_user_id, old_ratings, new_ratings):
        """Replace the rating ``rated_user_id`` received in a room.

        The average is recomputed from the old value before the stored
        rating is overwritten. ``old_ratings`` must match what is stored,
        otherwise the update is refused as stale.
        """
        try:
            rated_user_id = validate_user_id(rated_user_id)
            old_value = _rating_value_for(old_ratings, rated_user_id)
            new_value = _rating_value_for(new_ratings, rated_user_id)
        except ValidationError as exc:
            return failure(exc)

        with self.ledger.locks.hold(rated_user_id):
            try:
                self.ledger.lock_user(rated_user_id)
                room = self._get_room(room_id)
                if not room.has_user(rated_user_id):
                    raise ValidationError('User is not a participant of this chat room')
                values = validate_ratings(new_ratings, room.user_ids)
                for uid, value in values.items():
                    if str(uid) != str(rated_user_id) and value != room.rating_for(uid):
                        raise ValidationError("Only the rated user's rating can change")
                stored = (
                    ChatRoomRating.query.filter_by(chat_room_id=room.id, user_id=rated_user_id)
                    .populate_existing()
                    .first()
                )
                if stored is None or stored.rating_from_room != old_value:
                    raise StaleRatingError('Rating changed since it was read')
                total = self.count_rooms(rated_user_id)
                self.ledger.apply_rating(rated_user_id, old_value, new_value, total, False)
                stored.rating_from_room = new_value
                db.session.commit()
            except (LinguaError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.warning(f"[rating-fail] room={room_id} user={rated_user_id}: {exc}")
                return failure(exc)

        current_app.logger.info(f"[room-rate] room={room_id} user={rated_user_id} {old_value} -> {new_value}")
        return success(room.ratings_list())

    def rate_partner(self, room_id, rater_id, rating):
        """Set the rating ``rater_id`` gives their partner in a room."""
        try:
            room = self._get_room(room_id)
            partner_id = room.partner_of(rater_id)
        except (LinguaError, SQLAlchemyError) as exc:
            db.session.rollback()
            return failure(exc)
        old_ratings = room.ratings_list()
        new_ratings = [
            dict(entry, ratingFromRoom=rating) if entry['userId'] == partner_id else dict(entry)
            for entry in old_ratings
        ]
        return self.update_rating(room_id, partner_id, old_ratings, new_ratings)
