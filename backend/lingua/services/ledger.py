import threading
from contextlib import ExitStack, contextmanager
from functools import wraps
from typing import Dict

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from lingua import db
from lingua.errors import InsufficientPointsError, LinguaError, NotFoundError, ValidationError
from lingua.models import DEFAULT_USER_RATING, ChatRoomRating, User, validate_user_id
from lingua.responses import failure, success

# Averages are rounded so float drift never pushes a value past 0 or 5
RATING_PRECISION = 10


def compute_average(average: float, old_rating: float, new_rating: float, total_rooms: int, is_new_room: bool) -> float:
    """Incrementally update a running average of room ratings.

    A new room replaces one slot of the enlarged room count with its
    rating; an update to an existing room swaps the old contribution for
    the new one over the unchanged count. A user without rooms sits at the
    default rating.
    """
    if total_rooms == 0:
        return DEFAULT_USER_RATING
    if not is_new_room and old_rating == new_rating:
        return average
    if is_new_room:
        updated = (average * (total_rooms - 1) + new_rating) / total_rooms
    else:
        updated = (average * total_rooms - old_rating + new_rating) / total_rooms
    return round(updated, RATING_PRECISION)


def checked_user_id(method):
    """Turn a malformed ``user_id`` argument into a failed envelope before any lock is taken."""
    @wraps(method)
    def wrapper(self, user_id, *args, **kwargs):
        try:
            user_id = validate_user_id(user_id)
        except ValidationError as exc:
            return failure(exc)
        return method(self, user_id, *args, **kwargs)
    return wrapper


class UserLocks:
    """Re-entrant per-user locks.

    ``hold`` takes the locks in ascending id order, so two operations that
    lock the same pair of users cannot deadlock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.RLock] = {}

    def _lock_for(self, user_id: int):
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *user_ids):
        ids = sorted({validate_user_id(uid) for uid in user_ids})
        with ExitStack() as stack:
            for uid in ids:
                stack.enter_context(self._lock_for(uid))
            yield


class RatingLedger:
    """Owns each user's average rating and point balance.

    Every read-modify-write of a user row happens while holding that user's
    lock and a row lock from ``SELECT ... FOR UPDATE``, so two concurrent
    updates cannot both start from the same stale average.
    """

    def __init__(self, entry_cost: int = 10):
        self.entry_cost = entry_cost
        self.locks = UserLocks()

    def lock_user(self, user_id) -> User:
        """Load a user row under a row lock, refreshing any cached copy."""
        user = (
            User.query.filter_by(id=user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if user is None:
            raise NotFoundError(f'User {user_id} not found')
        return user

    def apply_rating(self, user_id, old_rating, new_rating, total_rooms: int, is_new_room: bool) -> float:
        """Recompute the user's average without committing.

        The caller owns the transaction and must hold ``locks.hold(user_id)``.
        """
        user = self.lock_user(user_id)
        previous = user.rating
        user.rating = compute_average(previous, old_rating, new_rating, total_rooms, is_new_room)
        db.session.add(user)
        current_app.logger.info(
            f"[rating-update] user={user_id} rooms={total_rooms} new_room={is_new_room} "
            f"old={old_rating} new={new_rating} avg {previous} -> {user.rating}"
        )
        return user.rating

    @checked_user_id
    def update_rating(self, user_id, old_rating, new_rating, total_rooms: int, is_new_room: bool):
        with self.locks.hold(user_id):
            try:
                rating = self.apply_rating(user_id, old_rating, new_rating, total_rooms, is_new_room)
                db.session.commit()
            except (LinguaError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.warning(f"[ledger-fail] user={user_id} update_rating: {exc}")
                return failure(exc)
        return success(rating)

    def rebuild_rating(self, user_id) -> float:
        """Set the average from the stored room ratings without committing.

        The caller owns the transaction and must hold ``locks.hold(user_id)``.
        """
        user = self.lock_user(user_id)
        average = (
            db.session.query(func.avg(ChatRoomRating.rating_from_room))
            .filter(ChatRoomRating.user_id == user_id)
            .scalar()
        )
        user.rating = DEFAULT_USER_RATING if average is None else round(float(average), RATING_PRECISION)
        return user.rating

    @checked_user_id
    def reconcile_rating(self, user_id):
        """Rebuild the average from every stored room rating of the user."""
        with self.locks.hold(user_id):
            try:
                rating = self.rebuild_rating(user_id)
                db.session.commit()
            except (LinguaError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.warning(f"[ledger-fail] user={user_id} reconcile: {exc}")
                return failure(exc)
        return success(rating)

    # ---- Points ----

    def credit_points(self, user_id, delta: int) -> int:
        """Adjust the balance without committing; caller holds the user's lock."""
        user = self.lock_user(user_id)
        user.points = user.points + delta
        db.session.add(user)
        return user.points

    @checked_user_id
    def get_points(self, user_id):
        user = db.session.get(User, user_id)
        if user is None:
            return failure(NotFoundError(f'User {user_id} not found'))
        return success(user.points)

    @checked_user_id
    def enter_chat_room(self, user_id):
        """Charge the chat entry cost, failing when the balance is too low."""
        with self.locks.hold(user_id):
            try:
                user = self.lock_user(user_id)
                if user.points < self.entry_cost:
                    raise InsufficientPointsError('Not enough points')
                points = self.credit_points(user_id, -self.entry_cost)
                db.session.commit()
            except (LinguaError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.info(f"[points] user={user_id} chat entry refused: {exc}")
                return failure(exc)
        current_app.logger.info(f"[points] user={user_id} paid {self.entry_cost} to enter chat, balance={points}")
        return success(points)

    @checked_user_id
    def refund_chat_entry(self, user_id):
        with self.locks.hold(user_id):
            try:
                points = self.credit_points(user_id, self.entry_cost)
                db.session.commit()
            except (LinguaError, SQLAlchemyError) as exc:
                db.session.rollback()
                current_app.logger.warning(f"[ledger-fail] user={user_id} refund: {exc}")
                return failure(exc)
        return success(points)
