import pytest
from sqlalchemy.exc import OperationalError

from lingua import db
from lingua.errors import ValidationError
from lingua.models import User
from lingua.services.ledger import compute_average

from conftest import run_concurrently


def _rating(user_id):
    return db.session.get(User, user_id).rating


@pytest.mark.parametrize('average,old,new,total,is_new,expected', [
    (4, 0, 3, 0, True, 0),
    (0, 0, 3, 1, True, 3),
    (3, 0, 3, 2, True, 3),
    (5, 0, 3, 2, True, 4),
    (4, 3, 5, 2, False, 5),
    (4, 3, 3, 2, False, 4),
    (3, 3, 0, 1, False, 0),
])
def test_compute_average(average, old, new, total, is_new, expected):
    assert compute_average(average, old, new, total, is_new) == expected


def test_first_room_gives_exactly_default_rating(services, make_user):
    uid = make_user()
    result = services.ledger.update_rating(uid, 0, 3, 1, True)
    assert result == {'success': True, 'message': 3}
    assert _rating(uid) == 3


def test_zero_rooms_resets_to_floor(services, make_user):
    uid = make_user(rating=4)
    assert services.ledger.update_rating(uid, 3, 5, 0, False)['success']
    assert _rating(uid) == 0


def test_existing_room_delta(services, make_user):
    uid = make_user(rating=4)
    assert services.ledger.update_rating(uid, 3, 5, 2, False)['success']
    assert _rating(uid) == 5


def test_unknown_user_fails_without_side_effects(services):
    result = services.ledger.update_rating(999, 0, 3, 1, True)
    assert result['success'] is False
    assert '999' in result['message']


def test_out_of_range_average_is_rejected(services, make_user):
    # Inconsistent inputs would push the average past 5
    uid = make_user(rating=5)
    result = services.ledger.update_rating(uid, 0, 5, 1, False)
    assert result['success'] is False
    assert _rating(uid) == 5


def test_chat_entry_costs_points(services, make_user):
    uid = make_user(points=15)
    assert services.ledger.enter_chat_room(uid) == {'success': True, 'message': 5}
    refused = services.ledger.enter_chat_room(uid)
    assert refused == {'success': False, 'message': 'Not enough points'}
    assert services.ledger.get_points(uid)['message'] == 5
    assert services.ledger.refund_chat_entry(uid)['message'] == 15


def test_get_points_for_missing_user(services):
    assert services.ledger.get_points(12345)['success'] is False


def test_locks_are_reentrant_and_ordered(services):
    locks = services.ledger.locks
    with locks.hold(2, 1):
        with locks.hold(1):
            pass


def test_malformed_user_id_is_a_failed_envelope(services):
    for call in (
        lambda: services.ledger.update_rating('abc', 0, 3, 1, True),
        lambda: services.ledger.enter_chat_room(None),
        lambda: services.ledger.get_points('x1'),
        lambda: services.ledger.reconcile_rating(True),
    ):
        result = call()
        assert result['success'] is False
        assert 'Invalid user id' in result['message']


def test_locks_reject_malformed_ids(services):
    with pytest.raises(ValidationError):
        with services.ledger.locks.hold(1, 'abc'):
            pass


def test_database_failure_is_reported_as_persistence_error(services, make_user, monkeypatch):
    uid = make_user(points=50)

    def broken(user_id, delta):
        raise OperationalError('UPDATE "user" SET points=?', {}, Exception('disk I/O error'))

    monkeypatch.setattr(services.ledger, 'credit_points', broken)
    result = services.ledger.enter_chat_room(uid)
    assert result == {'success': False, 'message': 'Database error (OperationalError)'}
    assert 'UPDATE' not in result['message']
    monkeypatch.undo()
    assert services.ledger.get_points(uid)['message'] == 50


def test_concurrent_updates_for_same_user_keep_both_deltas(file_app):
    with file_app.app_context():
        user = User(username='x', email='x@example.com', rating=4)
        user.set_password('password')
        db.session.add(user)
        db.session.commit()
        uid = user.id

    ledger = file_app.extensions['lingua'].ledger
    # Room A: 3 -> 5, room B: 5 -> 4, so the sum over two rooms goes 8 -> 9
    results = run_concurrently(
        file_app,
        (ledger.update_rating, (uid, 3, 5, 2, False)),
        (ledger.update_rating, (uid, 5, 4, 2, False)),
    )

    assert [r['success'] for r in results] == [True, True]
    with file_app.app_context():
        assert db.session.get(User, uid).rating == 4.5
