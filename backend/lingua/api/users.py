from functools import wraps

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user, logout_user
from lingua import db
from lingua.models import User
from lingua.services import get_services

users = Blueprint('users', __name__)


def _respond(result, status=200):
    return jsonify(result), (status if result['success'] else 400)


def ensure_match(view):
    """Only let users read or change their own account."""
    @wraps(view)
    def wrapper(user_id, *args, **kwargs):
        if user_id != current_user.id:
            return jsonify({'success': False, 'message': 'Forbidden'}), 403
        return view(user_id, *args, **kwargs)
    return wrapper


@users.route('', methods=['GET'])
@login_required
def list_pen_pals():
    return _respond(get_services().users.potential_pen_pals(current_user.id))


@users.route('/<int:user_id>', methods=['GET'])
@login_required
@ensure_match
def get_account(user_id):
    user = db.session.get(User, user_id)
    return jsonify({'success': True, 'message': user.to_dict(private=True)})


@users.route('/<int:user_id>', methods=['PUT'])
@login_required
@ensure_match
def update_account(user_id):
    data = request.get_json(silent=True) or {}
    return _respond(get_services().users.update(
        user_id,
        username=data.get('username'),
        about=data.get('about'),
        native_languages=data.get('nativeLanguages'),
        learning_languages=data.get('learningLanguages'),
        password=data.get('password'),
    ))


@users.route('/<int:user_id>', methods=['DELETE'])
@login_required
@ensure_match
def delete_account(user_id):
    result = get_services().users.remove(user_id)
    if result['success']:
        logout_user()
    return _respond(result)


@users.route('/<int:user_id>/chats', methods=['GET'])
@login_required
@ensure_match
def get_all_joined_chat_rooms(user_id):
    return _respond(get_services().chat_rooms.list_rooms_for_user(user_id))


@users.route('/<int:user_id>/points', methods=['GET'])
@login_required
@ensure_match
def get_points(user_id):
    return _respond(get_services().ledger.get_points(user_id))


@users.route('/<int:user_id>/corrections', methods=['GET'])
@login_required
@ensure_match
def get_corrections(user_id):
    return _respond(get_services().messages.get_corrections_written_for_user(user_id))


@users.route('/<int:user_id>/report', methods=['POST'])
@login_required
def report_user(user_id):
    # The reporter is always the logged-in user, whatever the body says
    if db.session.get(User, user_id) is None:
        return jsonify({'success': False, 'message': 'User not found'}), 404
    return _respond(get_services().users.report(user_id, current_user.id))
