from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from lingua.services import get_services

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Lingua chat server!'})


@main.route('/signup', methods=['POST'])
def signup():
    data = request.get_json(silent=True) or {}
    result = get_services().users.create(
        username=data.get('username'),
        email=data.get('email'),
        password=data.get('password'),
        native_languages=data.get('nativeLanguages'),
        learning_languages=data.get('learningLanguages'),
        about=data.get('about'),
    )
    if not result['success']:
        return jsonify(result), 400
    user = result['message']
    login_user(user)
    return jsonify({'success': True, 'message': user.to_dict(private=True)}), 201


@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    users = get_services().users
    user = users.authenticate(data.get('email'), data.get('password'))
    if not user:
        return jsonify({'success': False, 'message': 'Invalid email or password'}), 401
    if users.is_banned(user):
        return jsonify({'success': False, 'message': 'This account has been banned'}), 403
    login_user(user)
    return jsonify({'success': True, 'message': user.to_dict(private=True)})


@main.route('/check_login', methods=['GET'])
@login_required
def check_login():
    return jsonify({'success': True, 'message': current_user.to_dict(private=True)})


@main.route('/logout')
@login_required
def logout():
    logout_user()
    return jsonify({'success': True, 'message': 'Logged out successfully.'})
