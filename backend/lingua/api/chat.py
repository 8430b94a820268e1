from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from lingua import db
from lingua.models import ChatRoom, Message, chat_room_messages
from lingua.services import get_services
from lingua.socketio_events import notify_room


chat = Blueprint('chat', __name__)


def _respond(result, status=200):
    return jsonify(result), (status if result['success'] else 400)


def _room_for_participant(room_id):
    """Load a room the current user takes part in, or return an error response."""
    try:
        room = db.session.get(ChatRoom, int(room_id))
    except (TypeError, ValueError):
        return None, (jsonify({'success': False, 'message': 'chatRoomId must be an id'}), 400)
    if room is None:
        return None, (jsonify({'success': False, 'message': 'Chat room not found'}), 404)
    if not room.has_user(current_user.id):
        return None, (jsonify({'success': False, 'message': 'You are not in this chat room'}), 403)
    return room, None


@chat.route('/info/chatRoom', methods=['POST'])
@login_required
def create_chat_room():
    """Open the chat with a pen pal, paying the entry cost when the room is new."""
    data = request.get_json(silent=True) or {}
    pen_pal_id = data.get('potentialPenPalId')
    if not pen_pal_id:
        return jsonify({'success': False, 'message': 'potentialPenPalId is required'}), 400
    try:
        pen_pal_id = int(pen_pal_id)
    except (TypeError, ValueError):
        return jsonify({'success': False, 'message': 'potentialPenPalId must be an id'}), 400

    services = get_services()
    existing = services.chat_rooms.find_room(current_user.id, pen_pal_id)
    if existing is not None:
        return jsonify({'success': True, 'message': [existing.to_dict()]})

    paid = services.ledger.enter_chat_room(current_user.id)
    if not paid['success']:
        return jsonify(paid), 402
    created = services.chat_rooms.create_room(current_user.id, pen_pal_id)
    if not created['success']:
        services.ledger.refund_chat_entry(current_user.id)
        current_app.logger.info(f"[room-create] refunded user={current_user.id} after failure")
        return jsonify(created), 400
    return jsonify(created), 201


@chat.route('/info/chat/<int:room_id>', methods=['GET'])
@login_required
def get_chat_room(room_id):
    room, error = _room_for_participant(room_id)
    if error:
        return error
    return _respond(get_services().chat_rooms.get_room(room.id))


@chat.route('/chat/message', methods=['POST'])
@login_required
def create_message():
    data = request.get_json(silent=True) or {}
    room, error = _room_for_participant(data.get('chatRoomId'))
    if error:
        return error
    room_id = room.id

    services = get_services()
    created = services.messages.add_message(current_user.id, data.get('message'))
    if not created['success']:
        return jsonify(created), 400
    message = created['message'][0]
    linked = services.chat_rooms.add_message(room_id, message['id'])
    if not linked['success']:
        return jsonify(linked), 400
    notify_room('chat message', room_id)
    return jsonify(created), 201


@chat.route('/chat/<int:room_id>/rate', methods=['POST'])
@login_required
def rate_partner(room_id):
    data = request.get_json(silent=True) or {}
    room, error = _room_for_participant(room_id)
    if error:
        return error
    if data.get('rating') is None:
        return jsonify({'success': False, 'message': 'rating is required'}), 400
    return _respond(get_services().chat_rooms.rate_partner(room.id, current_user.id, data.get('rating')))


@chat.route('/message/<int:message_id>/correction', methods=['POST'])
@login_required
def create_correction(message_id):
    data = request.get_json(silent=True) or {}
    room_id = None
    if db.session.get(Message, message_id) is not None:
        room_id = (
            db.session.query(chat_room_messages.c.chat_room_id)
            .filter(chat_room_messages.c.message_id == message_id)
            .scalar()
        )
    # Only messages posted in a chat room can be corrected, and only by its participants
    if room_id is None:
        return jsonify({'success': False, 'message': 'Message not found'}), 404
    room, error = _room_for_participant(room_id)
    if error:
        return error
    result = get_services().corrections.add_correction(
        current_user.id,
        message_id,
        data.get('errorPhrase'),
        data.get('correctPhrase'),
        data.get('comments'),
    )
    if not result['success']:
        return jsonify(result), 400
    notify_room('correction', room.id)
    return jsonify(result), 201
