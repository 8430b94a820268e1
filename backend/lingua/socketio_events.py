from flask_socketio import join_room, leave_room, emit
from flask import current_app
from lingua import socketio


def _room_name(room_id) -> str:
    return f"chat:{room_id}"


def _room_id(data):
    # Clients send either the bare room id or {'chatRoomId': id}
    if isinstance(data, dict):
        return data.get('chatRoomId')
    return data


def notify_room(event: str, room_id) -> None:
    """Tell every subscriber of a chat room that something changed in it."""
    socketio.emit(event, room_id, to=_room_name(room_id), namespace='/ws')


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    current_app.logger.info('[socket] client disconnected')


def handle_subscribe(data):
    room_id = _room_id(data)
    if room_id is None:
        emit('error', {'message': 'chatRoomId is required'})
        return
    join_room(_room_name(room_id))
    emit('subscribed', {'room': _room_name(room_id)})


def handle_unsubscribe(data):
    room_id = _room_id(data)
    if room_id is None:
        emit('error', {'message': 'chatRoomId is required'})
        return
    leave_room(_room_name(room_id))
    emit('unsubscribed', {'room': _room_name(room_id)})


def handle_chat_message(data):
    room_id = _room_id(data)
    if room_id is not None:
        emit('chat message', room_id, to=_room_name(room_id))


def handle_correction(data):
    room_id = _room_id(data)
    if room_id is not None:
        emit('correction', room_id, to=_room_name(room_id))


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'subscribe': handle_subscribe,
        'unsubscribe': handle_unsubscribe,
        'chat message': handle_chat_message,
        'correction': handle_correction,
        'ping': handle_ping,
    }
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace=namespace)
