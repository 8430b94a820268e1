import os
import sys
import threading
import pytest

# Ensure the backend root (containing the `lingua` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from lingua import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    CHAT_ENTRY_COST = 10
    CORRECTION_REWARD = 1
    REPORTS_BAN_THRESHOLD = 3
    SUPPORTED_LANGUAGES = ['French', 'English']


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import lingua.models  # noqa: F401
        db.create_all()
    # Requests must run without a shared app context so each gets its own
    # session and logged-in user
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database, for tests that share it across threads."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'lingua.db'}"

    application = create_app(FileConfig)
    with application.app_context():
        import lingua.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def run_concurrently(application, *calls):
    """Run each ``(fn, args)`` on its own thread, all released together, and return their results."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, fn, args):
        with application.app_context():
            barrier.wait()
            results[index] = fn(*args)

    threads = [threading.Thread(target=worker, args=(i, fn, args)) for i, (fn, args) in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return results


@pytest.fixture()
def app_ctx(flask_app):
    """Direct service access needs an app context of its own."""
    with flask_app.app_context():
        yield flask_app


@pytest.fixture()
def services(app_ctx):
    return app_ctx.extensions['lingua']


@pytest.fixture()
def make_user(app_ctx):
    from lingua.models import User

    counter = {'n': 0}

    def _make(username=None, rating=0, points=50):
        counter['n'] += 1
        name = username or f'user{counter["n"]}'
        user = User(username=name, email=f'{name}@example.com', rating=rating, points=points)
        user.set_password('password')
        db.session.add(user)
        db.session.commit()
        return user.id

    return _make


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def signup():
    def _signup(test_client, name, password='password'):
        res = test_client.post('/signup', json={
            'username': name,
            'email': f'{name}@example.com',
            'password': password,
            'nativeLanguages': ['English'],
            'learningLanguages': ['French'],
        })
        assert res.status_code == 201, res.get_json()
        return res.get_json()['message']
    return _signup


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
