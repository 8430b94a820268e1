from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Services are built once per app and reached through get_services()
    from lingua.services import init_services
    init_services(flask_app)

    from lingua.main import main
    flask_app.register_blueprint(main)

    from lingua.api.users import users
    flask_app.register_blueprint(users, url_prefix='/users')

    from lingua.api.chat import chat
    flask_app.register_blueprint(chat)

    from lingua.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from lingua.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'message': 'Authentication required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            users = [('mgebhard', 'English'), ('emilyG', 'French'), ('laura', 'English')]
            for name, native in users:
                user = User(username=name, email=f'{name.lower()}@example.com', native_languages=[native])
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('recompute-ratings')
    def recompute_ratings_command():
        """Rebuilds every user's average rating from stored room ratings."""
        from lingua.services import get_services
        with flask_app.app_context():
            ledger = get_services().ledger
            for user_id, in db.session.query(User.id).all():
                result = ledger.reconcile_rating(user_id)
                if not result['success']:
                    print(f'user {user_id}: {result["message"]}')
            print('Ratings recomputed.')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(recompute_ratings_command)

    return flask_app
