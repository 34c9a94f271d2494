import click
from flask import Flask

from quorum.config import Config
from quorum.extensions import db, login_manager, migrate
from quorum.models import User
from quorum.routes import register_routes
from quorum.services.context import VotingContext
from quorum.services.notifications import register_notification_handlers
from quorum.services.questions import close_expired_questions


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    register_routes(app)
    register_notification_handlers()
    register_commands(app)
    return app


def register_commands(app):
    @app.cli.command("close-expired")
    def close_expired():
        """Close every open question whose deadline has passed."""
        closed = close_expired_questions(VotingContext(session=db.session))
        click.echo(f"Closed {len(closed)} question(s).")


__all__ = ["create_app", "db", "migrate"]
