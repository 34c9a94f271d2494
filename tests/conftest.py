from pathlib import Path
import sys
import os

import pytest
from flask_login import FlaskLoginClient
from sqlalchemy import event

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Safety default for any module-level app creation during test imports.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from quorum import create_app
from quorum.extensions import db
from quorum.models import User
from quorum.services import membership
from quorum.services.context import VotingContext


def _enable_sqlite_savepoints(engine):
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT semantics.
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture()
def app(tmp_path: Path):
    db_file = tmp_path / "test.sqlite3"
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_file}",
            "SQLALCHEMY_ENGINE_OPTIONS": {},
            "AUTO_CLOSE_ON_THRESHOLD": True,
        }
    )
    app.test_client_class = FlaskLoginClient

    # No app context is held across the test: each test-client request must
    # push its own, or Flask-Login's cached user leaks between requests.
    with app.app_context():
        driver = db.engine.url.drivername
        if driver != "sqlite":
            raise RuntimeError(
                f"Test database must be SQLite, got '{driver}'. Refusing to run destructive test setup."
            )
        _enable_sqlite_savepoints(db.engine)
        db.drop_all()
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db_session(app):
    with app.app_context():
        yield db.session


@pytest.fixture()
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(role="member", email=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            display_name=f"User {counter['n']}",
            password_hash="hashed-password",
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def admin_user(make_user):
    return make_user(role="admin", email="admin@example.com")


@pytest.fixture()
def ctx_for(db_session):
    def _ctx_for(user):
        return VotingContext.for_user(user, db_session)

    return _ctx_for


@pytest.fixture()
def admin_ctx(ctx_for, admin_user):
    return ctx_for(admin_user)


@pytest.fixture()
def make_group(admin_ctx, make_user):
    """Create a group with ``size`` fresh members; returns (group, members)."""

    def _make_group(size, name="Board"):
        group = membership.create_group(admin_ctx, name)
        members = []
        for _ in range(size):
            user = make_user()
            membership.add_member(admin_ctx, group.id, user.id)
            members.append(user)
        return group, members

    return _make_group


@pytest.fixture()
def api_user(app):
    """Create a user outside any long-lived app context.

    The returned instance is detached with its columns loaded, which is all
    a login client needs.
    """
    counter = {"n": 0}

    def _api_user(role="member", email=None):
        counter["n"] += 1
        with app.app_context():
            user = User(
                email=email or f"member{counter['n']}@example.com",
                display_name=f"Member {counter['n']}",
                password_hash="hashed-password",
                role=role,
            )
            db.session.add(user)
            db.session.commit()
            db.session.refresh(user)
        return user

    return _api_user


@pytest.fixture()
def login_client(app):
    def _login_client(user):
        return app.test_client(user=user)

    return _login_client


@pytest.fixture()
def api_admin(api_user):
    return api_user(role="admin", email="admin@example.com")


@pytest.fixture()
def auth_client(login_client, api_admin):
    return login_client(api_admin)
