from flask import current_app, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from quorum.extensions import db
from quorum.models import User
from quorum.routes.helpers import payload
from quorum.services.validation import clean_flag, clean_text


def user_to_dict(user):
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "role": user.role,
    }


def register_auth_routes(app):
    @app.route("/api/auth/signup", methods=["POST"])
    def signup():
        data = payload()
        email = (clean_text(data.get("email"), "Email") or "").lower()
        password = data.get("password") or ""
        display_name = clean_text(data.get("display_name"), "Display name", max_length=200)

        if not email or "@" not in email:
            return {"ok": False, "error": "A valid email is required."}, 400
        if not isinstance(password, str) or len(password) < 8:
            return {"ok": False, "error": "Password must be at least 8 characters long."}, 400

        user = User(
            email=email,
            display_name=display_name,
            password_hash=generate_password_hash(password, method="pbkdf2:sha256"),
        )
        try:
            db.session.add(user)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return {"ok": False, "error": "This email is already registered."}, 409

        current_app.logger.info("User %s signed up", user.id)
        return {"ok": True, "user": user_to_dict(user)}, 201

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = payload()
        email = (clean_text(data.get("email"), "Email") or "").lower()
        password = data.get("password") or ""

        user = User.query.filter_by(email=email).first()
        if (
            not user
            or not isinstance(password, str)
            or not check_password_hash(user.password_hash, password)
        ):
            return {"ok": False, "error": "Invalid email or password."}, 401

        login_user(user, remember=clean_flag(data.get("remember"), "remember"))
        return {"ok": True, "user": user_to_dict(user)}

    @app.route("/api/auth/logout", methods=["POST"])
    @login_required
    def logout():
        logout_user()
        return {"ok": True}

    @app.route("/api/auth/me")
    @login_required
    def me():
        return jsonify({"ok": True, "user": user_to_dict(current_user)})
