from flask_login import UserMixin

from quorum.extensions import db
from quorum.utils import utc_now

USER_ROLES = ("member", "admin")


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    display_name = db.Column(db.String(200), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="member")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    memberships = db.relationship("GroupMember", backref="user", lazy=True)

    @property
    def is_admin(self):
        return self.role == "admin"
