from quorum.extensions import db
from quorum.utils import utc_now

MEMBER_ROLES = ("member", "chair", "admin")


class Group(db.Model):
    __tablename__ = "groups"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    # Denormalized member count; only the membership service writes it.
    required_votes = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    members = db.relationship(
        "GroupMember",
        backref="group",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="GroupMember.joined_at",
    )
    questions = db.relationship(
        "Question", backref="group", lazy=True, cascade="all, delete-orphan"
    )


class GroupMember(db.Model):
    __tablename__ = "group_members"

    group_id = db.Column(db.Integer, db.ForeignKey("groups.id"), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    role = db.Column(db.String(20), nullable=False, default="member")
    joined_at = db.Column(db.DateTime, nullable=False, default=utc_now)
