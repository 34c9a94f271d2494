from quorum.extensions import db
from quorum.utils import utc_now

QUESTION_TYPES = ("standard", "poll")
QUESTION_STATUSES = ("open", "completed")
COMPLETION_METHODS = ("manual", "threshold", "deadline")
DECIDED_RESULTS = ("approved", "rejected", "no_majority")


class Question(db.Model):
    __tablename__ = "questions"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("groups.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    question_type = db.Column(db.String(20), nullable=False, default="standard")
    allow_multiple = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default="open")
    deadline = db.Column(db.DateTime, nullable=True)
    completion_method = db.Column(db.String(20), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    decided_result = db.Column(db.String(20), nullable=True)
    # Snapshot of the leading option id; frozen when the poll closes.
    winning_option_id = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utc_now)

    options = db.relationship(
        "PollOption",
        backref="question",
        lazy=True,
        order_by="PollOption.sort_order",
        cascade="all, delete-orphan",
    )
    votes = db.relationship(
        "Vote",
        backref="question",
        lazy=True,
        cascade="all, delete-orphan",
    )

    @property
    def is_open(self):
        return self.status == "open"

    @property
    def is_poll(self):
        return self.question_type == "poll"
