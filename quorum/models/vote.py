from quorum.extensions import db
from quorum.utils import utc_now

VOTE_CHOICES = ("yes", "no", "abstain")


class Vote(db.Model):
    __tablename__ = "votes"

    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey("questions.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    vote = db.Column(db.String(10), nullable=True)
    poll_option_id = db.Column(
        db.Integer, db.ForeignKey("poll_options.id"), nullable=True
    )
    # 0 for standard and single-select ballots, the option id for
    # multi-select ones, so one constraint covers both uniqueness rules.
    choice_key = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utc_now)

    user = db.relationship("User", lazy=True)

    __table_args__ = (
        db.UniqueConstraint(
            "question_id", "user_id", "choice_key", name="uq_votes_question_user_choice"
        ),
        db.CheckConstraint(
            "(vote IS NOT NULL AND poll_option_id IS NULL)"
            " OR (vote IS NULL AND poll_option_id IS NOT NULL)",
            name="ck_votes_one_payload",
        ),
        db.Index("ix_votes_question", "question_id"),
    )
