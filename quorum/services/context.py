from dataclasses import dataclass
from typing import Optional

from quorum.extensions import db


@dataclass(frozen=True)
class Identity:
    user_id: int
    email: str


@dataclass
class VotingContext:
    """Per-request handle passed to every command: caller plus store session."""

    session: object
    identity: Optional[Identity] = None

    @classmethod
    def for_user(cls, user, session=None):
        return cls(
            session=session or db.session,
            identity=Identity(user_id=user.id, email=user.email),
        )

    @property
    def user_id(self):
        return self.identity.user_id if self.identity else None
