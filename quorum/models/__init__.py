from quorum.models.activity_log import ActivityLog
from quorum.models.group import Group, GroupMember
from quorum.models.notification import Notification
from quorum.models.poll_option import PollOption
from quorum.models.question import Question
from quorum.models.user import User
from quorum.models.vote import Vote

__all__ = [
    "ActivityLog",
    "Group",
    "GroupMember",
    "Notification",
    "PollOption",
    "Question",
    "User",
    "Vote",
]
