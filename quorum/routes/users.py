from flask_login import login_required

from quorum.routes.auth import user_to_dict
from quorum.routes.groups import group_to_dict
from quorum.routes.helpers import admin_required, ballot_to_dict, current_context, payload
from quorum.services import questions, users


def register_user_routes(app):
    @app.route("/api/users")
    @admin_required
    def list_users():
        return {
            "ok": True,
            "users": [user_to_dict(user) for user in users.list_users(current_context())],
        }

    @app.route("/api/users/<int:user_id>", methods=["PATCH"])
    @admin_required
    def update_user(user_id):
        data = payload()
        changes = {"role": data.get("role")}
        if "display_name" in data:
            changes["display_name"] = data["display_name"]
        user = users.update_user(current_context(), user_id, **changes)
        return {"ok": True, "user": user_to_dict(user)}

    @app.route("/api/me/groups")
    @login_required
    def my_groups():
        memberships = users.list_user_groups(current_context())
        return {
            "ok": True,
            "groups": [
                dict(group_to_dict(member.group), role=member.role)
                for member in memberships
            ],
        }

    @app.route("/api/me/votes")
    @login_required
    def my_vote_history():
        ballots = questions.get_vote_history(current_context())
        return {
            "ok": True,
            "votes": [
                dict(ballot_to_dict(ballot), question_title=ballot.question.title)
                for ballot in ballots
            ],
        }
