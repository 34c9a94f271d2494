from flask_login import login_required

from quorum.routes.helpers import admin_required, current_context, int_field, payload
from quorum.services import membership


def group_to_dict(group):
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "required_votes": group.required_votes,
    }


def member_to_dict(member):
    return {
        "group_id": member.group_id,
        "user_id": member.user_id,
        "role": member.role,
        "joined_at": member.joined_at.isoformat() if member.joined_at else None,
        "email": member.user.email if member.user else None,
        "display_name": member.user.display_name if member.user else None,
    }


def register_group_routes(app):
    @app.route("/api/groups")
    @login_required
    def list_groups():
        groups = membership.list_groups(current_context())
        return {"ok": True, "groups": [group_to_dict(group) for group in groups]}

    @app.route("/api/groups", methods=["POST"])
    @admin_required
    def create_group():
        data = payload()
        group = membership.create_group(
            current_context(), data.get("name"), data.get("description")
        )
        return {"ok": True, "group": group_to_dict(group)}, 201

    @app.route("/api/groups/<int:group_id>", methods=["PATCH"])
    @admin_required
    def update_group(group_id):
        data = payload()
        group = membership.update_group(
            current_context(),
            group_id,
            name=data.get("name"),
            description=data.get("description"),
        )
        return {"ok": True, "group": group_to_dict(group)}

    @app.route("/api/groups/<int:group_id>", methods=["DELETE"])
    @admin_required
    def delete_group(group_id):
        membership.delete_group(current_context(), group_id)
        return {"ok": True}

    @app.route("/api/groups/<int:group_id>/members")
    @login_required
    def list_members(group_id):
        members = membership.list_members(current_context(), group_id)
        return {"ok": True, "members": [member_to_dict(member) for member in members]}

    @app.route("/api/groups/<int:group_id>/members", methods=["POST"])
    @admin_required
    def add_member(group_id):
        data = payload()
        ctx = current_context()
        member = membership.add_member(
            ctx, group_id, int_field(data, "user_id"), data.get("role") or "member"
        )
        return {
            "ok": True,
            "member": member_to_dict(member),
            "required_votes": membership.required_votes(ctx, group_id),
        }, 201

    @app.route("/api/groups/<int:group_id>/members/<int:user_id>", methods=["PATCH"])
    @admin_required
    def update_member(group_id, user_id):
        data = payload()
        member = membership.update_member_role(
            current_context(), group_id, user_id, data.get("role")
        )
        return {"ok": True, "member": member_to_dict(member)}

    @app.route("/api/groups/<int:group_id>/members/<int:user_id>", methods=["DELETE"])
    @admin_required
    def remove_member(group_id, user_id):
        ctx = current_context()
        membership.remove_member(ctx, group_id, user_id)
        return {"ok": True, "required_votes": membership.required_votes(ctx, group_id)}
