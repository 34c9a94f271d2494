from flask import request
from flask_login import login_required

from quorum.routes.helpers import admin_required, current_context
from quorum.services import analytics, notifications


def notification_to_dict(item):
    return {
        "id": item.id,
        "type": item.type,
        "title": item.title,
        "message": item.message,
        "question_id": item.question_id,
        "read": item.read,
        "created_at": item.created_at.isoformat(),
    }


def activity_to_dict(entry, user):
    return {
        "id": entry.id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "metadata": entry.details,
        "created_at": entry.created_at.isoformat(),
        "user_id": entry.user_id,
        "email": user.email if user else None,
        "display_name": user.display_name if user else None,
    }


def register_dashboard_routes(app):
    @app.route("/api/stats")
    @admin_required
    def stats():
        return {"ok": True, "stats": analytics.get_stats(current_context())}

    @app.route("/api/activity")
    @admin_required
    def recent_activity():
        limit = request.args.get("limit", default=20, type=int)
        limit = min(max(limit, 1), 100)
        rows = analytics.recent_activity(current_context(), limit=limit)
        return {
            "ok": True,
            "activity": [activity_to_dict(entry, user) for entry, user in rows],
        }

    @app.route("/api/notifications")
    @login_required
    def list_notifications():
        unread_only = request.args.get("unread") == "1"
        items = notifications.list_notifications(current_context(), unread_only=unread_only)
        return {
            "ok": True,
            "notifications": [notification_to_dict(item) for item in items],
        }

    @app.route("/api/notifications/<int:notification_id>/read", methods=["POST"])
    @login_required
    def mark_notification_read(notification_id):
        item = notifications.mark_read(current_context(), notification_id)
        return {"ok": True, "notification": notification_to_dict(item)}

    @app.route("/api/notifications/read-all", methods=["POST"])
    @login_required
    def mark_all_notifications_read():
        return {"ok": True, "updated": notifications.mark_all_read(current_context())}
