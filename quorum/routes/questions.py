from flask import request
from flask_login import login_required

from quorum.routes.helpers import (
    admin_required,
    ballot_to_dict,
    current_context,
    int_field,
    payload,
)
from quorum.services import questions
from quorum.services.errors import ValidationError


def _view(ctx, question_id):
    return questions.fetch_question_with_tally(ctx, question_id).to_dict()


def register_question_routes(app):
    @app.route("/api/questions")
    @login_required
    def list_questions():
        status = request.args.get("status") or None
        if status is not None and status not in ("open", "completed"):
            raise ValidationError("Unknown status filter.")
        group_id = request.args.get("group_id", type=int)
        views = questions.list_questions(current_context(), status=status, group_id=group_id)
        return {"ok": True, "questions": [view.to_dict() for view in views]}

    @app.route("/api/questions", methods=["POST"])
    @admin_required
    def create_question():
        data = payload()
        ctx = current_context()
        question = questions.create_question(
            ctx,
            int_field(data, "group_id"),
            data.get("title"),
            description=data.get("description"),
            deadline=data.get("deadline"),
        )
        return {"ok": True, "question": _view(ctx, question.id)}, 201

    @app.route("/api/polls", methods=["POST"])
    @admin_required
    def create_poll():
        data = payload()
        ctx = current_context()
        question = questions.create_poll(
            ctx,
            int_field(data, "group_id"),
            data.get("title"),
            data.get("options") or [],
            description=data.get("description"),
            deadline=data.get("deadline"),
            allow_multiple=data.get("allow_multiple"),
        )
        return {"ok": True, "question": _view(ctx, question.id)}, 201

    @app.route("/api/questions/<int:question_id>")
    @login_required
    def question_detail(question_id):
        return {"ok": True, "question": _view(current_context(), question_id)}

    @app.route("/api/questions/<int:question_id>", methods=["PATCH"])
    @admin_required
    def update_question(question_id):
        data = payload()
        ctx = current_context()
        changes = {
            name: data[name] for name in ("title", "description", "deadline") if name in data
        }
        questions.update_question(ctx, question_id, **changes)
        return {"ok": True, "question": _view(ctx, question_id)}

    @app.route("/api/questions/<int:question_id>/options", methods=["PUT"])
    @admin_required
    def update_options(question_id):
        ctx = current_context()
        questions.update_poll_options(ctx, question_id, payload().get("options") or [])
        return {"ok": True, "question": _view(ctx, question_id)}

    @app.route("/api/questions/<int:question_id>/close", methods=["POST"])
    @admin_required
    def close_question(question_id):
        ctx = current_context()
        questions.close_question(ctx, question_id, payload().get("method") or "manual")
        return {"ok": True, "question": _view(ctx, question_id)}

    @app.route("/api/questions/<int:question_id>", methods=["DELETE"])
    @admin_required
    def delete_question(question_id):
        questions.delete_question(current_context(), question_id)
        return {"ok": True}

    @app.route("/api/questions/<int:question_id>/vote", methods=["POST"])
    @login_required
    def cast_vote(question_id):
        ctx = current_context()
        ballot = questions.cast_vote(ctx, question_id, payload().get("vote"))
        return {
            "ok": True,
            "ballot": ballot_to_dict(ballot),
            "question": _view(ctx, question_id),
        }

    @app.route("/api/questions/<int:question_id>/poll-vote", methods=["POST"])
    @login_required
    def cast_poll_vote(question_id):
        ctx = current_context()
        ballot = questions.cast_poll_vote(
            ctx, question_id, int_field(payload(), "option_id")
        )
        return {
            "ok": True,
            "ballot": ballot_to_dict(ballot),
            "question": _view(ctx, question_id),
        }

    @app.route("/api/questions/<int:question_id>/poll-votes", methods=["POST"])
    @login_required
    def cast_multi_poll_vote(question_id):
        ctx = current_context()
        raw_ids = payload().get("option_ids")
        if not isinstance(raw_ids, list):
            raise ValidationError("option_ids must be a list.")
        option_ids = [int_field({"option_id": value}, "option_id") for value in raw_ids]
        ballots = questions.cast_multi_poll_vote(ctx, question_id, option_ids)
        return {
            "ok": True,
            "ballots": [ballot_to_dict(ballot) for ballot in ballots],
            "question": _view(ctx, question_id),
        }

    @app.route("/api/questions/<int:question_id>/my-votes")
    @login_required
    def my_votes(question_id):
        ballots = questions.get_user_ballots(current_context(), question_id)
        return {"ok": True, "ballots": [ballot_to_dict(ballot) for ballot in ballots]}
