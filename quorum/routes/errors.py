from flask import current_app, jsonify

from quorum.services.errors import QuorumError


def register_error_handlers(app):
    @app.errorhandler(QuorumError)
    def handle_quorum_error(error):
        if error.status_code >= 500:
            current_app.logger.error("%s: %s", error.kind, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(401)
    def handle_unauthorized(error):
        return jsonify({"ok": False, "error": "Login required.", "kind": "unauthorized"}), 401

    @app.errorhandler(403)
    def handle_forbidden(error):
        return jsonify({"ok": False, "error": "Not allowed.", "kind": "forbidden"}), 403

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"ok": False, "error": "Not found.", "kind": "not_found"}), 404
