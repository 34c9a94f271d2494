from quorum.routes.auth import register_auth_routes
from quorum.routes.dashboard import register_dashboard_routes
from quorum.routes.errors import register_error_handlers
from quorum.routes.groups import register_group_routes
from quorum.routes.questions import register_question_routes
from quorum.routes.users import register_user_routes


def register_routes(app):
    register_error_handlers(app)
    register_auth_routes(app)
    register_user_routes(app)
    register_group_routes(app)
    register_question_routes(app)
    register_dashboard_routes(app)
