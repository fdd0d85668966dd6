import logging

from flask import Flask
from werkzeug.exceptions import HTTPException

from links.manager import TokenManager
from links.retrieval import RetrievalCoordinator
from web.routes import bp as links_bp

logger = logging.getLogger(__name__)


def create_app(manager: TokenManager, coordinator: RetrievalCoordinator) -> Flask:
    app = Flask(__name__)
    app.extensions["dlgate"] = {"manager": manager, "coordinator": coordinator}
    app.register_blueprint(links_bp)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error")
        return "Server error", 500

    return app
