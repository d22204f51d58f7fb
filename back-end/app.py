import os

from firebase_functions import https_fn, logger
from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import errors
from boards import boards_bp
from firebase import AppContext, create_context
from invitations import invitations_bp

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.environ.get("PORT", "5000"))
DEBUG = os.environ.get("FLASK_DEBUG", "").lower() in {"1", "true", "yes"}


def create_app(context: AppContext = None) -> Flask:
    app = Flask(__name__)
    app.extensions["taskflow"] = context if context is not None else create_context()

    CORS(app, resources={r"/api/*": {"origins": CORS_ORIGINS}})
    app.register_blueprint(boards_bp, url_prefix="/api")
    app.register_blueprint(invitations_bp, url_prefix="/api")

    @app.errorhandler(https_fn.HttpsError)
    def handle_https_error(e):
        body = {"error": {"code": errors.code_name(e), "message": e.message}}
        return jsonify(body), errors.http_status(e)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": {"code": e.name.lower().replace(" ", "-"), "message": e.description}}), e.code
        logger.error(f"[app] unhandled error: {e!r}")
        return jsonify({"error": {"code": "internal", "message": "An unexpected error occurred."}}), 500

    @app.route("/api/health", methods=["GET"])
    def health():
        return {"ok": True}, 200

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=PORT, debug=DEBUG, use_reloader=False)
