import logging
import os
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from farmtrust.config import Config
from farmtrust.db import db
from farmtrust.services.errors import ServiceError
from farmtrust.routes.auth import bp as auth_bp
from farmtrust.routes.orders import bp as orders_bp
from farmtrust.routes.payments import bp as payments_bp
from farmtrust.routes.disputes import bp as disputes_bp
from farmtrust.routes.notifications import bp as notifications_bp
from farmtrust.routes.admin.escrow import bp_escrow
from farmtrust.routes.admin.orders import bp_orders, bp_payments
from farmtrust.routes.admin.disputes import bp_disputes


def create_app(config_object=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)

    with app.app_context():
        from farmtrust import models  # noqa: F401
        db.create_all()

    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(disputes_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(bp_escrow)
    app.register_blueprint(bp_orders)
    app.register_blueprint(bp_payments)
    app.register_blueprint(bp_disputes)

    @app.errorhandler(ServiceError)
    def handle_service_error(e: ServiceError):
        db.session.rollback()
        if e.code >= 500:
            app.logger.error("Service error: %s", e.message)
        else:
            app.logger.info("Rejected (%s): %s", e.code, e.message)
        return jsonify({"error": e.message}), e.code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.name.lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({"error": "internal_error"}), 500

    @app.get("/")
    def root():
        return jsonify(service="farmtrust", status="ok")

    @app.get("/health")
    def health():
        return jsonify(service="farmtrust", status="ok"), 200

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=True)
