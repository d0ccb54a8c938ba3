import logging

from flask import Flask, jsonify

from config import Config
from errors import ServiceError
from notifier import get_notifier
import sql_db
from routes_api import api
from routes_auth import auth_bp
from routes_reservations import reservations_bp


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    sql_db.configure_engine(app.config["SQLALCHEMY_DATABASE_URI"])
    # create tables for demo
    sql_db.init_db()

    app.extensions["notifier"] = app.config.get("NOTIFIER_INSTANCE") or get_notifier(
        app.config["NOTIFIER"], app.config["NOTIFY_TIMEOUT_SECONDS"]
    )

    @app.errorhandler(ServiceError)
    def handle_service_error(e: ServiceError):
        return jsonify(e.to_dict()), e.status_code

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    app.register_blueprint(api)
    app.register_blueprint(auth_bp)
    app.register_blueprint(reservations_bp)
    return app


if __name__ == "__main__":
    create_app().run(debug=True)
