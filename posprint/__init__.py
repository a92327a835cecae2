"""Flask application factory."""
import logging

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level="INFO"):
    """Configure root logging once for the application and CLI."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("posprint").setLevel(level)


def create_app(config_name: str = "default"):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Load configuration
    from posprint.config import config, PrinterSettings
    app.config.from_object(config[config_name])
    configure_logging(app.config["LOG_LEVEL"])

    # Printer core settings and drivers shared by all requests
    from posprint.printer import PrinterController
    app.extensions["printer_controller"] = PrinterController(settings=PrinterSettings.from_mapping(app.config))

    # Initialize extensions
    db.init_app(app)

    # Register blueprints
    from posprint.routes.api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    @app.route("/")
    def index():
        return jsonify({"name": "posprint", "api": "/api"})

    # Create tables
    with app.app_context():
        db.create_all()

    return app
