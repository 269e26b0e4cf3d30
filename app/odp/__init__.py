import logging
import os

from dotenv import load_dotenv
from flask import Flask

from app.odp import models  # noqa: F401  (registers every table on Base.metadata)
from app.odp.config import load_config
from app.odp.db import init_db
from app.odp.routes import bp as routes_bp, register_error_handlers
from app.odp.modules.requirements.api import bp as requirements_bp
from app.odp.modules.changes.api import bp as changes_bp
from app.odp.modules.baselines.api import bp as baselines_bp
from app.odp.modules.waves.api import bp as waves_bp
from app.odp.modules.setup.api import bp as setup_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.json.sort_keys = app.config["JSON_SORT_KEYS"]

    logging.basicConfig(level=app.config["LOG_LEVEL"])
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(requirements_bp)
    app.register_blueprint(changes_bp)
    app.register_blueprint(baselines_bp)
    app.register_blueprint(waves_bp)
    app.register_blueprint(setup_bp)

    register_error_handlers(app)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
