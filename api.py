# api.py
from typing import Any, Dict

from flask import Flask

from admin import create_admin_blueprint
from auth import create_auth_blueprint
from catalog import create_catalog_blueprint
from comments import create_comments_blueprint
from enrollment import create_enrollment_blueprint
from errors import register_error_handlers
from notifications import Notifier, create_notifications_blueprint
from quizzes import create_quizzes_blueprint

BLUEPRINT_FACTORIES = (
    create_auth_blueprint,
    create_catalog_blueprint,
    create_enrollment_blueprint,
    create_quizzes_blueprint,
    create_comments_blueprint,
    create_notifications_blueprint,
    create_admin_blueprint,
)


def register_api(app: Flask, base_path: str, deps: Dict[str, Any]) -> Dict[str, Any]:
    """
    Wire every component onto `app`.
    Required deps: store, blobs, mailer. A notifier is built from the store when absent.
    """
    deps = dict(deps)
    deps.setdefault("notifier", Notifier(deps["store"], deps.get("NOTIFICATION_LOCALE") or "ar"))
    app.extensions["learning_platform"] = deps
    for factory in BLUEPRINT_FACTORIES:
        app.register_blueprint(factory(base_path, deps))
    register_error_handlers(app)
    return deps
