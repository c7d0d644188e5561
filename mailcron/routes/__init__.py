"""
Routes Package - Flask Blueprints for Mail Cron

Blueprint structure:
- cron_bp: Health check, cron trigger, debug stats
- webhook_bp: Telegram webhook and webhook management
- oauth_bp: Provider OAuth start and callback
"""

import logging

from .cron import cron_bp
from .oauth import oauth_bp
from .webhook import webhook_bp

logger = logging.getLogger(__name__)


def register_all_blueprints(app):
    """
    Register all Flask blueprints with the application.

    Args:
        app: Flask application instance
    """
    for blueprint in (cron_bp, webhook_bp, oauth_bp):
        app.register_blueprint(blueprint)
        logger.debug(f"Registered {blueprint.name} blueprint")


__all__ = ["cron_bp", "oauth_bp", "webhook_bp", "register_all_blueprints"]
