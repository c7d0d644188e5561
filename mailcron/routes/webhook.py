"""
Webhook Routes Blueprint - Telegram updates and webhook management
"""

import logging

from flask import Blueprint, jsonify, request

from mailcron.services import get_services

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhook")


@webhook_bp.route("/telegram", methods=["POST"])
def telegram_update():
    """Receive one bot update. Always 200 so Telegram does not redeliver."""
    update = request.get_json(silent=True) or {}
    get_services().router.process_update(update)
    return "", 200


@webhook_bp.route("/setup")
def setup():
    services = get_services()
    if not services.telegram.configured:
        return jsonify({"error": "TELEGRAM_BOT_TOKEN not configured"}), 400

    webhook_url = f"{services.config.base_url}/webhook/telegram"
    try:
        services.telegram.set_webhook(webhook_url)
    except Exception as e:
        logger.error(f"Failed to set webhook: {e}")
        return jsonify({"error": str(e)}), 500

    return jsonify(
        {
            "success": True,
            "webhookUrl": webhook_url,
            "message": "Webhook set successfully. Your bot is now active!",
        }
    )


@webhook_bp.route("/status")
def status():
    try:
        return jsonify(get_services().telegram.get_webhook_info())
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@webhook_bp.route("/delete")
def delete():
    try:
        get_services().telegram.delete_webhook()
    except Exception as e:
        logger.error(f"Failed to delete webhook: {e}")
        return jsonify({"error": str(e)}), 500
    return jsonify({"success": True, "message": "Webhook deleted"})
