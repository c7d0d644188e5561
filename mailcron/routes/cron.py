"""
Cron Routes Blueprint - health check, the scheduled mail check, debug stats
"""

import logging

from flask import Blueprint, jsonify

from mailcron.pipeline import generate_run_id
from mailcron.services import get_services
from mailcron.startup import get_health_status

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__)


@cron_bp.route("/health")
def health():
    status = get_health_status(get_services().db)
    code = 200 if status["status"] == "OK" else 500
    return jsonify(status), code


@cron_bp.route("/cron/check")
def cron_check():
    """
    Run one mail check over every active user.

    Returns the run summary. Per-user and per-provider failures are counted
    in the summary; only a failure to list users yields a 500.
    """
    services = get_services()
    run_id = generate_run_id(services.clock())
    try:
        summary = services.orchestrator().run(run_id=run_id)
    except Exception as e:
        logger.error(f"Cron run failed: {e}", extra={"extra_data": {"runId": run_id}})
        return jsonify({"runId": run_id, "error": str(e)}), 500
    return jsonify(summary.to_dict())


@cron_bp.route("/debug/stats")
def debug_stats():
    try:
        return jsonify(get_services().db.get_stats())
    except Exception as e:
        logger.error(f"Stats query failed: {e}")
        return jsonify({"error": str(e)}), 500
