"""
OAuth Routes Blueprint - connect a Gmail or Outlook mailbox

/oauth/<provider>/start redirects to the provider consent page for a
state token issued by the bot; /oauth/<provider>/callback stores the
refresh token and tells the user on Telegram.
"""

import logging
from typing import Optional

from flask import Blueprint, abort, redirect, render_template_string, request

from mailcron.models import Provider
from mailcron.services import get_services

logger = logging.getLogger(__name__)

oauth_bp = Blueprint("oauth", __name__, url_prefix="/oauth")

RESULT_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{{ title }} - Mail Cron</title>
  <style>
    * { box-sizing: border-box; margin: 0; padding: 0; }
    body {
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
      background: linear-gradient(135deg, #1a1a2e 0%, #16213e 100%);
      min-height: 100vh; display: flex; align-items: center; justify-content: center; padding: 20px;
    }
    .card {
      background: rgba(255, 255, 255, 0.05); border-radius: 20px; padding: 40px;
      max-width: 400px; width: 100%; text-align: center; border: 1px solid rgba(255, 255, 255, 0.1);
    }
    .emoji { font-size: 64px; margin-bottom: 20px; }
    h1 { color: {{ color }}; margin-bottom: 10px; font-size: 24px; }
    .provider { color: #94a3b8; margin-bottom: 20px; }
    .email { background: rgba(255, 255, 255, 0.1); padding: 12px 20px; border-radius: 10px; color: #e2e8f0; margin: 20px 0; }
    .error { background: rgba(239, 68, 68, 0.2); padding: 12px 20px; border-radius: 10px; color: #fca5a5; margin: 20px 0; font-size: 14px; }
    .message { color: #94a3b8; line-height: 1.6; }
    .close-hint { margin-top: 30px; color: #64748b; font-size: 14px; }
  </style>
</head>
<body>
  <div class="card">
    <div class="emoji">{{ emoji }}</div>
    <h1>{{ title }}</h1>
    <p class="provider">{{ provider_name }}</p>
    {% if email %}<div class="email">📧 {{ email }}</div>{% endif %}
    {% if error %}<div class="error">⚠️ {{ error }}</div>{% endif %}
    <p class="message">
      {% if success %}Your account has been connected successfully. You can now close this window and return to Telegram.
      {% else %}Something went wrong. Please return to Telegram and try again.{% endif %}
    </p>
    <p class="close-hint">You can close this window now</p>
  </div>
</body>
</html>"""


def render_oauth_result(
    success: bool, provider: Provider, error: Optional[str] = None, email: Optional[str] = None
) -> str:
    return render_template_string(
        RESULT_PAGE,
        success=success,
        title="Connection Successful!" if success else "Connection Failed",
        emoji="✅" if success else "❌",
        color="#22c55e" if success else "#ef4444",
        provider_name=provider.display_name,
        error=error,
        email=email,
    )


def _provider_or_404(name: str) -> Provider:
    try:
        return Provider(name)
    except ValueError:
        abort(404)


def _notify_failure(chat_id: str, provider: Provider, error: str) -> None:
    try:
        get_services().router.handle_oauth_failure(chat_id, provider, error)
    except Exception as e:
        logger.error(f"Could not report OAuth failure to user: {e}")


@oauth_bp.route("/<provider_name>/start")
def start(provider_name):
    provider = _provider_or_404(provider_name)
    state = request.args.get("state")
    if not state:
        return "Missing state parameter", 400

    services = get_services()
    session = services.db.get_session_by_oauth_state(state, now=services.clock())
    if session is None:
        return "Invalid or expired state", 400

    return redirect(services.fetchers[provider].get_auth_url(state))


@oauth_bp.route("/<provider_name>/callback")
def callback(provider_name):
    provider = _provider_or_404(provider_name)
    services = get_services()

    code = request.args.get("code")
    state = request.args.get("state")
    error = request.args.get("error_description") or request.args.get("error")

    session = services.db.get_session_by_oauth_state(state, now=services.clock()) if state else None

    if error:
        if session:
            _notify_failure(session["chat_id"], provider, error)
        return render_oauth_result(False, provider, error=error)

    if not code or not state:
        return "Missing code or state", 400
    if session is None:
        return "Invalid or expired state", 400
    if session.get("oauth_provider") and session["oauth_provider"] != provider.value:
        return "State was issued for a different provider", 400

    chat_id = session["chat_id"]
    try:
        refresh_token, email = services.fetchers[provider].exchange_code(code)
        if not refresh_token:
            _notify_failure(chat_id, provider, "No refresh token received")
            return render_oauth_result(False, provider, error="No refresh token received")

        services.db.update_provider_credentials(
            chat_id, provider, refresh_token, email, when=services.clock()
        )
        services.router.handle_oauth_success(chat_id, provider, email)
    except Exception as e:
        logger.error(
            f"{provider.display_name} OAuth failed: {e}",
            extra={"extra_data": {"chatId": chat_id}},
        )
        _notify_failure(chat_id, provider, str(e))
        return render_oauth_result(False, provider, error=str(e))

    return render_oauth_result(True, provider, email=email)
