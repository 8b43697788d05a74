"""
Login completion page.

The callback redirects the browser here with either ``token`` and ``user`` or
``error``. On success the page replaces any stored session with the new one
(clear, then set) and goes home; on failure it shows the error and stores
nothing. The query string is removed from the address bar as soon as the page
loads, so reloading the page cannot replay the token.
"""

import html
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, MutableMapping, Optional

from fastapi.responses import HTMLResponse


AUTH_USER_KEY = "auth_user"
AUTH_TOKEN_KEY = "auth_token"
AUTH_TIMESTAMP_KEY = "auth_timestamp"

STORAGE_KEYS = (AUTH_USER_KEY, AUTH_TOKEN_KEY, AUTH_TIMESTAMP_KEY)

ERROR_MESSAGES = {
    "entra_not_enabled": "Microsoft sign-in is not enabled.",
    "invalid_session": "Your sign-in session expired. Please start again.",
    "verification_failed": "We could not verify the sign-in response.",
    "provider_error": "Microsoft sign-in is currently unavailable.",
    "configuration_error": "Microsoft sign-in is not configured correctly.",
    "no_email_claim": "Your Microsoft account did not provide an email address.",
    "user_not_found": "No account exists for your email. Contact your administrator.",
    "user_suspended": "Your account is suspended.",
    "access_denied": "You do not have access to this application.",
    "provisioning_failed": "Your account could not be created.",
    "missing_authentication_data": "Missing authentication data.",
    "malformed_authentication_data": "Malformed authentication data.",
}

DEFAULT_ERROR_MESSAGE = "Authentication failed."


# =============================================================================
# Completion Parameters
# =============================================================================

@dataclass(frozen=True)
class CompletionResult:
    """Outcome of reading the completion query parameters."""

    token: Optional[str] = None
    user: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        if self.error is None:
            return ""
        return ERROR_MESSAGES.get(self.error, DEFAULT_ERROR_MESSAGE)

    def apply(self, storage: MutableMapping[str, str], now: Optional[datetime] = None) -> bool:
        """
        Persist the session into client-side storage.

        Any previous session is removed before the new one is written, so
        storage never holds a mix of two sessions. Failures leave storage
        untouched.

        Returns:
            True if a session was written.
        """
        if not self.ok:
            return False

        for key in STORAGE_KEYS:
            storage.pop(key, None)

        now = now or datetime.now(timezone.utc)
        storage[AUTH_USER_KEY] = json.dumps(self.user)
        storage[AUTH_TOKEN_KEY] = self.token
        storage[AUTH_TIMESTAMP_KEY] = str(int(now.timestamp() * 1000))
        return True


def parse_completion_params(query: Mapping[str, str]) -> CompletionResult:
    """
    Read ``token``/``user`` or ``error`` from the completion query.

    Args:
        query: Query parameters of the completion request

    Returns:
        CompletionResult; ``error`` is set when there is nothing to persist.
    """
    error = query.get("error")
    if error:
        return CompletionResult(error=error)

    token = query.get("token")
    user_param = query.get("user")
    if not token or not user_param:
        return CompletionResult(error="missing_authentication_data")

    try:
        user = json.loads(user_param)
    except ValueError:
        return CompletionResult(error="malformed_authentication_data")

    if not isinstance(user, dict):
        return CompletionResult(error="malformed_authentication_data")

    return CompletionResult(token=token, user=user)


# =============================================================================
# HTML Response Templates
# =============================================================================

def _js_literal(value: Any) -> str:
    # JSON is valid JS; escaping '<' keeps '</script>' out of the page.
    return json.dumps(value).replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


_STYLE = """
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
            background: #f3f4f6;
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
            padding: 20px;
        }
        .container {
            background: white;
            border-radius: 12px;
            padding: 40px;
            max-width: 500px;
            width: 100%;
            box-shadow: 0 10px 40px rgba(0,0,0,0.1);
            text-align: center;
        }
        h1 { color: #1f2937; font-size: 24px; margin-bottom: 16px; }
        .message { color: #6b7280; font-size: 16px; line-height: 1.6; margin-bottom: 32px; }
        .error { color: #ef4444; }
        .button {
            display: inline-block;
            background: #2563eb;
            color: white;
            padding: 14px 32px;
            border-radius: 8px;
            text-decoration: none;
            font-weight: 600;
        }
        .support { margin-top: 24px; color: #9ca3af; font-size: 13px; }
"""


def render_success_page(result: CompletionResult, home_path: str) -> HTMLResponse:
    """
    Render the page that stores the session and redirects home.

    Args:
        result: Successful completion result
        home_path: Where to send the user afterwards
    """
    html_content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="referrer" content="no-referrer">
    <title>Signing you in</title>
    <style>{_STYLE}</style>
    <script>
        (function () {{
            window.history.replaceState(null, "", window.location.pathname);
            var keys = {_js_literal(list(STORAGE_KEYS))};
            keys.forEach(function (key) {{ window.localStorage.removeItem(key); }});
            window.localStorage.setItem({_js_literal(AUTH_USER_KEY)}, JSON.stringify({_js_literal(result.user)}));
            window.localStorage.setItem({_js_literal(AUTH_TOKEN_KEY)}, {_js_literal(result.token)});
            window.localStorage.setItem({_js_literal(AUTH_TIMESTAMP_KEY)}, String(Date.now()));
            window.location.replace({_js_literal(home_path)});
        }})();
    </script>
</head>
<body>
    <div class="container">
        <h1>Signing you in&hellip;</h1>
    </div>
</body>
</html>
"""

    return HTMLResponse(
        content=html_content,
        status_code=200,
        headers={"Cache-Control": "no-store", "Referrer-Policy": "no-referrer"},
    )


def render_failure_page(result: CompletionResult, home_path: str) -> HTMLResponse:
    """
    Render the failure state. Nothing is written to storage.

    Args:
        result: Failed completion result
        home_path: Target of the 'Return to Login' link
    """
    html_content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Authentication Failed</title>
    <style>{_STYLE}</style>
    <script>
        window.history.replaceState(null, "", window.location.pathname);
    </script>
</head>
<body>
    <div class="container">
        <h1 class="error">Authentication Failed</h1>
        <p class="message">{html.escape(result.message)}</p>
        <a href="{html.escape(home_path, quote=True)}" class="button">Return to Login</a>
        <div class="support">
            <p>Please contact your system administrator if this problem persists.</p>
        </div>
    </div>
</body>
</html>
"""

    return HTMLResponse(
        content=html_content,
        status_code=200,
        headers={"Cache-Control": "no-store"},
    )
