"""
Outbound email through the Resend HTTP API.

Sending never raises: callers get an EmailResult and decide whether a
failure matters (invitations are kept even when the email fails).
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from obra_erp.config import settings
from obra_erp.core.logging import get_logger
from obra_erp.core.models import EmailResult

log = get_logger(__name__)

RESET_TOKEN_TTL = timedelta(hours=1)

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


def _message_id(response: httpx.Response) -> str | None:
    """Message id from a 2xx body; None when the body is not the expected JSON object."""
    try:
        data = response.json()
    except ValueError:
        log.warning("email_unexpected_response", status=response.status_code, body=response.text[:200])
        return None
    return data.get("id") if isinstance(data, dict) else None


def reset_token_expires() -> datetime:
    """Expiry for password reset tokens (1 hour from now)."""
    return datetime.now(timezone.utc) + RESET_TOKEN_TTL


class EmailClient:
    """HTTP client for the Resend API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        from_email: str | None = None,
        timeout: float = 15.0,
    ):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.base_url = (base_url or settings.resend_api_url).rstrip("/")
        self.from_email = from_email or settings.resend_from_email
        self._client = httpx.Client(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def send(self, to: str, subject: str, html: str) -> EmailResult:
        if not self.enabled:
            log.warning("email_not_configured", to=to, subject=subject)
            return EmailResult(success=False, error="Email not configured")

        try:
            response = self._client.post(
                f"{self.base_url}/emails",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.from_email, "to": [to], "subject": subject, "html": html},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error("email_http_error", to=to, status=e.response.status_code, error=str(e))
            return EmailResult(success=False, error=f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            log.error("email_send_error", to=to, error=str(e))
            return EmailResult(success=False, error=str(e))

        message_id = _message_id(response)
        log.info("email_sent", to=to, subject=subject, message_id=message_id)
        return EmailResult(success=True, message_id=message_id)

    def send_invitation_email(
        self,
        to: str,
        inviter_name: str,
        org_name: str,
        invitation_url: str,
        role: str,
    ) -> EmailResult:
        html = _env.get_template("invitation_email.html").render(
            org_name=org_name,
            inviter_name=inviter_name,
            role=role,
            invitation_url=invitation_url,
            year=datetime.now().year,
            app_name=settings.app_name,
        )
        return self.send(to, f"Invitación a {org_name}", html)

    def send_password_reset_email(self, to: str, reset_token: str, reset_url: str) -> EmailResult:
        html = _env.get_template("password_reset_email.html").render(
            reset_link=f"{reset_url}?token={reset_token}",
        )
        return self.send(to, "Restablecer contraseña", html)
