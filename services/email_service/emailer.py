import os
import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Callable, Dict, Optional

from shared.clock import utcnow

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

Mailer = Callable[..., Dict[str, Any]]


def _get_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def build_message(
    from_email: str,
    from_name: str,
    to_email: str,
    to_name: Optional[str],
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, from_email)) if from_name else from_email
    msg["To"] = formataddr((to_name, to_email)) if to_name else to_email

    # Clients render the last alternative they understand, so HTML goes last
    if text_body:
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    return msg


def send_email(
    to_email: str,
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
    to_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Send email via SMTP and return a provider response for bookkeeping.

    Required env:
      SMTP_HOST

    Optional env:
      SMTP_PORT (default 587)
      SMTP_USER
      SMTP_PASS
      FROM_EMAIL
      FROM_NAME
      SMTP_USE_TLS (true/false)
      SMTP_USE_SSL (true/false)
      SMTP_USE_AUTH (true/false)
      SMTP_TIMEOUT (seconds, default 10)
    """

    smtp_host = os.getenv("SMTP_HOST")
    if not smtp_host:
        raise RuntimeError("SMTP_HOST is not set")

    smtp_port = int(os.getenv("SMTP_PORT", "587"))
    smtp_user = os.getenv("SMTP_USER", "")
    smtp_pass = os.getenv("SMTP_PASS", "")
    from_email = os.getenv("FROM_EMAIL") or smtp_user or "noreply@local"
    from_name = os.getenv("FROM_NAME", "Storefront")

    use_tls = _get_bool("SMTP_USE_TLS")
    use_ssl = _get_bool("SMTP_USE_SSL")
    use_auth = _get_bool("SMTP_USE_AUTH")
    timeout = float(os.getenv("SMTP_TIMEOUT", "10"))

    msg = build_message(from_email, from_name, to_email, to_name, subject, html_body, text_body)

    try:
        if use_ssl:
            server = smtplib.SMTP_SSL(smtp_host, smtp_port, timeout=timeout)
        else:
            server = smtplib.SMTP(smtp_host, smtp_port, timeout=timeout)

        with server as s:
            s.ehlo()

            if use_tls and not use_ssl:
                s.starttls()
                s.ehlo()

            if use_auth:
                if not smtp_user or not smtp_pass:
                    raise RuntimeError("SMTP_USE_AUTH=true but SMTP_USER/SMTP_PASS not set")
                s.login(smtp_user, smtp_pass)

            s.sendmail(from_email, [to_email], msg.as_string())

        logger.info("Email sent to=%s subject=%s", to_email, subject)

    except Exception as e:
        logger.exception("Email send failed to=%s error=%s", to_email, repr(e))
        raise

    return {
        "provider": "smtp",
        "host": smtp_host,
        "timestamp": utcnow().isoformat(),
        "recipient": to_email,
    }


def get_mailer() -> Mailer:
    """FastAPI dependency. Override in tests with a fake transport."""
    return send_email
