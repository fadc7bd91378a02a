import os
import ssl
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from config import BASE_URL, DIGITAL_DELIVERY_EMAIL_ENABLED, NOTIFY_EMAIL_FROM

logger = logging.getLogger(__name__)

# SMTP timeout in seconds
SMTP_TIMEOUT = 10


def _smtp_settings():
    return {
        "host": os.environ.get("SMTP_HOST"),
        "port": int(os.environ.get("SMTP_PORT", "587")),
        "user": os.environ.get("SMTP_USER"),
        "password": os.environ.get("SMTP_PASS", "").replace(" ", ""),
        "use_tls": os.environ.get("SMTP_USE_TLS", "true").lower() in ("true", "1", "yes"),
    }


def _render_download_email(order, grants):
    lines = [
        f"Your pet portrait downloads for order {order.label} are ready.",
        "",
    ]
    for grant in grants:
        lines.append(f"- {grant.file_name}: {BASE_URL}{grant.download_url}")
    if grants:
        expires = min(g.expires_at for g in grants)
        lines += ["", f"Links expire on {expires:%d %B %Y}."]
    lines += ["", "--", "Pawtraits"]
    return "\n".join(lines)


def send_download_ready_email(order, grants):
    """
    Email the customer their download links.

    Disabled until the customer-facing template ships
    (DIGITAL_DELIVERY_EMAIL_ENABLED), so by default this only reports 'skipped'.

    Returns:
        tuple: (success: bool, error_message: str | None, outcome_status: str)
               outcome_status in {'sent', 'failed', 'skipped'}
    """
    if not DIGITAL_DELIVERY_EMAIL_ENABLED:
        logger.info(f"[Notifications] Download email disabled. Skipping order {order.label}.")
        return (False, "Download email disabled", "skipped")

    if not order.customer_email:
        logger.warning(f"[Notifications] Order {order.label} has no customer email. Skipping.")
        return (False, "No customer email", "skipped")

    smtp = _smtp_settings()
    if not smtp["host"] or not smtp["user"]:
        logger.warning("[Notifications] SMTP not configured. Skipping download email.")
        return (False, "SMTP not configured", "skipped")

    try:
        msg = MIMEMultipart()
        msg["From"] = NOTIFY_EMAIL_FROM
        msg["To"] = order.customer_email
        msg["Subject"] = f"Your downloads are ready - order {order.label}"
        msg.attach(MIMEText(_render_download_email(order, grants), "plain"))

        if smtp["port"] == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(smtp["host"], smtp["port"], context=context, timeout=SMTP_TIMEOUT) as server:
                server.login(smtp["user"], smtp["password"])
                server.send_message(msg)
        else:
            with smtplib.SMTP(smtp["host"], smtp["port"], timeout=SMTP_TIMEOUT) as server:
                if smtp["use_tls"]:
                    server.starttls()
                server.login(smtp["user"], smtp["password"])
                server.send_message(msg)

        logger.info(f"[Notifications] Download email sent for order {order.label}")
        return (True, None, "sent")

    except (smtplib.SMTPException, OSError) as e:
        error_msg = str(e)
        logger.error(f"[Notifications] Failed to send download email: {error_msg} (Type: {type(e).__name__})")
        return (False, error_msg, "failed")
