"""
Send data-retention warning emails (30 / 14 / 3 days before deletion) and the
admin run summary. Uses Resend when RESEND_API_KEY is set; otherwise sending
is skipped and reported as not delivered, so the stage is retried next run.
"""
import json
import logging
from datetime import datetime
from html import escape
from typing import Optional, Tuple

import resend

from app.core.config import settings
from app.models.enums import WarningStage

logger = logging.getLogger(__name__)

SUBSCRIBE_URL = f"{settings.FRONTEND_URL}/subscription"

_SUBJECTS = {
    WarningStage.FIRST: "{app} Account Inactivity Notice - 30 Days Until Deletion",
    WarningStage.SECOND: "{app} Account Deletion in 14 Days - Action Required",
    WarningStage.FINAL: "FINAL WARNING: {app} Account Deletion in 3 Days",
}

_HEADLINES = {
    WarningStage.FIRST: "Your account is scheduled for deletion",
    WarningStage.SECOND: "14 days until your account is deleted",
    WarningStage.FINAL: "Your account will be deleted in 3 days",
}

_BODIES = {
    WarningStage.FIRST: (
        "Your {app} trial expired over 3 months ago and you haven't subscribed. "
        "Your account and all associated data (memories, tasks, settings and personal "
        "information) will be permanently deleted on <strong>{date}</strong> unless you subscribe."
    ),
    WarningStage.SECOND: (
        "This is your second reminder. Your account has been inactive for over 3 months "
        "and will be permanently deleted on <strong>{date}</strong>."
    ),
    WarningStage.FINAL: (
        "This is your final opportunity to keep your {app} account. After <strong>{date}</strong> "
        "everything will be permanently deleted and cannot be recovered."
    ),
}

_BUTTONS = {
    WarningStage.FIRST: "Subscribe Now to Keep Your Data",
    WarningStage.SECOND: "Subscribe Now - Don't Lose Your Data",
    WarningStage.FINAL: "Save My Account Now",
}


def render_warning_email(stage: WarningStage, first_name: Optional[str], deletion_date: datetime) -> Tuple[str, str]:
    """Return (subject, html) for a warning stage."""
    app_name = settings.APP_NAME
    date_str = deletion_date.strftime("%B %d, %Y")
    subject = _SUBJECTS[stage].format(app=app_name)
    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h1>{app_name}</h1>
      <h2>Hello {escape(first_name) if first_name else "there"},</h2>
      <h3>{_HEADLINES[stage]}</h3>
      <p>{_BODIES[stage].format(app=app_name, date=date_str)}</p>
      <p><a href="{SUBSCRIBE_URL}">{_BUTTONS[stage]}</a></p>
      <p>If you no longer wish to use {app_name}, no action is required.</p>
      <p>Best regards,<br>The {app_name} Team</p>
    </div>
    """
    return subject, html.strip()


def _send(to_email: str, subject: str, html: str) -> bool:
    resend.api_key = settings.RESEND_API_KEY
    params = {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": subject,
        "html": html,
    }
    resend.Emails.send(params)
    return True


def send_deletion_warning_email(
    to_email: str,
    first_name: Optional[str],
    stage: WarningStage,
    deletion_date: datetime,
) -> bool:
    """
    Send one warning stage. Returns True only when the provider accepted it.
    Does not raise; errors are logged so the batch keeps going.
    """
    if not settings.RESEND_API_KEY or not to_email:
        logger.warning("[RetentionEmail] Skipping %s warning to %r: email not configured", stage.value, to_email)
        return False

    subject, html = render_warning_email(stage, first_name, deletion_date)
    try:
        _send(to_email, subject, html)
        logger.info("[RetentionEmail] Sent %s warning to %s", stage.value, to_email)
        return True
    except Exception as e:
        logger.error("[RetentionEmail] Failed to send %s warning to %s: %s", stage.value, to_email, e)
        return False


def send_admin_summary(summary: dict) -> bool:
    """Log the run summary and mail it to ADMIN_EMAIL when configured."""
    body = json.dumps(summary, indent=2, default=str)
    logger.info("[RetentionEmail] Data deletion run summary: %s", body)

    if not settings.RESEND_API_KEY or not settings.ADMIN_EMAIL:
        return False
    try:
        _send(
            settings.ADMIN_EMAIL,
            f"{settings.APP_NAME} data deletion run summary",
            f"<pre>{escape(body)}</pre>",
        )
        return True
    except Exception as e:
        logger.error("[RetentionEmail] Failed to send admin summary: %s", e)
        return False
