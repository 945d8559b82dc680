"""
Email service for booking notifications.

Sends transactional emails over SMTP. The notification dispatcher is the
only caller; it decides *when* to send, this module only delivers.

Usage:
    from booking_sync.services.email_service import send_email

    send_email(
        to="client@example.com",
        subject="Your session is confirmed",
        template="emails/booking_confirmed.html",
        context={"client_name": "Jane"},
        headers={"X-Booking-Ref": "bk_123"},
    )
"""

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def _send_smtp(app, msg):
    """Deliver `msg` over SMTP. Returns True if the server accepted it."""
    with app.app_context():
        if app.config.get("MAIL_SUPPRESS_SEND"):
            logger.info(f"MAIL_SUPPRESS_SEND set, not sending to {msg['To']}: {msg['Subject']}")
            return True

        host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
        port = app.config.get("MAIL_SMTP_PORT", 587)
        username = app.config.get("MAIL_USERNAME")
        password = app.config.get("MAIL_PASSWORD")

        if not username or not password:
            logger.warning("Email not sent: MAIL_USERNAME or MAIL_PASSWORD not configured.")
            return False

        try:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(username, password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")
            return False

        logger.info(f"Email sent to {msg['To']}: {msg['Subject']} ({msg['Message-ID']})")
        return True


def _build_message(app, to, subject, template, context, reply_to=None, headers=None):
    from_name = app.config.get("MAIL_FROM_NAME", "Buildappswith")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME") or ""

    html_body = render_template(template, **context)

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)
    msg["Date"] = formatdate(usegmt=True)
    msg["Message-ID"] = make_msgid(domain=from_email.partition("@")[2] or None)

    if reply_to:
        msg["Reply-To"] = reply_to
    for name, value in (headers or {}).items():
        msg[name] = value

    msg.attach(MIMEText(html_body, "html"))
    return msg


def send_email(to, subject, template, context=None, reply_to=None, headers=None):
    """
    Send a templated HTML email without blocking the request.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address.
        headers:   Extra message headers (e.g. X-Booking-Ref).
    """
    app = current_app._get_current_object()
    msg = _build_message(app, to, subject, template, context or {}, reply_to, headers)

    thread = threading.Thread(target=_send_smtp, args=(app, msg))
    thread.daemon = True
    thread.start()


def send_email_sync(to, subject, template, context=None, reply_to=None, headers=None):
    """Same as send_email but blocks until sent. Returns True on delivery."""
    app = current_app._get_current_object()
    msg = _build_message(app, to, subject, template, context or {}, reply_to, headers)
    return _send_smtp(app, msg)
