import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from fastapi import BackgroundTasks

from .config import server_settings

logger = logging.getLogger(__name__)


def fake_send_email(to_email: str, subject: str, body: str):
    logger.info("Email (not sent, SMTP not configured) to=%s subject=%r body=%r", to_email, subject, body)


def send_email_background(background_tasks: BackgroundTasks, email_to: str, subject: str, body: str):
    background_tasks.add_task(send_email_smtp, email_to, subject, body)


def send_email_smtp(email_to: str, subject: str, body: str):
    if not server_settings.smtp_user:
        fake_send_email(email_to, subject, body)
        return

    msg = MIMEMultipart("alternative")
    msg["From"] = server_settings.smtp_user
    msg["To"] = email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    with smtplib.SMTP(server_settings.smtp_server, server_settings.smtp_port) as server:
        server.starttls()
        server.login(server_settings.smtp_user, server_settings.smtp_password)
        server.sendmail(server_settings.smtp_user, email_to, msg.as_string())
    logger.info("Email sent to %s: %s", email_to, subject)
