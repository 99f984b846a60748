import logging
import smtplib
from email.message import EmailMessage
from typing import Dict

from jinja2 import Environment, FileSystemLoader, select_autoescape

import config

logger = logging.getLogger(__name__)

_env = Environment(
    loader=FileSystemLoader(config.TEMPLATES_DIR / "email"),
    autoescape=select_autoescape(["html"]),
)


class Email:
    def __init__(self, user: Dict, url: str):
        self.to = user["email"]
        self.first_name = user.get("name", "").split(" ")[0]
        self.url = url
        self.sender = config.EMAIL_FROM

    def _deliver(self, message: EmailMessage) -> None:
        if not config.EMAIL_HOST:
            logger.info("Email to %s (%s):\n%s", self.to, message["Subject"], message.get_body(("plain",)).get_content())
            return
        with smtplib.SMTP(config.EMAIL_HOST, config.EMAIL_PORT, timeout=10) as smtp:
            smtp.starttls()
            if config.EMAIL_USERNAME:
                smtp.login(config.EMAIL_USERNAME, config.EMAIL_PASSWORD)
            smtp.send_message(message)
        logger.info("Email sent to %s: %s", self.to, message["Subject"])

    def send(self, template: str, subject: str) -> None:
        context = {"first_name": self.first_name, "url": self.url, "subject": subject}
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = self.to
        message.set_content(_env.get_template(f"{template}.txt").render(context))
        message.add_alternative(_env.get_template(f"{template}.html").render(context), subtype="html")
        self._deliver(message)

    def send_welcome(self) -> None:
        self.send("welcome", "Welcome to the Tours family!")

    def send_password_reset(self) -> None:
        self.send("password_reset", f"Your password reset token (valid for only {config.PASSWORD_RESET_MINUTES} minutes)")
