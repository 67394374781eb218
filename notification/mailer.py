import logging
import os
from email.message import EmailMessage

import aiosmtplib

from common.errors import TransientDependencyError
from notification.templates import Email

BACKEND_SMTP = "smtp"
BACKEND_LOG = "log"

# Rejections that will not change on redelivery
PERMANENT_SMTP_CODES = frozenset({550, 551, 552, 553, 554, 555})


class Mailer:
    """Sends notifications over SMTP, or only logs them with the ``log`` backend.

    Connection problems surface as ``TransientDependencyError``; a rejected
    recipient is logged and dropped here.
    """

    def __init__(self, backend: str = BACKEND_SMTP, host: str = "localhost", port: int = 587,
                 username: str | None = None, password: str | None = None,
                 use_tls: bool = True, sender: str = "no-reply@shopshoes.local",
                 timeout: float = 10.0):
        self.backend = backend
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "Mailer":
        return cls(
            backend=os.environ.get("MAIL_BACKEND", BACKEND_SMTP).lower(),
            host=os.environ.get("SMTP_HOST", "localhost"),
            port=int(os.environ.get("SMTP_PORT", "587")),
            username=os.environ.get("SMTP_USERNAME") or None,
            password=os.environ.get("SMTP_PASSWORD") or None,
            use_tls=os.environ.get("SMTP_USE_TLS", "true").lower() == "true",
            sender=os.environ.get("MAIL_FROM", "no-reply@shopshoes.local"),
            timeout=float(os.environ.get("SMTP_TIMEOUT", "10.0")),
        )

    def _message(self, email: Email) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = email.to
        message["Subject"] = email.subject
        message.set_content(email.body)
        return message

    async def send(self, email: Email):
        if self.backend == BACKEND_LOG:
            logging.info(f"[MAIL] To={email.to} Subject={email.subject}\n{email.body}")
            return
        try:
            await aiosmtplib.send(
                self._message(email),
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=self.use_tls,
                timeout=self.timeout,
            )
        except aiosmtplib.SMTPRecipientsRefused as e:
            logging.error(f"[MAIL] Recipient refused for {email.to}: {e}")
            return
        except aiosmtplib.SMTPResponseException as e:
            if e.code in PERMANENT_SMTP_CODES:
                logging.error(f"[MAIL] Message to {email.to} rejected ({e.code}): {e.message}")
                return
            raise TransientDependencyError(f"Mail server refused message: {e}") from e
        except (aiosmtplib.SMTPException, OSError) as e:
            raise TransientDependencyError(f"Mail server unavailable: {e}") from e
        logging.info(f"[MAIL] Sent '{email.subject}' to {email.to}")
