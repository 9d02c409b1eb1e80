"""Notification channels used to inform people about archived documents."""

import asyncio
import base64
import json
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

import structlog

from case_archiver.http_client import ServiceClient
from utils.logging import get_logger


class NotificationChannel(ABC):
    """Abstract base class for notification channels."""

    @abstractmethod
    async def send(
        self,
        recipient: str,
        subject: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Send a notification.

        Args:
            recipient: Recipient address
            subject: Notification subject/title
            message: Notification message body (HTML)
            metadata: Additional metadata for the notification

        Returns:
            True if notification was sent successfully, False otherwise
        """
        pass

    async def close(self) -> None:
        """Release channel resources."""


class EmailNotificationChannel(NotificationChannel):
    """Email notification channel using SMTP."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        sender_name: str = "CaseArchiver",
        sender_email: str = "archiver@example.com",
        use_tls: bool = True,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize email notification channel.

        Args:
            smtp_host: SMTP server hostname
            smtp_port: SMTP server port
            smtp_user: SMTP username (optional, for authentication)
            smtp_password: SMTP password (optional, for authentication)
            sender_name: Sender display name
            sender_email: Sender email address
            use_tls: Use TLS encryption (default: True)
            logger: Optional logger instance
        """
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.sender_name = sender_name
        self.sender_email = sender_email
        self.use_tls = use_tls
        self.logger = logger or get_logger("email_notifications")

    def build_message(
        self,
        recipient: str,
        subject: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["From"] = f"{self.sender_name} <{self.sender_email}>"
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.attach(MIMEText(message, "html", "utf-8"))
        if metadata:
            msg.attach(MIMEText(json.dumps(metadata, indent=2, default=str), "plain", "utf-8"))
        return msg

    async def send(
        self,
        recipient: str,
        subject: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Send email notification.

        Returns:
            True if email was sent successfully, False otherwise
        """
        msg = self.build_message(recipient, subject, message, metadata)

        def send_sync() -> None:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

        try:
            # smtplib blocks, so it runs in the default executor
            await asyncio.get_running_loop().run_in_executor(None, send_sync)
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(
                "Failed to send email notification",
                subject=subject,
                recipient=recipient,
                error=str(e),
                exc_info=True,
            )
            return False

        self.logger.info("Email notification sent", subject=subject, recipient=recipient)
        return True


class MessagingNotificationChannel(ServiceClient, NotificationChannel):
    """Sends email through the messaging service HTTP API."""

    service_name = "messaging"

    def __init__(
        self,
        base_url: str,
        sender_name: str = "CaseArchiver",
        sender_email: str = "archiver@example.com",
        timeout_seconds: float = 10.0,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize messaging channel.

        Args:
            base_url: Base URL of the messaging service
            sender_name: Sender display name
            sender_email: Sender email address
            timeout_seconds: Request timeout
            logger: Optional logger instance
        """
        super().__init__(base_url, timeout_seconds=timeout_seconds, logger=logger)
        self.sender_name = sender_name
        self.sender_email = sender_email

    async def send(
        self,
        recipient: str,
        subject: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        payload = {
            "sender": {"name": self.sender_name, "address": self.sender_email},
            "emailAddress": recipient,
            "subject": subject,
            "htmlMessage": base64.b64encode(message.encode("utf-8")).decode("ascii"),
        }

        try:
            status, body = await self.request("POST", "email", payload=payload)
        except Exception as e:
            self.logger.error(
                "Failed to send email via messaging service",
                subject=subject,
                recipient=recipient,
                error=str(e),
                exc_info=True,
            )
            return False

        message_id = body.get("messageId") if isinstance(body, dict) else None
        if status >= 400 or not message_id:
            self.logger.error(
                "Unexpected response from messaging service",
                subject=subject,
                recipient=recipient,
                status=status,
                body=body,
            )
            return False

        self.logger.info(
            "Email sent via messaging service",
            subject=subject,
            recipient=recipient,
            message_id=message_id,
        )
        return True
