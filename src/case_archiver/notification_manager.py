"""Best-effort notifications about archived and rejected documents."""

import os
from typing import TYPE_CHECKING, Any, Optional

import structlog

from case_archiver.config import NotificationConfig
from case_archiver.notification_templates import NotificationTemplate
from case_archiver.notifications import (
    EmailNotificationChannel,
    MessagingNotificationChannel,
    NotificationChannel,
)
from utils.logging import get_logger

if TYPE_CHECKING:
    from case_archiver.metrics import ArchiverMetrics

GEOTECHNICAL = "geotechnical"
MANUAL_HANDLING = "manual_handling"


class ArchiveNotifier:
    """Sends archival notifications without ever failing the caller.

    A notification that cannot be delivered is logged and counted; the
    document it concerns keeps the state it already had.
    """

    def __init__(
        self,
        config: NotificationConfig,
        channel: Optional[NotificationChannel] = None,
        metrics: Optional["ArchiverMetrics"] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize notifier.

        Args:
            config: Notification configuration
            channel: Optional channel overriding the configured one
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.config = config
        self.metrics = metrics
        self.logger = logger or get_logger("notification_manager")
        self.channel = channel if channel is not None else self._build_channel()

    def _build_channel(self) -> Optional[NotificationChannel]:
        """Build the notification channel from configuration."""
        if not self.config.enabled:
            return None

        if self.config.channel == "messaging" and self.config.messaging is not None:
            return MessagingNotificationChannel(
                base_url=self.config.messaging.base_url,
                sender_name=self.config.sender_name,
                sender_email=self.config.sender_email,
                timeout_seconds=self.config.messaging.timeout_seconds,
                logger=self.logger,
            )

        email = self.config.email
        smtp_password = None
        if email.smtp_password_env:
            smtp_password = os.getenv(email.smtp_password_env)
            if not smtp_password:
                self.logger.warning(
                    "SMTP password environment variable not set",
                    env_var=email.smtp_password_env,
                )

        return EmailNotificationChannel(
            smtp_host=email.smtp_host,
            smtp_port=email.smtp_port,
            smtp_user=email.smtp_user,
            smtp_password=smtp_password,
            sender_name=self.config.sender_name,
            sender_email=self.config.sender_email,
            use_tls=email.use_tls,
            logger=self.logger,
        )

    async def _deliver(
        self,
        kind: str,
        recipient: Optional[str],
        subject: str,
        message: str,
        metadata: dict[str, Any],
    ) -> bool:
        if self.channel is None or not self.config.enabled:
            self._record(kind, "skipped")
            return False
        if not recipient:
            self.logger.warning("No recipient configured, skipping notification", kind=kind)
            self._record(kind, "skipped")
            return False

        try:
            sent = await self.channel.send(recipient, subject, message, metadata)
        except Exception as e:
            self.logger.error(
                "Error sending notification, recipient must be informed manually",
                kind=kind,
                recipient=recipient,
                error=str(e),
                exc_info=True,
            )
            sent = False

        if not sent:
            self.logger.error(
                "Notification not delivered, recipient must be informed manually",
                kind=kind,
                recipient=recipient,
                **metadata,
            )
        self._record(kind, "sent" if sent else "failed")
        return sent

    def _record(self, kind: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_notification(kind, result)

    async def notify_geotechnical_archived(
        self,
        case_id: str,
        property_designation: Optional[str] = None,
    ) -> bool:
        """Inform the land survey recipient that a geotechnical document was archived."""
        subject, message, metadata = NotificationTemplate.geotechnical_document_archived(
            case_id=case_id,
            property_designation=property_designation,
        )
        return await self._deliver(
            GEOTECHNICAL, self.config.geotechnical_recipient, subject, message, metadata
        )

    async def notify_manual_handling(
        self,
        case_id: str,
        document_name: Optional[str] = None,
        document_type: Optional[str] = None,
    ) -> bool:
        """Ask for manual archiving of a document the archive rejected for its format."""
        subject, message, metadata = NotificationTemplate.manual_handling_required(
            case_id=case_id,
            document_name=document_name,
            document_type=document_type,
        )
        return await self._deliver(
            MANUAL_HANDLING, self.config.manual_handling_recipient, subject, message, metadata
        )

    async def close(self) -> None:
        """Close the notification channel."""
        if self.channel is not None:
            try:
                await self.channel.close()
            except Exception as e:
                self.logger.warning("Error closing notification channel", error=str(e))
