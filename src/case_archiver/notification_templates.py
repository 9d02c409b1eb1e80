"""Notification templates for archival events."""

import html
from datetime import datetime, timezone
from typing import Any, Optional


def _text(value: Optional[str]) -> str:
    return html.escape(value or "")


class NotificationTemplate:
    """Template generator for notifications."""

    @staticmethod
    def geotechnical_document_archived(
        case_id: str,
        property_designation: Optional[str] = None,
    ) -> tuple[str, str, dict[str, Any]]:
        """Generate notification for an archived geotechnical document.

        Args:
            case_id: Case the document belongs to
            property_designation: Designation of the case's main property, if known

        Returns:
            Tuple of (subject, message, metadata)
        """
        subject = "Arkiverad geoteknisk handling"
        message = f"""
<html>
<body>
<p>Hej,</p>
<p>En geoteknisk handling har arkiverats.</p>
<ul>
<li>Ärende: {_text(case_id)}</li>
<li>Fastighetsbeteckning: {_text(property_designation)}</li>
</ul>
</body>
</html>
"""
        metadata = {
            "case_id": case_id,
            "property_designation": property_designation,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        return subject, message.strip(), metadata

    @staticmethod
    def manual_handling_required(
        case_id: str,
        document_name: Optional[str] = None,
        document_type: Optional[str] = None,
    ) -> tuple[str, str, dict[str, Any]]:
        """Generate notification for a document the archive rejected for its format.

        Args:
            case_id: Case the document belongs to
            document_name: Name of the rejected document
            document_type: Category description of the document

        Returns:
            Tuple of (subject, message, metadata)
        """
        subject = "Manuell hantering krävs"
        message = f"""
<html>
<body>
<p>Hej,</p>
<p>En handling kunde inte arkiveras på grund av filändelse eller filformat och behöver hanteras manuellt.</p>
<ul>
<li>Ärende: {_text(case_id)}</li>
<li>Handlingsnamn: {_text(document_name)}</li>
<li>Handlingstyp: {_text(document_type)}</li>
</ul>
</body>
</html>
"""
        metadata = {
            "case_id": case_id,
            "document_name": document_name,
            "document_type": document_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        return subject, message.strip(), metadata
