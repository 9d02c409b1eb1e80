"""Unit tests for notification templates."""

from case_archiver.notification_templates import NotificationTemplate


def test_geotechnical_document_archived() -> None:
    """Test the geotechnical notification names case and property."""
    subject, message, metadata = NotificationTemplate.geotechnical_document_archived(
        case_id="BYGG 2024-000123",
        property_designation="SUNDSVALL BALDER 1",
    )

    assert subject == "Arkiverad geoteknisk handling"
    assert "BYGG 2024-000123" in message
    assert "SUNDSVALL BALDER 1" in message
    assert metadata["case_id"] == "BYGG 2024-000123"
    assert "timestamp" in metadata


def test_geotechnical_without_property() -> None:
    """Test a missing property designation leaves the field empty."""
    _, message, metadata = NotificationTemplate.geotechnical_document_archived(case_id="BYGG 1")

    assert "Fastighetsbeteckning: </li>" in message
    assert metadata["property_designation"] is None


def test_manual_handling_required() -> None:
    """Test the manual handling notification names the document."""
    subject, message, metadata = NotificationTemplate.manual_handling_required(
        case_id="BYGG 2024-000123",
        document_name="ritning.dwg",
        document_type="Planritning",
    )

    assert subject == "Manuell hantering krävs"
    assert "ritning.dwg" in message
    assert "Planritning" in message
    assert metadata["document_type"] == "Planritning"


def test_values_are_escaped() -> None:
    """Test values are HTML escaped."""
    _, message, _ = NotificationTemplate.manual_handling_required(
        case_id="BYGG 1", document_name="<script>a & b</script>"
    )

    assert "<script>" not in message
    assert "&lt;script&gt;a &amp; b&lt;/script&gt;" in message
