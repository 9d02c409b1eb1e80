"""Attachment category lookup for case-source document type codes."""

from typing import NamedTuple, Optional


class AttachmentCategory(NamedTuple):
    """Internal classification of a document type code."""

    code: str
    archive_classification: str
    description: str


# Unrecognised codes are archived as plain attachments with classification D (not public)
FALLBACK_CATEGORY = AttachmentCategory("BIL", "D", "Bilaga")

GEOTECHNICAL_CODE = "GEO"

ATTACHMENT_CATEGORIES: dict[str, AttachmentCategory] = {
    category.code: category
    for category in (
        FALLBACK_CATEGORY,
        AttachmentCategory("AN", "D", "Anmälan"),
        AttachmentCategory("ANS", "D", "Ansökan"),
        AttachmentCategory("BESLUT", "A", "Beslut"),
        AttachmentCategory("FASSIT2", "A", "Fasadritning"),
        AttachmentCategory("GEO", "D", "Geoteknisk handling"),
        AttachmentCategory("KA", "D", "Kontrollplan"),
        AttachmentCategory("NYB", "A", "Nybyggnadskarta"),
        AttachmentCategory("PLFASE", "A", "Plan- och fasadritning"),
        AttachmentCategory("PLRITNING", "A", "Planritning"),
        AttachmentCategory("SAKRITNING", "A", "Sektionsritning"),
        AttachmentCategory("SLUTBESKED", "A", "Slutbesked"),
        AttachmentCategory("SITPLAN", "A", "Situationsplan"),
        AttachmentCategory("TOMTPLBE", "A", "Tomtplatsbestämning"),
    )
}


def category_for(code: Optional[str]) -> AttachmentCategory:
    """Map a document type code to its category, falling back to BIL."""
    if not code:
        return FALLBACK_CATEGORY
    return ATTACHMENT_CATEGORIES.get(code.strip().upper(), FALLBACK_CATEGORY)


def is_geotechnical(code: Optional[str]) -> bool:
    return category_for(code).code == GEOTECHNICAL_CODE
