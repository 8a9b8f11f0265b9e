"""
Checklist Template Store.

Resolves immutable, versioned due-diligence checklist definitions by
(checklist_type, version_number) and publishes new versions.

Design decisions:
    - An unknown (type, version) pair is a normal outcome: fetch_template()
      returns None. Only store failures raise (UpstreamUnavailableError).
    - Templates are immutable after publication. A change means publishing
      version N+1; existing instances keep pointing at the version they
      were seeded from.
    - Each item gets a stable key at publication. Callers may supply one;
      otherwise it is derived from the section and item titles. Keys are
      unique within a template.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from onboarding_desk.core.exceptions import ConflictError, ValidationError
from onboarding_desk.models import db
from onboarding_desk.models.checklist import (
    DEAL_PROCESSING_CHECKLIST,
    ONBOARDING_CHECKLIST,
    VALID_CHECK_TYPES,
    ChecklistTemplate,
    ChecklistTemplateItem,
    ChecklistTemplateSection,
)
from onboarding_desk.utils.helpers import clean_text, commit_or_raise, store_guard

logger = logging.getLogger(__name__)

_CHECKLIST_TYPE_RE = re.compile(r"^[A-Z][A-Z0-9_]{0,49}$")
_KEY_RE = re.compile(r"^[a-z0-9][a-z0-9_.-]{0,119}$")


# ── Private helpers ────────────────────────────────────────────────────────────


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def derive_item_key(section_title: str, item_title: str) -> str:
    """Default stable key for an item: ``<section-slug>.<item-slug>``."""
    return f"{_slug(section_title)}.{_slug(item_title)}"[:120]


def normalise_checklist_type(value) -> str:
    checklist_type = value.strip().upper() if isinstance(value, str) else ""
    if not _CHECKLIST_TYPE_RE.match(checklist_type):
        raise ValidationError(
            "checklistType must be an upper-case identifier (A-Z, 0-9, _)",
            details={"checklistType": value},
        )
    return checklist_type


def _validate_sections(raw_sections) -> list[dict]:
    """Validate a template body and return normalised sections.

    Raises ValidationError with a field-path → message map.
    """
    if not isinstance(raw_sections, list) or not raw_sections:
        raise ValidationError("sections must be a non-empty list", details={"sections": "required"})

    errors: dict[str, str] = {}
    sections: list[dict] = []
    seen_sections: set[str] = set()
    seen_keys: set[str] = set()

    for s_idx, raw_section in enumerate(raw_sections):
        path = f"sections[{s_idx}]"
        if not isinstance(raw_section, dict):
            errors[path] = "must be an object"
            continue
        title = clean_text(raw_section.get("title"), f"{path}.title", errors)
        section_guidance = clean_text(raw_section.get("guidance"), f"{path}.guidance", errors) or None
        if f"{path}.title" in errors:
            continue
        if not title:
            errors[f"{path}.title"] = "required"
            continue
        if title in seen_sections:
            errors[f"{path}.title"] = f"duplicate section title '{title}'"
            continue
        seen_sections.add(title)

        raw_items = raw_section.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            errors[f"{path}.items"] = "must be a non-empty list"
            continue

        items: list[dict] = []
        seen_items: set[str] = set()
        for i_idx, raw_item in enumerate(raw_items):
            item_path = f"{path}.items[{i_idx}]"
            if not isinstance(raw_item, dict):
                errors[item_path] = "must be an object"
                continue
            item_title = clean_text(raw_item.get("title"), f"{item_path}.title", errors)
            raw_key = clean_text(raw_item.get("key"), f"{item_path}.key", errors)
            raw_check_type = clean_text(raw_item.get("checkType"), f"{item_path}.checkType", errors)
            guidance = clean_text(raw_item.get("guidance"), f"{item_path}.guidance", errors) or None
            if any(f"{item_path}.{field}" in errors for field in ("title", "key", "checkType", "guidance")):
                continue
            if not item_title:
                errors[f"{item_path}.title"] = "required"
                continue
            if item_title in seen_items:
                errors[f"{item_path}.title"] = f"duplicate item title '{item_title}'"
                continue
            seen_items.add(item_title)

            key = raw_key.lower() or derive_item_key(title, item_title)
            if not _KEY_RE.match(key):
                errors[f"{item_path}.key"] = "must match [a-z0-9][a-z0-9_.-]*"
                continue
            if key in seen_keys:
                errors[f"{item_path}.key"] = f"duplicate item key '{key}'"
                continue
            seen_keys.add(key)

            check_type = (raw_check_type or "MANUAL").upper()
            if check_type not in VALID_CHECK_TYPES:
                errors[f"{item_path}.checkType"] = f"must be one of: {', '.join(sorted(VALID_CHECK_TYPES))}"
                continue

            items.append({
                "key": key,
                "title": item_title,
                "guidance": guidance,
                "check_type": check_type,
            })

        sections.append({
            "title": title,
            "guidance": section_guidance,
            "items": items,
        })

    if errors:
        raise ValidationError("Checklist template is invalid", details=errors)
    return sections


# ── Public API ─────────────────────────────────────────────────────────────────


def fetch_template(checklist_type: str, version_number: int) -> ChecklistTemplate | None:
    """Return the template for (checklist_type, version_number), or None.

    Absence is an expected outcome (e.g. a retired version), never an error.

    Raises:
        UpstreamUnavailableError: the database could not be reached.
    """
    with store_guard("fetch_template", checklist_type=checklist_type):
        return db.session.execute(
            select(ChecklistTemplate).where(
                ChecklistTemplate.checklist_type == checklist_type,
                ChecklistTemplate.version_number == version_number,
            )
        ).scalar_one_or_none()


def get_latest_template(checklist_type: str) -> ChecklistTemplate | None:
    """Return the highest published version for a checklist type, or None."""
    with store_guard("get_latest_template", checklist_type=checklist_type):
        return db.session.execute(
            select(ChecklistTemplate)
            .where(ChecklistTemplate.checklist_type == checklist_type)
            .order_by(ChecklistTemplate.version_number.desc())
            .limit(1)
        ).scalar_one_or_none()


def template_versions_query(checklist_type: str):
    """Query of all versions of a checklist type, for the pagination contract."""
    return ChecklistTemplate.query.filter(ChecklistTemplate.checklist_type == checklist_type)


def publish_template(data: dict, published_by: str | None = None) -> ChecklistTemplate:
    """Publish a new immutable template version.

    Body shape::

        {
            "checklistType": "KYC",
            "versionNumber": 2,            # optional: defaults to latest + 1
            "title": "KYC due diligence",
            "sections": [
                {"title": "Identity", "guidance": "...",
                 "items": [{"title": "Proof of ID", "guidance": "...",
                            "key": "identity.proof-of-id", "checkType": "MANUAL"}]}
            ]
        }

    Raises:
        ValidationError: malformed body.
        ConflictError: the (checklistType, versionNumber) pair already exists.
    """
    checklist_type = normalise_checklist_type(data.get("checklistType"))

    raw_version = data.get("versionNumber")
    if raw_version is None:
        with store_guard("publish_template", checklist_type=checklist_type):
            current_max = db.session.execute(
                select(func.max(ChecklistTemplate.version_number))
                .where(ChecklistTemplate.checklist_type == checklist_type)
            ).scalar()
        version_number = (current_max or 0) + 1
    else:
        if isinstance(raw_version, bool) or not isinstance(raw_version, int) or raw_version < 1:
            raise ValidationError(
                "versionNumber must be a positive integer",
                details={"versionNumber": raw_version},
            )
        version_number = raw_version

    title_errors: dict[str, str] = {}
    title = clean_text(data.get("title"), "title", title_errors) or None
    if title_errors:
        raise ValidationError("Checklist template is invalid", details=title_errors)
    sections = _validate_sections(data.get("sections"))

    template = ChecklistTemplate(
        checklist_type=checklist_type,
        version_number=version_number,
        title=title,
        published_by=published_by,
    )
    for s_pos, section in enumerate(sections):
        tpl_section = ChecklistTemplateSection(
            position=s_pos,
            title=section["title"],
            guidance=section["guidance"],
        )
        for i_pos, item in enumerate(section["items"]):
            tpl_section.items.append(ChecklistTemplateItem(position=i_pos, **item))
        template.sections.append(tpl_section)

    db.session.add(template)
    try:
        commit_or_raise("publish_template", checklist_type=checklist_type)
    except IntegrityError as exc:
        raise ConflictError(
            "ChecklistTemplate", "version", f"{checklist_type}/{version_number}",
        ) from exc

    logger.info(
        "Checklist template published %s v%s (%d items)",
        checklist_type, version_number, len(template.items),
        extra={"checklist_type": checklist_type, "version_number": version_number},
    )
    return template


# ── Seed data ──────────────────────────────────────────────────────────────────

DEFAULT_TEMPLATES = [
    {
        "checklistType": ONBOARDING_CHECKLIST,
        "versionNumber": 1,
        "title": "Counterparty onboarding due diligence",
        "sections": [
            {
                "title": "Company Verification",
                "guidance": "Confirm the legal existence and standing of the company.",
                "items": [
                    {"title": "Company Registration Certificate",
                     "guidance": "Check the certificate against the official company register."},
                    {"title": "Proof of Address",
                     "guidance": "Document must be dated within the last three months."},
                    {"title": "Company Website Review",
                     "guidance": "Website matches the registered business activity."},
                ],
            },
            {
                "title": "Contact Verification",
                "guidance": "Confirm the identity and authority of the primary contact.",
                "items": [
                    {"title": "Proof of Identity",
                     "guidance": "Passport or national identity card, not expired."},
                    {"title": "Authority to Act",
                     "guidance": "Contact is a director or holds a signed mandate."},
                ],
            },
            {
                "title": "Screening",
                "guidance": "Sanctions, PEP and adverse media screening.",
                "items": [
                    {"title": "Sanctions Screening", "checkType": "AUTOMATED",
                     "guidance": "No match on consolidated sanctions lists."},
                    {"title": "Adverse Media",
                     "guidance": "Record any material negative news with sources."},
                    {"title": "Wallet Address Screening", "checkType": "AUTOMATED",
                     "guidance": "Wallet has no exposure to flagged addresses."},
                ],
            },
        ],
    },
    {
        "checklistType": DEAL_PROCESSING_CHECKLIST,
        "versionNumber": 1,
        "title": "Trade deal processing checks",
        "sections": [
            {
                "title": "Trade Documents",
                "guidance": "Verify the documents supporting the trade.",
                "items": [
                    {"title": "Invoice Verification",
                     "guidance": "Invoice amounts and parties match the deal."},
                    {"title": "Bill of Lading",
                     "guidance": "Shipment details are consistent with the invoice."},
                ],
            },
        ],
    },
]


def seed_default_templates() -> int:
    """Publish the default templates that are not yet present.

    Returns:
        Number of templates created.
    """
    created = 0
    for definition in DEFAULT_TEMPLATES:
        if fetch_template(definition["checklistType"], definition["versionNumber"]) is not None:
            continue
        publish_template(definition, published_by="system")
        created += 1
    return created
