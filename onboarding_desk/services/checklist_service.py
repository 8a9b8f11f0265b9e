"""
Checklist Instance service - instantiation and the status transition engine.

apply_updates() takes an ordered batch of item updates coming from
reviewers working the checklist:

    [
        {"sectionTitle": "Identity", "itemTitle": "Proof of ID",
         "itemKey": "identity.proof-of-id",            # optional, preferred
         "status": "SATISFACTORY",                     # optional
         "notes": [{"text": "verified passport", "userId": "u1"}]},   # optional
        ...
    ]

Batch rules:
    - Each element addresses exactly one item, by itemKey when given,
      otherwise by the (sectionTitle, itemTitle) natural key.
    - The whole batch is validated before anything is written. Any element
      that is malformed, carries a status outside the closed vocabulary, or
      matches no item rejects the batch (ValidationError listing every
      offending element by index). Nothing is applied in that case.
    - Statuses are last-write-wins within the batch, in element order.
    - Notes are appended in element order; existing notes are never touched.
    - One commit per batch; the instance revision increments once.
    - Optional expected_revision guards against overwriting a concurrent
      reviewer's work (ConflictError on mismatch).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from onboarding_desk.core.exceptions import ConflictError, NotFoundError, ValidationError
from onboarding_desk.models import db
from onboarding_desk.models.checklist import (
    ITEM_STATUSES,
    NOT_STARTED,
    REVIEWED_STATUSES,
    VALID_ITEM_STATUSES,
    ChecklistInstance,
    ChecklistItemInstance,
    ChecklistItemNote,
    ChecklistSectionInstance,
    ChecklistTemplate,
)
from onboarding_desk.models.onboarding import STATUS_IN_PROGRESS, STATUS_NEW, Onboarding
from onboarding_desk.utils.helpers import clean_text, commit_or_raise, store_guard

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 5000


# ── Instantiation ──────────────────────────────────────────────────────────────


def instantiate(template: ChecklistTemplate) -> ChecklistInstance:
    """Build (but do not commit) a fresh instance mirroring ``template``.

    Every item starts NOT_STARTED with an empty note ledger. The caller adds
    the instance to the session together with its owning onboarding.
    """
    instance = ChecklistInstance(
        template_id=template.id,
        checklist_type=template.checklist_type,
        version_number=template.version_number,
        revision=0,
    )
    for tpl_section in template.sections:
        section = ChecklistSectionInstance(
            position=tpl_section.position,
            title=tpl_section.title,
            guidance=tpl_section.guidance,
        )
        for tpl_item in tpl_section.items:
            section.items.append(ChecklistItemInstance(
                position=tpl_item.position,
                key=tpl_item.key,
                title=tpl_item.title,
                guidance=tpl_item.guidance,
                check_type=tpl_item.check_type,
                status=NOT_STARTED,
            ))
        instance.sections.append(section)
    return instance


# ── Reads ──────────────────────────────────────────────────────────────────────


def get_instance(instance_id: int) -> ChecklistInstance:
    """Load an instance or raise NotFoundError."""
    with store_guard("get_checklist_instance", checklist_instance_id=instance_id):
        instance = db.session.get(ChecklistInstance, instance_id)
    if instance is None:
        raise NotFoundError(resource="ChecklistInstance", resource_id=instance_id)
    return instance


def outstanding_items(instance: ChecklistInstance) -> list[dict]:
    """Items that have not been reviewed yet (NOT_STARTED / IN_PROGRESS)."""
    return [
        {
            "sectionTitle": section.title,
            "itemTitle": item.title,
            "itemKey": item.key,
            "status": item.status,
        }
        for section in instance.sections
        for item in section.items
        if item.status not in REVIEWED_STATUSES
    ]


def is_complete(instance: ChecklistInstance) -> bool:
    return all(item.status in REVIEWED_STATUSES for item in instance.items)


def checklist_summary(instance: ChecklistInstance) -> dict:
    """Per-status counts plus the completeness flag used by the decision gate."""
    counts = {status: 0 for status in ITEM_STATUSES}
    for item in instance.items:
        counts[item.status] = counts.get(item.status, 0) + 1
    outstanding = outstanding_items(instance)
    return {
        "totalItems": len(instance.items),
        "byStatus": counts,
        "isComplete": not outstanding,
        "outstanding": outstanding,
    }


# ── Batch validation ───────────────────────────────────────────────────────────


def _index_items(instance: ChecklistInstance):
    by_key: dict[str, ChecklistItemInstance] = {}
    by_title: dict[tuple[str, str], ChecklistItemInstance] = {}
    for section in instance.sections:
        for item in section.items:
            by_key[item.key] = item
            by_title[(section.title, item.title)] = item
    return by_key, by_title


def _parse_notes(raw_notes, idx: int, errors: dict) -> list[dict]:
    if raw_notes is None:
        return []
    if not isinstance(raw_notes, list):
        errors[f"{idx}.notes"] = "must be a list"
        return []
    notes = []
    for n_idx, raw in enumerate(raw_notes):
        path = f"{idx}.notes[{n_idx}]"
        if not isinstance(raw, dict):
            errors[path] = "must be an object"
            continue
        text = clean_text(raw.get("text"), f"{path}.text", errors)
        user_id = raw.get("userId")
        if isinstance(user_id, int) and not isinstance(user_id, bool):
            user_id = str(user_id)
        user_id = clean_text(user_id, f"{path}.userId", errors)
        if f"{path}.text" in errors or f"{path}.userId" in errors:
            continue
        if not text:
            errors[f"{path}.text"] = "required"
            continue
        if len(text) > MAX_NOTE_LENGTH:
            errors[f"{path}.text"] = f"must be at most {MAX_NOTE_LENGTH} characters"
            continue
        if not user_id:
            errors[f"{path}.userId"] = "required"
            continue
        notes.append({"text": text, "user_id": user_id})
    return notes


def _resolve_batch(instance: ChecklistInstance, updates) -> list[tuple[ChecklistItemInstance, str | None, list[dict]]]:
    """Validate every element and pair it with its target item.

    Raises:
        ValidationError: at least one element is malformed or unmatched.
            ``details`` maps element index (and sub-field) to the problem;
            ``details["unmatched"]`` lists unmatched element indexes.
    """
    if not isinstance(updates, list):
        raise ValidationError("updates must be a list", details={"updates": "must be a list"})

    by_key, by_title = _index_items(instance)
    errors: dict[str, str] = {}
    unmatched: list[int] = []
    resolved = []

    for idx, element in enumerate(updates):
        if not isinstance(element, dict):
            errors[str(idx)] = "must be an object"
            continue

        status = element.get("status")
        if status is not None and not isinstance(status, str):
            errors[f"{idx}.status"] = f"must be one of: {', '.join(ITEM_STATUSES)}"
        elif status is not None and status not in VALID_ITEM_STATUSES:
            errors[f"{idx}.status"] = (
                f"'{status}' is not one of: {', '.join(ITEM_STATUSES)}"
            )

        notes = _parse_notes(element.get("notes"), idx, errors)

        item_key = clean_text(element.get("itemKey"), f"{idx}.itemKey", errors)
        if f"{idx}.itemKey" in errors:
            continue
        if item_key:
            item = by_key.get(item_key)
            label = f"itemKey '{item_key}'"
        else:
            section_title = clean_text(element.get("sectionTitle"), f"{idx}.sectionTitle", errors)
            item_title = clean_text(element.get("itemTitle"), f"{idx}.itemTitle", errors)
            if f"{idx}.sectionTitle" in errors or f"{idx}.itemTitle" in errors:
                continue
            if not section_title or not item_title:
                errors[str(idx)] = "itemKey or both sectionTitle and itemTitle are required"
                continue
            item = by_title.get((section_title, item_title))
            label = f"'{section_title}' / '{item_title}'"

        if item is None:
            unmatched.append(idx)
            errors[f"{idx}.item"] = f"no checklist item matches {label}"
            continue

        resolved.append((item, status, notes))

    if errors:
        details: dict = dict(errors)
        if unmatched:
            details["unmatched"] = unmatched
        raise ValidationError("Checklist update batch rejected", details=details)
    return resolved


# ── Status transition engine ───────────────────────────────────────────────────


def _bump_revision(instance_id: int, expected_revision: int | None) -> None:
    """Atomically increment the instance revision, enforcing If-Match if given."""
    stmt = update(ChecklistInstance).where(ChecklistInstance.id == instance_id)
    if expected_revision is not None:
        stmt = stmt.where(ChecklistInstance.revision == expected_revision)
    stmt = stmt.values(
        revision=ChecklistInstance.revision + 1,
        updated_at=datetime.now(timezone.utc),
    ).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if result.rowcount == 0:
        db.session.rollback()
        raise ConflictError("ChecklistInstance", "revision", expected_revision)


def apply_updates(
    instance_id: int,
    updates: list,
    expected_revision: int | None = None,
    actor_id: str | None = None,
) -> bool:
    """Apply an ordered batch of item status / note updates to an instance.

    Args:
        instance_id:       Target checklist instance.
        updates:           Ordered list of update elements (see module docstring).
        expected_revision: If set, the batch is applied only when the instance
                           is still at this revision.
        actor_id:          Caller identity, recorded as status_updated_by.

    Returns:
        True when the batch was applied. The mutated instance is not
        returned; callers refetch it.

    Raises:
        NotFoundError:            instance does not exist.
        ValidationError:          batch rejected (nothing applied).
        ConflictError:            expected_revision is stale (nothing applied).
        UpstreamUnavailableError: database failure (nothing applied).
    """
    instance = get_instance(instance_id)
    if expected_revision is not None and instance.revision != expected_revision:
        raise ConflictError("ChecklistInstance", "revision", expected_revision)

    resolved = _resolve_batch(instance, updates)

    now = datetime.now(timezone.utc)
    status_changes = 0
    notes_added = 0
    with store_guard("apply_checklist_updates", checklist_instance_id=instance_id):
        for item, status, notes in resolved:
            if status is not None:
                item.status = status
                item.status_updated_by = actor_id
                item.status_updated_at = now
                status_changes += 1
            for note in notes:
                item.notes.append(ChecklistItemNote(text=note["text"], user_id=note["user_id"]))
                notes_added += 1

        _bump_revision(instance_id, expected_revision)

        onboarding = db.session.execute(
            select(Onboarding).where(Onboarding.checklist_instance_id == instance_id)
        ).scalar_one_or_none()
        if onboarding is not None and onboarding.status == STATUS_NEW:
            onboarding.status = STATUS_IN_PROGRESS

    commit_or_raise("apply_checklist_updates", checklist_instance_id=instance_id)

    logger.info(
        "Checklist updates applied instance=%s elements=%d status_changes=%d notes_added=%d",
        instance_id, len(resolved), status_changes, notes_added,
        extra={"checklist_instance_id": instance_id, "reviewer_id": actor_id},
    )
    return True
