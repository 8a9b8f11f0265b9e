"""
Onboarding service - record creation and the Onboarding Decision Gate.

Lifecycle:
    create_onboarding()  registration → Onboarding(NEW, PENDING)
                         + ChecklistInstance seeded from the current template
                         + Account(UNDER_REVIEW)
    checklist updates    NEW → IN_PROGRESS (checklist_service.apply_updates)
    record_decision()    PENDING → APPROVED | DECLINED, status → COMPLETE,
                         account → ACTIVE on APPROVED

Decision gate rules (enforced here, never in the blueprint):
    - decision must be APPROVED or DECLINED; the note is mandatory.
    - every checklist item must be reviewed (SATISFACTORY or ADVERSE),
      otherwise PreconditionFailedError(CHECKLIST_INCOMPLETE).
    - a terminal decision is immutable: PreconditionFailedError
      (DECISION_ALREADY_RECORDED).
    - the terminal write is a single compare-and-set UPDATE guarded by
      ``decision = 'PENDING'``, committed together with the account change,
      so two concurrent reviewers cannot both succeed and no reader sees a
      decision without its side effects.
    - the same UPDATE requires the checklist revision seen by the
      completeness check; a batch applied in between fails the decision
      with ConflictError (409) instead of deciding on a stale checklist.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import IntegrityError

from onboarding_desk.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from onboarding_desk.models import db
from onboarding_desk.models.account import ACTIVE, UNDER_REVIEW, Account
from onboarding_desk.models.checklist import ONBOARDING_CHECKLIST, ChecklistInstance
from onboarding_desk.models.onboarding import (
    DECISION_APPROVED,
    DECISION_PENDING,
    STATUS_COMPLETE,
    TERMINAL_DECISIONS,
    VALID_STATUSES,
    Onboarding,
)
from onboarding_desk.services import checklist_service, checklist_template_service
from onboarding_desk.utils.errors import E
from onboarding_desk.utils.helpers import clean_text, commit_or_raise, store_guard

logger = logging.getLogger(__name__)

MAX_DECISION_NOTE_LENGTH = 5000


# ── Creation ───────────────────────────────────────────────────────────────────


def create_onboarding(data: dict) -> Onboarding:
    """Create an onboarding record from a counterparty registration.

    Body::

        {
            "registrationId": "reg-123",
            "companyName": "Acme Trading Ltd",
            "contactEmail": "ops@acme.example",       # optional
            "walletAddress": "0xabc...",               # optional
            "checklistType": "ONBOARDING",             # optional
            "versionNumber": 3                         # optional: latest if omitted
        }

    Raises:
        ValidationError: missing registrationId / companyName, bad contactEmail.
        NotFoundError:   no template for the requested type/version.
        ConflictError:   an onboarding already exists for the registration.
    """
    errors: dict[str, str] = {}
    raw_registration_id = data.get("registrationId")
    if isinstance(raw_registration_id, int) and not isinstance(raw_registration_id, bool):
        raw_registration_id = str(raw_registration_id)
    registration_id = clean_text(raw_registration_id, "registrationId", errors)
    company_name = clean_text(data.get("companyName"), "companyName", errors)
    wallet_address = clean_text(data.get("walletAddress"), "walletAddress", errors) or None
    if not registration_id:
        errors.setdefault("registrationId", "required")
    if not company_name:
        errors.setdefault("companyName", "required")
    contact_email = clean_text(data.get("contactEmail"), "contactEmail", errors) or None
    if contact_email:
        try:
            contact_email = validate_email(contact_email, check_deliverability=False).normalized
        except EmailNotValidError as e:
            errors["contactEmail"] = f"Invalid email: {e}"
    if errors:
        raise ValidationError("Registration details are incomplete", details=errors)

    checklist_type = checklist_template_service.normalise_checklist_type(
        data.get("checklistType") or ONBOARDING_CHECKLIST
    )
    version_number = data.get("versionNumber")
    if version_number is None:
        template = checklist_template_service.get_latest_template(checklist_type)
    else:
        if isinstance(version_number, bool) or not isinstance(version_number, int):
            raise ValidationError(
                "versionNumber must be an integer", details={"versionNumber": version_number},
            )
        template = checklist_template_service.fetch_template(checklist_type, version_number)
    if template is None:
        raise NotFoundError(
            resource="ChecklistTemplate",
            resource_id=f"{checklist_type}/{version_number if version_number is not None else 'latest'}",
        )

    account = Account(
        account_name=company_name,
        wallet_address=wallet_address,
        status=UNDER_REVIEW,
    )
    instance = checklist_service.instantiate(template)
    onboarding = Onboarding(
        registration_id=registration_id,
        company_name=company_name,
        contact_email=contact_email,
        checklist=instance,
        account=account,
    )
    db.session.add_all([account, instance, onboarding])
    try:
        commit_or_raise("create_onboarding", registration_id=registration_id)
    except IntegrityError as exc:
        raise ConflictError("Onboarding", "registrationId", registration_id) from exc

    logger.info(
        "Onboarding created id=%s registration=%s template=%s v%s",
        onboarding.id, registration_id, template.checklist_type, template.version_number,
        extra={"onboarding_id": onboarding.id, "checklist_instance_id": instance.id},
    )
    return onboarding


# ── Reads ──────────────────────────────────────────────────────────────────────


def get_onboarding(onboarding_id: int) -> Onboarding:
    with store_guard("get_onboarding", onboarding_id=onboarding_id):
        onboarding = db.session.get(Onboarding, onboarding_id)
    if onboarding is None:
        raise NotFoundError(resource="Onboarding", resource_id=onboarding_id)
    return onboarding


def onboardings_query(query_term: str | None = None, status: str | None = None):
    """Base query for the paged onboarding list."""
    query = Onboarding.query
    if query_term:
        pattern = f"%{query_term}%"
        query = query.filter(or_(
            Onboarding.company_name.ilike(pattern),
            Onboarding.registration_id.ilike(pattern),
        ))
    if status:
        status = status.upper()
        if status not in VALID_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(VALID_STATUSES))}",
                details={"status": status},
            )
        query = query.filter(Onboarding.status == status)
    return query


ONBOARDING_SORT_FIELDS = {
    "createdAt": Onboarding.created_at,
    "updatedAt": Onboarding.updated_at,
    "companyName": Onboarding.company_name,
    "status": Onboarding.status,
}


# ── Decision gate ──────────────────────────────────────────────────────────────


def _validate_decision(decision, note) -> tuple[str, str]:
    errors = {}
    decision = (decision or "").strip().upper() if isinstance(decision, str) else decision
    if decision not in TERMINAL_DECISIONS:
        errors["decision"] = f"must be one of: {', '.join(sorted(TERMINAL_DECISIONS))}"
    note = (note or "").strip() if isinstance(note, str) else ""
    if not note:
        errors["decisionNotes"] = "a decision note is required"
    elif len(note) > MAX_DECISION_NOTE_LENGTH:
        errors["decisionNotes"] = f"must be at most {MAX_DECISION_NOTE_LENGTH} characters"
    if errors:
        raise ValidationError("Decision request is invalid", details=errors)
    return decision, note


def _already_decided(onboarding_id: int, decision: str) -> PreconditionFailedError:
    return PreconditionFailedError(
        f"Onboarding {onboarding_id} already has a final decision ({decision}).",
        code=E.DECISION_ALREADY_RECORDED,
        details={"decision": decision},
    )


def record_decision(onboarding_id: int, decision: str, note: str, reviewer_id: str | None = None) -> Onboarding:
    """Move the onboarding decision out of PENDING, exactly once.

    Args:
        onboarding_id: Target onboarding.
        decision:      "APPROVED" or "DECLINED".
        note:          Mandatory justification, stored with the decision.
        reviewer_id:   Identity of the deciding reviewer.

    Returns:
        The refreshed Onboarding (status COMPLETE).

    Raises:
        ValidationError:          bad decision value or empty note.
        NotFoundError:            onboarding does not exist.
        PreconditionFailedError:  checklist incomplete, or decision already
                                  terminal (including a lost race).
        ConflictError:            a checklist batch was applied between the
                                  completeness check and the write.
        UpstreamUnavailableError: database failure (nothing written).
    """
    decision, note = _validate_decision(decision, note)
    onboarding = get_onboarding(onboarding_id)

    if onboarding.decision != DECISION_PENDING:
        raise _already_decided(onboarding_id, onboarding.decision)

    # Revision read before the items: the write below only lands if no batch
    # was applied after this point.
    instance_id = onboarding.checklist_instance_id
    seen_revision = onboarding.checklist.revision
    outstanding = checklist_service.outstanding_items(onboarding.checklist)
    if outstanding:
        raise PreconditionFailedError(
            f"Checklist incomplete: {len(outstanding)} item(s) still need review "
            "(every item must be SATISFACTORY or ADVERSE).",
            code=E.CHECKLIST_INCOMPLETE,
            details={"outstanding": outstanding},
        )

    now = datetime.now(timezone.utc)
    with store_guard("record_decision", onboarding_id=onboarding_id):
        result = db.session.execute(
            update(Onboarding)
            .where(
                Onboarding.id == onboarding_id,
                Onboarding.decision == DECISION_PENDING,
                exists(
                    select(ChecklistInstance.id).where(
                        ChecklistInstance.id == instance_id,
                        ChecklistInstance.revision == seen_revision,
                    )
                ),
            )
            .values(
                decision=decision,
                decision_note=note,
                decided_by=reviewer_id,
                decided_at=now,
                status=STATUS_COMPLETE,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.session.rollback()
            current = get_onboarding(onboarding_id)
            if current.decision != DECISION_PENDING:
                raise _already_decided(onboarding_id, current.decision)
            logger.info(
                "Decision rejected, checklist changed since review id=%s revision=%s",
                onboarding_id, seen_revision,
                extra={"onboarding_id": onboarding_id, "reviewer_id": reviewer_id},
            )
            raise ConflictError("ChecklistInstance", "revision", seen_revision)

        if decision == DECISION_APPROVED:
            db.session.execute(
                update(Account)
                .where(Account.id == onboarding.account_id)
                .values(status=ACTIVE, activated_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )

    commit_or_raise("record_decision", onboarding_id=onboarding_id)

    logger.info(
        "Onboarding decision recorded id=%s decision=%s",
        onboarding_id, decision,
        extra={"onboarding_id": onboarding_id, "reviewer_id": reviewer_id},
    )
    db.session.refresh(onboarding)
    return onboarding
