"""
Onboarding record - one per counterparty registration.

State:
    status    NEW → IN_PROGRESS → COMPLETE
    decision  PENDING → APPROVED | DECLINED   (exactly once, terminal)

Business rules:
- status becomes COMPLETE only in the same write that moves the decision
  out of PENDING (see onboarding_service.record_decision).
- decision_note is mandatory once the decision is terminal.
- The onboarding owns its checklist instance; the instance is never shared.
"""

from datetime import datetime, timezone

from onboarding_desk.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

STATUS_NEW = "NEW"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETE = "COMPLETE"

VALID_STATUSES = frozenset({STATUS_NEW, STATUS_IN_PROGRESS, STATUS_COMPLETE})

DECISION_PENDING = "PENDING"
DECISION_APPROVED = "APPROVED"
DECISION_DECLINED = "DECLINED"

TERMINAL_DECISIONS = frozenset({DECISION_APPROVED, DECISION_DECLINED})
VALID_DECISIONS = frozenset({DECISION_PENDING}) | TERMINAL_DECISIONS


def _utcnow():
    return datetime.now(timezone.utc)


class Onboarding(db.Model):
    __tablename__ = "onboardings"

    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(db.String(64), nullable=False, unique=True)
    company_name = db.Column(db.String(255), nullable=False, index=True)
    contact_email = db.Column(db.String(255), nullable=True)

    status = db.Column(
        db.String(20),
        nullable=False,
        default=STATUS_NEW,
        comment="NEW | IN_PROGRESS | COMPLETE",
    )

    checklist_instance_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_instances.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    account_id = db.Column(
        db.Integer,
        db.ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    decision = db.Column(
        db.String(20),
        nullable=False,
        default=DECISION_PENDING,
        comment="PENDING | APPROVED | DECLINED",
    )
    decision_note = db.Column(db.Text, nullable=True)
    decided_by = db.Column(db.String(100), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    checklist = db.relationship("ChecklistInstance", lazy="joined")
    account = db.relationship("Account", lazy="joined")

    @property
    def is_decided(self):
        return self.decision in TERMINAL_DECISIONS

    def decision_dict(self):
        note = None
        if self.decision_note is not None:
            note = {
                "note": self.decision_note,
                "user": self.decided_by,
                "createdAt": self.decided_at.isoformat() if self.decided_at else None,
            }
        return {"decision": self.decision, "decisionNotes": note}

    def to_dict(self, include_checklist=False):
        data = {
            "id": self.id,
            "registrationId": self.registration_id,
            "companyName": self.company_name,
            "contactEmail": self.contact_email,
            "status": self.status,
            "dueDiligenceChecklistId": self.checklist_instance_id,
            "accountId": self.account_id,
            "onboardingDecision": self.decision_dict(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_checklist:
            data["dueDiligenceChecks"] = self.checklist.to_dict() if self.checklist else None
            data["account"] = self.account.to_dict() if self.account else None
        return data

    def __repr__(self):
        return f"<Onboarding #{self.id} {self.registration_id} {self.status}/{self.decision}>"
