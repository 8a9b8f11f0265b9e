"""
Counterparty trading account.

The account is created UNDER_REVIEW together with its onboarding record and
is activated by the onboarding decision gate when the decision is APPROVED.
After that, supervisors move it between ACTIVE and SUSPENDED, and any
account can be CLOSED (terminal).
"""

from datetime import datetime, timezone

from onboarding_desk.models import db

ACTIVE = "ACTIVE"
SUSPENDED = "SUSPENDED"
UNDER_REVIEW = "UNDER_REVIEW"
CLOSED = "CLOSED"

VALID_ACCOUNT_STATUSES = frozenset({ACTIVE, SUSPENDED, UNDER_REVIEW, CLOSED})

# UNDER_REVIEW → ACTIVE is owned by the onboarding decision gate and is
# not listed here.
ACCOUNT_TRANSITIONS = {
    UNDER_REVIEW: [CLOSED],
    ACTIVE:       [SUSPENDED, CLOSED],
    SUSPENDED:    [ACTIVE, CLOSED],
    CLOSED:       [],
}


def validate_account_transition(old_status, new_status):
    """Return True if a manual Account status change is allowed."""
    return new_status in ACCOUNT_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


class Account(db.Model):
    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)
    account_name = db.Column(db.String(255), nullable=False, index=True)
    wallet_address = db.Column(db.String(64), nullable=True)
    status = db.Column(
        db.String(20),
        nullable=False,
        default=UNDER_REVIEW,
        comment="ACTIVE | SUSPENDED | UNDER_REVIEW | CLOSED",
    )
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    @property
    def is_active(self):
        return self.status == ACTIVE

    def to_dict(self):
        return {
            "id": self.id,
            "accountName": self.account_name,
            "walletAddress": self.wallet_address,
            "status": self.status,
            "activatedAt": self.activated_at.isoformat() if self.activated_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Account #{self.id} {self.account_name} {self.status}>"
