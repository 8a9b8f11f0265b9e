"""
Account service - list/detail views and supervisor-driven account changes.

Activation (UNDER_REVIEW → ACTIVE) is owned by the onboarding decision gate
(onboarding_service.record_decision). Every other status change goes through
update_account_status() and the ACCOUNT_TRANSITIONS table:

    UNDER_REVIEW → CLOSED
    ACTIVE       → SUSPENDED | CLOSED
    SUSPENDED    → ACTIVE | CLOSED
    CLOSED       (terminal)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update

from onboarding_desk.core.exceptions import ConflictError, NotFoundError, ValidationError
from onboarding_desk.models import db
from onboarding_desk.models.account import (
    VALID_ACCOUNT_STATUSES,
    Account,
    validate_account_transition,
)
from onboarding_desk.utils.helpers import clean_text, commit_or_raise, store_guard

logger = logging.getLogger(__name__)

ACCOUNT_SORT_FIELDS = {
    "createdAt": Account.created_at,
    "updatedAt": Account.updated_at,
    "accountName": Account.account_name,
    "status": Account.status,
}

MAX_ACCOUNT_NAME_LENGTH = 255
MAX_WALLET_ADDRESS_LENGTH = 64
EDITABLE_ACCOUNT_FIELDS = ("accountName", "walletAddress")


def _status_error(value) -> ValidationError:
    return ValidationError(
        f"status must be one of: {', '.join(sorted(VALID_ACCOUNT_STATUSES))}",
        details={"status": value if isinstance(value, str) else repr(value)},
    )


def get_account(account_id: int) -> Account:
    with store_guard("get_account", account_id=account_id):
        account = db.session.get(Account, account_id)
    if account is None:
        raise NotFoundError(resource="Account", resource_id=account_id)
    return account


def accounts_query(query_term: str | None = None, status: str | None = None):
    """Base query for the paged account list, optionally filtered."""
    query = Account.query
    if query_term:
        query = query.filter(Account.account_name.ilike(f"%{query_term}%"))
    if status:
        status = status.upper()
        if status not in VALID_ACCOUNT_STATUSES:
            raise _status_error(status)
        query = query.filter(Account.status == status)
    return query


def update_account_status(account_id: int, status, actor_id: str | None = None) -> Account:
    """Move an account along ACCOUNT_TRANSITIONS.

    The write is conditional on the status that was read, so a concurrent
    change (including activation by the decision gate) is reported as a
    conflict rather than overwritten.

    Raises:
        ValidationError:          status is not a known account status.
        NotFoundError:            account does not exist.
        ConflictError:            transition not allowed from the current status.
        UpstreamUnavailableError: database failure (nothing written).
    """
    if not isinstance(status, str) or status.strip().upper() not in VALID_ACCOUNT_STATUSES:
        raise _status_error(status)
    new_status = status.strip().upper()

    account = get_account(account_id)
    old_status = account.status
    if not validate_account_transition(old_status, new_status):
        raise ConflictError("Account", "status", f"{old_status} -> {new_status}")

    now = datetime.now(timezone.utc)
    with store_guard("update_account_status", account_id=account_id):
        result = db.session.execute(
            update(Account)
            .where(Account.id == account_id, Account.status == old_status)
            .values(status=new_status, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.session.rollback()
            current = get_account(account_id)
            raise ConflictError("Account", "status", f"{current.status} -> {new_status}")

    commit_or_raise("update_account_status", account_id=account_id)

    logger.info(
        "Account status changed id=%s %s -> %s",
        account_id, old_status, new_status,
        extra={"account_id": account_id, "actor_id": actor_id},
    )
    db.session.refresh(account)
    return account


def update_account_details(account_id: int, data: dict) -> Account:
    """Partially update the editable account details.

    Body (any subset)::

        {"accountName": "Acme Trading Ltd", "walletAddress": "0xabc..."}

    ``walletAddress`` may be null or empty to clear it. Status is changed
    through update_account_status() only.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    errors: dict[str, str] = {}
    if "status" in data:
        errors["status"] = "use the account status endpoint"
    if not any(field in data for field in EDITABLE_ACCOUNT_FIELDS):
        errors.setdefault("body", f"expected one of: {', '.join(EDITABLE_ACCOUNT_FIELDS)}")

    changes = {}
    if "accountName" in data:
        name = clean_text(data["accountName"], "accountName", errors)
        if "accountName" not in errors:
            if not name:
                errors["accountName"] = "required"
            elif len(name) > MAX_ACCOUNT_NAME_LENGTH:
                errors["accountName"] = f"must be at most {MAX_ACCOUNT_NAME_LENGTH} characters"
            else:
                changes["account_name"] = name
    if "walletAddress" in data:
        wallet = clean_text(data["walletAddress"], "walletAddress", errors)
        if "walletAddress" not in errors:
            if len(wallet) > MAX_WALLET_ADDRESS_LENGTH:
                errors["walletAddress"] = f"must be at most {MAX_WALLET_ADDRESS_LENGTH} characters"
            else:
                changes["wallet_address"] = wallet or None
    if errors:
        raise ValidationError("Account update is invalid", details=errors)

    account = get_account(account_id)
    for attr, value in changes.items():
        setattr(account, attr, value)
    commit_or_raise("update_account_details", account_id=account_id)

    logger.info(
        "Account details updated id=%s fields=%s",
        account_id, ",".join(sorted(changes)),
        extra={"account_id": account_id},
    )
    db.session.refresh(account)
    return account
