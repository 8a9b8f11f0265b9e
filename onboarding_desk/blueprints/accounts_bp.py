"""
Accounts Blueprint - list/detail over counterparty accounts plus supervisor edits.

Endpoints:
    GET   /api/v1/accounts              page, limit, orderBy, orderDirection, queryTerm, status
    GET   /api/v1/accounts/<id>
    PATCH /api/v1/accounts/<id>         body: {"accountName"?, "walletAddress"?}
    PATCH /api/v1/accounts/<id>/status  body: {"status": "SUSPENDED"}
"""

from flask import Blueprint, jsonify, request

from onboarding_desk.middleware.permission_required import (
    AGENT,
    SUPERVISOR,
    current_user_id,
    require_role,
)
from onboarding_desk.models.account import Account
from onboarding_desk.services import account_service
from onboarding_desk.utils.errors import E, api_error, register_error_handlers
from onboarding_desk.utils.pagination import paginate, parse_page_request

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/v1/accounts")
register_error_handlers(accounts_bp)


@accounts_bp.route("", methods=["GET"])
@require_role(AGENT)
def list_accounts():
    page_request = parse_page_request()
    query = account_service.accounts_query(
        query_term=page_request.query_term,
        status=request.args.get("status") or None,
    )
    result = paginate(query, page_request, account_service.ACCOUNT_SORT_FIELDS, tiebreaker=Account.id)
    return jsonify(result), 200


@accounts_bp.route("/<int:account_id>", methods=["GET"])
@require_role(AGENT)
def get_account(account_id: int):
    return jsonify(account_service.get_account(account_id).to_dict()), 200


@accounts_bp.route("/<int:account_id>", methods=["PATCH"])
@require_role(SUPERVISOR)
def update_account(account_id: int):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    account = account_service.update_account_details(account_id, data)
    return jsonify(account.to_dict()), 200


@accounts_bp.route("/<int:account_id>/status", methods=["PATCH"])
@require_role(SUPERVISOR)
def update_account_status(account_id: int):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    account = account_service.update_account_status(
        account_id, data.get("status"), actor_id=current_user_id(),
    )
    return jsonify(account.to_dict()), 200
