"""
Onboarding Blueprint - onboarding records and the decision gate.

Endpoints:
    POST   /api/v1/onboarding
           Body: {registrationId, companyName, contactEmail?, walletAddress?,
                  checklistType?, versionNumber?}
           Returns: 201 onboarding with its seeded checklist.

    GET    /api/v1/onboarding
           Query params: page, limit, orderBy, orderDirection, queryTerm, status
           Returns: 200 {data, metadata}

    GET    /api/v1/onboarding/<id>
           Returns: 200 onboarding with checklist, summary and account.

    POST   /api/v1/onboarding/<id>/decision
           Body: {decision: "APPROVED" | "DECLINED", decisionNotes: "..."}
           Returns: 200 updated onboarding.
                    412 CHECKLIST_INCOMPLETE / DECISION_ALREADY_RECORDED
"""

import logging

from flask import Blueprint, jsonify, request

from onboarding_desk.middleware.permission_required import (
    AGENT,
    SUPERVISOR,
    current_user_id,
    require_role,
)
from onboarding_desk.models.onboarding import Onboarding
from onboarding_desk.services import checklist_service, onboarding_service as svc
from onboarding_desk.utils.errors import E, api_error, register_error_handlers
from onboarding_desk.utils.pagination import paginate, parse_page_request

logger = logging.getLogger(__name__)

onboarding_bp = Blueprint("onboarding", __name__, url_prefix="/api/v1/onboarding")
register_error_handlers(onboarding_bp)


def _detail(onboarding):
    body = onboarding.to_dict(include_checklist=True)
    body["checklistSummary"] = checklist_service.checklist_summary(onboarding.checklist)
    return body


@onboarding_bp.route("", methods=["POST"])
@require_role(AGENT)
def create_onboarding():
    """Create an onboarding record from a registration."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    onboarding = svc.create_onboarding(data)
    return jsonify(_detail(onboarding)), 201


@onboarding_bp.route("", methods=["GET"])
@require_role(AGENT)
def list_onboardings():
    page_request = parse_page_request()
    query = svc.onboardings_query(
        query_term=page_request.query_term,
        status=request.args.get("status") or None,
    )
    result = paginate(query, page_request, svc.ONBOARDING_SORT_FIELDS, tiebreaker=Onboarding.id)
    return jsonify(result), 200


@onboarding_bp.route("/<int:onboarding_id>", methods=["GET"])
@require_role(AGENT)
def get_onboarding(onboarding_id: int):
    return jsonify(_detail(svc.get_onboarding(onboarding_id))), 200


@onboarding_bp.route("/<int:onboarding_id>/decision", methods=["POST"])
@require_role(SUPERVISOR)
def record_decision(onboarding_id: int):
    """Record the one-shot APPROVED / DECLINED decision.

    Input parsing only; every business rule (note required, checklist
    complete, decision not yet terminal) lives in onboarding_service.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")

    note = data.get("decisionNotes")
    if note is None:
        note = data.get("note")
    if isinstance(note, dict):
        note = note.get("note")

    onboarding = svc.record_decision(
        onboarding_id,
        data.get("decision"),
        note,
        reviewer_id=current_user_id(),
    )
    return jsonify(_detail(onboarding)), 200
