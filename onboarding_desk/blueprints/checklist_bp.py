"""
Due-Diligence Checklist Blueprint.

Template store and checklist instance endpoints.

Endpoints:
    GET    /api/v1/due-diligence-checklists/<checklistType>/<versionNumber>
           Returns: 200 template body, 404 when the pair is unknown.

    GET    /api/v1/due-diligence-checklists/<checklistType>
           Query params: page, limit, orderBy, orderDirection
           Returns: 200 paged list of published versions (no sections).

    POST   /api/v1/due-diligence-checklists
           Body: {checklistType, versionNumber?, title?, sections: [...]}
           Returns: 201 with the published template.

    GET    /api/v1/due-diligence-checklists/<instanceId>
           Returns: 200 instance with sections, items, notes and summary.

    PATCH  /api/v1/due-diligence-checklists/<instanceId>/checklist
           Headers: If-Match: <revision>   (optional)
           Body: [{sectionTitle, itemTitle, itemKey?, status?,
                   notes?: [{text, userId}]}, ...]
           Returns: 200 {"success": true, "revision": n}

Layer contract:
    - Blueprint: parse input, call service, return JSON.
    - NO db.session calls here - all writes owned by the services.
"""

import logging

from flask import Blueprint, jsonify, request

from onboarding_desk.middleware.permission_required import (
    AGENT,
    CHECKLIST_ADMIN,
    current_user_id,
    require_role,
)
from onboarding_desk.models.checklist import ChecklistTemplate
from onboarding_desk.services import checklist_service, checklist_template_service
from onboarding_desk.utils.errors import E, api_error, register_error_handlers
from onboarding_desk.utils.pagination import paginate, parse_page_request

logger = logging.getLogger(__name__)

checklist_bp = Blueprint("checklist", __name__, url_prefix="/api/v1/due-diligence-checklists")
register_error_handlers(checklist_bp)

TEMPLATE_SORT_FIELDS = {
    "createdAt": ChecklistTemplate.published_at,
    "publishedAt": ChecklistTemplate.published_at,
    "versionNumber": ChecklistTemplate.version_number,
}


def _parse_if_match():
    """Return (revision, err_response). Missing header → (None, None)."""
    raw = request.headers.get("If-Match")
    if raw is None:
        return None, None
    value = raw.strip().removeprefix("W/").strip('"')
    try:
        revision = int(value)
    except ValueError:
        return None, api_error(
            E.VALIDATION_REQUIRED,
            "If-Match must carry the checklist revision number",
            details={"If-Match": raw},
        )
    return revision, None


# ── Templates ──────────────────────────────────────────────────────────────────


@checklist_bp.route("/<checklist_type>/<int:version_number>", methods=["GET"])
@require_role(AGENT, CHECKLIST_ADMIN)
def get_template(checklist_type: str, version_number: int):
    """Fetch one immutable template version; 404 when the pair is unknown."""
    template = checklist_template_service.fetch_template(checklist_type.upper(), version_number)
    if template is None:
        return api_error(
            E.NOT_FOUND,
            f"Checklist template {checklist_type.upper()} v{version_number} not found",
        )
    return jsonify(template.to_dict()), 200


@checklist_bp.route("/<checklist_type>", methods=["GET"])
@require_role(AGENT, CHECKLIST_ADMIN)
def list_template_versions(checklist_type: str):
    page_request = parse_page_request()
    query = checklist_template_service.template_versions_query(checklist_type.upper())
    result = paginate(
        query,
        page_request,
        TEMPLATE_SORT_FIELDS,
        serialize=lambda t: t.to_dict(include_sections=False),
        tiebreaker=ChecklistTemplate.id,
    )
    return jsonify(result), 200


@checklist_bp.route("", methods=["POST"])
@require_role(CHECKLIST_ADMIN)
def publish_template():
    """Publish a new template version. Existing versions are never modified."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    template = checklist_template_service.publish_template(data, published_by=current_user_id())
    return jsonify(template.to_dict()), 201


# ── Instances ──────────────────────────────────────────────────────────────────


@checklist_bp.route("/<int:instance_id>", methods=["GET"])
@require_role(AGENT)
def get_instance(instance_id: int):
    instance = checklist_service.get_instance(instance_id)
    body = instance.to_dict()
    body["summary"] = checklist_service.checklist_summary(instance)
    return jsonify(body), 200


@checklist_bp.route("/<int:instance_id>/checklist", methods=["PATCH"])
@require_role(AGENT)
def update_checklist(instance_id: int):
    """Apply a batch of item status / note updates.

    The whole batch is rejected (422) when any element is malformed or
    matches no item; nothing is applied in that case.
    """
    updates = request.get_json(silent=True)
    if not isinstance(updates, list):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON array of item updates")

    expected_revision, err = _parse_if_match()
    if err:
        return err

    checklist_service.apply_updates(
        instance_id,
        updates,
        expected_revision=expected_revision,
        actor_id=current_user_id(),
    )
    revision = checklist_service.get_instance(instance_id).revision
    return jsonify({"success": True, "revision": revision}), 200
