"""
Onboarding Desk API Gateway - HTTP client for the checklist and decision endpoints.

Used by collaborators that drive the onboarding workflow remotely (portal
server actions, back-office scripts). All outbound calls go through this
class so status-code handling lives in one place:

    fetch_template()        404 → None (a missing version is a normal outcome)
    update_checklist()      non-2xx → exception
    record_decision()       non-2xx → exception
    list_onboardings() / list_accounts()   pagination contract passthrough
    update_account_status() / update_account_details()   non-2xx → exception

Status mapping (same hierarchy the server raises):
    401 → UnauthorizedError      403 → ForbiddenError
    404 → NotFoundError          409 → ConflictError
    412 → PreconditionFailedError
    400/422 → ValidationError
    5xx, connection errors, timeouts → UpstreamUnavailableError

Configuration is injected through GatewayConfig; nothing is read from the
process environment, so several gateways with different backends can
coexist. No retries are performed here; callers decide.

Testability: pass a fake ``session`` to the constructor instead of letting
it create a real requests.Session.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import requests

from onboarding_desk.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
    UpstreamUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30


@dataclass(frozen=True)
class GatewayConfig:
    base_url: str
    api_token: str | None = None
    timeout: float = _DEFAULT_TIMEOUT

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


class OnboardingApiGateway:
    """Client for the onboarding desk REST API.

    Usage:
        gateway = OnboardingApiGateway(GatewayConfig(base_url="https://desk/api/v1",
                                                      api_token=token))
        template = gateway.fetch_template("KYC", 1)   # dict or None
    """

    def __init__(self, config: GatewayConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── HTTP plumbing ─────────────────────────────────────────────────────────

    def _headers(self, extra: dict | None = None) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, *, json: Any = None,
                 params: dict | None = None, headers: dict | None = None):
        url = self.config.url(path)
        start = time.monotonic()
        try:
            resp = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(headers),
                timeout=self.config.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            logger.warning("Onboarding API unreachable %s %s: %s", method, path, exc)
            raise UpstreamUnavailableError(f"{method} {path}", str(exc)) from exc

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Onboarding API %s %s → %s (%dms)", method, path, resp.status_code, duration_ms)
        return resp

    @staticmethod
    def _body(resp) -> dict:
        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def _raise_for_status(self, resp, operation: str, resource: str, resource_id=None) -> None:
        status = resp.status_code
        if 200 <= status < 300:
            return

        body = self._body(resp)
        message = body.get("error") or f"HTTP {status}"
        details = body.get("details") or {}
        logger.warning("Onboarding API %s failed status=%s error=%s", operation, status, message)

        if status == 401:
            raise UnauthorizedError(message)
        if status == 403:
            raise ForbiddenError(message, required=details.get("required"))
        if status == 404:
            raise NotFoundError(resource=resource, resource_id=resource_id)
        if status == 409:
            raise ConflictError(resource, details.get("field", "state"), details.get("value"))
        if status == 412:
            raise PreconditionFailedError(message, code=body.get("code", "PRECONDITION_FAILED"),
                                          details=details)
        if status in (400, 422):
            raise ValidationError(message, details=details)
        raise UpstreamUnavailableError(operation, message)

    # ── Templates ─────────────────────────────────────────────────────────────

    def fetch_template(self, checklist_type: str, version_number: int) -> dict | None:
        """Return the template body, or None when the version does not exist."""
        path = f"/due-diligence-checklists/{checklist_type}/{version_number}"
        resp = self._request("GET", path)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, "fetch_template", "ChecklistTemplate",
                               f"{checklist_type}/{version_number}")
        return resp.json()

    # ── Checklist instances ───────────────────────────────────────────────────

    def update_checklist(self, instance_id: int, updates: list[dict],
                         expected_revision: int | None = None) -> dict:
        """PATCH a batch of item updates. Returns {"success": True, "revision": n}."""
        headers = {"If-Match": str(expected_revision)} if expected_revision is not None else None
        resp = self._request(
            "PATCH",
            f"/due-diligence-checklists/{instance_id}/checklist",
            json=updates,
            headers=headers,
        )
        self._raise_for_status(resp, "update_checklist", "ChecklistInstance", instance_id)
        return resp.json()

    # ── Onboarding ────────────────────────────────────────────────────────────

    def get_onboarding(self, onboarding_id: int) -> dict:
        resp = self._request("GET", f"/onboarding/{onboarding_id}")
        self._raise_for_status(resp, "get_onboarding", "Onboarding", onboarding_id)
        return resp.json()

    def record_decision(self, onboarding_id: int, decision: str, notes: str) -> dict:
        resp = self._request(
            "POST",
            f"/onboarding/{onboarding_id}/decision",
            json={"decision": decision, "decisionNotes": notes},
        )
        self._raise_for_status(resp, "record_decision", "Onboarding", onboarding_id)
        return resp.json()

    # ── Paged lists ───────────────────────────────────────────────────────────

    @staticmethod
    def _page_params(page=None, limit=None, order_by=None, order_direction=None,
                     query_term=None) -> dict:
        params = {
            "page": page,
            "limit": limit,
            "orderBy": order_by,
            "orderDirection": order_direction,
            "queryTerm": query_term,
        }
        return {k: v for k, v in params.items() if v is not None}

    def list_onboardings(self, **options) -> dict:
        resp = self._request("GET", "/onboarding", params=self._page_params(**options))
        self._raise_for_status(resp, "list_onboardings", "Onboarding")
        return resp.json()

    def list_accounts(self, **options) -> dict:
        resp = self._request("GET", "/accounts", params=self._page_params(**options))
        self._raise_for_status(resp, "list_accounts", "Account")
        return resp.json()

    # ── Accounts ──────────────────────────────────────────────────────────────

    def update_account_details(self, account_id: int, updates: dict) -> dict:
        resp = self._request("PATCH", f"/accounts/{account_id}", json=updates)
        self._raise_for_status(resp, "update_account_details", "Account", account_id)
        return resp.json()

    def update_account_status(self, account_id: int, status: str) -> dict:
        """409 → ConflictError when the transition is not allowed."""
        resp = self._request("PATCH", f"/accounts/{account_id}/status", json={"status": status})
        self._raise_for_status(resp, "update_account_status", "Account", account_id)
        return resp.json()
