"""
Onboarding creation + Onboarding Decision Gate tests.

Tests cover:
  - creation: NEW / PENDING, seeded checklist, account UNDER_REVIEW
  - decision input validation (decision vocabulary, mandatory note)
  - CHECKLIST_INCOMPLETE while any item is NOT_STARTED / IN_PROGRESS
  - APPROVED activates the account; DECLINED leaves it UNDER_REVIEW
  - terminal decision is immutable (DECISION_ALREADY_RECORDED)
  - concurrent reviewers: exactly one decision wins
  - store failures surface as 503 with nothing written
  - end-to-end KYC v1 flow
"""
import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from onboarding_desk.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    UpstreamUnavailableError,
    ValidationError,
)
from onboarding_desk.models import db
from onboarding_desk.models.account import Account
from onboarding_desk.models.onboarding import Onboarding
from onboarding_desk.services import checklist_service, checklist_template_service, onboarding_service

BASE = "/api/v1/onboarding"
CHECKLISTS = "/api/v1/due-diligence-checklists"


def _review_all(onboarding, status="SATISFACTORY"):
    """Move every checklist item of ``onboarding`` to ``status``."""
    batch = [{"itemKey": item.key, "status": status} for item in onboarding.checklist.items]
    checklist_service.apply_updates(onboarding.checklist_instance_id, batch)
    db.session.expire_all()


def _decide(client, onboarding_id, decision="APPROVED", note="all checks passed"):
    return client.post(
        f"{BASE}/{onboarding_id}/decision",
        json={"decision": decision, "decisionNotes": note},
    )


# ═════════════════════════════════════════════════════════════════════════
# CREATION
# ═════════════════════════════════════════════════════════════════════════

class TestCreateOnboarding:
    def test_create_via_api(self, client, default_templates):
        res = client.post(BASE, json={
            "registrationId": "reg-77",
            "companyName": "Globex Commodities",
            "walletAddress": "0xfeed",
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "NEW"
        assert body["onboardingDecision"] == {"decision": "PENDING", "decisionNotes": None}
        assert body["account"]["status"] == "UNDER_REVIEW"
        assert body["account"]["walletAddress"] == "0xfeed"
        assert body["dueDiligenceChecks"]["checklistType"] == "ONBOARDING"
        assert body["checklistSummary"]["totalItems"] == 8

    def test_latest_template_version_is_used(self, kyc_template):
        checklist_template_service.publish_template({
            "checklistType": "KYC",
            "sections": [{"title": "Identity", "items": [{"title": "Proof of ID"}, {"title": "Selfie"}]}],
        })
        ob = onboarding_service.create_onboarding(
            {"registrationId": "r1", "companyName": "A", "checklistType": "KYC"},
        )
        assert ob.checklist.version_number == 2
        assert len(ob.checklist.items) == 2

    def test_explicit_version(self, kyc_template):
        ob = onboarding_service.create_onboarding(
            {"registrationId": "r1", "companyName": "A", "checklistType": "KYC", "versionNumber": 1},
        )
        assert ob.checklist.version_number == 1

    def test_missing_fields_rejected(self, client, default_templates):
        res = client.post(BASE, json={"companyName": ""})
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"registrationId", "companyName"}

    def test_contact_email_is_normalised(self, default_templates):
        ob = onboarding_service.create_onboarding({
            "registrationId": "r1", "companyName": "A", "contactEmail": "ops@ACME-Trading.com",
        })
        assert ob.to_dict()["contactEmail"] == "ops@acme-trading.com"

    def test_invalid_contact_email_rejected(self, client, default_templates):
        res = client.post(BASE, json={"registrationId": "r1", "companyName": "A", "contactEmail": "not-an-email"})
        assert res.status_code == 422
        assert "contactEmail" in res.get_json()["details"]

    @pytest.mark.parametrize("field, value", [
        ("companyName", 123),
        ("registrationId", {"id": "r1"}),
        ("contactEmail", 42),
        ("walletAddress", ["0xabc"]),
    ])
    def test_non_string_fields_rejected(self, client, default_templates, field, value):
        body = {"registrationId": "r1", "companyName": "A", field: value}
        res = client.post(BASE, json=body)
        assert res.status_code == 422
        assert field in res.get_json()["details"]
        assert db.session.query(Onboarding).count() == 0

    def test_numeric_registration_id_is_accepted(self, default_templates):
        ob = onboarding_service.create_onboarding({"registrationId": 1001, "companyName": "A"})
        assert ob.registration_id == "1001"

    def test_unknown_template_returns_404(self, client):
        res = client.post(BASE, json={"registrationId": "r1", "companyName": "A", "checklistType": "KYC"})
        assert res.status_code == 404

    def test_duplicate_registration_returns_409(self, client, onboarding):
        res = client.post(BASE, json={"registrationId": "reg-001", "companyName": "Acme again"})
        assert res.status_code == 409
        assert db.session.query(Account).count() == 1

    def test_duplicate_registration_raises_conflict(self, onboarding):
        with pytest.raises(ConflictError):
            onboarding_service.create_onboarding({"registrationId": "reg-001", "companyName": "Acme"})

    def test_get_detail(self, client, onboarding):
        res = client.get(f"{BASE}/{onboarding.id}")
        assert res.status_code == 200
        assert res.get_json()["registrationId"] == "reg-001"

    def test_get_unknown_returns_404(self, client):
        assert client.get(f"{BASE}/999").status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# INPUT VALIDATION
# ═════════════════════════════════════════════════════════════════════════

class TestDecisionValidation:
    @pytest.mark.parametrize("note", ["", "   ", None])
    def test_note_is_mandatory(self, client, onboarding, note):
        _review_all(onboarding)
        res = _decide(client, onboarding.id, note=note)
        assert res.status_code == 422
        assert "decisionNotes" in res.get_json()["details"]

    @pytest.mark.parametrize("decision", ["PENDING", "MAYBE", "", None])
    def test_decision_must_be_terminal(self, client, onboarding, decision):
        _review_all(onboarding)
        res = _decide(client, onboarding.id, decision=decision)
        assert res.status_code == 422
        assert "decision" in res.get_json()["details"]

    def test_decision_is_case_normalised(self, onboarding):
        _review_all(onboarding)
        ob = onboarding_service.record_decision(onboarding.id, "approved", "ok", reviewer_id="sup-1")
        assert ob.decision == "APPROVED"

    def test_note_alias_is_accepted(self, client, onboarding):
        _review_all(onboarding)
        res = client.post(f"{BASE}/{onboarding.id}/decision", json={"decision": "DECLINED", "note": "no"})
        assert res.status_code == 200
        assert res.get_json()["onboardingDecision"]["decisionNotes"]["note"] == "no"

    def test_unknown_onboarding_returns_404(self, client):
        res = _decide(client, 999)
        assert res.status_code == 404

    def test_validation_precedes_lookup(self):
        with pytest.raises(ValidationError):
            onboarding_service.record_decision(999, "APPROVED", "")
        with pytest.raises(NotFoundError):
            onboarding_service.record_decision(999, "APPROVED", "ok")


# ═════════════════════════════════════════════════════════════════════════
# COMPLETENESS PRECONDITION
# ═════════════════════════════════════════════════════════════════════════

class TestChecklistIncomplete:
    def test_untouched_checklist_returns_412(self, client, onboarding):
        res = _decide(client, onboarding.id)
        assert res.status_code == 412
        body = res.get_json()
        assert body["code"] == "CHECKLIST_INCOMPLETE"
        assert len(body["details"]["outstanding"]) == 8

    def test_single_in_progress_item_blocks_decision(self, client, onboarding):
        _review_all(onboarding)
        checklist_service.apply_updates(onboarding.checklist_instance_id, [
            {"itemKey": "screening.adverse-media", "status": "IN_PROGRESS"},
        ])
        res = _decide(client, onboarding.id, decision="DECLINED")
        assert res.status_code == 412
        outstanding = res.get_json()["details"]["outstanding"]
        assert outstanding == [{
            "sectionTitle": "Screening",
            "itemTitle": "Adverse Media",
            "itemKey": "screening.adverse-media",
            "status": "IN_PROGRESS",
        }]

    def test_incomplete_leaves_state_untouched(self, client, onboarding):
        _decide(client, onboarding.id)
        db.session.expire_all()
        ob = onboarding_service.get_onboarding(onboarding.id)
        assert ob.decision == "PENDING"
        assert ob.account.status == "UNDER_REVIEW"

    def test_adverse_items_count_as_reviewed(self, client, onboarding):
        _review_all(onboarding, status="ADVERSE")
        res = _decide(client, onboarding.id, decision="DECLINED", note="sanctions hit")
        assert res.status_code == 200

    def test_mixed_reviewed_statuses_allow_approval(self, client, onboarding):
        _review_all(onboarding)
        checklist_service.apply_updates(onboarding.checklist_instance_id, [
            {"itemKey": "screening.adverse-media", "status": "ADVERSE",
             "notes": [{"text": "minor, historic", "userId": "u1"}]},
        ])
        res = _decide(client, onboarding.id, decision="APPROVED", note="adverse media is immaterial")
        assert res.status_code == 200


# ═════════════════════════════════════════════════════════════════════════
# OUTCOMES
# ═════════════════════════════════════════════════════════════════════════

class TestDecisionOutcomes:
    def test_approved_activates_account(self, client, onboarding):
        _review_all(onboarding)
        res = _decide(client, onboarding.id)
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "COMPLETE"
        assert body["onboardingDecision"]["decision"] == "APPROVED"
        assert body["onboardingDecision"]["decisionNotes"]["note"] == "all checks passed"
        assert body["account"]["status"] == "ACTIVE"
        assert body["account"]["activatedAt"]

    def test_declined_leaves_account_under_review(self, client, onboarding):
        _review_all(onboarding)
        res = _decide(client, onboarding.id, decision="DECLINED", note="ownership unclear")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "COMPLETE"
        assert body["account"]["status"] == "UNDER_REVIEW"
        assert body["account"]["activatedAt"] is None

    def test_reviewer_is_recorded(self, onboarding):
        _review_all(onboarding)
        ob = onboarding_service.record_decision(onboarding.id, "APPROVED", "ok", reviewer_id="sup-9")
        assert ob.decided_by == "sup-9"
        assert ob.decided_at is not None

    @pytest.mark.parametrize("first,second", [
        ("APPROVED", "APPROVED"),
        ("APPROVED", "DECLINED"),
        ("DECLINED", "APPROVED"),
    ])
    def test_terminal_decision_is_immutable(self, client, onboarding, first, second):
        _review_all(onboarding)
        assert _decide(client, onboarding.id, decision=first).status_code == 200
        res = _decide(client, onboarding.id, decision=second, note="second opinion")
        assert res.status_code == 412
        assert res.get_json()["code"] == "DECISION_ALREADY_RECORDED"
        db.session.expire_all()
        ob = onboarding_service.get_onboarding(onboarding.id)
        assert ob.decision == first
        assert ob.decision_note == "all checks passed"


# ═════════════════════════════════════════════════════════════════════════
# CONCURRENCY + STORE FAILURES
# ═════════════════════════════════════════════════════════════════════════

class TestConcurrentDecisions:
    def test_only_one_reviewer_wins(self, monkeypatch, onboarding):
        """A competing reviewer commits between our read and our write."""
        _review_all(onboarding)
        onboarding_id = onboarding.id
        real_outstanding = checklist_service.outstanding_items

        def competing_reviewer(instance):
            db.session.execute(
                update(Onboarding)
                .where(Onboarding.id == onboarding_id)
                .values(decision="DECLINED", decision_note="declined elsewhere",
                        decided_by="sup-2", status="COMPLETE")
            )
            db.session.commit()
            return real_outstanding(instance)

        monkeypatch.setattr(checklist_service, "outstanding_items", competing_reviewer)

        with pytest.raises(PreconditionFailedError) as exc_info:
            onboarding_service.record_decision(onboarding_id, "APPROVED", "looks fine", reviewer_id="sup-1")
        assert exc_info.value.code == "DECISION_ALREADY_RECORDED"

        db.session.expire_all()
        ob = onboarding_service.get_onboarding(onboarding_id)
        assert ob.decision == "DECLINED"
        assert ob.decided_by == "sup-2"
        assert ob.account.status == "UNDER_REVIEW"

    def _reopen_item_during_review(self, monkeypatch, onboarding):
        """A checklist batch lands after the completeness check has passed."""
        instance_id = onboarding.checklist_instance_id
        real_outstanding = checklist_service.outstanding_items

        def reopening_agent(instance):
            outstanding = real_outstanding(instance)
            checklist_service.apply_updates(
                instance_id, [{"itemKey": "screening.adverse-media", "status": "IN_PROGRESS"}],
            )
            return outstanding

        monkeypatch.setattr(checklist_service, "outstanding_items", reopening_agent)

    def _assert_undecided(self, onboarding_id):
        db.session.expire_all()
        ob = onboarding_service.get_onboarding(onboarding_id)
        assert ob.decision == "PENDING"
        assert ob.decided_at is None
        assert ob.account.status == "UNDER_REVIEW"
        item = next(i for i in ob.checklist.items if i.key == "screening.adverse-media")
        assert item.status == "IN_PROGRESS"

    def test_checklist_change_after_check_blocks_decision(self, monkeypatch, onboarding):
        _review_all(onboarding)
        onboarding_id = onboarding.id
        self._reopen_item_during_review(monkeypatch, onboarding)

        with pytest.raises(ConflictError) as exc_info:
            onboarding_service.record_decision(onboarding_id, "APPROVED", "looks fine", reviewer_id="sup-1")
        assert exc_info.value.field == "revision"
        self._assert_undecided(onboarding_id)

    def test_checklist_change_after_check_returns_409(self, client, monkeypatch, onboarding):
        _review_all(onboarding)
        onboarding_id = onboarding.id
        self._reopen_item_during_review(monkeypatch, onboarding)

        res = _decide(client, onboarding_id)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"
        self._assert_undecided(onboarding_id)


class TestStoreFailures:
    def test_commit_failure_returns_503_and_writes_nothing(self, client, monkeypatch, onboarding):
        _review_all(onboarding)

        def failing_commit(self):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(Session, "commit", failing_commit)
        res = _decide(client, onboarding.id)
        monkeypatch.undo()

        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_UPSTREAM_UNAVAILABLE"
        db.session.expire_all()
        ob = onboarding_service.get_onboarding(onboarding.id)
        assert ob.decision == "PENDING"
        assert ob.account.status == "UNDER_REVIEW"

    def test_commit_failure_raises_upstream_unavailable(self, monkeypatch, onboarding):
        def failing_commit(self):
            raise OperationalError("COMMIT", {}, Exception("connection reset"))

        monkeypatch.setattr(Session, "commit", failing_commit)
        with pytest.raises(UpstreamUnavailableError):
            checklist_service.apply_updates(onboarding.checklist_instance_id, [
                {"itemKey": "screening.adverse-media", "status": "ADVERSE"},
            ])
        monkeypatch.undo()

        db.session.expire_all()
        instance = checklist_service.get_instance(onboarding.checklist_instance_id)
        assert instance.revision == 0
        assert {item.status for item in instance.items} == {"NOT_STARTED"}

    def test_read_failure_returns_503(self, client, monkeypatch, onboarding):
        def failing_get(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("server closed the connection"))

        monkeypatch.setattr(Session, "get", failing_get)
        res = client.get(f"{BASE}/{onboarding.id}")
        monkeypatch.undo()
        assert res.status_code == 503


# ═════════════════════════════════════════════════════════════════════════
# END-TO-END
# ═════════════════════════════════════════════════════════════════════════

class TestKycFlow:
    def test_single_item_kyc_flow(self, client, kyc_template):
        res = client.post(BASE, json={
            "registrationId": "kyc-1", "companyName": "Initech", "checklistType": "KYC",
        })
        assert res.status_code == 201
        created = res.get_json()
        instance_id = created["dueDiligenceChecklistId"]

        res = client.patch(f"{CHECKLISTS}/{instance_id}/checklist", json=[{
            "sectionTitle": "Identity",
            "itemTitle": "Proof of ID",
            "status": "SATISFACTORY",
            "notes": [{"text": "passport verified", "userId": "agent-1"}],
        }])
        assert res.status_code == 200

        instance = client.get(f"{CHECKLISTS}/{instance_id}").get_json()
        item = instance["sections"][0]["items"][0]
        assert item["status"] == "SATISFACTORY"
        assert len(item["notes"]) == 1
        assert instance["summary"]["isComplete"] is True

        res = _decide(client, created["id"])
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "COMPLETE"
        assert body["onboardingDecision"]["decision"] == "APPROVED"

        account = client.get(f"/api/v1/accounts/{created['accountId']}").get_json()
        assert account["status"] == "ACTIVE"

        res = _decide(client, created["id"], decision="DECLINED", note="changed my mind")
        assert res.status_code == 412
        assert res.get_json()["code"] == "DECISION_ALREADY_RECORDED"
