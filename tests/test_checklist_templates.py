"""
Checklist Template Store tests.

Tests cover:
  - fetch by (checklistType, versionNumber), absence returns None / 404
  - publish: explicit and auto-incremented versions, duplicate → 409
  - body validation → 422 with field paths
  - stable item keys (derived and supplied)
  - immutability of published templates
  - default seed data
"""
import pytest

from onboarding_desk.core.exceptions import ValidationError
from onboarding_desk.models import db
from onboarding_desk.models.checklist import ChecklistTemplate
from onboarding_desk.services import checklist_template_service as svc

BASE = "/api/v1/due-diligence-checklists"


# ═════════════════════════════════════════════════════════════════════════
# FETCH
# ═════════════════════════════════════════════════════════════════════════

class TestFetchTemplate:
    def test_unknown_pair_returns_none(self):
        assert svc.fetch_template("KYC", 1) is None

    def test_unknown_version_returns_none(self, kyc_template):
        assert svc.fetch_template("KYC", 2) is None

    def test_fetch_returns_sections_in_order(self, kyc_template):
        tpl = svc.fetch_template("KYC", 1)
        assert tpl is not None
        assert tpl.checklist_type == "KYC"
        assert tpl.version_number == 1
        assert [s.title for s in tpl.sections] == ["Identity"]
        assert [i.title for i in tpl.sections[0].items] == ["Proof of ID"]

    def test_get_endpoint_returns_template(self, client, kyc_template):
        res = client.get(f"{BASE}/KYC/1")
        assert res.status_code == 200
        body = res.get_json()
        assert body["checklistType"] == "KYC"
        assert body["versionNumber"] == 1
        assert body["sections"][0]["items"][0]["key"] == "identity.proof-of-id"

    def test_get_endpoint_is_case_insensitive_on_type(self, client, kyc_template):
        assert client.get(f"{BASE}/kyc/1").status_code == 200

    def test_get_endpoint_unknown_returns_404(self, client):
        res = client.get(f"{BASE}/KYC/7")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_latest_template_picks_highest_version(self, kyc_template):
        svc.publish_template({**_kyc_body(), "versionNumber": 3})
        svc.publish_template({**_kyc_body(), "versionNumber": 2})
        assert svc.get_latest_template("KYC").version_number == 3
        assert svc.get_latest_template("AML") is None


def _kyc_body():
    return {
        "checklistType": "KYC",
        "title": "KYC",
        "sections": [
            {"title": "Identity", "items": [{"title": "Proof of ID"}, {"title": "Proof of Address"}]},
        ],
    }


# ═════════════════════════════════════════════════════════════════════════
# PUBLISH
# ═════════════════════════════════════════════════════════════════════════

class TestPublishTemplate:
    def test_publish_returns_201(self, client):
        res = client.post(BASE, json={**_kyc_body(), "versionNumber": 1})
        assert res.status_code == 201
        body = res.get_json()
        assert body["versionNumber"] == 1
        assert len(body["sections"][0]["items"]) == 2

    def test_publish_without_version_increments(self, client, kyc_template):
        res = client.post(BASE, json=_kyc_body())
        assert res.status_code == 201
        assert res.get_json()["versionNumber"] == 2

    def test_first_publish_without_version_is_v1(self):
        assert svc.publish_template(_kyc_body()).version_number == 1

    def test_duplicate_version_returns_409(self, client, kyc_template):
        res = client.post(BASE, json={**_kyc_body(), "versionNumber": 1})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"
        assert db.session.query(ChecklistTemplate).count() == 1

    def test_published_by_is_recorded(self):
        tpl = svc.publish_template(_kyc_body(), published_by="admin-7")
        assert tpl.to_dict()["publishedBy"] == "admin-7"

    @pytest.mark.parametrize("body,path", [
        ({"checklistType": "KYC", "sections": []}, "sections"),
        ({"checklistType": "kyc type!", "sections": [{"title": "A", "items": [{"title": "x"}]}]},
         "checklistType"),
        ({"checklistType": "KYC", "sections": [{"title": "", "items": [{"title": "x"}]}]},
         "sections[0].title"),
        ({"checklistType": "KYC", "sections": [{"title": "A", "items": []}]},
         "sections[0].items"),
        ({"checklistType": "KYC", "sections": [{"title": "A", "items": [{"title": "x"}, {"title": "x"}]}]},
         "sections[0].items[1].title"),
        ({"checklistType": "KYC", "sections": [
            {"title": "A", "items": [{"title": "x"}]},
            {"title": "A", "items": [{"title": "y"}]},
        ]}, "sections[1].title"),
        ({"checklistType": "KYC", "sections": [{"title": "A", "items": [{"title": "x", "checkType": "ROBOT"}]}]},
         "sections[0].items[0].checkType"),
        ({"checklistType": 7, "sections": [{"title": "A", "items": [{"title": "x"}]}]}, "checklistType"),
        ({"checklistType": "KYC", "title": 3, "sections": [{"title": "A", "items": [{"title": "x"}]}]}, "title"),
        ({"checklistType": "KYC", "sections": [{"title": ["A"], "items": [{"title": "x"}]}]},
         "sections[0].title"),
        ({"checklistType": "KYC", "sections": [{"title": "A", "items": [{"title": 1}]}]},
         "sections[0].items[0].title"),
        ({"checklistType": "KYC", "sections": [{"title": "A", "items": [{"title": "x", "key": 5}]}]},
         "sections[0].items[0].key"),
        ({"checklistType": "KYC", "sections": [{"title": "A", "items": [{"title": "x", "checkType": 2}]}]},
         "sections[0].items[0].checkType"),
    ])
    def test_invalid_body_returns_422(self, client, body, path):
        res = client.post(BASE, json=body)
        assert res.status_code == 422
        assert path in res.get_json()["details"]
        assert db.session.query(ChecklistTemplate).count() == 0

    def test_non_object_body_returns_400(self, client):
        res = client.post(BASE, json=["not", "an", "object"])
        assert res.status_code == 400

    def test_bad_version_number_returns_422(self, client):
        res = client.post(BASE, json={**_kyc_body(), "versionNumber": 0})
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# ITEM KEYS
# ═════════════════════════════════════════════════════════════════════════

class TestItemKeys:
    def test_derived_key(self):
        assert svc.derive_item_key("Company Verification", "Proof of Address") == \
            "company-verification.proof-of-address"

    def test_supplied_key_is_kept(self):
        body = {
            "checklistType": "KYC",
            "sections": [{"title": "Identity", "items": [{"title": "Proof of ID", "key": "kyc.poi"}]}],
        }
        tpl = svc.publish_template(body)
        assert tpl.items[0].key == "kyc.poi"

    def test_duplicate_keys_rejected(self):
        body = {
            "checklistType": "KYC",
            "sections": [{"title": "Identity", "items": [
                {"title": "Proof of ID", "key": "kyc.poi"},
                {"title": "Passport", "key": "kyc.poi"},
            ]}],
        }
        with pytest.raises(ValidationError) as exc_info:
            svc.publish_template(body)
        assert "sections[0].items[1].key" in exc_info.value.details


# ═════════════════════════════════════════════════════════════════════════
# IMMUTABILITY
# ═════════════════════════════════════════════════════════════════════════

class TestTemplateImmutability:
    def test_update_is_rejected(self, kyc_template):
        kyc_template.title = "Edited"
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()
        assert svc.fetch_template("KYC", 1).title == "KYC"

    def test_item_update_is_rejected(self, kyc_template):
        kyc_template.sections[0].items[0].title = "Edited"
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()

    def test_delete_is_rejected(self, kyc_template):
        db.session.delete(kyc_template)
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()
        assert svc.fetch_template("KYC", 1) is not None


# ═════════════════════════════════════════════════════════════════════════
# VERSION LIST + SEED
# ═════════════════════════════════════════════════════════════════════════

class TestVersionsAndSeed:
    def test_versions_list_is_paged(self, client, kyc_template):
        svc.publish_template(_kyc_body())
        res = client.get(f"{BASE}/KYC?orderBy=versionNumber&orderDirection=asc")
        assert res.status_code == 200
        body = res.get_json()
        assert [t["versionNumber"] for t in body["data"]] == [1, 2]
        assert "sections" not in body["data"][0]
        assert body["metadata"] == {"page": 1, "totalPages": 1, "limit": 10}

    def test_seed_is_idempotent(self):
        assert svc.seed_default_templates() == 2
        assert svc.seed_default_templates() == 0
        onboarding_tpl = svc.fetch_template("ONBOARDING", 1)
        assert len(onboarding_tpl.items) == 8
        assert svc.fetch_template("DEAL_PROCESSING", 1) is not None

    def test_seed_cli_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-checklist-templates"])
        assert result.exit_code == 0
        assert svc.fetch_template("ONBOARDING", 1) is not None
