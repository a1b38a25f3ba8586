"""
Tests for Conference Backend API endpoints.

Tests cover:
- Health check
- Authentication and roles
- Submission intake (multipart) and admin submission views
- Committee dispatch and review status updates
- Reviewer expressions and committee sync
- Registrations, keynote speakers, sponsors and the contact form
- API key management and operations endpoints
"""

import json
from io import BytesIO
from uuid import uuid4

import pytest


def _submit(client, payload, files=None):
    return client.post("/submissions", data={"data": json.dumps(payload)}, files=files or {})


def _expression_payload(email):
    return {
        "name": "Rita Reviewer",
        "current_job_title": "Professor",
        "institution": "University of Examples",
        "email": email,
        "subject_area": "NLP, Vision",
    }


class TestHealthCheck:
    """Tests for the /healthz endpoint."""

    def test_health_check_returns_ok(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestAuthentication:
    def test_missing_key(self, client):
        response = client.get("/submissions")
        assert response.status_code == 422  # Missing required header

    def test_invalid_key(self, client):
        response = client.get("/submissions", headers={"X-API-Key": "invalid-key"})
        assert response.status_code == 401

    def test_admin_cannot_use_super_admin_routes(self, client, admin_key):
        response = client.get("/committee/members", headers={"X-API-Key": admin_key})
        assert response.status_code == 403

    def test_admin_can_use_admin_routes(self, client, admin_key):
        response = client.get("/submissions/stats", headers={"X-API-Key": admin_key})
        assert response.status_code == 200
        assert "by_status" in response.json()


class TestSubmissionIntake:
    def test_create_submission(self, client, admin_key, submission_data):
        payload = submission_data()
        response = _submit(client, payload, files={"paper_file": ("paper.pdf", BytesIO(b"%PDF-1.4"), "application/pdf")})

        assert response.status_code == 201
        data = response.json()
        assert len(data["paper_id"]) == 7
        assert data["review_status"] == "PENDING"
        assert data["sent_to_committee"] is False
        # No bucket configured in tests, so the upload is skipped
        assert data["paper_file_url"] is None

        fetched = client.get(f"/submissions/{data['id']}", headers={"X-API-Key": admin_key})
        assert fetched.status_code == 200
        assert fetched.json()["email"] == payload["email"]

    def test_paper_ids_increase(self, client, submission_data):
        first = _submit(client, submission_data()).json()["paper_id"]
        second = _submit(client, submission_data()).json()["paper_id"]
        assert int(second[4:]) == int(first[4:]) + 1

    def test_duplicate_email(self, client, submission_data):
        payload = submission_data()
        assert _submit(client, payload).status_code == 201

        response = _submit(client, payload)
        assert response.status_code == 409
        assert response.json()["type"] == "duplicate_email"

    def test_invalid_payload(self, client, submission_data):
        response = _submit(client, submission_data(paper_abstract="short"))
        assert response.status_code == 422

    def test_malformed_json(self, client):
        response = client.post("/submissions", data={"data": "{not json"})
        assert response.status_code == 400
        assert response.json()["type"] == "validation_error"

    def test_rejects_unsupported_file(self, client, submission_data):
        response = _submit(
            client,
            submission_data(),
            files={"paper_file": ("paper.exe", BytesIO(b"MZ"), "application/octet-stream")},
        )
        assert response.status_code == 400
        assert "Unsupported file type" in response.json()["detail"]


class TestSubmissionAdmin:
    def test_list_and_search(self, client, admin_key, submission_data):
        marker = uuid4().hex[:10]
        _submit(client, submission_data(paper_title=f"Searchable {marker}"))

        response = client.get(f"/submissions?search={marker}", headers={"X-API-Key": admin_key})
        assert response.status_code == 200
        page = response.json()
        assert page["total"] == 1
        assert page["items"][0]["paper_title"] == f"Searchable {marker}"

    def test_invalid_status_filter(self, client, admin_key):
        response = client.get("/submissions?status=MAYBE", headers={"X-API-Key": admin_key})
        assert response.status_code == 400

    def test_unknown_submission(self, client, admin_key):
        response = client.get("/submissions/does-not-exist", headers={"X-API-Key": admin_key})
        assert response.status_code == 404
        assert response.json()["type"] == "not_found"

    def test_delete_submission(self, client, admin_key, submission_data):
        created = _submit(client, submission_data()).json()
        headers = {"X-API-Key": admin_key}

        assert client.delete(f"/submissions/{created['id']}", headers=headers).status_code == 200
        assert client.delete(f"/submissions/{created['id']}", headers=headers).status_code == 404


class TestReviewWorkflow:
    def test_dispatch_without_active_recipients(self, client, admin_key, submission_data):
        created = _submit(client, submission_data()).json()

        response = client.post(
            f"/submissions/{created['id']}/dispatch",
            json={"committee_ids": ["no-such-member"]},
            headers={"X-API-Key": admin_key},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "No active committee members found"

    def test_dispatch_and_decide(self, client, admin_key, master_key, submission_data):
        created = _submit(client, submission_data()).json()
        member = client.post(
            "/committee/members",
            json={"name": "Alice Reviewer", "email": f"alice-{uuid4().hex[:6]}@review.test"},
            headers={"X-API-Key": master_key},
        )
        assert member.status_code == 201
        member_id = member.json()["id"]
        assert member.json()["created_by"] == "master"

        dispatched = client.post(
            f"/submissions/{created['id']}/dispatch",
            json={"committee_ids": [member_id]},
            headers={"X-API-Key": admin_key},
        )
        assert dispatched.status_code == 200
        result = dispatched.json()
        assert result["sent_count"] == 1
        assert result["submission"]["review_status"] == "SENT_TO_COMMITTEE"
        assert result["submission"]["committee_members"][0]["id"] == member_id

        invalid = client.put(
            f"/submissions/{created['id']}/review-status",
            json={"review_status": "MAYBE"},
            headers={"X-API-Key": admin_key},
        )
        assert invalid.status_code == 400

        approved = client.put(
            f"/submissions/{created['id']}/review-status",
            json={"review_status": "APPROVED"},
            headers={"X-API-Key": admin_key},
        )
        assert approved.status_code == 200
        assert approved.json()["review_status"] == "APPROVED"

    def test_mailer_status(self, client, admin_key):
        response = client.get("/mailer/status", headers={"X-API-Key": admin_key})
        assert response.status_code == 200
        assert response.json() == {"blocked": False, "blocked_until": None}

    def test_manual_reminder_tick(self, client, master_key, admin_key):
        assert client.post("/internal/reminders/run", headers={"X-API-Key": admin_key}).status_code == 403

        response = client.post("/internal/reminders/run", headers={"X-API-Key": master_key})
        assert response.status_code == 200
        assert {"scanned", "reminders_sent", "skipped_reason"} <= set(response.json())


class TestCommittee:
    def test_duplicate_member_email(self, client, master_key):
        body = {"name": "Dup", "email": f"dup-{uuid4().hex[:6]}@review.test"}
        headers = {"X-API-Key": master_key}
        assert client.post("/committee/members", json=body, headers=headers).status_code == 201
        assert client.post("/committee/members", json=body, headers=headers).status_code == 409

    def test_deactivate_member(self, client, master_key, admin_key):
        headers = {"X-API-Key": master_key}
        member = client.post(
            "/committee/members",
            json={"name": "Temp", "email": f"temp-{uuid4().hex[:6]}@review.test"},
            headers=headers,
        ).json()

        updated = client.put(f"/committee/members/{member['id']}", json={"is_active": False}, headers=headers)
        assert updated.status_code == 200
        assert updated.json()["is_active"] is False

        active = client.get("/committee/active-members", headers={"X-API-Key": admin_key}).json()
        assert member["id"] not in {m["id"] for m in active}

        stats = client.get("/committee/stats", headers=headers).json()
        assert stats["inactive"] >= 1

    def test_get_member(self, client, master_key, admin_key):
        headers = {"X-API-Key": master_key}
        member = client.post(
            "/committee/members",
            json={"name": "Gus", "email": f"Gus-{uuid4().hex[:6]}@Review.test"},
            headers=headers,
        ).json()
        assert member["email"] == member["email"].lower()

        fetched = client.get(f"/committee/members/{member['id']}", headers=headers)
        assert fetched.status_code == 200
        assert fetched.json()["name"] == "Gus"

        assert client.get("/committee/members/missing", headers=headers).status_code == 404
        assert client.get(f"/committee/members/{member['id']}", headers={"X-API-Key": admin_key}).status_code == 403


class TestReviewerExpressions:
    def test_submit_and_accept(self, client, master_key):
        email = f"rita-{uuid4().hex[:6]}@review.test"
        created = client.post(
            "/reviewer-expressions",
            data={"data": json.dumps(_expression_payload(email))},
            files={"cv_file": ("cv.pdf", BytesIO(b"%PDF"), "application/pdf")},
        )
        assert created.status_code == 201
        expression = created.json()
        assert expression["status"] == "PENDING"
        assert expression["subject_area"] == ["NLP", "Vision"]

        headers = {"X-API-Key": master_key}
        accepted = client.patch(
            f"/reviewer-expressions/{expression['id']}/status",
            json={"status": "ACCEPTED"},
            headers=headers,
        )
        assert accepted.status_code == 200
        result = accepted.json()
        assert result["synced_to_committee"] is True
        assert result["committee_member"]["email"] == email
        assert result["committee_member"]["expertise"] == "NLP, Vision"

        members = client.get("/committee/members", headers=headers).json()
        assert [m["email"] for m in members].count(email) == 1

    def test_rejects_bad_cv_type(self, client):
        response = client.post(
            "/reviewer-expressions",
            data={"data": json.dumps(_expression_payload("x@review.test"))},
            files={"cv_file": ("cv.tex", BytesIO(b"tex"), "text/plain")},
        )
        assert response.status_code == 400

    def test_invalid_status(self, client, master_key):
        email = f"sam-{uuid4().hex[:6]}@review.test"
        expression = client.post(
            "/reviewer-expressions", data={"data": json.dumps(_expression_payload(email))}
        ).json()

        response = client.patch(
            f"/reviewer-expressions/{expression['id']}/status",
            json={"status": "MAYBE"},
            headers={"X-API-Key": master_key},
        )
        assert response.status_code == 400


class TestRegistrations:
    def _register(self, client, paper_id, transaction_id=None, receipt=("receipt.pdf", b"%PDF", "application/pdf")):
        payload = {
            "name": "Ada Attendee",
            "email": "ada@example.org",
            "registration_type": "Academic",
            "institution_name": "University of Examples",
            "country": "Portugal",
            "phone": "+351 21 000 0000",
            "paper_id": paper_id,
            "transaction_id": transaction_id or f"TXN-{uuid4().hex[:8]}",
        }
        files = {}
        if receipt is not None:
            name, content, content_type = receipt
            files["payment_receipt"] = (name, BytesIO(content), content_type)
        return client.post("/registrations", data={"data": json.dumps(payload)}, files=files)

    def test_register_and_manage(self, client, admin_key, submission_data):
        paper_id = _submit(client, submission_data()).json()["paper_id"]

        created = self._register(client, paper_id)
        assert created.status_code == 201
        registration = created.json()
        assert registration["paper_id"] == paper_id
        assert registration["payment_receipt_url"] is None

        headers = {"X-API-Key": admin_key}
        listed = client.get("/registrations", headers=headers).json()
        assert registration["id"] in {r["id"] for r in listed}

        updated = client.put(f"/registrations/{registration['id']}", json={"is_paid": True}, headers=headers)
        assert updated.status_code == 200
        assert updated.json()["is_paid"] is True

        assert client.delete(f"/registrations/{registration['id']}", headers=headers).status_code == 200
        assert client.get(f"/registrations/{registration['id']}", headers=headers).status_code == 404

    def test_unknown_paper(self, client):
        response = self._register(client, "2599999")
        assert response.status_code == 400
        assert "does not match any submission" in response.json()["detail"]

    def test_duplicate_paper_registration(self, client, submission_data):
        paper_id = _submit(client, submission_data()).json()["paper_id"]
        assert self._register(client, paper_id).status_code == 201

        response = self._register(client, paper_id)
        assert response.status_code == 409
        assert response.json()["type"] == "conflict"

    def test_receipt_is_required(self, client, submission_data):
        paper_id = _submit(client, submission_data()).json()["paper_id"]
        response = self._register(client, paper_id, receipt=None)
        assert response.status_code == 400
        assert response.json()["detail"] == "Payment receipt file is required"

    def test_receipt_type(self, client, submission_data):
        paper_id = _submit(client, submission_data()).json()["paper_id"]
        response = self._register(client, paper_id, receipt=("receipt.docx", b"doc", "application/msword"))
        assert response.status_code == 400

    def test_listing_requires_admin(self, client):
        assert client.get("/registrations").status_code == 422


class TestKeynoteSpeakers:
    def _apply(self, client, email, files=None):
        payload = {
            "name": "Kim Keynote",
            "email": email,
            "phone": "+44 20 7946 0958",
            "country": "United Kingdom",
            "designation": "Professor",
            "institution_name": "Institute of Examples",
            "experience_years": 20,
            "expertise_area": "Computer Science",
            "specialization": "Distributed systems",
            "highest_degree": "PhD",
            "keynote_title": "Dependable Systems at Scale",
            "keynote_abstract": "A talk about dependable systems and the people who build them. " * 3,
            "agree_to_terms": True,
        }
        return client.post("/keynote-speakers", data={"data": json.dumps(payload)}, files=files or {})

    def test_apply_review_and_list(self, client, admin_key):
        email = f"kim-{uuid4().hex[:6]}@keynote.test"
        created = self._apply(client, email, files={"photo_file": ("me.png", BytesIO(b"png"), "image/png")})
        assert created.status_code == 201
        speaker = created.json()
        assert speaker["status"] == "PENDING"

        public = client.get("/keynote-speakers").json()
        entry = next(s for s in public if s["id"] == speaker["id"])
        assert "email" not in entry
        assert "phone" not in entry

        headers = {"X-API-Key": admin_key}
        approved = client.patch(
            f"/keynote-speakers/{speaker['id']}/status", json={"status": "APPROVED"}, headers=headers
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "APPROVED"

        stats = client.get("/keynote-speakers/stats", headers=headers).json()
        assert stats["by_status"]["APPROVED"] >= 1

        everyone = client.get("/keynote-speakers/all", headers=headers).json()
        assert email in {s["email"] for s in everyone}

        updated = client.put(
            f"/keynote-speakers/{speaker['id']}", json={"keynote_title": "Dependable Systems"}, headers=headers
        )
        assert updated.json()["keynote_title"] == "Dependable Systems"

        assert client.delete(f"/keynote-speakers/{speaker['id']}", headers=headers).status_code == 200
        assert client.get(f"/keynote-speakers/{speaker['id']}", headers=headers).status_code == 404

    def test_duplicate_email(self, client):
        email = f"dup-{uuid4().hex[:6]}@keynote.test"
        assert self._apply(client, email).status_code == 201

        response = self._apply(client, email.upper())
        assert response.status_code == 409
        assert response.json()["type"] == "duplicate_email"

    def test_invalid_status(self, client, admin_key):
        speaker = self._apply(client, f"sam-{uuid4().hex[:6]}@keynote.test").json()
        response = client.patch(
            f"/keynote-speakers/{speaker['id']}/status", json={"status": "MAYBE"}, headers={"X-API-Key": admin_key}
        )
        assert response.status_code == 400

    def test_rejects_bad_photo_type(self, client):
        response = self._apply(
            client,
            f"pic-{uuid4().hex[:6]}@keynote.test",
            files={"photo_file": ("me.gif", BytesIO(b"gif"), "image/gif")},
        )
        assert response.status_code == 400


class TestSponsorsAndContact:
    def test_sponsor_lifecycle(self, client, admin_key):
        email = f"team-{uuid4().hex[:6]}@acme.test"
        created = client.post("/sponsors", json={"name": "Acme", "email": email, "level": "Gold", "amount": 5000})
        assert created.status_code == 201
        sponsor = created.json()
        assert sponsor["level"] == "gold"

        headers = {"X-API-Key": admin_key}
        assert sponsor["id"] in {s["id"] for s in client.get("/sponsors", headers=headers).json()}

        updated = client.put(f"/sponsors/{sponsor['id']}", json={"company_name": "Acme Ltd"}, headers=headers)
        assert updated.json()["company_name"] == "Acme Ltd"

        assert client.delete(f"/sponsors/{sponsor['id']}", headers=headers).status_code == 200
        assert client.get(f"/sponsors/{sponsor['id']}", headers=headers).status_code == 404

    def test_sponsor_below_minimum(self, client):
        response = client.post(
            "/sponsors", json={"name": "Acme", "email": "low@acme.test", "level": "platinum", "amount": 500}
        )
        assert response.status_code == 422

    def test_contact_form(self, client, admin_key):
        body = {
            "name": "Casey",
            "email": "casey@example.org",
            "phone": "+1 555 0100",
            "subject": f"Visa letter {uuid4().hex[:6]}",
            "message": "Could you send an invitation letter?",
        }
        created = client.post("/contact", json=body)
        assert created.status_code == 201
        message_id = created.json()["id"]

        headers = {"X-API-Key": admin_key}
        assert message_id in {m["id"] for m in client.get("/contact", headers=headers).json()}
        assert client.delete(f"/contact/{message_id}", headers=headers).status_code == 200
        assert client.delete(f"/contact/{message_id}", headers=headers).status_code == 404

    def test_contact_requires_all_fields(self, client):
        assert client.post("/contact", json={"name": "Casey", "email": "casey@example.org"}).status_code == 422


class TestAPIKeyManagement:
    """Tests for the /admin/keys endpoints."""

    def test_create_requires_super_admin(self, client, admin_key):
        response = client.post("/admin/keys", json={"owner": "x"}, headers={"X-API-Key": admin_key})
        assert response.status_code == 403

    def test_create_list_revoke(self, client, master_key):
        headers = {"X-API-Key": master_key}
        created = client.post("/admin/keys", json={"owner": "session-chair", "role": "SUPER_ADMIN"}, headers=headers)
        assert created.status_code == 201
        data = created.json()
        assert data["api_key"].startswith("cfk_")
        assert data["record"]["role"] == "SUPER_ADMIN"

        listed = client.get("/admin/keys", headers=headers).json()
        assert data["record"]["id"] in {k["id"] for k in listed}

        new_headers = {"X-API-Key": data["api_key"]}
        assert client.get("/committee/stats", headers=new_headers).status_code == 200

        assert client.delete(f"/admin/keys/{data['record']['id']}", headers=headers).status_code == 200
        assert client.get("/committee/stats", headers=new_headers).status_code == 401
        assert client.delete(f"/admin/keys/{data['record']['id']}", headers=headers).status_code == 404

    @pytest.mark.parametrize("role", ["ROOT", ""])
    def test_invalid_role(self, client, master_key, role):
        response = client.post(
            "/admin/keys", json={"owner": "x", "role": role}, headers={"X-API-Key": master_key}
        )
        assert response.status_code == 422
