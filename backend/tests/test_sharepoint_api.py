"""Tests for the SharePoint approval and signature workflow API."""

from __future__ import annotations

from datetime import timedelta

import pytest


def _approve(client, sharepoint_id, headers, approved=True, note=None):
    body = {"approved": approved}
    if note is not None:
        body["approvalNote"] = note
    return client.post(f"/api/sharepoints/{sharepoint_id}/approve", json=body, headers=headers)


def _sign(client, sharepoint_id, headers, note=None):
    body = {"signatureNote": note} if note is not None else {}
    return client.post(f"/api/sharepoints/{sharepoint_id}/sign", json=body, headers=headers)


def _disapprove(client, sharepoint_id, headers, note="Figures in table 2 are wrong"):
    return client.post(
        f"/api/sharepoints/{sharepoint_id}/disapprove",
        json={"disapprovalNote": note},
        headers=headers,
    )


def _get(client, sharepoint_id, headers):
    response = client.get(f"/api/sharepoints/{sharepoint_id}", headers=headers)
    assert response.status_code == 200
    return response.get_json()


def _recipients(outbox, subject_prefix):
    return sorted(
        message["To"] for message in outbox if message["Subject"].startswith(subject_prefix)
    )


def test_create_starts_pending_approval_and_notifies_managers(create_sharepoint, users, outbox):
    record = create_sharepoint()

    assert record["status"] == "pending_approval"
    assert record["completionPercentage"] == 0
    assert record["managerApproved"] is False
    assert record["createdBy"]["id"] == users["creator"].id
    assert [m["id"] for m in record["managersToApprove"]] == [users["m1"].id]
    assert [s["user"]["id"] for s in record["usersToSign"]] == [users["u1"].id, users["u2"].id]
    assert all(s["state"] == "unsigned" for s in record["usersToSign"])
    assert [entry["action"] for entry in record["updateHistory"]] == ["created"]
    assert record["updateHistory"][0]["event"]["type"] == "created"

    assert _recipients(outbox, "Approval Required") == ["m1@example.com"]
    message = outbox[0]
    assert "http://frontend.test/sharepoint/" in message.get_body(("plain",)).get_content()


def test_full_signature_flow_completes_and_notifies_once(client, create_sharepoint, headers, outbox):
    record = create_sharepoint()
    sharepoint_id = record["id"]

    approved = _approve(client, sharepoint_id, headers["m1"], note="Looks fine")
    assert approved.status_code == 200
    body = approved.get_json()
    assert body["message"] == "SharePoint approved successfully"
    assert body["sharePoint"]["status"] == "pending"
    assert body["sharePoint"]["completionPercentage"] == 50
    assert body["sharePoint"]["approvedBy"]["username"] == "m1"
    assert _recipients(outbox, "Document Approved") == ["u1@example.com", "u2@example.com"]

    first = _sign(client, sharepoint_id, headers["u1"], note="  ok for me  ")
    assert first.status_code == 200
    after_first = first.get_json()["sharePoint"]
    assert after_first["status"] == "in_progress"
    assert after_first["completionPercentage"] == 75
    assert after_first["usersToSign"][0]["signatureNote"] == "ok for me"
    assert after_first["usersToSign"][0]["state"] == "signed"
    assert _recipients(outbox, "Document Completed") == []

    second = _sign(client, sharepoint_id, headers["u2"])
    assert second.status_code == 200
    done = second.get_json()["sharePoint"]
    assert done["status"] == "completed"
    assert done["completionPercentage"] == 100
    assert done["allUsersSigned"] is True
    assert _recipients(outbox, "Document Completed") == ["creator@example.com", "m1@example.com"]


def test_manager_rejection_requires_a_note(client, create_sharepoint, headers, outbox):
    record = create_sharepoint()
    sharepoint_id = record["id"]

    empty = _approve(client, sharepoint_id, headers["m1"], approved=False, note="   ")
    assert empty.status_code == 400
    assert empty.get_json()["field"] == "approvalNote"
    unchanged = _get(client, sharepoint_id, headers["creator"])
    assert unchanged["status"] == "pending_approval"
    assert len(unchanged["updateHistory"]) == 1

    rejected = _approve(client, sharepoint_id, headers["m1"], approved=False, note="bad link")
    assert rejected.status_code == 200
    data = rejected.get_json()["sharePoint"]
    assert data["status"] == "rejected"
    assert data["managerApproved"] is False
    assert data["disapprovalNote"] == "bad link"
    assert data["updateHistory"][-1]["event"] == {"type": "rejected", "reason": "bad link"}
    assert _recipients(outbox, "Document Rejected") == ["creator@example.com"]

    blocked = _sign(client, sharepoint_id, headers["u1"])
    assert blocked.status_code == 403
    assert blocked.get_json()["code"] == "MANAGER_APPROVAL_REQUIRED"


def test_only_designated_managers_can_approve(client, create_sharepoint, headers):
    record = create_sharepoint()

    response = _approve(client, record["id"], headers["m2"])

    assert response.status_code == 403
    assert _get(client, record["id"], headers["creator"])["managerApproved"] is False


def test_signing_requires_manager_approval(client, create_sharepoint, headers):
    record = create_sharepoint()

    response = _sign(client, record["id"], headers["u1"])

    assert response.status_code == 403
    assert response.get_json()["code"] == "MANAGER_APPROVAL_REQUIRED"


def test_only_assigned_signers_can_sign_and_only_once(client, create_sharepoint, headers):
    record = create_sharepoint()
    _approve(client, record["id"], headers["m1"])

    outsider = _sign(client, record["id"], headers["outsider"])
    assert outsider.status_code == 403

    assert _sign(client, record["id"], headers["u1"]).status_code == 200
    again = _sign(client, record["id"], headers["u1"])
    assert again.status_code == 400
    assert again.get_json()["code"] == "ALREADY_SIGNED"


def test_signature_note_length_is_validated(client, create_sharepoint, headers):
    record = create_sharepoint()
    _approve(client, record["id"], headers["m1"])

    response = _sign(client, record["id"], headers["u1"], note="x" * 501)

    assert response.status_code == 400
    signer = _get(client, record["id"], headers["u1"])["usersToSign"][0]
    assert signer["hasSigned"] is False


def test_disapproval_rules(client, create_sharepoint, headers, outbox):
    record = create_sharepoint()
    sharepoint_id = record["id"]
    _approve(client, sharepoint_id, headers["m1"])

    missing_note = _disapprove(client, sharepoint_id, headers["u2"], note="")
    assert missing_note.status_code == 400

    _sign(client, sharepoint_id, headers["u1"])
    signed_first = _disapprove(client, sharepoint_id, headers["u1"])
    assert signed_first.status_code == 400

    response = _disapprove(client, sharepoint_id, headers["u2"])
    assert response.status_code == 200
    data = response.get_json()["sharePoint"]
    assert data["status"] == "disapproved"
    assert data["hasDisapprovals"] is True
    assert data["disapprovalNote"] == "Figures in table 2 are wrong"
    assert data["usersToSign"][1]["state"] == "disapproved"
    assert _recipients(outbox, "Document Disapproved") == ["creator@example.com"]

    twice = _disapprove(client, sharepoint_id, headers["u2"])
    assert twice.status_code == 400
    assert twice.get_json()["code"] == "ALREADY_DISAPPROVED"


def test_sign_after_disapproval_is_currently_allowed(client, create_sharepoint, headers):
    """Signing does not check a prior disapproval; the record stays disapproved."""

    record = create_sharepoint()
    _approve(client, record["id"], headers["m1"])
    _disapprove(client, record["id"], headers["u2"])

    response = _sign(client, record["id"], headers["u2"])

    assert response.status_code == 200
    data = response.get_json()["sharePoint"]
    assert data["usersToSign"][1]["hasSigned"] is True
    assert data["usersToSign"][1]["hasDisapproved"] is True
    assert data["status"] == "disapproved"


def test_sign_and_disapprove_are_mutually_exclusive_in_normal_flow(
    client, create_sharepoint, headers
):
    record = create_sharepoint()
    _approve(client, record["id"], headers["m1"])
    _sign(client, record["id"], headers["u1"])
    _disapprove(client, record["id"], headers["u1"])
    _disapprove(client, record["id"], headers["u2"])

    signers = _get(client, record["id"], headers["creator"])["usersToSign"]
    assert [(s["hasSigned"], s["hasDisapproved"]) for s in signers] == [
        (True, False),
        (False, True),
    ]


def test_relaunch_after_disapproval_keeps_signatures(client, create_sharepoint, headers, outbox):
    record = create_sharepoint()
    sharepoint_id = record["id"]
    _approve(client, sharepoint_id, headers["m1"])
    _sign(client, sharepoint_id, headers["u1"])
    _disapprove(client, sharepoint_id, headers["u2"], note="wrong version")
    outbox.clear()

    response = client.post(
        f"/api/sharepoints/{sharepoint_id}/relaunch",
        json={"relaunchComment": "Uploaded the right version"},
        headers=headers["creator"],
    )

    assert response.status_code == 200
    data = response.get_json()["sharePoint"]
    assert data["status"] == "pending_approval"
    assert data["managerApproved"] is False
    assert data["approvedBy"] is None
    assert data["approvedAt"] is None
    assert data["disapprovalNote"] is None
    u1, u2 = data["usersToSign"]
    assert u1["hasSigned"] is True and u1["signedAt"] is not None
    assert u2["hasDisapproved"] is False
    assert u2["disapprovedAt"] is None
    assert u2["disapprovalNote"] is None
    # one signature out of two without approval
    assert data["completionPercentage"] == 25

    entry = data["updateHistory"][-1]
    assert entry["action"] == "relaunched"
    assert entry["comment"] == "Uploaded the right version"
    issues = entry["event"]["previous_issues"]
    assert [(i["source"], i["username"], i["reason"]) for i in issues] == [
        ("disapproval", "u2", "wrong version")
    ]
    assert "u2: wrong version" in entry["details"]
    assert _recipients(outbox, "Approval Required") == ["m1@example.com"]


def test_relaunch_after_rejection_collects_rejection_reason(client, create_sharepoint, headers):
    record = create_sharepoint()
    _approve(client, record["id"], headers["m1"], approved=False, note="bad link")

    response = client.post(f"/api/sharepoints/{record['id']}/relaunch", headers=headers["creator"])

    assert response.status_code == 200
    data = response.get_json()["sharePoint"]
    assert data["status"] == "pending_approval"
    issues = data["updateHistory"][-1]["event"]["previous_issues"]
    assert [(i["source"], i["username"], i["reason"]) for i in issues] == [
        ("rejection", "m1", "bad link")
    ]


def test_relaunch_preconditions(client, create_sharepoint, headers):
    record = create_sharepoint()

    wrong_status = client.post(f"/api/sharepoints/{record['id']}/relaunch", headers=headers["creator"])
    assert wrong_status.status_code == 400
    assert wrong_status.get_json()["code"] == "INVALID_STATUS"

    _approve(client, record["id"], headers["m1"], approved=False, note="nope")
    not_creator = client.post(f"/api/sharepoints/{record['id']}/relaunch", headers=headers["m1"])
    assert not_creator.status_code == 403


@pytest.mark.parametrize(
    ("override", "field"),
    [
        ({"title": "  "}, "title"),
        ({"title": "t" * 201}, "title"),
        ({"link": ""}, "link"),
        ({"deadline": None}, "deadline"),
        ({"deadline": "not a date"}, "deadline"),
        ({"managersToApprove": []}, "managersToApprove"),
        ({"usersToSign": []}, "usersToSign"),
        ({"usersToSign": [999999]}, "usersToSign"),
        ({"comment": "c" * 1001}, "comment"),
    ],
)
def test_create_validation_errors(client, users, headers, future_deadline, override, field):
    payload = {
        "title": "Audit report",
        "link": "/docs/audit.pdf",
        "deadline": future_deadline(),
        "managersToApprove": [users["m1"].id],
        "usersToSign": [users["u1"].id],
    }
    payload.update(override)

    response = client.post("/api/sharepoints", json=payload, headers=headers["creator"])

    assert response.status_code == 400
    assert response.get_json()["field"] == field


def test_create_rejects_past_deadline(client, users, headers):
    from backend.app.utils.timestamps import serialize_timestamp, utcnow

    response = client.post(
        "/api/sharepoints",
        json={
            "title": "Late",
            "link": "/docs/late.pdf",
            "deadline": serialize_timestamp(utcnow() - timedelta(hours=1)),
            "managersToApprove": [users["m1"].id],
            "usersToSign": [users["u1"].id],
        },
        headers=headers["creator"],
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "Deadline must be in the future"


def test_create_requires_manager_role_and_unique_signers(client, users, headers, future_deadline):
    payload = {
        "title": "Audit report",
        "link": "/docs/audit.pdf",
        "deadline": future_deadline(),
        "managersToApprove": [users["u1"].id],
        "usersToSign": [users["u2"].id],
    }
    not_manager = client.post("/api/sharepoints", json=payload, headers=headers["creator"])
    assert not_manager.status_code == 400
    assert not_manager.get_json()["field"] == "managersToApprove"

    payload["managersToApprove"] = [users["m1"].id]
    payload["usersToSign"] = [users["u2"].id, users["u2"].license]
    duplicate = client.post("/api/sharepoints", json=payload, headers=headers["creator"])
    assert duplicate.status_code == 400
    assert duplicate.get_json()["field"] == "usersToSign"


def test_users_can_be_referenced_by_license(create_sharepoint, users):
    record = create_sharepoint(
        managersToApprove=[users["m1"].license],
        usersToSign=[users["u1"].license, str(users["u2"].id)],
    )

    assert [m["username"] for m in record["managersToApprove"]] == ["m1"]
    assert [s["user"]["username"] for s in record["usersToSign"]] == ["u1", "u2"]


def test_update_records_previous_values(client, create_sharepoint, headers):
    record = create_sharepoint()

    response = client.put(
        f"/api/sharepoints/{record['id']}",
        json={"title": "Quality handbook v3"},
        headers=headers["creator"],
    )

    assert response.status_code == 200
    data = response.get_json()["sharePoint"]
    assert data["title"] == "Quality handbook v3"
    assert data["version"] > record["version"]
    entry = data["updateHistory"][-1]
    assert entry["action"] == "updated"
    assert entry["event"]["previous_values"] == {"title": "Quality handbook v2"}


def test_update_replaces_signers_with_fresh_entries(client, create_sharepoint, users, headers):
    record = create_sharepoint()
    _approve(client, record["id"], headers["m1"])
    _sign(client, record["id"], headers["u1"])

    response = client.put(
        f"/api/sharepoints/{record['id']}",
        json={"usersToSign": [users["u1"].id, users["outsider"].id]},
        headers=headers["creator"],
    )

    assert response.status_code == 200
    data = response.get_json()["sharePoint"]
    assert [s["user"]["username"] for s in data["usersToSign"]] == ["u1", "outsider"]
    assert all(s["hasSigned"] is False for s in data["usersToSign"])
    assert data["status"] == "pending"
    previous = data["updateHistory"][-1]["event"]["previous_values"]["usersToSign"]
    assert [p["hasSigned"] for p in previous] == [True, False]


def test_update_rejects_manager_changes_and_foreign_actors(client, create_sharepoint, users, headers):
    record = create_sharepoint()
    path = f"/api/sharepoints/{record['id']}"

    managers = client.put(path, json={"managersToApprove": [users["m2"].id]}, headers=headers["creator"])
    assert managers.status_code == 400
    assert managers.get_json()["field"] == "managersToApprove"

    foreign = client.put(path, json={"title": "Hijacked"}, headers=headers["u1"])
    assert foreign.status_code == 403

    by_admin = client.put(path, json={"comment": None}, headers=headers["admin"])
    assert by_admin.status_code == 200
    assert by_admin.get_json()["sharePoint"]["comment"] is None

    empty = client.put(path, json={}, headers=headers["creator"])
    assert empty.status_code == 400


def test_update_rejects_past_deadline_and_unknown_signers(client, create_sharepoint, headers):
    from backend.app.utils.timestamps import serialize_timestamp, utcnow

    record = create_sharepoint()
    path = f"/api/sharepoints/{record['id']}"

    past = client.put(
        path,
        json={"title": "Renamed", "deadline": serialize_timestamp(utcnow() - timedelta(hours=1))},
        headers=headers["creator"],
    )
    assert past.status_code == 400
    assert past.get_json()["field"] == "deadline"

    unknown = client.put(
        path,
        json={"title": "Renamed", "usersToSign": [999999]},
        headers=headers["creator"],
    )
    assert unknown.status_code == 400
    assert unknown.get_json()["field"] == "usersToSign"

    data = _get(client, record["id"], headers["creator"])
    assert data["title"] == "Quality handbook v2"
    assert data["deadline"] == record["deadline"]
    assert [s["user"]["username"] for s in data["usersToSign"]] == ["u1", "u2"]
    assert len(data["updateHistory"]) == len(record["updateHistory"])


def test_delete_is_limited_to_creator_or_admin(client, create_sharepoint, headers):
    first = create_sharepoint()
    second = create_sharepoint(title="Second")

    assert client.delete(f"/api/sharepoints/{first['id']}", headers=headers["u1"]).status_code == 403

    deleted = client.delete(f"/api/sharepoints/{first['id']}", headers=headers["creator"])
    assert deleted.status_code == 200
    assert deleted.get_json() == {"message": "SharePoint deleted successfully"}
    assert client.get(f"/api/sharepoints/{first['id']}", headers=headers["creator"]).status_code == 404

    assert client.delete(f"/api/sharepoints/{second['id']}", headers=headers["admin"]).status_code == 200


def test_missing_record_returns_404(client, headers):
    response = client.get("/api/sharepoints/424242", headers=headers["u1"])

    assert response.status_code == 404
    assert response.get_json()["error"] == "SharePoint not found"


def test_requests_without_token_are_rejected(client, users):
    response = client.get("/api/sharepoints")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_history_is_append_only(client, create_sharepoint, headers):
    record = create_sharepoint()
    snapshots = [record["updateHistory"]]
    _approve(client, record["id"], headers["m1"])
    snapshots.append(_get(client, record["id"], headers["creator"])["updateHistory"])
    _sign(client, record["id"], headers["u1"])
    snapshots.append(_get(client, record["id"], headers["creator"])["updateHistory"])

    for earlier, later in zip(snapshots, snapshots[1:]):
        assert len(later) == len(earlier) + 1
        assert later[: len(earlier)] == earlier
    assert [entry["action"] for entry in snapshots[-1]] == ["created", "approved", "signed"]


def test_list_pagination_and_filters(client, create_sharepoint, users, headers):
    for index in range(3):
        create_sharepoint(title=f"Contract {index}")
    approved = create_sharepoint(title="Budget plan", comment="Finance review")
    _approve(client, approved["id"], headers["m1"])

    page = client.get("/api/sharepoints?limit=2&sortBy=title&sortOrder=asc", headers=headers["u1"])
    assert page.status_code == 200
    body = page.get_json()
    assert [item["title"] for item in body["sharePoints"]] == ["Budget plan", "Contract 0"]
    assert body["pagination"] == {
        "currentPage": 1,
        "totalPages": 2,
        "totalItems": 4,
        "itemsPerPage": 2,
        "hasNextPage": True,
        "hasPrevPage": False,
    }

    by_status = client.get("/api/sharepoints?status=pending", headers=headers["u1"]).get_json()
    assert [item["id"] for item in by_status["sharePoints"]] == [approved["id"]]

    search = client.get("/api/sharepoints?search=FINANCE", headers=headers["u1"]).get_json()
    assert [item["id"] for item in search["sharePoints"]] == [approved["id"]]

    by_creator = client.get(
        f"/api/sharepoints?createdBy={users['creator'].license}", headers=headers["u1"]
    ).get_json()
    assert by_creator["pagination"]["totalItems"] == 4

    capped = client.get("/api/sharepoints?limit=500", headers=headers["u1"]).get_json()
    assert capped["pagination"]["itemsPerPage"] == 100


def test_list_rejects_unknown_sort_and_status(client, headers):
    assert client.get("/api/sharepoints?sortBy=password", headers=headers["u1"]).status_code == 400
    assert client.get("/api/sharepoints?status=archived", headers=headers["u1"]).status_code == 400


def test_personal_views(client, create_sharepoint, users, headers):
    first = create_sharepoint()
    second = create_sharepoint(
        title="Only u2", usersToSign=[users["u2"].id], managersToApprove=[users["m2"].id]
    )

    def ids(path, who):
        response = client.get(path, headers=headers[who])
        assert response.status_code == 200
        return [item["id"] for item in response.get_json()["sharePoints"]]

    assert ids("/api/sharepoints/my-assigned", "u1") == [first["id"]]
    assert sorted(ids("/api/sharepoints/my-assigned", "u2")) == sorted([first["id"], second["id"]])
    assert sorted(ids("/api/sharepoints/my-created", "creator")) == sorted([first["id"], second["id"]])
    assert ids("/api/sharepoints/my-created", "u1") == []
    assert ids("/api/sharepoints/my-approvals", "m1") == [first["id"]]
    assert ids("/api/sharepoints/my-approvals", "m2") == [second["id"]]

    _approve(client, first["id"], headers["m1"])
    assert ids("/api/sharepoints/my-approvals", "m1") == []


def test_can_sign_reports_reason(client, create_sharepoint, users, headers):
    record = create_sharepoint()
    path = f"/api/sharepoints/{record['id']}/can-sign"

    before = client.get(path, headers=headers["u1"]).get_json()
    assert before == {
        "canSign": False,
        "managerApproved": False,
        "isAssignedSigner": True,
        "reason": "Manager approval required before signing",
    }

    _approve(client, record["id"], headers["m1"])
    assert client.get(path, headers=headers["u1"]).get_json()["canSign"] is True

    other = client.get(f"{path}/{users['outsider'].license}", headers=headers["u1"]).get_json()
    assert other["canSign"] is False
    assert other["reason"] == "User not assigned to sign this document"

    unknown = client.get(f"{path}/NO-SUCH-LICENSE", headers=headers["u1"])
    assert unknown.status_code == 404


def test_reads_report_expired_without_persisting_it(client, create_sharepoint, headers, monkeypatch):
    from backend.app.api import sharepoints as sharepoints_api
    from backend.app.models.sharepoint import SharePoint
    from backend.app.utils.timestamps import utcnow

    record = create_sharepoint()
    _approve(client, record["id"], headers["m1"])

    later = utcnow() + timedelta(days=30)
    monkeypatch.setattr(sharepoints_api, "utcnow", lambda: later)

    data = _get(client, record["id"], headers["creator"])
    assert data["status"] == "expired"

    from backend.app.extensions import db

    assert db.session.get(SharePoint, record["id"]).status == "pending"


def test_status_filter_and_sort_use_derived_status(client, create_sharepoint, headers, monkeypatch):
    from backend.app.api import sharepoints as sharepoints_api
    from backend.app.utils.timestamps import utcnow
    from backend.app.workflow import engine

    record = create_sharepoint()
    _approve(client, record["id"], headers["m1"])
    waiting = create_sharepoint(title="Still waiting")

    later = utcnow() + timedelta(days=30)
    monkeypatch.setattr(sharepoints_api, "utcnow", lambda: later)
    monkeypatch.setattr(engine, "utcnow", lambda: later)

    def listed(query):
        response = client.get(f"/api/sharepoints?{query}", headers=headers["creator"])
        assert response.status_code == 200
        return [(item["id"], item["status"]) for item in response.get_json()["sharePoints"]]

    assert listed("status=expired") == [(record["id"], "expired")]
    assert listed("status=pending") == []
    assert listed("status=pending_approval") == [(waiting["id"], "pending_approval")]
    assert listed("sortBy=status&sortOrder=asc") == [
        (record["id"], "expired"),
        (waiting["id"], "pending_approval"),
    ]


def test_concurrent_modification_returns_conflict(client, create_sharepoint, headers, monkeypatch):
    from sqlalchemy.orm import Session
    from sqlalchemy.orm.exc import StaleDataError

    record = create_sharepoint()

    def stale_commit(self):
        raise StaleDataError("version mismatch")

    monkeypatch.setattr(Session, "commit", stale_commit)
    response = _approve(client, record["id"], headers["m1"])
    monkeypatch.undo()

    assert response.status_code == 409
    assert response.get_json()["code"] == "STALE_RECORD"
    assert _get(client, record["id"], headers["creator"])["managerApproved"] is False
