from __future__ import annotations

import pytest


def _log(client, partner_id: str, amount: float, **extra):
    body = {
        "partnerId": partner_id,
        "smeId": "sme-co",
        "eventType": "lead_generated",
        "revenueAmount": amount,
    }
    body.update(extra)
    resp = client.post("/revenue/attribution", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["event_id"]


def test_attribution_event_defaults_to_full_percentage_and_is_audited(client, fake_db):
    event_id = _log(client, "p1", 500.0)

    stored = fake_db.docs("attributionEvents")[event_id]
    assert stored["attribution_percentage"] == 100.0
    assert stored["settlement_status"] == "pending"
    assert stored["created_by"] == "sme-1"
    (audit,) = fake_db.docs("auditLogs").values()
    assert audit["action"] == "attribution_logged"
    assert audit["resource_id"] == event_id


@pytest.mark.parametrize(
    "override",
    [
        {"eventType": "referral"},
        {"revenueAmount": -1},
        {"attributionPercentage": 150},
        {"partnerId": ""},
    ],
)
def test_invalid_attribution_payloads_are_rejected(client, fake_db, override):
    body = {"partnerId": "p1", "smeId": "s1", "eventType": "lead_generated", "revenueAmount": 10}
    body.update(override)
    assert client.post("/revenue/attribution", json=body).status_code == 400
    assert fake_db.docs("attributionEvents") == {}


def test_partner_users_only_see_their_own_events(client, fake_db, caller):
    _log(client, "p1", 100.0)
    _log(client, "p2", 200.0)

    caller.become("partner-login", role="partner_user", partner_id="p2")
    events = client.get("/revenue/attribution", params={"partner_id": "p1"}).json()["events"]
    assert [e["partner_id"] for e in events] == ["p2"]

    caller.become("unlinked", role="partner_user")
    assert client.get("/revenue/attribution").json()["events"] == []

    caller.become("admin-1", role="platform_admin")
    assert len(client.get("/revenue/attribution").json()["events"]) == 2
    assert len(client.get("/revenue/attribution", params={"limit": 1}).json()["events"]) == 1


def test_settlement_requires_platform_admin(client):
    resp = client.post("/revenue/settlement", json={"startDate": "2020-01-01T00:00:00Z", "endDate": "2100-01-01T00:00:00Z"})
    assert resp.status_code == 403


def test_settlement_run_settles_events_and_notifies_partners(client, fake_db, caller):
    fake_db.put("users/p1", {"email": "partner1@example.com"})
    e1 = _log(client, "p1", 1000.0)
    e2 = _log(client, "p1", 400.0, attributionPercentage=50)
    e3 = _log(client, "p2", 300.0, eventType="service_delivered")

    caller.become("admin-1", role="platform_admin")
    resp = client.post(
        "/revenue/settlement",
        json={"startDate": "2020-01-01T00:00:00Z", "endDate": "2100-01-01T00:00:00Z", "platformFeePercentage": 20},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["total_events"] == 3

    by_partner = {s["partner_id"]: s for s in body["settlements"]}
    assert by_partner["p1"]["gross_revenue"] == pytest.approx(1200.0)
    assert by_partner["p1"]["platform_fee_amount"] == pytest.approx(240.0)
    assert by_partner["p1"]["net_revenue"] == pytest.approx(960.0)

    events = fake_db.docs("attributionEvents")
    assert events[e1]["settlement_id"] == events[e2]["settlement_id"] == by_partner["p1"]["settlement_id"]
    assert events[e3]["settlement_id"] == by_partner["p2"]["settlement_id"]
    assert all(e["settlement_status"] == "settled" for e in events.values())

    # Only p1 has a profile with an email address.
    (email,) = fake_db.docs("emailQueue").values()
    assert email["to"] == ["partner1@example.com"]
    assert "settlement_calculated" in [a["action"] for a in fake_db.docs("auditLogs").values()]

    again = client.post("/revenue/settlement", json={"startDate": "2020-01-01T00:00:00Z", "endDate": "2100-01-01T00:00:00Z"})
    assert again.json()["settlements"] == []


def test_settlement_rejects_inverted_period(client, caller):
    caller.become("admin-1", role="platform_admin")
    resp = client.post("/revenue/settlement", json={"startDate": "2025-02-01T00:00:00Z", "endDate": "2025-01-01T00:00:00Z"})
    assert resp.status_code == 400


def test_settlements_listing_is_scoped_for_partners(client, fake_db, caller):
    _log(client, "p1", 100.0)
    _log(client, "p2", 100.0)
    caller.become("admin-1", role="platform_admin")
    client.post("/revenue/settlement", json={"startDate": "2020-01-01T00:00:00Z", "endDate": "2100-01-01T00:00:00Z"})

    assert len(client.get("/revenue/settlements").json()["settlements"]) == 2

    fake_db.put("users/partner-login", {"partner_id": "p1"})
    caller.become("partner-login", role="partner_user")
    rows = client.get("/revenue/settlements").json()["settlements"]
    assert [r["partner_id"] for r in rows] == ["p1"]

    caller.become("sme-1")
    assert client.get("/revenue/settlements").status_code == 403


def test_dashboard_splits_own_revenue_by_status_and_type(client, fake_db, caller):
    _log(client, "p1", 1000.0)
    _log(client, "p2", 999.0)
    caller.become("admin-1", role="platform_admin")
    client.post("/revenue/settlement", json={"startDate": "2020-01-01T00:00:00Z", "endDate": "2100-01-01T00:00:00Z"})

    caller.become("sme-1")
    _log(client, "p1", 400.0, attributionPercentage=50, eventType="service_delivered")

    caller.become("partner-login", role="partner_user", partner_id="p1")
    resp = client.get("/revenue/dashboard", params={"period": "year"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["partner_id"] == "p1"
    assert body["period"] == "year"
    assert body["total_revenue"] == pytest.approx(1200.0)
    assert body["settled_revenue"] == pytest.approx(1000.0)
    assert body["pending_revenue"] == pytest.approx(200.0)
    assert body["revenue_by_type"]["lead_generated"] == pytest.approx(1000.0)
    assert body["revenue_by_type"]["service_delivered"] == pytest.approx(200.0)
    assert len(body["events"]) == 2
    assert [s["partner_id"] for s in body["settlements"]] == ["p1"]


def test_dashboard_requires_a_partner(client, caller):
    caller.become("unlinked", role="partner_user")
    assert client.get("/revenue/dashboard").status_code == 400

    caller.become("admin-1", role="platform_admin")
    assert client.get("/revenue/dashboard").status_code == 400
    assert client.get("/revenue/dashboard", params={"partner_id": "p9"}).json()["total_revenue"] == 0.0
    assert client.get("/revenue/dashboard", params={"period": "decade", "partner_id": "p9"}).status_code == 400
