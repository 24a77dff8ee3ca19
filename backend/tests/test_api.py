from fastapi import FastAPI
from fastapi.testclient import TestClient

from factories import make_card, perk_by_slug
from perkcycle.api import cards, deps, notifications, perks
from perkcycle.services.coordinator import OptimisticUpdateCoordinator

HEADERS = {"X-User-Id": "alpha"}

PERKS = [
    {"slug": "dining", "name": "Dining Credit", "value": 50, "period_months": 1},
    {"slug": "shopping", "name": "Shopping Credit", "value": 100, "period_months": 6},
]


def _build_test_client(session_factory):
    app = FastAPI()
    app.include_router(cards.router, prefix="/api")
    app.include_router(perks.router, prefix="/api")
    app.include_router(notifications.router, prefix="/api")
    app.state.coordinator = OptimisticUpdateCoordinator()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    return TestClient(app)


def _client_with_card(session_factory):
    db = session_factory()
    card = make_card(db, perks=PERKS)
    card_id = card.id
    perk_ids = {slug: perk_by_slug(card, slug).id for slug in ("dining", "shopping")}
    db.close()

    client = _build_test_client(session_factory)
    response = client.post("/api/cards/my", json={"card_product_id": card_id}, headers=HEADERS)
    assert response.status_code == 201
    return client, response.json()["id"], perk_ids


def test_missing_user_header_is_unauthorized(session_factory):
    client = _build_test_client(session_factory)

    assert client.get("/api/perks/status").status_code == 401


def test_available_cards_lists_perks(session_factory):
    client, _, _ = _client_with_card(session_factory)

    response = client.get("/api/cards/available")

    assert response.status_code == 200
    assert [p["slug"] for p in response.json()[0]["perks"]] == ["dining", "shopping"]


def test_status_lists_enrolled_perks(session_factory):
    client, enrollment_id, _ = _client_with_card(session_factory)

    response = client.get("/api/perks/status", headers=HEADERS)

    assert response.status_code == 200
    views = {v["name"]: v for v in response.json()}
    assert views["Dining Credit"]["status"] == "available"
    assert views["Dining Credit"]["card_enrollment_id"] == enrollment_id
    assert views["Dining Credit"]["streak_visible"] is True
    assert views["Shopping Credit"]["streak_visible"] is False


def test_redeem_top_up_and_undo(session_factory):
    client, _, perk_ids = _client_with_card(session_factory)
    dining = perk_ids["dining"]

    partial = client.post(f"/api/perks/{dining}/redeem", json={"amount": 20}, headers=HEADERS)
    assert partial.status_code == 200
    assert partial.json()["view"]["status"] == "partially_redeemed"
    assert partial.json()["view"]["remaining_value"] == 30

    full = client.post(f"/api/perks/{dining}/redeem", json={"amount": 30}, headers=HEADERS)
    body = full.json()
    assert body["view"]["status"] == "redeemed"
    assert body["undo_token"]
    assert body["undo_expires_at"]

    history = client.get(f"/api/perks/{dining}/history", headers=HEADERS).json()
    assert len(history) == 1
    assert history[0]["value_redeemed"] == 50

    undone = client.post(f"/api/perks/undo/{body['undo_token']}", headers=HEADERS)
    assert undone.status_code == 200
    assert undone.json()["view"]["status"] == "available"
    assert client.get(f"/api/perks/{dining}/history", headers=HEADERS).json() == []


def test_redeem_errors_map_to_http_status(session_factory):
    client, _, perk_ids = _client_with_card(session_factory)
    dining = perk_ids["dining"]

    assert client.post(f"/api/perks/{dining}/redeem", json={}, headers=HEADERS).status_code == 200

    again = client.post(f"/api/perks/{dining}/redeem", json={}, headers=HEADERS)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "already_redeemed"

    assert client.post(f"/api/perks/{dining}/redeem", json={"amount": 0}, headers=HEADERS).status_code == 422
    assert client.post("/api/perks/missing/redeem", json={}, headers=HEADERS).status_code == 404

    parent = client.post(
        f"/api/perks/{perk_ids['shopping']}/redeem",
        json={"amount": 10, "parent_record_id": "missing"},
        headers=HEADERS,
    )
    assert parent.status_code == 404
    assert parent.json()["detail"]["code"] == "parent_not_found"


def test_unknown_undo_token_is_gone(session_factory):
    client, _, _ = _client_with_card(session_factory)

    response = client.post("/api/perks/undo/not-a-token", headers=HEADERS)

    assert response.status_code == 410
    assert response.json()["detail"]["code"] == "undo_expired"


def test_mark_available(session_factory):
    client, _, perk_ids = _client_with_card(session_factory)
    dining = perk_ids["dining"]
    client.post(f"/api/perks/{dining}/redeem", json={}, headers=HEADERS)

    response = client.post(f"/api/perks/{dining}/mark-available", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["view"]["status"] == "available"
    assert client.get(f"/api/perks/{dining}/status", headers=HEADERS).json()["status"] == "available"


def test_aggregates_and_savings(session_factory):
    client, enrollment_id, perk_ids = _client_with_card(session_factory)
    client.post(f"/api/perks/{perk_ids['dining']}/redeem", json={}, headers=HEADERS)

    by_period = client.get("/api/perks/aggregates", headers=HEADERS).json()
    assert by_period["1"]["redeemed_value"] == 50
    assert by_period["6"]["possible_value"] == 100

    by_card = client.get("/api/perks/aggregates?group_by=card", headers=HEADERS).json()
    assert by_card[enrollment_id]["possible_value"] == 150

    assert client.get("/api/perks/aggregates?group_by=issuer", headers=HEADERS).status_code == 400

    savings = client.get("/api/perks/savings", headers=HEADERS).json()
    assert savings == {"per_card": {enrollment_id: 50}, "total": 50}


def test_insights_report_values_and_card_roi(session_factory):
    client, enrollment_id, perk_ids = _client_with_card(session_factory)
    client.post(f"/api/perks/{perk_ids['dining']}/redeem", json={}, headers=HEADERS)

    insights = client.get("/api/perks/insights", headers=HEADERS).json()

    assert insights["values"]["redeemed_value"] == 50
    assert insights["values"]["available_value"] == 100
    # A card added today has no closed cycle to miss
    assert insights["values"]["missed_value"] == 0
    [roi] = insights["card_roi"]
    assert roi["card_enrollment_id"] == enrollment_id
    assert roi["total_redeemed"] == 50
    assert roi["roi_percentage"] == 20

    last_year = client.get(f"/api/perks/insights?year={insights['year'] - 1}", headers=HEADERS).json()
    assert last_year["card_roi"][0]["total_redeemed"] == 0


def test_removed_card_keeps_history_and_can_return(session_factory):
    client, enrollment_id, perk_ids = _client_with_card(session_factory)
    client.post(f"/api/perks/{perk_ids['dining']}/redeem", json={}, headers=HEADERS)

    assert client.delete(f"/api/cards/my/{enrollment_id}", headers=HEADERS).status_code == 204
    assert client.get("/api/cards/my", headers=HEADERS).json() == []
    assert client.get("/api/perks/status", headers=HEADERS).json() == []
    assert client.get("/api/perks/savings", headers=HEADERS).json()["total"] == 50

    available = client.get("/api/cards/available").json()
    again = client.post("/api/cards/my", json={"card_product_id": available[0]["id"]}, headers=HEADERS)
    assert again.status_code == 201
    assert again.json()["id"] == enrollment_id


def test_enroll_rejects_bad_anniversary(session_factory):
    client, _, _ = _client_with_card(session_factory)
    available = client.get("/api/cards/available").json()

    response = client.post(
        "/api/cards/my",
        json={"card_product_id": available[0]["id"], "anniversary": "09/10"},
        headers={"X-User-Id": "beta"},
    )

    assert response.status_code == 422


def test_auto_redemption_toggle_and_apply(session_factory):
    client, enrollment_id, perk_ids = _client_with_card(session_factory)
    dining = perk_ids["dining"]

    toggled = client.put(
        f"/api/cards/my/{enrollment_id}/auto-redemptions/{dining}",
        json={"enabled": True},
        headers=HEADERS,
    )
    assert toggled.status_code == 200
    assert toggled.json()["enabled"] is True

    first = client.post("/api/cards/my/auto-redemptions/apply", headers=HEADERS).json()
    second = client.post("/api/cards/my/auto-redemptions/apply", headers=HEADERS).json()

    assert first == {"applied": 1, "skipped": 0, "failed": 0}
    assert second == {"applied": 0, "skipped": 1, "failed": 0}
    history = client.get(f"/api/perks/{dining}/history", headers=HEADERS).json()
    assert history[0]["is_auto_redemption"] is True


def test_reminder_preferences_round_trip(session_factory):
    client = _build_test_client(session_factory)

    saved = client.put(
        "/api/notifications/preferences",
        json={"monthly_enabled": False, "annual_days": [45, 15]},
        headers=HEADERS,
    )
    assert saved.status_code == 200

    loaded = client.get("/api/notifications/preferences", headers=HEADERS).json()
    assert loaded["monthly_enabled"] is False
    assert loaded["annual_days"] == [15, 45]

    invalid = client.put("/api/notifications/preferences", json={"monthly_days": [0]}, headers=HEADERS)
    assert invalid.status_code == 422


def test_reminder_sync_replaces_pending_rows(session_factory):
    client, _, _ = _client_with_card(session_factory)

    preview = client.get("/api/notifications/reminders", headers=HEADERS).json()
    first = client.post("/api/notifications/reminders/sync", headers=HEADERS).json()
    second = client.post("/api/notifications/reminders/sync", headers=HEADERS).json()

    assert first["queued"] == len(preview)
    assert first["replaced"] == 0
    assert second["replaced"] == first["queued"]
