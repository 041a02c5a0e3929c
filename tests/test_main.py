from unittest.mock import MagicMock, AsyncMock
from main import app
from utils import verify_customer
from fakes import posts_chain, bids_chain, lookup_chain, update_chain, respond

CUSTOMER_ID = "7c0a6a3e-5a1e-4bb0-9a37-6d1f3c7b2f10"

# --- Auth Tests ---

def test_view_requests_requires_authorization(client):
    response = client.post("/api/funcs/tracking.viewRequests", json={})

    assert response.status_code == 401
    assert response.json()["detail"]["redirect"] == "/auth/sign-in"

def test_view_requests_invalid_token(client, mock_supabase):
    mock_supabase.auth.get_user = AsyncMock(return_value=MagicMock(user=None))

    response = client.post("/api/funcs/tracking.viewRequests", json={}, headers={"Authorization": "Bearer bad"})

    assert response.status_code == 401
    assert response.json()["detail"]["message"] == "Invalid Token"

def test_view_requests_auth_provider_error(client, mock_supabase):
    mock_supabase.auth.get_user = AsyncMock(side_effect=RuntimeError("jwt expired"))

    response = client.post("/api/funcs/tracking.viewRequests", json={}, headers={"Authorization": "Bearer old"})

    assert response.status_code == 401
    assert response.json()["detail"]["message"] == "Authentication Failed"

def test_verify_customer_passes_token(client, mock_supabase, tables):
    auth_user = MagicMock()
    auth_user.user.id = CUSTOMER_ID
    mock_supabase.auth.get_user = AsyncMock(return_value=auth_user)

    response = client.post("/api/funcs/tracking.viewRequests", json={}, headers={"Authorization": "Bearer token_123"})

    assert response.status_code == 200
    mock_supabase.auth.get_user.assert_awaited_with("token_123")
    tables["repair_board_posts"].select.return_value.eq.assert_called_with("user_id", CUSTOMER_ID)

# --- Tracking Function Tests ---

def test_view_requests(client, tables):
    respond(posts_chain(tables["repair_board_posts"]), [
        {"id": "r1", "user_id": CUSTOMER_ID, "service_subcategory": "Brake Repair", "status": "ACTIVE",
         "created_at": "2024-05-01T10:00:00+00:00", "user_budget": 120, "date_time_preference": "FLEXIBLE"},
    ])
    respond(posts_chain(tables["towing_board_posts"]), [
        {"id": "t1", "user_id": CUSTOMER_ID, "status": "COMPLETED", "created_at": "2024-05-02T10:00:00+00:00"},
    ])
    respond(bids_chain(tables["technician_bids"]), [
        {"id": 1, "post_id": "r1", "status": "PENDING", "bid_amount": 110},
        {"id": 2, "post_id": "r1", "status": "ACCEPTED", "technician_name": "Jane", "bid_amount": 150},
    ])

    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.viewRequests", json={})

    assert response.status_code == 200
    res_json = response.json()
    assert res_json["tab"] == "active"
    assert res_json["counts"] == {"active": 1, "progress": 0, "completed": 1}
    assert [t["key"] for t in res_json["tabs"]] == ["active", "progress", "completed"]
    assert res_json["empty_state"] is None

    [card] = res_json["requests"]
    assert card["id"] == "r1"
    assert card["status_label"] == "Active"
    assert card["timing_description"] == "Flexible scheduling"
    assert card["cancellable"] is True
    assert card["refund_preview"] == 115.0
    assert card["bid_stats"] == {"total": 2, "pending": 1, "accepted": {"technician_name": "Jane", "amount": 150.0}}

def test_view_requests_focus_switches_tab(client, tables):
    respond(posts_chain(tables["towing_board_posts"]), [
        {"id": "t1", "user_id": CUSTOMER_ID, "status": "EN_ROUTE", "created_at": "2024-05-02T10:00:00+00:00"},
    ])

    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.viewRequests", json={"tab": "completed", "focus": "t1"})

    assert response.status_code == 200
    res_json = response.json()
    assert res_json["tab"] == "progress"
    assert res_json["requests"][0]["status_label"] == "Technician en route"
    assert res_json["requests"][0]["cancellable"] is False

def test_view_requests_empty_tab(client):
    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.viewRequests", json={"tab": "completed"})

    assert response.status_code == 200
    assert response.json()["requests"] == []
    assert response.json()["empty_state"]["title"] == "No completed jobs yet"

def test_view_requests_primary_failure(client, tables):
    respond(posts_chain(tables["repair_board_posts"]), error=RuntimeError("connection reset"))

    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.viewRequests", json={})

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["message"] == "Unable to load your requests right now."
    assert detail["action"]["href"] == "/dashboard"

def test_view_requests_towing_failure_degrades(client, tables):
    respond(posts_chain(tables["repair_board_posts"]), [
        {"id": "r1", "user_id": CUSTOMER_ID, "status": "ACTIVE", "created_at": "2024-05-01T10:00:00Z"},
    ])
    respond(posts_chain(tables["towing_board_posts"]), error=RuntimeError("relation does not exist"))

    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.viewRequests", json={})

    assert response.status_code == 200
    assert [r["id"] for r in response.json()["requests"]] == ["r1"]

def test_cancellation_quote(client, tables):
    respond(lookup_chain(tables["towing_board_posts"]), [
        {"id": "t1", "user_id": CUSTOMER_ID, "status": "ACTIVE", "maximum_bid": 3},
    ])

    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.cancellationQuote", json={"source": "towing", "request_id": "t1"})

    assert response.status_code == 200
    assert response.json() == {
        "request_id": "t1",
        "source": "towing",
        "budget": 3.0,
        "cancellation_fee": 5.0,
        "refund_amount": 0.0,
    }
    tables["towing_board_posts"].update.assert_not_called()

def test_cancel_request(client, tables):
    repair_table = tables["repair_board_posts"]
    respond(lookup_chain(repair_table), [
        {"id": "r1", "user_id": CUSTOMER_ID, "status": "ACTIVE", "user_budget": 120},
    ])
    respond(update_chain(repair_table), [{"id": "r1", "status": "CANCELLED"}])

    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.cancelRequest", json={"source": "repair", "request_id": "r1"})

    assert response.status_code == 200
    res_json = response.json()
    assert res_json["message"] == "Request cancelled successfully"
    assert res_json["cancellation"]["refund_amount"] == 115.0
    assert res_json["cancellation"]["cancelled_by"] == CUSTOMER_ID

    # Ownership check, then the write
    repair_table.select.return_value.eq.assert_called_with("id", "r1")
    repair_table.select.return_value.eq.return_value.eq.assert_called_with("user_id", CUSTOMER_ID)
    patch = repair_table.update.call_args.args[0]
    assert patch["status"] == "CANCELLED"
    assert patch["cancellation_fee"] == 5.0
    assert patch["refund_amount"] == 115.0
    repair_table.update.return_value.eq.assert_called_with("id", "r1")

def test_cancel_request_not_found(client, tables):
    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.cancelRequest", json={"source": "repair", "request_id": "nope"})

    assert response.status_code == 404
    tables["repair_board_posts"].update.assert_not_called()

def test_cancel_request_not_active(client, tables):
    respond(lookup_chain(tables["repair_board_posts"]), [
        {"id": "r1", "user_id": CUSTOMER_ID, "status": "ASSIGNED", "user_budget": 120},
    ])

    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.cancelRequest", json={"source": "repair", "request_id": "r1"})

    assert response.status_code == 409
    tables["repair_board_posts"].update.assert_not_called()

def test_cancel_request_write_failure(client, tables):
    repair_table = tables["repair_board_posts"]
    respond(lookup_chain(repair_table), [{"id": "r1", "user_id": CUSTOMER_ID, "status": "ACTIVE"}])
    respond(update_chain(repair_table), error=RuntimeError("new row violates row-level security policy"))

    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.cancelRequest", json={"source": "repair", "request_id": "r1"})

    assert response.status_code == 500
    assert response.json()["detail"] == "new row violates row-level security policy"

def test_cancel_request_rejects_unknown_source(client):
    app.dependency_overrides[verify_customer] = lambda: CUSTOMER_ID
    response = client.post("/api/funcs/tracking.cancelRequest", json={"source": "locksmith", "request_id": "r1"})

    assert response.status_code == 422
