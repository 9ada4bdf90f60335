from main import app
from utils.rate_limiter import RateLimiter, expense_write_rate_limiter, import_rate_limiter


EXPENSE = {
    "id": "dinner",
    "group_id": "missing",
    "description": "Dinner",
    "date": 1700000000000,
    "total_amount": 10,
    "paid_by_member_id": "owner_member",
    "splits": [
        {"id": "s1", "member_id": "owner_member", "amount": 5},
        {"id": "s2", "member_id": "other_member", "amount": 5}
    ],
    "participant_member_ids": ["owner_member", "other_member"]
}


def test_import_rate_limiting(client, owner, owner_headers):
    # Override the rate limiter dependency with a strict one for this test
    test_limiter = RateLimiter(requests_limit=3, time_window=60)
    app.dependency_overrides[import_rate_limiter] = test_limiter

    for i in range(3):
        response = client.post("/import", headers=owner_headers, json={})
        assert response.status_code != 429, f"Request {i+1} was rate limited unexpectedly"

    response = client.post("/import", headers=owner_headers, json={})
    assert response.status_code == 429
    assert response.json()["detail"] == "Too many requests. Please try again later."


def test_expense_write_rate_limiting_is_per_account(client, owner, owner_headers, other, other_headers):
    test_limiter = RateLimiter(requests_limit=2, time_window=60)
    app.dependency_overrides[expense_write_rate_limiter] = test_limiter

    # Writes to a missing group still count against the limit
    for _ in range(2):
        response = client.post("/expenses", headers=owner_headers, json=EXPENSE)
        assert response.status_code == 404

    response = client.post("/expenses", headers=owner_headers, json=EXPENSE)
    assert response.status_code == 429

    response = client.post("/expenses", headers=other_headers, json=EXPENSE)
    assert response.status_code != 429


def test_old_requests_fall_out_of_the_window():
    limiter = RateLimiter(requests_limit=1, time_window=60)
    limiter.client_requests["account:owner_auth"] = [0.0]

    limiter._cleanup(current_time=1000.0)

    assert "account:owner_auth" not in limiter.client_requests
