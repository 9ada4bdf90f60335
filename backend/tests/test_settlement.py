import pytest

import models
from conftest import headers_for, make_account, make_expense, make_group


@pytest.fixture
def dinner(db_session, owner, other):
    make_group(db_session, owner, "trip", [("owner_member", "Owner"), ("other_member", "Other"), ("third", "Third")])
    return make_expense(
        db_session, owner, "dinner", "trip", "owner_member",
        [("s1", "owner_member", 10), ("s2", "other_member", 10), ("s3", "third", 10)],
        visible_to=("owner_auth", "other_auth")
    )


def dinner_payload(**overrides):
    payload = {
        "id": "dinner",
        "group_id": "trip",
        "description": "Dinner",
        "date": 1700000000000.0,
        "total_amount": 30,
        "paid_by_member_id": "owner_member",
        "involved_member_ids": ["owner_member", "other_member", "third"],
        "splits": [
            {"id": "s1", "member_id": "owner_member", "amount": 10, "is_settled": False},
            {"id": "s2", "member_id": "other_member", "amount": 10, "is_settled": False},
            {"id": "s3", "member_id": "third", "amount": 10, "is_settled": False}
        ],
        "participant_member_ids": ["owner_member", "other_member", "third"],
        "participants": [
            {"member_id": "owner_member", "name": "Owner"},
            {"member_id": "other_member", "name": "Other"},
            {"member_id": "third", "name": "Third"}
        ]
    }
    payload.update(overrides)
    return payload


def split_states(db_session, expense_id):
    splits = db_session.query(models.ExpenseSplit).filter(
        models.ExpenseSplit.expense_id == expense_id
    ).order_by(models.ExpenseSplit.position).all()
    return {split.id: split.is_settled for split in splits}


def test_participant_settles_own_split(client, dinner, other_headers, db_session):
    response = client.post(
        "/expenses/dinner/settle",
        headers=other_headers,
        json={"member_id": "other_member", "settled": True}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["is_settled"] is False
    assert {s["id"]: s["is_settled"] for s in data["splits"]} == {"s1": False, "s2": True, "s3": False}


def test_expense_is_settled_only_when_every_split_is(client, dinner, owner_headers, db_session):
    for member_id in ("owner_member", "other_member"):
        response = client.post(
            "/expenses/dinner/settle",
            headers=owner_headers,
            json={"member_id": member_id, "settled": True}
        )
        assert response.json()["is_settled"] is False

    response = client.post(
        "/expenses/dinner/settle",
        headers=owner_headers,
        json={"member_id": "THIRD", "settled": True}
    )
    assert response.json()["is_settled"] is True

    response = client.post(
        "/expenses/dinner/settle",
        headers=owner_headers,
        json={"member_id": "third", "settled": False}
    )
    assert response.json()["is_settled"] is False


def test_participant_cannot_settle_another_split(client, dinner, other_headers, db_session):
    response = client.post(
        "/expenses/dinner/settle",
        headers=other_headers,
        json={"member_id": "owner_member", "settled": True}
    )

    assert response.status_code == 403
    assert response.json()["detail"].startswith("Forbidden")
    assert split_states(db_session, "dinner") == {"s1": False, "s2": False, "s3": False}


def test_non_participant_cannot_settle(client, dinner, db_session):
    stranger = make_account(db_session, "stranger_auth", "stranger@test.com", member_id="stranger_member")

    response = client.post(
        "/expenses/dinner/settle",
        headers=headers_for(stranger),
        json={"member_id": "third", "settled": True}
    )
    assert response.status_code == 403


def test_settle_unknown_split_is_not_found(client, dinner, owner_headers):
    response = client.post(
        "/expenses/dinner/settle",
        headers=owner_headers,
        json={"member_id": "nobody", "settled": True}
    )
    assert response.status_code == 404


def test_participant_upsert_may_only_toggle_own_split(client, dinner, other_headers, db_session):
    payload = dinner_payload()
    payload["splits"][1]["is_settled"] = True

    response = client.post("/expenses", headers=other_headers, json=payload)

    assert response.status_code == 200
    assert split_states(db_session, "dinner") == {"s1": False, "s2": True, "s3": False}


def test_participant_structural_edit_is_forbidden_and_not_applied(client, dinner, other_headers, db_session):
    payload = dinner_payload(description="Cheaper dinner")
    payload["splits"][1]["is_settled"] = True

    response = client.post("/expenses", headers=other_headers, json=payload)

    assert response.status_code == 403
    expense = db_session.query(models.Expense).filter(models.Expense.id == "dinner").first()
    assert expense.description == "Dinner"
    assert split_states(db_session, "dinner") == {"s1": False, "s2": False, "s3": False}


def test_participant_cannot_toggle_other_split_by_upsert(client, dinner, other_headers, db_session):
    payload = dinner_payload()
    payload["splits"][2]["is_settled"] = True

    response = client.post("/expenses", headers=other_headers, json=payload)

    assert response.status_code == 403
    assert split_states(db_session, "dinner") == {"s1": False, "s2": False, "s3": False}


def test_client_is_settled_flag_is_ignored(client, dinner, owner_headers, db_session):
    response = client.post("/expenses", headers=owner_headers, json=dinner_payload(is_settled=True))

    assert response.status_code == 200
    assert response.json()["is_settled"] is False


def test_owner_may_change_structure(client, dinner, owner_headers, db_session):
    payload = dinner_payload(description="Late dinner", total_amount=45)
    payload["splits"] = [
        {"id": "s1", "member_id": "owner_member", "amount": 15, "is_settled": True},
        {"id": "s2", "member_id": "other_member", "amount": 15, "is_settled": True},
        {"id": "s3", "member_id": "third", "amount": 15, "is_settled": True}
    ]

    response = client.post("/expenses", headers=owner_headers, json=payload)

    assert response.status_code == 200
    data = response.json()
    assert data["description"] == "Late dinner"
    assert data["total_amount"] == 45
    assert data["is_settled"] is True
