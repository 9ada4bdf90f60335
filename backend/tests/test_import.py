import models
from conftest import make_account, make_friend, visibility_rows


def friend_rows(db_session, account_email):
    return db_session.query(models.AccountFriend).filter(
        models.AccountFriend.account_email == account_email
    ).order_by(models.AccountFriend.id).all()


def import_payload(**overrides):
    payload = {
        "friends": [
            {"member_id": "Friend_A", "name": "Alice", "profile_avatar_color": "#111111"}
        ],
        "groups": [
            {
                "id": "trip",
                "name": "Trip",
                "members": [
                    {"id": "owner_member", "name": "Me", "is_current_user": True},
                    {"id": "FRIEND_A", "name": "Alice"}
                ]
            }
        ],
        "expenses": [
            {
                "id": "dinner",
                "group_id": "trip",
                "description": "Dinner",
                "date": 1700000000000,
                "total_amount": 40,
                "paid_by_member_id": "owner_member",
                "involved_member_ids": ["owner_member", "friend_a"],
                "splits": [
                    {"id": "s1", "member_id": "owner_member", "amount": 20, "is_settled": True},
                    {"id": "s2", "member_id": "Friend_A", "amount": 20, "is_settled": False}
                ],
                "is_settled": True,
                "participant_member_ids": ["owner_member", "friend_a"],
                "participants": [
                    {"member_id": "owner_member", "name": "Me"},
                    {"member_id": "friend_a", "name": "Alice", "linked_account_email": "forged@test.com"}
                ],
                "participant_emails": ["forged@test.com"]
            }
        ]
    }
    payload.update(overrides)
    return payload


def test_import_creates_normalized_entities(client, owner, owner_headers, db_session):
    response = client.post("/import", headers=owner_headers, json=import_payload())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["friendsCreated"] == 1
    assert data["groupsUpserted"] == 1
    assert data["expensesUpserted"] == 1
    assert data["errors"] == []

    assert [f.member_id for f in friend_rows(db_session, "owner@test.com")] == ["friend_a"]

    members = client.get("/groups/trip", headers=owner_headers).json()["members"]
    assert [m["id"] for m in members] == ["owner_member", "friend_a"]

    expense = db_session.query(models.Expense).filter(models.Expense.id == "dinner").first()
    assert expense.participant_member_ids == ["owner_member", "friend_a"]
    # Client-supplied emails and settlement flags are never trusted
    assert expense.participant_emails == ["owner@test.com"]
    assert expense.is_settled is False
    assert visibility_rows(db_session, "dinner") == ["owner_auth"]


def test_import_is_idempotent(client, owner, owner_headers, db_session):
    client.post("/import", headers=owner_headers, json=import_payload())
    response = client.post("/import", headers=owner_headers, json=import_payload())

    data = response.json()
    assert data["friendsCreated"] == 0
    assert data["friendsSkipped"] == 1
    assert len(friend_rows(db_session, "owner@test.com")) == 1
    assert db_session.query(models.Group).count() == 1
    assert db_session.query(models.Expense).count() == 1
    assert db_session.query(models.ExpenseSplit).count() == 2
    assert db_session.query(models.GroupMember).count() == 2


def test_import_alias_hit_reuses_canonical_friend(client, owner, owner_headers, db_session):
    make_friend(db_session, "owner@test.com", "canon_friend", "Alice")
    db_session.add(models.MemberAlias(
        account_email="owner@test.com",
        alias_member_id="friend_a",
        canonical_member_id="canon_friend"
    ))
    db_session.commit()

    response = client.post("/import", headers=owner_headers, json=import_payload())

    data = response.json()
    assert data["friendsCreated"] == 0
    assert data["friendsSkipped"] == 1
    assert [f.member_id for f in friend_rows(db_session, "owner@test.com")] == ["canon_friend"]

    members = client.get("/groups/trip", headers=owner_headers).json()["members"]
    assert [m["id"] for m in members] == ["owner_member", "canon_friend"]

    expense = db_session.query(models.Expense).filter(models.Expense.id == "dinner").first()
    assert expense.participant_member_ids == ["owner_member", "canon_friend"]
    splits = db_session.query(models.ExpenseSplit).filter(models.ExpenseSplit.expense_id == "dinner").all()
    assert sorted(split.member_id for split in splits) == ["canon_friend", "owner_member"]


def test_import_never_merges_by_name(client, owner, owner_headers, db_session):
    make_friend(db_session, "owner@test.com", "existing_alice", "Alice")

    response = client.post("/import", headers=owner_headers, json=import_payload(groups=[], expenses=[]))

    assert response.json()["friendsCreated"] == 1
    assert sorted(f.member_id for f in friend_rows(db_session, "owner@test.com")) == ["existing_alice", "friend_a"]


def test_invalid_records_are_reported_and_skipped(client, owner, owner_headers, db_session):
    payload = import_payload(friends=[
        {"member_id": "", "name": "No Id"},
        {"member_id": "bad_email", "name": "Bad", "linked_account_email": "not-an-email"},
        {"member_id": "Friend_A", "name": "Alice"}
    ])
    response = client.post("/import", headers=owner_headers, json=payload)

    data = response.json()
    assert data["success"] is False
    assert data["friendsCreated"] == 1
    assert data["expensesUpserted"] == 1
    assert len(data["errors"]) == 2
    assert data["errors"][0].startswith("friends[0]")
    assert data["errors"][1].startswith("friends[1]")


def test_import_strips_links_to_unknown_accounts(client, owner, owner_headers, db_session):
    payload = import_payload(friends=[
        {"member_id": "ghost", "name": "Ghost", "has_linked_account": True, "linked_account_email": "ghost@test.com"}
    ], groups=[], expenses=[])
    client.post("/import", headers=owner_headers, json=payload)

    ghost = friend_rows(db_session, "owner@test.com")[0]
    assert ghost.has_linked_account is False
    assert ghost.linked_account_email is None


def test_import_link_to_real_account_grants_visibility(client, owner, owner_headers, db_session):
    make_account(db_session, "alice_auth", "alice@test.com", member_id="alice_member")
    payload = import_payload(friends=[
        {"member_id": "friend_a", "name": "Alice", "linked_account_email": "alice@test.com"}
    ])
    client.post("/import", headers=owner_headers, json=payload)

    alice = friend_rows(db_session, "owner@test.com")[0]
    assert alice.has_linked_account is True
    assert alice.linked_member_id == "alice_member"

    expense = db_session.query(models.Expense).filter(models.Expense.id == "dinner").first()
    assert expense.participant_member_ids == ["owner_member", "alice_member"]
    assert expense.participant_emails == ["alice@test.com", "owner@test.com"]
    assert visibility_rows(db_session, "dinner") == ["alice_auth", "owner_auth"]


def test_import_cannot_overwrite_another_accounts_group(client, owner, owner_headers, other, other_headers, db_session):
    client.post("/import", headers=owner_headers, json=import_payload(expenses=[]))

    response = client.post("/import", headers=other_headers, json=import_payload(friends=[]))

    data = response.json()
    assert data["groupsUpserted"] == 0
    assert data["expensesUpserted"] == 0
    assert len(data["errors"]) == 2
    group = db_session.query(models.Group).filter(models.Group.id == "trip").first()
    assert group.owner_account_id == "owner_auth"


def test_forged_account_email_is_soft_denied(client, owner, owner_headers, other, db_session):
    response = client.post(
        "/import",
        headers=owner_headers,
        json=import_payload(accountEmail="other@test.com")
    )
    assert response.status_code == 200
    assert response.json() == {"success": False}
    assert db_session.query(models.Group).count() == 0
    assert friend_rows(db_session, "other@test.com") == []


def test_expense_with_duplicate_split_ids_is_skipped(client, owner, owner_headers, db_session):
    good = import_payload()["expenses"][0]
    bad = dict(good, id="bad", splits=[
        {"id": "s1", "member_id": "owner_member", "amount": 20},
        {"id": "s1", "member_id": "friend_a", "amount": 20}
    ])
    response = client.post("/import", headers=owner_headers, json=import_payload(expenses=[bad, good]))

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["expensesUpserted"] == 1
    assert len(data["errors"]) == 1
    assert data["errors"][0].startswith("expenses[0]")
    assert db_session.query(models.Expense).filter(models.Expense.id == "bad").first() is None
    assert db_session.query(models.Expense).filter(models.Expense.id == "dinner").first() is not None


def test_direct_group_must_be_two_person(client, owner, owner_headers, db_session):
    payload = import_payload(groups=[
        {
            "id": "not_direct",
            "name": "Three of us",
            "is_direct": True,
            "members": [
                {"id": "owner_member", "name": "Me"},
                {"id": "friend_a", "name": "Alice"},
                {"id": "friend_b", "name": "Bob"}
            ]
        },
        {
            "id": "direct",
            "name": "Alice",
            "is_direct": True,
            "members": [{"id": "owner_member", "name": "Me"}, {"id": "friend_a", "name": "Alice"}]
        }
    ], expenses=[])
    response = client.post("/import", headers=owner_headers, json=payload)

    data = response.json()
    assert data["groupsUpserted"] == 1
    assert data["errors"] == ["groups[0]: A direct group must have exactly two members"]
    assert db_session.query(models.Group).filter(models.Group.id == "not_direct").first() is None
    assert db_session.query(models.Group).filter(models.Group.id == "direct").first().is_direct is True
