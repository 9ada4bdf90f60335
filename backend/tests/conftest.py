import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from main import app
from database import Base, get_db
import models
from auth import create_access_token

# Import rate limiters to override them
from utils.rate_limiter import import_rate_limiter, expense_write_rate_limiter

# Setup in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def client(db_session):
    """Create a FastAPI TestClient with overridden database dependency."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_db, None)


def make_account(db_session, account_id, email, member_id=None, alias_member_ids=None):
    account = models.Account(
        id=account_id,
        email=email,
        display_name=email.split("@")[0].title(),
        member_id=member_id,
        alias_member_ids=alias_member_ids or []
    )
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


def headers_for(account):
    access_token = create_access_token(data={"sub": account.email})
    return {"Authorization": f"Bearer {access_token}"}


def make_friend(db_session, account_email, member_id, name, linked_account=None):
    friend = models.AccountFriend(
        account_email=account_email,
        member_id=member_id,
        name=name,
        profile_avatar_color="#123456",
        has_linked_account=linked_account is not None,
        linked_account_id=linked_account.id if linked_account else None,
        linked_account_email=linked_account.email if linked_account else None,
        linked_member_id=linked_account.member_id if linked_account else None,
        status="friend" if linked_account else "manual"
    )
    db_session.add(friend)
    db_session.commit()
    return friend


def make_group(db_session, owner, group_id, members, is_direct=False):
    """members is a list of (member_id, name) pairs."""
    group = models.Group(
        id=group_id,
        name=group_id.replace("_", " ").title(),
        is_direct=is_direct,
        owner_account_id=owner.id,
        owner_email=owner.email
    )
    db_session.add(group)
    db_session.flush()
    for position, (member_id, name) in enumerate(members):
        db_session.add(models.GroupMember(
            group_id=group_id,
            member_id=member_id,
            name=name,
            is_current_user=member_id == owner.member_id,
            position=position
        ))
    db_session.commit()
    return group


def make_expense(db_session, owner, expense_id, group_id, payer, shares, visible_to=(), participant_emails=None):
    """shares is a list of (split_id, member_id, amount) tuples."""
    member_ids = [member_id for _, member_id, _ in shares]
    expense = models.Expense(
        id=expense_id,
        group_id=group_id,
        description=expense_id.replace("_", " ").title(),
        date=1700000000000.0,
        total_amount=sum(amount for _, _, amount in shares),
        paid_by_member_id=payer,
        involved_member_ids=list(member_ids),
        participant_member_ids=list(member_ids),
        participants=[{"member_id": member_id, "name": member_id} for member_id in member_ids],
        participant_emails=participant_emails or [owner.email],
        is_settled=False,
        owner_account_id=owner.id,
        owner_email=owner.email
    )
    db_session.add(expense)
    for position, (split_id, member_id, amount) in enumerate(shares):
        db_session.add(models.ExpenseSplit(
            expense_id=expense_id,
            id=split_id,
            member_id=member_id,
            amount=amount,
            is_settled=False,
            position=position
        ))
    for user_id in visible_to:
        db_session.add(models.UserExpense(user_id=user_id, expense_id=expense_id))
    db_session.commit()
    return expense


def visibility_rows(db_session, expense_id):
    rows = db_session.query(models.UserExpense).filter(
        models.UserExpense.expense_id == expense_id
    ).all()
    return sorted(row.user_id for row in rows)


@pytest.fixture
def owner(db_session):
    return make_account(db_session, "owner_auth", "owner@test.com", member_id="owner_member")

@pytest.fixture
def owner_headers(owner):
    return headers_for(owner)

@pytest.fixture
def other(db_session):
    return make_account(db_session, "other_auth", "other@test.com", member_id="other_member")

@pytest.fixture
def other_headers(other):
    return headers_for(other)

@pytest.fixture(autouse=True)
def disable_rate_limits():
    """Disable all rate limits during testing using dependency overrides."""
    async def mock_rate_limit():
        return True

    overrides = {
        import_rate_limiter: mock_rate_limit,
        expense_write_rate_limiter: mock_rate_limit
    }

    # Apply overrides
    for limiter, mock in overrides.items():
        app.dependency_overrides[limiter] = mock

    yield

    # Remove overrides
    for limiter in overrides.keys():
        app.dependency_overrides.pop(limiter, None)
