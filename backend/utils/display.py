"""
Response builders for groups and expenses
"""
from sqlalchemy.orm import Session
import models
import schemas
from utils.cascade import get_group_members, get_splits


def build_group(db: Session, group: models.Group) -> schemas.Group:
    """Rebuild the denormalized member list from the membership rows."""
    members = [
        schemas.GroupMember(
            id=member.member_id,
            name=member.name,
            is_current_user=member.is_current_user
        )
        for member in get_group_members(db, group.id)
    ]
    return schemas.Group(
        id=group.id,
        name=group.name,
        is_direct=bool(group.is_direct),
        members=members,
        owner_account_id=group.owner_account_id,
        owner_email=group.owner_email
    )


def build_expense(db: Session, expense: models.Expense) -> schemas.Expense:
    splits = [schemas.Split.model_validate(split) for split in get_splits(db, expense.id)]
    return schemas.Expense(
        id=expense.id,
        group_id=expense.group_id,
        description=expense.description,
        date=expense.date,
        total_amount=expense.total_amount,
        paid_by_member_id=expense.paid_by_member_id,
        involved_member_ids=expense.involved_member_ids or [],
        participant_member_ids=expense.participant_member_ids or [],
        participants=expense.participants or [],
        participant_emails=expense.participant_emails or [],
        splits=splits,
        is_settled=bool(expense.is_settled),
        owner_account_id=expense.owner_account_id,
        owner_email=expense.owner_email
    )
