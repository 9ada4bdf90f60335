"""Exceptions raised by the identity layer."""


class AliasIntegrityError(Exception):
    """Stored alias data is inconsistent; the current operation cannot proceed."""

    def __init__(self, message: str, account_email: str | None = None, member_id: str | None = None):
        super().__init__(message)
        self.account_email = account_email
        self.member_id = member_id


class AliasCycleError(AliasIntegrityError):
    """An alias points at another alias instead of a canonical member id."""
