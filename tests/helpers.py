from datetime import datetime, timedelta

from models.enums import UserRole
from services.ledger import accounts
from services.session_token import create_session_token


async def make_account(
    db,
    service,
    *,
    email: str = "ada@example.com",
    balance: int = 0,
    role: UserRole = UserRole.USER,
) -> str:
    """Create an account and fund it through the journal so balance and history agree."""
    user = await accounts.create_account(db, email=email, role=role)
    await db.commit()
    if balance:
        await service.credit_for_purchase(db, user.id, balance, description="Test funding")
    return user.id


def auth_header(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user_id)['token']}"}


class TickingClock:
    """UTC clock that advances one second per reading so journal order is deterministic."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value

    def move_to(self, moment: datetime) -> None:
        self.current = moment
