"""
Admin aggregation views: read-only folds over every user.
"""

from decimal import Decimal
from typing import Any, Dict, List

from .ledger import Ledger
from .users import UserManager


RECENT_LIMIT = 10


class ReportingEngine:
    """Read-only rollups for the admin console and the user dashboard"""

    def __init__(self, user_manager: UserManager, ledger: Ledger):
        self.users = user_manager
        self.ledger = ledger

    def overview(self) -> Dict[str, Any]:
        """
        Totals over all users plus the latest activity.

        ``recent`` takes each user's most recent ledger entry, merges them and
        keeps the newest ten.
        """
        users = self.users.list_users()

        total_balance = sum((u.balance for u in users), Decimal("0"))
        total_crypto = sum((u.crypto_balance for u in users), Decimal("0"))

        recent: List[tuple] = []
        for user in users:
            entry = self.ledger.latest_for_user(user.id)
            if entry is None:
                continue
            row = entry.to_public_dict()
            row["user_email"] = user.email
            recent.append((entry.date, row))

        recent.sort(key=lambda item: item[0], reverse=True)

        return {
            "summary": {
                "total_balance": str(total_balance),
                "total_crypto": str(total_crypto),
                "total_users": len(users),
                "verified": sum(1 for u in users if u.verified)
            },
            "users": [
                {"id": u.id, "name": u.name, "email": u.email, "role": u.role.value}
                for u in users
            ],
            "recent": [row for _, row in recent[:RECENT_LIMIT]]
        }

    def user_dashboard(self, user_id: str) -> Dict[str, Any]:
        user = self.users.require_user(user_id)
        entries = self.ledger.entries_for_user(user.id, limit=RECENT_LIMIT)
        return {
            "user": user.to_public_dict(),
            "balances": {
                "balance": str(user.balance),
                "crypto_balance": str(user.crypto_balance)
            },
            "recent_transactions": [e.to_public_dict() for e in entries]
        }
