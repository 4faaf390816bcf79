import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from .models import (
    BalanceChanged,
    ChangeKind,
    LeaderboardEntry,
    Member,
)

logger = logging.getLogger(__name__)

BalanceListener = Callable[[int, int], None]
EventListener = Callable[[BalanceChanged], None]

NOT_FOUND = -1


class LedgerServiceError(Exception):
    pass


class MemberNotFoundError(LedgerServiceError):
    pass


class InvalidAmountError(LedgerServiceError):
    pass


class InsufficientBalanceError(LedgerServiceError):
    pass


class InMemoryStorage:
    def __init__(self):
        self.members: dict[int, Member] = {}
        self.next_id = 1

    def allocate_id(self) -> int:
        member_id = self.next_id
        self.next_id += 1
        return member_id


class LedgerService:
    """Authoritative store of members and their point balances.

    Balances only move through ``credit``/``debit`` (or the boolean
    ``add_points``/``deduct_points`` wrappers) and never drop below zero.
    Every successful mutation, including creation, is announced to the
    subscribed listeners exactly once, after the new balance is stored.
    """

    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()
        self._lock = threading.RLock()
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: BalanceListener) -> Callable[[], None]:
        """Register ``listener(member_id, balance)``; returns an unsubscribe callable."""
        def forward(event: BalanceChanged) -> None:
            listener(event.member_id, event.balance)

        return self.subscribe_events(forward)

    def subscribe_events(self, listener: EventListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def create_member(self, name: str) -> int:
        with self._lock:
            now = datetime.now(timezone.utc)
            member_id = self.storage.allocate_id()
            self.storage.members[member_id] = Member(
                id=member_id, name=name, balance=0, created_at=now, updated_at=now,
            )
            logger.info("Member created", extra={"member_id": member_id, "balance": 0})
            self._notify(BalanceChanged(
                member_id=member_id, balance=0, delta=0,
                kind=ChangeKind.CREATED, occurred_at=now,
            ))
            return member_id

    def points_for(self, member_id: int) -> Optional[int]:
        member = self.storage.members.get(member_id)
        return member.balance if member else None

    def points_or_sentinel(self, member_id: int) -> int:
        balance = self.points_for(member_id)
        return NOT_FOUND if balance is None else balance

    def find_member(self, member_id: int) -> Optional[Member]:
        member = self.storage.members.get(member_id)
        return member.model_copy() if member else None

    def get_member(self, member_id: int) -> Member:
        member = self.find_member(member_id)
        if not member:
            raise MemberNotFoundError(f"Member {member_id} not found")
        return member

    def list_members(self) -> list[Member]:
        with self._lock:
            return [m.model_copy() for _, m in sorted(self.storage.members.items())]

    def leaderboard(self, limit: Optional[int] = None) -> list[LeaderboardEntry]:
        members = sorted(self.list_members(), key=lambda m: (-m.balance, m.name, m.id))
        if limit is not None:
            members = members[:max(limit, 0)]
        return [
            LeaderboardEntry(rank=rank, member_id=m.id, name=m.name, balance=m.balance)
            for rank, m in enumerate(members, start=1)
        ]

    def credit(self, member_id: int, amount: int) -> Member:
        with self._lock:
            member = self._require_mutable(member_id, amount)
            return self._apply(member, amount, ChangeKind.CREDIT)

    def debit(self, member_id: int, amount: int) -> Member:
        with self._lock:
            member = self._require_mutable(member_id, amount)
            if member.balance < amount:
                raise InsufficientBalanceError(
                    f"Member {member_id} has {member.balance} points, cannot deduct {amount}"
                )
            return self._apply(member, -amount, ChangeKind.DEBIT)

    def add_points(self, member_id: int, amount: int) -> bool:
        try:
            self.credit(member_id, amount)
        except LedgerServiceError as e:
            logger.info(f"Add rejected: {e}", extra={"member_id": member_id, "amount": amount})
            return False
        return True

    def deduct_points(self, member_id: int, amount: int) -> bool:
        try:
            self.debit(member_id, amount)
        except LedgerServiceError as e:
            logger.info(f"Deduct rejected: {e}", extra={"member_id": member_id, "amount": amount})
            return False
        return True

    def _require_mutable(self, member_id: int, amount: int) -> Member:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmountError(f"Amount must be a whole number, got {amount!r}")
        if amount <= 0:
            raise InvalidAmountError(f"Amount must be positive, got {amount}")
        member = self.storage.members.get(member_id)
        if not member:
            raise MemberNotFoundError(f"Member {member_id} not found")
        return member

    def _apply(self, member: Member, delta: int, kind: ChangeKind) -> Member:
        now = datetime.now(timezone.utc)
        updated = member.model_copy(update={"balance": member.balance + delta, "updated_at": now})
        self.storage.members[member.id] = updated
        logger.info(
            f"{kind.value.title()} applied",
            extra={"member_id": member.id, "amount": abs(delta), "balance": updated.balance},
        )
        self._notify(BalanceChanged(
            member_id=member.id, balance=updated.balance, delta=delta,
            kind=kind, occurred_at=now,
        ))
        return updated.model_copy()

    def _notify(self, event: BalanceChanged) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Balance listener failed",
                    extra={"member_id": event.member_id, "balance": event.balance},
                )
