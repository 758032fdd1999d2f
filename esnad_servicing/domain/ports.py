"""Data-access collaborators the engine depends on.

Saves are compare-and-swap on ``version``: an implementation persists the
entity only if the stored version still equals ``entity.version``, returns the
entity with the incremented version, and raises ``ConcurrencyConflict``
otherwise.
"""

from datetime import date, datetime
from typing import List, Optional, Protocol

from esnad_servicing.domain.models import CollectionGoal, Installment, Notice, NoticeTriggerReason


class InstallmentStore(Protocol):
    def get_installment(self, faid: str) -> Optional[Installment]: ...

    def load_installments(self, deal_aid: str) -> List[Installment]: ...

    def list_open_installments(self) -> List[Installment]: ...

    def create_installments(self, items: List[Installment]) -> List[Installment]: ...

    def save_installment(self, installment: Installment) -> Installment: ...


class CollectionGoalStore(Protocol):
    def load_open_collection_goal(self, deal_aid: str, finance_faid: str) -> Optional[CollectionGoal]: ...

    def save_collection_goal(self, goal: CollectionGoal) -> CollectionGoal: ...


class NoticeStore(Protocol):
    def find_notice(
        self,
        finance_faid: Optional[str],
        trigger_reason: NoticeTriggerReason,
        template_key: str,
        queued_on: date,
    ) -> Optional[Notice]: ...

    def find_latest_notice(self, finance_faid: str, trigger_reason: NoticeTriggerReason) -> Optional[Notice]: ...

    def get_notice(self, notice_id: str) -> Optional[Notice]: ...

    # Returns the stored notice instead when its idempotency key is already taken
    def enqueue_notice(self, notice: Notice) -> Notice: ...

    def save_notice(self, notice: Notice) -> Notice: ...

    def list_deliverable_notices(self, now: datetime, limit: int) -> List[Notice]: ...
