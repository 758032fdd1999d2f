"""Daily servicing job: reminders, overdue sweep and notice handoff.

Run with ``python -m esnad_servicing.jobs.daily_sweep [YYYY-MM-DD]``.
"""

import logging
import sys
from datetime import date
from typing import Dict, Optional

from sqlalchemy.orm import Session

from esnad_servicing.config import settings
from esnad_servicing.domain.configuration import ConfigurationStore
from esnad_servicing.infrastructure.clients.notice_sender import NoticeSenderClient
from esnad_servicing.infrastructure.database.repositories import (
    FinanceRepository,
    GoalRepository,
    NoticeRepository,
    SettingsRepository,
)
from esnad_servicing.infrastructure.database.session import session_scope
from esnad_servicing.infrastructure.observability.logging import setup_logging
from esnad_servicing.services.notices import NoticeDispatcher, NoticeRelay
from esnad_servicing.services.servicing import ServicingEngine


def build_dispatcher(db: Session) -> NoticeDispatcher:
    return NoticeDispatcher(
        NoticeRepository(db),
        max_retries=settings.notice_max_retries,
        cadence_days=settings.overdue_notice_cadence_days,
    )


def build_engine(db: Session) -> ServicingEngine:
    """Wire the engine to SQLAlchemy repositories sharing one session"""
    return ServicingEngine(
        config=ConfigurationStore(SettingsRepository(db)),
        finances=FinanceRepository(db),
        goals=GoalRepository(db),
        dispatcher=build_dispatcher(db),
        conflict_retries=settings.sweep_conflict_retries,
    )


def run_daily_sweep(as_of: Optional[date] = None, session_factory=session_scope, sender=None) -> Dict[str, int]:
    as_of = as_of or date.today()

    with session_factory() as db:
        engine = build_engine(db)
        reminders = engine.send_reminders(as_of)
        result = engine.evaluate_overdue(as_of)

    with session_factory() as db:
        relay = NoticeRelay(
            NoticeRepository(db),
            build_dispatcher(db),
            sender or NoticeSenderClient(),
            batch_size=settings.notice_batch_size,
        )
        delivery = relay.deliver_pending()

    summary = {
        "reminders": len(reminders),
        "transitioned": len(result.transitioned),
        "goals_updated": len(result.goals_updated),
        "overdue_notices": len(result.notices),
        "skipped": len(result.skipped),
        "sent": delivery["sent"],
        "failed": delivery["failed"],
    }
    logging.info("Daily sweep finished", extra={"as_of": as_of.isoformat(), **summary})
    return summary


def main(argv=None) -> int:
    setup_logging(settings.log_level)
    args = sys.argv[1:] if argv is None else argv
    as_of = date.fromisoformat(args[0]) if args else None
    run_daily_sweep(as_of)
    return 0


if __name__ == "__main__":
    sys.exit(main())
