"""SQL-backed sync destination: nothing written before commit, one transaction on commit"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from po_gateway.domain.models import MergeResult, Operation, SyncSession
from po_gateway.infrastructure.database.repositories import OperationRepository, SyncSessionRepository


class SqlSyncSink:
    """
    Persists a sync run.

    The session row is written when the run starts so history shows it in
    progress. Staged pages are only logged; commit writes the new operations
    of the final merge together with the session row in a single transaction.
    """

    def __init__(self, db: Session):
        self.db = db
        self.operations = OperationRepository(db)
        self.sessions = SyncSessionRepository(db)

    def start(self, session: SyncSession) -> None:
        self.sessions.save(session)
        self.db.commit()

    def stage_page(self, session: SyncSession, accepted: List[Operation], page_index: int, estimated_total: Optional[int]) -> None:
        logging.debug(
            "Sync page staged",
            extra={
                "session_id": session.session_id,
                "page_index": page_index,
                "accepted_count": len(accepted),
                "estimated_total": estimated_total,
            },
        )

    def commit(self, session: SyncSession, merge: MergeResult, evaluated_count: int) -> None:
        new_operations = merge.merged[len(merge.merged) - merge.new_ops_count:] if merge.new_ops_count else []
        try:
            self.operations.add_operations(new_operations, sync_session_id=session.session_id)
            self.sessions.save(session)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logging.info(
            "Sync committed",
            extra={
                "session_id": session.session_id,
                "new_operations_count": merge.new_ops_count,
                "new_orders_count": merge.new_orders_count,
                "total_operations": len(merge.merged),
                "evaluated_count": evaluated_count,
            },
        )

    def _close(self, session: SyncSession) -> None:
        self.db.rollback()
        self.sessions.save(session)
        self.db.commit()

    def fail(self, session: SyncSession) -> None:
        self._close(session)

    def cancel(self, session: SyncSession) -> None:
        self._close(session)
