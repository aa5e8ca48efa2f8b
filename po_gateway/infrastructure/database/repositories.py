"""Data access layer for operations and sync sessions"""

from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from po_gateway.domain.models import Operation, OperationSource, Side, SyncMode, SyncSession, SyncStatus
from po_gateway.infrastructure.database.models import OperationRecord, SyncSessionRecord


def _to_domain(record: OperationRecord) -> Operation:
    return Operation(
        id=record.id,
        order_id=record.order_id,
        execution_id=record.execution_id,
        symbol=record.symbol,
        side=Side(record.side) if record.side else None,
        quantity=record.quantity,
        price=record.price,
        trade_timestamp=record.trade_timestamp,
        source=OperationSource(record.source),
        category=record.category,
        option_type=record.option_type,
        strike=record.strike,
        expiration=record.expiration,
        import_timestamp=record.import_timestamp,
        raw=record.raw or {},
    )


class OperationRepository:
    """Repository for committed operations"""

    def __init__(self, db: Session):
        self.db = db

    def list_operations(self) -> List[Operation]:
        """All operations in commit order"""
        records = self.db.query(OperationRecord).order_by(OperationRecord.position).all()
        return [_to_domain(r) for r in records]

    def add_operations(self, operations: Sequence[Operation], sync_session_id: Optional[str] = None) -> None:
        """Append operations after the current last position (no commit)"""
        last_position = self.db.query(func.max(OperationRecord.position)).scalar()
        next_position = 0 if last_position is None else last_position + 1

        for offset, op in enumerate(operations):
            self.db.add(
                OperationRecord(
                    id=op.id,
                    position=next_position + offset,
                    order_id=op.order_id,
                    execution_id=op.execution_id,
                    symbol=op.symbol,
                    side=op.side.value if op.side else None,
                    quantity=op.quantity,
                    price=op.price,
                    trade_timestamp=op.trade_timestamp,
                    source=op.source.value,
                    category=op.category,
                    option_type=op.option_type,
                    strike=op.strike,
                    expiration=op.expiration,
                    import_timestamp=op.import_timestamp,
                    raw=dict(op.raw) if op.raw else None,
                    sync_session_id=sync_session_id,
                )
            )
        self.db.flush()


class SyncSessionRepository:
    """Repository for sync session history"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, session: SyncSession) -> SyncSessionRecord:
        """Insert or update the session row (no commit)"""
        record = self.db.get(SyncSessionRecord, session.session_id)
        if record is None:
            record = SyncSessionRecord(id=session.session_id)
            self.db.add(record)

        record.mode = session.mode.value
        record.status = session.status.value
        record.start_time = session.start_time
        record.end_time = session.end_time
        record.operations_imported_count = session.operations_imported_count
        record.pages_fetched = session.pages_fetched
        record.retry_attempts = session.retry_attempts
        record.error = session.error
        self.db.flush()
        return record

    def last_successful_sync_timestamp(self) -> Optional[int]:
        """Start time of the latest successful sync; refresh fetches anything newer"""
        return (
            self.db.query(func.max(SyncSessionRecord.start_time))
            .filter(SyncSessionRecord.status == SyncStatus.SUCCESS.value)
            .scalar()
        )

    def get_history(self, limit: int = 20) -> List[SyncSession]:
        records = (
            self.db.query(SyncSessionRecord)
            .order_by(SyncSessionRecord.start_time.desc())
            .limit(limit)
            .all()
        )
        return [
            SyncSession(
                session_id=r.id,
                mode=SyncMode(r.mode),
                start_time=r.start_time,
                status=SyncStatus(r.status),
                end_time=r.end_time,
                operations_imported_count=r.operations_imported_count,
                pages_fetched=r.pages_fetched,
                retry_attempts=r.retry_attempts,
                error=r.error,
            )
            for r in records
        ]
