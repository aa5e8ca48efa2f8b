"""Operation normalization, duplicate detection and batch merging"""

import uuid
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from po_gateway.domain.models import MergeResult, Operation, OperationSource, Side
from po_gateway.utils.date_utils import now_ms, parse_venue_timestamp


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_side(value: Any) -> Optional[Side]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    if normalized in ("BUY", "COMPRA"):
        return Side.BUY
    if normalized in ("SELL", "VENTA"):
        return Side.SELL
    return None


def _parse_timestamp(value: Any, fallback: int) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        if value.strip().isdigit():
            return int(value.strip())
        parsed = parse_venue_timestamp(value)
        if parsed is not None:
            return parsed
    return fallback


def normalize_operation(raw: Mapping[str, Any], source: OperationSource) -> Operation:
    """
    Map a venue order or a CSV-adapter row onto an Operation.

    Venue orders use clOrdId/execId/instrumentId.symbol/lastQty/lastPx/transactTime;
    CSV rows use order_id/operation_id/symbol/quantity/price/tradeTimestamp.
    """
    imported_at = now_ms()
    instrument_id = raw.get("instrumentId") or {}
    symbol = _first(raw, "symbol") or instrument_id.get("symbol") or ""

    order_id = _first(raw, "order_id", "clOrdId")
    execution_id = _first(raw, "operation_id", "execId", "execID")
    strike = raw.get("strike")

    return Operation(
        id=str(uuid.uuid4()),
        order_id=str(order_id) if order_id is not None else None,
        execution_id=str(execution_id) if execution_id is not None else None,
        symbol=str(symbol).upper().strip(),
        side=_parse_side(_first(raw, "side", "action")),
        quantity=_to_float(_first(raw, "quantity", "last_qty", "lastQty", "orderQty")),
        price=_to_float(_first(raw, "price", "last_price", "lastPx")),
        trade_timestamp=_parse_timestamp(
            _first(raw, "tradeTimestamp", "trade_timestamp", "transactTime"), imported_at
        ),
        source=source,
        category=_first(raw, "category"),
        option_type=_first(raw, "optionType", "option_type"),
        strike=_to_float(strike) if strike is not None else None,
        expiration=_first(raw, "expirationDate", "expiration_date", "expiration"),
        import_timestamp=imported_at,
        raw=dict(raw),
    )


def primary_key(operation: Operation) -> Optional[Tuple[str, str]]:
    """order id + execution id, only when both are present"""
    if operation.order_id and operation.execution_id:
        return (operation.order_id, operation.execution_id)
    return None


def composite_key(operation: Operation) -> Tuple[Hashable, ...]:
    """Fill identity for rows without ids; timestamps match on the same second"""
    timestamp = operation.trade_timestamp or operation.import_timestamp or 0
    return (
        operation.symbol,
        operation.option_type,
        operation.side,
        operation.strike,
        operation.expiration,
        operation.quantity,
        operation.price,
        timestamp // 1000,
    )


def is_duplicate(existing: Operation, candidate: Operation) -> bool:
    existing_key = primary_key(existing)
    candidate_key = primary_key(candidate)
    if existing_key and candidate_key:
        return existing_key == candidate_key
    return composite_key(existing) == composite_key(candidate)


class DedupeIndex:
    """
    Hash index equivalent to pairwise is_duplicate over a growing pool.

    A candidate with both ids matches pool rows with both ids by primary key
    and pool rows lacking them by composite key; a candidate without ids
    matches any pool row by composite key.
    """

    def __init__(self, operations: Iterable[Operation] = ()):
        self._primary: Set[Tuple[str, str]] = set()
        self._composite_all: Set[Tuple[Hashable, ...]] = set()
        self._composite_without_ids: Set[Tuple[Hashable, ...]] = set()
        for operation in operations:
            self.add(operation)

    def add(self, operation: Operation) -> None:
        key = primary_key(operation)
        composite = composite_key(operation)
        self._composite_all.add(composite)
        if key:
            self._primary.add(key)
        else:
            self._composite_without_ids.add(composite)

    def contains(self, candidate: Operation) -> bool:
        key = primary_key(candidate)
        composite = composite_key(candidate)
        if key:
            return key in self._primary or composite in self._composite_without_ids
        return composite in self._composite_all


def dedupe_operations(existing: Sequence[Operation], incoming: Iterable[Operation]) -> List[Operation]:
    """Incoming operations not already represented in existing (nor earlier in incoming)"""
    return dedupe_against_index(DedupeIndex(existing), incoming)


def dedupe_against_index(index: DedupeIndex, incoming: Iterable[Operation]) -> List[Operation]:
    """Like dedupe_operations but grows the given index with accepted rows"""
    accepted: List[Operation] = []
    for candidate in incoming:
        if index.contains(candidate):
            continue
        index.add(candidate)
        accepted.append(candidate)
    return accepted


def merge_batch(baseline: Sequence[Operation], candidates: Iterable[Operation]) -> MergeResult:
    """
    Merge candidates into baseline, keeping baseline order and appending new rows.

    new_orders_count counts distinct order ids among accepted rows; a single
    order can contribute several partial-fill rows to new_ops_count.
    """
    accepted = dedupe_operations(baseline, candidates)
    new_order_ids = {op.order_id for op in accepted if op.order_id}

    return MergeResult(
        merged=[*baseline, *accepted],
        new_orders_count=len(new_order_ids),
        new_ops_count=len(accepted),
    )


def operation_to_dict(operation: Operation) -> Dict[str, Any]:
    """Serializable view used by the API layer"""
    return {
        "id": operation.id,
        "order_id": operation.order_id,
        "execution_id": operation.execution_id,
        "symbol": operation.symbol,
        "side": operation.side.value if operation.side else None,
        "quantity": operation.quantity,
        "price": operation.price,
        "trade_timestamp": operation.trade_timestamp,
        "source": operation.source.value,
        "category": operation.category,
        "option_type": operation.option_type,
        "strike": operation.strike,
        "expiration": operation.expiration,
    }
