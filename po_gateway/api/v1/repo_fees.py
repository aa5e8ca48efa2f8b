"""POST /v1/repo/fees - Caucion fee breakdowns"""

import logging
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Request

from po_gateway.api.v1.schemas import (
    RepoBreakdownSchema,
    RepoFeeResult,
    RepoFeesRequest,
    RepoFeesResponse,
    RepoGroupSchema,
)
from po_gateway.api.dependencies import get_repo_fee_config, get_request_id
from po_gateway.config import settings
from po_gateway.domain.models import RepoFeeBreakdown, RepoFeeConfig, RepoInstrument, RepoOperation
from po_gateway.domain.repo_aggregation import RepoGroupKey, group_key, group_repo_breakdowns
from po_gateway.domain.repo_fees import compute_breakdown
from po_gateway.domain.repo_input import extract_repo_operation
from po_gateway.infrastructure.observability.metrics import record_repo_breakdown

router = APIRouter()


@router.post("/repo/fees", response_model=RepoFeesResponse)
def calculate_repo_fees(
    request_body: RepoFeesRequest,
    request: Request,
    config: RepoFeeConfig = Depends(get_repo_fee_config),
):
    """
    Compute caucion expenses and net settlement per operation.

    Flow:
    1. Structured operations first, then loosely keyed rows
    2. Non-caucion rows come back with is_repo=false
    3. Blocked rows (tenor or config problems) carry warnings, never a 4xx
    4. Optionally aggregate rows sharing instrument, currency and role
    """
    request_id = get_request_id(request)
    tolerance = settings.repo_reconciliation_tolerance

    inputs: List[Optional[RepoOperation]] = [
        RepoOperation(
            id=item.id,
            principal_amount=item.principal_amount,
            base_amount=item.base_amount,
            price_tna=item.price_tna,
            role=item.role,
            currency=item.currency,
            instrument=RepoInstrument(cfi_code=item.cfi_code, display_name=item.display_name),
            tenor_days=item.tenor_days,
        )
        for item in request_body.operations
    ]
    inputs.extend(extract_repo_operation(row) for row in request_body.rows)

    results: List[RepoFeeResult] = []
    computed: List[Tuple[RepoOperation, RepoFeeBreakdown]] = []

    for index, repo_operation in enumerate(inputs):
        breakdown = compute_breakdown(repo_operation, config, tolerance) if repo_operation else None
        if breakdown is None:
            results.append(RepoFeeResult(index=index, is_repo=False))
            continue

        record_repo_breakdown(breakdown.status.value, breakdown.source)
        computed.append((repo_operation, breakdown))
        results.append(
            RepoFeeResult(index=index, is_repo=True, breakdown=RepoBreakdownSchema.from_domain(breakdown))
        )

    groups: List[RepoGroupSchema] = []
    if request_body.aggregate and computed:
        sizes: Dict[RepoGroupKey, int] = {}
        for repo_operation, _ in computed:
            key = group_key(repo_operation)
            sizes[key] = sizes.get(key, 0) + 1

        aggregated = group_repo_breakdowns(computed, tolerance)

        groups = [
            RepoGroupSchema(
                instrument=key.instrument,
                currency=key.currency,
                role=key.role,
                size=sizes[key],
                breakdown=RepoBreakdownSchema.from_domain(breakdown),
            )
            for key, breakdown in aggregated.items()
        ]

    logging.info(
        "Repo fees computed",
        extra={
            "request_id": request_id,
            "rows": len(inputs),
            "repo_rows": len(computed),
            "blocked_rows": sum(1 for _, b in computed if b.blocked),
            "groups": len(groups),
        },
    )

    return RepoFeesResponse(results=results, groups=groups)
