"""Credit balance API endpoint.

- GET /api/credits - Balances of every credit pool of the caller
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from visionlight.api.dependencies import get_current_identity, get_orchestrator
from visionlight.services.identity import Identity
from visionlight.services.orchestrator import JobOrchestrator

router = APIRouter(prefix="/api/credits", tags=["credits"])


class BalancesResponse(BaseModel):
    balances: dict[str, float] = Field(..., description="Pool name → balance")


@router.get("", response_model=BalancesResponse)
async def get_balances(
    identity: Identity = Depends(get_current_identity),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> BalancesResponse:
    balances = await orchestrator.get_balances(identity.user_id)
    return BalancesResponse(balances={pool.value: amount for pool, amount in balances.items()})
