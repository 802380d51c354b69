"""Bridge command API — run one command on a site bridge over HTTP.

Learn: The call always completes with 200 and a BridgeResult body. A
bridge that refuses, times out, or isn't listening is a normal outcome
(success=false, error=...), not an HTTP error.
"""

from fastapi import APIRouter, Depends

from sitewatch.api.deps import hub_dependency
from sitewatch.realtime.hub import RealtimeHub
from sitewatch.schemas.bridge import BridgeCommandCreate, BridgeResult

router = APIRouter()


@router.post("/bridges/{bridge_id}/commands", response_model=BridgeResult)
async def call_bridge(
    bridge_id: int,
    body: BridgeCommandCreate,
    hub: RealtimeHub = Depends(hub_dependency),
):
    """Send a command to a bridge and wait for its reply."""
    return await hub.bridges.call(bridge_id, body.path, body.body)
