# motorconnect/routers/fee_preview.py
import logging
from typing import List

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from motorconnect.core.security import get_websocket_token
from motorconnect.dependencies import get_commission_service
from motorconnect.schemas.commission import CommissionRuleDefinition, FeeCalculationResponse
from motorconnect.utils.commission_service import CommissionService, commission_rules_legend
from motorconnect.utils.debounce import FeePreviewSession

logger = logging.getLogger(__name__)

router = APIRouter()


class FeePreviewInput(BaseModel):
    price: float = 0
    category_slug: str = Field("", alias="categorySlug")


@router.get("/", response_model=FeeCalculationResponse | None)
async def get_fee_preview(
    price: float = Query(...),
    category_slug: str = Query("", alias="categorySlug"),
    service: CommissionService = Depends(get_commission_service),
):
    """
    Fee breakdown for a listing price in a category.
    Falls back to a local estimate when the marketplace API is unavailable;
    returns null for a non-positive price or missing category.
    """
    return await service.calculate_fees(price, category_slug)


@router.get("/rules", response_model=List[CommissionRuleDefinition])
def get_commission_rules():
    return commission_rules_legend()


async def fee_preview_socket(websocket: WebSocket):
    """
    Live fee preview: the editor sends {price, categorySlug} on every change
    and receives the debounced preview, or null once the inputs are cleared.
    """
    await websocket.accept()
    api = websocket.app.state.marketplace_api.bind_token(get_websocket_token(websocket))

    async def push(preview):
        await websocket.send_json(preview.model_dump(mode="json", by_alias=True) if preview else None)

    session = FeePreviewSession(CommissionService(api), push)
    try:
        while True:
            try:
                data = FeePreviewInput.model_validate(await websocket.receive_json())
            except (ValueError, KeyError, TypeError):
                # non-JSON or binary frames, or JSON of the wrong shape
                await websocket.send_json({"error": "Expected {price, categorySlug}"})
                continue
            await session.update(data.price, data.category_slug)
    except WebSocketDisconnect:
        logger.debug("Fee preview socket closed")
    finally:
        session.close()
