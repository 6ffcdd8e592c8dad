# motorconnect/routers/promotions.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from motorconnect.dependencies import get_promotion_service
from motorconnect.schemas.promotions import ActivePromotionResponse, CommissionPromotion, PromotionWrite
from motorconnect.utils.api_error_handler import status_code_for
from motorconnect.utils.promotion_service import PromotionService, PromotionServiceError

router = APIRouter()
admin_router = APIRouter()


def _raise_for(e: PromotionServiceError):
    raise HTTPException(status_code=status_code_for(e.__cause__ or e), detail=str(e))


@router.get("/active", response_model=ActivePromotionResponse)
async def get_active_promotion(service: PromotionService = Depends(get_promotion_service)):
    """Promotion for the vendor banner; both fields are null when none is running"""
    await service.fetch_promotions()
    if service.error:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=service.error)
    promotion = service.get_active_promotion()
    return ActivePromotionResponse(
        promotion=promotion,
        discount_text=promotion.discount_text if promotion else None,
    )


# Admin

@admin_router.get("/", response_model=List[CommissionPromotion])
async def list_promotions(service: PromotionService = Depends(get_promotion_service)):
    try:
        return await service.list_promotions()
    except PromotionServiceError as e:
        _raise_for(e)


@admin_router.post("/", response_model=CommissionPromotion, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    data: PromotionWrite,
    service: PromotionService = Depends(get_promotion_service),
):
    try:
        return await service.create_promotion(data)
    except PromotionServiceError as e:
        _raise_for(e)


@admin_router.put("/{promotion_id}", response_model=CommissionPromotion)
async def update_promotion(
    promotion_id: str,
    data: PromotionWrite,
    service: PromotionService = Depends(get_promotion_service),
):
    try:
        return await service.update_promotion(promotion_id, data)
    except PromotionServiceError as e:
        _raise_for(e)


@admin_router.delete("/{promotion_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_promotion(
    promotion_id: str,
    service: PromotionService = Depends(get_promotion_service),
):
    try:
        await service.delete_promotion(promotion_id)
    except PromotionServiceError as e:
        _raise_for(e)
