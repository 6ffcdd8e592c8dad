# motorconnect/routers/admin_commission_config.py
from fastapi import APIRouter, Depends, HTTPException, Query, status

from motorconnect.dependencies import get_commission_service
from motorconnect.schemas.commission import (
    CommissionConfig,
    CommissionConfigListResponse,
    CreateCommissionConfigRequest,
    UpdateCommissionConfigRequest,
)
from motorconnect.utils.api_error_handler import status_code_for
from motorconnect.utils.commission_service import CommissionService, CommissionServiceError

router = APIRouter()


def _raise_for(e: CommissionServiceError):
    raise HTTPException(status_code=status_code_for(e.__cause__ or e), detail=str(e))


@router.get("/", response_model=CommissionConfigListResponse)
async def list_commission_configs(
    search: str = Query("", description="Search by category name or slug"),
    page: int = Query(1, ge=1),
    service: CommissionService = Depends(get_commission_service),
):
    configs = await service.fetch_configs(search, page)
    if service.config_error:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=service.config_error)
    return CommissionConfigListResponse(configs=configs, pagination=service.pagination)


@router.get("/{config_id}", response_model=CommissionConfig)
async def get_commission_config(
    config_id: str,
    service: CommissionService = Depends(get_commission_service),
):
    config = await service.fetch_config(config_id)
    if config is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=service.config_error or "Commission config not found")
    return config


@router.post("/", response_model=CommissionConfig, status_code=status.HTTP_201_CREATED)
async def create_commission_config(
    data: CreateCommissionConfigRequest,
    service: CommissionService = Depends(get_commission_service),
):
    try:
        return await service.create_config(data)
    except CommissionServiceError as e:
        _raise_for(e)


@router.put("/{config_id}", response_model=CommissionConfig)
async def update_commission_config(
    config_id: str,
    data: UpdateCommissionConfigRequest,
    service: CommissionService = Depends(get_commission_service),
):
    try:
        return await service.update_config(config_id, data)
    except CommissionServiceError as e:
        _raise_for(e)


@router.delete("/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_commission_config(
    config_id: str,
    service: CommissionService = Depends(get_commission_service),
):
    try:
        await service.delete_config(config_id)
    except CommissionServiceError as e:
        _raise_for(e)
