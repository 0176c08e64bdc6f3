"""
促销活动接口（卖家端）
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from promotions.models.event import (
    EventCreate,
    EventListStatus,
    EventStatusView,
    EventType,
    EventUpdate,
    PromotionEvent,
)
from promotions.services.event_service import EventService
from promotions.api.deps import get_event_service

router = APIRouter(prefix="/events", tags=["促销活动"])


@router.post("", response_model=PromotionEvent, status_code=201)
async def create_event(
    payload: EventCreate,
    service: EventService = Depends(get_event_service),
):
    """创建活动"""
    return await service.create_event(payload)


@router.get("")
async def list_events(
    shop_id: Optional[str] = None,
    status: EventListStatus = EventListStatus.ALL,
    event_type: Optional[EventType] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: EventService = Depends(get_event_service),
):
    """活动列表"""
    return await service.list_events(
        shop_id=shop_id, status=status, event_type=event_type, page=page, page_size=page_size
    )


@router.get("/{event_id}", response_model=PromotionEvent)
async def get_event(
    event_id: str,
    service: EventService = Depends(get_event_service),
):
    return await service.get_event(event_id)


@router.get("/{event_id}/status", response_model=EventStatusView)
async def get_event_status(
    event_id: str,
    service: EventService = Depends(get_event_service),
):
    """活动当前状态、进度与剩余时间"""
    return await service.get_status(event_id)


@router.patch("/{event_id}", response_model=PromotionEvent)
async def update_event(
    event_id: str,
    payload: EventUpdate,
    service: EventService = Depends(get_event_service),
):
    return await service.update_event(event_id, payload)


@router.post("/{event_id}/start-now", response_model=PromotionEvent)
async def start_event_now(
    event_id: str,
    service: EventService = Depends(get_event_service),
):
    """立即开始"""
    return await service.start_now(event_id)


@router.post("/{event_id}/end-now", response_model=PromotionEvent)
async def end_event_now(
    event_id: str,
    service: EventService = Depends(get_event_service),
):
    """立即结束"""
    return await service.end_now(event_id)


@router.post("/{event_id}/pause", response_model=PromotionEvent)
async def pause_event(
    event_id: str,
    service: EventService = Depends(get_event_service),
):
    return await service.pause(event_id)


@router.post("/{event_id}/resume", response_model=PromotionEvent)
async def resume_event(
    event_id: str,
    service: EventService = Depends(get_event_service),
):
    return await service.resume(event_id)


@router.delete("/{event_id}", status_code=204)
async def delete_event(
    event_id: str,
    service: EventService = Depends(get_event_service),
):
    """删除活动"""
    await service.delete_event(event_id)
