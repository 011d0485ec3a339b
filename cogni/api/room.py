"""
cogni.api.room
~~~~~~~~~~~~~~

房间 REST 接口 —— 只读查询，实时交互全部走 ``/ws``。

端点:
  - ``GET /rooms``                   → 活跃房间列表
  - ``GET /rooms/{room_id}``         → 房间详情（在场成员、AI 任务状态）
  - ``GET /rooms/{room_id}/history`` → 最近的房间消息（已关闭的房间读归档）
"""
from fastapi import APIRouter, Depends, Query, Request

from cogni.api.deps import get_hub
from cogni.core.rate_limit import limiter
from cogni.schemas.api_response import ApiResponse
from cogni.schemas.rooms import HistoryResponseData, RoomInfoData
from cogni.services.hub import ChatHub

router: APIRouter = APIRouter()

_ROOM_NOT_FOUND = "Room not found"


@router.get(
    "/rooms",
    summary="获取活跃房间列表",
    response_model=ApiResponse[list[RoomInfoData]],
)
@limiter.limit("30/minute")
async def list_rooms(
    request: Request, hub: ChatHub = Depends(get_hub),
) -> ApiResponse[list[RoomInfoData]]:
    """返回当前所有有人在场（或仍有 AI 任务未完成）的房间。"""
    return ApiResponse.ok(data=hub.list_rooms())


@router.get(
    "/rooms/{room_id}",
    summary="获取房间详情",
    response_model=ApiResponse[RoomInfoData],
)
async def room_info(
    room_id: str, hub: ChatHub = Depends(get_hub),
) -> ApiResponse[RoomInfoData]:
    """返回指定房间的在场成员和 AI 任务状态。

    Args:
        room_id: 房间唯一标识。
    """
    info = hub.room_info(room_id)
    if info is None:
        return ApiResponse.fail(msg=_ROOM_NOT_FOUND, code=404)
    return ApiResponse.ok(data=info)


@router.get(
    "/rooms/{room_id}/history",
    summary="获取房间最近消息",
    response_model=ApiResponse[HistoryResponseData],
)
async def get_history(
    room_id: str,
    limit: int = Query(50, ge=1, le=200, description="最多返回条数"),
    hub: ChatHub = Depends(get_hub),
) -> ApiResponse[HistoryResponseData]:
    """获取房间最近的消息（按到达顺序）。房间已关闭时从归档中读取。

    Args:
        room_id: 房间唯一标识。
        limit: 最多返回条数（1-200）。
    """
    history = await hub.recent_history(room_id, limit)
    if history is None:
        return ApiResponse.fail(msg=_ROOM_NOT_FOUND, code=404)
    return ApiResponse.ok(data=history)
