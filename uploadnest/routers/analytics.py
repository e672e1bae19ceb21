from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from uploadnest import crud, schemas, storage
from uploadnest.database import get_db
from uploadnest.deps import get_current_user
from uploadnest.errors import BadRequestException
from uploadnest.models import User
from uploadnest.utils import format_bytes

router = APIRouter(
    tags=["analytics"],
)

@router.get("/user", response_model=schemas.AnalyticsResponse)
async def user_analytics(
    date_from: Optional[datetime] = Query(default=None, alias="from"),
    date_to: Optional[datetime] = Query(default=None, alias="to"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    if date_from and date_to and date_from > date_to:
        raise BadRequestException("'from' must not be after 'to'")

    metrics = await storage.get_storage_metrics(db, current_user.id)
    total_files = await crud.count_file_records(db, current_user.id)
    stats = await crud.get_upload_stats_by_day(db, current_user.id, date_from, date_to)

    return schemas.AnalyticsResponse(
        message="User analytics retrieved successfully",
        storage=schemas.StorageSummary(
            quota=metrics.quota,
            usage=metrics.usage,
            remaining=metrics.remaining,
            formatted_quota=format_bytes(metrics.quota),
            formatted_usage=format_bytes(metrics.usage),
            formatted_remaining=format_bytes(metrics.remaining)
        ),
        total_files=total_files,
        chart=[schemas.ChartPoint(date=day, uploads=uploads, bytes=size) for day, uploads, size in stats]
    )
