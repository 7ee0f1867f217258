# hirehub/api/v1/queue.py
from fastapi import APIRouter, Depends, Query

from hirehub.api.deps import QUEUE_ADMIN_ROLES, get_current_principal, get_monitor, require_roles
from hirehub.core.errors import NotFoundError
from hirehub.core.security import Principal

router = APIRouter()


@router.get("/queue/stats")
async def queue_stats(principal: Principal = Depends(get_current_principal), monitor=Depends(get_monitor)):
    stats = await monitor.get_queue_stats()
    return {"success": True, "stats": stats.model_dump()}


@router.get("/queue/jobs/{job_id}")
async def job_status(job_id: str, principal: Principal = Depends(get_current_principal),
                     monitor=Depends(get_monitor)):
    job = await monitor.get_job_status(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return {"success": True, "job": job.model_dump(by_alias=True)}


@router.post("/queue/cleanup")
async def cleanup_jobs(
    max_age_seconds: float = Query(24 * 60 * 60, ge=0, alias="maxAgeSeconds"),
    max_count: int = Query(100, ge=1, le=1000, alias="maxCount"),
    principal: Principal = Depends(require_roles(*QUEUE_ADMIN_ROLES)),
    monitor=Depends(get_monitor),
):
    removed = await monitor.cleanup_completed_jobs(max_age_seconds=max_age_seconds, max_count=max_count)
    return {"success": True, "removed": removed}
