# hirehub/api/v1/evaluations.py
"""
Resume evaluation endpoints.
- POST /resume/evaluate accepts a multipart upload and answers 202 once the
  evaluation is queued; progress streams over /ws/resume-status
- GET  /resume/evaluations[/{id}] reads back the caller's evaluations
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from hirehub.api.deps import get_current_principal, get_dispatcher, get_evaluation_store, get_orchestrator
from hirehub.core.errors import NotFoundError, ValidationError
from hirehub.core.security import Principal
from hirehub.models.evaluation import EvaluationJob

logger = logging.getLogger(__name__)

router = APIRouter()


def _summary(job: EvaluationJob) -> Dict[str, Any]:
    return {
        "evaluationId": job.id,
        "jobName": job.job_title,
        "fileType": job.file_type,
        "fileUrl": job.file_url,
        "step": job.step.value,
        "progress": job.progress,
        "error": job.error,
        "scores": job.result.scores.model_dump() if job.result else None,
        "createdAt": job.created_at.isoformat(),
        "updatedAt": job.updated_at.isoformat(),
    }


@router.post("/resume/evaluate", status_code=status.HTTP_202_ACCEPTED)
async def evaluate_resume(
    file: Optional[UploadFile] = File(None),
    job_description: str = Form("", alias="jobDescription"),
    job_name: str = Form("", alias="jobName"),
    ocr_text: Optional[str] = Form(None, alias="ocrText"),
    principal: Principal = Depends(get_current_principal),
    orchestrator=Depends(get_orchestrator),
    dispatcher=Depends(get_dispatcher),
):
    if file is None:
        raise ValidationError("Resume file is required")
    data = await file.read()
    job = await orchestrator.accept(
        principal.user_id,
        data,
        file.filename,
        job_description,
        job_name,
        content_type=file.content_type,
    )
    await dispatcher.dispatch(job, data, ocr_text or None)
    logger.info("Evaluation %s accepted for user %s (%s dispatch)", job.id, principal.user_id, dispatcher.mode)
    return {
        "success": True,
        "evaluationId": job.id,
        "status": job.step.value,
        "message": "Resume uploaded. Follow progress on the resume status channel.",
    }


@router.get("/resume/evaluations")
async def list_evaluations(
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    store=Depends(get_evaluation_store),
):
    jobs = await store.list_for_user(principal.user_id, limit=limit, skip=skip)
    return {"success": True, "evaluations": [_summary(j) for j in jobs], "count": len(jobs)}


@router.get("/resume/evaluations/{evaluation_id}")
async def get_evaluation(
    evaluation_id: str,
    principal: Principal = Depends(get_current_principal),
    store=Depends(get_evaluation_store),
):
    job = await store.get(evaluation_id)
    # other users' evaluations are indistinguishable from missing ones
    if job is None or job.user_id != principal.user_id:
        raise NotFoundError(f"Evaluation {evaluation_id} not found")
    body = _summary(job)
    body["details"] = job.details
    if job.result is not None:
        body["result"] = job.result.model_dump(mode="json", exclude={"resume": {"raw_text"}})
    return {"success": True, "evaluation": body}
