"""Jobs router - read-only view of the job store for operators."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from fieldops.core.deps import get_db, verify_internal_secret
from fieldops.db.enums import JobStatus, JobType
from fieldops.schemas.jobs import JobRead
from fieldops.services import job_service

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(verify_internal_secret)])


@router.get("", response_model=list[JobRead])
def list_jobs(
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """List jobs, newest first."""
    return job_service.list_jobs(db, status=status, job_type=job_type, limit=limit)


@router.get("/{job_id}", response_model=JobRead)
def get_job(job_id: UUID, db: Session = Depends(get_db)):
    job = job_service.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
