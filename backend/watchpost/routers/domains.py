"""Domain expiry API endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..models import Domain
from ..schemas.domain import DomainCreate, DomainUpdate, DomainResponse
from ..schemas.queue import QueueActionResponse
from ..services.scheduler import scheduler_service
from ..services.subjects import Subject, SubjectRef
from ..utils.db_utils import retry_on_lock

router = APIRouter(prefix="/api/domains", tags=["domains"])

NULLABLE_FIELDS = {"description"}


async def _get_domain_or_404(db: AsyncSession, name: str) -> Domain:
    ref = SubjectRef.domain(name)
    result = await db.execute(select(Domain).where(Domain.name == ref.key))
    domain = result.scalar_one_or_none()

    if not domain:
        raise HTTPException(status_code=404, detail="Domain not found")
    return domain


@router.get("", response_model=List[DomainResponse])
async def list_domains(db: AsyncSession = Depends(get_db)):
    """List all watched domains."""
    result = await db.execute(select(Domain).order_by(Domain.name))
    return result.scalars().all()


@router.get("/expiring", response_model=List[DomainResponse])
async def list_expiring_domains(
    days: Optional[int] = Query(default=None, ge=0, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Domains already expired or expiring within the given number of days, soonest first."""
    threshold = days if days is not None else settings.expiry_alert_days
    result = await db.execute(
        select(Domain)
        .where(
            Domain.is_active.is_(True),
            Domain.last_days_until_expiry.is_not(None),
            Domain.last_days_until_expiry <= threshold,
        )
        .order_by(Domain.last_days_until_expiry)
    )
    return result.scalars().all()


@router.post("", response_model=DomainResponse, status_code=201)
async def create_domain(domain: DomainCreate, db: AsyncSession = Depends(get_db)):
    """Start watching a domain and schedule its expiry checks."""
    data = domain.model_dump()
    data["name"] = SubjectRef.domain(domain.name).key

    existing = await db.execute(select(Domain).where(Domain.name == data["name"]))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Domain already exists")

    db_domain = Domain(**data)
    db.add(db_domain)

    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)
    await db.refresh(db_domain)

    await scheduler_service.on_subject_created(Subject.from_domain(db_domain))
    return db_domain


@router.get("/{name}", response_model=DomainResponse)
async def get_domain(name: str, db: AsyncSession = Depends(get_db)):
    return await _get_domain_or_404(db, name)


@router.put("/{name}", response_model=DomainResponse)
async def update_domain(name: str, update: DomainUpdate, db: AsyncSession = Depends(get_db)):
    """Update a domain; interval and activation changes reschedule it."""
    domain = await _get_domain_or_404(db, name)

    changed = set()
    for field_name, value in update.model_dump(exclude_unset=True).items():
        # Only the description may be cleared with an explicit null
        if value is None and field_name not in NULLABLE_FIELDS:
            continue
        if getattr(domain, field_name) != value:
            setattr(domain, field_name, value)
            changed.add(field_name)

    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)
    await db.refresh(domain)

    if changed:
        await scheduler_service.on_subject_updated(Subject.from_domain(domain), changed)
    return domain


@router.delete("/{name}", status_code=204)
async def delete_domain(name: str, db: AsyncSession = Depends(get_db)):
    """Stop watching a domain and cancel all of its jobs."""
    domain = await _get_domain_or_404(db, name)
    ref = SubjectRef.domain(domain.name)

    await db.delete(domain)

    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)
    await scheduler_service.on_subject_deleted(ref)


@router.post("/{name}/check", response_model=QueueActionResponse, status_code=202)
async def check_domain_now(name: str, db: AsyncSession = Depends(get_db)):
    """Queue an expiry check for the domain right away."""
    domain = await _get_domain_or_404(db, name)
    job = await scheduler_service.check_subject_now(SubjectRef.domain(domain.name))
    return QueueActionResponse(success=True, message=f"Check queued for {domain.name}", job_id=job.id)
