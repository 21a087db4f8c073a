# music_portal/services/meet_and_greet_service.py
"""Trial meetings requested by prospective families through the public form."""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import NotFoundError, ValidationException
from ..core.security_utils import clean_text, generate_token, like_pattern
from ..models.shared.school import School
from ..models.tenant_specific.meet_and_greet import MeetAndGreet, MeetAndGreetStatus
from ..models.tenant_specific.teacher import Teacher
from ..utils.scheduling import utcnow
from .base_service import BaseService

logger = logging.getLogger(__name__)

OPEN_STATUSES = (
    MeetAndGreetStatus.PENDING_VERIFICATION,
    MeetAndGreetStatus.PENDING_APPROVAL,
    MeetAndGreetStatus.APPROVED,
)

TEXT_LIMITS = {
    "student_first_name": 100,
    "student_last_name": 100,
    "instrument_interest": 100,
    "contact_1_name": 200,
    "contact_1_phone": 30,
    "contact_1_relationship": 50,
    "contact_2_name": 200,
    "contact_2_phone": 30,
    "contact_2_relationship": 50,
    "additional_notes": 2000,
}


def registration_url(token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/register?token={token}"


def serialize_meet_and_greet(item: MeetAndGreet) -> Dict[str, Any]:
    teacher = item.assigned_teacher
    return {
        "id": str(item.id),
        "student_first_name": item.student_first_name,
        "student_last_name": item.student_last_name,
        "student_age": item.student_age,
        "instrument_interest": item.instrument_interest,
        "contact_1_name": item.contact_1_name,
        "contact_1_email": item.contact_1_email,
        "contact_1_phone": item.contact_1_phone,
        "contact_1_relationship": item.contact_1_relationship,
        "contact_2_name": item.contact_2_name,
        "contact_2_email": item.contact_2_email,
        "contact_2_phone": item.contact_2_phone,
        "contact_2_relationship": item.contact_2_relationship,
        "preferred_date": item.preferred_date.isoformat() if item.preferred_date else None,
        "preferred_time": item.preferred_time,
        "additional_notes": item.additional_notes,
        "status": item.status.value,
        "verified_at": item.verified_at.isoformat() if item.verified_at else None,
        "assigned_teacher_id": str(item.assigned_teacher_id) if item.assigned_teacher_id else None,
        "assigned_teacher_name": teacher.user.full_name if teacher else None,
        "scheduled_date_time": item.scheduled_date_time.isoformat() if item.scheduled_date_time else None,
        "follow_up_notes": item.follow_up_notes,
        "rejection_reason": item.rejection_reason,
        "approved_at": item.approved_at.isoformat() if item.approved_at else None,
        "created_at": item.created_at.isoformat() if item.created_at else None,
    }


class MeetAndGreetService(BaseService[MeetAndGreet]):
    resource_name = "Meet & Greet"

    def __init__(self, db: AsyncSession, school_id: Optional[UUID] = None):
        super().__init__(MeetAndGreet, db, school_id)

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    async def create_public(self, school_slug: str, data: Dict[str, Any]) -> MeetAndGreet:
        school = (await self.db.execute(
            select(School).where(School.slug == school_slug, School.is_deleted == False)  # noqa: E712
        )).scalar_one_or_none()
        if not school or not school.is_active:
            raise NotFoundError("School")

        email = data["contact_1_email"].strip().lower()
        existing = (await self.db.execute(
            select(MeetAndGreet.id).where(
                MeetAndGreet.school_id == school.id,
                func.lower(MeetAndGreet.contact_1_email) == email,
                MeetAndGreet.status.in_(OPEN_STATUSES),
                MeetAndGreet.is_deleted == False,  # noqa: E712
            )
        )).first()
        if existing:
            raise ValidationException("An active Meet & Greet request already exists for this email.")

        cleaned = {key: clean_text(data.get(key), limit) for key, limit in TEXT_LIMITS.items()}
        for key in ("student_first_name", "student_last_name", "contact_1_name", "contact_1_phone"):
            if not cleaned[key]:
                raise ValidationException(f"{key.replace('_', ' ').capitalize()} is required.")

        item = MeetAndGreet(
            school_id=school.id,
            **cleaned,
            contact_1_email=email,
            contact_2_email=(data.get("contact_2_email") or "").strip().lower() or None,
            student_age=data.get("student_age"),
            preferred_date=data.get("preferred_date"),
            preferred_time=data.get("preferred_time"),
            status=MeetAndGreetStatus.PENDING_VERIFICATION,
            verification_token=generate_token(),
        )
        self.db.add(item)
        await self.commit_or_conflict("An active Meet & Greet request already exists for this email.")

        verify_url = f"{settings.frontend_url.rstrip('/')}/meet-and-greet/verify/{item.verification_token}"
        logger.info(f"Meet & Greet {item.id} created for school {school.slug}; verification link for {email}: {verify_url}")
        return await self.get(item.id)

    async def verify(self, token: str) -> MeetAndGreet:
        item = (await self.db.execute(
            select(MeetAndGreet).where(
                MeetAndGreet.verification_token == token,
                MeetAndGreet.is_deleted == False,  # noqa: E712
            )
        )).unique().scalar_one_or_none()
        if not item or item.status != MeetAndGreetStatus.PENDING_VERIFICATION:
            raise NotFoundError("Meet & Greet", "Invalid or expired verification link.")

        item.status = MeetAndGreetStatus.PENDING_APPROVAL
        item.verified_at = utcnow()
        item.verification_token = None
        await self.db.commit()
        logger.info(f"Meet & Greet {item.id} verified; awaiting approval")
        return item

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def list_requests(
        self,
        status: Optional[MeetAndGreetStatus] = None,
        search: Optional[str] = None,
        teacher_id: Optional[UUID] = None,
    ) -> List[MeetAndGreet]:
        stmt = self._scoped(select(MeetAndGreet))
        if status:
            stmt = stmt.where(MeetAndGreet.status == status)
        if teacher_id:
            stmt = stmt.where(MeetAndGreet.assigned_teacher_id == teacher_id)
        if search:
            pattern = like_pattern(search)
            stmt = stmt.where(or_(
                MeetAndGreet.student_first_name.ilike(pattern, escape="\\"),
                MeetAndGreet.student_last_name.ilike(pattern, escape="\\"),
                MeetAndGreet.contact_1_name.ilike(pattern, escape="\\"),
                MeetAndGreet.contact_1_email.ilike(pattern, escape="\\"),
            ))
        result = await self.db.execute(stmt.order_by(MeetAndGreet.created_at.desc()))
        return result.unique().scalars().all()

    async def update_request(self, item_id: UUID, data: Dict[str, Any]) -> MeetAndGreet:
        item = await self.get_or_404(item_id)

        if "assigned_teacher_id" in data:
            teacher_id = data["assigned_teacher_id"]
            if teacher_id is not None:
                found = (await self.db.execute(
                    select(Teacher.id).where(
                        Teacher.id == teacher_id,
                        Teacher.school_id == self.school_id,
                        Teacher.is_deleted == False,  # noqa: E712
                    )
                )).first()
                if not found:
                    raise NotFoundError("Teacher")
            item.assigned_teacher_id = teacher_id
        if "scheduled_date_time" in data:
            item.scheduled_date_time = data["scheduled_date_time"]
        if "follow_up_notes" in data:
            item.follow_up_notes = clean_text(data["follow_up_notes"], 2000)

        await self.db.commit()
        logger.info(f"Updated Meet & Greet {item_id}")
        return await self.get(item_id)

    async def approve(self, item_id: UUID, approved_by_id: UUID) -> Dict[str, Any]:
        item = await self.get_or_404(item_id)
        if item.status != MeetAndGreetStatus.PENDING_APPROVAL:
            raise ValidationException("Only verified requests awaiting approval can be approved.")

        item.status = MeetAndGreetStatus.APPROVED
        item.approved_at = utcnow()
        item.approved_by_id = approved_by_id
        item.registration_token = generate_token()
        item.registration_token_expires_at = utcnow() + timedelta(days=settings.registration_token_days)
        await self.db.commit()

        url = registration_url(item.registration_token)
        logger.info(f"Meet & Greet {item.id} approved; registration link for {item.contact_1_email}: {url}")
        return {"meet_and_greet": await self.get(item_id), "registration_url": url}

    async def reject(self, item_id: UUID, reason: Optional[str] = None) -> MeetAndGreet:
        item = await self.get_or_404(item_id)
        if item.status in (MeetAndGreetStatus.CONVERTED, MeetAndGreetStatus.REJECTED):
            raise ValidationException(f"Cannot reject a request that is {item.status.value.lower()}.")
        item.status = MeetAndGreetStatus.REJECTED
        item.rejection_reason = clean_text(reason, 500)
        item.registration_token = None
        await self.db.commit()
        logger.info(f"Meet & Greet {item_id} rejected")
        return await self.get(item_id)

    async def cancel(self, item_id: UUID) -> MeetAndGreet:
        item = await self.get_or_404(item_id)
        if item.status == MeetAndGreetStatus.CONVERTED:
            raise ValidationException("Cannot cancel a request that has already been converted.")
        item.status = MeetAndGreetStatus.CANCELLED
        item.registration_token = None
        await self.db.commit()
        logger.info(f"Meet & Greet {item_id} cancelled")
        return await self.get(item_id)

    async def convert(self, item_id: UUID) -> MeetAndGreet:
        """Mark an approved request as enrolled once the family has registered"""
        item = await self.get_or_404(item_id)
        if item.status != MeetAndGreetStatus.APPROVED:
            raise ValidationException("Only approved requests can be converted.")
        item.status = MeetAndGreetStatus.CONVERTED
        item.registration_token = None
        await self.db.commit()
        logger.info(f"Meet & Greet {item_id} converted to enrollment")
        return await self.get(item_id)

    async def counts(self) -> Dict[str, int]:
        rows = (await self.db.execute(
            self._scoped(select(MeetAndGreet.status, func.count())).group_by(MeetAndGreet.status)
        )).all()
        counts = {status.value: 0 for status in MeetAndGreetStatus}
        for status, count in rows:
            counts[status.value] = count
        counts["total"] = sum(count for _, count in rows)
        return counts
