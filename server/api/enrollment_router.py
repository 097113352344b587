from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from server.api.deps import get_current_user, get_db, get_notifier
from server.models.user import User
from server.services import enrollment_service

router = APIRouter(prefix="/enrollments", tags=["enrollments"])


class EnrollRequest(BaseModel):
    courseId: int


@router.post("", status_code=201)
async def enroll(
    body: EnrollRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    """Enroll the caller in a free course. Paid courses go through /enroll/create-order."""
    enrollment = await enrollment_service.enroll_direct(db, notifier, user.id, body.courseId)
    return {
        "success": True,
        "message": "Successfully enrolled in course",
        "enrollment": enrollment_service.serialize_enrollment(enrollment),
    }


@router.get("")
async def my_enrollments(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    enrollments = await enrollment_service.list_enrollments(db, user.id)
    return {
        "success": True,
        "count": len(enrollments),
        "enrollments": [enrollment_service.serialize_enrollment(e) for e in enrollments],
    }
