"""
Certificates Router
Course completion certificates for the authenticated learner
"""

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import settings
from db import get_db
from models import Certificate, Course, Lesson, Module, Progress, User
from schemas.validation import CertificateRequestSchema
from utils import clock
from utils.auth_dependencies import get_current_user
from utils.error_handling import handle_database_error, log_operation_success, validate_resource_exists
from utils.social import ActivityType, record_activity
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("routes.certificates")

router = APIRouter()


def certificate_url(user: User, course: Course) -> str:
    return f"{settings.CERTIFICATE_BASE_URL.rstrip('/')}/{user.id}-{course.id}"


def course_completed(db: Session, user_id: int, course_id: int) -> bool:
    """Every lesson of the course has a completed progress row; a course without lessons counts as done"""
    lesson_ids = [
        row[0]
        for row in db.query(Lesson.id).join(Module, Lesson.module_id == Module.id).filter(Module.course_id == course_id)
    ]
    if not lesson_ids:
        return True
    completed = (
        db.query(func.count(Progress.id))
        .filter(Progress.user_id == user_id, Progress.completed.is_(True), Progress.lesson_id.in_(lesson_ids))
        .scalar()
    )
    return completed >= len(lesson_ids)


def serialize_certificate(certificate: Certificate) -> dict:
    return {
        "id": certificate.id,
        "courseId": certificate.course_id,
        "courseTitle": certificate.course.title if certificate.course else None,
        "certificateUrl": certificate.certificate_url,
        "issuedAt": certificate.issued_at.isoformat(),
    }


@router.get("", summary="List Certificates")
def list_certificates(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """The caller's certificates, newest first"""
    certificates = (
        db.query(Certificate)
        .options(joinedload(Certificate.course))
        .filter(Certificate.user_id == current_user.id)
        .order_by(Certificate.issued_at.desc(), Certificate.id.desc())
        .all()
    )
    return {"certificates": [serialize_certificate(c) for c in certificates]}


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Issue Certificate",
    responses={400: {"description": "Course not completed"}, 404: {"description": "Course not found"}},
)
def issue_certificate(
    payload: CertificateRequestSchema = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    ## Issue a Course Certificate

    Requires every lesson of the course to be completed. Requesting again
    re-issues the existing certificate with a fresh issue date.
    """
    course = db.get(Course, payload.courseId)
    validate_resource_exists(course, "Course", payload.courseId)

    if not course_completed(db, current_user.id, course.id):
        logger.info(
            "Certificate refused for incomplete course",
            category=LogCategory.BUSINESS,
            user_id=current_user.id,
            course_id=course.id,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Course not completed")

    url = certificate_url(current_user, course)
    certificate = db.query(Certificate).filter_by(user_id=current_user.id, course_id=course.id).first()
    created = certificate is None
    try:
        if created:
            certificate = Certificate(user_id=current_user.id, course_id=course.id, certificate_url=url)
            db.add(certificate)
            record_activity(
                db,
                current_user.id,
                ActivityType.COURSE_COMPLETED,
                f"Completed {course.title}",
                details={"courseId": course.id},
            )
        else:
            certificate.certificate_url = url
            certificate.issued_at = clock.utcnow()
        db.commit()
    except IntegrityError:
        # A parallel request issued it first
        db.rollback()
        created = False
        certificate = db.query(Certificate).filter_by(user_id=current_user.id, course_id=course.id).one()
    except SQLAlchemyError as e:
        db.rollback()
        handle_database_error(e, "issue certificate")

    db.refresh(certificate)
    log_operation_success(
        "issue certificate", user_id=current_user.id, course_id=course.id, extra={"created": created}
    )
    return {"certificate": serialize_certificate(certificate)}
