"""
Course Router
Enrollment and sequential lesson access
"""

from fastapi import APIRouter, Depends, HTTPException, Path, status
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import Course, Enrollment, Progress, User
from db import get_db
from config import settings
from schemas.api_models import AccessResponse, EnrollmentResponse
from utils import clock
from utils.access import completed_lesson_ids, load_course_outline, resolve_unlocked_lessons
from utils.auth_dependencies import get_current_user
from utils.error_handling import handle_database_error, log_operation_success, validate_resource_exists
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("routes.courses")

router = APIRouter()


@router.get(
    "/{courseId}/access",
    response_model=AccessResponse,
    summary="Unlocked Lessons",
    description="Lessons the caller may open, computed from sequential completion",
)
def get_course_access(
    courseId: int = Path(..., gt=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    ## Unlocked Lessons

    Modules and lessons are walked in ascending order. A lesson is unlocked while
    every earlier lesson is completed, or when the lesson itself is completed.
    Nothing is persisted.
    """
    course = load_course_outline(db, courseId)
    validate_resource_exists(course, "Course", courseId)

    lesson_ids = [lesson.id for lesson in course.ordered_lessons()]
    completed = completed_lesson_ids(db, current_user.id, lesson_ids)
    unlocked = resolve_unlocked_lessons(
        course.modules, completed, reset_per_module=settings.ACCESS_RESET_PER_MODULE
    )
    return {"unlocked": unlocked}


@router.post(
    "/{courseId}/enroll",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enroll in Course",
    responses={
        400: {"description": "Enrollment limit reached"},
        404: {"description": "Course not found or not available"},
        409: {"description": "Already enrolled"},
    },
)
def enroll_in_course(
    courseId: int = Path(..., gt=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    ## Enroll in a Course

    Creates the enrollment and one not-yet-completed progress row per lesson.
    """
    course = load_course_outline(db, courseId)
    if not course or not course.is_published:
        logger.warning(f"Course not available for enrollment: {courseId}", category=LogCategory.BUSINESS)
        raise HTTPException(status_code=404, detail="Course not found or not available")

    existing = db.query(Enrollment).filter_by(user_id=current_user.id, course_id=course.id).first()
    if existing:
        raise HTTPException(status_code=409, detail="Already enrolled in this course")

    if course.enrollment_limit:
        enrolled = db.query(func.count(Enrollment.id)).filter(Enrollment.course_id == course.id).scalar()
        if enrolled >= course.enrollment_limit:
            raise HTTPException(status_code=400, detail="Course enrollment limit reached")

    try:
        enrollment = Enrollment(user_id=current_user.id, course_id=course.id, progress=0.0, enrolled_at=clock.utcnow())
        db.add(enrollment)
        db.flush()

        lessons = course.ordered_lessons()
        already_tracked = {
            row[0]
            for row in db.query(Progress.lesson_id).filter(
                Progress.user_id == current_user.id, Progress.lesson_id.in_([lesson.id for lesson in lessons])
            )
        }
        new_rows = [
            Progress(user_id=current_user.id, lesson_id=lesson.id, completed=False, time_spent=0)
            for lesson in lessons
            if lesson.id not in already_tracked
        ]
        db.add_all(new_rows)
        db.commit()
        db.refresh(enrollment)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Already enrolled in this course")
    except SQLAlchemyError as e:
        db.rollback()
        handle_database_error(e, "enroll in course")

    log_operation_success("enroll", user_id=current_user.id, course_id=course.id, extra={"lessons": len(new_rows)})
    return {
        "id": enrollment.id,
        "userId": enrollment.user_id,
        "courseId": enrollment.course_id,
        "progress": enrollment.progress,
        "enrolledAt": enrollment.enrolled_at,
        "progressRowsCreated": len(new_rows),
    }


@router.delete("/{courseId}/enroll", summary="Unenroll from Course")
def unenroll_from_course(
    courseId: int = Path(..., gt=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Remove the enrollment; progress rows are kept"""
    deleted = db.query(Enrollment).filter_by(user_id=current_user.id, course_id=courseId).delete()
    if not deleted:
        db.rollback()
        raise HTTPException(status_code=404, detail="Not enrolled in this course")
    db.commit()

    log_operation_success("unenroll", user_id=current_user.id, course_id=courseId)
    return JSONResponse(content={"message": "Successfully unenrolled"})
