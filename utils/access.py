"""
Lesson access resolution

Lessons unlock by prefix gating: a running flag starts true, a lesson is
unlocked when the flag is still set or the lesson itself is completed, and the
flag is then and-ed with the lesson's completion.
"""

from typing import Iterable, List, Set

from sqlalchemy.orm import Session, selectinload

from models import Course, Module, Progress


def _ordered(items):
    return sorted(items, key=lambda item: (item.order_index, item.id))


def resolve_unlocked_lessons(modules: Iterable, completed_lesson_ids: Set[int], reset_per_module: bool = False) -> List[int]:
    """
    Return the unlocked lesson ids in gating order.

    Args:
        modules: objects exposing ``order_index``, ``id`` and ``lessons``
        completed_lesson_ids: ids of lessons the learner has completed
        reset_per_module: restart the running flag at every module boundary
    """
    unlocked = []
    prev_completed = True

    for module in _ordered(modules):
        if reset_per_module:
            prev_completed = True
        for lesson in _ordered(module.lessons):
            is_completed = lesson.id in completed_lesson_ids
            if prev_completed or is_completed:
                unlocked.append(lesson.id)
            prev_completed = prev_completed and is_completed

    return unlocked


def load_course_outline(db: Session, course_id: int):
    """Course with modules and lessons loaded, or None"""
    return (
        db.query(Course)
        .options(selectinload(Course.modules).selectinload(Module.lessons))
        .filter(Course.id == course_id)
        .first()
    )


def completed_lesson_ids(db: Session, user_id: int, lesson_ids: Iterable[int] = None) -> Set[int]:
    query = db.query(Progress.lesson_id).filter(Progress.user_id == user_id, Progress.completed.is_(True))
    if lesson_ids is not None:
        query = query.filter(Progress.lesson_id.in_(list(lesson_ids)))
    return {row[0] for row in query.all()}
