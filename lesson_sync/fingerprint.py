from __future__ import annotations

import hashlib
from typing import Iterable

from .models import Lesson
from .utils import format_time


def hash_source(parts: Iterable[str]) -> str:
    hasher = hashlib.md5()
    hasher.update("|".join(parts).encode("utf-8"))
    return hasher.hexdigest()


def key_fields(lesson: Lesson) -> list[str]:
    """Fields whose change means the participants must hear about it."""
    return [
        lesson.date.isoformat(),
        format_time(lesson.start.hour, lesson.start.minute),
        format_time(lesson.end.hour, lesson.end.minute),
        lesson.title,
        lesson.teacher_name,
        lesson.teacher_email,
        lesson.student_name,
        lesson.student_email,
    ]


def compute_fingerprint(lesson: Lesson) -> str:
    return hash_source(key_fields(lesson))
