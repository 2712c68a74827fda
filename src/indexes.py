from __future__ import annotations

import sqlite3

from models import BookedInterval, Lesson
from lesson_repo import list_makeup_intervals


# given a teacher id, we need every lesson they are committed to so slot
# generation can exclude them. Cancelled lessons free the teacher.
def index_lessons_by_teacher(
    lessons_by_id: dict[str, Lesson],
) -> dict[str, list[BookedInterval]]:
    out: dict[str, list[BookedInterval]] = {}
    for lesson in lessons_by_id.values():
        if not lesson.teacher_id or lesson.status == "cancelled":
            continue
        out.setdefault(lesson.teacher_id, []).append(
            BookedInterval(
                teacher_id=lesson.teacher_id,
                start_at=lesson.start_at,
                end_at=lesson.end_at,
                lesson_id=lesson.lesson_id,
            )
        )

    for arr in out.values():
        arr.sort(key=lambda x: x.start_at)
    return out


def index_makeup_lessons_by_teacher(
    con: sqlite3.Connection,
) -> dict[str, list[BookedInterval]]:
    out: dict[str, list[BookedInterval]] = {}
    for b in list_makeup_intervals(con):
        out.setdefault(b.teacher_id, []).append(b)
    return out


def merge_busy_maps(
    regular_map: dict[str, list[BookedInterval]],
    makeup_map: dict[str, list[BookedInterval]],
) -> dict[str, list[BookedInterval]]:
    out: dict[str, list[BookedInterval]] = {}

    all_ids = set(regular_map.keys()) | set(makeup_map.keys())
    for tid in all_ids:
        merged = []
        merged.extend(regular_map.get(tid, []))
        merged.extend(makeup_map.get(tid, []))
        merged.sort(key=lambda x: x.start_at)
        out[tid] = merged

    return out
