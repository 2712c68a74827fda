from __future__ import annotations

from datetime import date
from pathlib import Path
import pandas as pd

from models import (
    AvailabilityBlock,
    Guardian,
    Lesson,
    ReferenceData,
    Student,
    Teacher,
    TimeOffBlock,
)
from csv_parse_helpers import (
    blank_to_none,
    parse_availability_weekly,
    parse_date,
    parse_rfc3339,
    split_pipe,
)
from csv_validator import (
    CLOSURES_COLUMNS,
    TIME_OFF_COLUMNS,
    read_csv_optional,
    read_csv_or_fail,
    validate_closures,
    validate_guardians,
    validate_lessons,
    validate_students,
    validate_teachers,
    validate_time_off,
)


def load_validated_frames(assets_dir: Path) -> dict[str, pd.DataFrame]:
    teachers = read_csv_or_fail(assets_dir / "teachers.csv")
    guardians = read_csv_or_fail(assets_dir / "guardians.csv")
    students = read_csv_or_fail(assets_dir / "students.csv")
    lessons = read_csv_or_fail(assets_dir / "lessons.csv")
    closures = read_csv_optional(assets_dir / "closures.csv", CLOSURES_COLUMNS)
    time_off = read_csv_optional(assets_dir / "time_off.csv", TIME_OFF_COLUMNS)

    validate_teachers(teachers)
    validate_guardians(guardians)
    validate_students(students, guardians)
    validate_lessons(lessons, teachers, students)
    validate_closures(closures)
    validate_time_off(time_off, teachers)

    return {
        "teachers": teachers,
        "guardians": guardians,
        "students": students,
        "lessons": lessons,
        "closures": closures,
        "time_off": time_off,
    }


def teachers_from_df(df: pd.DataFrame) -> dict[str, Teacher]:
    teachers_by_id: dict[str, Teacher] = {}

    for _, row in df.iterrows():
        teacher_id = row["teacher_id"].strip()
        blocks = tuple(
            AvailabilityBlock(teacher_id=teacher_id, day=day, start_time=s, end_time=e)
            for day, ranges in parse_availability_weekly(row["availability_weekly"]).items()
            for s, e in ranges
        )
        teachers_by_id[teacher_id] = Teacher(
            teacher_id=teacher_id,
            full_name=row["full_name"].strip(),
            slack_user_id=blank_to_none(row["slack_user_id"]),
            availability=blocks,
        )

    return teachers_by_id


def guardians_from_df(df: pd.DataFrame) -> dict[str, Guardian]:
    out: dict[str, Guardian] = {}
    for _, row in df.iterrows():
        guardian_id = row["guardian_id"].strip()
        out[guardian_id] = Guardian(
            guardian_id=guardian_id,
            full_name=row["full_name"].strip(),
            email=blank_to_none(row["email"]),
            slack_user_id=blank_to_none(row["slack_user_id"]),
        )
    return out


def students_from_df(df: pd.DataFrame) -> dict[str, Student]:
    out: dict[str, Student] = {}
    for _, row in df.iterrows():
        student_id = row["student_id"].strip()
        out[student_id] = Student(
            student_id=student_id,
            first_name=row["first_name"].strip(),
            last_name=row["last_name"].strip(),
            guardian_id=blank_to_none(row["guardian_id"]),
        )
    return out


def lessons_from_df(df: pd.DataFrame) -> dict[str, Lesson]:
    lessons_by_id: dict[str, Lesson] = {}

    for _, row in df.iterrows():
        lesson_id = row["lesson_id"].strip()
        lessons_by_id[lesson_id] = Lesson(
            lesson_id=lesson_id,
            title=row["title"].strip(),
            teacher_id=blank_to_none(row["teacher_id"]),
            location_id=blank_to_none(row["location_id"]),
            start_at=parse_rfc3339(row["start_at"]),
            end_at=parse_rfc3339(row["end_at"]),
            status=row["status"].strip(),  # validator enforces allowed values
            student_ids=frozenset(split_pipe(row["student_ids"])),
        )

    return lessons_by_id


def closures_from_df(df: pd.DataFrame) -> dict[str, set[date]]:
    out: dict[str, set[date]] = {}
    for _, row in df.iterrows():
        out.setdefault(row["org_id"].strip(), set()).add(parse_date(row["date"]))
    return out


def time_off_from_df(df: pd.DataFrame) -> list[TimeOffBlock]:
    return [
        TimeOffBlock(
            teacher_id=row["teacher_id"].strip(),
            start_at=parse_rfc3339(row["start_at"]),
            end_at=parse_rfc3339(row["end_at"]),
        )
        for _, row in df.iterrows()
    ]


def load_reference_data(assets_dir: Path) -> ReferenceData:
    frames = load_validated_frames(assets_dir)
    return ReferenceData(
        teachers_by_id=teachers_from_df(frames["teachers"]),
        students_by_id=students_from_df(frames["students"]),
        guardians_by_id=guardians_from_df(frames["guardians"]),
        lessons_by_id=lessons_from_df(frames["lessons"]),
        closures_by_org=closures_from_df(frames["closures"]),
        time_off=time_off_from_df(frames["time_off"]),
    )


def main() -> None:
    ref = load_reference_data(Path("assets"))

    print(f"\nLoaded {len(ref.teachers_by_id)} teachers")
    print(f"Loaded {len(ref.students_by_id)} students")
    print(f"Loaded {len(ref.lessons_by_id)} lessons\n")

    sample = next(iter(ref.teachers_by_id.values()), None)
    if sample:
        print("Sample Teacher object:")
        print(sample)


if __name__ == "__main__":
    main()
