from __future__ import annotations

from pathlib import Path
import sys
import pandas as pd

from csv_parse_helpers import parse_availability_weekly, split_pipe

# data definitions
TEACHERS_COLUMNS = ["teacher_id", "full_name", "slack_user_id", "availability_weekly"]
STUDENTS_COLUMNS = ["student_id", "first_name", "last_name", "guardian_id"]
GUARDIANS_COLUMNS = ["guardian_id", "full_name", "email", "slack_user_id"]
LESSONS_COLUMNS = [
    "lesson_id",
    "title",
    "teacher_id",
    "location_id",
    "start_at",
    "end_at",
    "status",
    "student_ids",
]
CLOSURES_COLUMNS = ["org_id", "date", "reason"]
TIME_OFF_COLUMNS = ["teacher_id", "start_at", "end_at"]

ALLOWED_LESSON_STATUS = {"scheduled", "completed", "cancelled"}


def fail(msg: str) -> None:
    raise ValueError(msg)


def read_csv_or_fail(path: Path) -> pd.DataFrame:
    if not path.exists():
        fail(f"File not found: {path}")
    try:
        return pd.read_csv(path, dtype=str).fillna("")
    except Exception as e:
        fail(f"Could not read CSV '{path}': {e}")


def read_csv_optional(path: Path, columns: list[str]) -> pd.DataFrame:
    # closures / time off are optional files
    if not path.exists():
        return pd.DataFrame(columns=columns, dtype=str)
    return read_csv_or_fail(path)


def require_columns(df: pd.DataFrame, required: list[str], name: str) -> None:
    missing = [c for c in required if c not in df.columns]
    extra = [c for c in df.columns if c not in required]
    if missing:
        fail(f"{name}: missing required columns: {missing}")
    if extra:
        fail(f"{name}: unexpected extra columns: {extra}")


# checks to see if there's blank or duplicate values
def require_unique_nonempty(df: pd.DataFrame, col: str, name: str) -> None:
    if (df[col].str.strip() == "").any():
        bad = df.index[df[col].str.strip() == ""].tolist()[:10]
        fail(f"{name}: '{col}' contains blank values: {bad}")

    dupes = df[col][df[col].duplicated()].unique().tolist()
    if dupes:
        fail(f"{name}: '{col}' has duplicate values: {dupes}")


def require_known_refs(
    df: pd.DataFrame, col: str, known: set[str], name: str, target: str
) -> None:
    bad_ref = (
        df.loc[(df[col].str.strip() != "") & (~df[col].isin(known)), col]
        .unique()
        .tolist()
    )
    if bad_ref:
        fail(f"{name}: {col} references unknown {target}(s): {bad_ref}")


def require_datetime_range(df: pd.DataFrame, name: str) -> None:
    # RFC3339 keeps instants unambiguous across systems
    try:
        start = pd.to_datetime(df["start_at"], utc=True)
        end = pd.to_datetime(df["end_at"], utc=True)
    except Exception as e:
        fail(f"{name}: start_at/end_at must be parseable RFC3339 datetimes: {e}")

    if not (end > start).all():
        bad = df.index[~(end > start)].tolist()
        fail(f"{name}: end_at must be after start_at (bad row idx): {bad[:10]}")


def validate_teachers(df: pd.DataFrame) -> None:
    require_columns(df, TEACHERS_COLUMNS, "teachers")
    require_unique_nonempty(df, "teacher_id", "teachers")

    bad_rows = []
    for i, s in enumerate(df["availability_weekly"].tolist()):
        try:
            parse_availability_weekly(s)
        except ValueError as e:
            bad_rows.append((i, str(e)))
    if bad_rows:
        fail(f"teachers: invalid availability_weekly. Examples: {bad_rows[:5]}")


def validate_guardians(df: pd.DataFrame) -> None:
    require_columns(df, GUARDIANS_COLUMNS, "guardians")
    require_unique_nonempty(df, "guardian_id", "guardians")


def validate_students(df: pd.DataFrame, guardians_df: pd.DataFrame) -> None:
    require_columns(df, STUDENTS_COLUMNS, "students")
    require_unique_nonempty(df, "student_id", "students")
    require_known_refs(
        df, "guardian_id", set(guardians_df["guardian_id"].tolist()), "students", "guardian_id"
    )


def validate_lessons(
    df: pd.DataFrame, teachers_df: pd.DataFrame, students_df: pd.DataFrame
) -> None:
    require_columns(df, LESSONS_COLUMNS, "lessons")
    require_unique_nonempty(df, "lesson_id", "lessons")

    bad_status = (
        df.loc[~df["status"].isin(ALLOWED_LESSON_STATUS), "status"].unique().tolist()
    )
    if bad_status:
        fail(
            f"lessons: invalid status values: {bad_status} (allowed: {sorted(ALLOWED_LESSON_STATUS)})"
        )

    require_datetime_range(df, "lessons")
    require_known_refs(
        df, "teacher_id", set(teachers_df["teacher_id"].tolist()), "lessons", "teacher_id"
    )

    known_students = set(students_df["student_id"].tolist())
    bad_students = sorted(
        {
            sid
            for s in df["student_ids"].tolist()
            for sid in split_pipe(s)
            if sid not in known_students
        }
    )
    if bad_students:
        fail(f"lessons: student_ids references unknown student_id(s): {bad_students[:10]}")


def validate_closures(df: pd.DataFrame) -> None:
    require_columns(df, CLOSURES_COLUMNS, "closures")
    try:
        pd.to_datetime(df["date"], format="%Y-%m-%d")
    except Exception as e:
        fail(f"closures: date must be YYYY-MM-DD: {e}")


def validate_time_off(df: pd.DataFrame, teachers_df: pd.DataFrame) -> None:
    require_columns(df, TIME_OFF_COLUMNS, "time_off")
    require_datetime_range(df, "time_off")
    require_known_refs(
        df, "teacher_id", set(teachers_df["teacher_id"].tolist()), "time_off", "teacher_id"
    )


def main() -> None:
    from csv_loader import load_validated_frames

    frames = load_validated_frames(Path("assets"))

    print("\nCSVs loaded and validated\n")
    for name, df in frames.items():
        print(f"{name}: {len(df)} rows")


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        print(f"\nVALIDATION ERROR: {e}\n", file=sys.stderr)
        sys.exit(1)
