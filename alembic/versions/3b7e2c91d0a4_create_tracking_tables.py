"""create tracking tables

Revision ID: 3b7e2c91d0a4
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e2c91d0a4"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID = postgresql.UUID(as_uuid=True)


def _scope_columns(primary_key: bool = False) -> list[sa.Column]:
    return [
        sa.Column(
            "tenant_id", sa.String(length=64), nullable=False, primary_key=primary_key
        ),
        sa.Column(
            "organisation_id",
            sa.String(length=64),
            nullable=False,
            primary_key=primary_key,
        ),
    ]


def upgrade() -> None:
    # Content and enrollment tables are normally owned by the content and
    # enrollment services; created here so a standalone database works.
    op.create_table(
        "courses",
        sa.Column("id", _UUID, primary_key=True),
        *_scope_columns(),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column(
            "prerequisites",
            postgresql.ARRAY(_UUID),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("cohort_id", _UUID, nullable=True),
    )
    op.create_index("ix_courses_cohort_id", "courses", ["cohort_id"])

    op.create_table(
        "modules",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        *_scope_columns(),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("parent_id", _UUID, sa.ForeignKey("modules.id"), nullable=True),
        sa.Column("ordering", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_modules_course_id", "modules", ["course_id"])

    op.create_table(
        "lessons",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("module_id", _UUID, sa.ForeignKey("modules.id"), nullable=False),
        *_scope_columns(),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("format", sa.String(length=32), nullable=False),
        sa.Column("sub_format", sa.String(length=32), nullable=True),
        sa.Column(
            "grade_method",
            sa.String(length=32),
            nullable=False,
            server_default="last_attempt",
        ),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "allow_resubmission", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column("resume", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column(
            "consider_for_passing",
            sa.Boolean(),
            nullable=False,
            server_default="true",
        ),
        sa.Column("passing_marks", sa.Integer(), nullable=True),
        sa.Column("total_marks", sa.Integer(), nullable=True),
        sa.Column(
            "prerequisites",
            postgresql.ARRAY(_UUID),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("parent_id", _UUID, sa.ForeignKey("lessons.id"), nullable=True),
        sa.Column("source_key", sa.String(length=255), nullable=True),
        sa.Column("ordering", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_lessons_course_id", "lessons", ["course_id"])
    op.create_index("ix_lessons_module_id", "lessons", ["module_id"])
    op.create_index("ix_lessons_source_key", "lessons", ["source_key"])

    op.create_table(
        "user_enrollments",
        *_scope_columns(primary_key=True),
        sa.Column("user_id", _UUID, primary_key=True),
        sa.Column(
            "course_id", _UUID, sa.ForeignKey("courses.id"), primary_key=True
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("enrolled_at", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "lesson_tracks",
        sa.Column("id", _UUID, primary_key=True),
        *_scope_columns(),
        sa.Column("user_id", _UUID, nullable=False),
        sa.Column("lesson_id", _UUID, sa.ForeignKey("lessons.id"), nullable=False),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "completion_percentage", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("time_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "current_position", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("total_content", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_datetime", sa.Integer(), nullable=False),
        sa.Column("end_datetime", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.Integer(), nullable=False),
        sa.Column(
            "params",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.UniqueConstraint(
            "tenant_id",
            "organisation_id",
            "user_id",
            "lesson_id",
            "attempt",
            name="uq_lesson_tracks_attempt",
        ),
    )
    op.create_index(
        "ix_lesson_tracks_user_course", "lesson_tracks", ["user_id", "course_id"]
    )

    op.create_table(
        "module_tracks",
        *_scope_columns(primary_key=True),
        sa.Column("user_id", _UUID, primary_key=True),
        sa.Column(
            "module_id", _UUID, sa.ForeignKey("modules.id"), primary_key=True
        ),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column(
            "completed_lessons", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("total_lessons", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "course_tracks",
        *_scope_columns(primary_key=True),
        sa.Column("user_id", _UUID, primary_key=True),
        sa.Column(
            "course_id", _UUID, sa.ForeignKey("courses.id"), primary_key=True
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column(
            "completed_lessons", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("no_of_lessons", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_datetime", sa.Integer(), nullable=False),
        sa.Column("end_datetime", sa.Integer(), nullable=True),
        sa.Column("last_accessed_date", sa.Integer(), nullable=True),
        sa.Column(
            "certificate_issued", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column("cert_gen_date", sa.Integer(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("course_tracks")
    op.drop_table("module_tracks")
    op.drop_index("ix_lesson_tracks_user_course", table_name="lesson_tracks")
    op.drop_table("lesson_tracks")
    op.drop_table("user_enrollments")
    op.drop_index("ix_lessons_source_key", table_name="lessons")
    op.drop_index("ix_lessons_module_id", table_name="lessons")
    op.drop_index("ix_lessons_course_id", table_name="lessons")
    op.drop_table("lessons")
    op.drop_index("ix_modules_course_id", table_name="modules")
    op.drop_table("modules")
    op.drop_index("ix_courses_cohort_id", table_name="courses")
    op.drop_table("courses")
