# schema.py
# Idempotent DDL. Pair-uniqueness lives here so duplicate inserts fail in the database,
# not in a preceding lookup.
from typing import Callable, List

SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS users (
      id              BIGSERIAL PRIMARY KEY,
      email           VARCHAR(255) NOT NULL UNIQUE,
      password        TEXT NOT NULL,
      full_name       VARCHAR(255) NOT NULL,
      role            VARCHAR(50) NOT NULL CHECK (role IN ('student', 'teacher', 'superadmin')),
      whatsapp_number VARCHAR(50),
      created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS course_categories (
      id          BIGSERIAL PRIMARY KEY,
      name        VARCHAR(255) NOT NULL UNIQUE,
      description TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS courses (
      id                  BIGSERIAL PRIMARY KEY,
      teacher_id          BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      category_id         BIGINT NOT NULL REFERENCES course_categories(id),
      title               VARCHAR(500) NOT NULL,
      slug                VARCHAR(600) NOT NULL DEFAULT '',
      description         TEXT NOT NULL,
      what_you_will_learn TEXT,
      thumbnail_url       TEXT,
      price               NUMERIC(10, 2),
      is_free             BOOLEAN NOT NULL DEFAULT FALSE,
      created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS courses_slug_idx ON courses (slug);",
    """
    CREATE TABLE IF NOT EXISTS course_lessons (
      id               BIGSERIAL PRIMARY KEY,
      course_id        BIGINT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
      title            VARCHAR(500) NOT NULL,
      video_url        TEXT NOT NULL,
      lesson_order     INTEGER NOT NULL,
      duration_minutes INTEGER,
      created_at       TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS course_lessons_course_order_idx ON course_lessons (course_id, lesson_order);",
    """
    CREATE TABLE IF NOT EXISTS enrollments (
      id              BIGSERIAL PRIMARY KEY,
      student_id      BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      course_id       BIGINT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
      purchase_status VARCHAR(50) NOT NULL DEFAULT 'pending'
                      CHECK (purchase_status IN ('pending', 'confirmed', 'free')),
      enrolled_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (student_id, course_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS lesson_progress (
      id            BIGSERIAL PRIMARY KEY,
      student_id    BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      lesson_id     BIGINT NOT NULL REFERENCES course_lessons(id) ON DELETE CASCADE,
      completed     BOOLEAN NOT NULL DEFAULT FALSE,
      last_position INTEGER NOT NULL DEFAULT 0,
      completed_at  TIMESTAMPTZ,
      updated_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (student_id, lesson_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS quizzes (
      id          BIGSERIAL PRIMARY KEY,
      lesson_id   BIGINT NOT NULL REFERENCES course_lessons(id) ON DELETE CASCADE,
      title       VARCHAR(500) NOT NULL,
      description TEXT NOT NULL,
      deadline    TIMESTAMPTZ,
      is_active   BOOLEAN NOT NULL DEFAULT TRUE,
      created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS quiz_submissions (
      id           BIGSERIAL PRIMARY KEY,
      quiz_id      BIGINT NOT NULL REFERENCES quizzes(id) ON DELETE CASCADE,
      student_id   BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      image_paths  TEXT[],
      score        INTEGER,
      feedback     TEXT,
      submitted_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      graded_at    TIMESTAMPTZ,
      UNIQUE (quiz_id, student_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS lesson_comments (
      id                BIGSERIAL PRIMARY KEY,
      lesson_id         BIGINT NOT NULL REFERENCES course_lessons(id) ON DELETE CASCADE,
      user_id           BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      content           TEXT NOT NULL,
      parent_comment_id BIGINT REFERENCES lesson_comments(id) ON DELETE CASCADE,
      created_at        TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
      id         BIGSERIAL PRIMARY KEY,
      user_id    BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      type       VARCHAR(50) NOT NULL,
      title      VARCHAR(255) NOT NULL,
      message    TEXT NOT NULL,
      related_id BIGINT,
      metadata   JSONB,
      read       BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS notifications_user_recent_idx ON notifications (user_id, created_at DESC);",
    """
    CREATE TABLE IF NOT EXISTS platform_settings (
      id         BIGSERIAL PRIMARY KEY,
      key        VARCHAR(100) NOT NULL UNIQUE,
      value      TEXT NOT NULL,
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS password_reset_tokens (
      id         BIGSERIAL PRIMARY KEY,
      user_id    BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      token      VARCHAR(255) NOT NULL UNIQUE,
      expires_at TIMESTAMPTZ NOT NULL,
      used       BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS course_reviews (
      id         BIGSERIAL PRIMARY KEY,
      course_id  BIGINT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
      student_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      rating     INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
      review     TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (course_id, student_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS course_announcements (
      id         BIGSERIAL PRIMARY KEY,
      course_id  BIGINT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
      teacher_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      title      VARCHAR(255) NOT NULL,
      content    TEXT NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
]


def ensure_schema(execute: Callable) -> None:
    for stmt in SCHEMA_STATEMENTS:
        execute(stmt, ())
