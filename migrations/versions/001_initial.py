"""Initial schema for the student results service.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables and indexes for score records, statistics and the result sheet."""

    op.execute('''CREATE TABLE IF NOT EXISTS schools (
                    id SERIAL PRIMARY KEY,
                    school_id TEXT UNIQUE NOT NULL,
                    school_name TEXT NOT NULL,
                    address TEXT,
                    phone TEXT,
                    email TEXT,
                    motto TEXT,
                    logo_url TEXT,
                    ministry TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # Users table with roles: admin, teacher, student. Students carry bio fields for the result sheet.
    op.execute('''CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    username TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'student',
                    school_id TEXT,
                    full_name TEXT,
                    email TEXT,
                    admission_number TEXT,
                    class_name TEXT,
                    gender TEXT,
                    date_of_birth TEXT,
                    passport_photo_url TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # One row per student, subject, class, session and term. total_score/grade are written by the app.
    op.execute('''CREATE TABLE IF NOT EXISTS student_results (
                    id SERIAL PRIMARY KEY,
                    school_id TEXT NOT NULL,
                    student_id TEXT NOT NULL,
                    subject_name TEXT NOT NULL,
                    teacher_id TEXT,
                    class TEXT NOT NULL,
                    session TEXT NOT NULL,
                    term TEXT NOT NULL,
                    assessment1 DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (assessment1 >= 0 AND assessment1 <= 15),
                    assessment2 DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (assessment2 >= 0 AND assessment2 <= 15),
                    ca_test DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (ca_test >= 0 AND ca_test <= 10),
                    exam_score DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (exam_score >= 0 AND exam_score <= 60),
                    total_score DOUBLE PRECISION NOT NULL DEFAULT 0,
                    grade TEXT NOT NULL DEFAULT 'F9',
                    position_in_class INTEGER,
                    highest_in_class DOUBLE PRECISION,
                    remark TEXT,
                    teacher_comment TEXT,
                    days_present INTEGER DEFAULT 0,
                    days_school_opened INTEGER DEFAULT 0,
                    last_updated_by TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(school_id, student_id, subject_name, class, session, term)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS class_statistics (
                    id SERIAL PRIMARY KEY,
                    school_id TEXT NOT NULL,
                    subject_name TEXT NOT NULL,
                    class TEXT NOT NULL,
                    session TEXT NOT NULL,
                    term TEXT NOT NULL,
                    a1_count INTEGER DEFAULT 0,
                    b2_count INTEGER DEFAULT 0,
                    b3_count INTEGER DEFAULT 0,
                    c4_count INTEGER DEFAULT 0,
                    c5_count INTEGER DEFAULT 0,
                    c6_count INTEGER DEFAULT 0,
                    d7_count INTEGER DEFAULT 0,
                    e8_count INTEGER DEFAULT 0,
                    f9_count INTEGER DEFAULT 0,
                    total_students INTEGER DEFAULT 0,
                    average_score DOUBLE PRECISION DEFAULT 0,
                    highest_score DOUBLE PRECISION DEFAULT 0,
                    lowest_score DOUBLE PRECISION DEFAULT 0,
                    calculated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(school_id, subject_name, class, session, term)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS result_history (
                    id SERIAL PRIMARY KEY,
                    school_id TEXT NOT NULL,
                    student_result_id INTEGER NOT NULL,
                    previous_values TEXT NOT NULL,
                    new_values TEXT NOT NULL,
                    changed_by TEXT,
                    changed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # domain: 'affective' or 'psychomotor'
    op.execute('''CREATE TABLE IF NOT EXISTS domain_ratings (
                    id SERIAL PRIMARY KEY,
                    school_id TEXT NOT NULL,
                    student_id TEXT NOT NULL,
                    session TEXT NOT NULL,
                    term TEXT NOT NULL,
                    domain TEXT NOT NULL,
                    label TEXT NOT NULL,
                    position INTEGER DEFAULT 0,
                    score INTEGER NOT NULL DEFAULT 0,
                    max_score INTEGER NOT NULL DEFAULT 5,
                    CHECK (score >= 0 AND score <= max_score),
                    UNIQUE(school_id, student_id, session, term, domain, label)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS result_remarks (
                    id SERIAL PRIMARY KEY,
                    school_id TEXT NOT NULL,
                    student_id TEXT NOT NULL,
                    session TEXT NOT NULL,
                    term TEXT NOT NULL,
                    form_teacher_name TEXT,
                    form_teacher_remark TEXT,
                    principal_name TEXT,
                    principal_remark TEXT,
                    next_term_begins TEXT,
                    UNIQUE(school_id, student_id, session, term)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS exam_submissions (
                    id SERIAL PRIMARY KEY,
                    school_id TEXT NOT NULL,
                    student_id TEXT NOT NULL,
                    exam_title TEXT NOT NULL,
                    subject TEXT,
                    score DOUBLE PRECISION DEFAULT 0,
                    total_marks DOUBLE PRECISION DEFAULT 0,
                    term TEXT,
                    session TEXT,
                    status TEXT DEFAULT 'submitted',
                    approved_by TEXT,
                    approved_at TIMESTAMP,
                    submitted_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('CREATE INDEX IF NOT EXISTS idx_users_username_lower ON users(LOWER(username))')
    op.execute('CREATE INDEX IF NOT EXISTS idx_users_school ON users(school_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_results_cohort ON student_results(school_id, subject_name, class, session, term)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_results_teacher ON student_results(school_id, teacher_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_results_student_term ON student_results(school_id, student_id, session, term)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_history_result ON result_history(school_id, student_result_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_domain_ratings_student ON domain_ratings(school_id, student_id, session, term)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_submissions_student ON exam_submissions(school_id, student_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_submissions_status ON exam_submissions(school_id, status)')


def downgrade() -> None:
    """Drop all tables (reverse order of creation)."""
    op.execute('DROP TABLE IF EXISTS exam_submissions CASCADE')
    op.execute('DROP TABLE IF EXISTS result_remarks CASCADE')
    op.execute('DROP TABLE IF EXISTS domain_ratings CASCADE')
    op.execute('DROP TABLE IF EXISTS result_history CASCADE')
    op.execute('DROP TABLE IF EXISTS class_statistics CASCADE')
    op.execute('DROP TABLE IF EXISTS student_results CASCADE')
    op.execute('DROP TABLE IF EXISTS users CASCADE')
    op.execute('DROP TABLE IF EXISTS schools CASCADE')
