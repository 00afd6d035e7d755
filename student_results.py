"""
Student Results Service

Flask web application serving subject score records for teachers, students
and school admins: score entry and bulk edits with grade derivation, class
statistics and positions, CSV exports and the printable result sheet.
"""

from flask import Flask, render_template, request, redirect, url_for, session, flash, jsonify, Response
from flask_wtf import FlaskForm
from flask_wtf.csrf import CSRFProtect, CSRFError
from wtforms import StringField, PasswordField, BooleanField, validators
from werkzeug.security import check_password_hash
import json
import os
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta

import psycopg2
from psycopg2.extras import DictCursor
from dotenv import load_dotenv

from result_grading import (
    SCORE_FIELDS,
    TEXT_FIELDS,
    apply_bulk_operation,
    build_class_statistics,
    cohort_key,
    finalize_record,
    grade_distribution,
    grade_to_remark,
    highest_in_class,
    pass_rate,
    performance_breakdown,
    rank_cohort,
    validate_attendance,
    validate_scores,
)
from result_reports import (
    CSV_MIMETYPE,
    approved_submissions_csv,
    build_result_sheet,
    csv_filename,
    format_percentage,
    student_submissions_csv,
    teacher_results_csv,
    validate_domain_ratings,
)
from session_context import SessionContext

load_dotenv()

app = Flask(__name__, template_folder='frontend/templates', static_folder='static')
ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        # Explicitly opt-in fallback for local/dev only.
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None


def safe_int(value, default):
    """Parse integer safely while preserving valid zero values."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


REMEMBER_ME_DAYS = max(1, safe_int(os.environ.get('REMEMBER_ME_DAYS', 30), 30))
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=REMEMBER_ME_DAYS)
RESULTS_PAGE_LIMIT = max(1, safe_int(os.environ.get('RESULTS_PAGE_LIMIT', 50), 50))
EXPORT_ROW_LIMIT = 10000

# Initialize CSRF Protection
csrf = CSRFProtect(app)

DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if not DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")

ROLES = ('admin', 'teacher', 'student')
STAFF_ROLES = ('admin', 'teacher')
UPDATABLE_FIELDS = tuple(SCORE_FIELDS) + TEXT_FIELDS + ('days_present', 'days_school_opened')
REQUIRED_CREATE_FIELDS = ('student_id', 'subject_name', 'class', 'session', 'term')

# Set up logging
logging.basicConfig(filename='app.log', level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")


class ResultStoreError(RuntimeError):
    """A database call behind a results operation failed."""


# ==================== DATABASE HELPERS ====================

def _adapt_query(query):
    return query.replace('?', '%s')

def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)

def get_db():
    """Create a PostgreSQL DB connection."""
    return psycopg2.connect(DATABASE_URL, cursor_factory=DictCursor, connect_timeout=10)

@contextmanager
def db_connection(commit=False):
    """Context manager for PostgreSQL connections; commits only on a clean exit."""
    conn = get_db()
    try:
        yield conn
        if commit:
            conn.commit()
    finally:
        conn.close()

@contextmanager
def store_operation(action):
    """Re-raise driver errors as ResultStoreError('Failed to <action>: ...')."""
    try:
        yield
    except psycopg2.Error as exc:
        logging.exception("Database error while trying to %s", action)
        raise ResultStoreError(f"Failed to {action}: {exc}") from exc

def _rows(cursor):
    return [dict(row) for row in cursor.fetchall()]

def _row(cursor):
    row = cursor.fetchone()
    return dict(row) if row else None

def _json_text(values):
    return json.dumps(values, default=str)

def _score_snapshot(record):
    snapshot = {field: record.get(field) for field in SCORE_FIELDS}
    snapshot['total_score'] = record.get('total_score')
    snapshot['grade'] = record.get('grade')
    return snapshot

# ==================== USER FUNCTIONS ====================

def get_user(username):
    with store_operation('load user'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(c, 'SELECT * FROM users WHERE LOWER(username) = LOWER(?)', ((username or '').strip(),))
            return _row(c)

# ==================== RESULT FUNCTIONS ====================

RESULT_SELECT = '''
    SELECT sr.*,
           u.full_name AS student_name,
           u.email AS student_email,
           u.admission_number,
           t.full_name AS teacher_name
    FROM student_results sr
    JOIN users u ON sr.student_id = u.username
    LEFT JOIN users t ON sr.teacher_id = t.username
'''

def load_teacher_results(school_id, filters=None, teacher_id=None, limit=None, offset=0):
    """Results for one school, optionally narrowed to a teacher and cohort filters."""
    filters = filters or {}
    query = RESULT_SELECT + ' WHERE sr.school_id = ?'
    params = [school_id]
    if teacher_id:
        query += ' AND sr.teacher_id = ?'
        params.append(teacher_id)
    for field in ('student_id', 'subject_name', 'class', 'session', 'term'):
        value = (filters.get(field) or '').strip()
        if value:
            query += f' AND sr.{field} = ?'
            params.append(value)
    search = (filters.get('student_search') or '').strip()
    if search:
        query += ' AND (u.full_name ILIKE ? OR u.email ILIKE ? OR u.username ILIKE ?)'
        params.extend([f'%{search}%'] * 3)
    query += ' ORDER BY sr.total_score DESC, u.full_name ASC LIMIT ? OFFSET ?'
    params.extend([limit or RESULTS_PAGE_LIMIT, max(0, safe_int(offset, 0))])
    with store_operation('fetch student results'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(c, query, tuple(params))
            return _rows(c)

def load_result(result_id, school_id):
    with store_operation('fetch student result'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(c, RESULT_SELECT + ' WHERE sr.id = ? AND sr.school_id = ?', (result_id, school_id))
            return _row(c)

def load_results_by_ids(result_ids, school_id):
    if not result_ids:
        return []
    with store_operation('fetch student results'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                RESULT_SELECT + ' WHERE sr.school_id = ? AND sr.id = ANY(?)',
                (school_id, list(result_ids)),
            )
            return _rows(c)

def refresh_cohort_with_cursor(c, school_id, cohort):
    """Recompute class statistics, positions and highest score for one cohort."""
    subject_name, class_name, session_name, term = cohort
    db_execute(
        c,
        '''SELECT id, assessment1, assessment2, ca_test, exam_score, total_score
           FROM student_results
           WHERE school_id = ? AND subject_name = ? AND class = ? AND session = ? AND term = ?''',
        (school_id, subject_name, class_name, session_name, term),
    )
    records = _rows(c)
    stats = build_class_statistics(records)
    positions = rank_cohort(records)
    highest = highest_in_class(records)
    for record in records:
        db_execute(
            c,
            'UPDATE student_results SET position_in_class = ?, highest_in_class = ? WHERE id = ?',
            (positions.get(record['id']), highest, record['id']),
        )
    db_execute(
        c,
        '''INSERT INTO class_statistics (
               school_id, subject_name, class, session, term,
               a1_count, b2_count, b3_count, c4_count, c5_count, c6_count, d7_count, e8_count, f9_count,
               total_students, average_score, highest_score, lowest_score, calculated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT (school_id, subject_name, class, session, term) DO UPDATE SET
               a1_count = EXCLUDED.a1_count, b2_count = EXCLUDED.b2_count, b3_count = EXCLUDED.b3_count,
               c4_count = EXCLUDED.c4_count, c5_count = EXCLUDED.c5_count, c6_count = EXCLUDED.c6_count,
               d7_count = EXCLUDED.d7_count, e8_count = EXCLUDED.e8_count, f9_count = EXCLUDED.f9_count,
               total_students = EXCLUDED.total_students, average_score = EXCLUDED.average_score,
               highest_score = EXCLUDED.highest_score, lowest_score = EXCLUDED.lowest_score,
               calculated_at = EXCLUDED.calculated_at''',
        (
            school_id, subject_name, class_name, session_name, term,
            stats['a1_count'], stats['b2_count'], stats['b3_count'], stats['c4_count'], stats['c5_count'],
            stats['c6_count'], stats['d7_count'], stats['e8_count'], stats['f9_count'],
            stats['total_students'], stats['average_score'], stats['highest_score'], stats['lowest_score'],
            stats['calculated_at'],
        ),
    )
    return stats

def recalculate_class_statistics(school_id, cohort):
    with store_operation('recalculate class statistics'):
        with db_connection(commit=True) as conn:
            stats = refresh_cohort_with_cursor(conn.cursor(), school_id, cohort)
    logging.info("Recalculated statistics for %s / %s: %s students", school_id, cohort, stats['total_students'])
    return stats

def load_class_statistics(school_id, cohort):
    subject_name, class_name, session_name, term = cohort
    with store_operation('fetch class statistics'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT * FROM class_statistics
                   WHERE school_id = ? AND subject_name = ? AND class = ? AND session = ? AND term = ?''',
                (school_id, subject_name, class_name, session_name, term),
            )
            return _row(c)

def create_result(school_id, data, created_by):
    """Insert one score record; total and grade are derived, never taken from input."""
    record = {field: data.get(field, 0) for field in SCORE_FIELDS}
    finalize_record(record)
    with store_operation('create student result'):
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''INSERT INTO student_results (
                       school_id, student_id, subject_name, teacher_id, class, session, term,
                       assessment1, assessment2, ca_test, exam_score, total_score, grade,
                       remark, teacher_comment, days_present, days_school_opened, last_updated_by)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   RETURNING *''',
                (
                    school_id, data['student_id'], data['subject_name'], data.get('teacher_id'),
                    data['class'], data['session'], data['term'],
                    record['assessment1'], record['assessment2'], record['ca_test'], record['exam_score'],
                    record['total_score'], record['grade'],
                    data.get('remark') or grade_to_remark(record['grade']),
                    data.get('teacher_comment') or '',
                    safe_int(data.get('days_present'), 0), safe_int(data.get('days_school_opened'), 0),
                    created_by,
                ),
            )
            created = _row(c)
            refresh_cohort_with_cursor(c, school_id, cohort_key(created))
            created = _reload_with_cursor(c, created['id']) or created
    logging.info("Result %s created by %s (%s, total %s)", created.get('id'), created_by, data['subject_name'], record['total_score'])
    return created

def _reload_with_cursor(c, result_id):
    db_execute(c, 'SELECT * FROM student_results WHERE id = ?', (result_id,))
    return _row(c)

def _write_result_update_with_cursor(c, school_id, current, updated, updated_by):
    db_execute(
        c,
        '''UPDATE student_results SET
               assessment1 = ?, assessment2 = ?, ca_test = ?, exam_score = ?,
               total_score = ?, grade = ?, remark = ?, teacher_comment = ?,
               days_present = ?, days_school_opened = ?, last_updated_by = ?,
               updated_at = ?
           WHERE id = ? AND school_id = ?
           RETURNING *''',
        (
            updated['assessment1'], updated['assessment2'], updated['ca_test'], updated['exam_score'],
            updated['total_score'], updated['grade'], updated.get('remark'), updated.get('teacher_comment'),
            updated.get('days_present'), updated.get('days_school_opened'), updated_by,
            datetime.now(), current['id'], school_id,
        ),
    )
    saved = _row(c)
    db_execute(
        c,
        '''INSERT INTO result_history (school_id, student_result_id, previous_values, new_values, changed_by, changed_at)
           VALUES (?, ?, ?, ?, ?, ?)''',
        (school_id, current['id'], _json_text(_score_snapshot(current)), _json_text(_score_snapshot(updated)), updated_by, datetime.now()),
    )
    return saved

def merge_result_changes(current, changes):
    updated = dict(current)
    for field in UPDATABLE_FIELDS:
        if field in changes and changes[field] is not None:
            updated[field] = changes[field]
    for field in ('days_present', 'days_school_opened'):
        updated[field] = safe_int(updated.get(field), 0)
    return finalize_record(updated)

def update_result(current, school_id, changes, updated_by):
    """Apply a validated partial update to `current` and record it in result_history."""
    updated = merge_result_changes(current, changes)
    with store_operation('update student result'):
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            saved = _write_result_update_with_cursor(c, school_id, current, updated, updated_by)
            refresh_cohort_with_cursor(c, school_id, cohort_key(current))
            saved = _reload_with_cursor(c, current['id']) or saved
    logging.info("Result %s updated by %s (total %s -> %s)", current['id'], updated_by, current.get('total_score'), updated['total_score'])
    return saved

def bulk_update_results(school_id, current_by_id, updated_records, updated_by):
    """Write every updated record in one transaction; any failure rolls back all."""
    with store_operation('bulk update student results'):
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            cohorts = set()
            for record in updated_records:
                current = current_by_id[record['id']]
                _write_result_update_with_cursor(c, school_id, current, record, updated_by)
                cohorts.add(cohort_key(current))
            for cohort in sorted(cohorts):
                refresh_cohort_with_cursor(c, school_id, cohort)
            saved = [_reload_with_cursor(c, record['id']) or record for record in updated_records]
    logging.info("Bulk update of %s results by %s", len(saved), updated_by)
    return saved

def delete_result(current, school_id):
    with store_operation('delete student result'):
        with db_connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, 'DELETE FROM result_history WHERE student_result_id = ? AND school_id = ?', (current['id'], school_id))
            db_execute(c, 'DELETE FROM student_results WHERE id = ? AND school_id = ?', (current['id'], school_id))
            refresh_cohort_with_cursor(c, school_id, cohort_key(current))
    logging.info("Result %s deleted", current['id'])

def load_teacher_subjects(school_id, teacher_id):
    with store_operation('fetch teacher subjects'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT DISTINCT subject_name, class, session, term
                   FROM student_results
                   WHERE school_id = ? AND teacher_id = ?
                   ORDER BY subject_name, class''',
                (school_id, teacher_id),
            )
            return _rows(c)

def load_result_history(result_id, school_id):
    with store_operation('fetch result history'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT h.*, u.full_name AS changed_by_name
                   FROM result_history h
                   LEFT JOIN users u ON h.changed_by = u.username
                   WHERE h.student_result_id = ? AND h.school_id = ?
                   ORDER BY h.changed_at DESC''',
                (result_id, school_id),
            )
            history = _rows(c)
    for entry in history:
        for key in ('previous_values', 'new_values'):
            if isinstance(entry.get(key), str):
                entry[key] = json.loads(entry[key] or '{}')
    return history

# ==================== RESULT SHEET FUNCTIONS ====================

def load_result_sheet_data(school_id, student_id, session_name, term):
    """Collect everything the printable sheet needs for one student and term."""
    with store_operation('load result sheet'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(c, 'SELECT * FROM schools WHERE school_id = ?', (school_id,))
            school = _row(c) or {}
            db_execute(c, 'SELECT * FROM users WHERE username = ? AND school_id = ?', (student_id, school_id))
            student = _row(c)
            if not student:
                return None
            db_execute(
                c,
                '''SELECT * FROM student_results
                   WHERE school_id = ? AND student_id = ? AND session = ? AND term = ?
                   ORDER BY subject_name''',
                (school_id, student_id, session_name, term),
            )
            subjects = _rows(c)
            db_execute(
                c,
                '''SELECT COUNT(DISTINCT student_id) AS class_size FROM student_results
                   WHERE school_id = ? AND class = ? AND session = ? AND term = ?''',
                (school_id, student.get('class_name', ''), session_name, term),
            )
            size_row = _row(c) or {}
            db_execute(
                c,
                '''SELECT domain, label, score, max_score FROM domain_ratings
                   WHERE school_id = ? AND student_id = ? AND session = ? AND term = ?
                   ORDER BY domain, position, label''',
                (school_id, student_id, session_name, term),
            )
            ratings = _rows(c)
            db_execute(
                c,
                '''SELECT * FROM result_remarks
                   WHERE school_id = ? AND student_id = ? AND session = ? AND term = ?''',
                (school_id, student_id, session_name, term),
            )
            remarks = _row(c) or {}

    # Attendance is recorded per subject row; the sheet shows the best-filled one.
    days_present = max((safe_int(s.get('days_present'), 0) for s in subjects), default=0)
    days_school_opened = max((safe_int(s.get('days_school_opened'), 0) for s in subjects), default=0)
    return {
        'school': {
            'name': school.get('school_name', ''),
            'address': school.get('address', ''),
            'phone': school.get('phone', ''),
            'email': school.get('email', ''),
            'motto': school.get('motto', ''),
            'logo_url': school.get('logo_url', ''),
            'ministry': school.get('ministry', ''),
        },
        'student': {
            'full_name': student.get('full_name', ''),
            'admission_number': student.get('admission_number', ''),
            'class_name': student.get('class_name', ''),
            'gender': student.get('gender', ''),
            'date_of_birth': student.get('date_of_birth', ''),
            'number_in_class': safe_int(size_row.get('class_size'), 0),
            'term': term,
            'session': session_name,
            'passport_photo_url': student.get('passport_photo_url', ''),
        },
        'subjects': subjects,
        'affective_domain': [r for r in ratings if r.get('domain') == 'affective'],
        'psychomotor_domain': [r for r in ratings if r.get('domain') == 'psychomotor'],
        'remarks': remarks,
        'days_present': days_present,
        'days_school_opened': days_school_opened,
    }

# ==================== SUBMISSION FUNCTIONS ====================

def load_student_submissions(school_id, student_id):
    with store_operation('fetch exam submissions'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT * FROM exam_submissions
                   WHERE school_id = ? AND student_id = ?
                   ORDER BY submitted_at DESC''',
                (school_id, student_id),
            )
            return _rows(c)

def load_approved_submissions(school_id):
    with store_operation('fetch approved submissions'):
        with db_connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT es.*, u.full_name AS student_name, u.email AS student_email,
                          u.class_name AS class, a.full_name AS approved_by_name
                   FROM exam_submissions es
                   JOIN users u ON es.student_id = u.username
                   LEFT JOIN users a ON es.approved_by = a.username
                   WHERE es.school_id = ? AND es.status = 'approved'
                   ORDER BY es.approved_at DESC''',
                (school_id,),
            )
            return _rows(c)

# ==================== REQUEST HELPERS ====================

class LoginForm(FlaskForm):
    username = StringField('Username', [validators.InputRequired(), validators.Length(max=120)])
    password = PasswordField('Password', [validators.InputRequired()])
    remember_me = BooleanField('Remember me')


def current_session():
    return SessionContext(session)

def api_error(message, status, **extra):
    payload = {'error': message}
    payload.update(extra)
    return jsonify(payload), status

def require_role(*roles):
    """Return (ctx, None) when allowed, otherwise (ctx, error response)."""
    ctx = current_session()
    if not ctx.is_authenticated:
        return ctx, api_error('Authentication required.', 401)
    if roles and ctx.role not in roles:
        return ctx, api_error(f"Access denied. {' or '.join(r.capitalize() for r in roles)} role required.", 403)
    return ctx, None

def request_payload():
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()

def request_filters():
    return {
        'subject_name': request.args.get('subject_name', ''),
        'class': request.args.get('class', ''),
        'session': request.args.get('session', ''),
        'term': request.args.get('term', ''),
        'student_search': request.args.get('student_search', ''),
    }

def can_view_result(ctx, record):
    if ctx.role == 'student':
        return record.get('student_id') == ctx.user_id
    return True

def can_edit_result(ctx, record):
    if ctx.role == 'admin':
        return True
    return ctx.role == 'teacher' and record.get('teacher_id') == ctx.user_id

def merge_attendance(current, changes):
    """Attendance pair to validate; empty when the update leaves attendance alone."""
    merged = {}
    for field in ('days_present', 'days_school_opened'):
        if field in changes:
            merged[field] = changes[field]
        elif field in current and current[field] is not None:
            merged[field] = current[field]
    if not any(field in changes for field in merged):
        return {}
    return merged

def csv_response(content, filename):
    return Response(
        content,
        content_type=CSV_MIMETYPE,
        headers={'Content-Disposition': f'attachment; filename={filename}'}
    )

def statistics_payload(stats):
    payload = dict(stats)
    rate = pass_rate(stats)
    payload['pass_rate'] = round(rate, 1)
    payload['pass_rate_display'] = format_percentage(rate)
    payload['grade_distribution'] = grade_distribution(stats)
    payload['performance_breakdown'] = performance_breakdown(stats)
    return payload

# ==================== ERROR HANDLERS ====================

@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    if request.path.startswith('/api/'):
        return api_error('Form token expired/invalid. Please retry your last action.', 400)
    flash('Your session has expired. Please login again.', 'error')
    return redirect(url_for('login'))

@app.errorhandler(ResultStoreError)
def result_store_error(error):
    return api_error(str(error), 500)

# ==================== SESSION ROUTES ====================

@app.route('/')
def home():
    ctx = current_session()
    if not ctx.is_authenticated:
        return redirect(url_for('login'))
    return render_template('index.html', ctx=ctx)

@app.route('/login', methods=['GET', 'POST'])
def login():
    form = LoginForm()
    if form.validate_on_submit():
        username = form.username.data.strip().lower()
        user = get_user(username)
        if user and user.get('role') in ROLES and check_password_hash(user['password_hash'], form.password.data):
            current_session().start(user, persist=form.remember_me.data)
            logging.info("User %s logged in (persist=%s)", user['username'], bool(form.remember_me.data))
            return redirect(url_for('home'))
        logging.warning("Failed login for %s", username)
        flash('Invalid username or password.', 'error')
    return render_template('login.html', form=form)

@app.route('/logout')
def logout():
    current_session().end()
    return redirect(url_for('login'))

# ==================== RESULT API ROUTES ====================

@app.route('/api/student-results/teacher', methods=['GET'])
def api_teacher_results():
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    limit = min(max(1, safe_int(request.args.get('limit'), RESULTS_PAGE_LIMIT)), EXPORT_ROW_LIMIT)
    results = load_teacher_results(
        ctx.school_id,
        request_filters(),
        teacher_id=ctx.user_id if ctx.role == 'teacher' else request.args.get('teacher_id', ''),
        limit=limit,
        offset=request.args.get('offset', 0),
    )
    return jsonify({'results': results, 'count': len(results)})

@app.route('/api/student-results/class/<subject>/<class_name>/<session_name>/<term>', methods=['GET'])
def api_class_results(subject, class_name, session_name, term):
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    cohort = {'subject_name': subject, 'class': class_name, 'session': session_name, 'term': term}
    results = load_teacher_results(ctx.school_id, cohort, limit=EXPORT_ROW_LIMIT)
    return jsonify({'results': results, 'count': len(results)})

@app.route('/api/student-results/student/<student_id>', methods=['GET'])
def api_student_results(student_id):
    ctx, denied = require_role(*ROLES)
    if denied:
        return denied
    if ctx.role == 'student' and student_id != ctx.user_id:
        return api_error('Access denied. Students can only view their own results.', 403)
    filters = {
        'student_id': student_id,
        'session': request.args.get('session', ''),
        'term': request.args.get('term', ''),
    }
    results = load_teacher_results(ctx.school_id, filters, limit=EXPORT_ROW_LIMIT)
    return jsonify({'results': results, 'count': len(results)})

@app.route('/api/student-results/<int:result_id>', methods=['GET'])
def api_get_result(result_id):
    ctx, denied = require_role(*ROLES)
    if denied:
        return denied
    record = load_result(result_id, ctx.school_id)
    if not record or not can_view_result(ctx, record):
        return api_error('Student result not found', 404)
    return jsonify(record)

@app.route('/api/student-results', methods=['POST'])
def api_create_result():
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    data = request_payload()
    errors = [f'{field} is required' for field in REQUIRED_CREATE_FIELDS if not str(data.get(field) or '').strip()]
    errors.extend(validate_scores(data))
    errors.extend(validate_attendance(data))
    if errors:
        logging.warning("Rejected result create by %s: %s", ctx.user_id, errors)
        return api_error('Validation failed', 400, errors=errors)
    if ctx.role == 'teacher':
        data['teacher_id'] = ctx.user_id
    created = create_result(ctx.school_id, data, ctx.user_id)
    return jsonify(created), 201

@app.route('/api/student-results/<int:result_id>', methods=['PUT'])
def api_update_result(result_id):
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    current = load_result(result_id, ctx.school_id)
    if not current:
        return api_error('Student result not found', 404)
    if not can_edit_result(ctx, current):
        return api_error('Access denied. You can only update your own subject results.', 403)
    changes = {k: v for k, v in request_payload().items() if k in UPDATABLE_FIELDS and v is not None}
    if not changes:
        return api_error('No updatable fields supplied', 400)
    errors = validate_scores(changes) + validate_attendance(merge_attendance(current, changes))
    if errors:
        logging.warning("Rejected update of result %s by %s: %s", result_id, ctx.user_id, errors)
        return api_error('Validation failed', 400, errors=errors)
    return jsonify(update_result(current, ctx.school_id, changes, ctx.user_id))

@app.route('/api/student-results/bulk-update', methods=['PUT'])
def api_bulk_update_results():
    """
    Bulk edit. Body is either {ids, values, operation} applying one
    set/add/subtract to every record, or {updates: [{id, ...fields}]}
    setting per-record values. All records are validated before anything is
    written; one failure rejects the whole batch.
    """
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    data = request_payload()
    updates = data.get('updates')
    if updates is not None:
        if not isinstance(updates, list) or not updates:
            return api_error('Updates array is required and cannot be empty', 400)
        if not all(isinstance(u, dict) and u.get('id') is not None for u in updates):
            return api_error('Every update needs an id', 400)
        ids = [u['id'] for u in updates]
    else:
        ids = data.get('ids') or []
        if not isinstance(ids, list) or not ids:
            return api_error('Select at least one result to update', 400)
        values = data.get('values') or {}
        if not isinstance(values, dict):
            return api_error('Values must be an object of field names', 400)
        values = {k: v for k, v in values.items() if v not in (None, '')}
        if not values:
            return api_error('Please enter at least one value to update', 400)

    ids = [safe_int(i, 0) for i in ids]
    if updates is not None and len(set(ids)) != len(ids):
        return api_error('Each result may appear only once in updates', 400)
    # One write and one history entry per row, first-seen order.
    ids = list(dict.fromkeys(ids))
    current_by_id = {r['id']: r for r in load_results_by_ids(ids, ctx.school_id)}
    missing = [i for i in ids if i not in current_by_id]
    if missing:
        return api_error('Student result not found', 404, missing=missing)
    if any(not can_edit_result(ctx, current_by_id[i]) for i in ids):
        return api_error('Access denied. You can only update your own subject results.', 403)

    updated, failures = [], []
    try:
        if updates is not None:
            for update in updates:
                record = current_by_id[safe_int(update.get('id'), 0)]
                fields = {k: v for k, v in update.items() if k != 'id'}
                done, failed = apply_bulk_operation([record], fields, 'set')
                updated.extend(done)
                failures.extend(failed)
        else:
            updated, failures = apply_bulk_operation(
                [current_by_id[i] for i in ids], values, data.get('operation') or 'set'
            )
    except ValueError as exc:
        return api_error(str(exc), 400)
    if failures:
        logging.warning("Rejected bulk update by %s: %s of %s records invalid", ctx.user_id, len(failures), len(ids))
        return api_error('Bulk update rejected; no results were changed', 400, failures=failures)

    saved = bulk_update_results(ctx.school_id, current_by_id, updated, ctx.user_id)
    return jsonify({
        'message': 'Bulk update completed successfully',
        'updated_count': len(saved),
        'results': saved,
    })

@app.route('/api/student-results/<int:result_id>', methods=['DELETE'])
def api_delete_result(result_id):
    ctx, denied = require_role('admin')
    if denied:
        return denied
    current = load_result(result_id, ctx.school_id)
    if not current:
        return api_error('Student result not found', 404)
    delete_result(current, ctx.school_id)
    return jsonify({'message': 'Student result deleted successfully', 'result': current})

@app.route('/api/student-results/statistics/<subject>/<class_name>/<session_name>/<term>', methods=['GET'])
def api_class_statistics(subject, class_name, session_name, term):
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    stats = load_class_statistics(ctx.school_id, (subject, class_name, session_name, term))
    if not stats:
        return api_error('Class statistics not found', 404)
    return jsonify(statistics_payload(stats))

@app.route('/api/student-results/recalculate-statistics/<subject>/<class_name>/<session_name>/<term>', methods=['POST'])
def api_recalculate_statistics(subject, class_name, session_name, term):
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    stats = recalculate_class_statistics(ctx.school_id, (subject, class_name, session_name, term))
    return jsonify({
        'message': 'Class statistics and positions recalculated successfully',
        'statistics': statistics_payload(stats),
    })

@app.route('/api/student-results/teacher-subjects', methods=['GET'])
def api_teacher_subjects():
    ctx, denied = require_role('teacher')
    if denied:
        return denied
    return jsonify(load_teacher_subjects(ctx.school_id, ctx.user_id))

@app.route('/api/student-results/history/<int:result_id>', methods=['GET'])
def api_result_history(result_id):
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    return jsonify(load_result_history(result_id, ctx.school_id))

# ==================== CSV EXPORT ROUTES ====================

@app.route('/teacher/results.csv')
def teacher_results_export():
    ctx, denied = require_role(*STAFF_ROLES)
    if denied:
        return denied
    filters = request_filters()
    results = load_teacher_results(
        ctx.school_id,
        filters,
        teacher_id=ctx.user_id if ctx.role == 'teacher' else '',
        limit=EXPORT_ROW_LIMIT,
    )
    filename = csv_filename('student-results', filters['subject_name'], filters['class'])
    return csv_response(teacher_results_csv(results), filename)

@app.route('/student/results.csv')
def student_results_export():
    ctx, denied = require_role('student')
    if denied:
        return denied
    submissions = load_student_submissions(ctx.school_id, ctx.user_id)
    filename = f"my_results_{datetime.now().strftime('%Y-%m-%d')}.csv"
    return csv_response(student_submissions_csv(submissions), filename)

@app.route('/admin/approved-submissions.csv')
def admin_approved_submissions_export():
    ctx, denied = require_role('admin')
    if denied:
        return denied
    submissions = load_approved_submissions(ctx.school_id)
    filename = f"approved-results-{datetime.now().strftime('%Y-%m-%d')}.csv"
    return csv_response(approved_submissions_csv(submissions), filename)

# ==================== RESULT SHEET ROUTES ====================

@app.route('/result-sheet/<student_id>')
def result_sheet(student_id):
    ctx, denied = require_role(*ROLES)
    if denied:
        return denied
    if ctx.role == 'student' and student_id != ctx.user_id:
        return api_error('Access denied. Students can only view their own result.', 403)
    session_name = (request.args.get('session') or '').strip()
    term = (request.args.get('term') or '').strip()
    if not session_name or not term:
        return api_error('Session and term are required', 400)

    data = load_result_sheet_data(ctx.school_id, student_id, session_name, term)
    if not data:
        return api_error('Student not found', 404)
    errors = (
        validate_domain_ratings(data['affective_domain'], 'Affective domain')
        + validate_domain_ratings(data['psychomotor_domain'], 'Psychomotor domain')
    )
    if errors:
        logging.warning("Result sheet for %s has invalid ratings: %s", student_id, errors)
        return api_error('Result sheet data is invalid', 400, errors=errors)

    sheet = build_result_sheet(data)
    if request.args.get('format') == 'json':
        return jsonify(sheet)
    return render_template('result_sheet.html', sheet=sheet)

# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', '0').strip().lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
