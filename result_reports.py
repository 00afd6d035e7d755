"""
CSV exports and result-sheet shaping.

Nothing here touches the database; callers hand in plain dicts loaded by
student_results.py and get back strings or nested dicts ready to render.
"""

import csv
from datetime import datetime
from io import StringIO

from result_grading import (
    PASS_MARK,
    SCORE_FIELDS,
    as_score,
    compute_aggregate,
    derive_grade,
    grade_ranges,
    grade_to_remark,
    plain_number,
    record_total,
)

CSV_MIMETYPE = 'text/csv;charset=utf-8'

RESULT_SHEET_SECTIONS = (
    'header',
    'bio',
    'subject_table',
    'stats_panel',
    'grade_key',
    'affective_domain',
    'psychomotor_domain',
    'remarks',
    'footer',
)

TEACHER_RESULTS_HEADERS = [
    'Student Name', 'Email', 'Class', 'Assessment 1', 'Assessment 2',
    'CA Test', 'Exam Score', 'Total', 'Grade', 'Position in Class',
]
STUDENT_RESULTS_HEADERS = [
    'Exam Title', 'Subject', 'Score', 'Total Marks', 'Percentage', 'Submitted At',
]
APPROVED_SUBMISSIONS_HEADERS = [
    'Student Name', 'Email', 'Class', 'Exam Title', 'Subject', 'Score', 'Total Marks',
    'Percentage', 'Term', 'Session', 'Approved By', 'Approved At',
]

# ==================== FORMATTING HELPERS ====================

def ordinal(value):
    """Return ordinal string for an integer (e.g., 1 -> 1st)."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        return str(value)
    abs_n = abs(n)
    if 10 <= (abs_n % 100) <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(abs_n % 10, 'th')
    return f"{n}{suffix}"

def format_percentage(value):
    return f"{float(value or 0):.1f}%"

def percentage_of(score, total_marks):
    """Score as a percentage of total marks; 0 when total marks is missing."""
    marks = as_score(total_marks) or 0
    if not marks:
        return 0.0
    return (as_score(score) or 0) / marks * 100

def format_timestamp(ts):
    if not ts:
        return ''
    if isinstance(ts, datetime):
        return ts.strftime('%Y-%m-%d %H:%M')
    return str(ts)

def attendance_rate(days_present, days_school_opened):
    opened = as_score(days_school_opened) or 0
    if opened <= 0:
        return 'N/A'
    return format_percentage((as_score(days_present) or 0) / opened * 100)

def score_color_class(score):
    """Three-band styling hint: good (>= 70), middle (>= 50), poor."""
    value = as_score(score) or 0
    if value >= 70:
        return 'good'
    if value >= 50:
        return 'middle'
    return 'poor'

def trait_remark(score, max_score):
    maximum = as_score(max_score) or 0
    value = as_score(score) or 0
    if value >= maximum * 0.7:
        return 'Excellent'
    if value >= maximum * 0.5:
        return 'Good'
    if value >= maximum * 0.3:
        return 'Fair'
    return 'Poor'

# ==================== CSV EXPORT ====================

def to_csv(headers, rows):
    """
    Build CSV text: a bare comma-joined header row, then one row per record
    with every field quoted and embedded quotes doubled. Rows end in '\\n'.
    """
    output = StringIO()
    output.write(','.join(headers) + '\n')
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator='\n')
    for row in rows:
        writer.writerow(['' if field is None else field for field in row])
    return output.getvalue()

def teacher_results_csv(results):
    rows = []
    for result in results:
        rows.append([
            result.get('student_name') or '',
            result.get('student_email') or '',
            result.get('class') or '',
            plain_number(result.get('assessment1') or 0),
            plain_number(result.get('assessment2') or 0),
            plain_number(result.get('ca_test') or 0),
            plain_number(result.get('exam_score') or 0),
            plain_number(result.get('total_score') or 0),
            result.get('grade') or '',
            result.get('position_in_class') or '',
        ])
    return to_csv(TEACHER_RESULTS_HEADERS, rows)

def student_submissions_csv(submissions):
    rows = []
    for sub in submissions:
        total_marks = sub.get('total_marks') or 0
        rows.append([
            sub.get('exam_title') or 'N/A',
            sub.get('subject') or 'N/A',
            plain_number(sub.get('score') or 0),
            plain_number(total_marks),
            format_percentage(percentage_of(sub.get('score'), total_marks or 100)),
            format_timestamp(sub.get('submitted_at')),
        ])
    return to_csv(STUDENT_RESULTS_HEADERS, rows)

def approved_submissions_csv(submissions):
    rows = []
    for sub in submissions:
        rows.append([
            sub.get('student_name') or '',
            sub.get('student_email') or '',
            sub.get('class') or '',
            sub.get('exam_title') or '',
            sub.get('subject') or '',
            plain_number(sub.get('score') or 0),
            plain_number(sub.get('total_marks') or 0),
            format_percentage(percentage_of(sub.get('score'), sub.get('total_marks'))),
            sub.get('term') or '',
            sub.get('session') or '',
            sub.get('approved_by_name') or 'N/A',
            format_timestamp(sub.get('approved_at')),
        ])
    return to_csv(APPROVED_SUBMISSIONS_HEADERS, rows)

def csv_filename(prefix, *parts):
    tokens = [prefix] + [str(p).strip().replace(' ', '_').replace('/', '-') for p in parts if str(p or '').strip()]
    return '-'.join(tokens) + '.csv'

# ==================== RESULT SHEET ====================

def validate_domain_ratings(entries, domain_label='Rating'):
    """Messages for ratings whose score falls outside [0, max_score]."""
    errors = []
    for entry in entries or []:
        label = entry.get('label') or domain_label
        score = as_score(entry.get('score'))
        maximum = as_score(entry.get('max_score'))
        if score is None or maximum is None:
            errors.append(f'{domain_label} "{label}" must have numeric score and max score')
        elif score < 0 or score > maximum:
            errors.append(f'{domain_label} "{label}" score must be between 0 and {maximum:g}')
    return errors

def build_subject_row(subject):
    total = record_total(subject)
    grade = derive_grade(total)
    row = {'subject': subject.get('subject_name') or subject.get('subject') or ''}
    for field in SCORE_FIELDS:
        row[field] = plain_number(subject.get(field) or 0)
    position = subject.get('position_in_class')
    row.update({
        'total': plain_number(total),
        'grade': grade,
        'remark': grade_to_remark(grade),
        'position': ordinal(position) if position else '',
        'highest': plain_number(subject.get('highest_in_class') or 0),
        'color_class': score_color_class(total),
        'failing': total < PASS_MARK,
    })
    return row

def _rating_rows(entries):
    rows = []
    for entry in entries or []:
        rows.append({
            'label': entry.get('label', ''),
            'score': entry.get('score', 0),
            'max_score': entry.get('max_score', 0),
            'remark': trait_remark(entry.get('score'), entry.get('max_score')),
        })
    return rows

def build_result_sheet(data):
    """
    Shape one student's term data into the printable result sheet.

    `data` holds school, student, subjects, affective_domain,
    psychomotor_domain, remarks, days_present and days_school_opened.
    Keys of the returned dict follow RESULT_SHEET_SECTIONS order.
    """
    school = data.get('school') or {}
    student = data.get('student') or {}
    raw_subjects = data.get('subjects') or []
    subjects = [build_subject_row(s) for s in raw_subjects]
    aggregate = compute_aggregate(raw_subjects)
    days_present = data.get('days_present') or 0
    days_school_opened = data.get('days_school_opened') or 0
    remarks = data.get('remarks') or {}

    return {
        'sections': list(RESULT_SHEET_SECTIONS),
        'header': {
            'name': school.get('name', ''),
            'address': school.get('address', ''),
            'phone': school.get('phone', ''),
            'email': school.get('email', ''),
            'motto': school.get('motto', ''),
            'logo_url': school.get('logo_url', ''),
            'ministry': school.get('ministry', ''),
        },
        'bio': {
            'full_name': student.get('full_name', ''),
            'admission_number': student.get('admission_number', ''),
            'class_name': student.get('class_name', ''),
            'gender': student.get('gender', ''),
            'date_of_birth': student.get('date_of_birth', ''),
            'number_in_class': student.get('number_in_class', 0),
            'term': student.get('term', ''),
            'session': student.get('session', ''),
            'passport_photo_url': student.get('passport_photo_url', ''),
        },
        'subject_table': subjects,
        'stats_panel': {
            'total_score': aggregate['total_score'],
            'average': f"{aggregate['average']:.1f}",
            'subjects_passed': aggregate['subjects_passed'],
            'subject_count': len(subjects),
            'days_present': days_present,
            'days_school_opened': days_school_opened,
            'attendance_rate': attendance_rate(days_present, days_school_opened),
        },
        'grade_key': [
            {'grade': grade, 'range': score_range, 'description': remark}
            for grade, score_range, remark in grade_ranges()
        ],
        'affective_domain': _rating_rows(data.get('affective_domain')),
        'psychomotor_domain': _rating_rows(data.get('psychomotor_domain')),
        'remarks': {
            'form_teacher_name': remarks.get('form_teacher_name', ''),
            'form_teacher_remark': remarks.get('form_teacher_remark', ''),
            'principal_name': remarks.get('principal_name', ''),
            'principal_remark': remarks.get('principal_remark', ''),
            'next_term_begins': remarks.get('next_term_begins', ''),
        },
        'footer': {
            'school_name': school.get('name', ''),
            'generated_at': format_timestamp(data.get('generated_at') or datetime.now()),
        },
    }
