"""
Grading and aggregation rules for student results.

Every grade, remark, pass count and class statistic in the app is derived
from the single GRADE_BANDS table below.
"""

import math
from datetime import datetime

# (lower bound, grade, remark), highest band first.
GRADE_BANDS = (
    (75, 'A1', 'Excellent'),
    (70, 'B2', 'Very Good'),
    (65, 'B3', 'Good'),
    (60, 'C4', 'Credit'),
    (55, 'C5', 'Credit'),
    (50, 'C6', 'Credit'),
    (45, 'D7', 'Pass'),
    (40, 'E8', 'Pass'),
    (0, 'F9', 'Fail'),
)
GRADES = tuple(band[1] for band in GRADE_BANDS)
PASSING_GRADES = ('A1', 'B2', 'B3', 'C4', 'C5', 'C6')
PASS_MARK = 40
TOTAL_MAX = 100

# field -> (label, max)
SCORE_FIELDS = {
    'assessment1': ('Assessment 1', 15),
    'assessment2': ('Assessment 2', 15),
    'ca_test': ('CA Test', 10),
    'exam_score': ('Exam Score', 60),
}
TEXT_FIELDS = ('remark', 'teacher_comment')
BULK_OPERATIONS = ('set', 'add', 'subtract')

PERFORMANCE_CATEGORIES = (
    ('Excellent', ('A1',)),
    ('Very Good', ('B2', 'B3')),
    ('Good', ('C4', 'C5', 'C6')),
    ('Needs Improvement', ('D7', 'E8')),
    ('Fail', ('F9',)),
)

# ==================== GRADE DERIVER ====================

def derive_grade(total):
    """Map a 0-100 total to its grade band. Lower bounds are inclusive."""
    for lower, grade, _remark in GRADE_BANDS[:-1]:
        if total >= lower:
            return grade
    return GRADE_BANDS[-1][1]

def grade_to_remark(grade):
    for _lower, band_grade, remark in GRADE_BANDS:
        if band_grade == grade:
            return remark
    return 'Unknown'

def grade_ranges():
    """Printable score range per band, e.g. ('B2', '70-74', 'Very Good')."""
    ranges = []
    upper = TOTAL_MAX
    for lower, grade, remark in GRADE_BANDS:
        ranges.append((grade, f'{lower}-{upper}', remark))
        upper = lower - 1
    return ranges

# ==================== SCORE VALIDATION ====================

def as_score(value):
    """Return value as a finite float, or None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number

def validate_scores(scores):
    """
    Check the score components present in `scores`.

    Returns a list of human readable messages; an empty list means valid.
    Missing fields are not checked, so partial edits validate on their own.
    """
    errors = []
    for field, (label, maximum) in SCORE_FIELDS.items():
        if field not in scores:
            continue
        value = as_score(scores[field])
        if value is None:
            errors.append(f'{label} must be a number')
        elif value < 0 or value > maximum:
            errors.append(f'{label} must be between 0 and {maximum}')
    return errors

def validate_attendance(values):
    """Check days_present / days_school_opened when either is supplied."""
    errors = []
    parsed = {}
    for field, label in (('days_present', 'Days present'), ('days_school_opened', 'Days school opened')):
        if field not in values:
            continue
        number = as_score(values[field])
        if number is None or number < 0 or not number.is_integer():
            errors.append(f'{label} must be a whole number of days')
        else:
            parsed[field] = number
    if len(parsed) == 2 and parsed['days_present'] > parsed['days_school_opened']:
        errors.append('Days present cannot exceed days school opened')
    return errors

# ==================== SCORE AGGREGATION ====================

def compute_total(assessment1, assessment2, ca_test, exam_score):
    """Sum of the four components, rounded to 2 dp so band edges hold for fractional scores."""
    return round(assessment1 + assessment2 + ca_test + exam_score, 2)

def record_total(record):
    """Total for a record, recomputed from components when they are present."""
    if all(field in record for field in SCORE_FIELDS):
        return compute_total(*(as_score(record[field]) or 0 for field in SCORE_FIELDS))
    for key in ('total', 'total_score'):
        value = as_score(record.get(key))
        if value is not None:
            return value
    return 0

def plain_number(value):
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value

def finalize_record(record):
    """Recompute total_score and grade from the four components, in place."""
    for field in SCORE_FIELDS:
        record[field] = plain_number(as_score(record.get(field)) or 0)
    total = compute_total(*(record[field] for field in SCORE_FIELDS))
    record['total_score'] = plain_number(total)
    record['grade'] = derive_grade(total)
    return record

def compute_aggregate(subjects):
    """Sum, 1 dp average and pass count over a student's subject totals."""
    totals = [record_total(subject) for subject in subjects]
    total_score = plain_number(round(sum(totals), 2))
    average = total_score / len(totals) if totals else 0
    return {
        'total_score': total_score,
        'average': round(average, 1),
        'subjects_passed': sum(1 for total in totals if total >= PASS_MARK),
    }

def apply_bulk_operation(records, values, operation='set'):
    """
    Apply one bulk edit to each record independently.

    `values` maps field names to a literal (set) or delta (add/subtract).
    Returns (updated_records, failures); failures lists {'id', 'errors'} for
    every record whose resulting scores leave their range. Input records are
    not modified.
    """
    if operation not in BULK_OPERATIONS:
        raise ValueError(f'Unknown bulk operation: {operation}')
    score_values = {}
    for field, raw in values.items():
        if field in SCORE_FIELDS:
            number = as_score(raw)
            if number is None:
                raise ValueError(f'{SCORE_FIELDS[field][0]} must be a number')
            score_values[field] = number
        elif field not in TEXT_FIELDS:
            raise ValueError(f'Field cannot be bulk edited: {field}')

    updated = []
    failures = []
    for record in records:
        changes = {}
        for field, number in score_values.items():
            current = as_score(record.get(field)) or 0
            if operation == 'add':
                changes[field] = plain_number(round(current + number, 2))
            elif operation == 'subtract':
                changes[field] = plain_number(round(current - number, 2))
            else:
                changes[field] = plain_number(number)
        errors = validate_scores(changes)
        if errors:
            failures.append({'id': record.get('id'), 'errors': errors})
            continue
        for field in TEXT_FIELDS:
            if field in values:
                changes[field] = values[field]
        new_record = dict(record)
        new_record.update(changes)
        updated.append(finalize_record(new_record))
    return updated, failures

# ==================== CLASS STATISTICS ====================

def cohort_key(record):
    """(subject, class, session, term) key that statistics and ranks share."""
    return (
        record.get('subject_name', ''),
        record.get('class', ''),
        record.get('session', ''),
        record.get('term', ''),
    )

def group_by_cohort(records):
    groups = {}
    for record in records:
        groups.setdefault(cohort_key(record), []).append(record)
    return groups

def build_class_statistics(records):
    """Grade counts and score extremes for one cohort."""
    totals = [record_total(record) for record in records]
    stats = {f'{grade.lower()}_count': 0 for grade in GRADES}
    for total in totals:
        stats[f'{derive_grade(total).lower()}_count'] += 1
    stats['total_students'] = len(totals)
    if totals:
        lowest, highest = min(totals), max(totals)
        # Clamped to the extremes; float division can overshoot equal totals.
        average = round(sum(totals) / len(totals), 2)
        stats['average_score'] = min(max(average, lowest), highest)
        stats['highest_score'] = highest
        stats['lowest_score'] = lowest
    else:
        stats['average_score'] = 0
        stats['highest_score'] = 0
        stats['lowest_score'] = 0
    stats['calculated_at'] = datetime.now()
    return stats

def _percent_of(count, total_students):
    if not total_students:
        return 0.0
    return count / total_students * 100

def pass_rate(statistics):
    """Percentage of the cohort graded C6 or better."""
    total_students = int(statistics.get('total_students') or 0)
    passed = sum(int(statistics.get(f'{grade.lower()}_count') or 0) for grade in PASSING_GRADES)
    return _percent_of(passed, total_students)

def grade_distribution(statistics):
    total_students = int(statistics.get('total_students') or 0)
    distribution = []
    for grade in GRADES:
        count = int(statistics.get(f'{grade.lower()}_count') or 0)
        distribution.append({
            'grade': grade,
            'count': count,
            'percentage': _percent_of(count, total_students),
        })
    return distribution

def performance_breakdown(statistics):
    """Grade counts folded into the five coarse performance categories."""
    total_students = int(statistics.get('total_students') or 0)
    breakdown = []
    for label, grades in PERFORMANCE_CATEGORIES:
        count = sum(int(statistics.get(f'{grade.lower()}_count') or 0) for grade in grades)
        breakdown.append({
            'label': label,
            'grades': list(grades),
            'count': count,
            'percentage': _percent_of(count, total_students),
        })
    return breakdown

# ==================== RANKING ====================

def rank_cohort(records):
    """
    1-based class positions by descending total, keyed by record id.

    Equal totals share the better position and the next distinct total
    skips ahead (91, 91, 80 -> 1, 1, 3).
    """
    def same_score(a, b):
        return abs(a - b) <= 1e-9

    positions = {}
    ordered = sorted(records, key=record_total, reverse=True)
    prev_score = None
    current_pos = 0
    for index, record in enumerate(ordered, 1):
        score = record_total(record)
        if prev_score is None or not same_score(score, prev_score):
            current_pos = index
        positions[record.get('id')] = current_pos
        prev_score = score
    return positions

def highest_in_class(records):
    totals = [record_total(record) for record in records]
    return max(totals) if totals else 0
