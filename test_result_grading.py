import math

import pytest

import result_grading as g


def _record(record_id, a1, a2, ca, exam, **extra):
    record = {"id": record_id, "assessment1": a1, "assessment2": a2, "ca_test": ca, "exam_score": exam}
    record.update(extra)
    return record


@pytest.mark.parametrize(
    "total,grade",
    [
        (100, "A1"),
        (75, "A1"),
        (74.9, "B2"),
        (70, "B2"),
        (65, "B3"),
        (60, "C4"),
        (55, "C5"),
        (50, "C6"),
        (45, "D7"),
        (40, "E8"),
        (39.9, "F9"),
        (0, "F9"),
    ],
)
def test_derive_grade_band_lower_bounds_are_inclusive(total, grade):
    assert g.derive_grade(total) == grade


def test_equal_totals_always_get_equal_grades():
    assert g.derive_grade(91) == g.derive_grade(91.0) == "A1"


def test_grade_to_remark_known_and_unknown():
    assert g.grade_to_remark("A1") == "Excellent"
    assert g.grade_to_remark("C5") == "Credit"
    assert g.grade_to_remark("E8") == "Pass"
    assert g.grade_to_remark("F9") == "Fail"
    assert g.grade_to_remark("Z0") == "Unknown"


def test_grade_ranges_cover_zero_to_hundred_without_gaps():
    ranges = g.grade_ranges()
    assert ranges[0] == ("A1", "75-100", "Excellent")
    assert ranges[1] == ("B2", "70-74", "Very Good")
    assert ranges[-1] == ("F9", "0-39", "Fail")
    assert [r[0] for r in ranges] == list(g.GRADES)


def test_as_score_accepts_numbers_and_numeric_strings_only():
    assert g.as_score(12) == 12.0
    assert g.as_score("7.5") == 7.5
    assert g.as_score(None) is None
    assert g.as_score(True) is None
    assert g.as_score("abc") is None
    assert g.as_score(float("nan")) is None
    assert g.as_score(float("inf")) is None


def test_validate_scores_names_the_field_out_of_range():
    errors = g.validate_scores({"assessment1": 16})
    assert len(errors) == 1
    assert "Assessment 1" in errors[0]
    assert g.validate_scores({"assessment1": 15}) == []


def test_validate_scores_rejects_non_numeric_and_negative():
    errors = g.validate_scores({"exam_score": "abc", "ca_test": -1, "assessment2": 10})
    assert "Exam Score must be a number" in errors
    assert "CA Test must be between 0 and 10" in errors
    assert len(errors) == 2


def test_validate_scores_ignores_missing_fields():
    assert g.validate_scores({}) == []
    assert g.validate_scores({"remark": "Good"}) == []


def test_validate_attendance():
    assert g.validate_attendance({"days_present": 85, "days_school_opened": 90}) == []
    assert g.validate_attendance({"days_present": 91, "days_school_opened": 90}) == [
        "Days present cannot exceed days school opened"
    ]
    assert g.validate_attendance({"days_present": 2.5}) == ["Days present must be a whole number of days"]
    assert g.validate_attendance({"days_school_opened": -1}) == [
        "Days school opened must be a whole number of days"
    ]


def test_finalize_record_recomputes_total_and_grade():
    record = _record(1, "14", 13, 9, 55, total_score=12, grade="F9")
    g.finalize_record(record)
    assert record["assessment1"] == 14
    assert record["total_score"] == 91
    assert record["grade"] == "A1"
    assert g.grade_to_remark(record["grade"]) == "Excellent"


def test_finalize_record_missing_components_count_as_zero():
    record = {"exam_score": 30}
    g.finalize_record(record)
    assert record["total_score"] == 30
    assert record["grade"] == "F9"


def test_record_total_prefers_components_over_stored_total():
    assert g.record_total(_record(1, 10, 10, 5, 30, total_score=99)) == 55
    assert g.record_total({"total_score": 72}) == 72
    assert g.record_total({"total": 64}) == 64
    assert g.record_total({}) == 0


def test_compute_aggregate_example():
    aggregate = g.compute_aggregate([{"total_score": 91}, {"total_score": 79}, {"total_score": 94}])
    assert aggregate == {"total_score": 264, "average": 88.0, "subjects_passed": 3}


def test_compute_aggregate_empty_and_failing_subjects():
    assert g.compute_aggregate([]) == {"total_score": 0, "average": 0, "subjects_passed": 0}
    aggregate = g.compute_aggregate([{"total": 39}, {"total": 40}, {"total": 52}])
    assert aggregate["subjects_passed"] == 2
    assert aggregate["average"] == 43.7


def test_bulk_add_fails_only_the_record_that_leaves_range():
    records = [_record(1, 10, 10, 5, 58), _record(2, 10, 10, 5, 50)]
    updated, failures = g.apply_bulk_operation(records, {"exam_score": 5}, "add")

    assert failures == [{"id": 1, "errors": ["Exam Score must be between 0 and 60"]}]
    assert len(updated) == 1
    assert updated[0]["id"] == 2
    assert updated[0]["exam_score"] == 55
    assert updated[0]["total_score"] == 80
    assert updated[0]["grade"] == "A1"
    assert records[0]["exam_score"] == 58
    assert records[1]["exam_score"] == 50


def test_bulk_subtract_below_zero_fails():
    updated, failures = g.apply_bulk_operation([_record(7, 2, 10, 5, 40)], {"assessment1": 3}, "subtract")
    assert updated == []
    assert failures[0]["id"] == 7
    assert "Assessment 1 must be between 0 and 15" in failures[0]["errors"]


def test_bulk_set_scores_and_text_fields():
    updated, failures = g.apply_bulk_operation(
        [_record(1, 1, 1, 1, 1), _record(2, 2, 2, 2, 2)],
        {"ca_test": 8, "teacher_comment": "Keep it up"},
        "set",
    )
    assert failures == []
    assert [r["ca_test"] for r in updated] == [8, 8]
    assert all(r["teacher_comment"] == "Keep it up" for r in updated)
    assert updated[0]["total_score"] == 11


def test_bulk_rejects_unknown_operation_and_fields():
    with pytest.raises(ValueError):
        g.apply_bulk_operation([], {"exam_score": 1}, "multiply")
    with pytest.raises(ValueError):
        g.apply_bulk_operation([], {"grade": "A1"}, "set")
    with pytest.raises(ValueError):
        g.apply_bulk_operation([], {"exam_score": "lots"}, "add")


def test_rank_cohort_ties_share_position_and_next_skips():
    records = [{"id": 3, "total_score": 80}, {"id": 1, "total_score": 91}, {"id": 2, "total_score": 91}]
    assert g.rank_cohort(records) == {1: 1, 2: 1, 3: 3}


def test_rank_cohort_positions_are_one_based_and_ordered():
    records = [_record(i, 5, 5, 5, exam) for i, exam in enumerate([10, 40, 25, 55], 1)]
    positions = g.rank_cohort(records)
    assert sorted(positions.values()) == [1, 2, 3, 4]
    assert positions[4] == 1
    assert positions[1] == 4


def test_highest_in_class():
    assert g.highest_in_class([{"total_score": 50}, {"total_score": 88}]) == 88
    assert g.highest_in_class([]) == 0


def test_build_class_statistics_invariants():
    records = [{"total_score": 91}, {"total_score": 72}, {"total_score": 35}]
    stats = g.build_class_statistics(records)

    assert stats["a1_count"] == 1
    assert stats["b2_count"] == 1
    assert stats["f9_count"] == 1
    assert stats["total_students"] == 3
    assert sum(stats[f"{grade.lower()}_count"] for grade in g.GRADES) == stats["total_students"]
    assert stats["highest_score"] == 91
    assert stats["lowest_score"] == 35
    assert stats["lowest_score"] <= stats["average_score"] <= stats["highest_score"]
    assert stats["average_score"] == pytest.approx(66.0)
    assert stats["calculated_at"] is not None


def test_build_class_statistics_empty_cohort():
    stats = g.build_class_statistics([])
    assert stats["total_students"] == 0
    assert stats["average_score"] == 0
    assert stats["highest_score"] == 0
    assert stats["lowest_score"] == 0


def test_pass_rate_and_breakdowns():
    stats = g.build_class_statistics([{"total_score": 91}, {"total_score": 72}, {"total_score": 35}])
    assert g.pass_rate(stats) == pytest.approx(200 / 3)

    distribution = {d["grade"]: d for d in g.grade_distribution(stats)}
    assert distribution["A1"]["count"] == 1
    assert distribution["C4"]["percentage"] == 0.0
    assert math.isclose(sum(d["percentage"] for d in distribution.values()), 100.0)

    breakdown = {b["label"]: b["count"] for b in g.performance_breakdown(stats)}
    assert breakdown == {"Excellent": 1, "Very Good": 1, "Good": 0, "Needs Improvement": 0, "Fail": 1}
    assert g.pass_rate({"total_students": 0}) == 0.0


def test_single_record_end_to_end():
    record = g.finalize_record(_record(1, 14, 13, 9, 55, subject_name="Mathematics", **{"class": "JSS1"}))
    assert record["total_score"] == 91
    assert record["grade"] == "A1"
    assert g.grade_to_remark(record["grade"]) == "Excellent"

    aggregate = g.compute_aggregate([record])
    assert aggregate["average"] == 91.0

    stats = g.build_class_statistics([record])
    assert g.pass_rate(stats) == 100.0
    assert g.rank_cohort([record]) == {1: 1}


def test_group_by_cohort_splits_on_subject_class_session_term():
    records = [
        {"id": 1, "subject_name": "Maths", "class": "JSS1", "session": "2025/2026", "term": "First Term"},
        {"id": 2, "subject_name": "Maths", "class": "JSS1", "session": "2025/2026", "term": "First Term"},
        {"id": 3, "subject_name": "Maths", "class": "JSS2", "session": "2025/2026", "term": "First Term"},
    ]
    groups = g.group_by_cohort(records)
    assert len(groups) == 2
    assert [r["id"] for r in groups[("Maths", "JSS1", "2025/2026", "First Term")]] == [1, 2]
    assert g.cohort_key(records[2]) == ("Maths", "JSS2", "2025/2026", "First Term")


@pytest.mark.parametrize(
    "components,total,grade",
    [
        ((7.4, 15.0, 9.7, 7.9), 40, "E8"),
        ((4.1, 13.2, 0.4, 32.3), 50, "C6"),
        ((10.1, 10.2, 5.3, 44.4), 70, "B2"),
    ],
)
def test_fractional_components_land_on_band_edges(components, total, grade):
    record = g.finalize_record(_record(1, *components))
    assert record["total_score"] == total
    assert record["grade"] == grade
    assert g.compute_aggregate([record])["subjects_passed"] == 1


def test_class_average_stays_within_extremes_for_equal_fractional_totals():
    stats = g.build_class_statistics([{"total_score": 25.1}] * 3)
    assert stats["lowest_score"] <= stats["average_score"] <= stats["highest_score"]
    assert stats["average_score"] == 25.1


def test_bulk_add_fractional_delta_is_rounded():
    updated, failures = g.apply_bulk_operation([_record(1, 14.1, 10, 5, 40)], {"assessment1": 0.2}, "add")
    assert failures == []
    assert updated[0]["assessment1"] == 14.3
    assert updated[0]["total_score"] == 69.3
