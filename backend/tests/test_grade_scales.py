"""
Tests for core/grade_scales.py - percentage lookup, passing checks, coverage gaps.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.grade_levels import GradeLevel
from core.grade_scales import (
    GradeScale,
    convert_between_scales,
    convert_from_percentage,
    convert_score,
    duplicate_scale,
    find_coverage_gaps,
    get_failing_levels,
    get_gpa_equivalent,
    get_grade_for_percentage,
    get_level_by_value,
    get_max_score,
    get_minimum_passing_score,
    get_passing_grades,
    is_passing,
    normalize_to_percentage,
    scale_thresholds,
)
from core.templates import build_template_levels


@pytest.fixture
def letter_scale():
    return GradeScale(name="Standard Letter Grades", scale_type="letter", levels=build_template_levels("letter"))


@pytest.fixture
def pass_fail_scale():
    """Two-band scale that leaves 60-70 uncovered."""
    return GradeScale(
        name="Pass/Fail",
        scale_type="letter",
        levels=[
            GradeLevel(grade_value="P", percentage_min=70.0, percentage_max=100.0, sort_order=1),
            GradeLevel(grade_value="F", percentage_min=0.0, percentage_max=59.99, is_passing=False, sort_order=2),
        ],
    )


@pytest.fixture
def points_scale():
    """Scored out of 20, pass from 10."""
    return GradeScale(
        name="Twenty",
        scale_type="points",
        levels=[
            GradeLevel(grade_value="Pass", percentage_min=10.0, percentage_max=20.0, sort_order=1),
            GradeLevel(grade_value="Fail", percentage_min=0.0, percentage_max=9.99, is_passing=False, sort_order=2),
        ],
    )


class TestGetGradeForPercentage:
    """Lookup over the letter template."""

    def test_95_is_a(self, letter_scale):
        level = get_grade_for_percentage(letter_scale, 95)
        assert level.grade_value == "A"
        assert level.gpa_points == 4.0

    def test_65_is_d(self, letter_scale):
        level = get_grade_for_percentage(letter_scale, 65)
        assert level.grade_value == "D"
        assert level.gpa_points == 1.0

    def test_boundaries_are_inclusive(self, letter_scale):
        assert get_grade_for_percentage(letter_scale, 100).grade_value == "A+"
        assert get_grade_for_percentage(letter_scale, 97).grade_value == "A+"
        assert get_grade_for_percentage(letter_scale, 90).grade_value == "A-"
        assert get_grade_for_percentage(letter_scale, 59.9).grade_value == "F"
        assert get_grade_for_percentage(letter_scale, 0).grade_value == "F"

    def test_every_tenth_of_a_percent_has_exactly_one_level(self, letter_scale):
        for i in range(1001):
            p = i / 10
            matches = [lvl for lvl in letter_scale.levels if lvl.contains(p)]
            assert len(matches) == 1, f"{p} matched {len(matches)} levels"
            level = get_grade_for_percentage(letter_scale, p)
            assert level.percentage_min <= p <= level.percentage_max

    def test_gap_between_bands_is_not_found(self, letter_scale):
        assert get_grade_for_percentage(letter_scale, 96.95) is None
        assert get_grade_for_percentage(letter_scale, 59.95) is None

    def test_outside_configured_ranges_is_not_found(self, pass_fail_scale):
        assert get_grade_for_percentage(pass_fail_scale, 65) is None
        assert get_grade_for_percentage(pass_fail_scale, 120) is None
        assert get_grade_for_percentage(pass_fail_scale, -1) is None

    def test_non_numeric_input_is_not_found(self, letter_scale):
        assert get_grade_for_percentage(letter_scale, None) is None
        assert get_grade_for_percentage(letter_scale, "abc") is None
        assert get_grade_for_percentage(letter_scale, float("nan")) is None

    def test_numeric_strings_are_accepted(self, letter_scale):
        assert get_grade_for_percentage(letter_scale, "88").grade_value == "B+"

    def test_first_match_in_sort_order_wins(self):
        scale = GradeScale(
            name="Overlapping",
            levels=[
                GradeLevel(grade_value="Second", percentage_min=50.0, percentage_max=100.0, sort_order=2),
                GradeLevel(grade_value="First", percentage_min=0.0, percentage_max=50.0, sort_order=1),
            ],
        )
        assert get_grade_for_percentage(scale, 50).grade_value == "First"

    def test_levels_without_range_never_match(self):
        scale = GradeScale(name="Standards", scale_type="standards", levels=build_template_levels("standards"))
        assert get_grade_for_percentage(scale, 80) is None
        assert get_level_by_value(scale, "3").display_value == "Meets Standards"


class TestPassingHelpers:

    def test_is_passing(self, letter_scale):
        assert is_passing(letter_scale, 60) is True
        assert is_passing(letter_scale, 40) is False

    def test_unmatched_percentage_is_not_passing(self, pass_fail_scale):
        assert is_passing(pass_fail_scale, 65) is False

    def test_passing_grades_exclude_f(self, letter_scale):
        grades = get_passing_grades(letter_scale)
        assert "F" not in grades
        assert len(grades) == 11

    def test_failing_levels(self, letter_scale, pass_fail_scale):
        assert [lvl.grade_value for lvl in get_failing_levels(letter_scale)] == ["F"]
        assert [lvl.grade_value for lvl in get_failing_levels(pass_fail_scale)] == ["F"]

    def test_minimum_passing_score(self, letter_scale, pass_fail_scale):
        assert get_minimum_passing_score(letter_scale) == 60.0
        assert get_minimum_passing_score(pass_fail_scale) == 70.0

    def test_minimum_passing_score_falls_back_to_threshold(self):
        scale = GradeScale(name="Empty")
        assert get_minimum_passing_score(scale) == scale.configuration.passing_threshold

    def test_gpa_equivalent(self, letter_scale):
        assert get_gpa_equivalent(letter_scale, 91) == 3.7
        assert get_gpa_equivalent(letter_scale, 96.95) is None


class TestConversion:

    def test_percentage_scale_echoes_value(self):
        scale = GradeScale(name="Pct", scale_type="percentage", levels=build_template_levels("percentage"))
        assert convert_from_percentage(scale, 87.456) == "87.46%"

    def test_letter_scale_returns_grade_value(self, letter_scale):
        assert convert_from_percentage(letter_scale, 84) == "B"

    def test_points_scale_rescales_onto_max_score(self, points_scale):
        assert get_max_score(points_scale) == 20.0
        assert convert_from_percentage(points_scale, 75) == "Pass"
        assert convert_from_percentage(points_scale, 25) == "Fail"


class TestScoreConversion:
    """Scores expressed on one scale, re-expressed on another."""

    def test_convert_score_in_range(self, points_scale):
        result = convert_score(points_scale, 15)
        assert result["grade"] == "Pass"
        assert result["is_passing"] is True
        assert result["scale_type"] == "points"
        assert "error" not in result

    def test_convert_score_out_of_range(self, points_scale):
        result = convert_score(points_scale, 25)
        assert result["grade"] is None
        assert result["is_passing"] is False
        assert result["error"] == "Score out of range"

    def test_normalize_percentage_and_points(self, points_scale):
        pct = GradeScale(name="Pct", scale_type="percentage")
        assert normalize_to_percentage(pct, "72") == 72.0
        assert normalize_to_percentage(points_scale, 15) == 75.0

    def test_normalize_letter_uses_level_midpoint(self, letter_scale):
        assert normalize_to_percentage(letter_scale, "B+") == pytest.approx(88.45)
        assert normalize_to_percentage(letter_scale, "Z") is None

    def test_normalize_level_without_range(self):
        scale = GradeScale(name="SBG", scale_type="standards", levels=build_template_levels("standards"))
        assert normalize_to_percentage(scale, "3") is None

    def test_points_to_letter(self, points_scale, letter_scale):
        result = convert_between_scales(15, points_scale, letter_scale)
        assert result["percentage"] == 75.0
        assert result["to_grade"] == "C"
        assert result["from_scale"] == "Twenty"

    def test_letter_to_points(self, letter_scale, points_scale):
        result = convert_between_scales("B+", letter_scale, points_scale)
        assert result["to_grade"] == "Pass"

    def test_unknown_label_converts_to_nothing(self, letter_scale, points_scale):
        result = convert_between_scales("Z", letter_scale, points_scale)
        assert result["percentage"] is None
        assert result["to_grade"] is None


class TestCoverageGaps:

    def test_pass_fail_gap(self, pass_fail_scale):
        assert find_coverage_gaps(pass_fail_scale) == [(59.99, 70.0)]

    def test_empty_scale_is_one_gap(self):
        assert find_coverage_gaps(GradeScale(name="Empty")) == [(0.0, 100.0)]

    def test_contiguous_integer_bands(self):
        scale = GradeScale(
            name="Halves",
            levels=[
                GradeLevel(grade_value="Low", percentage_min=10.0, percentage_max=50.0, sort_order=1),
                GradeLevel(grade_value="High", percentage_min=50.0, percentage_max=90.0, sort_order=2),
            ],
        )
        assert find_coverage_gaps(scale) == [(0.0, 10.0), (90.0, 100.0)]


class TestThresholdsAndDuplicate:

    def test_thresholds_follow_sort_order(self, letter_scale):
        rows = scale_thresholds(letter_scale)
        assert [r["value"] for r in rows][:3] == ["A+", "A", "A-"]
        assert rows[-1]["is_passing"] is False

    def test_duplicate_is_not_default_and_has_no_ids(self, letter_scale):
        letter_scale.is_default = True
        letter_scale.levels[0].id = 42
        copy = duplicate_scale(letter_scale, "Copy")
        assert copy.name == "Copy"
        assert copy.is_default is False
        assert all(lvl.id is None for lvl in copy.levels)
        assert letter_scale.levels[0].id == 42
        assert len(copy.levels) == len(letter_scale.levels)


class TestSerialisation:

    def test_from_dict_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            GradeScale.from_dict({"name": "Bad", "scale_type": "emoji"})

    def test_from_dict_sorts_levels(self):
        scale = GradeScale.from_dict({
            "name": "Two",
            "levels": [
                {"grade_value": "B", "percentage_min": 0, "percentage_max": 49, "sort_order": 2},
                {"grade_value": "A", "percentage_min": 50, "percentage_max": 100, "sort_order": 1},
            ],
        })
        assert [lvl.grade_value for lvl in scale.levels] == ["A", "B"]
        assert scale.to_dict()["levels"][0]["grade_value"] == "A"

    def test_from_dict_parses_flag_strings(self):
        scale = GradeScale.from_dict({
            "name": "Flags",
            "is_default": "false",
            "levels": [
                {"grade_value": "P", "percentage_min": 50, "percentage_max": 100, "is_passing": "true"},
                {"grade_value": "F", "percentage_min": 0, "percentage_max": 49, "is_passing": "false"},
                {"grade_value": "X", "is_passing": None},
            ],
        })
        assert scale.is_default is False
        passing = {lvl.grade_value: lvl.is_passing for lvl in scale.levels}
        assert passing == {"P": True, "F": False, "X": True}

    def test_from_dict_rejects_unreadable_flag(self):
        with pytest.raises(ValueError):
            GradeScale.from_dict({"name": "Bad", "is_default": "maybe"})
