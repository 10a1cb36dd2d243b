"""
Tests for core/gpa.py - credit-weighted GPA.
"""

import os
import sys
import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.gpa import calculate_gpa, calculate_gpa_details, compute_term_gpa, round_gpa
from core.grade_scales import GradeScale
from core.templates import build_template_levels


@pytest.fixture
def letter_scale():
    return GradeScale(name="Letters", scale_type="letter", levels=build_template_levels("letter"))


@pytest.fixture
def narrative_scale():
    return GradeScale(name="Narrative", scale_type="narrative", levels=build_template_levels("narrative"))


class TestCalculateGpa:

    def test_single_entry(self, letter_scale):
        assert calculate_gpa([{"percentage": 95, "credits": 1}], letter_scale) == 4.0

    def test_equal_credits_average(self, letter_scale):
        entries = [{"percentage": 95, "credits": 1}, {"percentage": 65, "credits": 1}]
        assert calculate_gpa(entries, letter_scale) == 2.5

    def test_credit_weighting(self, letter_scale):
        entries = [{"percentage": 95, "credits": 3}, {"percentage": 65, "credits": 1}]
        assert calculate_gpa(entries, letter_scale) == 3.25

    def test_missing_credits_count_as_one(self, letter_scale):
        entries = [{"percentage": 95}, {"percentage": 65, "credits": None}]
        assert calculate_gpa(entries, letter_scale) == 2.5

    def test_empty_list_is_zero(self, letter_scale):
        assert calculate_gpa([], letter_scale) == 0.0

    def test_unmatched_entry_is_skipped(self, letter_scale):
        details = calculate_gpa_details(
            [{"percentage": 95, "credits": 1}, {"percentage": 96.95, "credits": 4}],
            letter_scale,
        )
        assert details["gpa"] == 4.0
        assert details["included_entries"] == 1
        assert details["skipped_entries"] == 1
        assert details["total_credits"] == 1.0

    def test_levels_without_gpa_points_give_zero(self, narrative_scale):
        details = calculate_gpa_details([{"percentage": 50, "credits": 1}], narrative_scale)
        assert details["gpa"] == 0.0
        assert details["included_entries"] == 0

    def test_zero_credit_entries_are_skipped(self, letter_scale):
        entries = [{"percentage": 95, "credits": 0}, {"percentage": 65, "credits": 2}]
        assert calculate_gpa(entries, letter_scale) == 1.0

    def test_no_scale(self):
        assert calculate_gpa([{"percentage": 95}], None) == 0.0

    @pytest.mark.parametrize("percentages,expected", [
        ((50, 50, 50, 71), 0.43),  # F, F, F, C-: 1.7 / 4 = 0.425
        ((50, 50, 65, 88), 1.08),  # F, F, D, B+: 4.3 / 4 = 1.075
    ])
    def test_halves_round_up(self, letter_scale, percentages, expected):
        entries = [{"percentage": p, "credits": 1} for p in percentages]
        assert calculate_gpa(entries, letter_scale) == expected

    def test_gpa_stays_within_scale_bounds(self, letter_scale):
        entries = [{"percentage": p, "credits": c} for p, c in [(12, 2), (99, 5), (61, 1), (83, 3)]]
        gpa = calculate_gpa(entries, letter_scale)
        assert 0.0 <= gpa <= 4.0


class TestComputeTermGpa:

    def test_per_student_rows(self, letter_scale):
        df = pd.DataFrame({
            "student_id": ["S1", "S1", "S2", "S3"],
            "percentage_score": [95, 65, 50, np.nan],
            "credits": [3, 1, 1, 1],
        })
        result = compute_term_gpa(df, letter_scale).set_index("student_id")

        assert list(result.index) == ["S1", "S2", "S3"]
        assert result.loc["S1", "gpa"] == 3.25
        assert result.loc["S1", "included_entries"] == 2
        assert result.loc["S2", "gpa"] == 0.0
        assert result.loc["S2", "included_entries"] == 1
        assert result.loc["S3", "gpa"] == 0.0
        assert result.loc["S3", "included_entries"] == 0

    def test_missing_credits_column(self, letter_scale):
        df = pd.DataFrame({"student_id": ["S1", "S1"], "percentage_score": [95, 65]})
        result = compute_term_gpa(df, letter_scale)
        assert result.iloc[0]["gpa"] == 2.5
        assert result.iloc[0]["total_credits"] == 2.0

    def test_matches_row_by_row_calculation(self, letter_scale):
        rows = [(95, 2), (72, 3), (88, 1), (40, 4)]
        df = pd.DataFrame({
            "student_id": ["S1"] * len(rows),
            "percentage_score": [p for p, _ in rows],
            "credits": [c for _, c in rows],
        })
        expected = calculate_gpa([{"percentage": p, "credits": c} for p, c in rows], letter_scale)
        assert compute_term_gpa(df, letter_scale).iloc[0]["gpa"] == expected

    def test_empty_frame(self, letter_scale):
        result = compute_term_gpa(pd.DataFrame(), letter_scale)
        assert result.empty
        assert list(result.columns) == ["student_id", "gpa", "included_entries", "total_credits"]

    def test_rows_without_student_id_are_ignored(self, letter_scale):
        df = pd.DataFrame({
            "student_id": ["S1", None, np.nan],
            "percentage_score": [95, 70, 65],
        })
        result = compute_term_gpa(df, letter_scale)
        assert result["student_id"].tolist() == ["S1"]
        assert result.iloc[0]["gpa"] == 4.0

    def test_term_gpa_rounds_halves_up(self, letter_scale):
        df = pd.DataFrame({"student_id": ["S1"] * 4, "percentage_score": [50, 50, 50, 71]})
        assert compute_term_gpa(df, letter_scale).iloc[0]["gpa"] == 0.43


class TestRoundGpa:

    @pytest.mark.parametrize("value,expected", [
        (0.425, 0.43),
        (1.075, 1.08),
        (2.5, 2.5),
        (3.333333, 3.33),
        (0.0, 0.0),
    ])
    def test_two_places(self, value, expected):
        assert round_gpa(value) == expected

    def test_other_precision(self):
        assert round_gpa(2.6665, 3) == 2.667
