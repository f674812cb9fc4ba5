"""Projection of a 0-100 calculation score onto a letter grade."""

from collections.abc import Mapping

FAILING_GRADE = "F"


def grade_for_score(score: int, thresholds: Mapping[str, int]) -> str:
    """Return the grade whose minimum score is the highest one `score` reaches.

    Thresholds map grade letters to minimum scores, e.g. ``{"A": 90, "B": 80}``.
    Scores below every minimum get ``"F"``. The result never gets worse as the
    score goes up.
    """
    for grade, minimum in sorted(thresholds.items(), key=lambda item: item[1], reverse=True):
        if score >= minimum:
            return grade
    return FAILING_GRADE
