from typing import Any, Dict

import numpy as np
from scipy import stats

from fieldsurvey.analysis.crosstab import CrossTabMatrix


def contingency_array(matrix: CrossTabMatrix) -> np.ndarray:
    return np.array([[matrix.cell(r, c) for c in matrix.cols] for r in matrix.rows], dtype=float)


def cramers_v(matrix: CrossTabMatrix) -> float:
    """
    Bias-corrected Cramer's V for the association between the two cross-tab questions.

    Args:
        matrix: Output of cross_tabulate.

    Returns:
        float: Value between 0 (no association) and 1 (perfect association).
        A table with a single row or column, or a single response, gives 0.0.
    """
    table = contingency_array(matrix)
    r, k = table.shape
    n = table.sum()
    if n <= 1 or r < 2 or k < 2:
        return 0.0

    chi2 = stats.chi2_contingency(table, correction=False)[0]
    phi2 = chi2 / n

    # Bias correction
    with np.errstate(divide="ignore", invalid="ignore"):
        phi2corr = max(0.0, phi2 - ((k - 1) * (r - 1)) / (n - 1))
        rcorr = r - ((r - 1) ** 2) / (n - 1)
        kcorr = k - ((k - 1) ** 2) / (n - 1)

        denom = min((kcorr - 1), (rcorr - 1))
        if denom <= 0:
            return 0.0

        result = np.sqrt(phi2corr / denom)

    return float(result)


def association_summary(matrix: CrossTabMatrix) -> Dict[str, Any]:
    # Chi-square test plus effect size, rounded for display.
    table = contingency_array(matrix)
    r, k = table.shape
    if r < 2 or k < 2:
        return {"cramers_v": 0.0, "chi2": 0.0, "p_value": 1.0, "dof": 0, "significant": False}

    chi2, p_val, dof, _ = stats.chi2_contingency(table, correction=False)
    return {
        "cramers_v": round(cramers_v(matrix), 4),
        "chi2": round(float(chi2), 4),
        "p_value": round(float(p_val), 4),
        "dof": int(dof),
        "significant": bool(p_val < 0.05),
    }
