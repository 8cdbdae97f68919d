from dataclasses import dataclass
import numpy as np


@dataclass(frozen=True)
class LinearFit:
    """
    Coefficients of a (weighted) least squares fit.

    Attributes:
    - coefficients (np.array): Estimates, intercept first when one was fitted.
    - standard_errors (np.array): Standard errors scaled by the residual variance.
    - residuals (np.array): Unweighted residuals y - X @ coefficients.
    - dof (int): Residual degrees of freedom.
    """
    coefficients: np.ndarray
    standard_errors: np.ndarray
    residuals: np.ndarray
    dof: int


def fit_ols(X, y, weights=None, intercept: bool = False) -> LinearFit:
    """
    Fit y on X by ordinary, or weighted when weights are given, least squares.

    Standard errors follow the usual linear model: sqrt(diag((X'WX)^-1) * s^2) with
    s^2 the weighted residual sum of squares over n - p. They are NaN when there are
    no residual degrees of freedom.

    Raises:
    - ValueError: if the inputs have mismatching lengths.
    - np.linalg.LinAlgError: if X'WX is singular.
    """
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    y = np.asarray(y, dtype=float)
    weights = np.ones(len(y)) if weights is None else np.asarray(weights, dtype=float)

    # input validation
    if X.shape[0] != len(y) or len(y) != len(weights):
        raise ValueError(f'Input dimension mismatch: X has {X.shape[0]} rows, y has {len(y)} values and weights has {len(weights)}.')

    # adding interception
    if intercept:
        X = np.hstack([np.ones((X.shape[0], 1)), X])

    # weighted normal equations, (X^T W X)^{-1} X^T W y
    XTW = X.T * weights
    XTWX_inv = np.linalg.inv(XTW @ X)
    beta = XTWX_inv @ (XTW @ y)

    # residuals and residual variance
    residuals = y - X @ beta
    dof = len(y) - X.shape[1]
    s_2 = np.sum(weights * residuals ** 2) / dof if dof > 0 else np.nan
    se = np.sqrt(np.diag(XTWX_inv) * s_2)
    return LinearFit(coefficients=beta, standard_errors=se, residuals=residuals, dof=dof)
