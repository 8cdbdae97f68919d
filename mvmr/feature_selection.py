import logging
import numpy as np
import polars as pl
from sklearn.linear_model import LassoCV
from sklearn.model_selection import KFold
from mvmr.mv_harmoniser import MVData
from mvmr.multivariable import MVMultiple, MVResult

logger = logging.getLogger(__name__)


class LassoFeatureSelector:
    """
    Select exposures by LASSO regression of the outcome on all exposures.

    The fit is weighted by the inverse outcome variance, has no intercept, and the penalty
    is chosen by k-fold cross validation at the minimum mean error. Columns are scaled by
    their weighted root mean square before fitting and the coefficients mapped back.

    Parameters:
    - n_folds (int): Number of cross validation folds, capped at the number of SNPs.
    - random_state (int or None): Seed for the fold assignment.
    - standardise (bool): Scale the exposure columns before fitting.
    """

    def __init__(self, n_folds: int = 10, random_state=None, standardise: bool = True) -> None:
        if n_folds < 2:
            raise ValueError('n_folds must be at least 2')
        self.n_folds = n_folds
        self.random_state = random_state
        self.standardise = standardise

    def select(self, mvdat: MVData) -> pl.DataFrame:
        """
        Returns:
        - pl.DataFrame: id_exposure and b for every exposure with a non-zero coefficient, in column order.
        """
        if mvdat.nsnp < 3:
            raise ValueError(f'LASSO feature selection needs at least 3 SNPs, got {mvdat.nsnp}')
        logger.info('Performing feature selection')

        X = np.array(mvdat.exposure_beta, dtype=float)
        y = np.array(mvdat.outcome_beta, dtype=float)
        weights = 1 / mvdat.outcome_se ** 2

        scale = np.ones(X.shape[1])
        if self.standardise:
            scale = np.sqrt(np.sum(weights[:, None] * X ** 2, axis=0) / np.sum(weights))
            scale[scale == 0] = 1
        folds = KFold(n_splits=min(self.n_folds, mvdat.nsnp), shuffle=True, random_state=self.random_state)
        model = LassoCV(fit_intercept=False, cv=folds, random_state=self.random_state, max_iter=100000)
        model.fit(X / scale, y, sample_weight=weights)

        coefficients = model.coef_ / scale
        keep = coefficients != 0
        logger.info(f'Retained {keep.sum()} of {mvdat.nexp} exposures (alpha = {model.alpha_:.3g})')
        return pl.DataFrame({
            'id_exposure': [id for id, k in zip(mvdat.exposure_ids, keep) if k],
            'b': coefficients[keep],
        }, schema={'id_exposure': pl.Utf8, 'b': pl.Float64})


def mv_lasso_feature_selection(mvdat: MVData, n_folds: int = 10, random_state=None) -> pl.DataFrame:
    return LassoFeatureSelector(n_folds=n_folds, random_state=random_state).select(mvdat)


def mv_subset(mvdat: MVData, features=None, intercept=False, instrument_specific=False, pval_threshold=5e-8,
              diagnostics=False, selector=None) -> MVResult:
    """
    Perform multivariable MR on a subset of features.

    Step 1: Select features (by default LASSO feature selection)
    Step 2: Subset mvdat to only retain relevant features and instruments
    Step 3: Perform multiple multivariable MR on the remaining data

    Parameters:
    - mvdat (MVData): Output of MVHarmoniser.harmonise.
    - features (pl.DataFrame or list or None): Exposures to retain, either a DataFrame with an
      id_exposure column or a list of ids. Selected with `selector` when None.
    - selector (LassoFeatureSelector or None): Selector used when features is None.

    Raises:
    - ValueError: if no more instruments than features remain.
    """
    if features is None:
        features = (selector or LassoFeatureSelector()).select(mvdat)
    if isinstance(features, pl.DataFrame):
        features = features['id_exposure'].to_list()
    features = list(features)
    if not features:
        raise ValueError('no features to retain')

    unknown = [id for id in features if id not in mvdat.exposure_ids]
    if unknown:
        raise ValueError(f'unknown features: {unknown}')
    # keep the column order of mvdat
    narrowed = mvdat.subset(exposures=[id for id in mvdat.exposure_ids if id in features])

    # Find relevant instruments
    instruments = (narrowed.exposure_pval < pval_threshold).any(axis=1)
    if instruments.sum() <= len(features):
        raise ValueError(f'{instruments.sum()} instruments is too few for {len(features)} features')
    narrowed = narrowed.subset(rows=instruments)

    return MVMultiple(intercept=intercept, instrument_specific=instrument_specific,
                      pval_threshold=pval_threshold, diagnostics=diagnostics).fit(narrowed)
