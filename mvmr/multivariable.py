import logging
from dataclasses import dataclass
import numpy as np
import polars as pl
from mvmr.mv_harmoniser import MVData
from mvmr.regression import fit_ols
from mvmr.util import two_sided_pval

logger = logging.getLogger(__name__)

RESULT_COLUMNS = {
    'id_exposure': pl.Utf8,
    'exposure': pl.Utf8,
    'id_outcome': pl.Utf8,
    'outcome': pl.Utf8,
    'nsnp': pl.Int64,
    'b': pl.Float64,
    'se': pl.Float64,
    'pval': pl.Float64,
}


@dataclass(frozen=True)
class MVResult:
    """
    Output of a multivariable MR estimator.

    Attributes:
    - result (pl.DataFrame): One row per exposure, columns of RESULT_COLUMNS. Unavailable estimates are null.
    - marginal_outcome (np.array or None): SNPs x exposures outcome effects residualised for the other
      exposures (residual estimators only).
    - diagnostics (dict or None): Exposure id -> DataFrame of sign-normalised effects per SNP.
    """
    result: pl.DataFrame
    marginal_outcome: np.ndarray = None
    diagnostics: dict = None


class MVEstimator:
    """
    Shared per-exposure loop of the multivariable MR estimators.

    For exposure i the instruments are the SNPs with exposure_pval[:, i] < pval_threshold.
    Subclasses fix how the estimate is obtained:
    - weighted: weight observations by the inverse outcome variance.
    - residualise: first residualise the outcome for all other exposures, then regress the
      residuals on exposure i alone; otherwise fit all exposures jointly.
    """

    name = None
    weighted = False
    residualise = False

    def __init__(self, intercept: bool = False, instrument_specific: bool = False, pval_threshold: float = 5e-8, diagnostics: bool = False) -> None:
        self.intercept = intercept
        self.instrument_specific = instrument_specific
        self.pval_threshold = pval_threshold
        self.diagnostics = diagnostics

    def fit(self, mvdat: MVData) -> MVResult:
        nexp = mvdat.nexp
        effs = np.full(nexp, np.nan)
        se = np.full(nexp, np.nan)
        nsnp = np.zeros(nexp, dtype=int)
        marginal_outcome = np.zeros((mvdat.nsnp, nexp)) if self.residualise else None
        diagnostics = {} if self.diagnostics else None
        weights = 1 / mvdat.outcome_se ** 2 if self.weighted else None
        shared_fit = None

        for i in range(nexp):
            # For this exposure, only keep SNPs that meet some p-value threshold
            index = mvdat.exposure_pval[:, i] < self.pval_threshold
            nsnp[i] = index.sum()
            available = nsnp[i] > nexp + int(self.intercept)

            if self.residualise:
                effs[i], se[i] = self._residual_estimate(mvdat, i, index, available, marginal_outcome)
                outcome = marginal_outcome[:, i]
            else:
                if not self.instrument_specific:
                    # one joint fit over all SNPs, shared by every exposure
                    if shared_fit is None:
                        shared_fit = fit_ols(mvdat.exposure_beta, mvdat.outcome_beta, weights=weights, intercept=self.intercept)
                    fitted = shared_fit
                elif available:
                    fitted = fit_ols(mvdat.exposure_beta[index], mvdat.outcome_beta[index],
                                     weights=None if weights is None else weights[index], intercept=self.intercept)
                else:
                    fitted = None
                if fitted is not None:
                    effs[i] = fitted.coefficients[int(self.intercept) + i]
                    se[i] = fitted.standard_errors[int(self.intercept) + i]
                outcome = mvdat.outcome_beta

            if not np.isfinite(effs[i]):
                logger.info(f'{mvdat.exposure_ids[i]}: {nsnp[i]} instruments, estimate unavailable')

            if diagnostics is not None:
                diagnostics[mvdat.exposure_ids[i]] = sign_normalise(mvdat.snps, mvdat.exposure_beta[:, i], outcome, index)

        pval = two_sided_pval(effs, se)
        result = pl.DataFrame({
            'id_exposure': list(mvdat.exposure_ids),
            'exposure': mvdat.exposure_names(),
            'id_outcome': [mvdat.outcome_id] * nexp,
            'outcome': [mvdat.outcome_name] * nexp,
            'nsnp': nsnp.tolist(),
            'b': effs,
            'se': se,
            'pval': pval,
        }, schema=RESULT_COLUMNS).with_columns(pl.col(['b', 'se', 'pval']).fill_nan(None))
        return MVResult(result=result, marginal_outcome=marginal_outcome, diagnostics=diagnostics)

    def _residual_rows(self, index):
        # rows used to residualise the outcome and rows used for the final regression
        rows = index if self.instrument_specific else np.ones_like(index)
        return rows, rows

    def _residual_estimate(self, mvdat: MVData, i: int, index, available: bool, marginal_outcome):
        residual_rows, final_rows = self._residual_rows(index)
        if self.instrument_specific and not available:
            return np.nan, np.nan

        # Get outcome effects adjusted for all effects on all other exposures
        others = np.delete(mvdat.exposure_beta, i, axis=1)
        adjusted = fit_ols(others[residual_rows], mvdat.outcome_beta[residual_rows], intercept=self.intercept)
        marginal_outcome[residual_rows, i] = adjusted.residuals

        # Get the effect of the exposure on the residuals of the outcome
        if not available:
            return np.nan, np.nan
        mod = fit_ols(mvdat.exposure_beta[final_rows, i], marginal_outcome[final_rows, i], intercept=self.intercept)
        return mod.coefficients[int(self.intercept)], mod.standard_errors[int(self.intercept)]


class MVResidual(MVEstimator):
    """
    Residual multivariable MR (Burgess et al 2015).

    For each exposure the outcome is residualised for all the other exposures, then
    the residuals are regressed, unweighted, on that exposure.
    """
    name = 'residual'
    residualise = True


class MVBasic(MVResidual):
    """
    Residual multivariable MR with an intercept, residualising over all SNPs and
    estimating over the instruments of each exposure.
    """
    name = 'basic'

    def __init__(self, pval_threshold: float = 5e-8, diagnostics: bool = False) -> None:
        super().__init__(intercept=True, instrument_specific=False, pval_threshold=pval_threshold, diagnostics=diagnostics)

    def _residual_rows(self, index):
        return np.ones_like(index), index


class MVMultiple(MVEstimator):
    """
    Inverse-variance weighted multivariable MR.

    All exposures are regressed against the outcome together, weighting by the inverse
    variance of the outcome. With instrument_specific the fit is repeated for each exposure
    using only its own instruments.
    """
    name = 'multiple'
    weighted = True


class MVIvw(MVMultiple):
    # IVW multivariable MR restricted to the instruments of each exposure
    name = 'ivw'

    def __init__(self, pval_threshold: float = 5e-8, diagnostics: bool = False) -> None:
        super().__init__(intercept=False, instrument_specific=True, pval_threshold=pval_threshold, diagnostics=diagnostics)


def sign_normalise(snps, exposure, outcome, index) -> pl.DataFrame:
    # orient every SNP so its exposure effect is positive, flipping the outcome effect with it
    exposure = np.asarray(exposure, dtype=float)
    flip = np.sign(exposure) == -1
    outcome = np.where(flip, -1 * np.asarray(outcome, dtype=float), outcome)
    return pl.DataFrame({
        'SNP': list(snps),
        'exposure': np.abs(exposure),
        'outcome': outcome,
        'instrument': np.asarray(index, dtype=bool),
    })


class MVMR:
    """
    Run several multivariable MR estimators on the same aligned dataset.

    Parameters:
    - methods (str or list): 'All' or a list of 'residual', 'multiple', 'basic', 'ivw' (or their mv_ names).
    - intercept, instrument_specific: passed to the residual and multiple estimators.
    - pval_threshold (float): Instrument p-value threshold for every estimator.
    """

    def __init__(self, methods='All', intercept: bool = False, instrument_specific: bool = False, pval_threshold: float = 5e-8) -> None:
        _implemented_models = ['residual', 'multiple', 'basic', 'ivw']
        self.model_list = _implemented_models if methods == 'All' else list(methods)
        self.models = [
            self.__getmodel__(model_name, intercept=intercept, instrument_specific=instrument_specific, pval_threshold=pval_threshold)
            for model_name in self.model_list
        ]

    def fit(self, mvdat: MVData) -> pl.DataFrame:
        results = []
        for model in self.models:
            logger.info(f'Fitting {model.name} multivariable MR on {mvdat.nsnp} SNPs and {mvdat.nexp} exposures')
            fitted = model.fit(mvdat)
            results.append(fitted.result.select(pl.lit(model.name).alias('method'), pl.all()))
        return pl.concat(results)

    def __getmodel__(self, model_name, intercept, instrument_specific, pval_threshold) -> MVEstimator:
        if model_name in ['residual', 'mv_residual']:
            return MVResidual(intercept=intercept, instrument_specific=instrument_specific, pval_threshold=pval_threshold)
        if model_name in ['multiple', 'mv_multiple']:
            return MVMultiple(intercept=intercept, instrument_specific=instrument_specific, pval_threshold=pval_threshold)
        if model_name in ['basic', 'mv_basic']:
            return MVBasic(pval_threshold=pval_threshold)
        if model_name in ['ivw', 'mv_ivw']:
            return MVIvw(pval_threshold=pval_threshold)
        raise ValueError(f'Unknown multivariable MR method: {model_name}')


def mv_residual(mvdat: MVData, intercept=False, instrument_specific=False, pval_threshold=5e-8, diagnostics=False) -> MVResult:
    return MVResidual(intercept, instrument_specific, pval_threshold, diagnostics).fit(mvdat)


def mv_multiple(mvdat: MVData, intercept=False, instrument_specific=False, pval_threshold=5e-8, diagnostics=False) -> MVResult:
    return MVMultiple(intercept, instrument_specific, pval_threshold, diagnostics).fit(mvdat)


def mv_basic(mvdat: MVData, pval_threshold=5e-8, diagnostics=False) -> MVResult:
    return MVBasic(pval_threshold, diagnostics).fit(mvdat)


def mv_ivw(mvdat: MVData, pval_threshold=5e-8, diagnostics=False) -> MVResult:
    return MVIvw(pval_threshold, diagnostics).fit(mvdat)
