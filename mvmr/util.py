import random
import string
import numpy as np
import polars as pl
from scipy.stats import norm

# columns carrying the data type as suffix, e.g. beta_exposure / beta_outcome
RECORD_FIELDS = ['id', 'effect_allele', 'other_allele', 'eaf', 'beta', 'se', 'pval', 'pval_origin', 'mr_keep']


def random_string(n=1, len=6):
    """
    Generates a list of random strings.

    Parameters:
    n (int): Number of random strings to generate.
    len (int): Length of each random string.

    Returns:
    list: A list containing n random strings.
    """
    choices = string.ascii_letters + string.digits
    return [''.join(random.choices(choices, k=len)) for _ in range(n)]


def create_ids(series: pl.Series) -> pl.Series:
    """
    Generates unique IDs for each unique value in the provided series.

    Parameters:
    series (pl.Series): A Polars Series for which to generate unique IDs.

    Returns:
    pl.Series: A Series of unique IDs.
    """
    unique_values = series.unique(maintain_order=True).to_list()
    random_ids = random_string(n=len(unique_values), len=6)
    mapping = {value: id for value, id in zip(unique_values, random_ids)}
    return series.replace_strict(mapping, return_dtype=pl.Utf8)


def two_sided_pval(b, se):
    # normal reference distribution, not t
    b, se = np.asarray(b, dtype=float), np.asarray(se, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        return 2 * (1 - norm.cdf(abs(b / se)))


def get_missing_beta_pval_se(beta, se, pval):
    """
    Fill in se or pval from the other two statistics wherever one of them is missing.

    Parameters:
    - beta, se, pval (array-like): Values with NaN marking missing entries.

    Returns:
    - tuple of np.array: (beta, se, pval) with se and pval inferred where possible.
    """
    beta = np.asarray(beta, dtype=float).copy()
    se = np.asarray(se, dtype=float).copy()
    pval = np.asarray(pval, dtype=float).copy()

    # se from beta and pval
    fill_se = np.isnan(se) & ~np.isnan(beta) & ~np.isnan(pval) & (pval > 0) & (pval < 1)
    se[fill_se] = abs(beta[fill_se]) / norm.ppf(1 - pval[fill_se] / 2)

    # pval from beta and se
    fill_pval = np.isnan(pval) & ~np.isnan(beta) & ~np.isnan(se)
    pval[fill_pval] = two_sided_pval(beta[fill_pval], se[fill_pval])
    return beta, se, pval


def convert_exposure_to_outcome(df: pl.DataFrame) -> pl.DataFrame:
    # rename *_exposure columns to *_outcome so a table can be harmonised as the target side
    return _switch_data_type(df, 'exposure', 'outcome')


def convert_outcome_to_exposure(df: pl.DataFrame) -> pl.DataFrame:
    return _switch_data_type(df, 'outcome', 'exposure')


def _switch_data_type(df: pl.DataFrame, old: str, new: str) -> pl.DataFrame:
    mapping = {f'{field}_{old}': f'{field}_{new}' for field in RECORD_FIELDS if f'{field}_{old}' in df.columns}
    if old in df.columns:
        mapping[old] = new
    return df.rename(mapping)
