"""
Shared synthetic summary statistics for the multivariable MR tests.
"""

import numpy as np
import polars as pl
import pytest

from mvmr.mv_harmoniser import MVData
from mvmr.pre_processor import Formatter

NON_PALINDROMIC = [('A', 'G'), ('C', 'T'), ('G', 'T'), ('A', 'C')]


def raw_records(data_type, id, name, snps, beta, se=0.005, pval=None, eaf=0.3, swap=None, alleles=None):
    """
    Raw instrument table as delivered by an instrument/outcome source.

    swap marks SNPs reported with effect and other allele exchanged; their beta and eaf
    are reported on the exchanged allele.
    """
    n = len(snps)
    beta = np.asarray(beta, dtype=float)
    se = np.broadcast_to(np.asarray(se, dtype=float), (n,))
    eaf = np.broadcast_to(np.asarray(eaf, dtype=float), (n,))
    swap = np.zeros(n, dtype=bool) if swap is None else np.asarray(swap, dtype=bool)
    alleles = [NON_PALINDROMIC[k % len(NON_PALINDROMIC)] for k in range(n)] if alleles is None else alleles
    if pval is None:
        pval = np.full(n, 1e-20)
    return pl.DataFrame({
        'SNP': list(snps),
        'effect_allele': [a[1] if s else a[0] for a, s in zip(alleles, swap)],
        'other_allele': [a[0] if s else a[1] for a, s in zip(alleles, swap)],
        'eaf': np.where(swap, 1 - eaf, eaf),
        'beta': np.where(swap, -beta, beta),
        'se': np.asarray(se),
        'pval': np.asarray(pval, dtype=float),
        f'{data_type}_name': [name] * n,
        f'{data_type}_id': [id] * n,
    })


@pytest.fixture
def snps():
    return [f'rs{1000 + k}' for k in range(20)]


@pytest.fixture
def simulated(snps):
    """
    3 exposures on 20 shared SNPs; exposure e2 has effects 3x larger and drives the outcome:
    outcome beta = 3 * e2 beta + noise.
    """
    rng = np.random.default_rng(2024)
    n = len(snps)
    beta = rng.choice([-1, 1], size=(n, 3)) * rng.uniform(0.08, 0.2, size=(n, 3))
    beta[:, 1] *= 3
    outcome = 3 * beta[:, 1] + rng.normal(0, 0.01, n)
    return {'snps': snps, 'ids': ['e1', 'e2', 'e3'], 'beta': beta, 'outcome': outcome, 'outcome_se': 0.01}


@pytest.fixture
def formatted_tables(simulated):
    """
    Formatted exposure and outcome tables for the simulated data, with some SNPs reported
    on the exchanged allele in e3 and in the outcome.
    """
    snps = simulated['snps']
    n = len(snps)
    swap = np.arange(n) % 3 == 0
    exposures = pl.concat([
        raw_records('exposure', 'e1', 'Exposure one', snps, simulated['beta'][:, 0]),
        raw_records('exposure', 'e2', 'Exposure two', snps, simulated['beta'][:, 1]),
        raw_records('exposure', 'e3', 'Exposure three', snps, simulated['beta'][:, 2], swap=swap),
    ])
    outcome = raw_records('outcome', 'o1', 'Outcome', snps, simulated['outcome'], se=simulated['outcome_se'], swap=~swap)
    return (
        Formatter(data_type='exposure').format_data(exposures),
        Formatter(data_type='outcome').format_data(outcome),
    )


@pytest.fixture
def make_mvdat():
    """Factory building an MVData directly from arrays."""
    def _make(beta, outcome_beta, se=0.01, pval=None, outcome_se=0.01, ids=None):
        beta = np.asarray(beta, dtype=float)
        n, k = beta.shape
        ids = [f'e{j + 1}' for j in range(k)] if ids is None else ids
        return MVData(
            exposure_beta=beta,
            exposure_se=np.full((n, k), se),
            exposure_pval=np.full((n, k), 1e-10) if pval is None else pval,
            outcome_beta=outcome_beta,
            outcome_se=np.broadcast_to(np.asarray(outcome_se, dtype=float), (n,)),
            outcome_pval=np.full(n, 0.01),
            snps=[f'rs{k}' for k in range(n)],
            exposure_ids=ids,
            expname={id: f'Exposure {id}' for id in ids},
            outcome_id='o1',
            outcome_name='Outcome',
        )
    return _make


@pytest.fixture
def simulated_mvdat(simulated, make_mvdat):
    return make_mvdat(simulated['beta'], simulated['outcome'], outcome_se=simulated['outcome_se'])
