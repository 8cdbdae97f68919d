import logging
from dataclasses import dataclass, field
import numpy as np
import polars as pl
import mvmr.util as u
from mvmr.pre_processor import Harmoniser

logger = logging.getLogger(__name__)

EXPOSURE_COLUMNS = ['SNP', 'id_exposure', 'exposure', 'effect_allele_exposure', 'beta_exposure', 'se_exposure', 'pval_exposure']
LONG_COLUMNS = ['SNP', 'exposure', 'id_exposure', 'effect_allele_exposure', 'other_allele_exposure', 'eaf_exposure',
                'beta_exposure', 'se_exposure', 'pval_exposure', 'mr_keep_exposure']


@dataclass(frozen=True)
class MVData:
    """
    Exposure and outcome effects aligned on one ordered SNP index.

    The exposure matrices are SNPs x exposures with columns in the order of
    exposure_ids; the outcome vectors follow the same rows. Arrays are copied
    and made read-only on construction.
    """
    exposure_beta: np.ndarray
    exposure_se: np.ndarray
    exposure_pval: np.ndarray
    outcome_beta: np.ndarray
    outcome_se: np.ndarray
    outcome_pval: np.ndarray
    snps: tuple
    exposure_ids: tuple
    expname: dict = field(default_factory=dict)
    outcome_id: str = 'outcome'
    outcome_name: str = 'outcome'

    def __post_init__(self) -> None:
        object.__setattr__(self, 'snps', tuple(self.snps))
        object.__setattr__(self, 'exposure_ids', tuple(self.exposure_ids))
        object.__setattr__(self, 'expname', dict(self.expname))
        shape = (len(self.snps), len(self.exposure_ids))
        for name in ['exposure_beta', 'exposure_se', 'exposure_pval']:
            array = np.array(getattr(self, name), dtype=float)
            # a single exposure may be given as a vector
            if array.ndim == 1 and shape[1] == 1:
                array = array.reshape(shape)
            if array.shape != shape:
                raise ValueError(f'{name} has shape {array.shape}, expected {shape} (SNPs x exposures)')
            array.setflags(write=False)
            object.__setattr__(self, name, array)
        for name in ['outcome_beta', 'outcome_se', 'outcome_pval']:
            array = np.array(getattr(self, name), dtype=float)
            if array.shape != (shape[0],):
                raise ValueError(f'{name} has shape {array.shape}, expected ({shape[0]},) to match the SNP index')
            array.setflags(write=False)
            object.__setattr__(self, name, array)
        if len(set(self.snps)) != len(self.snps):
            raise ValueError('SNP index contains duplicates')

    @property
    def nsnp(self) -> int:
        return len(self.snps)

    @property
    def nexp(self) -> int:
        return len(self.exposure_ids)

    def exposure_names(self) -> list:
        return [self.expname.get(id, id) for id in self.exposure_ids]

    def subset(self, exposures=None, rows=None) -> 'MVData':
        """
        Return a new MVData restricted to the given exposure ids (in the given order)
        and to the rows selected by a boolean mask or integer index.
        """
        if exposures is None:
            columns = np.arange(self.nexp)
        else:
            unknown = [id for id in exposures if id not in self.exposure_ids]
            if unknown:
                raise ValueError(f'unknown exposures: {unknown}')
            columns = np.array([self.exposure_ids.index(id) for id in exposures], dtype=int)
        index = np.arange(self.nsnp) if rows is None else np.arange(self.nsnp)[np.asarray(rows)]
        exposure_ids = [self.exposure_ids[j] for j in columns]
        return MVData(
            exposure_beta=self.exposure_beta[np.ix_(index, columns)],
            exposure_se=self.exposure_se[np.ix_(index, columns)],
            exposure_pval=self.exposure_pval[np.ix_(index, columns)],
            outcome_beta=self.outcome_beta[index],
            outcome_se=self.outcome_se[index],
            outcome_pval=self.outcome_pval[index],
            snps=[self.snps[k] for k in index],
            exposure_ids=exposure_ids,
            expname={id: self.expname[id] for id in exposure_ids if id in self.expname},
            outcome_id=self.outcome_id,
            outcome_name=self.outcome_name,
        )

    def to_frame(self, value: str = 'beta') -> pl.DataFrame:
        # SNP x exposure table of beta, se or pval with the outcome value as last column
        if value not in ['beta', 'se', 'pval']:
            raise ValueError("value must be one of 'beta', 'se' or 'pval'")
        matrix = getattr(self, f'exposure_{value}')
        data = {'SNP': list(self.snps)}
        data.update({id: matrix[:, j] for j, id in enumerate(self.exposure_ids)})
        data[self.outcome_id] = getattr(self, f'outcome_{value}')
        return pl.DataFrame(data)


class MVHarmoniser:
    """
    Build the aligned dataset for multivariable MR.

    Every exposure is first harmonised against an anchor exposure so all of them use
    the same effect allele, only SNPs present in every exposure are kept, and the
    anchor is then harmonised against the outcome.
    """

    def __init__(self, strictness: int = 2, tolerance: float = 0.08) -> None:
        self.harmoniser = Harmoniser(action=strictness, tolerance=tolerance)

    def extract_exposures(self, exposure_df: pl.DataFrame, anchor=None) -> pl.DataFrame:
        """
        Harmonise all exposures against the anchor exposure and keep the SNPs present in all of them.

        Parameters:
        - exposure_df (pl.DataFrame): Formatted exposure records for two or more exposures.
        - anchor (str or None): id_exposure to align against. Defaults to the first id in input order.

        Returns:
        - pl.DataFrame: Long exposure table with one row per SNP and exposure.
        """
        ids = self._exposure_ids(exposure_df)
        nexp = len(ids)
        anchor = self._anchor(ids, anchor)
        self._check_duplicates(exposure_df)

        exposure_df = exposure_df.filter(pl.col('mr_keep_exposure'))
        anchor_df = exposure_df.filter(pl.col('id_exposure') == anchor)
        others_df = u.convert_exposure_to_outcome(exposure_df.filter(pl.col('id_exposure') != anchor))

        # Harmonise against the anchor
        harmonised_df = self.harmoniser.harmonise(anchor_df, others_df, formatted=True).filter(pl.col('mr_keep'))

        # Only keep SNPs that are present in all
        counts = harmonised_df.group_by('SNP').agg(pl.len().alias('count'))
        keep_snps = counts.filter(pl.col('count') == nexp - 1)['SNP'].to_list()
        dropped = anchor_df.height - len(keep_snps)
        if dropped > 0:
            logger.info(f'{dropped} of {anchor_df.height} anchor SNPs are missing from at least one exposure and were dropped')
        harmonised_df = harmonised_df.filter(pl.col('SNP').is_in(keep_snps))

        anchor_rows = anchor_df.filter(pl.col('SNP').is_in(keep_snps)).select(LONG_COLUMNS)
        other_rows = u.convert_outcome_to_exposure(
            harmonised_df.select(['SNP'] + [column.replace('exposure', 'outcome') for column in LONG_COLUMNS[1:]])
        ).select(LONG_COLUMNS)
        return pl.concat([anchor_rows, other_rows])

    def harmonise(self, exposure_df: pl.DataFrame, outcome_df: pl.DataFrame, anchor=None, align_exposures: bool = True) -> MVData:
        """
        Harmonise exposures and outcome into aligned SNP x exposure matrices.

        Parameters:
        - exposure_df (pl.DataFrame): Formatted exposure records, or the output of extract_exposures.
        - outcome_df (pl.DataFrame): Formatted outcome records for a single outcome.
        - anchor (str or None): Exposure harmonised against the outcome and, when align_exposures
          is True, against the other exposures. Defaults to the first id in input order.
        - align_exposures (bool): Run extract_exposures first.

        Returns:
        - MVData
        """
        missing = [column for column in EXPOSURE_COLUMNS if column not in exposure_df.columns]
        if missing:
            raise ValueError(f'the following columns are missing for exposure_df: {missing}')
        if 'id_outcome' not in outcome_df.columns:
            raise ValueError('outcome_df must be formatted outcome data with an id_outcome column')
        outcome_ids = outcome_df['id_outcome'].unique(maintain_order=True).to_list()
        if len(outcome_ids) != 1:
            raise ValueError(f'outcome_df must contain exactly one outcome, found {len(outcome_ids)}')

        ids = self._exposure_ids(exposure_df)
        anchor = self._anchor(ids, anchor)
        self._check_duplicates(exposure_df)
        if align_exposures:
            exposure_df = self.extract_exposures(exposure_df, anchor=anchor)

        # Only keep SNPs that are present in all exposures
        nexp = len(ids)
        counts = exposure_df.group_by('SNP').agg(pl.len().alias('count'))
        exposure_df = exposure_df.filter(pl.col('SNP').is_in(counts.filter(pl.col('count') == nexp)['SNP'].to_list()))

        # Get outcome data
        anchor_df = exposure_df.filter(pl.col('id_exposure') == anchor)
        dat = self.harmoniser.harmonise(anchor_df, outcome_df, formatted=True).filter(pl.col('mr_keep'))
        if dat['SNP'].is_duplicated().any():
            raise ValueError('outcome_df contains duplicated SNPs')

        exposure_df = exposure_df.filter(pl.col('SNP').is_in(dat['SNP'].to_list()))
        if exposure_df.height == 0:
            raise ValueError('no SNPs are shared by all exposures and the outcome after harmonisation')
        exposure_beta = self._pivot(exposure_df, 'beta_exposure')
        exposure_se = self._pivot(exposure_df, 'se_exposure')
        exposure_pval = self._pivot(exposure_df, 'pval_exposure')

        snps = exposure_beta['SNP']

        # match outcome rows onto the matrix rows
        position = {snp: k for k, snp in enumerate(dat['SNP'].to_list())}
        dat = dat.select(pl.all().gather([position[snp] for snp in snps.to_list()]))
        if not (dat['SNP'].to_list() == snps.to_list() == exposure_se['SNP'].to_list() == exposure_pval['SNP'].to_list()):
            raise ValueError('SNP order of exposure and outcome data does not match after alignment')

        columns = sorted(ids)
        expname = dict(exposure_df.unique(subset='id_exposure', keep='first', maintain_order=True).select(['id_exposure', 'exposure']).iter_rows())
        outname = outcome_df.row(0, named=True)

        logger.info(f'Aligned {len(snps)} SNPs across {nexp} exposures and outcome {outcome_ids[0]}')
        return MVData(
            exposure_beta=exposure_beta.select(columns).to_numpy(),
            exposure_se=exposure_se.select(columns).to_numpy(),
            exposure_pval=exposure_pval.select(columns).to_numpy(),
            outcome_beta=dat['beta_outcome'].to_numpy(),
            outcome_se=dat['se_outcome'].to_numpy(),
            outcome_pval=dat['pval_outcome'].to_numpy(),
            snps=snps.to_list(),
            exposure_ids=columns,
            expname=expname,
            outcome_id=outname['id_outcome'],
            outcome_name=outname['outcome'],
        )

    def _exposure_ids(self, exposure_df: pl.DataFrame) -> list:
        ids = exposure_df['id_exposure'].unique(maintain_order=True).to_list()
        if len(ids) < 2:
            raise ValueError(f'multivariable MR needs at least 2 exposures, got {len(ids)}')
        return ids

    def _anchor(self, ids: list, anchor):
        if anchor is None:
            logger.info(f'No anchor exposure given, using {ids[0]}')
            return ids[0]
        if anchor not in ids:
            raise ValueError(f'anchor {anchor} is not one of the exposures {ids}')
        return anchor

    def _check_duplicates(self, exposure_df: pl.DataFrame) -> None:
        if exposure_df.select(['SNP', 'id_exposure']).is_duplicated().any():
            raise ValueError('exposure data contains duplicated SNPs for the same exposure')

    def _pivot(self, exposure_df: pl.DataFrame, value: str) -> pl.DataFrame:
        # one row per SNP, one column per exposure id; rows sorted by SNP
        return (
            exposure_df
            .pivot(on='id_exposure', index='SNP', values=value)
            .sort('SNP')
        )
