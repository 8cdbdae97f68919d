import logging
import os
import polars as pl
from mvmr.config import load_config
from mvmr.pre_processor import Formatter
from mvmr.mv_harmoniser import MVHarmoniser
from mvmr.multivariable import MVMR
from mvmr.feature_selection import LassoFeatureSelector, mv_subset

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

config = load_config('config/mvmr.yml')

exposure = pl.read_csv(config['exposure_file'])
outcome = pl.read_csv(config['outcome_file'])

# format exposures and outcome
exposure_df = Formatter(data_type='exposure').format_data(exposure)
outcome_df = Formatter(data_type='outcome').format_data(outcome)

# align all exposures and the outcome on the same SNPs and effect alleles
mvdat = MVHarmoniser(strictness=config['harmonise_strictness'], tolerance=config['palindrome_tolerance']).harmonise(
    exposure_df, outcome_df, anchor=config['anchor']
)

# getting MVMR results
MVMR_result = MVMR(
    methods=config['methods'],
    intercept=config['intercept'],
    instrument_specific=config['instrument_specific'],
    pval_threshold=config['pval_threshold'],
).fit(mvdat)

# LASSO selected exposures
selector = LassoFeatureSelector(**config['lasso'])
subset_result = mv_subset(mvdat, features=selector.select(mvdat), intercept=config['intercept'],
                          instrument_specific=config['instrument_specific'], pval_threshold=config['pval_threshold'])

# save output
os.makedirs(config['output_dir'], exist_ok=True)
MVMR_result.write_csv(os.path.join(config['output_dir'], 'MVMR_result.csv'))
subset_result.result.write_csv(os.path.join(config['output_dir'], 'MVMR_subset_result.csv'))
