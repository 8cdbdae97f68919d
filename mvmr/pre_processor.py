import logging
import warnings
import polars as pl
import mvmr.util as u

logger = logging.getLogger(__name__)

COMPLEMENT = {'A': 'T', 'T': 'A', 'C': 'G', 'G': 'C'}
PALINDROMES = ['AT', 'TA', 'CG', 'GC']


class Renamer:
    # Rename raw GWAS columns to the standard names and drop the rest
    def __init__(self, rename_mapping: dict) -> None:
        if not rename_mapping:
            raise ValueError('rename_mapping must map at least one column')
        self.rename_mapping = dict(rename_mapping)

    def rename_and_trim(self, df: pl.DataFrame) -> pl.DataFrame:
        missing = [col for col in self.rename_mapping if col not in df.columns]
        if missing:
            raise ValueError(f'the following columns are missing from the input: {missing}')
        return df.rename(self.rename_mapping).select(list(self.rename_mapping.values()))


class Harmoniser:
    def __init__(self, action: int = 2, tolerance: float = 0.08) -> None:
        '''
        action = 1: Assume all alleles are coded on the forward strand, i.e. do not attempt to flip alleles
        action = 2: Try to infer positive strand alleles, using allele frequencies for palindromes (default, conservative);
        action = 3: Correct strand for non-palindromic SNPs, and drop all palindromic SNPs from the analysis (more conservative).

        tolerance: palindromic SNPs whose allele frequency lies within this distance of 0.5 cannot be
        oriented and are not kept under action 2.
        '''
        # error handling
        if action not in [1, 2, 3]:
            raise ValueError('Action must be either 1, 2, or 3.')
        self.action = action
        self.tolerance = tolerance

    def harmonise(self, exposure_df: pl.DataFrame, outcome_df: pl.DataFrame, formatted: bool = False, drop_file=None) -> pl.DataFrame:
        '''
        Align the outcome (target) alleles to the exposure (source) alleles.

        Returns the inner join on SNP with the outcome beta/eaf/alleles adjusted, plus
        palindromic, ambiguous, action and mr_keep columns. Rows that could not be
        harmonised stay in the table with mr_keep = False.
        '''
        # format if not formatted
        if not formatted:
            exposure_df = Formatter(data_type='exposure').format_data(exposure_df)
            outcome_df = Formatter(data_type='outcome').format_data(outcome_df)
            outcome_df = outcome_df.filter(pl.col('SNP').is_in(exposure_df["SNP"].to_list()))

        # check required columns for exposure_df and outcome_df
        for data_type, df in [('exposure', exposure_df), ('outcome', outcome_df)]:
            required = ['SNP'] + [x + data_type for x in ['id_', '', 'beta_', 'se_', 'effect_allele_', 'other_allele_', 'eaf_', 'mr_keep_']]
            missing = [column for column in required if column not in df.columns]
            if missing:
                raise ValueError(f'the following columns are missing for {data_type}_df: {missing}')

        # create result dataframe by joining
        joined_df = exposure_df.join(outcome_df, how='inner', on='SNP')
        harmonised_df = self._harmonise_data(joined_df)

        removed_rows = harmonised_df.filter(~pl.col('mr_keep'))
        if removed_rows.height > 0:
            logger.info(f'{removed_rows.height} of {harmonised_df.height} SNP pairs could not be harmonised (action {self.action})')
            if drop_file is not None:
                removed_rows.write_csv(drop_file)
        return harmonised_df

    def _harmonise_data(self, df: pl.DataFrame) -> pl.DataFrame:
        ea_e, oa_e = pl.col('effect_allele_exposure'), pl.col('other_allele_exposure')
        ea_o, oa_o = pl.col('effect_allele_outcome'), pl.col('other_allele_outcome')

        # handle indel
        indel_condition = pl.any_horizontal(
            [(col.str.len_bytes() > 1) | col.is_in(['D', 'I']) for col in [ea_e, oa_e, ea_o, oa_o]]
        ).fill_null(False)

        # infer a missing other allele from the opposite side
        df = df.with_columns(
            pl.when(oa_o.is_null() & (ea_o == ea_e)).then(oa_e)
            .when(oa_o.is_null() & (ea_o == oa_e)).then(ea_e)
            .otherwise(oa_o).alias('other_allele_outcome'),
            pl.when(oa_e.is_null() & (ea_e == ea_o)).then(oa_o)
            .when(oa_e.is_null() & (ea_e == oa_o)).then(ea_o)
            .otherwise(oa_e).alias('other_allele_exposure'),
        )

        same_condition = ((ea_e == ea_o) & (oa_e == oa_o)).fill_null(False)
        swapped_condition = ((ea_e == oa_o) & (oa_e == ea_o)).fill_null(False)

        # handle strand flip for bi-allelic
        if self.action > 1:
            flip_condition = ~(same_condition | swapped_condition)
            df = df.with_columns(
                pl.when(flip_condition).then(ea_o.replace(COMPLEMENT)).otherwise(ea_o).alias('effect_allele_outcome'),
                pl.when(flip_condition).then(oa_o.replace(COMPLEMENT)).otherwise(oa_o).alias('other_allele_outcome'),
            )

        # swapping effect/other allele for outcome
        to_swap_condition = swapped_condition & ~same_condition
        df = df.with_columns(
            pl.when(to_swap_condition).then(oa_o).otherwise(ea_o).alias('effect_allele_outcome'),
            pl.when(to_swap_condition).then(ea_o).otherwise(oa_o).alias('other_allele_outcome'),
            pl.when(to_swap_condition).then(-1 * pl.col('beta_outcome')).otherwise(pl.col('beta_outcome')).alias('beta_outcome'),
            pl.when(to_swap_condition).then(1 - pl.col('eaf_outcome')).otherwise(pl.col('eaf_outcome')).alias('eaf_outcome'),
        )

        # palindromes
        palindromic = (ea_e + oa_e).is_in(PALINDROMES).fill_null(False)
        if self.action == 2:
            ambiguous = palindromic & (
                pl.col('eaf_exposure').is_null() | pl.col('eaf_outcome').is_null()
                | ((pl.col('eaf_exposure') - 0.5).abs() < self.tolerance)
                | ((pl.col('eaf_outcome') - 0.5).abs() < self.tolerance)
            ).fill_null(True)
            palindrome_flip = (palindromic & ~ambiguous & ((pl.col('eaf_exposure') < 0.5) != (pl.col('eaf_outcome') < 0.5))).fill_null(False)
            df = df.with_columns(
                pl.when(palindrome_flip).then(-1 * pl.col('beta_outcome')).otherwise(pl.col('beta_outcome')).alias('beta_outcome'),
                pl.when(palindrome_flip).then(1 - pl.col('eaf_outcome')).otherwise(pl.col('eaf_outcome')).alias('eaf_outcome'),
            )
        else:
            ambiguous = palindromic if self.action == 3 else pl.lit(False)

        keep_condition = (
            same_condition
            & ~indel_condition
            & pl.col('mr_keep_exposure').fill_null(False)
            & pl.col('mr_keep_outcome').fill_null(False)
        )
        if self.action == 3:
            keep_condition = keep_condition & ~palindromic

        return (
            df
            .with_columns(palindromic.alias('palindromic'), ambiguous.alias('ambiguous'))
            .with_columns(
                pl.lit(self.action).alias('action'),
                (keep_condition & ~pl.col('ambiguous')).alias('mr_keep'),
            )
        )


class Formatter:
    # Format DataFrame supposing colnames has been changed
    def __init__(self, **kwargs):
        # Set default values
        self.config = {
            'data_type': 'exposure',
            'snps': None,
            'phenotype_col': None,
            'phenotype_name': None,
            'snp_col': 'SNP',
            'beta_col': 'beta',
            'se_col': 'se',
            'eaf_col': 'eaf',
            'effect_allele_col': 'effect_allele',
            'other_allele_col': 'other_allele',
            'pval_col': 'pval',
            'id_col': None,
            'min_pval': 1e-200,
        }

        # Update default values with any provided arguments
        self.config.update(kwargs)

        # check data_type
        if self.config['data_type'] not in ['exposure', 'outcome']:
            raise ValueError('data_type must be either "exposure" or "outcome"')
        data_type = self.config['data_type']
        if self.config['phenotype_col'] is None:
            self.config['phenotype_col'] = f'{data_type}_name'
        if self.config['id_col'] is None:
            self.config['id_col'] = f'{data_type}_id'

        # Create a list of all column names for checking presence in DataFrame
        self.all_cols = [
            self.config['phenotype_col'], self.config['snp_col'], self.config['beta_col'], self.config['se_col'],
            self.config['eaf_col'], self.config['effect_allele_col'], self.config['other_allele_col'],
            self.config['pval_col'], self.config['id_col']
        ]

    @property
    def output_columns(self) -> list:
        t = self.config['data_type']
        return ['SNP', t, f'id_{t}', f'effect_allele_{t}', f'other_allele_{t}', f'eaf_{t}',
                f'beta_{t}', f'se_{t}', f'pval_{t}', f'pval_origin_{t}', f'mr_keep_{t}']

    def format_data(self, df: pl.DataFrame) -> pl.DataFrame:
        # Perform initial check for the columns of the DataFrame
        df = self._initial_check(df)
        # Format SNP column
        df = self._format_SNP(df)
        # Format the phenotype column
        df = self._format_phenotype(df)
        # Remove duplicated SNPs for every phenotype
        df = self._remove_duplicates(df)
        # Check if MR columns are presented
        self._check_mr_columns(df)
        # Format all columns
        df = self._format_beta(df)
        df = self._format_se(df)
        df = self._format_eaf(df)
        df = self._format_allele(df, 'effect_allele')
        df = self._format_allele(df, 'other_allele')
        df = self._check_and_infer_pval(df)
        # Create fake id
        df = self._create_id_col(df)
        # Handles the mr_keep logic
        df = self._keep_mr_col(df)
        return df.select(self.output_columns)

    def _initial_check(self, df: pl.DataFrame) -> pl.DataFrame:
        # Check columns presented in DataFrame and self.all_cols
        cols_presented = [col for col in df.columns if col in self.all_cols]
        if not cols_presented:
            raise ValueError('None of the specified columns found in the provided DataFrame')
        return df.select(cols_presented)

    def _format_SNP(self, df: pl.DataFrame) -> pl.DataFrame:
        # Check for SNP column
        snp_col = self.config['snp_col']
        if snp_col not in df.columns:
            raise ValueError(f'{snp_col} column not found in the provided DataFrame')
        # rename column to SNP
        if snp_col != 'SNP':
            df = df.rename({snp_col: 'SNP'})
        # Format SNP column: lowercase and remove spaces
        df = df.with_columns(pl.col('SNP').cast(pl.Utf8).str.to_lowercase().str.replace_all(' ', '').alias('SNP'))
        # Filter out rows where SNP is NA
        df = df.filter(pl.col('SNP').is_not_null() & (pl.col('SNP') != ''))
        # Check if snp provided
        if self.config['snps'] is not None:
            snps = [snp.lower().replace(' ', '') for snp in self.config['snps']]
            df = df.filter(pl.col('SNP').is_in(snps))
        return df

    def _format_phenotype(self, df: pl.DataFrame) -> pl.DataFrame:
        data_type = self.config['data_type']
        phenotype_col = self.config['phenotype_col']
        if phenotype_col not in df.columns:
            exposure_name = data_type if self.config['phenotype_name'] is None else self.config['phenotype_name']
            logger.debug(f'No phenotype column found, naming every row *{exposure_name}*.')
            df = df.with_columns(pl.lit(exposure_name).alias(data_type))
        else:
            df = df.with_columns(pl.col(phenotype_col).cast(pl.Utf8).alias(data_type))
            if phenotype_col != data_type:
                df = df.drop(phenotype_col)
        return df

    def _remove_duplicates(self, df: pl.DataFrame) -> pl.DataFrame:
        # Identify duplicate SNPs within each phenotype, keeping the first instance
        data_type = self.config['data_type']
        duplicated = df.filter(pl.col('SNP').is_duplicated().over(data_type))
        if duplicated.height > 0:
            for phenotype, group in duplicated.group_by(data_type, maintain_order=True):
                logger.warning(
                    f"Duplicated SNPs present in {data_type} data for phenotype '{phenotype[0]}'. Keeping the first instance: "
                    + ', '.join(group['SNP'].unique(maintain_order=True).to_list())
                )
        return df.unique(subset=[data_type, 'SNP'], keep='first', maintain_order=True)

    def _check_mr_columns(self, df: pl.DataFrame) -> None:
        # Columns required for MR analysis
        mr_cols_required = [self.config['beta_col'], self.config['se_col'], self.config['effect_allele_col']]
        # Columns desired for MR analysis
        mr_cols_desired = [self.config['other_allele_col'], self.config['eaf_col']]

        missing_required_cols = [col for col in mr_cols_required if col not in df.columns]
        if missing_required_cols:
            warnings.warn(f"The following columns are not present and are required for MR analysis:\n{', '.join(missing_required_cols)}")

        missing_desired_cols = [col for col in mr_cols_desired if col not in df.columns]
        if missing_desired_cols:
            warnings.warn(f"The following columns are not present but are helpful for harmonisation:\n{', '.join(missing_desired_cols)}")

    def _rename_float(self, df: pl.DataFrame, col_key: str, field: str) -> pl.DataFrame:
        # rename to <field>_<data_type> as Float64 with NaN turned into null; add a null column if absent
        new_name = f"{field}_{self.config['data_type']}"
        if self.config[col_key] in df.columns:
            df = df.rename({self.config[col_key]: new_name})
            return df.with_columns(pl.col(new_name).cast(pl.Float64).fill_nan(None))
        return df.with_columns(pl.lit(None, dtype=pl.Float64).alias(new_name))

    def _format_beta(self, df: pl.DataFrame) -> pl.DataFrame:
        df = self._rename_float(df, 'beta_col', 'beta')
        col = pl.col(f"beta_{self.config['data_type']}")
        return df.with_columns(pl.when(col.is_finite()).then(col).otherwise(None).name.keep())

    def _format_se(self, df: pl.DataFrame) -> pl.DataFrame:
        df = self._rename_float(df, 'se_col', 'se')
        col = pl.col(f"se_{self.config['data_type']}")
        return df.with_columns(pl.when(col.is_finite() & (col > 0)).then(col).otherwise(None).name.keep())

    def _format_eaf(self, df: pl.DataFrame) -> pl.DataFrame:
        df = self._rename_float(df, 'eaf_col', 'eaf')
        col = pl.col(f"eaf_{self.config['data_type']}")
        return df.with_columns(pl.when(col.is_finite() & (col > 0) & (col < 1)).then(col).otherwise(None).name.keep())

    def _format_allele(self, df: pl.DataFrame, field: str) -> pl.DataFrame:
        new_name = f"{field}_{self.config['data_type']}"
        source = self.config[f'{field}_col']
        if source not in df.columns:
            return df.with_columns(pl.lit(None, dtype=pl.Utf8).alias(new_name))
        df = df.rename({source: new_name})
        col = pl.col(new_name).cast(pl.Utf8).str.to_uppercase()
        return df.with_columns(pl.when(col.str.contains('^[ACTGDI]+$')).then(col).otherwise(None).alias(new_name))

    def _check_and_infer_pval(self, df: pl.DataFrame) -> pl.DataFrame:
        # Checks the p-value column for validity, then infers p-values (and standard errors)
        # from the other two statistics where they are missing.
        data_type = self.config['data_type']
        df = self._rename_float(df, 'pval_col', 'pval')
        pval = pl.col(f'pval_{data_type}')
        df = df.with_columns(
            pl.when(pval.is_finite() & (pval >= 0) & (pval <= 1))
            .then(pl.max_horizontal(pval, pl.lit(self.config['min_pval'])))
            .otherwise(None)
            .alias(f'pval_{data_type}')
        )
        df = df.with_columns(pl.col(f"pval_{data_type}").is_not_null().alias("_reported"))

        beta, se, pvals = u.get_missing_beta_pval_se(
            df[f'beta_{data_type}'].to_numpy(), df[f'se_{data_type}'].to_numpy(), df[f'pval_{data_type}'].to_numpy()
        )
        se = pl.Series(f'se_{data_type}', se).fill_nan(None)
        pvals = pl.Series(f'pval_{data_type}', pvals).fill_nan(None)
        origin = (
            pl.when(pl.col("_reported")).then(pl.lit("reported"))
            .when(pl.col(f"pval_{data_type}").is_not_null()).then(pl.lit('inferred'))
            .otherwise(pl.lit(None, dtype=pl.Utf8))
        )
        return df.with_columns(se, pvals).with_columns(origin.alias(f"pval_origin_{data_type}")).drop("_reported")

    def _create_id_col(self, df: pl.DataFrame) -> pl.DataFrame:
        # Use the id column when present, otherwise generate one id per phenotype
        data_type = self.config['data_type']
        id_col = self.config['id_col']
        if id_col in df.columns:
            df = df.with_columns(pl.col(id_col).cast(pl.Utf8).alias(f'id_{data_type}'))
        else:
            df = df.with_columns(u.create_ids(df[data_type]).alias(f'id_{data_type}'))
        return df

    def _keep_mr_col(self, df: pl.DataFrame) -> pl.DataFrame:
        # exclude SNPs missing information required for MR
        data_type = self.config['data_type']
        mr_cols = ['SNP', f'beta_{data_type}', f'se_{data_type}', f'effect_allele_{data_type}']
        condition = pl.all_horizontal([pl.col(col).is_not_null() for col in mr_cols])
        return df.with_columns(condition.alias(f'mr_keep_{data_type}'))
