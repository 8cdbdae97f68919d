"""
Tests for the Renamer, Formatter and allele Harmoniser.
"""

import numpy as np
import polars as pl
import pytest

from mvmr.pre_processor import Formatter, Harmoniser, Renamer


def exposure_row(ea='A', oa='G', eaf=0.3, beta=0.1, snp='rs1'):
    return Formatter(data_type='exposure').format_data(pl.DataFrame({
        'SNP': [snp], 'effect_allele': [ea], 'other_allele': [oa], 'eaf': [eaf],
        'beta': [beta], 'se': [0.01], 'pval': [1e-10], 'exposure_name': ['Exposure'], 'exposure_id': ['e1'],
    }))


def outcome_row(ea='A', oa='G', eaf=0.3, beta=0.05, snp='rs1'):
    return Formatter(data_type='outcome').format_data(pl.DataFrame({
        'SNP': [snp], 'effect_allele': [ea], 'other_allele': pl.Series([oa], dtype=pl.Utf8), 'eaf': [eaf],
        'beta': [beta], 'se': [0.02], 'pval': [0.01], 'outcome_name': ['Outcome'], 'outcome_id': ['o1'],
    }))


def harmonise(exposure, outcome, action=2):
    return Harmoniser(action=action).harmonise(exposure, outcome, formatted=True).row(0, named=True)


# ============================================================================
# Renamer
# ============================================================================

class TestRenamer:

    def test_rename_and_trim(self):
        df = pl.DataFrame({'MarkerName': ['rs1'], 'Effect': [0.1], 'Unused': [1]})
        renamed = Renamer({'MarkerName': 'SNP', 'Effect': 'beta'}).rename_and_trim(df)
        assert renamed.columns == ['SNP', 'beta']

    def test_missing_column(self):
        with pytest.raises(ValueError):
            Renamer({'MarkerName': 'SNP'}).rename_and_trim(pl.DataFrame({'rsid': ['rs1']}))


# ============================================================================
# Formatter
# ============================================================================

class TestFormatter:

    def test_output_columns(self):
        df = exposure_row()
        assert df.columns == Formatter(data_type='exposure').output_columns
        assert df['id_exposure'][0] == 'e1'
        assert df['exposure'][0] == 'Exposure'
        assert df['mr_keep_exposure'][0]

    def test_invalid_data_type(self):
        with pytest.raises(ValueError):
            Formatter(data_type='mediator')

    def test_snp_normalised_and_duplicates_removed(self):
        df = pl.DataFrame({
            'SNP': ['RS1 ', 'rs1', 'rs2'], 'effect_allele': ['a', 'C', 'G'], 'other_allele': ['g', 'T', 'A'],
            'eaf': [0.2, 0.3, 0.4], 'beta': [0.1, 0.2, 0.3], 'se': [0.01, 0.01, 0.01], 'pval': [1e-9, 1e-9, 1e-9],
        })
        formatted = Formatter(data_type='exposure').format_data(df)
        assert formatted['SNP'].to_list() == ['rs1', 'rs2']
        assert formatted['beta_exposure'].to_list() == [0.1, 0.3]
        assert formatted['effect_allele_exposure'][0] == 'A'

    def test_invalid_values_become_null(self):
        df = pl.DataFrame({
            'SNP': ['rs1', 'rs2'], 'effect_allele': ['A', 'X'], 'other_allele': ['G', 'T'],
            'eaf': [1.5, 0.3], 'beta': [0.1, 0.2], 'se': [-1.0, 0.01], 'pval': [2.0, 0.0],
        })
        formatted = Formatter(data_type='outcome').format_data(df)
        assert formatted['eaf_outcome'][0] is None
        assert formatted['effect_allele_outcome'][1] is None
        assert formatted['se_outcome'][0] is None
        assert formatted['pval_outcome'][0] is None
        assert formatted['pval_outcome'][1] == 1e-200
        assert formatted['mr_keep_outcome'].to_list() == [False, False]

    def test_pval_inferred_from_beta_and_se(self):
        df = pl.DataFrame({'SNP': ['rs1'], 'effect_allele': ['A'], 'other_allele': ['G'], 'eaf': [0.2],
                           'beta': [0.1], 'se': [0.1], 'pval': pl.Series([None], dtype=pl.Float64)})
        formatted = Formatter(data_type='exposure').format_data(df)
        assert formatted['pval_exposure'][0] == pytest.approx(0.3173105, rel=1e-6)
        assert formatted['pval_origin_exposure'][0] == 'inferred'

    def test_generated_ids_and_default_name(self):
        df = pl.DataFrame({'SNP': ['rs1', 'rs2'], 'effect_allele': ['A', 'C'], 'other_allele': ['G', 'T'],
                           'eaf': [0.2, 0.3], 'beta': [0.1, 0.2], 'se': [0.01, 0.01], 'pval': [1e-9, 1e-9]})
        formatted = Formatter(data_type='exposure', phenotype_name='BMI').format_data(df)
        assert formatted['exposure'].to_list() == ['BMI', 'BMI']
        assert formatted['id_exposure'].n_unique() == 1
        assert len(formatted['id_exposure'][0]) == 6

    def test_missing_columns_warn(self):
        df = pl.DataFrame({'SNP': ['rs1'], 'effect_allele': ['A'], 'beta': [0.1], 'se': [0.01]})
        with pytest.warns(UserWarning):
            formatted = Formatter(data_type='exposure').format_data(df)
        assert formatted['other_allele_exposure'][0] is None
        assert formatted['mr_keep_exposure'][0]

    def test_no_known_columns(self):
        with pytest.raises(ValueError):
            Formatter(data_type='exposure').format_data(pl.DataFrame({'foo': [1]}))


# ============================================================================
# Harmoniser
# ============================================================================

class TestHarmoniser:

    def test_invalid_action(self):
        with pytest.raises(ValueError):
            Harmoniser(action=4)

    def test_same_alleles_kept(self):
        row = harmonise(exposure_row(), outcome_row())
        assert row['mr_keep']
        assert row['beta_outcome'] == pytest.approx(0.05)

    def test_swapped_alleles(self):
        row = harmonise(exposure_row(), outcome_row(ea='G', oa='A', eaf=0.7))
        assert row['mr_keep']
        assert row['beta_outcome'] == pytest.approx(-0.05)
        assert row['eaf_outcome'] == pytest.approx(0.3)
        assert (row['effect_allele_outcome'], row['other_allele_outcome']) == ('A', 'G')

    def test_strand_flip(self):
        # T/C is A/G on the other strand
        row = harmonise(exposure_row(), outcome_row(ea='T', oa='C'))
        assert row['mr_keep']
        assert row['beta_outcome'] == pytest.approx(0.05)

        row = harmonise(exposure_row(), outcome_row(ea='C', oa='T', eaf=0.7))
        assert row['mr_keep']
        assert row['beta_outcome'] == pytest.approx(-0.05)

    def test_forward_strand_only(self):
        row = harmonise(exposure_row(), outcome_row(ea='T', oa='C'), action=1)
        assert not row['mr_keep']

    def test_palindrome_oriented_by_frequency(self):
        row = harmonise(exposure_row(ea='A', oa='T', eaf=0.2), outcome_row(ea='A', oa='T', eaf=0.8))
        assert row['palindromic']
        assert row['mr_keep']
        assert row['beta_outcome'] == pytest.approx(-0.05)

        row = harmonise(exposure_row(ea='A', oa='T', eaf=0.2), outcome_row(ea='A', oa='T', eaf=0.2))
        assert row['mr_keep']
        assert row['beta_outcome'] == pytest.approx(0.05)

    def test_ambiguous_palindrome_dropped(self):
        row = harmonise(exposure_row(ea='C', oa='G', eaf=0.45), outcome_row(ea='C', oa='G', eaf=0.2))
        assert row['ambiguous']
        assert not row['mr_keep']

    def test_palindromes_dropped_under_action_3(self):
        row = harmonise(exposure_row(ea='A', oa='T', eaf=0.2), outcome_row(ea='A', oa='T', eaf=0.2), action=3)
        assert not row['mr_keep']
        row = harmonise(exposure_row(), outcome_row(ea='T', oa='C'), action=3)
        assert row['mr_keep']

    def test_palindromes_kept_under_action_1(self):
        row = harmonise(exposure_row(ea='A', oa='T', eaf=0.5), outcome_row(ea='A', oa='T', eaf=0.5), action=1)
        assert row['palindromic']
        assert row['mr_keep']

    def test_indel_dropped(self):
        row = harmonise(exposure_row(ea='AT', oa='A'), outcome_row(ea='AT', oa='A'))
        assert not row['mr_keep']

    def test_incompatible_alleles_dropped(self):
        row = harmonise(exposure_row(ea='A', oa='G'), outcome_row(ea='A', oa='C'))
        assert not row['mr_keep']

    def test_missing_other_allele_inferred(self):
        row = harmonise(exposure_row(), outcome_row(ea='G', oa=None, eaf=0.7))
        assert row['mr_keep']
        assert (row['effect_allele_outcome'], row['other_allele_outcome']) == ('A', 'G')
        assert row['beta_outcome'] == pytest.approx(-0.05)

    def test_unformatted_input(self):
        exposure = pl.DataFrame({'SNP': ['rs1', 'rs2'], 'effect_allele': ['A', 'C'], 'other_allele': ['G', 'T'],
                                 'eaf': [0.3, 0.3], 'beta': [0.1, 0.2], 'se': [0.01, 0.01], 'pval': [1e-9, 1e-9],
                                 'exposure_id': ['e1', 'e1']})
        outcome = pl.DataFrame({'SNP': ['rs1', 'rs3'], 'effect_allele': ['G'] * 2, 'other_allele': ['A'] * 2,
                                'eaf': [0.7, 0.7], 'beta': [0.05, 0.05], 'se': [0.01, 0.01], 'pval': [0.1, 0.1],
                                'outcome_id': ['o1', 'o1']})
        harmonised = Harmoniser().harmonise(exposure, outcome)
        assert harmonised['SNP'].to_list() == ['rs1']
        np.testing.assert_allclose(harmonised['beta_outcome'].to_numpy(), [-0.05])

    def test_missing_columns(self):
        with pytest.raises(ValueError):
            Harmoniser().harmonise(exposure_row().drop('eaf_exposure'), outcome_row(), formatted=True)
