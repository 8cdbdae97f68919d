import copy
import logging
import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'pval_threshold': 5e-8,
    'intercept': False,
    'instrument_specific': False,
    'harmonise_strictness': 2,
    'palindrome_tolerance': 0.08,
    'anchor': None,
    'methods': 'All',
    'lasso': {
        'n_folds': 10,
        'random_state': 0,
    },
    'exposure_file': None,
    'outcome_file': None,
    'output_dir': 'result',
}


def _merge(base: dict, update: dict) -> dict:
    # nested mappings are merged key by key, everything else is replaced
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path=None, **overrides) -> dict:
    """
    Load an analysis configuration.

    Parameters:
    - path (str or None): YAML file to read. Missing keys fall back to DEFAULT_CONFIG.
    - overrides: keyword values applied on top of the file.

    Returns:
    - dict: the merged configuration.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if path is not None:
        with open(path, 'r') as file:
            loaded = yaml.safe_load(file) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f'{path} must contain a mapping at the top level')
        logger.info(f'Loaded configuration from {path}')
        config = _merge(config, loaded)
    config = _merge(config, overrides)
    _validate(config)
    return config


def _validate(config: dict) -> None:
    threshold = config['pval_threshold']
    if not isinstance(threshold, (int, float)) or not 0 < threshold <= 1:
        raise ValueError(f'pval_threshold must be in (0, 1], got {threshold!r}')
    if config['harmonise_strictness'] not in [1, 2, 3]:
        raise ValueError('harmonise_strictness must be either 1, 2, or 3.')
    tolerance = config['palindrome_tolerance']
    if not isinstance(tolerance, (int, float)) or not 0 <= tolerance < 0.5:
        raise ValueError(f'palindrome_tolerance must be in [0, 0.5), got {tolerance!r}')
    if config['lasso']['n_folds'] < 2:
        raise ValueError('lasso.n_folds must be at least 2')
