import logging
import os
import polars as pl
import yaml
from mvmr.pre_processor import Renamer

logger = logging.getLogger(__name__)


def main(config_path):
    # Load the configuration from the YAML file
    with open(os.path.join('config', config_path), 'r') as file:
        config = yaml.safe_load(file)

    input_file_path = os.path.join('data/raw/', config['input_file'])
    output_file_path = os.path.join('data/processed/', config['output_file'])

    # Instantiate the Renamer with the mapping from the config
    renamer = Renamer(config['rename_mapping'])

    if input_file_path.endswith('.tsv'):
        df = pl.read_csv(input_file_path, separator='\t')
    elif input_file_path.endswith('.csv'):
        df = pl.read_csv(input_file_path)
    else:
        raise ValueError(f'unsupported input file type: {input_file_path}')

    # Rename and trim the DataFrame, adding constant phenotype columns from the config
    renamed_df = renamer.rename_and_trim(df)
    renamed_df = renamed_df.with_columns([pl.lit(value).alias(column) for column, value in config.get('constants', {}).items()])

    # Save the modified DataFrame to the output directory
    os.makedirs(os.path.dirname(output_file_path), exist_ok=True)
    if output_file_path.endswith('.tsv'):
        renamed_df.write_csv(output_file_path, separator='\t')
    else:
        renamed_df.write_csv(output_file_path)

    logger.info(f'DataFrame saved to {output_file_path}')


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    # Path to your YAML configuration file
    config_path = 'data_cleaning.yml'
    main(config_path)
