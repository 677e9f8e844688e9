# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Command line interface.
'''

import functools
import logging
import os
import traceback

import click
import toml  # pylint: disable=import-error

from . import __version__ as _VERSION
from . import config as _config
from . import keys, metadata, pipeline, sigstruct
from .errors import SolutionPrepError

_log = logging.getLogger('solprep')

ERROR_LOG = 'error.log'

def setup_logging(verbose):
    logging.basicConfig(
        format='%(asctime)s %(name)s: %(message)s',
        level=logging.WARNING)
    _log.setLevel(max(logging.DEBUG, logging.WARNING - verbose * 10))

def write_error_log(error, path=ERROR_LOG):
    with open(path, 'w', encoding='UTF-8') as file:
        file.write(''.join(traceback.format_exception(type(error), error, error.__traceback__)))
    return os.path.abspath(path)

def report_errors(func):
    '''Turn :py:exc:`SolutionPrepError` into a failed exit, keeping the traceback in a file.'''
    @functools.wraps(func)
    def wrapper(*args, **kwds):
        try:
            return func(*args, **kwds)
        except SolutionPrepError as e:
            error_log = write_error_log(e)
            click.echo('Error happened during execution', err=True)
            click.echo(f'Error log was written at {error_log}', err=True)
            raise click.ClickException(str(e)) from e
    return wrapper

@click.group()
@click.option('--verbose', '-v', count=True, help='Increase verbosity.')
@click.version_option(_VERSION)
def main(verbose):
    '''Prepare Gramine SGX solutions.'''
    setup_logging(verbose)

@main.command()
@click.argument('solution', type=click.Path(file_okay=False))
@click.option('--key', 'key_path', required=True, type=click.Path(dir_okay=False),
    help='Private key used to sign the enclave.')
@click.option('--base-image-path', type=click.Path(exists=True, dir_okay=False),
    help='Local archive of the base image.')
@click.option('--base-image-resource',
    help='Reference of the base image to pull.')
@click.option('--write-default-manifest', is_flag=True,
    help='Also store the signed manifest as the default one, matching any MRENCLAVE.')
@click.option('--workdir', type=click.Path(file_okay=False),
    help='Working directory (default: new temporary directory).')
@click.option('--enclave-size', help='Enclave size passed to the manifest, e.g. 4G.')
@click.option('--thread-num', help='Maximum number of enclave threads.')
@click.option('--stack-size', help='Stack size passed to the manifest, e.g. 8M.')
@click.option('--config', '-c', 'config_file', type=click.Path(dir_okay=False),
    help='Configuration file (YAML).')
@report_errors
def prepare(solution, key_path, base_image_path, base_image_resource, write_default_manifest,
            workdir, enclave_size, thread_num, stack_size, config_file):
    '''
    Sign the manifest of the base image and store it in the metadata of the
    SOLUTION directory.
    '''
    config = _config.load_config(config_file)
    result = pipeline.prepare_solution(solution, key_path,
        base_image_path=base_image_path,
        base_image_reference=base_image_resource,
        write_default_manifest=write_default_manifest,
        workdir=workdir,
        enclave_size=enclave_size,
        thread_num=thread_num,
        stack_size=stack_size,
        config=config)

    click.echo(f'Solution metadata: {result.metadata_path}')
    click.echo(f'mrenclave: {result.mrenclave}')
    click.echo(f'mrsigner: {result.mrsigner}')

@main.command('generate-key')
@click.argument('output', type=click.Path(dir_okay=False))
@report_errors
def generate_key(output):
    '''Generate a new enclave signing key into OUTPUT.'''
    keys.generate_signing_key(output)
    click.echo(f'Signing key written to {output}')

@main.command()
@click.argument('solution', type=click.Path(exists=True, file_okay=False))
@report_errors
def info(solution):
    '''Show the signed manifests stored in the SOLUTION directory.'''
    records = metadata.list_metadata(solution)
    if not records:
        raise SolutionPrepError(f'No signed manifests found in {solution}')

    for record in records:
        with open(record.path / metadata.SIGNATURE_NAME, 'rb') as sig:
            summary = sigstruct.describe(sig.read())
        click.echo(toml.dumps({record.key: summary}))

if __name__ == '__main__':
    main() # pylint: disable=no-value-for-parameter
