# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Measurement-keyed metadata store inside a solution directory.

Layout::

    <solution>/.solution-metadata/sgx-gramine/manifests/mrenclave/<key>/
        entrypoint.manifest.sgx
        entrypoint.sig

where ``<key>`` is the lowercase hex MRENCLAVE, or :py:data:`WILDCARD_KEY` for
the default manifest that matches any measurement.
'''

import collections
import logging
import pathlib
import re
import shutil

from .errors import PersistenceError

_log = logging.getLogger(__name__)

METADATA_DIR = pathlib.PurePath('.solution-metadata', 'sgx-gramine', 'manifests', 'mrenclave')
SGX_MANIFEST_NAME = 'entrypoint.manifest.sgx'
SIGNATURE_NAME = 'entrypoint.sig'
WILDCARD_KEY = '_'

_HEX_RE = re.compile(r'[0-9a-f]+')

MetadataRecord = collections.namedtuple('MetadataRecord', ('key', 'path'))

def metadata_root(solution_path):
    return pathlib.Path(solution_path) / METADATA_DIR

def record_path(solution_path, key):
    return metadata_root(solution_path) / key

def _write_record(solution_path, key, sgx_manifest, signature):
    target = record_path(solution_path, key)
    target.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(sgx_manifest, target / SGX_MANIFEST_NAME)
    shutil.copyfile(signature, target / SIGNATURE_NAME)
    _log.info('wrote metadata record %s', target)
    return target

def write_metadata(solution_path, mrenclave, sgx_manifest, signature, *, write_default=False):
    '''Store the signed manifest and its SIGSTRUCT under *mrenclave*.

    If *write_default* is set, the same files are stored under
    :py:data:`WILDCARD_KEY` as well.

    Returns:
        pathlib.Path: the measurement-keyed record directory

    Raises:
        PersistenceError: if *mrenclave* is not a lowercase hex measurement, or
            on any filesystem failure; records already written stay in place
            and are listed in :py:attr:`PersistenceError.written`
    '''
    if mrenclave == WILDCARD_KEY or not _HEX_RE.fullmatch(mrenclave):
        raise PersistenceError(f'Refusing to store a record under invalid MRENCLAVE {mrenclave!r}')

    try:
        solution_path = pathlib.Path(solution_path)
        solution_path.mkdir(parents=True, exist_ok=True)
        solution_path = solution_path.resolve()
        primary = _write_record(solution_path, mrenclave, sgx_manifest, signature)
    except OSError as e:
        raise PersistenceError(f'Could not write metadata for {mrenclave}: {e}') from e

    if write_default:
        try:
            _write_record(solution_path, WILDCARD_KEY, sgx_manifest, signature)
        except OSError as e:
            raise PersistenceError(
                f'Could not write default metadata (record {primary} was written): {e}',
                written=[primary]) from e

    return primary

def list_metadata(solution_path):
    '''All complete records in the store of *solution_path*, sorted by key.'''
    root = metadata_root(solution_path)
    if not root.is_dir():
        return []
    return [MetadataRecord(path.name, path)
        for path in sorted(root.iterdir())
        if (path / SGX_MANIFEST_NAME).is_file() and (path / SIGNATURE_NAME).is_file()]
