# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Preparing a solution: resolve the base image, sign its manifest, store the
signed manifest in the solution's metadata store.
'''

import collections
import logging

from . import config as _config
from .errors import InputConflictError, SolutionPrepError
from .image import resolve_base_image
from .metadata import write_metadata
from .runtime import make_runtime
from .session import WorkingSession
from .signer import enclave_options, sign_manifest

_log = logging.getLogger(__name__)

PreparedSolution = collections.namedtuple('PreparedSolution',
    ('metadata_path', 'mrenclave', 'mrsigner', 'session'))

def _pick(value, config, key):
    return value if value is not None else config['Enclave'][key]

def prepare_solution(solution_path, key_path, *, base_image_path=None, base_image_reference=None,
                     write_default_manifest=False, workdir=None, enclave_size=None,
                     thread_num=None, stack_size=None, config=None, runtime=None, runner=None):
    '''Run the whole pipeline for one solution.

    Exactly one of *base_image_path* and *base_image_reference* must be given.
    Enclave sizing options override the ``Enclave`` section of *config*.

    Returns:
        PreparedSolution: the measurement-keyed metadata directory, the
        measurement and the working session

    Raises:
        SolutionPrepError: the first error of any stage, with ``workdir`` set
            once the working directory exists
    '''
    if bool(base_image_path) == bool(base_image_reference):
        raise InputConflictError(
            'Exactly one of base image path and base image resource must be provided')

    if config is None:
        config = _config.default_config()
    if runtime is None:
        runtime = make_runtime(config, runner)

    session = WorkingSession.create(workdir)
    try:
        base_image = resolve_base_image(runtime, session,
            base_image_path=base_image_path,
            base_image_reference=base_image_reference,
            manifest_path=config['Gramine']['ManifestPath'])

        signed = sign_manifest(runtime, session, base_image.reference, base_image.manifest,
            key_path,
            build_output=config['Gramine']['BuildOutput'],
            enclave=enclave_options(
                _pick(enclave_size, config, 'Size'),
                _pick(thread_num, config, 'ThreadNum'),
                _pick(stack_size, config, 'StackSize')))

        metadata_path = write_metadata(solution_path, signed.mrenclave,
            signed.sgx_manifest, signed.signature, write_default=write_default_manifest)

    except SolutionPrepError as e:
        e.workdir = session.root
        raise

    _log.info('solution prepared: %s', metadata_path)
    return PreparedSolution(metadata_path, signed.mrenclave, signed.mrsigner, session)
