# SPDX-License-Identifier: LGPL-3.0-or-later

import collections
import logging
import posixpath
import shlex

from . import session as _session
from .errors import ExtractionError, InputConflictError, PersistenceError
from .runtime import Mount

_log = logging.getLogger(__name__)

DEFAULT_MANIFEST_PATH = '/gramine/app_files/entrypoint.manifest'
HOST_MOUNT = '/mnt/host'

BaseImage = collections.namedtuple('BaseImage', ('reference', 'manifest'))

def resolve_base_image(runtime, session, *, base_image_path=None, base_image_reference=None,
                       manifest_path=DEFAULT_MANIFEST_PATH):
    '''Load or pull the base image and extract its manifest.

    A local archive takes precedence over a pull reference.

    Returns:
        BaseImage: resolved image reference and raw manifest bytes
    '''
    runtime.probe()

    if base_image_path:
        _log.info('loading base image from %s', base_image_path)
        reference = runtime.load_image(base_image_path)
    elif base_image_reference:
        _log.info('pulling base image %s', base_image_reference)
        reference = runtime.pull_image(base_image_reference)
    else:
        raise InputConflictError('Base image and resource were not provided')

    if not reference:
        raise ExtractionError('Could not determine the reference of the base image')
    _log.info('base image: %s', reference)

    # stale copy from an earlier run in the same directory
    try:
        session.base_manifest.unlink(missing_ok=True)
    except OSError as e:
        raise PersistenceError(f'Could not remove {session.base_manifest}: {e.strerror}') from e

    dest = posixpath.join(HOST_MOUNT, _session.BASE_MANIFEST_NAME)
    runtime.run(reference, ['-exc', f'cp -f {shlex.quote(manifest_path)} {dest}'],
        entrypoint='/bin/sh',
        mounts=[Mount(session.root, HOST_MOUNT, 'rw')])

    if not session.base_manifest.is_file():
        raise ExtractionError(f'An error occurred while extracting the manifest {manifest_path} '
                              f'from image {reference}')

    try:
        manifest = session.base_manifest.read_bytes()
    except OSError as e:
        raise ExtractionError(f'Could not read the manifest extracted from image {reference}: '
                              f'{e.strerror}') from e
    return BaseImage(reference, manifest)
