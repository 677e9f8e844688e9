# SPDX-License-Identifier: LGPL-3.0-or-later

import datetime
import logging
import pathlib
import shutil
import tempfile

from .errors import PreconditionError

_log = logging.getLogger(__name__)

SCRIPT_NAME = 'entrypoint.script'
MANIFEST_NAME = 'entrypoint.manifest'
SIGNATURE_NAME = 'entrypoint.sig.tmp'
SGX_MANIFEST_NAME = 'entrypoint.manifest.sgx.tmp'
BASE_MANIFEST_NAME = 'baseSolution.manifest'

class WorkingSession:
    '''Scratch directory owned by a single pipeline run.

    The directory is never removed automatically, so that after a failure the
    external commands can be rerun against the same files. Call
    :py:meth:`cleanup` explicitly to get rid of it.

    Args:
        root (pathlib.Path): absolute path of the directory
        created (datetime.datetime): when the session was allocated
    '''
    def __init__(self, root, created=None):
        self.root = pathlib.Path(root)
        self.created = created or datetime.datetime.now()

    @classmethod
    def create(cls, root=None):
        '''Allocate a session, in *root* if given, else in a fresh temporary directory.

        Raises:
            PreconditionError: if the directory cannot be created
        '''
        try:
            if root is None:
                root = tempfile.mkdtemp(prefix='solprep-')
            else:
                root = pathlib.Path(root)
                root.mkdir(parents=True, exist_ok=True)
            root = pathlib.Path(root).resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise PreconditionError(f'Cannot create working directory: {e}') from e
        session = cls(root)
        _log.info('working directory: %s', session.root)
        return session

    def __truediv__(self, other):
        return self.root / other

    def __repr__(self):
        return f'{type(self).__name__}({str(self.root)!r})'

    @property
    def script(self):
        return self.root / SCRIPT_NAME

    @property
    def manifest(self):
        return self.root / MANIFEST_NAME

    @property
    def signature(self):
        return self.root / SIGNATURE_NAME

    @property
    def sgx_manifest(self):
        return self.root / SGX_MANIFEST_NAME

    @property
    def base_manifest(self):
        return self.root / BASE_MANIFEST_NAME

    def cleanup(self):
        shutil.rmtree(self.root)
