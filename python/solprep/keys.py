# SPDX-License-Identifier: LGPL-3.0-or-later

import logging
import os

from .errors import PreconditionError
from .process import Runner, assert_command

_log = logging.getLogger(__name__)

OPENSSL_MISSING = 'OpenSSL was not found in PATH, please verify that OpenSSL is installed'

# SGX requires RSA-3072 with public exponent 3
KEY_BITS = 3072

def generate_signing_key(output, runner=None):
    '''Write a new enclave signing key to *output* in PEM format.'''
    if runner is None:
        runner = Runner()
    if os.path.exists(output):
        raise PreconditionError(f'Refusing to overwrite existing file {os.fspath(output)}')

    assert_command(['openssl', 'version'], OPENSSL_MISSING, runner)

    _log.info('generating signing key %s', os.fspath(output))
    runner.run(['openssl', 'genrsa', '-3', '-out', os.fspath(output), str(KEY_BITS)])
