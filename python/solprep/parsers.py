# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Parsers for the textual output of external tools.

Each function understands the output of exactly one tool invocation. When a
tool changes its output format, only the matching parser needs to follow.
'''

import collections
import re

from .errors import ParseError

Measurement = collections.namedtuple('Measurement', ('mrenclave', 'mrsigner'))

_LOADED_IMAGE_RE = re.compile(r'Loaded image: ([^\n]+)')
_LOADED_IMAGE_ID_RE = re.compile(r'Loaded image ID: ([^\n]+)')
_MR_ENCLAVE_RE = re.compile(r'mr_enclave:\s+([0-9a-fA-F]+)')
_MR_SIGNER_RE = re.compile(r'mr_signer:\s+([0-9a-fA-F]+)')

def parse_loaded_image(output):
    '''Image reference from ``docker image load`` output.

    Untagged archives only report ``Loaded image ID: sha256:...``, which is
    accepted when no tagged image is reported.
    '''
    match = _LOADED_IMAGE_RE.search(output) or _LOADED_IMAGE_ID_RE.search(output)
    if match is None:
        raise ParseError('Could not find the loaded image in the output of image load', output)
    return match.group(1).strip()

def parse_pulled_image(output):
    '''Image reference from ``docker image pull`` output: its last non-blank line.'''
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        raise ParseError('Image pull did not report the pulled image', output)
    return lines[-1]

def parse_measurement(output):
    '''MRENCLAVE and MRSIGNER from ``gramine-sgx-get-token`` output.

    Returns:
        Measurement: both values in lowercase hex
    '''
    mrenclave = _MR_ENCLAVE_RE.search(output)
    mrsigner = _MR_SIGNER_RE.search(output)
    missing = [name
        for name, match in (('mr_enclave', mrenclave), ('mr_signer', mrsigner))
        if match is None]
    if missing:
        raise ParseError(
            f'Could not parse MRENCLAVE and MRSIGNER (missing: {", ".join(missing)})', output)
    return Measurement(mrenclave.group(1).lower(), mrsigner.group(1).lower())
