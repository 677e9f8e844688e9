# SPDX-License-Identifier: LGPL-3.0-or-later

'''Reading an SGX SIGSTRUCT (the ``.sig`` file produced by ``gramine-sgx-sign``).'''

import collections
import hashlib
import struct

from .errors import ParseError
from .parsers import Measurement

# Offsets for fields in SIGSTRUCT (defined by the SGX HW architecture, they never change)
SGX_ARCH_ENCLAVE_CSS_DATE = 20
SGX_ARCH_ENCLAVE_CSS_MODULUS = 128
SGX_ARCH_ENCLAVE_CSS_ENCLAVE_HASH = 960
SGX_ARCH_ENCLAVE_CSS_ISV_PROD_ID = 1024
SGX_ARCH_ENCLAVE_CSS_ISV_SVN = 1026
SGX_ARCH_ENCLAVE_CSS_SIZE = 1808

class Sigstruct(collections.namedtuple('Sigstruct',
        ('date', 'modulus', 'enclave_hash', 'isv_prod_id', 'isv_svn'))):
    '''Identifying fields of a SIGSTRUCT.

    ``date`` is a ``(year, month, day)`` tuple, ``modulus`` and
    ``enclave_hash`` are raw bytes.
    '''
    __slots__ = ()

    @property
    def mrenclave(self):
        return self.enclave_hash.hex()

    @property
    def mrsigner(self):
        # sha256 over the RSA public key's modulus
        return hashlib.sha256(self.modulus).hexdigest()

    def measurement(self):
        return Measurement(self.mrenclave, self.mrsigner)


def read_sigstruct(sig):
    '''Parse the fields of *sig* needed to identify an enclave.

    Args:
        sig (bytes): content of a ``.sig`` file

    Returns:
        Sigstruct: the parsed fields

    Raises:
        ParseError: if *sig* is shorter than a SIGSTRUCT
    '''
    if len(sig) < SGX_ARCH_ENCLAVE_CSS_SIZE:
        raise ParseError(f'SIGSTRUCT too short ({len(sig)} bytes, expected '
                         f'{SGX_ARCH_ENCLAVE_CSS_SIZE})')

    return Sigstruct(
        date=struct.unpack_from('<HBB', sig, SGX_ARCH_ENCLAVE_CSS_DATE),
        modulus=struct.unpack_from('384s', sig, SGX_ARCH_ENCLAVE_CSS_MODULUS)[0],
        enclave_hash=struct.unpack_from('32s', sig, SGX_ARCH_ENCLAVE_CSS_ENCLAVE_HASH)[0],
        isv_prod_id=struct.unpack_from('<H', sig, SGX_ARCH_ENCLAVE_CSS_ISV_PROD_ID)[0],
        isv_svn=struct.unpack_from('<H', sig, SGX_ARCH_ENCLAVE_CSS_ISV_SVN)[0])

def verify_measurement(sig, measurement):
    '''Check that *measurement*, as printed by the toolchain, belongs to *sig*.

    Args:
        sig (bytes): content of the ``.sig`` file written by the same run
        measurement (solprep.parsers.Measurement): parsed tool output

    Raises:
        ParseError: if the SIGSTRUCT is truncated or identifies another enclave
            or signer
    '''
    actual = read_sigstruct(sig).measurement()
    mismatched = [name for name, printed, stored in zip(
            ('mr_enclave', 'mr_signer'), measurement, actual)
        if printed != stored]
    if mismatched:
        raise ParseError(
            f'Measurement printed by the signer does not match the produced SIGSTRUCT '
            f'({", ".join(mismatched)}: printed {measurement}, signature holds {actual})')

def describe(sig):
    '''Summary of *sig* suitable for printing as TOML.'''
    fields = read_sigstruct(sig)
    return {
        'mr_enclave': fields.mrenclave,
        'mr_signer': fields.mrsigner,
        'isv_prod_id': fields.isv_prod_id,
        'isv_svn': fields.isv_svn,
        'date': '%d-%02d-%02d' % fields.date,
    }
