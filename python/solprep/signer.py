# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Signing a Gramine manifest with the toolchain shipped inside the base image.

The signing script, the manifest, the key and two output files are bind-mounted
into a throwaway container. ``gramine-sgx-sign`` produces the signed manifest
and the SIGSTRUCT, then ``gramine-sgx-get-token`` prints the measurement, which
is parsed from the container output.
'''

import collections
import logging
import pathlib
import shlex

import jinja2
import toml

from . import parsers, sigstruct
from .errors import ExtractionError, ParseError, PersistenceError, PreconditionError
from .runtime import Mount

_log = logging.getLogger(__name__)

DEFAULT_BUILD_OUTPUT = '/gramine/meson_build_output/lib'
SEPARATOR = '============= gramine-sgx-get-token ================'

# paths inside the container
KEY_PATH = '/sign.key'
SCRIPT_PATH = '/script.sh'
MANIFEST_PATH = '/entrypoint.manifest'
SGX_MANIFEST_PATH = '/entrypoint.manifest.sgx'
SIGNATURE_PATH = '/entrypoint.sig'
TOKEN_PATH = '/entrypoint.token'

SignedManifest = collections.namedtuple('SignedManifest',
    ('mrenclave', 'mrsigner', 'sgx_manifest', 'signature'))

def make_env():
    env = jinja2.Environment(
        loader=jinja2.PackageLoader('solprep', 'templates'),
        undefined=jinja2.StrictUndefined,
        keep_trailing_newline=True)
    env.filters['shquote'] = shlex.quote
    return env

_env = make_env()

def render_script(build_output=DEFAULT_BUILD_OUTPUT):
    return _env.get_template('sign.sh.template').render(
        build_output=build_output,
        key=KEY_PATH,
        manifest=MANIFEST_PATH,
        sgx_manifest=SGX_MANIFEST_PATH,
        signature=SIGNATURE_PATH,
        token=TOKEN_PATH,
        separator=SEPARATOR)

def enclave_options(enclave_size=None, thread_num=None, stack_size=None):
    '''Manifest keys for the enclave sizing options that were given.

    The values are passed through as they are; Gramine validates them when
    signing. An all-digit thread count becomes an integer.

    Returns:
        dict: dotted manifest key -> value
    '''
    options = {}
    if enclave_size is not None:
        options['sgx.enclave_size'] = str(enclave_size)
    if thread_num is not None:
        thread_num = str(thread_num)
        options['sgx.max_threads'] = int(thread_num) if thread_num.isdigit() else thread_num
    if stack_size is not None:
        options['sys.stack.size'] = str(stack_size)
    return options

def apply_enclave_options(manifest, options):
    '''Set *options* at the top level of *manifest*, replacing existing values.

    Args:
        manifest (bytes): TOML manifest extracted from the base image
        options (dict): as returned by :py:func:`enclave_options`

    Returns:
        bytes: *manifest* itself if there are no options, else the updated
        manifest serialized again

    Raises:
        ParseError: if *manifest* is not TOML or a key cannot be set
    '''
    if not options:
        return manifest

    try:
        data = toml.loads(manifest.decode())
    except (UnicodeDecodeError, toml.TomlDecodeError) as e:
        raise ParseError(f'Cannot set enclave options, the base manifest is not valid TOML: {e}',
            output=manifest.decode(errors='replace')) from e

    for key, value in options.items():
        *tables, name = key.split('.')
        table = data
        for part in tables:
            table = table.setdefault(part, {})
            if not isinstance(table, dict):
                raise ParseError(f'Cannot set {key}, {part} is not a table in the base manifest')
        table[name] = value

    return toml.dumps(data).encode()

def mount_table(session, key_path):
    return [
        Mount(key_path, KEY_PATH, 'ro'),
        Mount(session.script, SCRIPT_PATH, 'rw'),
        Mount(session.manifest, MANIFEST_PATH, 'rw'),
        Mount(session.sgx_manifest, SGX_MANIFEST_PATH, 'rw'),
        Mount(session.signature, SIGNATURE_PATH, 'rw'),
    ]

def resolve_key(key_path):
    try:
        return pathlib.Path(key_path).resolve(strict=True)
    except FileNotFoundError as e:
        raise PreconditionError(f'Signing key {key_path} does not exist') from e
    except (OSError, RuntimeError) as e:
        # RuntimeError is a symlink loop on Python < 3.13
        raise PreconditionError(f'Signing key {key_path} cannot be resolved: {e}') from e

def _write(path, data):
    try:
        path.write_bytes(data)
    except OSError as e:
        raise PersistenceError(f'Could not write {path}: {e.strerror}') from e

def sign_manifest(runtime, session, image, manifest, key_path, *,
                  build_output=DEFAULT_BUILD_OUTPUT, enclave=None):
    '''Sign *manifest* inside *image* and recover its measurement.

    The measurement printed by the toolchain is checked against the SIGSTRUCT
    written by the same run.

    Args:
        runtime (solprep.runtime.ContainerRuntime): container runtime
        session (solprep.session.WorkingSession): scratch directory of this run
        image (str): reference of the base image containing the toolchain
        manifest (bytes): content of the manifest to sign
        key_path (str or os.PathLike): private signing key
        build_output (str): Gramine build output directory inside the image
        enclave (dict or None): manifest overrides from :py:func:`enclave_options`

    Returns:
        SignedManifest: MRENCLAVE, MRSIGNER and paths of both outputs in *session*
    '''
    runtime.probe()
    key_path = resolve_key(key_path)

    _write(session.script, render_script(build_output).encode())
    _write(session.manifest, apply_enclave_options(manifest, enclave or {}))

    # Docker refuses to bind-mount a missing source, so the output files have
    # to exist before the container starts
    _write(session.signature, b'')
    _write(session.sgx_manifest, b'')

    _log.info('signing manifest in image %s', image)
    output = runtime.run(image, [SCRIPT_PATH],
        entrypoint='/bin/sh',
        mounts=mount_table(session, key_path),
        hostname='localhost')

    measurement = parsers.parse_measurement(output)
    _log.info('mrenclave: %s', measurement.mrenclave)
    _log.info('mrsigner: %s', measurement.mrsigner)

    for path in (session.sgx_manifest, session.signature):
        if not path.is_file() or path.stat().st_size == 0:
            raise ExtractionError(f'Signing did not produce {path.name}')

    try:
        sig = session.signature.read_bytes()
    except OSError as e:
        raise ExtractionError(f'Could not read {session.signature}: {e.strerror}') from e
    sigstruct.verify_measurement(sig, measurement)

    return SignedManifest(measurement.mrenclave, measurement.mrsigner,
        session.sgx_manifest, session.signature)
