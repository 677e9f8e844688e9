import errno
import os
import pathlib
import unittest
from unittest import mock

import toml

from solprep import signer
from solprep.errors import (ExecutionError, ExtractionError, ParseError, PersistenceError,
    PreconditionError)
from solprep.session import WorkingSession

from fakes import MANIFEST, MODULUS, MRENCLAVE, MRSIGNER, DockerTestCase, make_sig

class TC_00_Script(unittest.TestCase):
    def test_000_commands(self):
        script = signer.render_script()
        lines = script.splitlines()
        self.assertEqual(lines[0], '#!/usr/bin/env bash')
        self.assertIn('set -e', lines)
        self.assertIn('gramine-sgx-sign -k "/sign.key" -m "/entrypoint.manifest" '
                      '-o "/entrypoint.manifest.sgx" -s "/entrypoint.sig"', lines)
        self.assertIn(f'echo "{signer.SEPARATOR}"', lines)
        self.assertIn('gramine-sgx-get-token --sig "/entrypoint.sig" '
                      '--output "/entrypoint.token"', lines)
        self.assertTrue(script.endswith('\n'))

    def test_001_order(self):
        script = signer.render_script()
        self.assertLess(script.index('gramine-sgx-sign'), script.index(signer.SEPARATOR))
        self.assertLess(script.index(signer.SEPARATOR), script.index('gramine-sgx-get-token'))

    def test_002_build_output(self):
        script = signer.render_script('/opt/gramine build/lib')
        self.assertIn("find '/opt/gramine build/lib' -type d -path '*/site-packages'", script)
        self.assertIn("find '/opt/gramine build/lib' -type d -path '*/pkgconfig'", script)
        self.assertIn('export PYTHONPATH="${PYTHONPATH}:', script)
        self.assertIn('export PKG_CONFIG_PATH="${PKG_CONFIG_PATH}:', script)


class TC_01_EnclaveOptions(unittest.TestCase):
    def test_000_none(self):
        self.assertEqual(signer.enclave_options(), {})
        self.assertIs(signer.apply_enclave_options(MANIFEST, {}), MANIFEST)

    def test_001_all(self):
        self.assertEqual(signer.enclave_options('4G', 16, '8M'), {
            'sgx.enclave_size': '4G',
            'sgx.max_threads': 16,
            'sys.stack.size': '8M',
        })

    def test_002_opaque(self):
        self.assertEqual(signer.enclave_options(thread_num='{{ nproc }}'),
            {'sgx.max_threads': '{{ nproc }}'})

    def test_003_replaces_existing_key(self):
        manifest = signer.apply_enclave_options(MANIFEST, signer.enclave_options('4G'))
        data = toml.loads(manifest.decode())
        self.assertEqual(data['sgx'], {'enclave_size': '4G'})
        self.assertEqual(data['libos']['entrypoint'], '/usr/bin/node')

    def test_004_manifest_ending_in_table(self):
        manifest = (b'libos.entrypoint = "/usr/bin/node"\n\n'
                    b'[loader.env]\nLD_LIBRARY_PATH = "/lib"\n')
        manifest = signer.apply_enclave_options(manifest,
            signer.enclave_options(thread_num='16', stack_size='2M'))
        data = toml.loads(manifest.decode())
        self.assertEqual(data['sgx']['max_threads'], 16)
        self.assertEqual(data['sys']['stack']['size'], '2M')
        self.assertEqual(data['loader']['env'], {'LD_LIBRARY_PATH': '/lib'})

    def test_005_merges_into_existing_table(self):
        manifest = b'[sgx]\ndebug = true\nmax_threads = 4\n'
        data = toml.loads(signer.apply_enclave_options(manifest,
            signer.enclave_options(thread_num=8)).decode())
        self.assertEqual(data['sgx'], {'debug': True, 'max_threads': 8})

    def test_010_invalid_manifest(self):
        with self.assertRaises(ParseError):
            signer.apply_enclave_options(b'sgx.enclave_size = "2G"\nsgx.enclave_size = "4G"\n',
                signer.enclave_options('4G'))

    def test_011_key_not_a_table(self):
        with self.assertRaises(ParseError):
            signer.apply_enclave_options(b'sys = "x"\n', signer.enclave_options(stack_size='1M'))


class TC_02_SignManifest(DockerTestCase):
    def setUp(self):
        super().setUp()
        self.session = WorkingSession.create(self.tmpdir / 'work')

    def sign(self, **kwds):
        return signer.sign_manifest(self.runtime, self.session, 'solution-base:1.0', MANIFEST,
            self.key, **kwds)

    def test_000_measurement(self):
        signed = self.sign()
        self.assertEqual(signed.mrenclave, MRENCLAVE)
        self.assertEqual(signed.mrsigner, MRSIGNER)
        self.assertEqual(signed.sgx_manifest, self.session.sgx_manifest)
        self.assertEqual(signed.signature, self.session.signature)
        self.assertEqual(signed.sgx_manifest.read_bytes(), b'signed manifest\n')
        self.assertEqual(self.docker.stages(), ['version', 'sign'])

    def test_001_mounts(self):
        self.sign()
        argv = self.docker.calls[-1]
        mounts = self.docker.mounts(argv)
        self.assertEqual(mounts, {
            '/sign.key': (str(self.key.resolve()), 'ro'),
            '/script.sh': (str(self.session.script), 'rw'),
            '/entrypoint.manifest': (str(self.session.manifest), 'rw'),
            '/entrypoint.manifest.sgx': (str(self.session.sgx_manifest), 'rw'),
            '/entrypoint.sig': (str(self.session.signature), 'rw'),
        })
        self.assertEqual(argv[argv.index('--hostname') + 1], 'localhost')
        self.assertEqual(argv[-2:], ['solution-base:1.0', '/script.sh'])

    def test_002_key_symlink_resolved(self):
        link = self.tmpdir / 'link.key'
        os.symlink(self.key, link)
        signer.sign_manifest(self.runtime, self.session, 'solution-base:1.0', MANIFEST, link)
        self.assertEqual(self.docker.mounts(self.docker.calls[-1])['/sign.key'][0],
            str(self.key.resolve()))

    def test_003_manifest_written(self):
        self.sign()
        self.assertEqual(self.docker.signed_manifests, [MANIFEST])
        self.assertIn('gramine-sgx-sign', self.session.script.read_text())

    def test_004_enclave_options(self):
        self.sign(enclave=signer.enclave_options(enclave_size='4G', thread_num=16))
        data = toml.loads(self.docker.signed_manifests[0].decode())
        self.assertEqual(data['sgx'], {'enclave_size': '4G', 'max_threads': 16})
        self.assertEqual(data['libos']['entrypoint'], '/usr/bin/node')

    def test_005_deterministic(self):
        first = self.sign()
        second = signer.sign_manifest(self.runtime,
            WorkingSession.create(self.tmpdir / 'other'), 'solution-base:1.0', MANIFEST, self.key)
        self.assertEqual(first[:2], second[:2])

    def test_010_missing_key(self):
        with self.assertRaises(PreconditionError):
            signer.sign_manifest(self.runtime, self.session, 'solution-base:1.0', MANIFEST,
                self.tmpdir / 'missing.key')
        self.assertNotIn('sign', self.docker.stages())

    def test_011_signing_failed(self):
        self.docker.fail.add('sign')
        with self.assertRaises(ExecutionError):
            self.sign()

    def test_012_no_signer_in_output(self):
        self.docker.sign_output = self.docker.sign_output.replace('mr_signer:', 'signer:')
        with self.assertRaises(ParseError) as cm:
            self.sign()
        self.assertIn('mr_signer', str(cm.exception))

    def test_013_outputs_not_written(self):
        self.docker.sig = b''
        with self.assertRaises(ExtractionError):
            self.sign()

    def test_014_docker_missing(self):
        self.docker.fail.add('version')
        with self.assertRaises(PreconditionError):
            self.sign()
        self.assertEqual(self.docker.stages(), ['version'])

    def test_015_key_symlink_loop(self):
        loop = self.tmpdir / 'loop.key'
        os.symlink(loop, loop)
        with self.assertRaises(PreconditionError):
            signer.sign_manifest(self.runtime, self.session, 'solution-base:1.0', MANIFEST, loop)
        self.assertNotIn('sign', self.docker.stages())

    def test_016_workdir_not_writable(self):
        with mock.patch.object(pathlib.Path, 'write_bytes',
                side_effect=OSError(errno.ENOSPC, 'No space left on device')):
            with self.assertRaises(PersistenceError) as cm:
                self.sign()
        self.assertIn('No space left on device', str(cm.exception))
        self.assertNotIn('sign', self.docker.stages())

    def test_017_measurement_not_in_signature(self):
        self.docker.sig = make_sig(bytes(32), MODULUS)
        with self.assertRaises(ParseError) as cm:
            self.sign()
        self.assertIn('mr_enclave', str(cm.exception))

    def test_018_signer_not_in_signature(self):
        self.docker.sig = make_sig(bytes.fromhex(MRENCLAVE), bytes(384))
        with self.assertRaises(ParseError) as cm:
            self.sign()
        self.assertIn('mr_signer', str(cm.exception))

    def test_019_truncated_signature(self):
        self.docker.sig = b'S' * 100
        with self.assertRaises(ParseError):
            self.sign()

    def test_020_key_path_with_colon(self):
        keydir = self.tmpdir / 'a:b'
        keydir.mkdir()
        key = keydir / 'sign.key'
        key.write_bytes(self.key.read_bytes())
        signer.sign_manifest(self.runtime, self.session, 'solution-base:1.0', MANIFEST, key)
        self.assertEqual(self.docker.mounts(self.docker.calls[-1])['/sign.key'],
            (str(key.resolve()), 'ro'))
