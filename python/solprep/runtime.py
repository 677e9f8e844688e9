# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Container runtime backends.

:py:class:`DockerCli` drives any ``docker``-compatible command line tool
through :py:class:`solprep.process.Runner`. :py:class:`DockerApi` talks to the
Docker daemon directly through the Docker SDK.
'''

import abc
import collections
import csv
import io
import logging
import os

import docker  # pylint: disable=import-error

from . import parsers
from .errors import ExecutionError, PreconditionError
from .process import Runner, assert_command

_log = logging.getLogger(__name__)

DOCKER_MISSING = 'Docker was not found in PATH, please verify that Docker is installed'
DAEMON_UNREACHABLE = 'Could not connect to the Docker daemon, please verify that it is running'

class Mount(collections.namedtuple('Mount', ('host', 'container', 'mode'))):
    '''Bind mount of a host path into a container.

    Args:
        host (str or os.PathLike): absolute path on the host
        container (str): absolute path inside the container
        mode (str): ``'ro'`` or ``'rw'``
    '''
    __slots__ = ()

    def __new__(cls, host, container, mode='rw'):
        if mode not in ('ro', 'rw'):
            raise ValueError(f'invalid mount mode: {mode!r}')
        return super().__new__(cls, os.fspath(host), container, mode)

    def as_mount_arg(self):
        '''Value of ``--mount`` for this bind mount.

        The fields are CSV-quoted, so host paths may contain ``:`` or ``,``.
        '''
        fields = ['type=bind', f'source={self.host}', f'target={self.container}']
        if self.mode == 'ro':
            fields.append('readonly')
        buf = io.StringIO()
        csv.writer(buf, lineterminator='').writerow(fields)
        return buf.getvalue()

    def as_docker_mount(self):
        return docker.types.Mount(self.container, self.host, type='bind',
            read_only=self.mode == 'ro')


class ContainerRuntime(abc.ABC):
    @abc.abstractmethod
    def probe(self):
        '''Raise :py:exc:`PreconditionError` unless the runtime is usable.'''
        raise NotImplementedError()

    @abc.abstractmethod
    def load_image(self, archive):
        '''Load an image archive and return the reference of the loaded image.'''
        raise NotImplementedError()

    @abc.abstractmethod
    def pull_image(self, reference):
        '''Pull an image and return the resolved reference.'''
        raise NotImplementedError()

    @abc.abstractmethod
    def run(self, image, command, *, entrypoint, mounts=(), hostname=None):
        '''Run a throwaway container and return its standard output.'''
        raise NotImplementedError()


class DockerCli(ContainerRuntime):
    '''Runtime driven through a ``docker``-compatible executable.

    Args:
        runner (Runner): used for every invocation
        executable (str): name or path of the CLI, e.g. ``docker`` or ``podman``
    '''
    def __init__(self, runner=None, executable='docker'):
        self.runner = runner if runner is not None else Runner()
        self.executable = executable

    def probe(self):
        assert_command([self.executable, 'version'], DOCKER_MISSING, self.runner)

    def load_image(self, archive):
        result = self.runner.run([self.executable, 'image', 'load', '-i', os.fspath(archive)])
        return parsers.parse_loaded_image(result.stdout)

    def pull_image(self, reference):
        result = self.runner.run([self.executable, 'image', 'pull', reference])
        return parsers.parse_pulled_image(result.stdout)

    def run_argv(self, image, command, *, entrypoint, mounts=(), hostname=None):
        argv = [self.executable, 'run', '--rm']
        if hostname is not None:
            argv += ['--hostname', hostname]
        argv += ['--entrypoint', entrypoint]
        for mount in mounts:
            argv += ['--mount', mount.as_mount_arg()]
        argv += [image, *command]
        return argv

    def run(self, image, command, *, entrypoint, mounts=(), hostname=None):
        argv = self.run_argv(image, command,
            entrypoint=entrypoint, mounts=mounts, hostname=hostname)
        return self.runner.run(argv).stdout


class DockerApi(ContainerRuntime):
    '''Runtime driven through the Docker Engine API.

    Args:
        client (docker.DockerClient or None): created from the environment on
            first use if not given
        timeout (int or None): API request timeout in seconds
    '''
    def __init__(self, client=None, timeout=None):
        self._client = client
        self.timeout = timeout

    @property
    def client(self):
        if self._client is None:
            kwds = {} if self.timeout is None else {'timeout': self.timeout}
            try:
                self._client = docker.from_env(**kwds)
            except docker.errors.DockerException as e:
                raise PreconditionError(DAEMON_UNREACHABLE) from e
        return self._client

    def probe(self):
        try:
            version = self.client.version()
        except docker.errors.DockerException as e:
            raise PreconditionError(DAEMON_UNREACHABLE) from e
        _log.debug('docker engine %s', version.get('Version'))

    def load_image(self, archive):
        cmd = ('docker-api', 'load', os.fspath(archive))
        lines = []
        try:
            with open(archive, 'rb') as data:
                for chunk in self.client.api.load_image(data):
                    if 'error' in chunk:
                        raise ExecutionError(cmd, None, stderr=chunk['error'])
                    if 'stream' in chunk:
                        lines.append(chunk['stream'])
        except OSError as e:
            raise ExecutionError(cmd, None, reason=f'could not read archive ({e.strerror})') \
                from e
        except docker.errors.APIError as e:
            raise ExecutionError(cmd, e.status_code, stderr=str(e.explanation)) from e
        return parsers.parse_loaded_image(''.join(lines))

    def pull_image(self, reference):
        # without a tag, older SDKs pull every tag and return a list
        repository, tag = docker.utils.parse_repository_tag(reference)
        try:
            image = self.client.images.pull(repository, tag=tag or 'latest')
        except docker.errors.APIError as e:
            raise ExecutionError(('docker-api', 'pull', reference), e.status_code,
                stderr=str(e.explanation)) from e
        if image.tags:
            return image.tags[0]
        return image.id

    def run(self, image, command, *, entrypoint, mounts=(), hostname=None):
        cmd = ('docker-api', 'run', image, *command)
        try:
            output = self.client.containers.run(image, list(command),
                entrypoint=[entrypoint],
                mounts=[mount.as_docker_mount() for mount in mounts],
                hostname=hostname,
                remove=True, stdout=True, stderr=False)
        except docker.errors.ContainerError as e:
            stderr = e.stderr.decode(errors='surrogateescape') if e.stderr else ''
            raise ExecutionError(cmd, e.exit_status, stderr=stderr) from e
        except docker.errors.APIError as e:
            raise ExecutionError(cmd, e.status_code, stderr=str(e.explanation)) from e
        return output.decode(errors='surrogateescape')


def make_runtime(config, runner=None):
    '''Build the runtime selected by the ``Runtime`` section of *config*.'''
    section = config['Runtime']
    if section['Backend'] == 'api':
        return DockerApi(timeout=section['Timeout'])
    if runner is None:
        runner = Runner(timeout=section['Timeout'])
    return DockerCli(runner, executable=section['Executable'])
