# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Running external tools.

All external commands go through :py:class:`Runner`, which never invokes a
shell, always captures both streams and never retries.
'''

import collections
import logging
import os
import shutil
import signal
import subprocess

from .errors import ExecutionError, PreconditionError

# pylint: disable=subprocess-popen-preexec-fn

_log = logging.getLogger(__name__)

CommandResult = collections.namedtuple('CommandResult', ('returncode', 'stdout', 'stderr'))

class Runner:
    '''Synchronous process runner.

    Args:
        timeout (float or None): seconds after which the whole process group is
            killed; :py:obj:`None` waits forever
        env (dict or None): environment for the child; inherited if
            :py:obj:`None`
    '''
    def __init__(self, timeout=None, env=None):
        self.timeout = timeout
        self.env = env

    def run(self, argv, *, check=True) -> CommandResult:
        '''Run *argv* and return its :py:class:`CommandResult`.

        Raises:
            ExecutionError: on non-zero exit (if *check*), on timeout, or when
                the executable cannot be started at all
        '''
        argv = [os.fspath(arg) for arg in argv]
        _log.debug('running %r', argv)

        try:
            process = subprocess.Popen(argv,
                stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                env=self.env,
                preexec_fn=os.setpgrp)
        except OSError as e:
            raise ExecutionError(argv, None, reason=f'could not be started ({e.strerror})') from e

        with process:
            try:
                stdout, stderr = process.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                os.killpg(process.pid, signal.SIGKILL)
                stdout, stderr = process.communicate()
                raise ExecutionError(argv, None,
                    stdout.decode(errors='surrogateescape'),
                    stderr.decode(errors='surrogateescape'),
                    reason=f'timed out after {self.timeout} s') from None

        result = CommandResult(process.returncode,
            stdout.decode(errors='surrogateescape'),
            stderr.decode(errors='surrogateescape'))

        if check and result.returncode:
            _log.info('command %r failed with status %d', argv, result.returncode)
            raise ExecutionError(argv, result.returncode, result.stdout, result.stderr)

        return result


def assert_command(argv, message, runner):
    '''Check that an external tool is usable before relying on it.

    The probe *argv* is only spawned if its executable is found on ``PATH``.

    Raises:
        PreconditionError: carrying *message* if the tool is missing or the
            probe fails
    '''
    if shutil.which(argv[0]) is None:
        raise PreconditionError(message)
    try:
        runner.run(argv)
    except ExecutionError as e:
        _log.debug('probe %r failed: %s', argv, e)
        raise PreconditionError(message) from e
