# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Errors raised by the solution packaging pipeline.

Every error is fatal for the run that raised it. The pipeline never retries and
never removes the working directory, so the failing external command can be
reproduced by hand from :py:attr:`SolutionPrepError.workdir`.
'''

class SolutionPrepError(Exception):
    '''Base class for all pipeline errors.

    Args:
        message (str): a message to be displayed to the user
    '''
    def __init__(self, message):
        super().__init__(message)
        self.message = message
        self.workdir = None

    def __str__(self):
        if self.workdir is None:
            return self.message
        return f'{self.message}\n(working directory kept at {self.workdir})'

class PreconditionError(SolutionPrepError):
    '''A required external tool or input file is unavailable.'''

class InputConflictError(SolutionPrepError):
    '''Neither or both of the mutually exclusive image sources were given.'''

class ConfigError(SolutionPrepError):
    '''The configuration file is unreadable or malformed.'''

class ExecutionError(SolutionPrepError):
    '''An external process exited with non-zero status or timed out.'''
    def __init__(self, cmd, returncode, stdout='', stderr='', *, reason=None):
        self.cmd = tuple(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        if reason is None:
            reason = f'exited with status {returncode}'
        message = f'Command `{" ".join(self.cmd)}` {reason}'
        if stderr:
            message += f':\n{stderr.rstrip()}'
        super().__init__(message)

class ExtractionError(SolutionPrepError):
    '''A container run did not produce the file it was expected to produce.'''

class ParseError(SolutionPrepError):
    '''A tool succeeded, but its output lacks the expected markers.'''
    def __init__(self, message, output=''):
        super().__init__(message)
        self.output = output

class PersistenceError(SolutionPrepError):
    '''Writing the working directory or the metadata store failed.

    Records written before the failure are left in place and listed in
    :py:attr:`written`.
    '''
    def __init__(self, message, written=()):
        super().__init__(message)
        self.written = list(written)
