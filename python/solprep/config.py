# SPDX-License-Identifier: LGPL-3.0-or-later

'''
Configuration file handling.

The file is YAML with the same capitalised section layout as the GSC
``config.yaml``. Every key is optional; see ``config.yaml.template`` for the
defaults.
'''

import copy
import logging
import os

import yaml  # pylint: disable=import-error

from .errors import ConfigError

_log = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'Runtime': {
        'Backend': 'cli',
        'Executable': 'docker',
        'Timeout': None,
    },
    'Gramine': {
        'ManifestPath': '/gramine/app_files/entrypoint.manifest',
        'BuildOutput': '/gramine/meson_build_output/lib',
    },
    'Enclave': {
        'Size': None,
        'ThreadNum': None,
        'StackSize': None,
    },
}

# key -> (accepted types, nullable)
_SCHEMA = {
    ('Runtime', 'Backend'): ((str,), False),
    ('Runtime', 'Executable'): ((str,), False),
    ('Runtime', 'Timeout'): ((int, float), True),
    ('Gramine', 'ManifestPath'): ((str,), False),
    ('Gramine', 'BuildOutput'): ((str,), False),
    ('Enclave', 'Size'): ((str, int), True),
    ('Enclave', 'ThreadNum'): ((str, int), True),
    ('Enclave', 'StackSize'): ((str, int), True),
}

_BACKENDS = ('cli', 'api')

def default_config():
    return copy.deepcopy(DEFAULT_CONFIG)

def load_config(path=None):
    '''Load configuration from *path*, falling back to defaults for absent keys.

    Raises:
        ConfigError: if the file cannot be read or contains values of wrong type
    '''
    config = default_config()
    if path is None:
        return config

    try:
        with open(path, 'r', encoding='UTF-8') as file:
            raw = yaml.safe_load(file)
    except OSError as e:
        raise ConfigError(f'Cannot read config file {os.fspath(path)}: {e.strerror}') from e
    except yaml.YAMLError as e:
        raise ConfigError(f'Config file {os.fspath(path)} is not valid YAML:\n{e}') from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f'Config file {os.fspath(path)} must contain a mapping')

    for (section, key), (types, nullable) in _SCHEMA.items():
        raw_section = raw.get(section) or {}
        if not isinstance(raw_section, dict):
            raise ConfigError(f'Section `{section}` in {os.fspath(path)} must be a mapping')
        if key not in raw_section:
            continue
        value = raw_section[key]
        if value is None and nullable:
            pass
        elif isinstance(value, bool) or not isinstance(value, types):
            raise ConfigError(f'Invalid value for `{section}.{key}` in {os.fspath(path)}: '
                              f'{value!r}')
        config[section][key] = value

    if config['Runtime']['Backend'] not in _BACKENDS:
        raise ConfigError(f'`Runtime.Backend` must be one of {", ".join(_BACKENDS)}, not '
                          f'{config["Runtime"]["Backend"]!r}')

    _log.debug('loaded config from %s', os.fspath(path))
    return config
