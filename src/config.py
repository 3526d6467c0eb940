"""Bridge configuration: built-in defaults plus an optional JSON file."""
import json
import os

from errors import CommandError

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DEFAULT_CONFIG_PATH = os.path.join(_PROJECT_ROOT, 'bridge_config.json')

DEFAULTS = {
    'engines_dir':       os.path.join(_PROJECT_ROOT, 'engines'),
    'engine':            None,         # engine enabled at startup (None = manual)
    'search_mode':       'nodes',      # 'nodes' | 'time'
    'nodes':             1_000_000,
    'time_base_ms':      60_000,
    'time_increment_ms': 1_000,
    'clock_policy':      'per_game',   # 'per_game' | 'accumulate'
    'threads':           1,
    'hash_mb':           None,
    'engine_options':    {},
    'poll_interval':     0.25,         # autoplay timer (seconds)
    'settle_delay':      0.3,          # wait between post-move checks (seconds)
    'verify_attempts':   5,
    'debugging_port':    9223,
    'transcript_path':   None,         # None → engine.log in the project root
}


def load_config(path=None):
    """Return the configuration dict.

    Values from the JSON object at *path* (default: bridge_config.json in
    the project root) override DEFAULTS.  A missing file is not an error
    when no explicit path was given.

    Raises:
        CommandError('invalid_config'): unreadable file, bad JSON, unknown
        keys or out-of-range values.
    """
    config = dict(DEFAULTS)
    config['engine_options'] = {}
    explicit = path is not None
    path = path or DEFAULT_CONFIG_PATH

    if not os.path.exists(path):
        if explicit:
            raise CommandError('invalid_config', f"Configuration file not found: {path}")
        return config

    try:
        with open(path, encoding='utf-8') as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        raise CommandError('invalid_config', f"Error reading {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise CommandError('invalid_config', f"{path} must contain a JSON object")
    unknown = sorted(set(data) - set(DEFAULTS))
    if unknown:
        raise CommandError(
            'invalid_config',
            f"Unknown configuration key(s) in {path}: {', '.join(unknown)}",
        )
    config.update(data)
    validate_config(config)
    return config


def validate_config(config):
    """Raise CommandError('invalid_config') on out-of-range settings."""
    if config['search_mode'] not in ('nodes', 'time'):
        raise CommandError('invalid_config', "search_mode must be 'nodes' or 'time'")
    if config['clock_policy'] not in ('per_game', 'accumulate'):
        raise CommandError('invalid_config', "clock_policy must be 'per_game' or 'accumulate'")
    for key in ('nodes', 'time_base_ms', 'threads', 'verify_attempts'):
        if not isinstance(config[key], int) or config[key] <= 0:
            raise CommandError('invalid_config', f"{key} must be a positive integer")
    if not isinstance(config['time_increment_ms'], int) or config['time_increment_ms'] < 0:
        raise CommandError('invalid_config', "time_increment_ms must be a non-negative integer")
    for key in ('poll_interval', 'settle_delay'):
        if not isinstance(config[key], (int, float)) or config[key] < 0:
            raise CommandError('invalid_config', f"{key} must be a non-negative number")
    if not isinstance(config['engine_options'], dict):
        raise CommandError('invalid_config', "engine_options must be an object")
