from __future__ import annotations
import json, sys, time
from typing import Any, Dict
_LOG_LEVEL = 'INFO'
_LOG_FORMAT = 'json'
_LEVELS = {'DEBUG': 0, 'INFO': 1, 'WARN': 2, 'ERROR': 3}

def configure_logging(level: str = 'INFO', format: str = 'json'):
    global _LOG_LEVEL, _LOG_FORMAT
    level = level.upper()
    if level == 'WARNING':
        level = 'WARN'
    if level not in _LEVELS:
        raise ValueError(f'Unknown log level: {level}')
    if format.lower() not in ('json', 'text'):
        raise ValueError(f'Unknown log format: {format}')
    _LOG_LEVEL = level
    _LOG_FORMAT = format.lower()

def _should_log(level: str, force_debug: bool = False) -> bool:
    if force_debug:
        return True
    return _LEVELS.get(level.upper(), 1) >= _LEVELS.get(_LOG_LEVEL, 1)

def log(level: str, message: str, _force_debug: bool = False, **fields: Any):
    if not _should_log(level, _force_debug):
        return
    ts = time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime())
    lvl = level.upper()
    if _LOG_FORMAT == 'json':
        rec = {'ts': ts, 'level': lvl, 'msg': message}
        if fields: rec.update(fields)
        print(json.dumps(rec, sort_keys=True, default=str), file=sys.stderr)
    else:
        extra = ' '.join(f'{k}={v}' for k,v in fields.items()) if fields else ''
        line = f"{ts} [{lvl}] {message}" + (f" {extra}" if extra else '')
        print(line, file=sys.stderr)

def debug(message: str, **fields: Any): log('debug', message, **fields)

def info(message: str, **fields: Any): log('info', message, **fields)

def warn(message: str, **fields: Any): log('warn', message, **fields)

def error(message: str, **fields: Any): log('error', message, **fields)


class BoundLogger:
    """Logger carrying fixed fields on every record.

    With debug=True, debug records are emitted even when the global level is higher.
    """

    def __init__(self, fields: Dict[str, Any], debug: bool = False):
        self.fields = dict(fields)
        self.debug_enabled = debug

    def bind(self, **fields: Any) -> 'BoundLogger':
        return BoundLogger({**self.fields, **fields}, debug=self.debug_enabled)

    def _log(self, level: str, message: str, fields: Dict[str, Any]):
        log(level, message, _force_debug=self.debug_enabled, **{**self.fields, **fields})

    def debug(self, message: str, **fields: Any): self._log('debug', message, fields)

    def info(self, message: str, **fields: Any): self._log('info', message, fields)

    def warn(self, message: str, **fields: Any): self._log('warn', message, fields)

    def error(self, message: str, **fields: Any): self._log('error', message, fields)


def bind(debug: bool = False, **fields: Any) -> BoundLogger:
    return BoundLogger(fields, debug=debug)
