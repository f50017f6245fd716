from kube_stack.util import logging as log
import json
import sys
import pytest
from io import StringIO


@pytest.fixture
def captured():
    old_stderr = sys.stderr
    captured_output = StringIO()
    sys.stderr = captured_output
    try:
        yield captured_output
    finally:
        sys.stderr = old_stderr
        log.configure_logging('INFO', 'json')


def test_logging_level_filtering(captured):
    log.configure_logging('INFO', 'json')
    log.debug('debug message')
    assert captured.getvalue() == ''
    log.info('info message')
    assert 'info message' in captured.getvalue()
    captured.truncate(0)
    captured.seek(0)
    log.configure_logging('DEBUG', 'json')
    log.debug('debug message')
    assert 'debug message' in captured.getvalue()


def test_logging_format_text(captured):
    log.configure_logging('INFO', 'text')
    log.info('test message', key='value')
    output = captured.getvalue()
    assert '[INFO]' in output
    assert 'key=value' in output
    assert not output.startswith('{')


def test_logging_format_json(captured):
    log.configure_logging('warning', 'json')
    log.info('hidden')
    log.warn('test message', key='value')
    rec = json.loads(captured.getvalue().strip())
    assert rec['level'] == 'WARN'
    assert rec['msg'] == 'test message'
    assert rec['key'] == 'value'


def test_invalid_logging_config():
    with pytest.raises(ValueError):
        log.configure_logging('LOUD', 'json')
    with pytest.raises(ValueError):
        log.configure_logging('INFO', 'xml')


def test_bound_logger_fields_and_debug(captured):
    log.configure_logging('INFO', 'json')
    quiet = log.bind(stack='web')
    quiet.debug('not shown')
    assert captured.getvalue() == ''
    loud = log.bind(stack='web', debug=True).bind(kind='ConfigMap')
    loud.debug('list resource', name='cfg')
    rec = json.loads(captured.getvalue().strip())
    assert rec == {**rec, 'level': 'DEBUG', 'stack': 'web', 'kind': 'ConfigMap', 'name': 'cfg'}
