import json
import os
import textwrap
import pytest
from click.testing import CliRunner

from kube_stack.run import cli
from kube_stack.stack import CHECKSUM_ANNOTATION, LABEL
from kube_stack.kube.errors import Forbidden
from conftest import FakeCluster

CONFIGMAP = """
apiVersion: v1
kind: ConfigMap
metadata:
  name: {name}
  namespace: default
data:
  key: value
"""


@pytest.fixture
def env(tmp_path, monkeypatch):
    web = tmp_path / 'stacks' / 'web'
    web.mkdir(parents=True)
    (web / 'a.yaml').write_text(CONFIGMAP.format(name='a'))
    (web / 'b.yaml').write_text(CONFIGMAP.format(name='b'))
    cfg_path = tmp_path / 'cfg.yaml'
    cfg_path.write_text(textwrap.dedent("""
    clusters:
      - name: c1
        kubeconfig: kubeconfig.yaml
    stacks:
      - name: web
        path: stacks/web
    logging:
      level: ERROR
      format: text
    """))
    clusters = {}

    def fake_open(cfg, name):
        return clusters.setdefault(name, FakeCluster())

    monkeypatch.setattr('kube_stack.run.open_stack_client', fake_open)
    return {'config': str(cfg_path), 'web': web, 'clusters': clusters, 'root': tmp_path}


def _run(env, *args):
    return CliRunner().invoke(cli, ['--config', env['config'], *args])


def test_apply_prune_and_status(env):
    res = _run(env, 'apply', 'web')
    assert res.exit_code == 0, res.output
    summary = json.loads(res.output)
    assert summary['stack'] == 'web'
    assert (summary['created'], summary['updated'], summary['kept'], summary['pruned']) == (2, 0, 0, 0)
    cluster = env['clusters']['c1']
    assert sorted(k[2] for k in cluster.objects) == ['a', 'b']

    os.remove(env['web'] / 'b.yaml')
    res = _run(env, 'apply', 'web')
    assert res.exit_code == 0, res.output
    summary = json.loads(res.output)
    assert (summary['created'], summary['kept'], summary['pruned']) == (0, 1, 1)
    assert [k[2] for k in cluster.objects] == ['a']

    res = _run(env, 'status', 'web')
    assert res.exit_code == 0, res.output
    status = json.loads(res.output)
    assert [r['name'] for r in status['resources']] == ['a']
    assert status['resources'][0]['checksum'] == cluster.objects[('ConfigMap', 'default', 'a')]['metadata']['annotations'][CHECKSUM_ANNOTATION]


def test_apply_no_prune(env):
    assert _run(env, 'apply', 'web').exit_code == 0
    os.remove(env['web'] / 'b.yaml')
    res = _run(env, 'apply', 'web', '--no-prune')
    assert res.exit_code == 0, res.output
    assert json.loads(res.output)['pruned'] == 0
    assert len(env['clusters']['c1'].objects) == 2


def test_apply_adhoc_path(env):
    other = env['root'] / 'other.yaml'
    other.write_text(CONFIGMAP.format(name='solo'))
    res = _run(env, 'apply', '--path', str(other))
    assert res.exit_code == 0, res.output
    assert json.loads(res.output)['stack'] == 'other'
    stored = env['clusters']['c1'].objects[('ConfigMap', 'default', 'solo')]
    assert stored['metadata']['labels'] == {LABEL: 'other'}


def test_delete(env):
    assert _run(env, 'apply', 'web').exit_code == 0
    res = _run(env, 'delete', 'web')
    assert res.exit_code == 0, res.output
    assert json.loads(res.output) == {'stack': 'web', 'deleted': 2}
    assert env['clusters']['c1'].objects == {}


def test_apply_failure_reports_resource(env):
    assert _run(env, 'apply', 'web').exit_code == 0
    cluster = env['clusters']['c1']
    (env['web'] / 'c.yaml').write_text(CONFIGMAP.format(name='c'))
    cluster.fail_on[('create', 'c')] = Forbidden('configmaps is forbidden', status=403)
    res = _run(env, 'apply', 'web')
    assert res.exit_code == 1
    assert 'create v1:ConfigMap/c in namespace default failed' in res.output


def test_unknown_stack_and_missing_args(env):
    res = _run(env, 'apply', 'nope')
    assert res.exit_code == 1
    assert 'Stack nope not found' in res.output
    res = _run(env, 'apply')
    assert res.exit_code == 1
    assert 'Must specify at least one stack' in res.output


def test_missing_config(tmp_path):
    res = CliRunner().invoke(cli, ['--config', str(tmp_path / 'none.yaml'), 'apply', 'web'])
    assert res.exit_code == 1
    assert 'Config file not found' in res.output


def test_help_lists_commands(env):
    res = _run(env, 'help')
    assert res.exit_code == 0
    for name in ('apply', 'delete', 'status'):
        assert name in res.output
    res = _run(env, 'help', 'apply')
    assert '--no-prune' in res.output
