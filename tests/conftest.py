import sys, os
import copy
import itertools
import pytest

# Ensure project root (parent of tests directory) is on sys.path for imports when
# test execution occurs in environments that don't automatically include it.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from kube_stack.kube.errors import Conflict, NotFound
from kube_stack.kube.resource import Resource

CLUSTER_SCOPED = {'Namespace', 'Node', 'ComponentStatus', 'ClusterRole'}


class FakeCluster:
    """In-memory API server implementing the StackClient operations.

    aliases maps a kind to every apiVersion it is listed under, so the same
    object can show up more than once. Kinds in ignore_selector are listed
    without honouring the label selector.
    """

    def __init__(self, aliases=None, ignore_selector=()):
        self.objects = {}
        self.aliases = aliases or {}
        self.ignore_selector = set(ignore_selector)
        self.calls = []
        self.parallelism = 1
        self._version = itertools.count(1)
        self.fail_on = {}

    @staticmethod
    def key(resource):
        if resource.kind in CLUSTER_SCOPED:
            return (resource.kind, None, resource.name)
        return (resource.kind, resource.namespace or 'default', resource.name)

    def _serve(self, data):
        meta = data.setdefault('metadata', {})
        if data.get('kind') not in CLUSTER_SCOPED:
            meta.setdefault('namespace', 'default')
        meta['resourceVersion'] = str(next(self._version))
        return data

    def seed(self, data):
        data = self._serve(copy.deepcopy(data))
        data['metadata'].setdefault('uid', f'uid-{data["metadata"]["name"]}')
        self.objects[self.key(Resource(data))] = data
        return Resource(data)

    def _maybe_fail(self, op, resource):
        err = self.fail_on.get((op, resource.name))
        if err:
            raise err

    def get_resources(self, resources):
        self.calls.append(('get', [r.name for r in resources]))
        out = []
        for r in resources:
            data = self.objects.get(self.key(r))
            out.append(Resource(data) if data is not None else None)
        return out

    def list_resources(self, label_selector=None):
        self.calls.append(('list', dict(label_selector or {})))
        out = []
        for data in self.objects.values():
            kind = data['kind']
            labels = data['metadata'].get('labels') or {}
            if label_selector and kind not in self.ignore_selector:
                if any(labels.get(k) != v for k, v in label_selector.items()):
                    continue
            for api_version in self.aliases.get(kind, [data['apiVersion']]):
                out.append(Resource(dict(data, apiVersion=api_version)))
        return out

    def create_resource(self, resource):
        self.calls.append(('create', resource.name))
        self._maybe_fail('create', resource)
        data = self._serve(resource.to_dict())
        data['metadata']['uid'] = f'uid-{resource.name}'
        data['metadata']['creationTimestamp'] = '2024-01-01T00:00:00Z'
        self.objects[self.key(resource)] = data
        return Resource(data)

    def update_resource(self, resource):
        self.calls.append(('update', resource.name))
        self._maybe_fail('update', resource)
        current = self.objects.get(self.key(resource))
        if current is None:
            raise NotFound('not found', status=404)
        if resource.metadata.get('resourceVersion') not in (None, current['metadata']['resourceVersion']):
            raise Conflict('resourceVersion mismatch', status=409)
        data = self._serve(resource.to_dict())
        self.objects[self.key(resource)] = data
        return Resource(data)

    def delete_resource(self, resource):
        self.calls.append(('delete', resource.name))
        self._maybe_fail('delete', resource)
        if self.objects.pop(self.key(resource), None) is None:
            raise NotFound(f'{resource.kind} {resource.name} not found', status=404)

    def mutations(self):
        return [c for c in self.calls if c[0] in ('create', 'update', 'delete')]


@pytest.fixture
def cluster():
    return FakeCluster()


def make_resource(kind='ConfigMap', name='cfg', namespace='default', api_version='v1', **body):
    data = {'apiVersion': api_version, 'kind': kind, 'metadata': {'name': name}}
    if namespace:
        data['metadata']['namespace'] = namespace
    data.update(body)
    return Resource(data)


@pytest.fixture
def resource_factory():
    return make_resource
