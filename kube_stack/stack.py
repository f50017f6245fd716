"""Stack reconciliation.

A stack is a named set of desired resources. Applying it creates, updates or
keeps each resource and then prunes every live resource that still carries the
stack label but was not touched by this session.
"""
from __future__ import annotations
import os
import re
import secrets
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence
from .kube.errors import ApplyError, KubeStackError, NotFound, PruneError
from .kube.manifest import load_resources
from .kube.resource import Resource
from .util import logging as log

LABEL = 'kube-stack.io/stack'
CHECKSUM_ANNOTATION = 'kube-stack.io/stack-checksum'
PRUNE_IGNORE = (
    'v1:ComponentStatus',  # apiserver ignores labelSelector on componentstatuses and returns everything
    'v1:Endpoints',  # inherits the stack label from its Service, never the checksum annotation
    'discovery.k8s.io/v1:EndpointSlice',  # same as Endpoints
)

_LABEL_VALUE = re.compile(r'^[A-Za-z0-9]([A-Za-z0-9._-]{0,61}[A-Za-z0-9])?$')


class ApplyAction(str, Enum):
    CREATE = 'create'
    UPDATE = 'update'
    KEEP = 'keep'


class PruneState(str, Enum):
    IGNORED = 'ignored'
    SKIPPED = 'skipped'
    KEPT = 'kept'
    DELETED = 'deleted'
    ABSENT = 'absent'


@dataclass(frozen=True)
class ApplyResult:
    action: ApplyAction
    resource: Resource


@dataclass(frozen=True)
class PruneResult:
    state: PruneState
    resource: Resource


@dataclass
class ReconcileReport:
    stack: str
    checksum: str
    applied: List[ApplyResult] = field(default_factory=list)
    pruned: List[PruneResult] = field(default_factory=list)

    def summary(self) -> Dict[str, object]:
        def count(action):
            return sum(1 for r in self.applied if r.action is action)
        return {
            'stack': self.stack,
            'checksum': self.checksum,
            'created': count(ApplyAction.CREATE),
            'updated': count(ApplyAction.UPDATE),
            'kept': count(ApplyAction.KEEP),
            'pruned': sum(1 for r in self.pruned if r.state in (PruneState.DELETED, PruneState.ABSENT)),
        }


class KeepSet:
    """Resources written or confirmed by the current session, keyed without apiVersion."""

    def __init__(self):
        self._entries: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def keep(self, resource: Resource):
        key = resource.identity.key
        checksum = resource.annotation(CHECKSUM_ANNOTATION)
        with self._lock:
            self._entries[key] = checksum

    def is_kept(self, resource: Resource) -> bool:
        key = resource.identity.key
        with self._lock:
            if key not in self._entries:
                return False
            return self._entries[key] == resource.annotation(CHECKSUM_ANNOTATION)

    def items(self):
        with self._lock:
            return list(self._entries.items())

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self):
        with self._lock:
            return len(self._entries)


def _fields(resource: Resource, **extra) -> Dict[str, object]:
    fields = {
        'api_version': resource.api_version,
        'kind': resource.kind,
        'name': resource.name,
        'namespace': resource.namespace,
    }
    fields.update(extra)
    return fields


def stack_name_from_path(path: str) -> str:
    name = os.path.basename(os.path.normpath(path))
    if os.path.isfile(path):
        name = os.path.splitext(name)[0]
    return name


class Stack:
    @classmethod
    def load(cls, path: str, name: str | None = None, **options) -> 'Stack':
        if name is None:
            name = stack_name_from_path(path)
        return cls(name, load_resources(path), **options)

    def __init__(self, name: str, resources: Iterable[Resource], debug: bool = False, parallelism: int = 1):
        if not name or not _LABEL_VALUE.match(name):
            raise ValueError(f'Invalid stack name {name!r}: must be a valid label value')
        self.name = name
        self.resources: Sequence[Resource] = tuple(resources)
        self.parallelism = max(1, parallelism)
        self.keep_set = KeepSet()
        self.logger = log.bind(stack=name, debug=debug)
        self._checksum: str | None = None
        self._checksum_lock = threading.Lock()

    def checksum(self) -> str:
        """Random token identifying this session, generated once."""
        with self._checksum_lock:
            if self._checksum is None:
                self._checksum = secrets.token_hex(16)
            return self._checksum

    def prepare_resource(self, resource: Resource, base: Resource | None = None) -> Resource:
        """Stamp resource with stack metadata, layered over base to preserve its unmanaged fields."""
        if base is not None:
            resource = base.merge(resource)
        return resource.merge({'metadata': {
            'labels': {LABEL: self.name},
            'annotations': {CHECKSUM_ANNOTATION: self.checksum()},
        }})

    def compare_resource(self, server: Resource, desired: Resource) -> Resource:
        # annotations are left out so the server's checksum survives the comparison.
        # NOTE: arrays of objects with server-side defaults never compare equal; that only costs an extra PUT
        return server.merge(desired).merge({'metadata': {'labels': {LABEL: self.name}}})

    def is_current(self, server: Resource, desired: Resource) -> bool:
        return server == self.compare_resource(server, desired)

    def apply_resource(self, client, resource: Resource, server_resource: Resource | None) -> ApplyResult:
        if server_resource is None:
            self.logger.info('create resource', **_fields(resource, checksum=self.checksum()))
            try:
                created = client.create_resource(self.prepare_resource(resource))
            except Exception as e:
                raise ApplyError('create', resource, e) from e
            self.keep_set.keep(created)
            return ApplyResult(ApplyAction.CREATE, created)

        compare = self.compare_resource(server_resource, resource)
        if server_resource != compare:
            self.logger.info('update resource', **_fields(resource, checksum=self.checksum()))
            try:
                updated = client.update_resource(self.prepare_resource(resource, base=server_resource))
            except Exception as e:
                raise ApplyError('update', resource, e) from e
            self.keep_set.keep(updated)
            return ApplyResult(ApplyAction.UPDATE, updated)

        self.logger.info('keep resource', **_fields(resource, checksum=compare.annotation(CHECKSUM_ANNOTATION)))
        self.keep_set.keep(compare)
        return ApplyResult(ApplyAction.KEEP, compare)

    def apply_resources(self, client) -> List[ApplyResult]:
        for resource in self.resources:
            # malformed identities fail before anything is sent
            resource.identity
        try:
            server_resources = list(client.get_resources(self.resources))
        except Exception as e:
            raise ApplyError('get', None, e) from e
        if len(server_resources) != len(self.resources):
            raise KubeStackError(f'get_resources returned {len(server_resources)} results for {len(self.resources)} resources')
        pairs = list(zip(self.resources, server_resources))
        if self.parallelism > 1 and len(pairs) > 1:
            # map keeps manifest order; on failure queued tasks are cancelled and running ones awaited
            executor = ThreadPoolExecutor(max_workers=min(self.parallelism, len(pairs)))
            try:
                return list(executor.map(lambda pair: self.apply_resource(client, *pair), pairs))
            finally:
                executor.shutdown(wait=True, cancel_futures=True)
        return [self.apply_resource(client, resource, server) for resource, server in pairs]

    def reconcile(self, client, prune: bool = True) -> ReconcileReport:
        report = ReconcileReport(stack=self.name, checksum=self.checksum())
        report.applied = self.apply_resources(client)
        if prune:
            report.pruned = self.prune(client, keep_resources=True)
        return report

    def apply(self, client, prune: bool = True) -> List[Resource]:
        return [result.resource for result in self.reconcile(client, prune=prune).applied]

    def _delete(self, client, resource: Resource) -> PruneState:
        try:
            client.delete_resource(resource)
        except NotFound:
            # aliased object in another API group, already deleted
            return PruneState.ABSENT
        except Exception as e:
            raise PruneError('delete', resource, e) from e
        return PruneState.DELETED

    def prune_resource(self, client, resource: Resource, keep_resources: bool) -> PruneResult:
        label = resource.label(LABEL)
        checksum = resource.annotation(CHECKSUM_ANNOTATION)
        if f'{resource.api_version}:{resource.kind}' in PRUNE_IGNORE:
            self.logger.debug('ignore resource', **_fields(resource, checksum=checksum))
            return PruneResult(PruneState.IGNORED, resource)
        self.logger.debug('list resource', **_fields(resource, checksum=checksum))
        if label != self.name:
            # apiserver did not respect labelSelector
            return PruneResult(PruneState.SKIPPED, resource)
        if keep_resources and self.keep_set.is_kept(resource):
            return PruneResult(PruneState.KEPT, resource)
        self.logger.info('delete resource', **_fields(resource))
        state = self._delete(client, resource)
        if state is PruneState.ABSENT:
            self.logger.debug('resource already deleted', **_fields(resource))
        return PruneResult(state, resource)

    def prune(self, client, keep_resources: bool) -> List[PruneResult]:
        """Delete stack resources not applied in this session, or all of them without keep_resources."""
        try:
            listed = client.list_resources(label_selector={LABEL: self.name})
        except Exception as e:
            raise PruneError('list', None, e) from e
        return [self.prune_resource(client, resource, keep_resources) for resource in listed]

    def delete(self, client) -> List[PruneResult]:
        return self.prune(client, keep_resources=False)
