from __future__ import annotations
from typing import Dict, Any, List, Tuple, Iterable, Optional
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import threading
from kubernetes import config as k8s_config, client as k8s_client
from kubernetes.client.exceptions import ApiException
import urllib3, time, json
from ..util import logging as log
from .errors import KubeError, NotFound, error_from_api_exception
from .resource import Resource
urllib3.disable_warnings()

def load_kubeconfig(kubeconfig: str | None = None, context: str | None = None):
    if kubeconfig: k8s_config.load_kube_config(config_file=kubeconfig, context=context)
    else: k8s_config.load_kube_config(context=context)

def configure_from_credentials(credentials) -> k8s_client.Configuration:
    cfg = k8s_client.Configuration()
    cfg.host = credentials.host
    if credentials.token:
        cfg.api_key = {"authorization": credentials.token}
        cfg.api_key_prefix = {"authorization": "Bearer"}
        log.debug('using bearer token', host=credentials.host)
    elif credentials.username and credentials.password:
        import base64
        basic_auth = base64.b64encode(f"{credentials.username}:{credentials.password}".encode()).decode()
        cfg.api_key = {"authorization": f"Basic {basic_auth}"}
    if credentials.cert_file: cfg.cert_file = credentials.cert_file
    if credentials.key_file: cfg.key_file = credentials.key_file
    if credentials.ca_file: cfg.ssl_ca_cert = credentials.ca_file
    cfg.verify_ssl = credentials.verify_ssl
    if not credentials.verify_ssl: log.warn('ssl_verification_disabled', host=credentials.host)
    return cfg

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)
# listing a type we cannot read or that vanished is not fatal
SKIP_LIST_STATUSES = (403, 404, 405)
JSON_HEADERS = {'Accept': 'application/json', 'Content-Type': 'application/json'}
DELETE_OPTIONS = {'kind': 'DeleteOptions', 'apiVersion': 'v1', 'propagationPolicy': 'Background'}


@dataclass(frozen=True)
class APIResource:
    api_version: str
    name: str
    kind: str
    namespaced: bool
    verbs: Tuple[str, ...] = ()

    def supports(self, *verbs: str) -> bool:
        return all(v in self.verbs for v in verbs)


def _split_api_version(api_version: str) -> Tuple[str | None, str]:
    if '/' in api_version:
        group, version = api_version.split('/', 1)
        return group, version
    return None, api_version

def api_base_path(api_version: str) -> str:
    group, version = _split_api_version(api_version)
    return f"/api/{version}" if group is None else f"/apis/{group}/{version}"

def format_label_selector(selector: Dict[str, str]) -> str:
    return ','.join(f'{k}={v}' for k, v in sorted(selector.items()))


class StackClient:
    """Resource-level operations against one API server.

    Wraps a kubernetes ApiClient and talks raw JSON to the REST paths, using
    API discovery to map apiVersion/kind to collection URLs.
    """

    def __init__(self, api_client: k8s_client.ApiClient, parallelism: int = 4,
                 max_retries: int = 4, backoff_base: float = 0.5):
        self.api_client = api_client
        self.parallelism = max(1, parallelism)
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._api_versions: List[str] | None = None
        self._api_resources: Dict[str, List[APIResource]] = {}
        self._discovery_lock = threading.Lock()

    def _call(self, method: str, path: str, query: List[Tuple[str, str]] | None = None,
              body: Any = None) -> Dict[str, Any]:
        log.debug('api request', method=method, path=path)
        try:
            resp = self.api_client.call_api(path, method, query_params=query or [],
                                            header_params=dict(JSON_HEADERS), body=body,
                                            response_type='object', _preload_content=False,
                                            auth_settings=['BearerToken'])
        except ApiException as e:
            raise error_from_api_exception(e) from e
        data = resp[0].data
        return json.loads(data) if data else {}

    def _read(self, path: str, query: List[Tuple[str, str]] | None = None) -> Dict[str, Any]:
        """GET with retries on transient failures; writes are never retried."""
        attempt = 0
        while True:
            try:
                return self._call('GET', path, query)
            except KubeError as e:
                if e.status in TRANSIENT_STATUSES and attempt < self.max_retries:
                    sleep_for = self.backoff_base * (2 ** attempt)
                    log.warn('transient error, retrying', path=path, status=e.status, attempt=attempt+1, sleep=sleep_for)
                    time.sleep(sleep_for); attempt += 1; continue
                raise
            except urllib3.exceptions.HTTPError as e:
                if attempt < self.max_retries:
                    sleep_for = self.backoff_base * (2 ** attempt)
                    log.warn('connection error, retrying', path=path, attempt=attempt+1, sleep=sleep_for, error=str(e))
                    time.sleep(sleep_for); attempt += 1; continue
                raise KubeError(f'{path}: {e}', reason='ConnectionError') from e

    # discovery

    def api_versions(self) -> List[str]:
        """Preferred version of every API group, core group first."""
        with self._discovery_lock:
            if self._api_versions is None:
                versions: List[str] = []
                versions.extend(self._read('/api').get('versions', []))
                for group in self._read('/apis').get('groups', []):
                    preferred = (group.get('preferredVersion') or {}).get('groupVersion')
                    if preferred:
                        versions.append(preferred)
                self._api_versions = versions
            return list(self._api_versions)

    def api_resources(self, api_version: str) -> List[APIResource]:
        with self._discovery_lock:
            if api_version not in self._api_resources:
                payload = self._read(api_base_path(api_version))
                self._api_resources[api_version] = [
                    APIResource(
                        api_version=api_version,
                        name=r['name'],
                        kind=r['kind'],
                        namespaced=bool(r.get('namespaced')),
                        verbs=tuple(r.get('verbs') or ()),
                    )
                    for r in payload.get('resources', [])
                    if '/' not in r['name']
                ]
            return list(self._api_resources[api_version])

    def resolve(self, api_version: str, kind: str) -> APIResource:
        try:
            candidates = self.api_resources(api_version)
        except NotFound as e:
            raise KubeError(f'API version {api_version} is not served', reason='UnknownAPIVersion') from e
        for api_resource in candidates:
            if api_resource.kind == kind:
                return api_resource
        raise KubeError(f'Kind {kind} is not served by {api_version}', reason='UnknownKind')

    # paths

    def collection_path(self, resource: Resource) -> str:
        api_resource = self.resolve(resource.api_version, resource.kind)
        base = api_base_path(resource.api_version)
        if api_resource.namespaced:
            return f'{base}/namespaces/{resource.namespace or "default"}/{api_resource.name}'
        return f'{base}/{api_resource.name}'

    def resource_path(self, resource: Resource) -> str:
        return f'{self.collection_path(resource)}/{resource.name}'

    @staticmethod
    def _to_resource(item: Dict[str, Any], api_version: str, kind: str) -> Resource:
        # list items carry no apiVersion/kind of their own
        item = dict(item)
        item.setdefault('apiVersion', api_version)
        item.setdefault('kind', kind)
        return Resource(item)

    # resource operations

    def get_resource(self, resource: Resource) -> Optional[Resource]:
        try:
            payload = self._read(self.resource_path(resource))
        except NotFound:
            return None
        return self._to_resource(payload, resource.api_version, resource.kind)

    def get_resources(self, resources: Iterable[Resource]) -> List[Optional[Resource]]:
        """Fetch the server state of each resource, positionally; None where absent."""
        resources = list(resources)
        if not resources:
            return []
        workers = min(self.parallelism, len(resources))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self.get_resource, resources))

    def _list_collection(self, api_resource: APIResource, query: List[Tuple[str, str]]) -> Iterable[Resource]:
        path = f'{api_base_path(api_resource.api_version)}/{api_resource.name}'
        cont = None
        while True:
            params = list(query) + ([('continue', cont)] if cont else [])
            try:
                payload = self._read(path, params)
            except KubeError as e:
                if e.status in SKIP_LIST_STATUSES:
                    log.warn('skipping kind due to access/availability', api_version=api_resource.api_version, kind=api_resource.kind, status=e.status)
                    return
                raise
            for item in payload.get('items', []):
                yield self._to_resource(item, api_resource.api_version, api_resource.kind)
            cont = (payload.get('metadata') or {}).get('continue')
            if not cont:
                break

    def list_resources(self, label_selector: Dict[str, str] | None = None) -> List[Resource]:
        """List every listable and deletable object in all API groups.

        The same object may be returned more than once when its kind is
        served by several API groups.
        """
        query: List[Tuple[str, str]] = []
        if label_selector:
            query.append(('labelSelector', format_label_selector(label_selector)))
        items: List[Resource] = []
        for api_version in self.api_versions():
            try:
                api_resources = self.api_resources(api_version)
            except KubeError as e:
                if e.status in SKIP_LIST_STATUSES + (503,):
                    log.warn('skipping api version due to discovery failure', api_version=api_version, status=e.status)
                    continue
                raise
            for api_resource in api_resources:
                if not api_resource.supports('list', 'delete'):
                    continue
                items.extend(self._list_collection(api_resource, query))
        return items

    def create_resource(self, resource: Resource) -> Resource:
        payload = self._call('POST', self.collection_path(resource), body=resource.to_dict())
        return self._to_resource(payload, resource.api_version, resource.kind)

    def update_resource(self, resource: Resource) -> Resource:
        payload = self._call('PUT', self.resource_path(resource), body=resource.to_dict())
        return self._to_resource(payload, resource.api_version, resource.kind)

    def delete_resource(self, resource: Resource) -> None:
        self._call('DELETE', self.resource_path(resource), body=dict(DELETE_OPTIONS))
