from __future__ import annotations
import os
import yaml
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_CONFIG_FILE = 'config.yaml'
DEFAULT_PARALLELISM = 4

@dataclass
class ClusterCredentials:
    host: str
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    ca_file: Optional[str] = None
    verify_ssl: bool = True

@dataclass
class ClusterConfig:
    name: str
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    credentials: Optional[ClusterCredentials] = None
    parallelism: int = DEFAULT_PARALLELISM

@dataclass
class StackConfig:
    name: str
    path: str
    cluster: Optional[str] = None
    prune: bool = True

@dataclass
class LoggingConfig:
    level: str = 'INFO'
    format: str = 'json'

@dataclass
class AppConfig:
    clusters: List[ClusterConfig]
    stacks: List[StackConfig] = field(default_factory=list)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def get_stack(self, name: str) -> StackConfig:
        for s in self.stacks:
            if s.name == name:
                return s
        raise ValueError(f'Stack {name} not found in config')


def _parse_credentials(data: dict) -> ClusterCredentials:
    return ClusterCredentials(
        host=data.get('host'),
        token=data.get('token'),
        username=data.get('username'),
        password=data.get('password'),
        cert_file=data.get('cert_file'),
        key_file=data.get('key_file'),
        ca_file=data.get('ca_file'),
        verify_ssl=data.get('verify_ssl', True)
    )


def load_config(path: str = DEFAULT_CONFIG_FILE) -> AppConfig:
    if not os.path.exists(path):
        raise FileNotFoundError(f'Config file not found: {path}')
    with open(path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f) or {}
    base_dir = os.path.dirname(os.path.abspath(path))
    clusters: List[ClusterConfig] = []
    for c in raw.get('clusters', []) or []:
        if not c.get('name'):
            raise ValueError('Cluster entry is missing name')
        creds_data = c.get('credentials')
        parallelism = c.get('parallelism', DEFAULT_PARALLELISM)
        if not isinstance(parallelism, int) or parallelism < 1:
            raise ValueError(f'Cluster {c["name"]} parallelism must be a positive integer')
        clusters.append(ClusterConfig(
            name=c['name'],
            kubeconfig=c.get('kubeconfig'),
            context=c.get('context'),
            credentials=_parse_credentials(creds_data) if creds_data else None,
            parallelism=parallelism
        ))
    if not clusters:
        raise ValueError('No clusters defined in configuration')
    for cluster in clusters:
        if not cluster.kubeconfig and not cluster.credentials:
            raise ValueError(f'Cluster {cluster.name} must specify either kubeconfig or credentials')
        if cluster.kubeconfig and cluster.credentials:
            raise ValueError(f'Cluster {cluster.name} cannot specify both kubeconfig and credentials')
        if cluster.credentials and not cluster.credentials.host:
            raise ValueError(f'Cluster {cluster.name} credentials must include host')
    cluster_names = {c.name for c in clusters}
    stacks: List[StackConfig] = []
    seen = set()
    for s in raw.get('stacks', []) or []:
        name = s.get('name')
        if not name or not s.get('path'):
            raise ValueError('Stack entries require name and path')
        if name in seen:
            raise ValueError(f'Duplicate stack {name} in configuration')
        seen.add(name)
        cluster = s.get('cluster')
        if cluster and cluster not in cluster_names:
            raise ValueError(f'Stack {name} references unknown cluster {cluster}')
        # relative stack paths are resolved against the config file
        stack_path = os.path.expanduser(s['path'])
        if not os.path.isabs(stack_path):
            stack_path = os.path.join(base_dir, stack_path)
        stacks.append(StackConfig(
            name=name,
            path=stack_path,
            cluster=cluster,
            prune=s.get('prune', True)
        ))
    logging_raw = raw.get('logging', {}) or {}
    logging_cfg = LoggingConfig(
        level=logging_raw.get('level', 'INFO'),
        format=logging_raw.get('format', 'json')
    )
    return AppConfig(
        clusters=clusters,
        stacks=stacks,
        logging=logging_cfg
    )
