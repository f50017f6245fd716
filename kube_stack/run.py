from __future__ import annotations
import click
import json
from typing import Dict, List, Optional
from .config import load_config, AppConfig, StackConfig
from .cluster.context import get_cluster_cfg, open_stack_client
from .kube.client import StackClient
from .kube.errors import KubeStackError
from .stack import Stack, PruneState, LABEL, CHECKSUM_ANNOTATION, stack_name_from_path
from .util import logging as log

def _load(ctx) -> AppConfig:
    try:
        cfg = load_config(ctx.obj['config'])
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))
    log.configure_logging(cfg.logging.level, cfg.logging.format)
    return cfg

def _echo(results: List[dict]):
    click.echo(json.dumps(results if len(results) > 1 else results[0], indent=2))

class _Clients:
    """One StackClient per cluster for the lifetime of a command."""

    def __init__(self, cfg: AppConfig):
        self.cfg = cfg
        self._clients: Dict[str, StackClient] = {}

    def get(self, cluster: Optional[str]) -> StackClient:
        try:
            name = get_cluster_cfg(self.cfg, cluster).name
            if name not in self._clients:
                self._clients[name] = open_stack_client(self.cfg, name)
        except ValueError as e:
            raise click.ClickException(str(e))
        return self._clients[name]

def _resolve_stacks(cfg: AppConfig, names, all_stacks: bool, path: Optional[str], name: Optional[str],
                    cluster: Optional[str]) -> List[StackConfig]:
    if path:
        if names or all_stacks:
            raise click.ClickException('--path cannot be combined with stack names or --all-stacks')
        return [StackConfig(name=name or stack_name_from_path(path), path=path, cluster=cluster)]
    if all_stacks:
        targets = list(cfg.stacks)
    elif names:
        try:
            targets = [cfg.get_stack(n) for n in names]
        except ValueError as e:
            raise click.ClickException(str(e))
    else:
        raise click.ClickException('Must specify at least one stack, --all-stacks or --path')
    if not targets:
        raise click.ClickException('No stacks defined in configuration')
    if cluster:
        targets = [StackConfig(name=t.name, path=t.path, cluster=cluster, prune=t.prune) for t in targets]
    return targets

@click.group(add_help_option=False)
@click.option('--config', default='config/config.yaml', help='Config file path')
@click.pass_context
def cli(ctx, config):
    """Kubernetes stack apply/prune CLI"""
    ctx.ensure_object(dict)
    ctx.obj['config'] = config

@cli.command(add_help_option=False)
@click.argument('stacks', nargs=-1)
@click.option('--all-stacks', is_flag=True, help='Apply all configured stacks')
@click.option('--path', 'stack_path', help='Manifest file or directory to apply as an ad-hoc stack')
@click.option('--name', help='Stack name for --path (default: path basename)')
@click.option('--cluster', help='Target cluster (default: the stack cluster, or the only configured cluster)')
@click.option('--prune/--no-prune', default=None, help='Delete stack resources no longer in the manifests')
@click.option('--debug', is_flag=True, help='Debug logging for the applied stacks')
@click.pass_context
def apply(ctx, stacks, all_stacks, stack_path, name, cluster, prune, debug):
    """Apply one or more stacks and prune what they no longer declare."""
    cfg = _load(ctx)
    targets = _resolve_stacks(cfg, stacks, all_stacks, stack_path, name, cluster)
    clients = _Clients(cfg)
    results = []
    for target in targets:
        client = clients.get(target.cluster)
        try:
            stack = Stack.load(target.path, name=target.name, debug=debug, parallelism=client.parallelism)
            log.info('applying stack', stack=stack.name, resources=len(stack.resources), checksum=stack.checksum())
            report = stack.reconcile(client, prune=target.prune if prune is None else prune)
        except (KubeStackError, FileNotFoundError, ValueError) as e:
            raise click.ClickException(f'Stack {target.name}: {e}')
        results.append(report.summary())
    _echo(results)

@cli.command(add_help_option=False)
@click.argument('stacks', nargs=-1, required=True)
@click.option('--cluster', help='Target cluster (default: the stack cluster, or the only configured cluster)')
@click.option('--debug', is_flag=True)
@click.pass_context
def delete(ctx, stacks, cluster, debug):
    """Delete every resource labelled with the given stack names."""
    cfg = _load(ctx)
    clients = _Clients(cfg)
    results = []
    for name in stacks:
        target_cluster = cluster
        if target_cluster is None:
            known = {s.name: s for s in cfg.stacks}
            target_cluster = known[name].cluster if name in known else None
        client = clients.get(target_cluster)
        try:
            stack = Stack(name, [], debug=debug)
            pruned = stack.delete(client)
        except (KubeStackError, ValueError) as e:
            raise click.ClickException(f'Stack {name}: {e}')
        results.append({'stack': name, 'deleted': sum(1 for r in pruned if r.state in (PruneState.DELETED, PruneState.ABSENT))})
    _echo(results)

@cli.command(add_help_option=False)
@click.argument('name')
@click.option('--cluster', help='Target cluster')
@click.pass_context
def status(ctx, name, cluster):
    """List live resources labelled with a stack."""
    cfg = _load(ctx)
    if cluster is None:
        known = {s.name: s for s in cfg.stacks}
        cluster = known[name].cluster if name in known else None
    client = _Clients(cfg).get(cluster)
    try:
        listed = client.list_resources(label_selector={LABEL: name})
    except KubeStackError as e:
        raise click.ClickException(str(e))
    out = []
    for r in listed:
        if r.label(LABEL) != name:
            continue
        out.append({
            'apiVersion': r.api_version,
            'kind': r.kind,
            'namespace': r.namespace,
            'name': r.name,
            'checksum': r.annotation(CHECKSUM_ANNOTATION),
        })
    click.echo(json.dumps({'stack': name, 'resources': out}, indent=2))

@cli.command('help', add_help_option=False)
@click.argument('command', required=False)
@click.pass_context
def help_cmd(ctx, command):
    """Show context-driven help for a command, or list all commands."""
    group = ctx.parent.command if ctx.parent else ctx.command
    if not command:
        click.echo("Available commands:")
        for cmd_name in group.commands:
            click.echo(f"  {cmd_name}")
        click.echo("\nRun 'kube-stack help <command>' for details.")
        return
    cmd = group.commands.get(command)
    if not cmd:
        click.echo(f"Unknown command: {command}")
        click.echo("Run 'kube-stack help' to list available commands.")
        return
    with click.Context(cmd) as cmd_ctx:
        click.echo(cmd.get_help(cmd_ctx))

if __name__ == '__main__':
    cli()
