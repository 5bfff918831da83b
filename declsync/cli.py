import asyncio
import dataclasses
import functools
from typing import Any, Callable, List, Optional

import click

from declsync._cogs.configs import configuration
from declsync._cogs.helpers import loaders
from declsync._cogs.structs import scopes
from declsync._core.actions import loggers
from declsync._core.intents import declared
from declsync._core.reactor import running


@dataclasses.dataclass()
class CLIControls:
    """ The controls of the embedded runs, which are impossible to pass via CLI. """
    stop_flag: Optional[asyncio.Event] = None
    settings: Optional[configuration.ReconcilerSettings] = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: Optional[bool] = False,
                log_refkey: Optional[str] = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


@click.version_option(prog_name='declsync')
@click.group(name='declsync', context_settings=dict(
    auto_envvar_prefix='DECLSYNC',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('-s', '--server', type=str, default='http://localhost:8001', envvar='DECLSYNC_SERVER',
              show_default=True, help="The store's API URL, e.g. of `kubectl proxy`.")
@click.option('-n', '--namespace', type=str, default=None,
              help="The namespace of a restricted scope; the root scope if absent.")
@click.option('-w', '--workers', type=click.IntRange(min=1), default=None)
@click.option('--resync-period', type=click.FloatRange(min=0, min_open=True), default=None)
@click.option('--field-manager', type=str, default=None)
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True))
@click.make_pass_decorator(CLIControls, ensure=True)
def run(
        __controls: CLIControls,
        paths: List[str],
        server: str,
        namespace: Optional[str],
        workers: Optional[int],
        resync_period: Optional[float],
        field_manager: Optional[str],
) -> None:
    """ Start a reconciler and keep the declared objects in sync. """
    try:
        scope = scopes.Scope(namespace) if namespace is not None else scopes.ROOT
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--namespace')

    settings = __controls.settings if __controls.settings is not None else configuration.ReconcilerSettings()
    if workers is not None:
        settings.remediating.workers = workers
    if resync_period is not None:
        settings.applying.resync_period = resync_period
    if field_manager is not None:
        settings.applying.field_manager = field_manager

    return running.run(
        server=server,
        paths=paths,
        scope=scope,
        settings=settings,
        stop_flag=__controls.stop_flag,
    )


@main.command()
@logging_options
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True))
def validate(paths: List[str]) -> None:
    """ Load the manifests and check that all objects are identifiable. """
    try:
        objs = loaders.load_manifests(paths)
        resources = declared.DeclaredResources()
        resources.update(objs)
    except (loaders.ManifestError, declared.DeclarationError) as e:
        raise click.ClickException(str(e))
    kinds = sorted(str(gvk) for gvk in resources.kind_set())
    click.echo(f"{len(resources)} object(s) of {len(kinds)} kind(s):")
    for kind in kinds:
        click.echo(f"  {kind}")
