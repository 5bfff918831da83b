import asyncio

import pytest

from declsync._cogs.configs.configuration import ReconcilerSettings
from declsync._cogs.structs.scopes import ROOT, Scope
from declsync.cli import CLIControls


def test_paths_are_required(invoke, real_run):
    result = invoke(['run'])
    assert result.exit_code == 2
    assert not real_run.called


def test_absent_paths_are_rejected(invoke, real_run):
    result = invoke(['run', 'absent.yaml'])
    assert result.exit_code == 2
    assert not real_run.called


@pytest.mark.parametrize('kwarg, value, options, envvars', [
    ('paths', ('manifests',), [], {}),
    ('server', 'http://localhost:8001', [], {}),
    ('server', 'http://api:1234', ['--server', 'http://api:1234'], {}),
    ('server', 'http://api:1234', ['-s', 'http://api:1234'], {}),
    ('server', 'http://api:1234', [], {'DECLSYNC_SERVER': 'http://api:1234'}),
    ('scope', ROOT, [], {}),
    ('scope', Scope('ns'), ['-n', 'ns'], {}),
    ('scope', Scope('ns'), ['--namespace=ns'], {}),
    ('scope', Scope('ns'), [], {'DECLSYNC_RUN_NAMESPACE': 'ns'}),
    ('stop_flag', None, [], {}),
], ids=[
    'paths',
    'default-server', 'opt-long-server', 'opt-short-s', 'env-server',
    'default-scope', 'opt-short-n', 'opt-long-namespace', 'env-namespace',
    'no-stop-flag',
])
def test_options_passed_to_realrun(invoke, options, envvars, kwarg, value, real_run):
    result = invoke(['run'] + options + ['manifests'], env=envvars)
    assert result.exit_code == 0, result.output
    assert real_run.called
    assert real_run.call_args[1][kwarg] == value


@pytest.mark.parametrize('namespace', ['', ':root'])
def test_invalid_namespaces(invoke, real_run, namespace):
    result = invoke(['run', '--namespace', namespace, 'manifests'])
    assert result.exit_code == 2
    assert '--namespace' in result.output
    assert not real_run.called


@pytest.mark.parametrize('options, attr, value', [
    (['--workers', '3'], ('remediating', 'workers'), 3),
    (['-w', '3'], ('remediating', 'workers'), 3),
    (['--resync-period', '60'], ('applying', 'resync_period'), 60.0),
    (['--field-manager', 'me'], ('applying', 'field_manager'), 'me'),
])
def test_options_into_settings(invoke, real_run, options, attr, value):
    result = invoke(['run'] + options + ['manifests'])
    assert result.exit_code == 0, result.output
    settings = real_run.call_args[1]['settings']
    assert getattr(getattr(settings, attr[0]), attr[1]) == value


@pytest.mark.parametrize('options', [
    ['--workers', '0'],
    ['--resync-period', '0'],
    ['--resync-period', '-1'],
])
def test_invalid_settings(invoke, real_run, options):
    result = invoke(['run'] + options + ['manifests'])
    assert result.exit_code == 2
    assert not real_run.called


def test_embedded_controls(invoke, real_run):
    settings = ReconcilerSettings()
    stop_flag = asyncio.Event()
    controls = CLIControls(settings=settings, stop_flag=stop_flag)
    result = invoke(['run', '-w', '2', 'manifests'], obj=controls)
    assert result.exit_code == 0, result.output
    assert real_run.call_args[1]['settings'] is settings
    assert real_run.call_args[1]['stop_flag'] is stop_flag
    assert settings.remediating.workers == 2
