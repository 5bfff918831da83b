import logging

import pytest

from declsync._cogs.structs import metadata
from declsync._cogs.structs.bodies import Body
from declsync._cogs.structs.scopes import ROOT, Scope
from declsync._core.actions.differ import Diff, Operation, operation

NS = Scope('ns')
IGNORED = {metadata.LIFECYCLE_MUTATION_KEY: 'ignore'}
DETACHED = {metadata.LIFECYCLE_DELETION_KEY: 'detach'}


def make(management='enabled', manager=None, version='v1', owners=None, labels=None,
         annotations=None):
    annots = dict(annotations or {})
    if management is not None:
        annots[metadata.MANAGEMENT_KEY] = management
    if manager is not None:
        annots[metadata.MANAGER_KEY] = manager
    meta = {'name': 'web', 'namespace': 'ns', 'annotations': annots}
    if owners:
        meta['ownerReferences'] = owners
    if labels:
        meta['labels'] = labels
    return Body({'apiVersion': f'apps/{version}', 'kind': 'Deployment', 'metadata': meta})


#
# Declared only.
#


@pytest.mark.parametrize('management, expected', [
    pytest.param('enabled', Operation.CREATE, id='enabled'),
    pytest.param('disabled', Operation.NOOP, id='disabled'),
    pytest.param('garbage', Operation.ERROR, id='invalid'),
    pytest.param('', Operation.ERROR, id='empty'),
    pytest.param(None, Operation.ERROR, id='unset'),
])
def test_declared_only(management, expected):
    assert operation(make(management), None, ROOT) is expected


#
# Both declared & actual.
#


def test_both_in_different_versions():
    declared = make('enabled', version='v1')
    actual = make('enabled', manager=':root', version='v1beta1')
    assert operation(declared, actual, ROOT) is Operation.NOOP


@pytest.mark.parametrize('management', ['garbage', '', None])
def test_both_with_invalid_declared_management(management):
    assert operation(make(management), make('enabled'), ROOT) is Operation.ERROR


@pytest.mark.parametrize('scope, actual_manager, expected', [
    pytest.param(ROOT, ':root', Operation.UPDATE, id='root-over-root'),
    pytest.param(ROOT, 'ns', Operation.UPDATE, id='root-over-namespace'),
    pytest.param(ROOT, None, Operation.UPDATE, id='root-over-unmanaged'),
    pytest.param(NS, 'ns', Operation.UPDATE, id='namespace-over-itself'),
    pytest.param(NS, None, Operation.UPDATE, id='namespace-over-unmanaged'),
    pytest.param(NS, ':root', Operation.MANAGEMENT_CONFLICT, id='namespace-over-root'),
])
def test_both_enabled(scope, actual_manager, expected):
    declared = make('enabled', manager=scope.manager)
    actual = make('enabled', manager=actual_manager)
    assert operation(declared, actual, scope) is expected


def test_both_enabled_but_actual_root_is_not_enabled():
    declared = make('enabled', manager='ns')
    actual = make('disabled', manager=':root')
    assert operation(declared, actual, NS) is Operation.UPDATE


def test_both_ignoring_mutations():
    declared = make('enabled', annotations=IGNORED)
    actual = make('enabled', manager=':root', annotations=IGNORED)
    assert operation(declared, actual, ROOT) is Operation.NOOP


def test_only_declared_ignoring_mutations():
    declared = make('enabled', annotations=IGNORED)
    actual = make('enabled', manager=':root')
    assert operation(declared, actual, ROOT) is Operation.UPDATE


def test_mutation_directive_does_not_bypass_conflicts():
    declared = make('enabled', annotations=IGNORED)
    actual = make('enabled', manager=':root', annotations=IGNORED)
    assert operation(declared, actual, NS) is Operation.MANAGEMENT_CONFLICT


@pytest.mark.parametrize('scope, actual, expected', [
    pytest.param(ROOT, make('enabled', manager=':root'), Operation.UNMANAGE, id='root-managed'),
    pytest.param(ROOT, make(None, labels={metadata.MANAGED_BY_LABEL: 'declsync'}),
                 Operation.UNMANAGE, id='label-only'),
    pytest.param(ROOT, make(None), Operation.NOOP, id='no-bookkeeping'),
    pytest.param(NS, make('enabled', manager=':root'), Operation.NOOP, id='not-ours-to-unmanage'),
    pytest.param(NS, make('enabled', manager='ns'), Operation.UNMANAGE, id='namespace-managed'),
    pytest.param(NS, make('enabled', manager='other'), Operation.NOOP, id='other-namespace-managed'),
    pytest.param(ROOT, make('enabled', manager='ns'), Operation.NOOP, id='left-to-the-namespace'),
])
def test_both_with_declared_disabled(scope, actual, expected):
    assert operation(make('disabled'), actual, scope) is expected


#
# Actual only.
#


@pytest.mark.parametrize('actual, expected', [
    pytest.param(make(None), Operation.NOOP, id='no-bookkeeping'),
    pytest.param(make('enabled', manager=':root', owners=[{'name': 'x'}]), Operation.NOOP, id='owned'),
    pytest.param(make('disabled', manager=':root'), Operation.UNMANAGE, id='disabled'),
    pytest.param(make('garbage', manager=':root'), Operation.UNMANAGE, id='invalid'),
    pytest.param(make('enabled', manager=':root'), Operation.DELETE, id='enabled'),
])
def test_actual_only_in_root(actual, expected):
    assert operation(None, actual, ROOT) is expected


def test_actual_only_managed_by_root_in_namespace():
    assert operation(None, make('enabled', manager=':root'), NS) is Operation.NOOP


def test_actual_only_with_deletion_prevented():
    actual = make('enabled', manager=':root', annotations=DETACHED)
    assert operation(None, actual, ROOT) is Operation.UNMANAGE


def test_actual_only_protected():
    actual = Body({'apiVersion': 'v1', 'kind': 'Namespace', 'metadata': {
        'name': 'kube-system',
        'annotations': {metadata.MANAGEMENT_KEY: 'enabled', metadata.MANAGER_KEY: ':root'},
    }})
    assert operation(None, actual, ROOT) is Operation.UNMANAGE_PROTECTED


def test_neither(caplog):
    caplog.set_level(logging.WARNING)
    assert operation(None, None, ROOT) is Operation.NOOP
    assert caplog.messages


#
# End-to-end scenarios: one step after another, as the store would react.
#


def test_diff_delegates_to_operation():
    declared = make('enabled')
    assert Diff(declared, None).operation(ROOT) is Operation.CREATE


def test_scenario_declared_then_created_then_removed():
    declared = Body(metadata.stamp(make('enabled'), manager=':root'))
    assert operation(declared, None, ROOT) is Operation.CREATE

    actual = Body(metadata.stamp(make('enabled'), manager=':root'))
    assert operation(declared, actual, ROOT) is Operation.UPDATE  # idempotent apply
    assert operation(None, actual, ROOT) is Operation.DELETE
    assert operation(None, None, ROOT) is Operation.NOOP


def test_scenario_unmanaging_converges():
    declared = make('disabled')
    actual = Body(metadata.stamp(make('enabled'), manager=':root'))
    assert operation(declared, actual, ROOT) is Operation.UNMANAGE

    unmanaged = Body(dict(actual, metadata={
        'name': 'web', 'namespace': 'ns',
        'annotations': {},
        'labels': {},
    }))
    assert not metadata.has_bookkeeping(unmanaged)
    assert operation(declared, unmanaged, ROOT) is Operation.NOOP


def test_scenario_pruning_converges_for_detached_objects():
    actual = Body(metadata.stamp(make('enabled', annotations=DETACHED), manager=':root'))
    assert operation(None, actual, ROOT) is Operation.UNMANAGE

    patch = metadata.build_unmanage_patch(actual)
    raw = actual.as_dict()
    for key in patch['metadata']['annotations']:
        del raw['metadata']['annotations'][key]
    for key in patch['metadata']['labels']:
        del raw['metadata']['labels'][key]
    assert operation(None, Body(raw), ROOT) is Operation.NOOP


def test_scenario_namespace_declares_what_root_manages():
    declared = Body(metadata.stamp(make('enabled'), manager='ns'))
    actual = Body(metadata.stamp(make('enabled'), manager=':root'))
    assert operation(declared, actual, NS) is Operation.MANAGEMENT_CONFLICT
    assert operation(None, actual, NS) is Operation.NOOP


def test_scenario_root_takes_over_from_namespace():
    declared = Body(metadata.stamp(make('enabled'), manager=':root'))
    actual = Body(metadata.stamp(make('enabled'), manager='ns'))
    assert operation(declared, actual, ROOT) is Operation.UPDATE
