import functools
import logging

import click.testing
import pytest

from declsync.cli import main

MANIFEST = """
apiVersion: v1
kind: Namespace
metadata:
  name: ns
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: cm1
  namespace: ns
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
  namespace: ns
"""


@pytest.fixture(autouse=True)
def srcdir(tmp_path, monkeypatch):
    (tmp_path / 'manifests').mkdir()
    (tmp_path / 'manifests' / 'all.yaml').write_text(MANIFEST)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture(autouse=True)
def _restore_logging():
    logger = logging.getLogger()
    handlers = logger.handlers[:]
    level = logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def real_run(mocker):
    return mocker.patch('declsync._core.reactor.running.run')
