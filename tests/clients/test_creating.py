import aiohttp.web
import pytest

from declsync._cogs.clients.creating import create_obj
from declsync._cogs.clients.errors import APIConflictError, APIError


def make_body(namespace):
    meta = {'name': 'name1', 'namespace': namespace} if namespace else {'name': 'name1'}
    return {'apiVersion': 'declsync.dev/v1', 'kind': 'Sample', 'metadata': meta, 'x': 'y'}


async def test_creating(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace):

    body = make_body(namespace)
    post_mock = resp_mocker(return_value=aiohttp.web.json_response(dict(body, uid='u')))
    aresponses.add(hostname, resource.get_url(namespace=namespace), 'post', post_mock)

    created = await create_obj(settings=settings, resource=resource, body=body, logger=logger)
    assert created == dict(body, uid='u')

    assert post_mock.called
    assert post_mock.call_count == 1

    data = post_mock.call_args_list[0][0][0].data  # [callidx][args/kwargs][argidx]
    assert data == body


async def test_creating_the_existing_objects(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace):

    post_mock = resp_mocker(return_value=aresponses.Response(status=409, reason="exists"))
    aresponses.add(hostname, resource.get_url(namespace=namespace), 'post', post_mock)

    with pytest.raises(APIConflictError):
        await create_obj(settings=settings, resource=resource, body=make_body(namespace),
                         logger=logger)


@pytest.mark.parametrize('status', [400, 403, 422, 500])
async def test_creating_with_errors(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace, status):

    post_mock = resp_mocker(return_value=aresponses.Response(status=status, reason="boo!"))
    aresponses.add(hostname, resource.get_url(namespace=namespace), 'post', post_mock)

    with pytest.raises(APIError) as err:
        await create_obj(settings=settings, resource=resource, body=make_body(namespace),
                         logger=logger)
    assert err.value.status == status
