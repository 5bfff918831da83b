import aiohttp.web
import pytest

from declsync._cogs.clients.errors import APIError
from declsync._cogs.clients.fetching import list_objs, read_obj


async def test_reading_when_present(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace):

    get_mock = resp_mocker(return_value=aiohttp.web.json_response({'a': 'b'}))
    aresponses.add(hostname, resource.get_url(namespace=namespace, name='name1'), 'get', get_mock)

    obj = await read_obj(settings=settings, resource=resource, namespace=namespace, name='name1',
                         logger=logger)
    assert obj == {'a': 'b', 'apiVersion': 'declsync.dev/v1', 'kind': 'Sample'}

    assert get_mock.called
    assert get_mock.call_count == 1


async def test_reading_keeps_the_reported_kind(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace):

    body = {'apiVersion': 'declsync.dev/v2', 'kind': 'Other'}
    get_mock = resp_mocker(return_value=aiohttp.web.json_response(body))
    aresponses.add(hostname, resource.get_url(namespace=namespace, name='name1'), 'get', get_mock)

    obj = await read_obj(settings=settings, resource=resource, namespace=namespace, name='name1',
                         logger=logger)
    assert obj == body


async def test_reading_when_absent(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace):

    get_mock = resp_mocker(return_value=aresponses.Response(status=404, reason="boo!"))
    aresponses.add(hostname, resource.get_url(namespace=namespace, name='name1'), 'get', get_mock)

    obj = await read_obj(settings=settings, resource=resource, namespace=namespace, name='name1',
                         logger=logger)
    assert obj is None


@pytest.mark.parametrize('status', [400, 401, 403, 500, 666])
async def test_reading_escalates_other_errors(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace, status):

    get_mock = resp_mocker(return_value=aresponses.Response(status=status, reason="boo!"))
    aresponses.add(hostname, resource.get_url(namespace=namespace, name='name1'), 'get', get_mock)

    with pytest.raises(APIError) as err:
        await read_obj(settings=settings, resource=resource, namespace=namespace, name='name1',
                       logger=logger)
    assert err.value.status == status


async def test_listing_with_the_resource_version(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace):

    result = {'metadata': {'resourceVersion': '123'},
              'items': [{'metadata': {'name': 'a'}}, {'metadata': {'name': 'b'}}]}
    list_mock = resp_mocker(return_value=aiohttp.web.json_response(result))
    aresponses.add(hostname, resource.get_url(namespace=namespace), 'get', list_mock)

    items, resource_version = await list_objs(settings=settings, resource=resource,
                                              namespace=namespace, logger=logger)
    assert resource_version == '123'
    assert items == [
        {'apiVersion': 'declsync.dev/v1', 'kind': 'Sample', 'metadata': {'name': 'a'}},
        {'apiVersion': 'declsync.dev/v1', 'kind': 'Sample', 'metadata': {'name': 'b'}},
    ]


async def test_listing_with_a_label_selector(
        resp_mocker, aresponses, hostname, settings, logger, resource, namespace):

    list_mock = resp_mocker(return_value=aiohttp.web.json_response({'items': []}))
    aresponses.add(hostname, resource.get_url(namespace=namespace), 'get', list_mock)

    items, resource_version = await list_objs(settings=settings, resource=resource,
                                              namespace=namespace, label_selector='a=b',
                                              logger=logger)
    assert items == []
    assert resource_version == ''

    request = list_mock.call_args_list[0][0][0]
    assert request.query['labelSelector'] == 'a=b'
