import asyncio

import pytest
from pytest_mock import MockerFixture

from broker import AioPikaBroker, BrokerConnectionError, PublishError


@pytest.mark.asyncio
async def test_connect_failure_wrapped(mocker: MockerFixture):
    mocker.patch("broker.aio_pika.connect", side_effect=OSError("connection refused"))

    with pytest.raises(BrokerConnectionError) as excinfo:
        await AioPikaBroker().connect("amqp://broker.test/", timeout=1.0)

    assert isinstance(excinfo.value, ConnectionError)
    assert isinstance(excinfo.value.__cause__, OSError)


@pytest.mark.asyncio
async def test_connect_timeout(mocker: MockerFixture):
    async def never_connects(url):
        await asyncio.sleep(10)

    mocker.patch("broker.aio_pika.connect", side_effect=never_connects)

    with pytest.raises(BrokerConnectionError, match="timed out"):
        await AioPikaBroker().connect("amqp://broker.test/", timeout=0.01)


@pytest.mark.asyncio
async def test_open_channel_failure_wrapped(mocker: MockerFixture):
    connection = mocker.MagicMock()
    connection.channel = mocker.AsyncMock(side_effect=RuntimeError("closed"))

    with pytest.raises(BrokerConnectionError):
        await AioPikaBroker().open_channel(connection)


@pytest.mark.asyncio
async def test_publish_reuses_exchange_handle(mocker: MockerFixture):
    exchange = mocker.MagicMock()
    exchange.publish = mocker.AsyncMock()
    channel = mocker.MagicMock()
    channel.get_exchange = mocker.AsyncMock(return_value=exchange)

    broker = AioPikaBroker()
    await broker.publish(channel, "amq.topic", "dasds", "application/json", b"{}")
    await broker.publish(channel, "amq.topic", "dasds", "application/json", b"{}")

    channel.get_exchange.assert_awaited_once_with("amq.topic", ensure=False)
    assert exchange.publish.await_count == 2
    message = exchange.publish.await_args.args[0]
    assert message.body == b"{}"
    assert message.content_type == "application/json"
    assert exchange.publish.await_args.kwargs == {"routing_key": "dasds"}


@pytest.mark.asyncio
async def test_publish_to_default_exchange(mocker: MockerFixture):
    channel = mocker.MagicMock()
    channel.get_exchange = mocker.AsyncMock()
    channel.default_exchange.publish = mocker.AsyncMock()

    await AioPikaBroker().publish(channel, "", "jobs", "application/json", b"{}")

    channel.get_exchange.assert_not_awaited()
    channel.default_exchange.publish.assert_awaited_once()


@pytest.mark.asyncio
async def test_publish_failure_wrapped(mocker: MockerFixture):
    exchange = mocker.MagicMock()
    exchange.publish = mocker.AsyncMock(side_effect=RuntimeError("channel closed"))
    channel = mocker.MagicMock()
    channel.get_exchange = mocker.AsyncMock(return_value=exchange)

    with pytest.raises(PublishError) as excinfo:
        await AioPikaBroker().publish(channel, "amq.fanout", "dasds", "application/json", b"{}")

    assert excinfo.value.exchange == "amq.fanout"
    assert "channel closed" in str(excinfo.value)


@pytest.mark.asyncio
async def test_close_skips_missing_and_closed(mocker: MockerFixture):
    broker = AioPikaBroker()
    await broker.close(None)

    closed = mocker.MagicMock(is_closed=True)
    closed.close = mocker.AsyncMock()
    await broker.close(closed)
    closed.close.assert_not_awaited()

    open_conn = mocker.MagicMock(is_closed=False)
    open_conn.close = mocker.AsyncMock()
    await broker.close(open_conn)
    open_conn.close.assert_awaited_once()
