# API client unit tests
import httpx
import pytest
from unittest.mock import AsyncMock

from app.core.exceptions import (
    OLXAPIError,
    OLXAuthenticationError,
    OLXNotFoundError,
    OLXValidationError,
    TransientAPIError,
)
from app.services.olx.client import OLXClient, unwrap_data


def _response(status_code, json=None, headers=None):
    if json is None:
        return httpx.Response(status_code, headers=headers)
    return httpx.Response(status_code, json=json, headers=headers)


@pytest.fixture
def sleep(mocker):
    return mocker.patch("app.services.olx.client.asyncio.sleep", new_callable=AsyncMock)


@pytest.fixture
def token_provider():
    tokens = iter(["token-1", "token-2", "token-3"])

    async def provider(force_refresh):
        return next(tokens)

    return AsyncMock(side_effect=provider)


"""
1. Client Authentication Tests
"""

async def test_bearer_token_is_sent(mocker, token_provider):
    """Authenticated requests carry the provider's token"""
    send = mocker.patch.object(OLXClient, "_send", return_value=_response(200, {"data": []}))
    client = OLXClient(token_provider=token_provider, base_url="https://api.olx.test/")

    result = await client.get_categories()

    method, url = send.call_args.args
    assert (method, url) == ("GET", "https://api.olx.test/categories")
    assert send.call_args.kwargs["headers"]["Authorization"] == "Bearer token-1"
    assert result == {"data": []}


async def test_login_is_not_authenticated(mocker, token_provider):
    send = mocker.patch.object(OLXClient, "_send", return_value=_response(200, {"token": "abc", "user": {"id": 1}}))
    client = OLXClient(token_provider=token_provider)

    result = await client.login("shop@example.com", "secret")

    assert result["token"] == "abc"
    assert "Authorization" not in send.call_args.kwargs["headers"]
    assert send.call_args.kwargs["json"]["username"] == "shop@example.com"
    token_provider.assert_not_called()


async def test_reauthenticates_once_on_401(mocker, token_provider):
    send = mocker.patch.object(
        OLXClient, "_send", side_effect=[_response(401, {"message": "Unauthenticated."}), _response(200, {"id": 5})]
    )
    client = OLXClient(token_provider=token_provider)

    result = await client.get_listing(5)

    assert result == {"id": 5}
    assert send.call_count == 2
    assert send.call_args.kwargs["headers"]["Authorization"] == "Bearer token-2"
    assert [c.args for c in token_provider.await_args_list] == [(False,), (True,)]


async def test_second_401_is_an_authentication_error(mocker, token_provider, sleep):
    mocker.patch.object(OLXClient, "_send", return_value=_response(403, {"message": "Forbidden"}))
    client = OLXClient(token_provider=token_provider)

    with pytest.raises(OLXAuthenticationError, match="Forbidden") as exc_info:
        await client.get_listing(5)

    assert exc_info.value.status_code == 403
    assert token_provider.await_count == 2
    sleep.assert_not_called()


"""
2. Error Mapping Tests
"""

async def test_404_is_not_found(mocker):
    mocker.patch.object(OLXClient, "_send", return_value=_response(404, {"message": "Oglas ne postoji"}))

    with pytest.raises(OLXNotFoundError, match="Oglas ne postoji"):
        await OLXClient().get_listing(1)


async def test_422_collects_field_errors(mocker):
    body = {"errors": {"title": ["The title field is required."], "price": "must be a number"}}
    mocker.patch.object(OLXClient, "_send", return_value=_response(422, body))

    with pytest.raises(OLXValidationError) as exc_info:
        await OLXClient().create_listing({})

    assert str(exc_info.value) == "title: The title field is required., price: must be a number"
    assert exc_info.value.payload == body


async def test_other_client_errors_are_api_errors(mocker, sleep):
    mocker.patch.object(OLXClient, "_send", return_value=_response(400, {"error": "Bad request"}))

    with pytest.raises(OLXAPIError, match=r"\(400\): Bad request") as exc_info:
        await OLXClient().get_categories()

    assert not isinstance(exc_info.value, TransientAPIError)
    sleep.assert_not_called()


async def test_empty_success_body(mocker):
    mocker.patch.object(OLXClient, "_send", return_value=_response(204))

    assert await OLXClient().delete_listing(9) == {}


async def test_non_json_success_body_is_an_error(mocker):
    mocker.patch.object(OLXClient, "_send", return_value=httpx.Response(200, text="<html>"))

    with pytest.raises(OLXAPIError, match="Invalid response"):
        await OLXClient().get_categories()


"""
3. Retry Tests
"""

async def test_transient_error_is_retried(mocker, sleep):
    send = mocker.patch.object(
        OLXClient, "_send", side_effect=[_response(503, {"message": "down"}), _response(200, {"data": [1]})]
    )

    result = await OLXClient().get_categories()

    assert result == {"data": [1]}
    assert send.call_count == 2
    sleep.assert_awaited_once_with(1.0)


async def test_retries_give_up_with_exponential_backoff(mocker, sleep):
    send = mocker.patch.object(OLXClient, "_send", return_value=_response(500, {"message": "boom"}))

    with pytest.raises(TransientAPIError, match=r"\(500\)"):
        await OLXClient().get_categories()

    assert send.call_count == 4
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]


async def test_retry_after_header_is_honoured(mocker, sleep):
    mocker.patch.object(
        OLXClient,
        "_send",
        side_effect=[_response(429, {"message": "slow down"}, headers={"Retry-After": "7"}), _response(200, {})],
    )

    await OLXClient().get_categories()

    sleep.assert_awaited_once_with(7.0)


async def test_network_errors_are_retried(mocker, sleep):
    request = httpx.Request("GET", "https://api.olx.ba/categories")
    send = mocker.patch.object(OLXClient, "_send", side_effect=httpx.ConnectError("refused", request=request))

    with pytest.raises(TransientAPIError, match="Network error"):
        await OLXClient().get_categories()

    assert send.call_count == 4


def test_backoff_is_capped():
    client = OLXClient()

    assert client.backoff_delay(1) == 1.0
    assert client.backoff_delay(3) == 4.0
    assert client.backoff_delay(10) == 30.0
    assert client.backoff_delay(1, retry_after=120) == 30.0


"""
4. Endpoint Tests
"""

async def test_user_listings_are_paged(mocker):
    make_request = mocker.patch.object(OLXClient, "_make_request", return_value={"data": []})

    await OLXClient().get_user_listings("autodijelovi", page=3)

    make_request.assert_called_once_with(
        "GET", "/users/autodijelovi/listings", params={"page": 3, "per_page": 50}
    )


async def test_image_upload_is_multipart(mocker):
    make_request = mocker.patch.object(OLXClient, "_make_request", return_value={})

    await OLXClient().upload_image("123", "a.jpg", b"\xff\xd8", "image/jpeg")

    make_request.assert_called_once_with(
        "POST", "/listings/123/image-upload", files={"image": ("a.jpg", b"\xff\xd8", "image/jpeg")}
    )


def test_unwrap_data():
    assert unwrap_data({"data": {"id": 1}}) == {"id": 1}
    assert unwrap_data({"id": 1}) == {"id": 1}
    assert unwrap_data([1]) == [1]
