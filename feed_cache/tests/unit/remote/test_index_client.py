import json

import httpx
import pytest

from feed_cache.errors import (
    RemoteAuthError,
    RemoteClientError,
    RemoteFetchError,
    RemoteNotFoundError,
    RemoteRateLimitError,
    RemoteServerError,
    RemoteTimeoutError,
)
from feed_cache.remote.client import RemoteIndexClient, encode_segment, raise_for_status
from feed_cache.remote.results import RemoteNotFound, RemoteSuccess, RemoteTimeout

BASE_URL = "http://index.test"


def user_payload(user_id: str) -> dict:
    return {
        "details": {"id": user_id, "name": f"User {user_id}", "indexed_at": 1},
        "counts": {"followers": 2},
        "relationship": {"following": True},
        "tags": [],
    }


def post_payload(author_id: str, post_id: str) -> dict:
    return {
        "details": {"id": post_id, "author": author_id, "content": "hi", "kind": "short"},
        "counts": {"replies": 1},
        "relationships": {},
        "tags": [{"label": "news", "taggers": ["x"], "taggers_count": 1}],
    }


def make_client(handler, **kwargs) -> RemoteIndexClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteIndexClient(base_url=BASE_URL, version="v0", http_client=http_client,
                             initial_backoff=0, max_backoff=0, **kwargs)


class Recorder:
    """MockTransport handler returning queued responses and keeping the requests."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        template = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(template.status_code, headers=template.headers, content=template.content)


def test_encode_segment_escapes_separators():
    assert encode_segment("abc:123/x") == "abc%3A123%2Fx"
    assert encode_segment(42) == "42"


def test_build_url_encodes_each_segment():
    client = make_client(Recorder(httpx.Response(200)))
    assert client.build_url("user", "pk:1", "notifications") == f"{BASE_URL}/v0/user/pk%3A1/notifications"


@pytest.mark.parametrize(
    "status, error_class",
    [
        (429, RemoteRateLimitError),
        (408, RemoteTimeoutError),
        (504, RemoteTimeoutError),
        (500, RemoteServerError),
        (503, RemoteServerError),
        (401, RemoteAuthError),
        (403, RemoteAuthError),
        (404, RemoteNotFoundError),
        (400, RemoteClientError),
    ],
)
def test_raise_for_status_classification(status, error_class):
    response = httpx.Response(status, request=httpx.Request("GET", f"{BASE_URL}/v0/x"))
    with pytest.raises(error_class) as exc_info:
        raise_for_status(response)
    assert exc_info.value.status_code == status
    assert exc_info.value.url == f"{BASE_URL}/v0/x"


def test_raise_for_status_reads_retry_after():
    response = httpx.Response(429, headers={"Retry-After": "7"}, request=httpx.Request("GET", BASE_URL))
    with pytest.raises(RemoteRateLimitError) as exc_info:
        raise_for_status(response)
    assert exc_info.value.retry_after == 7.0


def test_raise_for_status_passes_success():
    raise_for_status(httpx.Response(200, request=httpx.Request("GET", BASE_URL)))


@pytest.mark.asyncio
async def test_stream_post_keys_sends_query_and_parses_page():
    recorder = Recorder(httpx.Response(200, json={"post_keys": ["a:1", "b:2"], "last_post_score": 5}))
    client = make_client(recorder)

    page = await client.stream_post_keys(
        source="following", sorting="timeline", tags=["btc", "ln"], observer_id="me", skip=20, limit=10
    )

    assert page.post_keys == ["a:1", "b:2"]
    assert page.last_post_score == 5
    request = recorder.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/v0/stream/posts/keys"
    params = request.url.params
    assert params["source"] == "following"
    assert params["tags"] == "btc,ln"
    assert params["observer_id"] == "me"
    assert params["skip"] == "20"
    assert "kind" not in params
    await client.close()


@pytest.mark.asyncio
async def test_stream_post_keys_empty_body_returns_empty_page():
    client = make_client(Recorder(httpx.Response(200)))
    page = await client.stream_post_keys(source="all")
    assert page.post_keys == []
    await client.close()


@pytest.mark.asyncio
async def test_users_by_ids_posts_json_body():
    recorder = Recorder(httpx.Response(200, json=[user_payload("u1"), user_payload("u2")]))
    client = make_client(recorder)

    users = await client.users_by_ids(["u1", "u2"], viewer_id="me")

    assert [u.id for u in users] == ["u1", "u2"]
    assert users[0].relationship.following is True
    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/v0/stream/users/by_ids"
    assert json.loads(request.content) == {"user_ids": ["u1", "u2"], "viewer_id": "me"}
    await client.close()


@pytest.mark.asyncio
async def test_by_ids_with_no_ids_makes_no_request():
    recorder = Recorder(httpx.Response(500))
    client = make_client(recorder)
    assert await client.users_by_ids([]) == []
    assert await client.posts_by_ids([]) == []
    assert recorder.requests == []
    await client.close()


@pytest.mark.asyncio
async def test_posts_by_ids_parses_records():
    client = make_client(Recorder(httpx.Response(200, json=[post_payload("a", "1")])))
    posts = await client.posts_by_ids(["a:1"])
    assert posts[0].details.author == "a"
    assert posts[0].counts.replies == 1
    assert posts[0].tags[0].label == "news"
    await client.close()


@pytest.mark.asyncio
async def test_null_list_payload_is_empty_list():
    client = make_client(Recorder(httpx.Response(200, content=b"null")))
    assert await client.stream_users("followers", "u1") == []
    await client.close()


@pytest.mark.asyncio
async def test_unexpected_payload_raises_fetch_error():
    client = make_client(Recorder(httpx.Response(200, json={"not": "a list"})))
    with pytest.raises(RemoteFetchError):
        await client.stream_users("followers", "u1")
    await client.close()


@pytest.mark.asyncio
async def test_invalid_json_raises_fetch_error():
    client = make_client(Recorder(httpx.Response(200, content=b"<html>")))
    with pytest.raises(RemoteFetchError):
        await client.hot_tags("today", "all")
    await client.close()


@pytest.mark.asyncio
async def test_user_returns_none_on_404():
    client = make_client(Recorder(httpx.Response(404)))
    assert await client.user("ghost") is None
    assert await client.post("ghost", "1") is None
    await client.close()


@pytest.mark.asyncio
async def test_post_tags_sends_tag_paging():
    recorder = Recorder(httpx.Response(200, json=[{"label": "news", "taggers": ["x"], "taggers_count": 1}]))
    client = make_client(recorder)

    tags = await client.post_tags("alice", "p1", viewer_id="me", skip_tags=5, limit_tags=10)

    assert [t.label for t in tags] == ["news"]
    request = recorder.requests[0]
    assert request.url.path == "/v0/post/alice/p1/tags"
    assert request.url.params["skip_tags"] == "5"
    assert request.url.params["limit_tags"] == "10"
    assert "limit_taggers" not in request.url.params
    await client.close()


@pytest.mark.asyncio
async def test_hot_tags_omits_default_reach():
    recorder = Recorder(httpx.Response(200, json=[{"label": "btc", "tagged_count": 3, "taggers_count": 2}]))
    client = make_client(recorder)

    tags = await client.hot_tags("today", "all", limit=5)
    await client.hot_tags("today", "following", user_id="me")

    assert tags[0].label == "btc"
    assert "reach" not in recorder.requests[0].url.params
    assert recorder.requests[0].url.params["limit"] == "5"
    assert recorder.requests[1].url.params["reach"] == "following"
    assert recorder.requests[1].url.params["user_id"] == "me"
    await client.close()


@pytest.mark.asyncio
async def test_notifications_bounds():
    recorder = Recorder(httpx.Response(200, json=[{"timestamp": 10, "body": {"type": "follow"}}]))
    client = make_client(recorder)

    items = await client.notifications("pk:1", start=5, limit=30)

    assert items[0].timestamp == 10
    assert items[0].body == {"type": "follow"}
    request = recorder.requests[0]
    assert request.url.raw_path.startswith(b"/v0/user/pk%3A1/notifications")
    assert request.url.params["start"] == "5"
    assert "end" not in request.url.params
    await client.close()


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_succeed():
    recorder = Recorder(httpx.Response(502), httpx.Response(200, json=[user_payload("u1")]))
    client = make_client(recorder, max_retries=2)

    users = await client.stream_users("following", "me")

    assert [u.id for u in users] == ["u1"]
    assert len(recorder.requests) == 2
    await client.close()


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    recorder = Recorder(httpx.Response(400, text="bad"))
    client = make_client(recorder, max_retries=3)

    with pytest.raises(RemoteClientError):
        await client.stream_users("following", "me")
    assert len(recorder.requests) == 1
    await client.close()


@pytest.mark.asyncio
async def test_transport_timeout_maps_to_timeout_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(handler, max_retries=0)
    with pytest.raises(RemoteTimeoutError):
        await client.stream_users("following", "me")
    await client.close()


@pytest.mark.asyncio
async def test_poll_user_structured_results():
    client = make_client(Recorder(httpx.Response(200, json=user_payload("u1"))))
    result = await client.poll_user("u1")
    assert isinstance(result, RemoteSuccess)
    assert result.success and result.data.id == "u1"
    await client.close()

    client = make_client(Recorder(httpx.Response(404)))
    result = await client.poll_post("a", "1")
    assert isinstance(result, RemoteNotFound)
    assert result.not_found and not result.success
    await client.close()

    client = make_client(Recorder(httpx.Response(504)))
    result = await client.poll_user("u1")
    assert isinstance(result, RemoteTimeout)
    assert result.timeout
    await client.close()


@pytest.mark.asyncio
async def test_poll_propagates_server_errors():
    client = make_client(Recorder(httpx.Response(500)))
    with pytest.raises(RemoteServerError):
        await client.poll_user("u1")
    await client.close()
