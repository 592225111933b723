"""Tests for the GitHub catalog client, with a stubbed requests session."""

import base64
import json

import pytest
import requests

from solidrules.catalog.client import GitHubCatalogClient
from solidrules.catalog.refresh import CatalogRefreshPipeline
from solidrules.errors import CatalogFetchError, CatalogUnavailable, RateLimitedError


def make_response(status: int, payload=None, headers=None, text=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    body = text if text is not None else json.dumps(payload)
    response._content = body.encode("utf-8")
    response.headers.update(headers or {})
    return response


def file_payload(text: str) -> dict:
    return {"type": "file", "content": base64.b64encode(text.encode("utf-8")).decode("ascii")}


class StubSession(requests.Session):
    def __init__(self, responses):
        super().__init__()
        self.responses = responses
        self.requested = []

    def get(self, url, **kwargs):
        self.requested.append(url)
        path = url.split("/contents/", 1)[-1]
        return self.responses[path]


def make_client(responses, token=None) -> GitHubCatalogClient:
    return GitHubCatalogClient(session=StubSession(responses), token=token)


@pytest.mark.asyncio
async def test_list_catalog_keeps_directories_only():
    client = make_client(
        {
            "rules": make_response(
                200,
                [
                    {"type": "dir", "path": "rules/react-ts", "name": "react-ts", "sha": "abc", "size": 0},
                    {"type": "file", "path": "rules/README.md", "name": "README.md", "sha": "def", "size": 10},
                ],
            )
        }
    )

    entries = await client.list_catalog()

    assert [(e.path, e.version_stamp) for e in entries] == [("rules/react-ts", "abc")]


@pytest.mark.asyncio
async def test_list_catalog_rate_limited():
    client = make_client({"rules": make_response(403, {"message": "x"}, headers={"X-RateLimit-Remaining": "0"})})

    with pytest.raises(CatalogUnavailable) as excinfo:
        await client.list_catalog()
    assert excinfo.value.rate_limited


@pytest.mark.asyncio
async def test_list_catalog_other_failure():
    client = make_client({"rules": make_response(500, {"message": "boom"})})

    with pytest.raises(CatalogUnavailable) as excinfo:
        await client.list_catalog()
    assert not excinfo.value.rate_limited


@pytest.mark.asyncio
async def test_fetch_content_decodes_base64():
    client = make_client({"rules/react-ts/.cursorrules": make_response(200, file_payload("Use hooks."))})

    assert await client.fetch_content("rules/react-ts") == b"Use hooks."


@pytest.mark.asyncio
async def test_fetch_content_429_is_rate_limit():
    client = make_client({"rules/x/.cursorrules": make_response(429, {}, headers={"Retry-After": "30"})})

    with pytest.raises(RateLimitedError) as excinfo:
        await client.fetch_content("rules/x")
    assert excinfo.value.retry_after == 30.0


@pytest.mark.asyncio
async def test_fetch_content_404():
    client = make_client({"rules/x/.cursorrules": make_response(404, {"message": "Not Found"})})

    with pytest.raises(CatalogFetchError) as excinfo:
        await client.fetch_content("rules/x")
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_fetch_metadata_reads_first_readme_line():
    readme = "# React TypeScript\n\nBest practices for React with TypeScript.\nMore text."
    client = make_client({"rules/react-typescript/README.md": make_response(200, file_payload(readme))})

    metadata = await client.fetch_metadata("rules/react-typescript")

    assert metadata.description == "Best practices for React with TypeScript."
    assert metadata.technologies == ["react", "typescript"]


@pytest.mark.asyncio
async def test_fetch_metadata_without_readme_falls_back():
    client = make_client({"rules/vue-nuxt/README.md": make_response(404, {"message": "Not Found"})})

    metadata = await client.fetch_metadata("rules/vue-nuxt")

    assert metadata.description == "vue, nuxt"


@pytest.mark.asyncio
async def test_fetch_metadata_propagates_rate_limit():
    client = make_client({"rules/vue/README.md": make_response(403, {}, text="API rate limit exceeded")})

    with pytest.raises(RateLimitedError):
        await client.fetch_metadata("rules/vue")


def test_token_sets_authorization_header():
    client = make_client({}, token="ghp_secret")

    assert client.authenticated
    assert client.session.headers["Authorization"] == "Bearer ghp_secret"
    assert not make_client({}).authenticated


@pytest.mark.asyncio
async def test_non_json_body_is_a_fetch_error():
    client = make_client({"rules/x/.cursorrules": make_response(200, text="<html>proxy error</html>")})

    with pytest.raises(CatalogFetchError) as excinfo:
        await client.fetch_content("rules/x")
    assert "not JSON" in str(excinfo.value)


@pytest.mark.asyncio
async def test_bad_base64_is_a_fetch_error():
    client = make_client({"rules/x/.cursorrules": make_response(200, {"type": "file", "content": "abc"})})

    with pytest.raises(CatalogFetchError):
        await client.fetch_content("rules/x")


@pytest.mark.asyncio
async def test_garbled_item_fails_alone_during_refresh(store, sleep):
    client = make_client(
        {
            "rules": make_response(
                200,
                [
                    {"type": "dir", "path": "rules/a-react", "name": "a-react", "sha": "1", "size": 0},
                    {"type": "dir", "path": "rules/b-python", "name": "b-python", "sha": "2", "size": 0},
                ],
            ),
            "rules/a-react/.cursorrules": make_response(200, file_payload("Use hooks.")),
            "rules/a-react/README.md": make_response(404, {"message": "Not Found"}),
            "rules/b-python/.cursorrules": make_response(200, text="<html>proxy error</html>"),
        }
    )
    pipeline = CatalogRefreshPipeline(store, client, sleep=sleep)

    result = await pipeline.refresh()

    assert result.processed_count == 1
    assert result.error_count == 1
    assert (await store.get("rules-a-react")).content == "Use hooks."
    assert await store.get("rules-b-python") is None
