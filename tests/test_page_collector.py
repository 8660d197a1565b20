import asyncio

import pytest
from aiohttp import web

from Sora_Content_Scraper.src.errors import PageCollectionError
from Sora_Content_Scraper.src.scraper_functions.page_collector import (
    ApiClient,
    PageCollector,
    extract_id_from_url,
    normalize_url,
    parse_item,
)

BASE = "https://api.example.test/post/"
ROOT_ID = "s_68e5d5037b4c8191b33992ce7f8feaee"


def post(post_id, username="author", url=None):
    return {
        "post": {
            "id": post_id,
            "attachments": [{"downloadable_url": url or f"https://cdn.example.test/{post_id}.mp4",
                             "prompt": f"prompt for {post_id}"}],
        },
        "profile": {"username": username},
    }


def root_response(cursor=None, items=(), remix_count=0, **extra):
    data = post(ROOT_ID, username="rooter")
    data["post"]["remix_count"] = remix_count
    data["post"]["remix_posts"] = {"items": list(items), "cursor": cursor}
    data.update(extra)
    return data


class FakeClient:
    def __init__(self, responses, default=None):
        self.responses = responses
        self.default = default
        self.urls = []

    async def get_json(self, url):
        self.urls.append(url)
        if url in self.responses:
            return self.responses[url]
        if self.default is not None:
            return self.default(url)
        raise AssertionError(f"unexpected url {url}")


def test_extract_id_from_url():
    assert extract_id_from_url(ROOT_ID) == ROOT_ID
    assert extract_id_from_url(f"https://sora.chatgpt.com/p/{ROOT_ID}") == ROOT_ID
    assert extract_id_from_url(f"https://sora.chatgpt.com/backend/project_y/post/{ROOT_ID}") == ROOT_ID
    assert extract_id_from_url("https://example.test/videos/123") is None


def test_normalize_url():
    assert normalize_url(ROOT_ID, base_url=BASE) == BASE + ROOT_ID
    assert normalize_url(f"https://sora.chatgpt.com/p/{ROOT_ID}", base_url=BASE) == BASE + ROOT_ID
    assert normalize_url(ROOT_ID, cursor="a/b=", base_url=BASE) == BASE + ROOT_ID + "/remix_feed?cursor=a%2Fb%3D"
    assert normalize_url("https://example.test/other", base_url=BASE) == "https://example.test/other"


def test_parse_item_reads_post_and_profile():
    item = parse_item(post("s_abc", username="maker"))
    assert item.item_id == "s_abc"
    assert item.author_id == "maker"
    assert item.download_url == "https://cdn.example.test/s_abc.mp4"
    assert item.prompt == "prompt for s_abc"
    assert parse_item({"profile": {}}) is None


def test_collect_follows_cursor_until_it_runs_out():
    client = FakeClient({
        BASE + ROOT_ID: root_response(cursor="c1", items=[post("s_r1")], remix_count=4),
        normalize_url(ROOT_ID, "c1", BASE): {"items": [post("s_r2"), post("s_r3")], "cursor": "c2"},
        normalize_url(ROOT_ID, "c2", BASE): {"items": [post("s_r4")], "cursor": None},
    })
    collection = asyncio.run(PageCollector(client, base_url=BASE).collect(ROOT_ID))

    assert collection.root.remix_count == 4
    assert [item.item_id for item in collection.related] == ["s_r1", "s_r2", "s_r3", "s_r4"]
    assert collection.pages_fetched == 2
    assert len(client.urls) == 3
    assert collection.root.item.label == 11
    assert [item.label for item in collection.related] == [12, 13, 14, 15]
    assert [item.item_id for item in collection.items][0] == ROOT_ID


def test_collect_without_cursor_requests_no_pages():
    client = FakeClient({BASE + ROOT_ID: root_response(cursor=None, items=[post("s_r1")])})
    collection = asyncio.run(PageCollector(client, base_url=BASE).collect(ROOT_ID))

    assert [item.item_id for item in collection.related] == ["s_r1"]
    assert client.urls == [BASE + ROOT_ID]


def test_collect_skips_feed_for_nested_children_shape():
    client = FakeClient({BASE + ROOT_ID: root_response(cursor="c1", items=[post("s_r1")], children=[])})
    collection = asyncio.run(PageCollector(client, base_url=BASE).collect(ROOT_ID))

    assert collection.related == []
    assert collection.pages_fetched == 0
    assert client.urls == [BASE + ROOT_ID]


def test_pagination_stops_at_page_cap():
    counter = {"n": 0}

    def endless(url):
        counter["n"] += 1
        return {"items": [post(f"s_p{counter['n']}")], "cursor": f"next{counter['n']}"}

    client = FakeClient({BASE + ROOT_ID: root_response(cursor="start")}, default=endless)
    collection = asyncio.run(PageCollector(client, base_url=BASE).collect(ROOT_ID))

    assert collection.pages_fetched == 20
    assert len(client.urls) == 21
    assert len(collection.related) == 20


def test_page_without_items_stops_early():
    client = FakeClient({
        BASE + ROOT_ID: root_response(cursor="c1"),
        normalize_url(ROOT_ID, "c1", BASE): {"detail": "unexpected"},
    })
    collection = asyncio.run(PageCollector(client, base_url=BASE).collect(ROOT_ID))

    assert collection.related == []
    assert collection.pages_fetched == 1


def test_root_without_post_raises():
    client = FakeClient({BASE + ROOT_ID: {"error": "not found"}})
    with pytest.raises(PageCollectionError):
        asyncio.run(PageCollector(client, base_url=BASE).collect_root(ROOT_ID))


def test_api_client_against_local_server(serve):
    seen = {}

    async def item(request):
        seen["auth"] = request.headers.get("authorization")
        seen["cursor"] = request.query.get("cursor")
        return web.json_response({"items": [post("s_r9")], "cursor": None})

    app = web.Application()
    app.router.add_get(f"/post/{ROOT_ID}/remix_feed", item)

    async def scenario():
        server = await serve(app)
        try:
            base = str(server.make_url("/post/"))
            async with ApiClient({"authorization": "Bearer t"}) as client:
                collector = PageCollector(client, base_url=base)
                return await collector.collect_page(ROOT_ID, "tok/1")
        finally:
            await server.close()

    listing = asyncio.run(scenario())
    assert [item.item_id for item in listing.items] == ["s_r9"]
    assert listing.cursor is None
    assert seen == {"auth": "Bearer t", "cursor": "tok/1"}
