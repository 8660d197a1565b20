import asyncio
import json

from Sora_Content_Scraper.src.scraper_functions.playwright_scraper import PlaywrightScraper

ROOT_ID = "s_" + "0" * 31 + "2"
FALLBACK_SRC = "https://videos.example.test/fallback.mp4"


def flight_script(record):
    payload = ["$", "$b", None, {"children": ["$", "$L13", None, {"post": record}]}]
    return 'self.__next_f.push([1,' + json.dumps("5:" + json.dumps(payload) + "\n") + '])'


class FakeContext:
    def __init__(self):
        self.extra_headers = None
        self.cookies = []

    async def set_extra_http_headers(self, headers):
        self.extra_headers = headers

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)


class FakePage:
    def __init__(self, page_data):
        self.page_data = page_data
        self.visited = []

    async def goto(self, url, **kwargs):
        self.visited.append(url)

    async def wait_for_selector(self, selector, **kwargs):
        return None

    async def evaluate(self, script):
        return dict(self.page_data)


def running_scraper(headers=None):
    record = {
        "post": {"id": ROOT_ID, "attachments": [{"prompt": "no direct link"}]},
        "profile": {"username": "maker"},
    }
    scraper = PlaywrightScraper(headers=headers)
    scraper.context = FakeContext()
    scraper.page = FakePage({
        "title": "Sora",
        "metadata": {},
        "videoSrc": FALLBACK_SRC,
        "scripts": [flight_script(record)],
    })
    return scraper


def test_new_headers_reach_a_running_context():
    scraper = running_scraper(headers={"authorization": "Bearer old"})
    fresh = {"Authorization": "Bearer fresh", "Cookie": "session=abc", "User-Agent": "agent"}

    item, related = asyncio.run(scraper.fetch_rendered_item(f"https://sora.chatgpt.com/p/{ROOT_ID}", fresh))

    assert scraper.context.extra_headers == {"authorization": "Bearer fresh"}
    assert [cookie["name"] for cookie in scraper.context.cookies] == ["session"]
    assert scraper.headers == fresh
    assert item.item_id == ROOT_ID
    assert item.download_url == FALLBACK_SRC
    assert related.items == []


def test_fetch_without_headers_leaves_context_alone():
    scraper = running_scraper(headers={"authorization": "Bearer old"})

    item, _ = asyncio.run(scraper.fetch_rendered_item(f"https://sora.chatgpt.com/p/{ROOT_ID}"))

    assert scraper.context.extra_headers is None
    assert scraper.page.visited == [f"https://sora.chatgpt.com/p/{ROOT_ID}"]
    assert item.author_id == "maker"
