import logging
from urllib.parse import quote, urlencode, urljoin

import requests
from bs4 import BeautifulSoup

DEFAULT_BASE_URL = "https://www.discogs.com"
DEFAULT_USER_AGENT = "artwork-archiver/1.0"
DEFAULT_TIMEOUT = 30

_SEARCH_RESULT_CLASS = "search_result_title"
_IMAGE_SELECTOR = "#view_images > p > span > img"


def build_session(user_agent=DEFAULT_USER_AGENT):
    session = requests.Session()
    session.headers.update({
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml",
    })
    return session


class DiscogsScraper:
    def __init__(self, base_url=DEFAULT_BASE_URL, *, session=None, timeout=DEFAULT_TIMEOUT):
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.session = session or build_session()
        self.timeout = timeout

    def search_url(self, name, kind):
        # Slashes in names ("AC/DC") must stay percent-encoded.
        query = urlencode({"q": name, "type": kind}, quote_via=quote, safe="~()*!.'")
        return f"{self.base_url}/search/?{query}"

    def images_url(self, kind, object_id):
        return f"{self.base_url}/{kind}/{object_id}/images"

    def _fetch_html(self, url):
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return BeautifulSoup(response.text, "html.parser")

    def resolve_id(self, search_url, title):
        soup = self._fetch_html(search_url)
        link = soup.find(class_=_SEARCH_RESULT_CLASS, attrs={"title": title})
        if link is None or link.parent is None or link.parent.parent is None:
            logging.debug("Discogs search had no exact match for %r", title)
            return None
        object_id = link.parent.parent.get("data-object-id")
        if not object_id:
            return None
        return str(object_id)

    def resolve_image_url(self, images_url):
        soup = self._fetch_html(images_url)
        img = soup.select_one(_IMAGE_SELECTOR)
        if img is None:
            return None
        src = img.get("src")
        if not src:
            return None
        return urljoin(images_url, src)
