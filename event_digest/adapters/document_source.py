"""Guide document locator and fetcher.

Scrapes the editorial page that links the monthly guide and downloads the
first PDF it links to.
"""

import base64
from typing import Final
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from event_digest.config.logging_config import get_logger
from event_digest.domain.exceptions import DocumentFetchError, DocumentNotFoundError
from event_digest.domain.models import DocumentPayload, DocumentRef

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS: Final[float] = 60.0
PDF_LINK_SELECTOR: Final[str] = 'a[href$=".pdf" i]'
USER_AGENT: Final[str] = "event-digest/1.0 (+https://www.sescsp.org.br)"


class GuideDocumentSource:
    """Locates the most recent guide PDF and downloads it."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize the document source.

        Args:
            session: Optional requests session (tests inject a fake)
            timeout_seconds: HTTP request timeout in seconds
        """
        self._session = session or requests.Session()
        self._timeout_seconds = timeout_seconds

    def _get(self, url: str) -> requests.Response:
        try:
            response = self._session.get(
                url,
                timeout=self._timeout_seconds,
                headers={"User-Agent": USER_AGENT},
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise DocumentFetchError(f"Failed to fetch {url}: {e}") from e
        return response

    def find_latest_document(self, page_url: str) -> DocumentRef:
        """Return the first PDF linked from ``page_url``.

        Args:
            page_url: Editorial page listing the guides

        Returns:
            DocumentRef with an absolute URL and the link text as name

        Raises:
            DocumentNotFoundError: If the page links no PDF
            DocumentFetchError: On HTTP errors
        """
        response = self._get(page_url)
        soup = BeautifulSoup(response.text, "html.parser")

        link = soup.select_one(PDF_LINK_SELECTOR)
        href = link.get("href") if link is not None else None
        if not isinstance(href, str) or not href.strip():
            raise DocumentNotFoundError(f"No PDF link found on {page_url}")

        ref = DocumentRef(
            url=urljoin(page_url, href.strip()),
            name=" ".join(link.get_text().split()) if link is not None else "",
        )
        logger.info("guide_document_found", url=ref.url, name=ref.name)
        return ref

    def download(self, ref: DocumentRef) -> DocumentPayload:
        """Download the document and encode it as base64.

        Raises:
            DocumentFetchError: On HTTP errors or an empty body
        """
        response = self._get(ref.url)
        content = response.content
        if not content:
            raise DocumentFetchError(f"Empty document body: {ref.url}")

        payload = DocumentPayload(
            ref=ref,
            data_base64=base64.b64encode(content).decode("ascii"),
            size_bytes=len(content),
        )
        logger.info(
            "guide_document_downloaded",
            url=ref.url,
            size_mb=round(len(content) / 1024 / 1024, 2),
        )
        return payload
