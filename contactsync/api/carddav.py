"""
CardDAV client for addressbook discovery and incremental contact sync.

Speaks WebDAV over requests:
- PROPFIND discovery (principal, addressbook home set, collections)
- sync-collection REPORT (RFC 6578) for incremental changes
- addressbook-query and addressbook-multiget REPORTs (RFC 6352)
"""

import logging
import threading
import xml.etree.ElementTree as ET
from typing import Optional
from urllib.parse import urljoin, urlsplit
from xml.sax.saxutils import escape

import requests

from contactsync.api.batch import (
    ProtocolError,
    RemoteContact,
    RemoteContactBatch,
    SyncCancelledError,
    check_cancelled,
)
from contactsync.api.vcard import parse_vcard
from contactsync.storage.models import AddressbookInfo, SourceType
from contactsync.utils.normalization import last_path_segment

# XML namespaces used in requests and responses
DAV_NS = "DAV:"
CARDDAV_NS = "urn:ietf:params:xml:ns:carddav"
NS = {"d": DAV_NS, "c": CARDDAV_NS}

# Request timeouts in seconds
DEFAULT_TIMEOUT = 30.0
DEFAULT_SYNC_TIMEOUT = 60.0

# Paths tried after the URL itself and .well-known
COMMON_DISCOVERY_PATHS = (
    "/remote.php/dav",
    "/remote.php/carddav",
    "/remote.php/dav/addressbooks/users/{username}/",
    "/dav",
    "/carddav",
    "/principals/{username}",
)

PROPFIND_PRINCIPAL = f"""<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="{DAV_NS}">
  <d:prop><d:current-user-principal/></d:prop>
</d:propfind>"""

PROPFIND_HOME_SET = f"""<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="{DAV_NS}" xmlns:c="{CARDDAV_NS}">
  <d:prop><c:addressbook-home-set/></d:prop>
</d:propfind>"""

PROPFIND_COLLECTIONS = f"""<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="{DAV_NS}" xmlns:c="{CARDDAV_NS}">
  <d:prop>
    <d:resourcetype/>
    <d:displayname/>
    <c:addressbook-description/>
  </d:prop>
</d:propfind>"""

ADDRESSBOOK_QUERY = f"""<?xml version="1.0" encoding="utf-8"?>
<c:addressbook-query xmlns:d="{DAV_NS}" xmlns:c="{CARDDAV_NS}">
  <d:prop><d:getetag/><c:address-data/></d:prop>
  <c:filter/>
</c:addressbook-query>"""

logger = logging.getLogger(__name__)


class CardDAVError(ProtocolError):
    """Raised when a CardDAV request fails."""

    pass


def normalize_base_url(url: str) -> str:
    """Ensure a server URL has a scheme, defaulting to https."""
    url = url.strip()
    if "://" not in url:
        url = f"https://{url}"
    return url


def _sync_collection_body(sync_token: str) -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<d:sync-collection xmlns:d="{DAV_NS}" xmlns:c="{CARDDAV_NS}">
  <d:sync-token>{escape(sync_token)}</d:sync-token>
  <d:sync-level>1</d:sync-level>
  <d:prop><d:getetag/><c:address-data/></d:prop>
</d:sync-collection>"""


def _multiget_body(hrefs: list[str]) -> str:
    href_elements = "".join(f"<d:href>{escape(href)}</d:href>" for href in hrefs)
    return f"""<?xml version="1.0" encoding="utf-8"?>
<c:addressbook-multiget xmlns:d="{DAV_NS}" xmlns:c="{CARDDAV_NS}">
  <d:prop><d:getetag/><c:address-data/></d:prop>
  {href_elements}
</c:addressbook-multiget>"""


def _status_code(element: Optional[ET.Element]) -> Optional[int]:
    """Parse the code out of a <d:status>HTTP/1.1 404 Not Found</d:status>."""
    if element is None or not element.text:
        return None
    parts = element.text.split()
    if len(parts) >= 2 and parts[1].isdigit():
        return int(parts[1])
    return None


def _href_path(href: str) -> str:
    """Reduce an href (absolute URL or path) to its path."""
    return urlsplit(href.strip()).path or href.strip()


def _ok_props(response: ET.Element) -> list[ET.Element]:
    """Return the <d:prop> elements of successful propstats."""
    props = []
    for propstat in response.findall("d:propstat", NS):
        code = _status_code(propstat.find("d:status", NS))
        if code is not None and not 200 <= code < 300:
            continue
        prop = propstat.find("d:prop", NS)
        if prop is not None:
            props.append(prop)
    return props


def _find_prop(response: ET.Element, path: str) -> Optional[ET.Element]:
    for prop in _ok_props(response):
        found = prop.find(path, NS)
        if found is not None:
            return found
    return None


class CardDAVClient:
    """
    CardDAV client bound to one server and one set of credentials.

    Attributes:
        base_url: Server URL the client was configured with
        username: HTTP Basic username
        session: requests session carrying the credentials

    Usage:
        client = CardDAVClient("https://dav.example.com", "bob", "secret")
        addressbooks = client.discover_addressbooks()
        batch = client.sync_addressbook(addressbooks[0].path, sync_token="")
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        sync_timeout: float = DEFAULT_SYNC_TIMEOUT,
        session: Optional[requests.Session] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the CardDAV client.

        Args:
            base_url: Server or addressbook URL. A missing scheme means https.
            username: HTTP Basic username
            password: HTTP Basic password
            timeout: Timeout for discovery requests in seconds
            sync_timeout: Timeout for sync and query reports in seconds
            session: Optional preconfigured requests session
            cancel_event: Optional signal checked before each request
        """
        self.base_url = normalize_base_url(base_url)
        self.username = username
        self.timeout = timeout
        self.sync_timeout = sync_timeout
        self.cancel_event = cancel_event
        self.session = session or requests.Session()
        self.session.auth = (username, password)

    def _resolve(self, path: str, base: Optional[str] = None) -> str:
        return urljoin(base or self.base_url, path)

    def _request(
        self,
        method: str,
        url: str,
        body: str,
        depth: str,
        timeout: Optional[float] = None,
    ) -> ET.Element:
        """
        Send a WebDAV request and parse the multistatus response.

        Raises:
            CardDAVError: On transport errors, HTTP errors or unparseable XML
            SyncCancelledError: If the cancellation signal is set
        """
        check_cancelled(self.cancel_event)
        logger.debug(f"{method} {url} (Depth: {depth})")
        try:
            response = self.session.request(
                method,
                url,
                data=body.encode("utf-8"),
                headers={
                    "Content-Type": "application/xml; charset=utf-8",
                    "Depth": depth,
                },
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            raise CardDAVError(f"{method} {url} failed: {e}") from e

        if response.status_code == 401:
            raise CardDAVError(f"authentication failed for {url}")
        if response.status_code >= 400:
            raise CardDAVError(
                f"{method} {url} returned HTTP {response.status_code}"
            )

        try:
            return ET.fromstring(response.content)
        except ET.ParseError as e:
            raise CardDAVError(f"invalid XML response from {url}: {e}") from e

    # =========================================================================
    # Discovery
    # =========================================================================

    def find_current_user_principal(self, url: str) -> str:
        """Return the principal URL for the authenticated user."""
        root = self._request("PROPFIND", url, PROPFIND_PRINCIPAL, depth="0")
        for response in root.findall("d:response", NS):
            href = _find_prop(response, "d:current-user-principal/d:href")
            if href is not None and href.text:
                return self._resolve(href.text.strip(), url)
        raise CardDAVError(f"no current-user-principal at {url}")

    def find_addressbook_home_set(self, principal_url: str) -> str:
        """Return the addressbook home set URL of a principal."""
        root = self._request("PROPFIND", principal_url, PROPFIND_HOME_SET, depth="0")
        for response in root.findall("d:response", NS):
            href = _find_prop(response, "c:addressbook-home-set/d:href")
            if href is not None and href.text:
                return self._resolve(href.text.strip(), principal_url)
        raise CardDAVError(f"no addressbook-home-set at {principal_url}")

    def list_addressbooks(self, url: str) -> list[AddressbookInfo]:
        """
        List the addressbook collections directly below a URL.

        Collections without a display name are named after the last
        segment of their path.
        """
        root = self._request("PROPFIND", url, PROPFIND_COLLECTIONS, depth="1")
        addressbooks = []
        for response in root.findall("d:response", NS):
            href = response.find("d:href", NS)
            resourcetype = _find_prop(response, "d:resourcetype")
            if href is None or not href.text or resourcetype is None:
                continue
            if resourcetype.find("c:addressbook", NS) is None:
                continue

            path = _href_path(href.text)
            name_element = _find_prop(response, "d:displayname")
            description_element = _find_prop(response, "c:addressbook-description")
            name = (name_element.text or "").strip() if name_element is not None else ""
            description = (
                (description_element.text or "").strip()
                if description_element is not None
                else ""
            )
            addressbooks.append(
                AddressbookInfo(
                    path=path,
                    name=name or last_path_segment(path),
                    description=description,
                )
            )
            logger.debug(f"Found addressbook: {path}")
        return addressbooks

    def _discover_at(self, url: str) -> list[AddressbookInfo]:
        logger.debug(f"Trying discovery from URL: {url}")
        try:
            principal = self.find_current_user_principal(url)
        except CardDAVError as e:
            logger.debug(f"current-user-principal lookup failed: {e}")
            return self.list_addressbooks(url)

        logger.debug(f"Found principal: {principal}")
        home_set = self.find_addressbook_home_set(principal)
        logger.debug(f"Found addressbook home set: {home_set}")
        return self.list_addressbooks(home_set)

    def discovery_candidates(self) -> list[str]:
        """URLs tried in order by discover_addressbooks()."""
        parts = urlsplit(self.base_url)
        origin = f"{parts.scheme}://{parts.netloc}"
        candidates = [self.base_url, f"{origin}/.well-known/carddav"]
        for path in COMMON_DISCOVERY_PATHS:
            candidates.append(origin + path.format(username=self.username))
        return candidates

    def discover_addressbooks(self) -> list[AddressbookInfo]:
        """
        Discover the user's addressbooks.

        Tries the configured URL, then .well-known/carddav, then common
        server layouts. The first candidate that yields at least one
        addressbook wins.

        Raises:
            CardDAVError: If no candidate yields an addressbook
        """
        logger.info(f"Starting addressbook discovery at {self.base_url}")
        for url in self.discovery_candidates():
            try:
                addressbooks = self._discover_at(url)
            except CardDAVError as e:
                logger.debug(f"Discovery at {url} failed: {e}")
                continue
            if addressbooks:
                logger.info(f"Discovered {len(addressbooks)} addressbooks at {url}")
                return addressbooks
        raise CardDAVError(f"no addressbooks found at {self.base_url}")

    def test_connection(self) -> list[AddressbookInfo]:
        """
        Check connectivity and credentials by running discovery.

        Returns:
            The discovered addressbooks

        Raises:
            CardDAVError: If discovery fails or finds nothing
        """
        try:
            addressbooks = self.discover_addressbooks()
        except CardDAVError as e:
            raise CardDAVError(f"connection test failed: {e}") from e
        if not addressbooks:
            raise CardDAVError("connection successful but no addressbooks found")
        logger.info(f"Connection test successful: {len(addressbooks)} addressbooks")
        return addressbooks

    # =========================================================================
    # Contact Sync
    # =========================================================================

    def _parse_contacts(
        self, responses: list[ET.Element], collection_path: str
    ) -> tuple[list[RemoteContact], list[str], list[str]]:
        """
        Split multistatus responses into contacts, deletions and bare hrefs.

        Returns:
            Tuple of (contacts with card data, deleted hrefs, hrefs that came
            without address-data)
        """
        contacts: list[RemoteContact] = []
        deleted: list[str] = []
        missing_data: list[str] = []
        collection = collection_path.rstrip("/")

        for response in responses:
            href_element = response.find("d:href", NS)
            if href_element is None or not href_element.text:
                continue
            href = _href_path(href_element.text)
            if href.rstrip("/") == collection:
                continue

            if _status_code(response.find("d:status", NS)) == 404:
                deleted.append(href)
                continue

            etag_element = _find_prop(response, "d:getetag")
            etag = (etag_element.text or "").strip() if etag_element is not None else ""
            data_element = _find_prop(response, "c:address-data")
            if data_element is None or not (data_element.text or "").strip():
                missing_data.append(href)
                continue

            card = parse_vcard(data_element.text)
            if not card.emails:
                # Card still exists but carries no address
                deleted.append(href)
                continue
            for email in card.emails:
                contacts.append(
                    RemoteContact(
                        href=href,
                        email=email,
                        display_name=card.display_name,
                        etag=etag,
                    )
                )

        return contacts, deleted, missing_data

    def fetch_contacts_by_href(
        self, addressbook_path: str, hrefs: list[str]
    ) -> list[RemoteContact]:
        """Fetch full vCards for hrefs with an addressbook-multiget REPORT."""
        if not hrefs:
            return []
        logger.debug(f"Fetching {len(hrefs)} contacts by href using multiget")
        url = self._resolve(addressbook_path)
        root = self._request(
            "REPORT", url, _multiget_body(hrefs), depth="1", timeout=self.sync_timeout
        )
        contacts, _, _ = self._parse_contacts(
            root.findall("d:response", NS), urlsplit(url).path
        )
        return contacts

    def fetch_contacts(self, addressbook_path: str) -> list[RemoteContact]:
        """Fetch every contact of an addressbook with addressbook-query."""
        url = self._resolve(addressbook_path)
        root = self._request(
            "REPORT", url, ADDRESSBOOK_QUERY, depth="1", timeout=self.sync_timeout
        )
        contacts, _, missing = self._parse_contacts(
            root.findall("d:response", NS), urlsplit(url).path
        )
        if missing:
            contacts.extend(self.fetch_contacts_by_href(addressbook_path, missing))
        logger.info(f"Fetched {len(contacts)} contacts from {addressbook_path}")
        return contacts

    def sync_collection(
        self, addressbook_path: str, sync_token: str
    ) -> RemoteContactBatch:
        """
        Run a sync-collection REPORT.

        An empty sync_token requests the initial token and the full
        contents. Updated items returned without card data are fetched
        with addressbook-multiget.
        """
        url = self._resolve(addressbook_path)
        root = self._request(
            "REPORT",
            url,
            _sync_collection_body(sync_token),
            depth="0",
            timeout=self.sync_timeout,
        )
        contacts, deleted, missing = self._parse_contacts(
            root.findall("d:response", NS), urlsplit(url).path
        )
        if missing:
            fetched = self.fetch_contacts_by_href(addressbook_path, missing)
            contacts.extend(fetched)
            # Hrefs whose fetched card has no address, or is gone
            found = {contact.href for contact in fetched}
            deleted.extend(href for href in missing if href not in found)

        token_element = root.find("d:sync-token", NS)
        next_token = (
            (token_element.text or "").strip() if token_element is not None else ""
        )
        logger.debug(
            f"sync-collection on {addressbook_path}: {len(contacts)} updated, "
            f"{len(deleted)} deleted"
        )
        return RemoteContactBatch(
            provider=SourceType.CARDDAV.value,
            updated=contacts,
            deleted=deleted,
            next_checkpoint=next_token,
            is_full_sync=not sync_token,
        )

    def full_sync(self, addressbook_path: str) -> RemoteContactBatch:
        """
        Fetch the complete contents of an addressbook.

        Uses sync-collection with an empty token so the server hands out an
        initial token. Servers without sync-collection get an
        addressbook-query instead, with an empty checkpoint.
        """
        try:
            batch = self.sync_collection(addressbook_path, "")
            batch.deleted = []
            batch.is_full_sync = True
            return batch
        except CardDAVError as e:
            logger.warning(
                f"sync-collection unavailable for {addressbook_path}, "
                f"falling back to addressbook-query: {e}"
            )

        return RemoteContactBatch(
            provider=SourceType.CARDDAV.value,
            updated=self.fetch_contacts(addressbook_path),
            next_checkpoint="",
            is_full_sync=True,
        )

    def sync_addressbook(
        self, addressbook_path: str, sync_token: str = ""
    ) -> RemoteContactBatch:
        """
        Fetch changes to an addressbook since sync_token.

        An incremental run that fails for any reason (including an
        invalid token) falls back to a full sync.

        Args:
            addressbook_path: Collection path
            sync_token: Stored checkpoint, empty for a full sync

        Returns:
            RemoteContactBatch with is_full_sync set when the result is a
            complete snapshot

        Raises:
            CardDAVError: If the full sync fails too
            SyncCancelledError: If cancelled
        """
        if sync_token:
            try:
                return self.sync_collection(addressbook_path, sync_token)
            except SyncCancelledError:
                raise
            except CardDAVError as e:
                logger.warning(
                    f"Incremental sync of {addressbook_path} failed, "
                    f"falling back to full sync: {e}"
                )
        return self.full_sync(addressbook_path)


def discover_addressbooks(
    url: str, username: str, password: str, timeout: float = DEFAULT_TIMEOUT
) -> list[AddressbookInfo]:
    """Discover addressbooks on a server without saving anything."""
    return CardDAVClient(url, username, password, timeout=timeout).discover_addressbooks()


def test_connection(
    url: str, username: str, password: str, timeout: float = DEFAULT_TIMEOUT
) -> list[AddressbookInfo]:
    """Test connectivity and credentials against a server."""
    return CardDAVClient(url, username, password, timeout=timeout).test_connection()
