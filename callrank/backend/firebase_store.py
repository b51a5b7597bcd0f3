"""
callrank/backend/firebase_store.py
Firebase Realtime Database backend over the REST API.

LAYOUT:
  {root}/global_stats        — the shared counter document
  {root}/users/{identity}    — per-identity summary {total_calls, last_updated}

TRANSACTIONS:
  Conditional requests. GET with "X-Firebase-ETag: true" returns the
  document and its ETag; PUT with "if-match: <etag>" commits only if
  nobody wrote in between. A 412 reply carries the current document
  and ETag, which seed the next attempt. Bounded by max_retries.

Every request has a timeout; nothing here blocks indefinitely.
"""

import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Optional, Tuple

from callrank.backend.base import (
    DEFAULT_MAX_RETRIES, BackendUnavailable, CounterStore,
    TransactionConflict, UpdateFn,
)

logger = logging.getLogger(__name__)

HTTP_PRECONDITION_FAILED = 412


class FirebaseCounterStore(CounterStore):

    def __init__(
        self,
        base_url:    str,
        root:        str           = 'callrank-stats',
        auth_token:  Optional[str] = None,
        timeout_sec: float         = 10.0,
    ):
        self.base_url    = base_url.rstrip('/')
        self.root        = root.strip('/')
        self.auth_token  = auth_token
        self.timeout_sec = timeout_sec

    # ── URLS ─────────────────────────────────────────────────
    def _url(self, path: str) -> str:
        return self._db_url(f"{self.root}/{path}")

    def _db_url(self, path: str) -> str:
        """URL of a path relative to the database root."""
        url = f"{self.base_url}/{path}.json"
        if self.auth_token:
            url += '?' + urllib.parse.urlencode({'auth': self.auth_token})
        return url

    @property
    def global_url(self) -> str:
        return self._url('global_stats')

    def user_url(self, identity: str) -> str:
        return self._url('users/' + urllib.parse.quote(identity, safe=''))

    # ── AVAILABILITY CHECK ───────────────────────────────────
    def is_available(self) -> bool:
        try:
            req = urllib.request.Request(self._db_url('.info/connected'), method='GET')
            with urllib.request.urlopen(req, timeout=min(self.timeout_sec, 5)) as resp:
                return resp.status == 200
        except urllib.error.URLError:
            logger.warning(f"Counter backend not reachable at {self.base_url}")
            return False
        except (http.client.HTTPException, OSError) as e:
            logger.warning(f"Counter backend availability check failed: {e}")
            return False

    # ── READ ─────────────────────────────────────────────────
    def read(self) -> Optional[Dict[str, Any]]:
        document, _etag = self._get_with_etag()
        return document

    def _get_with_etag(self) -> Tuple[Optional[Dict[str, Any]], str]:
        req = urllib.request.Request(
            self.global_url,
            headers = {'X-Firebase-ETag': 'true'},
            method  = 'GET',
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                etag = resp.headers.get('ETag', '')
                return _decode(resp.read()), etag
        except urllib.error.HTTPError as e:
            raise BackendUnavailable(f"counter read failed: HTTP {e.code}") from e
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            raise BackendUnavailable(f"counter read failed: {e}") from e

    # ── TRANSACTION ──────────────────────────────────────────
    def transact(self, update_fn: UpdateFn, max_retries: int = DEFAULT_MAX_RETRIES) -> Dict[str, Any]:
        current, etag = self._get_with_etag()

        for attempt in range(1, max_retries + 1):
            new_doc = update_fn(current)
            body = json.dumps(new_doc).encode('utf-8')
            req = urllib.request.Request(
                self.global_url,
                data    = body,
                headers = {'Content-Type': 'application/json', 'if-match': etag},
                method  = 'PUT',
            )
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                    committed = _decode(resp.read())
                    return committed if committed is not None else new_doc
            except urllib.error.HTTPError as e:
                if e.code != HTTP_PRECONDITION_FAILED:
                    raise BackendUnavailable(f"counter write failed: HTTP {e.code}") from e
                logger.debug(f"Counter transaction conflict (attempt {attempt}/{max_retries})")
                etag    = e.headers.get('ETag', '') if e.headers else ''
                current = _decode(e.read())
                if not etag:
                    current, etag = self._get_with_etag()
            except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
                raise BackendUnavailable(f"counter write failed: {e}") from e

        raise TransactionConflict(f"gave up after {max_retries} attempts")

    # ── PER-IDENTITY RECORD ──────────────────────────────────
    def write_user(self, identity: str, payload: Dict[str, Any]) -> None:
        req = urllib.request.Request(
            self.user_url(identity),
            data    = json.dumps(payload).encode('utf-8'),
            headers = {'Content-Type': 'application/json'},
            method  = 'PUT',
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                resp.read()
        except urllib.error.HTTPError as e:
            raise BackendUnavailable(f"user write failed: HTTP {e.code}") from e
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            raise BackendUnavailable(f"user write failed: {e}") from e


def _decode(raw: bytes) -> Optional[Any]:
    """Response body as JSON. Unparseable bodies read as absent."""
    try:
        return json.loads(raw.decode('utf-8')) if raw else None
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Unparseable counter payload: {e}")
        return None
