import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urljoin

import requests

from .errors import EmitError, FetchError
from .fetch import Fetcher, FetchResponse, TooLarge
from .models import AssetRecord, FetchState

DEFAULT_MAX_REDIRECTS = 5


class AssetMaterializer:
    """Fetches pending remote records and stages their bytes on disk.

    Every fetch outcome settles the record exactly once; failures are per
    asset and never propagate.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        staging_dir: Path,
        *,
        workers: int = 8,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.fetcher = fetcher
        self.staging_dir = Path(staging_dir)
        self.workers = max(1, workers)
        self.max_redirects = max(0, max_redirects)
        self.cancel_event = cancel_event or threading.Event()

    def staged_path(self, record: AssetRecord) -> Path:
        return self.staging_dir / record.local_path

    def materialize(self, record: AssetRecord) -> AssetRecord:
        if record.fetch_state is not FetchState.PENDING or record.is_embedded:
            return record
        try:
            resp = self._fetch_following_redirects(record.canonical_url)
            body = resp.body
            self._stage(record, body)
        except FetchError as e:
            logging.debug("asset failed: %s", e)
            record.mark_failed(e.reason, e.detail)
            return record
        record.mark_fetched(size=len(body), final_url=resp.url, content_type=resp.content_type)
        logging.debug("downloaded asset: %s -> %s", record.canonical_url, record.local_path)
        return record

    def _stage(self, record: AssetRecord, body: bytes) -> None:
        path = self.staged_path(record)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except OSError as e:
            raise EmitError(f"failed to stage {record.canonical_url} at {path}: {e}") from e

    def _fetch_following_redirects(self, url: str) -> FetchResponse:
        current = url
        for _ in range(self.max_redirects + 1):
            resp = self._fetch_once(current)
            if resp.is_redirect:
                try:
                    current = urljoin(current, resp.location)
                except ValueError as e:
                    raise FetchError(url, FetchError.NETWORK, f"bad redirect target {resp.location!r}: {e}") from e
                continue
            if not 200 <= resp.status_code < 300:
                raise FetchError(url, FetchError.HTTP_STATUS, f"HTTP {resp.status_code}")
            return resp
        raise FetchError(url, FetchError.REDIRECT_LIMIT, f"more than {self.max_redirects} redirects")

    def _fetch_once(self, url: str) -> FetchResponse:
        try:
            return self.fetcher.fetch(url)
        except requests.Timeout as e:
            raise FetchError(url, FetchError.TIMEOUT, str(e)) from e
        except TooLarge as e:
            raise FetchError(url, FetchError.TOO_LARGE, str(e)) from e
        except requests.RequestException as e:
            raise FetchError(url, FetchError.NETWORK, str(e)) from e
        except Exception as e:
            raise FetchError(url, FetchError.NETWORK, f"{type(e).__name__}: {e}") from e

    def materialize_all(self, records: Iterable[AssetRecord]) -> List[AssetRecord]:
        pending = [
            r for r in records if r.fetch_state is FetchState.PENDING and not r.is_embedded
        ]
        if not pending:
            return []
        done: List[AssetRecord] = []
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            future_map = {pool.submit(self._guarded, r): r for r in pending}
            for fut in as_completed(future_map):
                if self.cancel_event.is_set():
                    for f in future_map:
                        f.cancel()
                if fut.cancelled():
                    continue
                try:
                    done.append(fut.result())
                except EmitError:
                    for f in future_map:
                        f.cancel()
                    raise
        return done

    def _guarded(self, record: AssetRecord) -> AssetRecord:
        if self.cancel_event.is_set():
            return record
        return self.materialize(record)
