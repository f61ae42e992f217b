"""
Archive Fetcher — Stream a remote archive to a local scratch file.

Redirects are followed and only a final ``200 OK`` counts as success. Transport failures (DNS, connect,
read timeout) and any other status are reported as FetchError, so the
pipeline treats an unreachable source exactly like a bad response.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import httpx

from ..errors import FetchError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
USER_AGENT = "archive-mirror"


def fetch_archive(
    url: str,
    dest: Path,
    *,
    timeout: float = 30.0,
    deadline: Optional[float] = None,
    client: Optional[httpx.Client] = None,
) -> int:
    """
    Download ``url`` into ``dest`` without buffering the body in memory.

    Args:
        url: Remote archive URL
        dest: Scratch file; any stale file of the same name is removed first
        timeout: Socket connect/read timeout in seconds
        deadline: ``time.monotonic()`` value after which the download is
            abandoned
        client: Optional httpx client (tests inject a double)

    Returns:
        Number of bytes written

    Raises:
        FetchError: Non-200 status, transport error, or deadline exceeded
    """
    dest.unlink(missing_ok=True)
    http = client or httpx

    written = 0
    try:
        with http.stream(
            "GET",
            url,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as resp:
            if resp.status_code != 200:
                raise FetchError(url, status_code=resp.status_code)

            with dest.open("wb") as f:
                for chunk in resp.iter_bytes(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    f.write(chunk)
                    written += len(chunk)
                    if deadline is not None and time.monotonic() > deadline:
                        raise FetchError(url, reason="sync timeout exceeded during download")
    except FetchError:
        dest.unlink(missing_ok=True)
        raise
    except httpx.HTTPError as e:
        dest.unlink(missing_ok=True)
        raise FetchError(url, cause=e) from e
    except OSError as e:
        dest.unlink(missing_ok=True)
        raise FetchError(url, cause=e, reason=f"cannot write {dest}: {e}") from e

    logger.debug(f"Fetched {url} ({written} bytes) -> {dest}")
    return written
