"""Best-effort download of the supplier logo drawn on invoices."""

from typing import Optional

import httpx

from ...logger import get_logger

logger = get_logger(__name__)

MAX_LOGO_BYTES = 2 * 1024 * 1024


def fetch_logo(url: Optional[str], timeout: float = 5.0) -> Optional[bytes]:
  """Fetch logo bytes, or None when the URL is unset or unreachable."""
  if not url:
    return None

  try:
    with httpx.Client(timeout=httpx.Timeout(timeout), follow_redirects=True) as client:
      response = client.get(url)
      response.raise_for_status()
  except httpx.HTTPError as e:
    logger.warning(f"Invoice logo unavailable from {url}: {e}")
    return None

  content = response.content
  if not content or len(content) > MAX_LOGO_BYTES:
    logger.warning(f"Ignoring invoice logo from {url} ({len(content)} bytes)")
    return None
  return content
