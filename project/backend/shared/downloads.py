"""
HTTP downloads.

Streams remote media to local files.
"""

from pathlib import Path

import httpx

from shared.errors import RetryableError, ValidationError
from shared.logging import get_logger
from shared.retry import retry_with_backoff

logger = get_logger("downloads")


@retry_with_backoff(max_attempts=3, base_delay=2)
async def download_to_file(url: str, destination: Path, timeout: float = 120.0) -> Path:
    """
    Download `url` to `destination`.

    Args:
        url: Remote media URL
        destination: Local file path (parent directory must exist)
        timeout: Request timeout in seconds

    Returns:
        destination

    Raises:
        ValidationError: URL missing or the server answered with a 4xx
        RetryableError: Network failure or 5xx (retried)
    """
    if not url:
        raise ValidationError("Download URL must not be empty")

    destination = Path(destination)
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                if 400 <= response.status_code < 500:
                    raise ValidationError(f"Download of {url} failed with HTTP {response.status_code}")
                response.raise_for_status()
                with open(destination, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
    except ValidationError:
        raise
    except httpx.HTTPError as e:
        logger.warning(f"Download failed: {str(e)}", extra={"url": url})
        raise RetryableError(f"Download failed: {str(e)}") from e

    size = destination.stat().st_size
    if size == 0:
        raise RetryableError(f"Downloaded file from {url} is empty")

    logger.info("Downloaded media", extra={"url": url, "size": size, "path": str(destination)})
    return destination
