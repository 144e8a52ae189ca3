"""
Corpus download and lazy line reading.
"""

import gzip
import logging
from pathlib import Path
from typing import Iterator, Union

import requests

from config import METADATA_PATH, METADATA_URL

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def download_file(url: str = METADATA_URL, path: Union[str, Path] = METADATA_PATH,
                  timeout: int = 60) -> Path:
    """
    Stream a file to disk unless it already exists.

    Args:
        url: Source URL
        path: Destination path
        timeout: Connect/read timeout in seconds

    Returns:
        Path to the local file
    """
    target = Path(path)
    if target.exists():
        logger.info(f"File {target} already exists, skipping download")
        return target

    logger.info(f"Downloading {url} -> {target}")
    partial = target.with_name(target.name + ".part")

    with requests.get(url, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        total = int(response.headers.get("content-length", 0))
        written = 0
        with open(partial, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                f.write(chunk)
                written += len(chunk)
                if total and written % (100 * CHUNK_SIZE) < CHUNK_SIZE:
                    logger.info(f"Downloaded {written / (1024 * 1024):.0f}/{total / (1024 * 1024):.0f} MB")

    partial.replace(target)
    logger.info(f"Downloaded {target}")
    return target


def read_lines(path: Union[str, Path]) -> Iterator[str]:
    """
    Lazily yield non-blank lines from a plain or gzip-compressed file.

    Each call starts a fresh read from the beginning of the file. A read
    error partway through (truncated or corrupt archive) ends the scan
    with what was read so far; a missing file still raises.
    """
    path = Path(path)
    opener = gzip.open if path.suffix == ".gz" else open

    with opener(path, "rt", encoding="utf-8", errors="replace") as f:
        try:
            for line in f:
                line = line.rstrip("\n")
                if line.strip():
                    yield line
        except (OSError, EOFError) as e:
            logger.error(f"Corpus read error in {path.name}, ending scan: {e}")
