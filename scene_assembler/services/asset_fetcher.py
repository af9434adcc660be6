"""
Scene asset materialisation.

Scene images and narration arrive as references that must become local files
inside the run workspace before any encoder touches them:

- ``http(s)://`` URLs are downloaded with httpx
- ``/``-rooted paths are read from the public root
- ``data:`` URLs are base64-decoded
- ``blob:`` URLs only exist inside a browser and are rejected
"""

import base64
import binascii
import logging
import shutil
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import urlparse

import httpx

from scene_assembler.config import get_settings
from scene_assembler.exceptions import AssetAcquisitionError

logger = logging.getLogger(__name__)

AssetKind = Literal["image", "audio"]

_DATA_URL_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


def infer_extension(url: str, kind: AssetKind) -> str:
    """Pick the local file extension for an asset reference."""
    if url.startswith("data:"):
        mime = url[5:].split(",", 1)[0].split(";", 1)[0].lower()
        if mime in _DATA_URL_EXTENSIONS:
            return _DATA_URL_EXTENSIONS[mime]
        return "jpg" if kind == "image" else "mp3"

    path = urlparse(url).path.lower() if "://" in url else url.lower()
    if kind == "image":
        return "png" if path.endswith(".png") else "jpg"
    return "wav" if path.endswith(".wav") else "mp3"


def decode_data_url(url: str) -> bytes:
    header, sep, payload = url.partition(",")
    if not sep:
        raise AssetAcquisitionError("Malformed data URL", stage="downloading")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise AssetAcquisitionError(f"Invalid base64 data URL: {e}", stage="downloading") from e
    return payload.encode("utf-8")


class AssetFetcher:
    """Turns asset references into non-empty local files."""

    def __init__(
        self,
        public_root: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.public_root = Path(public_root or settings.public_root)
        self.timeout = timeout if timeout is not None else settings.asset_download_timeout_s
        self.transport = transport

    async def fetch(
        self,
        url: str,
        dest_dir: Path,
        stem: str,
        kind: AssetKind,
        scene_index: Optional[int] = None,
    ) -> Path:
        """Materialise ``url`` as ``<dest_dir>/<stem>.<ext>``.

        Raises:
            AssetAcquisitionError: For unsupported, unreadable or empty assets
        """
        if not url:
            raise AssetAcquisitionError(
                f"Missing {kind} URL", stage="downloading", scene_index=scene_index
            )
        if url.startswith("blob:"):
            raise AssetAcquisitionError(
                f"Blob URLs are not supported for {kind} assets; upload the file and pass its URL",
                stage="downloading",
                scene_index=scene_index,
            )

        try:
            destination = Path(dest_dir) / f"{stem}.{infer_extension(url, kind)}"
            if url.startswith("data:"):
                destination.write_bytes(decode_data_url(url))
            elif url.startswith(("http://", "https://")):
                await self._download(url, destination)
            elif url.startswith("/"):
                root = self.public_root.resolve()
                source = (root / url.lstrip("/")).resolve()
                if not source.is_relative_to(root):
                    raise AssetAcquisitionError(f"{kind} path escapes the public root: {url[:80]}")
                if not source.is_file():
                    raise AssetAcquisitionError(f"Local {kind} file not found: {source}")
                shutil.copyfile(source, destination)
            else:
                raise AssetAcquisitionError(f"Unsupported {kind} URL: {url[:80]}")
        except AssetAcquisitionError as e:
            e.stage = e.stage or "downloading"
            e.scene_index = scene_index if e.scene_index is None else e.scene_index
            raise
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, OSError) as e:
            raise AssetAcquisitionError(
                f"Failed to fetch {kind} asset: {e}",
                stage="downloading",
                scene_index=scene_index,
            ) from e

        if not destination.exists() or destination.stat().st_size == 0:
            destination.unlink(missing_ok=True)
            raise AssetAcquisitionError(
                f"Downloaded {kind} file is empty: {url[:80]}",
                stage="downloading",
                scene_index=scene_index,
            )

        logger.info(f"[ASSET] {kind} saved to {destination} ({destination.stat().st_size} bytes)")
        return destination

    async def _download(self, url: str, destination: Path) -> None:
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(destination, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
