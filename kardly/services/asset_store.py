"""Remote asset store clients (Cloudinary, local directory)."""

import hashlib
import logging
import os
import shutil
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Optional
from urllib.parse import unquote, urlparse

import requests

from kardly.errors import AssetStoreError
from kardly.utils import env_float, get_kardly_home

log = logging.getLogger(__name__)

DEFAULT_FOLDER = "kardly/photocards"
DEFAULT_TIMEOUT = 30.0

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


@dataclass(frozen=True)
class AssetHandle:
    """A stored object: public URL plus the opaque handle used to delete it."""
    url: str
    handle: str


class AssetStore(ABC):
    """Interface for stores holding uploaded photocard images."""

    @abstractmethod
    def upload(self, stream: BinaryIO, content_type: str, filename: str) -> AssetHandle:
        """
        Store the bytes read from stream.

        Raises:
            AssetStoreError: the store is unreachable or rejected the payload
        """
        pass

    @abstractmethod
    def delete(self, handle: str) -> None:
        """
        Delete an object by handle.

        Deleting an unknown or already-deleted handle is not an error.

        Raises:
            AssetStoreError: the store could not be reached
        """
        pass

    def ping(self) -> bool:
        """True if the store is reachable."""
        return True


class CloudinaryStore(AssetStore):
    """Signed uploads to the Cloudinary Upload API."""

    BASE_URL = "https://api.cloudinary.com/v1_1"
    ALLOWED_FORMATS = "jpg,jpeg,png,webp"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = DEFAULT_FOLDER,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "Kardly/0.3"})

    def _sign(self, params: Dict[str, str]) -> str:
        """SHA-1 over the sorted param string with the API secret appended."""
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1((to_sign + self.api_secret).encode()).hexdigest()

    def _signed_params(self, **params: str) -> Dict[str, str]:
        params["timestamp"] = str(int(time.time()))
        signed = dict(params)
        signed["signature"] = self._sign(params)
        signed["api_key"] = self.api_key
        return signed

    def _request_with_retry(self, method: str, url: str, max_retries: int = 3, **kwargs) -> requests.Response:
        """Make an HTTP request with retry on 429 rate limit errors."""
        kwargs.setdefault("timeout", self.timeout)
        for attempt in range(max_retries + 1):
            try:
                response = self.session.request(method, url, **kwargs)
            except requests.exceptions.RequestException as e:
                raise AssetStoreError(f"Cloudinary request failed: {e}") from e
            if response.status_code == 429 and attempt < max_retries:
                wait = 0.5 * (2 ** attempt)
                log.warning("Cloudinary rate limited, retrying in %.1fs", wait)
                time.sleep(wait)
                # Rewind file payloads for the retry
                for _name, stream, _ctype in (kwargs.get("files") or {}).values():
                    stream.seek(0)
                continue
            return response
        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            return response.json().get("error", {}).get("message") or response.text
        except ValueError:
            return response.text

    def upload(self, stream: BinaryIO, content_type: str, filename: str) -> AssetHandle:
        url = f"{self.BASE_URL}/{self.cloud_name}/image/upload"
        data = self._signed_params(folder=self.folder, allowed_formats=self.ALLOWED_FORMATS)
        files = {"file": (filename, stream, content_type)}

        response = self._request_with_retry("POST", url, data=data, files=files)
        if not response.ok:
            raise AssetStoreError(
                f"Cloudinary upload rejected ({response.status_code}): {self._error_message(response)}"
            )

        body = response.json()
        try:
            asset = AssetHandle(url=body["secure_url"], handle=body["public_id"])
        except KeyError as e:
            raise AssetStoreError(f"Cloudinary upload response missing {e}") from e
        log.debug("Uploaded %s -> %s", filename, asset.handle)
        return asset

    def delete(self, handle: str) -> None:
        url = f"{self.BASE_URL}/{self.cloud_name}/image/destroy"
        data = self._signed_params(public_id=handle, invalidate="true")

        response = self._request_with_retry("POST", url, data=data)
        if not response.ok:
            raise AssetStoreError(
                f"Cloudinary destroy failed ({response.status_code}): {self._error_message(response)}"
            )

        result = response.json().get("result")
        if result == "not found":
            log.debug("Cloudinary destroy: %s already gone", handle)
        elif result != "ok":
            raise AssetStoreError(f"Cloudinary destroy returned {result!r} for {handle}")

    def ping(self) -> bool:
        url = f"{self.BASE_URL}/{self.cloud_name}/ping"
        try:
            response = self.session.get(url, auth=(self.api_key, self.api_secret), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            log.warning("Cloudinary ping failed: %s", e)
            return False
        return response.ok


class LocalAssetStore(AssetStore):
    """Stores images in a local directory and serves them as file:// URLs."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root else get_kardly_home() / "assets"

    def upload(self, stream: BinaryIO, content_type: str, filename: str) -> AssetHandle:
        ext = _EXTENSIONS.get(content_type) or Path(filename).suffix.lower()
        stem = Path(filename).stem or "photocard"
        handle = f"{stem}_{uuid.uuid4().hex[:12]}{ext}"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            dest = self.root / handle
            with open(dest, "wb") as out:
                shutil.copyfileobj(stream, out)
        except OSError as e:
            raise AssetStoreError(f"Could not write {handle}: {e}") from e
        return AssetHandle(url=dest.resolve().as_uri(), handle=handle)

    def delete(self, handle: str) -> None:
        path = self.root / Path(handle).name
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise AssetStoreError(f"Could not delete {handle}: {e}") from e

    def ping(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.root, os.W_OK)


def _cloudinary_credentials() -> Optional[Dict[str, str]]:
    """Read Cloudinary credentials from CLOUDINARY_URL or the split variables."""
    env_url = os.environ.get("CLOUDINARY_URL")
    if env_url:
        parsed = urlparse(env_url)
        if parsed.scheme == "cloudinary" and parsed.hostname and parsed.username and parsed.password:
            return {
                "cloud_name": parsed.hostname,
                "api_key": unquote(parsed.username),
                "api_secret": unquote(parsed.password),
            }
        log.warning("Ignoring malformed CLOUDINARY_URL")

    cloud_name = os.environ.get("CLOUDINARY_CLOUD_NAME")
    api_key = os.environ.get("CLOUDINARY_API_KEY")
    api_secret = os.environ.get("CLOUDINARY_API_SECRET")
    if cloud_name and api_key and api_secret:
        return {"cloud_name": cloud_name, "api_key": api_key, "api_secret": api_secret}
    return None


def get_asset_store() -> AssetStore:
    """
    Build the configured asset store.

    Cloudinary when credentials are present in the environment, otherwise
    a local directory under $KARDLY_HOME/assets.
    """
    creds = _cloudinary_credentials()
    if creds:
        return CloudinaryStore(
            folder=os.environ.get("KARDLY_ASSET_FOLDER", DEFAULT_FOLDER),
            timeout=env_float("KARDLY_HTTP_TIMEOUT", DEFAULT_TIMEOUT),
            **creds,
        )
    return LocalAssetStore()
