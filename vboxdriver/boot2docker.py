"""boot2docker ISO cache."""

from __future__ import annotations

from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

try:
    import requests  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from vboxdriver.constants import B2D_ISO_URL, B2D_RELEASES_API, CACHE_DIRNAME, ISO_FILENAME, MACHINES_DIRNAME
from vboxdriver.exceptions import ManagerError
from vboxdriver.utils import copy_file, download_file, ensure_directory, log


def _local_path(url: str) -> Optional[Path]:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(parsed.path)
    if parsed.scheme in ("", None) or len(parsed.scheme) == 1:
        # Plain path, or a Windows drive letter parsed as a scheme.
        return Path(url)
    return None


class B2DUpdater:
    """Keeps ``<store>/cache/boot2docker.iso`` available and copies it per machine."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self.session = session or requests.Session()

    def latest_release_url(self) -> str:
        try:
            response = self.session.get(B2D_RELEASES_API, timeout=30)
            response.raise_for_status()
            tag = response.json()["tag_name"]
        except (requests.RequestException, KeyError, ValueError) as exc:
            raise ManagerError(f"Unable to resolve the latest boot2docker release: {exc}")
        log("DEBUG", f"Latest boot2docker release: {tag}")
        return B2D_ISO_URL.format(tag=tag)

    def cached_iso(self, store_path: Path) -> Path:
        return store_path / CACHE_DIRNAME / ISO_FILENAME

    def update_iso_cache(self, store_path: Path, iso_url: str) -> None:
        """Make sure the default ISO is cached. A custom URL is fetched at copy time instead."""
        if iso_url:
            return
        cached = self.cached_iso(store_path)
        if cached.exists() and cached.stat().st_size > 0:
            log("DEBUG", f"Using cached boot2docker ISO: {cached}")
            return
        ensure_directory(cached.parent)
        log("INFO", "No default Boot2Docker ISO found locally, downloading the latest release...")
        download_file(self.latest_release_url(), cached, label="Downloading boot2docker ISO")

    def copy_iso_to_machine_dir(self, store_path: Path, machine_name: str, iso_url: str) -> None:
        destination = store_path / MACHINES_DIRNAME / machine_name / ISO_FILENAME
        ensure_directory(destination.parent)
        if not iso_url:
            self.update_iso_cache(store_path, iso_url)
            log("INFO", f"Copying {self.cached_iso(store_path)} to {destination}...")
            copy_file(self.cached_iso(store_path), destination)
            return

        local = _local_path(iso_url)
        if local is not None:
            log("INFO", f"Copying {local} to {destination}...")
            copy_file(local, destination)
            return
        download_file(iso_url, destination, label="Downloading boot2docker ISO")
