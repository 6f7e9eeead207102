# publish.py
# Push package files to a registry. "Already there" is a skip, not a failure.
from __future__ import annotations

import os
import re
import shutil
import urllib.error
import urllib.request
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol

from .exceptions import ApiError, PackageExistsError, RegistryAuthError, ShipError, TransientError

Opener = Callable[..., Any]

_NUPKG_RE = re.compile(
    r"^(?P<id>.+?)\.(?P<version>\d+(?:\.\d+)+(?:-[0-9A-Za-z.-]+)?)\.(?P<ext>s?nupkg)$"
)
_SDIST_RE = re.compile(
    r"^(?P<id>.+)-(?P<version>\d+(?:\.\d+)*(?:[-.]?[0-9A-Za-z]+(?:\.[0-9A-Za-z]+)*)?)\.(?P<ext>tar\.gz|zip)$"
)


@dataclass(frozen=True)
class PackageIdentity:
    package_id: str
    version: str
    filename: str


def package_identity(path: str | Path) -> PackageIdentity:
    """
    Read package id and version from the file name.

    Supports:
      - NuGet:  My.Lib.1.2.3.nupkg, My.Lib.1.2.3-beta.1.snupkg
      - wheels: my_lib-1.2.3-py3-none-any.whl
      - sdists: my_lib-1.2.3.tar.gz
    """
    name = Path(path).name
    m = _NUPKG_RE.match(name)
    if m:
        return PackageIdentity(m.group("id"), m.group("version"), name)
    if name.endswith(".whl"):
        parts = name[: -len(".whl")].split("-")
        if len(parts) >= 5:
            return PackageIdentity(parts[0], parts[1], name)
    m = _SDIST_RE.match(name)
    if m:
        return PackageIdentity(m.group("id"), m.group("version"), name)
    raise ShipError(f"Cannot tell package id and version from file name: {name}")


class PackageFeed(Protocol):
    def push(self, path: Path, identity: PackageIdentity, api_key: Optional[str]) -> None:
        """Upload one file; raise PackageExistsError if id+version is already there."""


class DirectoryFeed:
    """
    Local folder feed:
      root/
        <id lowercased>/
          <version>/
            <file>
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def package_path(self, identity: PackageIdentity) -> Path:
        return self.root / identity.package_id.lower() / identity.version.lower() / identity.filename

    def push(self, path: Path, identity: PackageIdentity, api_key: Optional[str] = None) -> None:
        dest = self.package_path(identity)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if dest.exists():
            raise PackageExistsError(identity.package_id, identity.version)

        tmp = dest.parent / f".{dest.name}.{uuid.uuid4().hex}.tmp"
        try:
            shutil.copy2(path, tmp)
            # link fails if dest appeared meanwhile, so two pushers can't both win
            try:
                os.link(tmp, dest)
            except FileExistsError as e:
                raise PackageExistsError(identity.package_id, identity.version) from e
        finally:
            tmp.unlink(missing_ok=True)


class HttpFeed:
    """NuGet v2 push endpoint (PUT multipart, X-NuGet-ApiKey header)."""

    def __init__(self, url: str, *, timeout: float = 300, opener: Optional[Opener] = None):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._open = opener or urllib.request.urlopen

    def push(self, path: Path, identity: PackageIdentity, api_key: Optional[str]) -> None:
        boundary = uuid.uuid4().hex
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                f'Content-Disposition: form-data; name="package"; filename="{identity.filename}"\r\n'.encode(),
                b"Content-Type: application/octet-stream\r\n\r\n",
                Path(path).read_bytes(),
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        headers = {"Content-Type": f"multipart/form-data; boundary={boundary}"}
        if api_key:
            headers["X-NuGet-ApiKey"] = api_key
        req = urllib.request.Request(self.url, data=body, headers=headers, method="PUT")

        try:
            with self._open(req, timeout=self.timeout) as response:
                response.read()
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            if e.code == 409:
                raise PackageExistsError(identity.package_id, identity.version) from e
            if e.code in (401, 403):
                raise RegistryAuthError(e.code, error_body) from e
            if e.code >= 500 or e.code == 429:
                raise TransientError(f"Registry {e.code} {e.reason}") from e
            raise ApiError(e.code, str(e.reason), error_body) from e
        except urllib.error.URLError as e:
            raise TransientError(f"Network error: {e.reason}") from e


def open_feed(source: str, *, timeout: float = 300, opener: Optional[Opener] = None) -> PackageFeed:
    if source.startswith(("http://", "https://")):
        return HttpFeed(source, timeout=timeout, opener=opener)
    return DirectoryFeed(source)


@dataclass(frozen=True)
class PublishResult:
    file: str
    package_id: str
    version: str
    status: str  # "pushed" | "skipped"


class Publisher:
    def __init__(self, feed: PackageFeed, *, api_key: Optional[str] = None, skip_duplicate: bool = True):
        self.feed = feed
        self.api_key = api_key
        self.skip_duplicate = skip_duplicate

    def publish(self, paths: List[str | Path]) -> List[PublishResult]:
        if not paths:
            raise ShipError("Nothing to publish: no package files given")
        results: List[PublishResult] = []
        for p in paths:
            path = Path(p)
            if not path.is_file():
                raise FileNotFoundError(f"Package file not found: {path}")
            identity = package_identity(path)
            try:
                self.feed.push(path, identity, self.api_key)
                status = "pushed"
            except PackageExistsError:
                if not self.skip_duplicate:
                    raise
                status = "skipped"
            results.append(PublishResult(str(path), identity.package_id, identity.version, status))
        return results
