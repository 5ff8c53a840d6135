from __future__ import annotations

import os
import re
import shutil
import tarfile
import zipfile
from pathlib import Path
from urllib.parse import urlparse

import httpx

from .errors import InfrastructureError, ValidationError
from .settings import settings


def bundle_path(bundle_url: str, install_directory: str | Path) -> Path:
    """Deterministic local path of the bundle for ``bundle_url``."""
    url_path = urlparse(bundle_url).path.lower()
    ext = ".zip"
    for candidate in (".tar.gz", ".tgz", ".zip"):
        if url_path.endswith(candidate):
            ext = candidate
            break
    return Path(install_directory) / f"{settings.bundle_basename}{ext}"


def rewrite_config_lines(path: str | Path, replacements: list[tuple[re.Pattern[str], str]]) -> None:
    """Rewrite ``path`` in place, replacing every line matched by a pattern.

    Lines that match no pattern are kept verbatim. A replacement whose pattern
    matched nothing is appended so the entry is always present afterwards.
    """
    p = Path(path)
    text = p.read_text(encoding="utf-8") if p.exists() else ""
    lines = text.splitlines()
    used = [False] * len(replacements)

    out: list[str] = []
    for line in lines:
        for i, (pattern, replacement) in enumerate(replacements):
            if pattern.match(line):
                line = replacement
                used[i] = True
                break
        out.append(line)

    for i, (_, replacement) in enumerate(replacements):
        if not used[i]:
            out.append(replacement)

    p.write_text("\n".join(out) + "\n", encoding="utf-8")


def agent_config_replacements(
    name: str, service_port: int, controller_host: str, controller_port: int
) -> list[tuple[re.Pattern[str], str]]:
    return [
        (re.compile(r"^\s*serverUrl\s*="), f"serverUrl=http://{controller_host}:{int(controller_port)}"),
        (re.compile(r"^\s*name\s*="), f"name={name}"),
        (re.compile(r"^\s*ownPort\s*="), f"ownPort={int(service_port)}"),
    ]


class Installer:
    """Puts an agent on disk: directory, bundle, unpacked files, config."""

    def __init__(self, timeout_s: float | None = None, transport: httpx.BaseTransport | None = None):
        self.timeout_s = timeout_s or settings.download_timeout_s
        self._transport = transport

    def install(
        self,
        name: str,
        bundle_url: str | None,
        install_directory: str,
        service_port: int,
        controller_host: str,
        controller_port: int,
    ) -> None:
        self._validate(name, bundle_url, install_directory, service_port, controller_host, controller_port)
        target = Path(install_directory)

        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InfrastructureError(f"Cannot create install directory {target}: {e}") from e

        bundle = bundle_path(bundle_url, target)
        if not bundle.exists():
            self.download(bundle_url, bundle)

        try:
            self.unpack(bundle, target)
        except InfrastructureError:
            # A bad bundle would otherwise satisfy "already downloaded" forever.
            bundle.unlink(missing_ok=True)
            raise
        self.configure(target, name, service_port, controller_host, controller_port)

    @staticmethod
    def _validate(name, bundle_url, install_directory, service_port, controller_host, controller_port) -> None:
        for field, value in (
            ("name", name),
            ("bundle_url", bundle_url),
            ("install_directory", install_directory),
            ("controller_host", controller_host),
        ):
            if not value:
                raise ValidationError(f"{field} is required to install an agent.")
        for field, value in (("service_port", service_port), ("controller_port", controller_port)):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError(f"{field} must be a positive integer, got {value!r}.")

    def download(self, url: str, dest: Path) -> None:
        """Stream ``url`` to ``dest``; ``dest`` only appears once fully written."""
        part = dest.with_name(dest.name + ".part")
        try:
            with httpx.Client(timeout=self.timeout_s, follow_redirects=True, transport=self._transport) as client:
                with client.stream("GET", url) as resp:
                    resp.raise_for_status()
                    with open(part, "wb") as fh:
                        for chunk in resp.iter_bytes():
                            fh.write(chunk)
            os.replace(part, dest)
        except (httpx.HTTPError, OSError) as e:
            part.unlink(missing_ok=True)
            raise InfrastructureError(f"Download of {url} failed: {type(e).__name__}: {e}") from e

    def unpack(self, archive: Path, target: Path) -> None:
        name = archive.name.lower()
        try:
            if name.endswith((".tar.gz", ".tgz")):
                with tarfile.open(archive, "r:gz") as tf:
                    self._check_members(target, tf.getnames())
                    tf.extractall(target, filter="data")
            else:
                with zipfile.ZipFile(archive, "r") as zf:
                    self._check_members(target, zf.namelist())
                    zf.extractall(target)
                    for info in zf.infolist():
                        mode = (info.external_attr >> 16) & 0o777
                        if mode and not info.is_dir():
                            os.chmod(target / info.filename, mode)
        except (zipfile.BadZipFile, tarfile.TarError, OSError) as e:
            raise InfrastructureError(f"Cannot unpack {archive}: {type(e).__name__}: {e}") from e

    @staticmethod
    def _check_members(target: Path, names: list[str]) -> None:
        root = target.resolve()
        for member in names:
            dest = (root / member).resolve()
            if dest != root and root not in dest.parents:
                raise InfrastructureError(f"Archive member escapes install directory: {member}")

    def configure(
        self, target: Path, name: str, service_port: int, controller_host: str, controller_port: int
    ) -> None:
        config = target / settings.config_relpath
        template = target / settings.config_template_relpath
        try:
            if not config.exists():
                config.parent.mkdir(parents=True, exist_ok=True)
                if template.exists():
                    shutil.copyfile(template, config)
            rewrite_config_lines(
                config, agent_config_replacements(name, service_port, controller_host, controller_port)
            )
        except OSError as e:
            raise InfrastructureError(f"Cannot write agent config {config}: {e}") from e
