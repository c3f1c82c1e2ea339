from __future__ import annotations

import os
import tarfile
import tempfile
from pathlib import Path
from typing import Any

import yaml

from .client import MarketplaceClient, MarketplaceError
from .models import ChartVersion, Repo

CHART_METADATA_FILENAME = "Chart.yaml"


class ChartLoadError(MarketplaceError):
    pass


def _parse_metadata(text: str, source: str) -> dict[str, Any]:
    try:
        meta = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ChartLoadError(f"failed to read chart: {source}: invalid {CHART_METADATA_FILENAME}: {e}") from e
    if not isinstance(meta, dict):
        raise ChartLoadError(f"failed to read chart: {source}: {CHART_METADATA_FILENAME} is not a mapping")
    for key in ("name", "version"):
        if not meta.get(key):
            raise ChartLoadError(f"failed to read chart: {source}: {CHART_METADATA_FILENAME} is missing {key!r}")
    return meta


def _read_archive_metadata(path: Path) -> str:
    try:
        with tarfile.open(path, "r:*") as tf:
            # Charts are packaged as <name>/Chart.yaml; subcharts sit deeper.
            candidates = [
                m for m in tf.getmembers()
                if m.isfile() and m.name.count("/") == 1 and m.name.endswith("/" + CHART_METADATA_FILENAME)
            ]
            if not candidates:
                raise ChartLoadError(f"failed to read chart: {path}: no {CHART_METADATA_FILENAME} found")
            f = tf.extractfile(candidates[0])
            if f is None:  # pragma: no cover
                raise ChartLoadError(f"failed to read chart: {path}: unreadable {CHART_METADATA_FILENAME}")
            return f.read().decode("utf-8")
    except (tarfile.TarError, OSError) as e:
        raise ChartLoadError(f"failed to read chart: {path}: {e}") from e


def load_chart(chart_path: str | Path) -> ChartVersion:
    """Read name and version from a packaged chart (.tgz) or an unpacked chart directory."""
    path = Path(chart_path).expanduser()
    if path.is_dir():
        meta_file = path / CHART_METADATA_FILENAME
        if not meta_file.is_file():
            raise ChartLoadError(f"failed to read chart: {path}: no {CHART_METADATA_FILENAME} found")
        text = meta_file.read_text(encoding="utf-8")
    elif path.is_file():
        text = _read_archive_metadata(path)
    else:
        raise ChartLoadError(f"failed to read chart: {path}: no such file or directory")

    meta = _parse_metadata(text, str(path))
    return ChartVersion(
        version=str(meta["version"]),
        repo=Repo(name=str(meta["name"])),
        is_external_url=False,
    )


def download_chart(client: MarketplaceClient, chart_url: str) -> ChartVersion:
    fd, tmp_name = tempfile.mkstemp(prefix="chart-", suffix=".tgz")
    try:
        with os.fdopen(fd, "wb") as out, client.stream(chart_url) as resp:
            for chunk in resp.iter_bytes():
                out.write(chunk)
        chart = load_chart(tmp_name)
    finally:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass

    chart.is_external_url = True
    chart.helm_tar_url = chart_url
    return chart
