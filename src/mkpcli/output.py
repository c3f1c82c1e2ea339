from __future__ import annotations

import json
import sys
from typing import Any, TextIO

import yaml

from .assets import Asset
from .models import Product
from .versions import latest_version, sort_versions

FORMAT_HUMAN = "human"
FORMAT_JSON = "json"
FORMAT_YAML = "yaml"
OUTPUT_FORMATS = (FORMAT_HUMAN, FORMAT_JSON, FORMAT_YAML)

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def format_table(rows: list[list[str]]) -> str:
    if not rows:
        return ""
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    lines = []
    for r in rows:
        lines.append("  ".join(c.ljust(widths[i]) for i, c in enumerate(r)).rstrip())
    return "\n".join(lines)


def format_size(size: int) -> str:
    """Decimal units, three significant digits: 1500 -> "1.5 KB"."""
    value = float(size)
    unit = SIZE_UNITS[0]
    for unit in SIZE_UNITS:
        if value < 1000:
            break
        value /= 1000
    return f"{value:.3g} {unit}"


def _yes_no(v: bool) -> str:
    return "true" if v else "false"


class Renderer:
    """
    Writes command results to ``out`` (stdout by default).

    Structured formats dump the wire representation; the human format prints
    tables with a header row, in the style of ``kubectl get``.
    """

    def __init__(self, output_format: str = FORMAT_HUMAN, out: TextIO | None = None) -> None:
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"unknown output format: {output_format}")
        self.output_format = output_format
        self._out = out

    @property
    def out(self) -> TextIO:
        return self._out or sys.stdout

    def _print(self, text: str = "") -> None:
        print(text, file=self.out)

    def _table(self, rows: list[list[str]]) -> None:
        if len(rows) > 1:
            self._print(format_table(rows))

    def is_structured(self) -> bool:
        return self.output_format != FORMAT_HUMAN

    def structured(self, data: Any) -> None:
        if self.output_format == FORMAT_YAML:
            self.out.write(yaml.safe_dump(data, sort_keys=False, default_flow_style=False))
        else:
            self._print(json.dumps(data, indent=2, sort_keys=True))

    def render_products(self, products: list[Product]) -> None:
        if self.is_structured():
            self.structured([p.to_dict() for p in products])
            return
        if not products:
            self._print("no products found")
            return
        rows = [["SLUG", "NAME", "PUBLISHER", "TYPE", "LATEST VERSION"]]
        for p in products:
            latest = latest_version(p.all_versions or p.versions)
            rows.append(
                [
                    p.slug,
                    p.display_name,
                    p.publisher.org_display_name if p.publisher else "",
                    p.solution_type,
                    latest.number if latest else "",
                ]
            )
        self._table(rows)
        self._print(f"TOTAL COUNT: {len(products)}")

    def render_product(self, product: Product) -> None:
        if self.is_structured():
            self.structured(product.to_dict())
            return
        latest = latest_version(product.all_versions or product.versions)
        self._print(f"Name:      {product.display_name}")
        self._print(f"Slug:      {product.slug}")
        self._print(f"ID:        {product.product_id}")
        self._print(f"Type:      {product.solution_type}")
        self._print(f"Status:    {product.status}")
        if product.publisher:
            self._print(f"Publisher: {product.publisher.org_display_name}")
        if latest:
            self._print(f"Latest:    {latest.number}")

    def render_versions(self, product: Product) -> None:
        versions = sort_versions(product.all_versions or product.versions)
        if self.is_structured():
            self.structured([v.to_dict() for v in versions])
            return
        if not versions:
            self._print(f"product \"{product.slug}\" does not have any versions")
            return
        rows = [["NUMBER", "STATUS"]]
        for v in versions:
            rows.append([v.number, v.status])
        self._table(rows)

    def render_assets(self, assets: list[Asset]) -> None:
        if self.is_structured():
            self.structured([a.to_dict() for a in assets])
            return
        if not assets:
            self._print("no assets found")
            return
        rows = [["NAME", "TYPE", "VERSION", "SIZE", "DOWNLOADS", "DOWNLOADABLE"]]
        for a in assets:
            rows.append(
                [a.display_name, a.type, a.version, format_size(a.size), str(a.downloads), _yes_no(a.downloadable)]
            )
        self._table(rows)
        for a in assets:
            if a.error:
                self._print(f"{a.display_name}: {a.error}")

    def render_charts(self, product: Product, version: str) -> None:
        charts = product.charts_for_version(version)
        if self.is_structured():
            self.structured([c.to_dict() for c in charts])
            return
        if not charts:
            self._print(f"{product.slug} {version} does not have any charts")
            return
        rows = [["ID", "VERSION", "URL", "REPOSITORY", "STATUS"]]
        for c in charts:
            repo = c.repo.name if c.repo else ""
            rows.append([c.id, c.version, c.helm_tar_url, repo, c.status])
        self._table(rows)

    def render_container_images(self, product: Product, version: str) -> None:
        lists = product.container_images_for_version(version)
        if self.is_structured():
            self.structured([d.to_dict() for d in lists])
            return
        images = [image for d in lists for image in d.docker_urls]
        if not images:
            self._print(f"{product.slug} {version} does not have any container images")
            return
        rows = [["ID", "IMAGE", "TAGS", "TYPE"]]
        for image in images:
            tags = ", ".join(t.tag for t in image.image_tags)
            rows.append([image.id, image.url, tags, image.docker_type])
        self._table(rows)

    def render_files(self, product: Product, version: str) -> None:
        files = product.files_for_version(version)
        if self.is_structured():
            self.structured([f.to_dict() for f in files])
            return
        if not files:
            self._print(f"{product.slug} {version} does not have any files")
            return
        rows = [["NAME", "ID", "SIZE", "STATUS"]]
        for f in files:
            rows.append([f.name, f.file_id, format_size(f.calculate_size()), f.status])
        self._table(rows)

    def render_addon_files(self, product: Product, version: str) -> None:
        files = product.addon_files_for_version(version)
        if self.is_structured():
            self.structured([f.to_dict() for f in files])
            return
        if not files:
            self._print(f"{product.slug} {version} does not have any add-on files")
            return
        rows = [["NAME", "ID", "SIZE"]]
        for f in files:
            rows.append([f.name, f.file_id, format_size(f.size)])
        self._table(rows)

    def render_metafiles(self, product: Product, version: str) -> None:
        metafiles = product.metafiles_for_version(version)
        if self.is_structured():
            self.structured([m.to_dict() for m in metafiles])
            return
        if not metafiles:
            self._print(f"{product.slug} {version} does not have any metafiles")
            return
        rows = [["NAME", "TYPE", "VERSION", "STATUS"]]
        for m in metafiles:
            for obj in m.objects:
                rows.append([obj.file_name, m.file_type, m.version, m.status])
        self._table(rows)
