from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .client import MarketplaceError
from .models import DEPLOYMENT_STATUS_INACTIVE, Product

ASSET_TYPE_VM = "VM"
ASSET_TYPE_CHART = "Chart"
ASSET_TYPE_CONTAINER_IMAGE = "Container Image"
ASSET_TYPE_METAFILE = "MetaFile"

# --type flag value -> asset type
ASSET_TYPE_FILTERS = {
    "vm": ASSET_TYPE_VM,
    "chart": ASSET_TYPE_CHART,
    "image": ASSET_TYPE_CONTAINER_IMAGE,
    "metafile": ASSET_TYPE_METAFILE,
}


@dataclass(frozen=True)
class DownloadRequestPayload:
    product_id: str
    app_version: str
    deployment_file_id: str = ""
    chart_version: str = ""
    dockerlink_version_id: str = ""
    docker_url_id: str = ""
    image_tag_id: str = ""
    metafile_id: str = ""
    metafile_object_id: str = ""
    eula_accepted: bool = False

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "productid": self.product_id,
            "appVersion": self.app_version,
            "deploymentFileId": self.deployment_file_id,
            "chartVersion": self.chart_version,
            "dockerlinkVersionId": self.dockerlink_version_id,
            "dockerUrlId": self.docker_url_id,
            "imageTagId": self.image_tag_id,
            "metafileid": self.metafile_id,
            "metafileobjectid": self.metafile_object_id,
        }
        body = {k: v for k, v in body.items() if v}
        body["eulaAccepted"] = self.eula_accepted
        return body


@dataclass(frozen=True)
class Asset:
    display_name: str
    filename: str
    type: str
    version: str = ""
    size: int = 0
    downloads: int = 0
    downloadable: bool = False
    download_request: DownloadRequestPayload | None = field(default=None, repr=False, compare=False)
    error: str = ""
    status: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "displayname": self.display_name,
            "filename": self.filename,
            "version": self.version,
            "type": self.type,
            "size": self.size,
            "downloadable": self.downloadable,
            "downloads": self.downloads,
        }
        if self.error:
            out["error"] = self.error
        if self.status:
            out["status"] = self.status
        return out


def assets_for_version(product: Product, version: str) -> list[Asset]:
    """
    Every asset attached to ``version``, in the fixed order: VM files, charts,
    container image tags, metafile objects. Unknown versions give [].
    """
    assets: list[Asset] = []
    if not product.has_version(version):
        return assets

    for file in product.files_for_version(version):
        assets.append(
            Asset(
                display_name=file.name,
                filename=file.name,
                type=ASSET_TYPE_VM,
                size=file.calculate_size(),
                downloads=file.download_count,
                downloadable=file.status != DEPLOYMENT_STATUS_INACTIVE,
                download_request=DownloadRequestPayload(
                    product_id=product.product_id,
                    app_version=version,
                    deployment_file_id=file.file_id,
                ),
                error=file.comment,
                status=file.status,
            )
        )

    for chart in product.charts_for_version(version):
        assets.append(
            Asset(
                display_name=chart.helm_tar_url,
                filename="chart.tgz",
                version=chart.version,
                type=ASSET_TYPE_CHART,
                size=chart.size,
                downloads=chart.download_count,
                downloadable=chart.is_updated_in_marketplace_registry,
                download_request=DownloadRequestPayload(
                    product_id=product.product_id,
                    app_version=version,
                    chart_version=chart.version,
                ),
                error=chart.processing_error,
                status=chart.status,
            )
        )

    for version_list in product.container_images_for_version(version):
        for image in version_list.docker_urls:
            for tag in image.image_tags:
                assets.append(
                    Asset(
                        display_name=f"{image.url}:{tag.tag}",
                        filename="image.tar",
                        version=tag.tag,
                        type=ASSET_TYPE_CONTAINER_IMAGE,
                        size=tag.size,
                        downloads=tag.download_count,
                        downloadable=tag.is_updated_in_marketplace_registry,
                        download_request=DownloadRequestPayload(
                            product_id=product.product_id,
                            app_version=version,
                            dockerlink_version_id=version_list.id,
                            docker_url_id=image.id,
                            image_tag_id=tag.id,
                        ),
                        error=tag.processing_error,
                        status=version_list.status,
                    )
                )

    for metafile in product.metafiles_for_version(version):
        for obj in metafile.objects:
            assets.append(
                Asset(
                    display_name=obj.file_name,
                    filename=obj.file_name,
                    version=metafile.version,
                    type=ASSET_TYPE_METAFILE,
                    size=obj.size,
                    downloads=obj.download_count,
                    downloadable=obj.is_file_backed_up,
                    download_request=DownloadRequestPayload(
                        product_id=product.product_id,
                        app_version=version,
                        metafile_id=metafile.id,
                        metafile_object_id=obj.file_id,
                    ),
                    error=obj.processing_error,
                    status=metafile.status,
                )
            )

    return assets


def assets_by_type(asset_type: str | None, product: Product, version: str) -> list[Asset]:
    assets = assets_for_version(product, version)
    if not asset_type:
        return assets
    return [a for a in assets if a.type == asset_type]


def validate_asset_type(value: str | None) -> str | None:
    """Map a --type value to an asset type; None when no filter was given."""
    if not value:
        return None
    asset_type = ASSET_TYPE_FILTERS.get(value.strip().lower())
    if asset_type is None:
        allowed = ", ".join(ASSET_TYPE_FILTERS)
        raise MarketplaceError(f"Unknown asset type: {value}, please use one of {allowed}")
    return asset_type


class SelectionError(MarketplaceError):
    def __init__(self, message: str, *, candidates: list[Asset] | None = None) -> None:
        super().__init__(message)
        self.candidates = list(candidates or [])


class NoAssetsError(SelectionError):
    pass


class AmbiguousSelectionError(SelectionError):
    pass


class NoMatchError(SelectionError):
    pass


class AmbiguousFilterError(SelectionError):
    pass


def _describe(product: str, version: str) -> str:
    return " ".join(p for p in ("product", product, version) if p)


def select_asset(
    assets: list[Asset],
    asset_type: str | None = None,
    text_filter: str | None = None,
    *,
    product: str = "",
    version: str = "",
) -> Asset:
    """
    Pick exactly one asset. ``text_filter`` is a case-sensitive substring of
    the display name; ambiguity errors carry the candidates for display.
    """
    subject = _describe(product, version)
    kind = f"{asset_type} " if asset_type else ""

    candidates = [a for a in assets if a.type == asset_type] if asset_type else list(assets)
    if not candidates:
        raise NoAssetsError(f"{subject} does not have any downloadable {kind}assets")

    if not text_filter:
        if len(candidates) > 1:
            raise AmbiguousSelectionError(
                f"{subject} has multiple downloadable {kind}assets, please use the --filter parameter",
                candidates=candidates,
            )
        return candidates[0]

    matched = [a for a in candidates if text_filter in a.display_name]
    if not matched:
        raise NoMatchError(
            f"{subject} does not have any downloadable {kind}assets that match the filter "
            f"\"{text_filter}\", please adjust the --filter parameter"
        )
    if len(matched) > 1:
        raise AmbiguousFilterError(
            f"{subject} has multiple downloadable {kind}assets that match the filter "
            f"\"{text_filter}\", please adjust the --filter parameter",
            candidates=matched,
        )
    return matched[0]
