from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

DEPLOYMENT_STATUS_INACTIVE = "INACTIVE"

HASH_ALGO_SHA1 = "SHA1"

IMAGE_TAG_TYPE_FIXED = "FIXED"
IMAGE_TAG_TYPE_FLOATING = "FLOATING"
IMAGE_TAG_TYPES = (IMAGE_TAG_TYPE_FIXED, IMAGE_TAG_TYPE_FLOATING)

DOCKER_TYPE_REGISTRY = "registry"
DOCKER_TYPE_UPLOAD = "upload"

METAFILE_TYPE_CLI = "CLI"
METAFILE_TYPE_CONFIG = "CONFIG"
METAFILE_TYPE_MISC = "MISC"


class SolutionType(str, Enum):
    CHART = "HELMCHARTS"
    IMAGE = "IMAGES"
    OVA = "VMS"
    ISO = "ISO"
    OTHERS = "OTHERS"
    SAAS = "SAAS"

    @classmethod
    def parse(cls, value: str | None) -> "SolutionType | None":
        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


def _decode(kind: Any, raw: Any) -> Any:
    if isinstance(kind, list):
        item_kind = kind[0]
        if not isinstance(raw, list):
            return []
        return [item_kind.from_dict(x) for x in raw if isinstance(x, dict)]
    if isinstance(kind, type) and issubclass(kind, _WireModel):
        return kind.from_dict(raw) if isinstance(raw, dict) else None
    if kind is str:
        return "" if raw is None else str(raw)
    if kind is int:
        if isinstance(raw, bool):
            return 0
        if isinstance(raw, (int, float)):
            return int(raw)
        if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
            return int(raw.strip())
        return 0
    if kind is bool:
        return bool(raw)
    if kind is list:
        return list(raw) if isinstance(raw, list) else []
    if kind is dict:
        return dict(raw) if isinstance(raw, dict) else {}
    return raw


def _encode(value: Any) -> Any:
    if isinstance(value, _WireModel):
        return value.to_dict()
    if isinstance(value, list):
        return [_encode(v) for v in value]
    return value


class _WireModel:
    """
    Maps dataclass attributes to the API's lowercase JSON keys.

    Keys the model does not know about are kept in ``extra`` and written back
    by ``to_dict``, so a product fetched and then submitted for a full replace
    keeps every field the server sent.
    """

    _WIRE: ClassVar[tuple[tuple[str, str, Any], ...]] = ()
    extra: dict[str, Any]

    @classmethod
    def from_dict(cls, data: Any):
        if not isinstance(data, dict):
            data = {}
        kwargs: dict[str, Any] = {}
        known: set[str] = set()
        for attr, key, kind in cls._WIRE:
            known.add(key)
            if key in data:
                kwargs[attr] = _decode(kind, data[key])
        kwargs["extra"] = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        for attr, key, _kind in self._WIRE:
            value = getattr(self, attr)
            if value is None:
                continue
            out[key] = _encode(value)
        return out


@dataclass
class Version(_WireModel):
    number: str = ""
    details: str = ""
    status: str = ""
    instructions: str = ""
    created_on: int = 0
    has_limited_access: bool = False
    tag: str = ""
    # Never sent; tells the update call this version is being created.
    is_new_version: bool = False
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("number", "versionnumber", str),
        ("details", "versiondetails", str),
        ("status", "status", str),
        ("instructions", "versioninstruction", str),
        ("created_on", "createdon", int),
        ("has_limited_access", "haslimitedaccess", bool),
        ("tag", "tag", str),
    )


@dataclass
class Repo(_WireModel):
    name: str = ""
    url: str = ""
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("name", "name", str),
        ("url", "url", str),
    )


@dataclass
class ChartVersion(_WireModel):
    id: str = ""
    version: str = ""
    app_version: str = ""
    details: str = ""
    readme: str = ""
    repo: Repo | None = None
    values: str = ""
    digest: str = ""
    status: str = ""
    tar_url: str = ""
    is_external_url: bool = False
    helm_tar_url: str = ""
    is_updated_in_marketplace_registry: bool = False
    processing_error: str = ""
    download_count: int = 0
    validation_status: str = ""
    install_options: str = ""
    hash_digest: str = ""
    hash_algorithm: str = ""
    size: int = 0
    comment: str = ""
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("id", "id", str),
        ("version", "version", str),
        ("app_version", "appversion", str),
        ("details", "details", str),
        ("readme", "readme", str),
        ("repo", "repo", Repo),
        ("values", "values", str),
        ("digest", "digest", str),
        ("status", "status", str),
        ("tar_url", "tarurl", str),
        ("is_external_url", "isexternalurl", bool),
        ("helm_tar_url", "helmtarurl", str),
        ("is_updated_in_marketplace_registry", "isupdatedinmarketplaceregistry", bool),
        ("processing_error", "processingerror", str),
        ("download_count", "downloadcount", int),
        ("validation_status", "validationstatus", str),
        ("install_options", "installoptions", str),
        ("hash_digest", "hashdigest", str),
        ("hash_algorithm", "hashalgo", str),
        ("size", "size", int),
        ("comment", "comment", str),
    )


@dataclass
class DockerImageTag(_WireModel):
    id: str = ""
    tag: str = ""
    type: str = ""
    is_updated_in_marketplace_registry: bool = False
    marketplace_s3_link: str = ""
    processing_error: str = ""
    download_count: int = 0
    hash_algo: str = ""
    hash_digest: str = ""
    size: int = 0
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("id", "id", str),
        ("tag", "tag", str),
        ("type", "type", str),
        ("is_updated_in_marketplace_registry", "isupdatedinmarketplaceregistry", bool),
        ("marketplace_s3_link", "marketplaces3link", str),
        ("processing_error", "processingerror", str),
        ("download_count", "downloadcount", int),
        ("hash_algo", "hashalgo", str),
        ("hash_digest", "hashdigest", str),
        ("size", "size", int),
    )


@dataclass
class DockerURLDetails(_WireModel):
    id: str = ""
    key: str = ""
    url: str = ""
    marketplace_updated_url: str = ""
    image_tags: list[DockerImageTag] = field(default_factory=list)
    docker_type: str = ""
    deployment_instruction: str = ""
    name: str = ""
    is_multi_arch: bool = False
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("id", "id", str),
        ("key", "key", str),
        ("url", "url", str),
        ("marketplace_updated_url", "marketplaceupdatedurl", str),
        ("image_tags", "imagetagsList", [DockerImageTag]),
        ("docker_type", "dockertype", str),
        ("deployment_instruction", "deploymentinstruction", str),
        ("name", "name", str),
        ("is_multi_arch", "ismultiarch", bool),
    )

    def get_tag(self, tag_name: str) -> DockerImageTag | None:
        for tag in self.image_tags:
            if tag.tag == tag_name:
                return tag
        return None

    def has_tag(self, tag_name: str) -> bool:
        return self.get_tag(tag_name) is not None


@dataclass
class DockerVersionList(_WireModel):
    id: str = ""
    app_version: str = ""
    deployment_instruction: str = ""
    docker_urls: list[DockerURLDetails] = field(default_factory=list)
    status: str = ""
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("id", "id", str),
        ("app_version", "appversion", str),
        ("deployment_instruction", "deploymentinstruction", str),
        ("docker_urls", "dockerurlsList", [DockerURLDetails]),
        ("status", "status", str),
    )

    def get_image(self, image_url: str) -> DockerURLDetails | None:
        for image in self.docker_urls:
            if image.url == image_url:
                return image
        return None


@dataclass
class ProductDeploymentFile(_WireModel):
    id: str = ""
    name: str = ""
    url: str = ""
    image_type: str = ""
    status: str = ""
    item_json: str = ""
    file_id: str = ""
    app_version: str = ""
    hash_digest: str = ""
    hash_algo: str = ""
    is_redirect_url: bool = False
    comment: str = ""
    download_count: int = 0
    unique_file_id: str = ""
    version_list: list = field(default_factory=list)
    size: int = 0
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("id", "id", str),
        ("name", "name", str),
        ("url", "url", str),
        ("image_type", "imagetype", str),
        ("status", "status", str),
        ("item_json", "itemjson", str),
        ("file_id", "fileid", str),
        ("app_version", "appversion", str),
        ("hash_digest", "hashdigest", str),
        ("hash_algo", "hashalgo", str),
        ("is_redirect_url", "isredirecturl", bool),
        ("comment", "comment", str),
        ("download_count", "downloadcount", int),
        ("unique_file_id", "uniqueFileId", str),
        ("version_list", "versionList", list),
        ("size", "size", int),
    )

    def calculate_size(self) -> int:
        """
        Size in bytes: the explicit ``size`` when set, otherwise the sum of the
        file sizes listed in ``itemjson``. Unparseable ``itemjson`` counts as 0.
        """
        if self.size > 0:
            return self.size
        try:
            details = json.loads(self.item_json) if self.item_json else {}
        except json.JSONDecodeError:
            return 0
        files = details.get("files") if isinstance(details, dict) else None
        if not isinstance(files, list):
            return 0
        total = 0
        for f in files:
            if isinstance(f, dict):
                total += _decode(int, f.get("size"))
        return total


@dataclass
class MetaFileObject(_WireModel):
    file_id: str = ""
    file_name: str = ""
    temp_url: str = ""
    url: str = ""
    is_file_backed_up: bool = False
    processing_error: str = ""
    hash_digest: str = ""
    hash_algorithm: str = ""
    size: int = 0
    download_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("file_id", "fileid", str),
        ("file_name", "filename", str),
        ("temp_url", "tempurl", str),
        ("url", "url", str),
        ("is_file_backed_up", "isfilebackedup", bool),
        ("processing_error", "processingerror", str),
        ("hash_digest", "hashdigest", str),
        ("hash_algorithm", "hashalgo", str),
        ("size", "size", int),
        ("download_count", "downloadcount", int),
    )


@dataclass
class MetaFile(_WireModel):
    id: str = ""
    file_type: str = ""
    # The metafile's own version, distinct from the product version in app_version.
    version: str = ""
    app_version: str = ""
    status: str = ""
    objects: list[MetaFileObject] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("id", "metafileid", str),
        ("file_type", "filetype", str),
        ("version", "version", str),
        ("app_version", "appversion", str),
        ("status", "status", str),
        ("objects", "metafileobjectsList", [MetaFileObject]),
    )


@dataclass
class AddOnFile(_WireModel):
    id: str = ""
    name: str = ""
    url: str = ""
    file_id: str = ""
    app_version: str = ""
    hash_digest: str = ""
    hash_algorithm: str = ""
    download_count: int = 0
    size: int = 0
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("id", "id", str),
        ("name", "name", str),
        ("url", "url", str),
        ("file_id", "fileid", str),
        ("app_version", "appversion", str),
        ("hash_digest", "hashdigest", str),
        ("hash_algorithm", "hashalgo", str),
        ("download_count", "downloadcount", int),
        ("size", "size", int),
    )


@dataclass
class Publisher(_WireModel):
    user_id: str = ""
    org_id: str = ""
    org_name: str = ""
    org_display_name: str = ""
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("user_id", "userid", str),
        ("org_id", "orgid", str),
        ("org_name", "orgname", str),
        ("org_display_name", "orgdisplayname", str),
    )


@dataclass
class EULADetails(_WireModel):
    url: str = ""
    text: str = ""
    signed: bool = False
    version: str = ""
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("url", "url", str),
        ("text", "text", str),
        ("signed", "signed", bool),
        ("version", "version", str),
    )


@dataclass
class PCADetails(_WireModel):
    url: str = ""
    version: str = ""
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("url", "url", str),
        ("version", "version", str),
    )


@dataclass
class EncryptionDetails(_WireModel):
    items: list = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (("items", "listList", list),)


@dataclass
class Encryption(_WireModel):
    items: dict = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (("items", "list", dict),)


@dataclass
class Product(_WireModel):
    product_id: str = ""
    slug: str = ""
    display_name: str = ""
    status: str = ""
    solution_type: str = ""
    publisher: Publisher | None = None
    eula: EULADetails | None = None
    encryption_details: EncryptionDetails | None = None
    encryption: Encryption | None = None
    compatibility_matrix: list = field(default_factory=list)
    versions: list[Version] = field(default_factory=list)
    all_versions: list[Version] = field(default_factory=list)
    deployment_types: list = field(default_factory=list)
    chart_versions: list[ChartVersion] = field(default_factory=list)
    docker_link_versions: list[DockerVersionList] = field(default_factory=list)
    deployment_files: list[ProductDeploymentFile] = field(default_factory=list)
    metafiles: list[MetaFile] = field(default_factory=list)
    addon_files: list[AddOnFile] = field(default_factory=list)
    pca_details: PCADetails | None = None
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    _WIRE = (
        ("product_id", "productid", str),
        ("slug", "slug", str),
        ("display_name", "displayname", str),
        ("status", "status", str),
        ("solution_type", "solutiontype", str),
        ("publisher", "publisherdetails", Publisher),
        ("eula", "euladetails", EULADetails),
        ("encryption_details", "encryptiondetails", EncryptionDetails),
        ("encryption", "encryption", Encryption),
        ("compatibility_matrix", "compatibilitymatrixList", list),
        ("versions", "versionsList", [Version]),
        ("all_versions", "allversiondetailsList", [Version]),
        ("deployment_types", "deploymenttypesList", list),
        ("chart_versions", "chartversionsList", [ChartVersion]),
        ("docker_link_versions", "dockerlinkversionsList", [DockerVersionList]),
        ("deployment_files", "productdeploymentfilesList", [ProductDeploymentFile]),
        ("metafiles", "metafilesList", [MetaFile]),
        ("addon_files", "addonfilesList", [AddOnFile]),
        ("pca_details", "pcadetails", PCADetails),
    )

    @property
    def org_id(self) -> str:
        return self.publisher.org_id if self.publisher else ""

    def find_version(self, number: str) -> Version | None:
        for v in self.all_versions:
            if v.number == number:
                return v
        return None

    def has_version(self, number: str) -> bool:
        return self.find_version(number) is not None

    def new_version(self, number: str) -> Version:
        version = Version(
            number=number,
            details=f"Version {number}",
            status="PENDING",
            instructions="Please see the Marketplace product page for deployment instructions",
            is_new_version=True,
        )
        self.versions.append(version)
        self.all_versions.append(version)
        return version

    def set_pca_file(self, version: str, url: str) -> None:
        self.pca_details = PCADetails(url=url, version=version)

    def set_deployment_type(self, deployment_type: str) -> None:
        self.deployment_types = [deployment_type]

    def charts_for_version(self, number: str) -> list[ChartVersion]:
        return [c for c in self.chart_versions if c.app_version == number]

    def container_images_for_version(self, number: str) -> list[DockerVersionList]:
        return [d for d in self.docker_link_versions if d.app_version == number]

    def files_for_version(self, number: str) -> list[ProductDeploymentFile]:
        return [f for f in self.deployment_files if f.app_version == number]

    def metafiles_for_version(self, number: str) -> list[MetaFile]:
        return [m for m in self.metafiles if m.app_version == number]

    def addon_files_for_version(self, number: str) -> list[AddOnFile]:
        return [a for a in self.addon_files if a.app_version == number]

    def has_container_image(self, number: str, image_url: str, tag: str) -> bool:
        for version_list in self.container_images_for_version(number):
            for docker_url in version_list.docker_urls:
                if docker_url.url == image_url and docker_url.has_tag(tag):
                    return True
        return False
