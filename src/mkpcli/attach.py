from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol
from urllib.parse import urlsplit

from .charts import load_chart
from .client import MarketplaceError
from .models import (
    DOCKER_TYPE_REGISTRY,
    DOCKER_TYPE_UPLOAD,
    HASH_ALGO_SHA1,
    IMAGE_TAG_TYPES,
    METAFILE_TYPE_CLI,
    METAFILE_TYPE_CONFIG,
    METAFILE_TYPE_MISC,
    AddOnFile,
    ChartVersion,
    DockerImageTag,
    DockerURLDetails,
    DockerVersionList,
    Encryption,
    MetaFile,
    MetaFileObject,
    Product,
    ProductDeploymentFile,
    SolutionType,
    Version,
)
from .uploader import Uploader, hash_file, make_unique_file_id
from .versions import VersionDoesNotExistError, resolve_version

logger = logging.getLogger(__name__)

KIND_CHART = "chart"
KIND_IMAGE = "image"
KIND_VM = "vm"
KIND_OTHER = "other"

COMPATIBLE_SOLUTION_TYPES: dict[str, frozenset[SolutionType]] = {
    KIND_CHART: frozenset({SolutionType.CHART}),
    KIND_IMAGE: frozenset({SolutionType.IMAGE}),
    KIND_VM: frozenset({SolutionType.OVA, SolutionType.ISO}),
    KIND_OTHER: frozenset({SolutionType.OTHERS}),
}

METAFILE_TYPES = {
    "cli": METAFILE_TYPE_CLI,
    "config": METAFILE_TYPE_CONFIG,
    "misc": METAFILE_TYPE_MISC,
}

DEPLOYMENT_TYPE_HELM = "HELM"


class IncompatibleSolutionTypeError(MarketplaceError):
    def __init__(self, kind: str, product: Product) -> None:
        super().__init__(f"cannot attach a {kind} to {product.slug} which is of type {product.solution_type}")
        self.kind = kind
        self.product = product.display_name
        self.slug = product.slug
        self.solution_type = product.solution_type


class DuplicateImageError(MarketplaceError):
    def __init__(self, product: str, version: str, image: str, tag: str) -> None:
        super().__init__(f"{product} {version} already has the image {image}:{tag}")
        self.product = product
        self.version = version
        self.image = image
        self.tag = tag


class VersionExistsError(MarketplaceError):
    def __init__(self, product: str, version: str) -> None:
        super().__init__(f"product \"{product}\" already has version {version}")
        self.product = product
        self.version = version


class UnsupportedSchemeError(MarketplaceError):
    def __init__(self, scheme: str) -> None:
        super().__init__(f"unsupported protocol scheme: {scheme}")
        self.scheme = scheme


class ProductStore(Protocol):
    def get_product(self, slug: str) -> Product:
        ...

    def put_product(self, product: Product, is_version_update: bool) -> Product:
        ...

    def get_uploader(self, org_id: str) -> Uploader:
        ...

    def download_chart(self, chart_url: str) -> ChartVersion:
        ...


@dataclass(frozen=True)
class AttachRequest:
    product: str
    version: str = ""
    create_version: bool = False
    instructions: str = ""
    pca_file: str | None = None


@dataclass(frozen=True)
class AttachResult:
    product: Product
    version: Version


def normalize_tag_type(value: str) -> str:
    tag_type = (value or "").strip().upper()
    if tag_type not in IMAGE_TAG_TYPES:
        raise MarketplaceError(
            f"invalid image tag type: {tag_type}. must be either \"{IMAGE_TAG_TYPES[0]}\" or \"{IMAGE_TAG_TYPES[1]}\""
        )
    return tag_type


def normalize_metafile_type(value: str) -> str:
    metafile_type = METAFILE_TYPES.get((value or "").strip().lower())
    if metafile_type is None:
        raise MarketplaceError(
            f"invalid metafile type: {value}. must be one of {', '.join(METAFILE_TYPES)}"
        )
    return metafile_type


def check_solution_type(product: Product, kind: str) -> None:
    if SolutionType.parse(product.solution_type) not in COMPATIBLE_SOLUTION_TYPES[kind]:
        raise IncompatibleSolutionTypeError(kind, product)


def prep_for_update(product: Product) -> Product:
    """
    Copy of ``product`` shaped for a full-replace update.

    The backend adds whatever chart, container image and file lists it
    receives, so the copy carries those empty along with an empty
    compatibility matrix; the caller sets only what it is attaching.
    Add-on files and metafiles are replaced wholesale on update and are
    kept as fetched.
    """
    prepared = copy.deepcopy(product)
    prepared.compatibility_matrix = []

    keys = prepared.encryption_details.items if prepared.encryption_details else []
    prepared.encryption = Encryption(items={str(k): True for k in keys})

    # Updates only read allversiondetailsList.
    for version in prepared.versions:
        if not prepared.has_version(version.number):
            prepared.all_versions.append(version)
    prepared.versions = list(prepared.all_versions)

    prepared.chart_versions = []
    prepared.docker_link_versions = []
    prepared.deployment_files = []
    return prepared


class AssetAttacher:
    """
    Attaches one asset to one product version per call.

    Each call fetches the product, resolves the version, validates, uploads,
    prepares a copy of the product and submits it. The fetched product is never
    handed back; callers only see the product returned by the update.
    """

    def __init__(
        self,
        store: ProductStore,
        *,
        chart_loader: Callable[[str], ChartVersion] = load_chart,
        hasher: Callable[[str], str] = hash_file,
    ) -> None:
        self.store = store
        self.chart_loader = chart_loader
        self.hasher = hasher

    def resolve(self, request: AttachRequest) -> tuple[Product, Version]:
        product = self.store.get_product(request.product)
        try:
            version = resolve_version(product, request.version)
        except VersionDoesNotExistError:
            if not request.create_version:
                raise
            version = product.new_version(request.version)
            logger.debug("creating version %s of %s", version.number, product.slug)
        return product, version

    def add_version(self, slug: str, number: str) -> Product:
        """Add an empty version to ``slug``; always submitted as a version update."""
        product = self.store.get_product(slug)
        if product.has_version(number):
            raise VersionExistsError(slug, number)
        product.versions = list(product.all_versions) + [Version(number=number)]

        prepared = prep_for_update(product)
        logger.debug("adding version %s to %s", number, product.slug)
        return self.store.put_product(prepared, True)

    def _submit(
        self,
        request: AttachRequest,
        product: Product,
        version: Version,
        apply: Callable[[Product], None],
        uploader: Uploader | None = None,
    ) -> AttachResult:
        pca_url = None
        if request.pca_file:
            uploader = uploader or self.store.get_uploader(product.org_id)
            _, pca_url = uploader.upload_media_file(request.pca_file)

        prepared = prep_for_update(product)
        apply(prepared)
        if pca_url:
            prepared.set_pca_file(version.number, pca_url)

        updated = self.store.put_product(prepared, version.is_new_version)
        return AttachResult(product=updated, version=version)

    def attach_chart(self, request: AttachRequest, chart_ref: str) -> AttachResult:
        product, version = self.resolve(request)
        check_solution_type(product, KIND_CHART)

        parts = urlsplit(chart_ref)
        uploader = None
        if parts.scheme in ("", "file"):
            chart_path = parts.path if parts.scheme == "file" else chart_ref
            chart = self.chart_loader(chart_path)
            uploader = self.store.get_uploader(product.org_id)
            _, chart_url = uploader.upload_product_file(chart_path)
            chart.helm_tar_url = chart_url
        elif parts.scheme in ("http", "https"):
            chart = self.store.download_chart(chart_ref)
        else:
            raise UnsupportedSchemeError(parts.scheme)

        chart.app_version = version.number
        chart.readme = request.instructions

        def apply(prepared: Product) -> None:
            prepared.chart_versions = [chart]
            prepared.set_deployment_type(DEPLOYMENT_TYPE_HELM)

        return self._submit(request, product, version, apply, uploader)

    def attach_container_image(
        self,
        request: AttachRequest,
        image: str,
        tag: str,
        tag_type: str,
        image_file: str | None = None,
    ) -> AttachResult:
        tag_type = normalize_tag_type(tag_type)
        product, version = self.resolve(request)
        check_solution_type(product, KIND_IMAGE)
        if product.has_container_image(version.number, image, tag):
            raise DuplicateImageError(product.slug, version.number, image, tag)

        uploader = None
        s3_link = ""
        if image_file:
            uploader = self.store.get_uploader(product.org_id)
            _, s3_link = uploader.upload_product_file(image_file)

        image_entry = DockerVersionList(
            app_version=version.number,
            docker_urls=[
                DockerURLDetails(
                    url=image,
                    image_tags=[DockerImageTag(tag=tag, type=tag_type, marketplace_s3_link=s3_link)],
                    deployment_instruction=request.instructions,
                    docker_type=DOCKER_TYPE_UPLOAD if image_file else DOCKER_TYPE_REGISTRY,
                )
            ],
        )

        def apply(prepared: Product) -> None:
            prepared.docker_link_versions.append(image_entry)

        return self._submit(request, product, version, apply, uploader)

    def attach_vm(self, request: AttachRequest, vm_file: str) -> AttachResult:
        product, version = self.resolve(request)
        check_solution_type(product, KIND_VM)

        digest = self.hasher(vm_file)
        uploader = self.store.get_uploader(product.org_id)
        filename, file_url = uploader.upload_product_file(vm_file)

        deployment_file = ProductDeploymentFile(
            name=filename,
            app_version=version.number,
            url=file_url,
            hash_algo=HASH_ALGO_SHA1,
            hash_digest=digest,
            is_redirect_url=False,
            unique_file_id=make_unique_file_id(),
            version_list=[],
        )

        def apply(prepared: Product) -> None:
            prepared.deployment_files = [deployment_file]

        return self._submit(request, product, version, apply, uploader)

    def attach_other_file(self, request: AttachRequest, other_file: str) -> AttachResult:
        product, version = self.resolve(request)
        check_solution_type(product, KIND_OTHER)

        digest = self.hasher(other_file)
        uploader = self.store.get_uploader(product.org_id)
        filename, file_url = uploader.upload_product_file(other_file)

        addon = AddOnFile(
            name=filename,
            url=file_url,
            app_version=version.number,
            hash_digest=digest,
            hash_algorithm=HASH_ALGO_SHA1,
        )

        def apply(prepared: Product) -> None:
            prepared.addon_files = [addon]

        return self._submit(request, product, version, apply, uploader)

    def attach_metafile(
        self,
        request: AttachRequest,
        metafile: str,
        metafile_type: str,
        metafile_version: str | None = None,
    ) -> AttachResult:
        metafile_type = normalize_metafile_type(metafile_type)
        product, version = self.resolve(request)

        digest = self.hasher(metafile)
        uploader = self.store.get_uploader(product.org_id)
        filename, file_url = uploader.upload_metafile(metafile)

        entry = MetaFile(
            file_type=metafile_type,
            version=metafile_version or version.number,
            app_version=version.number,
            objects=[
                MetaFileObject(
                    file_name=filename or Path(metafile).name,
                    temp_url=file_url,
                    hash_digest=digest,
                    hash_algorithm=HASH_ALGO_SHA1,
                )
            ],
        )

        def apply(prepared: Product) -> None:
            prepared.metafiles.append(entry)

        return self._submit(request, product, version, apply, uploader)
