from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Callable

from .assets import DownloadRequestPayload
from .charts import download_chart
from .client import MarketplaceClient, MarketplaceError, TransportError
from .models import ChartVersion, Product, Version
from .uploader import S3Uploader, UploadCredentials, Uploader
from .versions import resolve_version

logger = logging.getLogger(__name__)

PRODUCTS_PAGE_SIZE = 20


class ProductNotFoundError(MarketplaceError):
    def __init__(self, product: str) -> None:
        super().__init__(f"product \"{product}\" not found")
        self.product = product


class PermissionDeniedError(MarketplaceError):
    def __init__(self, product: str) -> None:
        super().__init__(f"you do not have permission to modify the product \"{product}\"")
        self.product = product


class UpdateFailedError(MarketplaceError):
    def __init__(self, product: str, status_code: int, body: str) -> None:
        super().__init__(f"updating product \"{product}\" failed: ({status_code})\n{body}")
        self.product = product
        self.status_code = status_code
        self.body = body


class ResponseParseError(MarketplaceError):
    def __init__(self, product: str, cause: Exception) -> None:
        super().__init__(f"failed to parse the response for product \"{product}\": {cause}")
        self.product = product
        self.cause = cause


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _response_data(resp_json: Any) -> dict[str, Any]:
    """Unwrap ``{"response": {"data": {...}}}``."""
    if not isinstance(resp_json, dict):
        raise ValueError("response is not a JSON object")
    response = resp_json.get("response")
    if not isinstance(response, dict):
        raise ValueError("missing \"response\" object")
    data = response.get("data")
    if not isinstance(data, dict):
        raise ValueError("missing \"response.data\" object")
    return data


class Marketplace:
    """Product store backed by the Marketplace REST API."""

    def __init__(
        self,
        client: MarketplaceClient,
        *,
        api_host: str,
        storage_bucket: str,
        storage_region: str,
        uploader_factory: Callable[[str, UploadCredentials], Uploader] | None = None,
    ) -> None:
        self.client = client
        self.api_host = api_host
        self.storage_bucket = storage_bucket
        self.storage_region = storage_region
        self._uploader_factory = uploader_factory

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "Marketplace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def get_product(self, slug: str) -> Product:
        url = self.client.make_url(
            f"/api/v1/products/{slug}",
            {"increaseViewCount": "false", "isSlug": "false" if _is_uuid(slug) else "true"},
        )
        try:
            resp = self.client.get(url, check=False)
        except TransportError as e:
            raise TransportError(
                f"sending the request for product \"{slug}\" failed: {e.cause or e}", cause=e.cause, product=slug
            ) from e

        if resp.status_code == 404:
            raise ProductNotFoundError(slug)
        if resp.status_code != 200:
            raise MarketplaceError(f"getting product \"{slug}\" failed: ({resp.status_code})")

        try:
            return Product.from_dict(_response_data(resp.json()))
        except ValueError as e:
            raise ResponseParseError(slug, e) from e

    def get_product_with_version(self, slug: str, version: str | None) -> tuple[Product, Version]:
        product = self.get_product(slug)
        return product, resolve_version(product, version)

    def list_products(self, *, all_orgs: bool = False, search: str | None = None) -> list[Product]:
        params: dict[str, Any] = {"managed": "false" if all_orgs else "true"}
        if search:
            params["search"] = search

        products: list[Product] = []
        total: int | None = None
        page = 1
        while total is None or len(products) < total:
            params["pagination"] = json.dumps({"page": page, "pageSize": PRODUCTS_PAGE_SIZE}, separators=(",", ":"))
            resp = self.client.get(self.client.make_url("/api/v1/products", params), check=False)
            if resp.status_code != 200:
                raise MarketplaceError(f"getting the list of products failed: ({resp.status_code})")
            try:
                payload = resp.json()["response"]
                items = payload.get("dataList") or []
                count = int(payload.get("params", {}).get("itemsnumber", 0))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise MarketplaceError(f"failed to parse the list of products: {e}") from e

            products.extend(Product.from_dict(p) for p in items if isinstance(p, dict))
            if total is None:
                total = count
            if not items:
                break
            page += 1
        return products

    def put_product(self, product: Product, is_version_update: bool) -> Product:
        """
        Submit ``product`` as a full replace. Nothing is retried here; callers
        get the typed error for the first failure.
        """
        url = self.client.make_url(
            f"/api/v1/products/{product.product_id}",
            {"archivepreviousversion": "false", "isversionupdate": "true" if is_version_update else "false"},
        )
        logger.debug("updating product %s (isversionupdate=%s)", product.slug, is_version_update)
        try:
            resp = self.client.put(url, json_body=product.to_dict(), check=False)
        except TransportError as e:
            raise TransportError(
                f"sending the update for product \"{product.slug}\" failed: {e.cause or e}",
                cause=e.cause,
                product=product.slug,
            ) from e

        if resp.status_code == 403:
            raise PermissionDeniedError(product.slug)
        if resp.status_code != 200:
            raise UpdateFailedError(product.slug, resp.status_code, resp.text)

        try:
            return Product.from_dict(_response_data(resp.json()))
        except ValueError as e:
            raise ResponseParseError(product.slug, e) from e

    def download(self, filename: str | Path, payload: DownloadRequestPayload) -> Path:
        url = self.client.make_url(f"/api/v1/products/{payload.product_id}/download")
        resp = self.client.post(url, json_body=payload.to_dict(), check=False)
        if resp.status_code != 200:
            raise MarketplaceError(f"failed to fetch download link: ({resp.status_code})\n{resp.text}")
        try:
            link = resp.json()["response"]["presignedurl"]
        except (ValueError, KeyError, TypeError) as e:
            raise MarketplaceError(f"failed to parse response: {e}") from e

        dest = Path(filename).expanduser()
        tmp = dest.with_name(dest.name + ".part")
        try:
            with self.client.stream(link) as download, tmp.open("wb") as out:
                for chunk in download.iter_bytes():
                    out.write(chunk)
            tmp.replace(dest)
        finally:
            # Only left behind when the transfer failed.
            tmp.unlink(missing_ok=True)
        return dest

    def download_chart(self, chart_url: str) -> ChartVersion:
        return download_chart(self.client, chart_url)

    def get_upload_credentials(self) -> UploadCredentials:
        url = self.client.make_url("/aws/credentials/generate", host=self.api_host)
        resp = self.client.get(url, check=False)
        if resp.status_code != 200:
            raise MarketplaceError(f"failed to fetch credentials: {resp.status_code}")
        try:
            data = resp.json()
            return UploadCredentials(
                access_id=str(data["accessId"]),
                access_key=str(data["accessKey"]),
                session_token=str(data["sessionToken"]),
                expiration=str(data.get("expiration", "")),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise MarketplaceError(f"failed to parse upload credentials: {e}") from e

    def get_uploader(self, org_id: str) -> Uploader:
        credentials = self.get_upload_credentials()
        if self._uploader_factory is not None:
            return self._uploader_factory(org_id, credentials)
        return S3Uploader(
            bucket=self.storage_bucket,
            region=self.storage_region,
            org_id=org_id,
            credentials=credentials,
        )
