from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import textwrap
from dataclasses import asdict, replace

from ._version import __version__
from .assets import ASSET_TYPE_FILTERS, SelectionError, assets_by_type, select_asset, validate_asset_type
from .attach import METAFILE_TYPES, AssetAttacher, AttachRequest, AttachResult
from .client import MarketplaceClient, MarketplaceError, MarketplaceHTTPError
from .config import ENVIRONMENTS, Config, config_path, load_config, redact_token, save_config
from .marketplace import Marketplace
from .models import IMAGE_TAG_TYPES
from .output import FORMAT_HUMAN, OUTPUT_FORMATS, Renderer


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Env overrides config; CLI overrides both.
    token = (
        getattr(args, "csp_api_token", None)
        or os.getenv("MKPCLI_TOKEN")
        or os.getenv("CSP_API_TOKEN")
        or base.token
    )
    host = getattr(args, "host", None) or os.getenv("MKPCLI_HOST") or base.host
    timeout_s = getattr(args, "timeout_s", None) or os.getenv("MKPCLI_TIMEOUT_S") or base.timeout_s
    try:
        timeout_s_f = float(timeout_s)
    except (TypeError, ValueError):
        print(f"warning: ignoring invalid timeout {timeout_s!r}", file=sys.stderr)
        timeout_s_f = base.timeout_s

    return Config(
        environment=base.environment,
        host=host,
        api_host=base.api_host,
        storage_bucket=base.storage_bucket,
        storage_region=base.storage_region,
        token=token,
        timeout_s=timeout_s_f,
        auth_header=base.auth_header,
    ).with_defaults()


def _make_marketplace(args: argparse.Namespace) -> Marketplace:
    cfg = _merge_cfg(load_config(), args)
    client = MarketplaceClient(
        host=cfg.host or "",
        token=cfg.token,
        timeout_s=cfg.timeout_s,
        auth_header=cfg.auth_header,
        debug_payloads=bool(getattr(args, "debug_request_payloads", False)),
    )
    return Marketplace(
        client,
        api_host=cfg.api_host or "",
        storage_bucket=cfg.storage_bucket or "",
        storage_region=cfg.storage_region or "",
    )


def _configure_logging(args: argparse.Namespace) -> None:
    if args.debug or args.debug_request_payloads:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mkpcli",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Command line client for the VMware Marketplace.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              CSP_API_TOKEN, MKPCLI_TOKEN, MKPCLI_HOST, MKPCLI_TIMEOUT_S, MKPCLI_CONFIG_PATH,
              MARKETPLACE_ENV=staging
            """
        ),
    )
    p.add_argument("--version", action="version", version=f"mkpcli {__version__}")
    p.add_argument("--debug", action="store_true", help="Log requests to stderr")
    p.add_argument("--debug-request-payloads", action="store_true", help="Also log request payloads")
    p.add_argument(
        "--csp-api-token",
        "--token",
        dest="csp_api_token",
        help="VMware Cloud Services API token (overrides config/env)",
    )
    p.add_argument("--host", help="Marketplace API gateway host")
    p.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    p.add_argument("-o", "--output", choices=OUTPUT_FORMATS, default=FORMAT_HUMAN, help="Output format")

    sub = p.add_subparsers(dest="cmd", required=True)

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config (token redacted)")

    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--environment", choices=sorted(ENVIRONMENTS), help="Marketplace environment profile")
    cfg_set.add_argument("--host")
    cfg_set.add_argument("--api-host")
    cfg_set.add_argument("--storage-bucket")
    cfg_set.add_argument("--storage-region")
    cfg_set.add_argument("--token")
    cfg_set.add_argument("--timeout-s", type=float)
    cfg_set.add_argument("--auth-header", help='Auth header name (default: "csp-auth-token")')

    def _add_target(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("-p", "--product", required=True, help="Product slug or id")
        parser.add_argument(
            "-v",
            "--product-version",
            default="",
            help="Product version (default: latest version)",
        )

    def _add_attach_options(parser: argparse.ArgumentParser, *, instructions_required: bool = False) -> None:
        _add_target(parser)
        parser.add_argument(
            "--create-version",
            action="store_true",
            help="Create the product version if it doesn't already exist",
        )
        parser.add_argument("--instructions", required=instructions_required, help="Deployment instructions")
        parser.add_argument("--pca-file", help="Path to a PCA file to upload")

    # attach
    attach = sub.add_parser("attach", help="Attach an asset to a product version")
    attach_sub = attach.add_subparsers(dest="subcmd", required=True)

    attach_chart = attach_sub.add_parser("chart", help="Attach a Helm chart (local .tgz or public URL)")
    _add_attach_options(attach_chart, instructions_required=True)
    attach_chart.add_argument("-c", "--chart", required=True, help="Path or http(s) URL of the chart archive")

    attach_image = attach_sub.add_parser("image", help="Attach a container image")
    _add_attach_options(attach_image, instructions_required=True)
    attach_image.add_argument("-r", "--image-repository", required=True, help="e.g. registry/repository/image")
    attach_image.add_argument("--tag", required=True, help="Image tag")
    attach_image.add_argument(
        "--tag-type",
        required=True,
        help=f"Tag type ({' or '.join(t.lower() for t in IMAGE_TAG_TYPES)})",
    )
    attach_image.add_argument("-f", "--file", help="Local image tarball to upload instead of a registry reference")

    attach_vm = attach_sub.add_parser("vm", help="Attach a virtual machine file (OVA/ISO)")
    _add_attach_options(attach_vm)
    attach_vm.add_argument("--file", required=True, help="Virtual machine file to upload")

    attach_other = attach_sub.add_parser("other", help="Attach a file to an OTHERS product")
    _add_attach_options(attach_other)
    attach_other.add_argument("--file", required=True, help="File to upload")

    attach_metafile = attach_sub.add_parser("metafile", help="Attach a metafile")
    _add_target(attach_metafile)
    attach_metafile.add_argument("--metafile", required=True, help="Metafile to upload")
    attach_metafile.add_argument(
        "--metafile-type",
        required=True,
        help=f"Metafile type (one of {', '.join(METAFILE_TYPES)})",
    )
    attach_metafile.add_argument("--metafile-version", help="Metafile version (default: the product version)")

    # download
    download = sub.add_parser("download", help="Download an asset from a product")
    _add_target(download)
    download.add_argument("--filter", help="Filter assets by display name")
    download.add_argument("-t", "--type", help=f"Filter assets by type (one of {', '.join(ASSET_TYPE_FILTERS)})")
    download.add_argument("-f", "--filename", help="Output file name")
    download.add_argument("--accept-eula", action="store_true", help="Accept the product EULA")

    # product
    product = sub.add_parser("product", help="Product queries")
    product_sub = product.add_subparsers(dest="subcmd", required=True)

    product_list = product_sub.add_parser("list", help="List products")
    product_list.add_argument("--search-text", help="Filter by text")
    product_list.add_argument("--all-orgs", action="store_true", help="Include products from other organizations")

    product_get = product_sub.add_parser("get", help="Get a product")
    product_get.add_argument("-p", "--product", required=True, help="Product slug or id")

    product_versions = product_sub.add_parser("list-versions", help="List product versions, newest first")
    product_versions.add_argument("-p", "--product", required=True, help="Product slug or id")

    product_add_version = product_sub.add_parser("add-version", help="Add a new version to a product")
    product_add_version.add_argument("-p", "--product", required=True, help="Product slug or id")
    product_add_version.add_argument("-v", "--product-version", required=True, help="Version number to add")

    product_assets = product_sub.add_parser("list-assets", help="List the assets attached to a product version")
    _add_target(product_assets)
    product_assets.add_argument("-t", "--type", help=f"Filter assets by type (one of {', '.join(ASSET_TYPE_FILTERS)})")

    return p


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        cfg = load_config()
        d = asdict(cfg)
        d["token"] = redact_token(cfg.token)
        print(json.dumps(d, indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        new_cfg = Config(
            environment=args.environment if args.environment is not None else cfg.environment,
            host=args.host if args.host is not None else cfg.host,
            api_host=args.api_host if args.api_host is not None else cfg.api_host,
            storage_bucket=args.storage_bucket if args.storage_bucket is not None else cfg.storage_bucket,
            storage_region=args.storage_region if args.storage_region is not None else cfg.storage_region,
            token=args.token if args.token is not None else cfg.token,
            timeout_s=args.timeout_s if args.timeout_s is not None else cfg.timeout_s,
            auth_header=args.auth_header if args.auth_header is not None else cfg.auth_header,
        )
        path = save_config(new_cfg)
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def _render_attached(renderer: Renderer, kind: str, result: AttachResult) -> None:
    product = result.product
    number = result.version.number
    if kind == "chart":
        renderer.render_charts(product, number)
    elif kind == "image":
        renderer.render_container_images(product, number)
    elif kind == "vm":
        renderer.render_files(product, number)
    elif kind == "other":
        renderer.render_addon_files(product, number)
    else:
        renderer.render_metafiles(product, number)


def cmd_attach(args: argparse.Namespace, renderer: Renderer) -> int:
    request = AttachRequest(
        product=args.product,
        version=args.product_version or "",
        create_version=bool(getattr(args, "create_version", False)),
        instructions=getattr(args, "instructions", None) or "",
        pca_file=getattr(args, "pca_file", None),
    )
    with _make_marketplace(args) as store:
        attacher = AssetAttacher(store)
        if args.subcmd == "chart":
            result = attacher.attach_chart(request, args.chart)
        elif args.subcmd == "image":
            result = attacher.attach_container_image(
                request,
                args.image_repository,
                args.tag,
                args.tag_type,
                image_file=args.file,
            )
        elif args.subcmd == "vm":
            result = attacher.attach_vm(request, args.file)
        elif args.subcmd == "other":
            result = attacher.attach_other_file(request, args.file)
        elif args.subcmd == "metafile":
            result = attacher.attach_metafile(
                request,
                args.metafile,
                args.metafile_type,
                metafile_version=args.metafile_version,
            )
        else:
            raise AssertionError("unreachable")

    _render_attached(renderer, args.subcmd, result)
    return 0


def cmd_download(args: argparse.Namespace, renderer: Renderer) -> int:
    asset_type = validate_asset_type(args.type)
    with _make_marketplace(args) as store:
        product, version = store.get_product_with_version(args.product, args.product_version)
        assets = assets_by_type(asset_type, product, version.number)
        try:
            asset = select_asset(
                assets,
                asset_type,
                args.filter,
                product=product.slug,
                version=version.number,
            )
        except SelectionError as e:
            if e.candidates:
                renderer.render_assets(e.candidates)
            raise

        eula = product.eula
        if not args.accept_eula and not (eula and eula.signed):
            print("The EULA must be accepted before downloading", file=sys.stderr)
            if eula and eula.text:
                print(f"EULA: {eula.text}\n", file=sys.stderr)
            elif eula and eula.url:
                print(f"EULA: {eula.url}\n", file=sys.stderr)
            raise MarketplaceError("please review the EULA and re-run with --accept-eula")

        payload = replace(asset.download_request, eula_accepted=args.accept_eula)
        dest = store.download(args.filename or asset.filename, payload)

    print(f"Downloaded: {dest}")
    return 0


def cmd_product(args: argparse.Namespace, renderer: Renderer) -> int:
    asset_type = validate_asset_type(getattr(args, "type", None))
    with _make_marketplace(args) as store:
        if args.subcmd == "list":
            renderer.render_products(store.list_products(all_orgs=args.all_orgs, search=args.search_text))
            return 0
        if args.subcmd == "get":
            renderer.render_product(store.get_product(args.product))
            return 0
        if args.subcmd == "list-versions":
            renderer.render_versions(store.get_product(args.product))
            return 0
        if args.subcmd == "add-version":
            renderer.render_versions(AssetAttacher(store).add_version(args.product, args.product_version))
            return 0
        if args.subcmd == "list-assets":
            product, version = store.get_product_with_version(args.product, args.product_version)
            renderer.render_assets(assets_by_type(asset_type, product, version.number))
            return 0
    raise AssertionError("unreachable")


def _format_http_error(err: MarketplaceHTTPError) -> str:
    detail = err.body.strip()
    if err.status_code == 401:
        base = "HTTP 401 Unauthorized. Missing or invalid API token."
    elif err.status_code == 403:
        base = "HTTP 403 Forbidden. You are authenticated but not allowed to access this resource."
    elif err.status_code == 404:
        base = "HTTP 404 Not Found. Resource does not exist or is not visible to your account."
    else:
        base = f"HTTP {err.status_code}"
    if detail:
        return f"{base} {detail}"
    return base


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args)
    renderer = Renderer(args.output)
    try:
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd == "attach":
            return cmd_attach(args, renderer)
        if args.cmd == "download":
            return cmd_download(args, renderer)
        if args.cmd == "product":
            return cmd_product(args, renderer)
        raise AssertionError("unreachable")
    except MarketplaceHTTPError as e:
        print(f"error: {_format_http_error(e)}", file=sys.stderr)
        return 1
    except MarketplaceError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
