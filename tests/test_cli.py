import copy
import io
import json
import os
import unittest
from types import SimpleNamespace
from unittest.mock import patch

import yaml

from mkpcli.cli import _format_http_error, _merge_cfg, build_parser, main
from mkpcli.client import MarketplaceHTTPError
from mkpcli.config import Config
from mkpcli.models import EULADetails, Product, ProductDeploymentFile, Publisher, Version
from mkpcli.versions import resolve_version


class FakeStore:
    def __init__(self, product: Product) -> None:
        self.product = product
        self.downloads: list[tuple[str, object]] = []
        self.uploader_requests: list[str] = []
        self.submitted: list[tuple[Product, bool]] = []

    def __enter__(self) -> "FakeStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def get_product(self, slug: str) -> Product:
        return copy.deepcopy(self.product)

    def get_product_with_version(self, slug: str, version):
        product = self.get_product(slug)
        return product, resolve_version(product, version)

    def list_products(self, *, all_orgs: bool = False, search=None) -> list[Product]:
        return [self.get_product("")]

    def put_product(self, product: Product, is_version_update: bool) -> Product:
        self.submitted.append((product, is_version_update))
        return product

    def get_uploader(self, org_id: str):
        self.uploader_requests.append(org_id)
        raise AssertionError("no upload expected")

    def download(self, filename, payload):
        self.downloads.append((filename, payload))
        return filename


def _product(solution_type: str = "VMS", files=("disk.ova",), signed: bool = False) -> Product:
    return Product(
        product_id="prod-1",
        slug="my-product",
        display_name="My Product",
        solution_type=solution_type,
        publisher=Publisher(org_id="org-1", org_display_name="Acme"),
        eula=EULADetails(text="Be nice.", signed=signed),
        all_versions=[Version(number="1.0.0", status="ACTIVE"), Version(number="2.0.0", status="ACTIVE")],
        deployment_files=[ProductDeploymentFile(name=name, file_id=name, app_version="2.0.0") for name in files],
    )


def _run(argv: list[str], store: FakeStore) -> tuple[int, str, str]:
    with (
        patch("mkpcli.cli._make_marketplace", return_value=store),
        patch("sys.stdout", new=io.StringIO()) as stdout,
        patch("sys.stderr", new=io.StringIO()) as stderr,
    ):
        rc = main(argv)
    return rc, stdout.getvalue(), stderr.getvalue()


class TestParser(unittest.TestCase):
    def test_attach_chart_requires_instructions(self) -> None:
        with patch("sys.stderr", new=io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["attach", "chart", "-p", "my-product", "-c", "chart.tgz"])

    def test_global_flags(self) -> None:
        args = build_parser().parse_args(
            ["--csp-api-token", "tok", "-o", "yaml", "attach", "vm", "-p", "my-product", "--file", "disk.ova"]
        )
        self.assertEqual(args.csp_api_token, "tok")
        self.assertEqual(args.output, "yaml")
        self.assertEqual(args.product_version, "")
        self.assertFalse(args.create_version)


class TestMergeConfig(unittest.TestCase):
    def _args(self, **kwargs) -> SimpleNamespace:
        return SimpleNamespace(**{"csp_api_token": None, "host": None, "timeout_s": None, **kwargs})

    def test_flag_beats_env_beats_file(self) -> None:
        base = Config(token="from-file", host="file.example.com")
        with patch.dict(os.environ, {"MKPCLI_TOKEN": "from-env", "CSP_API_TOKEN": "from-csp-env"}):
            self.assertEqual(_merge_cfg(base, self._args(csp_api_token="from-flag")).token, "from-flag")
            self.assertEqual(_merge_cfg(base, self._args()).token, "from-env")

        with patch.dict(os.environ, {"CSP_API_TOKEN": "from-csp-env"}):
            os.environ.pop("MKPCLI_TOKEN", None)
            self.assertEqual(_merge_cfg(base, self._args()).token, "from-csp-env")

    def test_file_values_and_profile_defaults(self) -> None:
        base = Config(token="from-file", host="file.example.com")
        with patch.dict(os.environ, {"MARKETPLACE_ENV": ""}):
            for key in ("MKPCLI_TOKEN", "CSP_API_TOKEN", "MKPCLI_HOST", "MKPCLI_TIMEOUT_S"):
                os.environ.pop(key, None)
            cfg = _merge_cfg(base, self._args())
        self.assertEqual(cfg.token, "from-file")
        self.assertEqual(cfg.host, "file.example.com")
        self.assertEqual(cfg.api_host, "api.marketplace.cloud.vmware.com")


class TestAttachCommand(unittest.TestCase):
    def test_incompatible_solution_type_exits_1(self) -> None:
        store = FakeStore(_product(solution_type="OTHERS"))
        rc, _, err = _run(["attach", "vm", "-p", "my-product", "--file", "disk.ova"], store)

        self.assertEqual(rc, 1)
        self.assertEqual(err.strip(), "error: cannot attach a vm to my-product which is of type OTHERS")
        self.assertEqual(store.uploader_requests, [])
        self.assertEqual(store.submitted, [])

    def test_missing_version_exits_1(self) -> None:
        store = FakeStore(_product())
        rc, _, err = _run(["attach", "vm", "-p", "my-product", "-v", "9.9.9", "--file", "disk.ova"], store)
        self.assertEqual(rc, 1)
        self.assertIn('product "my-product" does not have a version 9.9.9', err)


class TestDownloadCommand(unittest.TestCase):
    def test_multiple_assets_lists_candidates(self) -> None:
        store = FakeStore(_product(files=("aaa.txt", "bbb.txt")))
        rc, out, err = _run(["download", "-p", "my-product"], store)

        self.assertEqual(rc, 1)
        self.assertIn("aaa.txt", out)
        self.assertIn("bbb.txt", out)
        self.assertIn(
            "error: product my-product 2.0.0 has multiple downloadable assets, please use the --filter parameter",
            err,
        )
        self.assertEqual(store.downloads, [])

    def test_unsigned_eula_requires_flag(self) -> None:
        store = FakeStore(_product())
        rc, _, err = _run(["download", "-p", "my-product"], store)

        self.assertEqual(rc, 1)
        self.assertIn("EULA: Be nice.", err)
        self.assertIn("error: please review the EULA and re-run with --accept-eula", err)
        self.assertEqual(store.downloads, [])

    def test_accept_eula_downloads_selected_asset(self) -> None:
        store = FakeStore(_product(files=("aaa.txt", "bbb.txt")))
        rc, out, _ = _run(["download", "-p", "my-product", "--filter", "bbb", "--accept-eula"], store)

        self.assertEqual(rc, 0)
        filename, payload = store.downloads[0]
        self.assertEqual(filename, "bbb.txt")
        self.assertTrue(payload.eula_accepted)
        self.assertEqual(payload.deployment_file_id, "bbb.txt")
        self.assertIn("Downloaded: bbb.txt", out)

    def test_signed_eula_and_custom_filename(self) -> None:
        store = FakeStore(_product(signed=True))
        rc, _, _ = _run(["download", "-p", "my-product", "-f", "out.ova"], store)

        self.assertEqual(rc, 0)
        filename, payload = store.downloads[0]
        self.assertEqual(filename, "out.ova")
        self.assertFalse(payload.eula_accepted)

    def test_unknown_type_fails_before_lookup(self) -> None:
        store = FakeStore(_product())
        with patch.object(store, "get_product_with_version") as lookup:
            rc, _, err = _run(["download", "-p", "my-product", "--type", "addon"], store)
        self.assertEqual(rc, 1)
        self.assertIn("Unknown asset type: addon", err)
        lookup.assert_not_called()


class TestProductCommands(unittest.TestCase):
    def test_list_versions_json_newest_first(self) -> None:
        rc, out, _ = _run(["-o", "json", "product", "list-versions", "-p", "my-product"], FakeStore(_product()))
        self.assertEqual(rc, 0)
        self.assertEqual([v["versionnumber"] for v in json.loads(out)], ["2.0.0", "1.0.0"])

    def test_add_version(self) -> None:
        store = FakeStore(_product())
        rc, out, _ = _run(["-o", "json", "product", "add-version", "-p", "my-product", "-v", "3.0.0"], store)

        self.assertEqual(rc, 0)
        submitted, is_version_update = store.submitted[0]
        self.assertTrue(is_version_update)
        self.assertEqual([v["versionnumber"] for v in json.loads(out)], ["3.0.0", "2.0.0", "1.0.0"])

    def test_add_existing_version_exits_1(self) -> None:
        store = FakeStore(_product())
        rc, _, err = _run(["product", "add-version", "-p", "my-product", "-v", "2.0.0"], store)

        self.assertEqual(rc, 1)
        self.assertEqual(err.strip(), 'error: product "my-product" already has version 2.0.0')
        self.assertEqual(store.submitted, [])

    def test_list_assets_yaml(self) -> None:
        rc, out, _ = _run(["-o", "yaml", "product", "list-assets", "-p", "my-product"], FakeStore(_product()))
        self.assertEqual(rc, 0)
        assets = yaml.safe_load(out)
        self.assertEqual(assets[0]["filename"], "disk.ova")
        self.assertEqual(assets[0]["type"], "VM")

    def test_list_human_table(self) -> None:
        rc, out, _ = _run(["product", "list"], FakeStore(_product()))
        self.assertEqual(rc, 0)
        self.assertIn("SLUG", out)
        self.assertIn("my-product", out)
        self.assertIn("2.0.0", out)
        self.assertIn("TOTAL COUNT: 1", out)

    def test_get_human(self) -> None:
        rc, out, _ = _run(["product", "get", "-p", "my-product"], FakeStore(_product()))
        self.assertEqual(rc, 0)
        self.assertIn("Slug:      my-product", out)
        self.assertIn("Publisher: Acme", out)


class TestConfigCommand(unittest.TestCase):
    def test_show_redacts_token(self) -> None:
        with (
            patch("mkpcli.cli.load_config", return_value=Config(token="tok_1234567890")),
            patch("sys.stdout", new=io.StringIO()) as stdout,
        ):
            rc = main(["config", "show"])
        self.assertEqual(rc, 0)
        shown = json.loads(stdout.getvalue())
        self.assertEqual(shown["token"], "tok_12...7890")


class TestFormatHttpError(unittest.TestCase):
    def test_401(self) -> None:
        msg = _format_http_error(MarketplaceHTTPError(status_code=401, body=""))
        self.assertEqual(msg, "HTTP 401 Unauthorized. Missing or invalid API token.")

    def test_other_status_includes_body(self) -> None:
        msg = _format_http_error(MarketplaceHTTPError(status_code=502, body="bad gateway"))
        self.assertEqual(msg, "HTTP 502 bad gateway")


if __name__ == "__main__":
    unittest.main()
