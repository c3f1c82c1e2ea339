import io
import tarfile
import tempfile
import unittest
from pathlib import Path

import httpx

from mkpcli.charts import ChartLoadError, download_chart, load_chart
from mkpcli.client import MarketplaceClient


def _chart_archive(files: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


CHART_YAML = "apiVersion: v2\nname: mychart\nversion: 0.1.0\nappVersion: 1.2.3\n"


class TestLoadChart(unittest.TestCase):
    def test_packaged_chart_uses_top_level_metadata(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "mychart-0.1.0.tgz"
            path.write_bytes(
                _chart_archive(
                    {
                        "mychart/charts/sub/Chart.yaml": "name: sub\nversion: 9.9.9\n",
                        "mychart/Chart.yaml": CHART_YAML,
                        "mychart/values.yaml": "replicas: 1\n",
                    }
                )
            )
            chart = load_chart(path)

        self.assertEqual(chart.version, "0.1.0")
        self.assertEqual(chart.repo.name, "mychart")
        self.assertFalse(chart.is_external_url)

    def test_chart_directory(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "Chart.yaml").write_text(CHART_YAML, encoding="utf-8")
            chart = load_chart(td)
        self.assertEqual((chart.repo.name, chart.version), ("mychart", "0.1.0"))

    def test_missing_version(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "Chart.yaml").write_text("name: mychart\n", encoding="utf-8")
            with self.assertRaises(ChartLoadError) as ctx:
                load_chart(td)
        self.assertIn("version", str(ctx.exception))

    def test_archive_without_metadata(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "empty.tgz"
            path.write_bytes(_chart_archive({"mychart/values.yaml": "a: 1\n"}))
            with self.assertRaises(ChartLoadError):
                load_chart(path)

    def test_not_an_archive(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "chart.tgz"
            path.write_text("definitely not gzip", encoding="utf-8")
            with self.assertRaises(ChartLoadError):
                load_chart(path)

    def test_missing_path(self) -> None:
        with self.assertRaises(ChartLoadError):
            load_chart("/nonexistent/mychart.tgz")


class TestDownloadChart(unittest.TestCase):
    def test_remote_chart_is_loaded_and_marked_external(self) -> None:
        url = "https://charts.example.com/mychart-0.1.0.tgz"
        archive = _chart_archive({"mychart/Chart.yaml": CHART_YAML})

        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(str(request.url), url)
            return httpx.Response(200, content=archive)

        client = MarketplaceClient(host="gtw.example.com", token="tok_123")
        client._http = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)  # type: ignore[attr-defined]
        try:
            chart = download_chart(client, url)
        finally:
            client.close()

        self.assertEqual(chart.version, "0.1.0")
        self.assertTrue(chart.is_external_url)
        self.assertEqual(chart.helm_tar_url, url)


if __name__ == "__main__":
    unittest.main()
