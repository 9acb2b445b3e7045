import pytest

from corsproxy.gate.help_text import load_help_text, show_usage


@pytest.fixture(autouse=True)
def clear_help_cache():
    load_help_text.cache_clear()
    yield
    load_help_text.cache_clear()


class TestShowUsage:
    def test_plain_text(self, tmp_path):
        help_file = tmp_path / "help.txt"
        help_file.write_text("usage")
        response = show_usage(str(help_file), {"access-control-allow-origin": "*"})
        assert response.status_code == 200
        assert response.body == b"usage"
        assert response.headers["content-type"] == "text/plain"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_html(self, tmp_path):
        help_file = tmp_path / "help.html"
        help_file.write_text("<p>usage</p>")
        response = show_usage(str(help_file), {})
        assert response.headers["content-type"] == "text/html"

    def test_document_is_read_once(self, tmp_path):
        help_file = tmp_path / "help.txt"
        help_file.write_text("first")
        show_usage(str(help_file), {})
        help_file.write_text("second")
        assert show_usage(str(help_file), {}).body == b"first"

    def test_unreadable_file(self, tmp_path):
        help_file = str(tmp_path / "missing.txt")
        response = show_usage(help_file, {"access-control-allow-origin": "*"})
        assert response.status_code == 500
        assert response.body == b""
        assert response.headers["access-control-allow-origin"] == "*"

        # Failures are not cached
        (tmp_path / "missing.txt").write_text("now here")
        assert show_usage(help_file, {}).body == b"now here"
