"""Tests for the Playwright page aggregator, using a fake async browser."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from mofa_stances.config.settings import ScrapeConfig
from mofa_stances.ingest.aggregator import (
    EXTRACT_TEXT_JS,
    USER_AGENT,
    aggregate,
    results_dir_for,
    scrape_country,
    write_artifacts,
)
from mofa_stances.ingest.pool import BatchRunner
from mofa_stances.models import CountryRecord


def make_page(text="Minister welcomes  ceasefire.", html="<html><body>x</body></html>", goto_error=None):
    page = MagicMock()
    page.goto = AsyncMock(side_effect=goto_error)
    page.wait_for_timeout = AsyncMock()
    page.content = AsyncMock(return_value=html)
    page.evaluate = AsyncMock(return_value=text)
    page.close = AsyncMock()
    return page


def make_browser(pages):
    """Browser whose new_page() hands out the given pages in order."""
    browser = MagicMock()
    browser.new_page = AsyncMock(side_effect=list(pages))
    return browser


JAPAN = CountryRecord("Japan", "JP", "https://www.mofa.go.jp", "200")
FRANCE = CountryRecord("France", "FR", "https://www.diplomatie.gouv.fr", "200")


class TestResultsDir:
    """Tests for results_dir_for."""

    def test_dated_directory_created(self, tmp_path):
        now = datetime(2026, 10, 19, 23, 59, tzinfo=timezone.utc)
        path = results_dir_for(str(tmp_path / "results"), now=now)

        assert path == tmp_path / "results" / "2026-10-19"
        assert path.is_dir()


class TestScrapeCountry:
    """Tests for scrape_country."""

    def test_success_writes_three_artifacts(self, tmp_path):
        page = make_page(text="Hello world")
        browser = make_browser([page])

        meta = asyncio.run(scrape_country(browser, JAPAN, ScrapeConfig(), tmp_path))

        assert meta.success is True
        assert meta.content_length == len("Hello world")
        assert (tmp_path / "JP.txt").read_text(encoding="utf-8") == "Hello world"
        assert (tmp_path / "JP.html").read_text(encoding="utf-8") == "<html><body>x</body></html>"
        stored = json.loads((tmp_path / "JP.json").read_text(encoding="utf-8"))
        assert stored["success"] is True
        assert stored["code"] == "JP"
        assert stored["url"] == "https://www.mofa.go.jp"
        assert "error" not in stored
        assert stored["contentLength"] == 11

    def test_navigation_options(self, tmp_path):
        page = make_page()
        browser = make_browser([page])

        asyncio.run(scrape_country(browser, JAPAN, ScrapeConfig(timeout_ms=12345), tmp_path))

        assert browser.new_page.call_args.kwargs["user_agent"] == USER_AGENT
        page.goto.assert_awaited_once_with(
            "https://www.mofa.go.jp", wait_until="networkidle", timeout=12345
        )
        page.evaluate.assert_awaited_once_with(EXTRACT_TEXT_JS)
        page.wait_for_timeout.assert_not_awaited()
        page.close.assert_awaited_once()

    def test_dynamic_wait_and_no_html(self, tmp_path):
        page = make_page()
        config = ScrapeConfig(dynamic_wait_ms=2000, save_html=False)

        asyncio.run(scrape_country(make_browser([page]), JAPAN, config, tmp_path))

        page.wait_for_timeout.assert_awaited_once_with(2000)
        page.content.assert_not_awaited()
        assert not (tmp_path / "JP.html").exists()
        assert (tmp_path / "JP.txt").exists()

    def test_navigation_failure_recorded(self, tmp_path):
        page = make_page(goto_error=TimeoutError("Timeout 30000ms exceeded"))

        meta = asyncio.run(scrape_country(make_browser([page]), JAPAN, ScrapeConfig(), tmp_path))

        assert meta.success is False
        assert meta.error == "TimeoutError: Timeout 30000ms exceeded"
        assert (tmp_path / "JP.txt").read_text(encoding="utf-8") == "Error: TimeoutError: Timeout 30000ms exceeded"
        assert not (tmp_path / "JP.html").exists()
        stored = json.loads((tmp_path / "JP.json").read_text(encoding="utf-8"))
        assert stored["success"] is False
        assert stored["error"].startswith("TimeoutError")
        page.close.assert_awaited_once()

    def test_new_page_failure_recorded(self, tmp_path):
        browser = MagicMock()
        browser.new_page = AsyncMock(side_effect=RuntimeError("browser has been closed"))

        meta = asyncio.run(scrape_country(browser, JAPAN, ScrapeConfig(), tmp_path))

        assert meta.success is False
        assert "browser has been closed" in meta.error

    def test_artifacts_written_off_event_loop(self, tmp_path):
        page = make_page(text="Hello world")
        calls = []

        async def fake_to_thread(func, *args):
            calls.append(func)
            return func(*args)

        with patch("mofa_stances.ingest.aggregator.asyncio.to_thread", side_effect=fake_to_thread):
            asyncio.run(scrape_country(make_browser([page]), JAPAN, ScrapeConfig(), tmp_path))

        assert calls == [write_artifacts]
        assert (tmp_path / "JP.txt").read_text(encoding="utf-8") == "Hello world"

    def test_empty_body_text(self, tmp_path):
        page = make_page(text=None)

        meta = asyncio.run(scrape_country(make_browser([page]), JAPAN, ScrapeConfig(), tmp_path))

        assert meta.success is True
        assert (tmp_path / "JP.txt").read_text(encoding="utf-8") == ""


class TestAggregate:
    """Tests for aggregate across a batch."""

    def test_one_failure_does_not_affect_others(self, tmp_path):
        pages = [make_page(text="Japan text"), make_page(goto_error=RuntimeError("net::ERR_NAME_NOT_RESOLVED"))]
        browser = make_browser(pages)
        runner = BatchRunner(batch_size=2)

        results = asyncio.run(aggregate([JAPAN, FRANCE], ScrapeConfig(), browser, tmp_path, runner=runner))

        by_code = {r.code: r for r in results}
        assert by_code["JP"].success is True
        assert by_code["FR"].success is False
        assert (tmp_path / "JP.txt").read_text(encoding="utf-8") == "Japan text"
        assert (tmp_path / "FR.txt").read_text(encoding="utf-8").startswith("Error: RuntimeError")
        assert browser.new_page.await_count == 2

    def test_worker_exception_becomes_failed_metadata(self, tmp_path):
        browser = make_browser([make_page()])
        # Artifact directory does not exist, so writing fails inside the worker
        missing = tmp_path / "not-created"
        runner = BatchRunner(batch_size=1)

        results = asyncio.run(aggregate([JAPAN], ScrapeConfig(), browser, missing, runner=runner))

        assert len(results) == 1
        assert results[0].success is False
        assert results[0].code == "JP"
        assert results[0].error
