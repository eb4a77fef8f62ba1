"""Tests for the topic analyzer: prompts, response parsing, caching and combining."""

import json
import os
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from mofa_stances.analysis.analyzer import (
    AnalysisError,
    analyze_all_topics,
    build_system_prompt,
    build_user_prompt,
    combine_topic_analyses,
    filename_timestamp,
    find_existing_topic_files,
    main,
    parse_topic_response,
    run_analysis,
    save_topic_analysis,
    slug_from_topic_filename,
    write_combined,
)
from mofa_stances.analysis.content import latest_content_dir, load_country_contents
from mofa_stances.analysis.llm_client import CompletionResult, LLMClient
from mofa_stances.config.settings import AnalysisConfig
from mofa_stances.models import CountryContent, TopicDefinition

MIDDLE_EAST = TopicDefinition("Middle East", "Israel, Palestine, Gaza, Iran")
CLIMATE = TopicDefinition("Climate Change", "Emissions, Paris Agreement")

TL_TEXT = "Testland strongly supports a two-state solution. Weather is nice."
TL_CONTENT = CountryContent("TL", TL_TEXT, "2026-10-19T08:00:00+00:00", "https://www.mfa.tl")


def model_reply(topic, countries):
    return json.dumps({"countryPositions": [{"topic": topic, "countries": countries}]})


def fake_client(*replies):
    client = MagicMock()
    client.model = "gpt-4o"
    client.complete_json.side_effect = [CompletionResult(text=r) for r in replies]
    return client


# =============================================================================
# Prompts
# =============================================================================

class TestPrompts:
    """Tests for prompt construction."""

    def test_system_prompt_mentions_topic_and_description(self):
        prompt = build_system_prompt(MIDDLE_EAST)

        assert "clear positions expressed by countries on Middle East" in prompt
        assert "Israel, Palestine, Gaza, Iran" in prompt
        assert '"topic": "Middle East"' in prompt
        assert "Use EXACT quotes" in prompt
        assert '"countryPositions"' in prompt

    def test_user_prompt_layout(self):
        contents = [CountryContent("AA", "alpha", "t"), CountryContent("BB", "beta", "t")]

        prompt = build_user_prompt(contents, max_chars=100)

        assert prompt == (
            "Analyze the following foreign ministry website content from 2 countries:\n\n"
            "--- AA ---\nalpha\n\n--- BB ---\nbeta"
        )

    def test_user_prompt_truncates_each_country(self):
        contents = [CountryContent("AA", "x" * 50, "t")]

        prompt = build_user_prompt(contents, max_chars=10)

        assert prompt.endswith("--- AA ---\n" + "x" * 10)


class TestFilenameTimestamp:
    """Tests for filename-safe timestamps."""

    def test_format(self):
        now = datetime(2026, 10, 19, 10, 0, 0, 123456, tzinfo=timezone.utc)
        assert filename_timestamp(now) == "2026-10-19T10-00-00-123Z"

    def test_slug_roundtrip_from_filename(self):
        assert slug_from_topic_filename("topic_middle_east_2026-10-19T10-00-00-123Z.json") == "middle_east"
        assert slug_from_topic_filename("combined_analysis_2026.json") is None
        assert slug_from_topic_filename("topic_.json") is None


# =============================================================================
# Response parsing
# =============================================================================

class TestParseTopicResponse:
    """Tests for parse_topic_response."""

    def test_valid_response(self):
        raw = model_reply("Middle East", [{"TL": {
            "exact_quote": "strongly supports a two-state solution",
            "summarised_stance_in_english": "Supports two states",
            "relevance_to_topic": 0.9,
            "clarity_of_stance": "0.85",
        }}])

        result = parse_topic_response(raw, MIDDLE_EAST, [TL_CONTENT])

        assert result.topic == "Middle East"
        assert len(result.countries) == 1
        position = result.countries[0]
        assert position.country_code == "TL"
        assert position.relevance_score == 0.9
        assert position.clarity_score == 0.85
        assert result.source_data_timestamp == "2026-10-19T08:00:00+00:00"
        assert "scraped on 2026-10-19" in result.data_context

    def test_scores_clamped(self):
        raw = model_reply("Middle East", [{"TL": {
            "exact_quote": "q", "relevance_to_topic": 3, "clarity_of_stance": -1,
        }}])

        position = parse_topic_response(raw, MIDDLE_EAST, [TL_CONTENT]).countries[0]

        assert position.relevance_score == 1.0
        assert position.clarity_score == 0.0

    def test_non_json_degrades(self):
        raw = "Sorry, I cannot help with that." + "!" * 300

        result = parse_topic_response(raw, MIDDLE_EAST, [TL_CONTENT])

        assert result.countries == []
        assert result.data_context.startswith("Analysis failed - JSON parsing error. Raw response: Sorry")
        assert result.data_context.endswith("...")
        assert len(result.data_context) == len("Analysis failed - JSON parsing error. Raw response: ") + 200 + 3

    def test_wrong_shape_degrades_with_raw_reply(self):
        raw = json.dumps({"positions": [{"TL": {"exact_quote": "two-state"}}]})

        result = parse_topic_response(raw, MIDDLE_EAST, [TL_CONTENT])

        assert result.countries == []
        assert result.topic == "Middle East"
        assert result.data_context == f"Analysis failed - response schema error. Raw response: {raw}..."

    def test_json_array_reply_degrades(self):
        result = parse_topic_response("[1, 2, 3]", MIDDLE_EAST, [TL_CONTENT])

        assert result.countries == []
        assert result.data_context.startswith("Analysis failed - response schema error. Raw response: [1, 2, 3]")

    def test_empty_country_list_is_not_degraded(self):
        result = parse_topic_response(model_reply("Middle East", []), MIDDLE_EAST, [TL_CONTENT])

        assert result.countries == []
        assert result.data_context.startswith("Analysis of Middle East based on 1 foreign ministry websites")

    def test_malformed_entries_skipped(self):
        raw = model_reply("Middle East", [
            "not an object",
            {"AA": {"summarised_stance_in_english": "no quote"}},
            {"TL": {"exact_quote": "two-state"}},
        ])

        result = parse_topic_response(raw, MIDDLE_EAST, [TL_CONTENT])

        assert [p.country_code for p in result.countries] == ["TL"]

    def test_no_contents_uses_analysis_time_as_source(self):
        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        result = parse_topic_response(model_reply("Middle East", []), MIDDLE_EAST, [], now=now)
        assert result.source_data_timestamp == now.isoformat()


# =============================================================================
# Topic files and caching
# =============================================================================

class TestTopicFiles:
    """Tests for writing, finding and skipping topic files."""

    def test_save_verifies_quotes(self, tmp_path):
        raw = model_reply("Middle East", [
            {"TL": {"exact_quote": "strongly supports a two-state solution"}},
            {"XX": {"exact_quote": "something"}},
        ])
        result = parse_topic_response(raw, MIDDLE_EAST, [TL_CONTENT])
        now = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)

        path = save_topic_analysis(result, [TL_CONTENT], tmp_path, now=now)

        assert path.name == "topic_middle_east_2026-10-19T10-00-00-000Z.json"
        stored = json.loads(path.read_text(encoding="utf-8"))
        assert stored["countries"][0]["TL"]["verification"] == "exact_match"
        assert stored["countries"][0]["TL"]["verified"] is True
        assert stored["countries"][0]["TL"]["source_url"] == "https://www.mfa.tl"
        assert stored["countries"][1]["XX"]["verification"] == "no_data"
        assert set(stored) == {"topic", "countries", "dataContext", "analysisTimestamp", "sourceDataTimestamp"}

    def test_newest_file_per_slug_wins(self, tmp_path):
        (tmp_path / "topic_middle_east_2026-10-18T00-00-00-000Z.json").write_text("{}")
        (tmp_path / "topic_middle_east_2026-10-19T00-00-00-000Z.json").write_text("{}")
        (tmp_path / "combined_analysis_2026-10-19T00-00-00-000Z.json").write_text("{}")

        existing = find_existing_topic_files(tmp_path)

        assert list(existing) == ["middle_east"]
        assert existing["middle_east"].name == "topic_middle_east_2026-10-19T00-00-00-000Z.json"

    def test_existing_topic_skipped_without_model_call(self, tmp_path):
        cached = tmp_path / "topic_middle_east_2026-10-18T00-00-00-000Z.json"
        cached.write_text(json.dumps({"topic": "Middle East", "countries": []}))
        client = fake_client(model_reply("Climate Change", []))

        files = analyze_all_topics(client, [TL_CONTENT], [MIDDLE_EAST, CLIMATE], tmp_path, 40_000)

        assert files[0] == cached
        assert files[1].name.startswith("topic_climate_change_")
        assert client.complete_json.call_count == 1
        system_prompt = client.complete_json.call_args.args[0]
        assert "Climate Change" in system_prompt

    def test_failed_model_call_does_not_stop_later_topics(self, tmp_path):
        client = MagicMock()
        client.model = "gpt-4o"
        client.complete_json.side_effect = [
            ConnectionError("API connection error"),
            CompletionResult(text=model_reply("Climate Change", [{"TL": {"exact_quote": "Weather is nice"}}])),
        ]

        files = analyze_all_topics(client, [TL_CONTENT], [MIDDLE_EAST, CLIMATE], tmp_path, 1000)

        assert client.complete_json.call_count == 2
        assert len(files) == 2
        assert files[0].name.startswith("failed_topic_middle_east_")
        failed = json.loads(files[0].read_text(encoding="utf-8"))
        assert failed["topic"] == "Middle East"
        assert failed["countries"] == []
        assert failed["dataContext"] == "Analysis failed - model request error: ConnectionError: API connection error"
        assert files[1].name.startswith("topic_climate_change_")
        stored = json.loads(files[1].read_text(encoding="utf-8"))
        assert stored["countries"][0]["TL"]["verification"] == "exact_match"

    def test_failed_topic_is_retried_next_run(self, tmp_path):
        failing = MagicMock()
        failing.model = "gpt-4o"
        failing.complete_json.side_effect = RuntimeError("rate limited")
        analyze_all_topics(failing, [TL_CONTENT], [MIDDLE_EAST], tmp_path, 1000)

        assert find_existing_topic_files(tmp_path) == {}

        client = fake_client(model_reply("Middle East", []))
        files = analyze_all_topics(client, [TL_CONTENT], [MIDDLE_EAST], tmp_path, 1000)

        assert client.complete_json.call_count == 1
        assert files[0].name.startswith("topic_middle_east_")

    def test_slug_collision_analyzed_once(self, tmp_path):
        a = TopicDefinition("Middle-East", "")
        b = TopicDefinition("Middle East", "")
        client = fake_client(model_reply("Middle-East", []))

        files = analyze_all_topics(client, [TL_CONTENT], [a, b], tmp_path, 100)

        assert client.complete_json.call_count == 1
        assert files[0] == files[1]


class TestCombine:
    """Tests for combining topic files."""

    def test_combined_structure(self, tmp_path):
        f1 = tmp_path / "topic_a_1.json"
        f2 = tmp_path / "topic_b_1.json"
        f1.write_text(json.dumps({"topic": "A", "countries": [{"TL": {"exact_quote": "x"}}], "dataContext": "c"}))
        f2.write_text(json.dumps({"topic": "B", "countries": []}))

        combined = combine_topic_analyses([f1, f2]).to_dict()

        assert combined["countryPositions"] == [
            {"topic": "A", "countries": [{"TL": {"exact_quote": "x"}}]},
            {"topic": "B", "countries": []},
        ]
        assert combined["topicAnalysisFiles"] == ["topic_a_1.json", "topic_b_1.json"]
        assert "2 topics" in combined["dataContext"]

    def test_unreadable_file_skipped(self, tmp_path):
        good = tmp_path / "topic_a_1.json"
        bad = tmp_path / "topic_b_1.json"
        good.write_text(json.dumps({"topic": "A", "countries": []}))
        bad.write_text("{not json")

        combined = combine_topic_analyses([good, bad])

        assert [block["topic"] for block in combined.country_positions] == ["A"]

    def test_write_combined_and_latest(self, tmp_path):
        combined = combine_topic_analyses([])
        latest = tmp_path / "data" / "latest-analysis.json"
        now = datetime(2026, 10, 19, tzinfo=timezone.utc)

        path = write_combined(combined, tmp_path / "results", str(latest), now=now)

        assert path.name == "combined_analysis_2026-10-19T00-00-00-000Z.json"
        assert json.loads(latest.read_text(encoding="utf-8")) == json.loads(path.read_text(encoding="utf-8"))


# =============================================================================
# Content loading
# =============================================================================

class TestContentLoading:
    """Tests for reading a scrape directory."""

    def test_metadata_and_failed_scrapes(self, tmp_path):
        (tmp_path / "TL.txt").write_text(TL_TEXT, encoding="utf-8")
        (tmp_path / "TL.json").write_text(json.dumps({
            "timestamp": "2026-10-19T08:00:00+00:00", "url": "https://www.mfa.tl", "success": True,
        }))
        (tmp_path / "ZZ.txt").write_text("Error: TimeoutError: boom", encoding="utf-8")
        (tmp_path / "ZZ.json").write_text(json.dumps({"success": False, "error": "TimeoutError: boom"}))
        (tmp_path / "QQ.txt").write_text("no metadata", encoding="utf-8")
        (tmp_path / "QQ.json").write_text("{broken")

        contents = load_country_contents(tmp_path)

        assert [c.code for c in contents] == ["QQ", "TL"]
        assert contents[1].timestamp == "2026-10-19T08:00:00+00:00"
        assert contents[1].source_url == "https://www.mfa.tl"
        assert contents[0].source_url == ""

    def test_include_failed(self, tmp_path):
        (tmp_path / "ZZ.txt").write_text("Error: x", encoding="utf-8")
        (tmp_path / "ZZ.json").write_text(json.dumps({"success": False}))

        assert [c.code for c in load_country_contents(tmp_path, include_failed=True)] == ["ZZ"]

    def test_latest_content_dir(self, tmp_path):
        for name in ("2026-10-01", "2026-10-19", "2026-09-30", "notes"):
            (tmp_path / name).mkdir()
        (tmp_path / "topic_a_1.json").write_text("{}")

        assert latest_content_dir(tmp_path).name == "2026-10-19"
        assert latest_content_dir(tmp_path / "missing") is None


# =============================================================================
# LLM client
# =============================================================================

class TestLLMClient:
    """Tests for the OpenAI wrapper."""

    def _response(self, content):
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content=content))]
        response.model = "gpt-4o-2024-08-06"
        response.usage = MagicMock(prompt_tokens=120, completion_tokens=30)
        return response

    def test_request_shape(self):
        openai_client = MagicMock()
        openai_client.chat.completions.create.return_value = self._response('{"ok": true}')
        client = LLMClient(api_key="sk-test", model="gpt-4o", temperature=0.1, max_tokens=10_000,
                           client=openai_client)

        result = client.complete_json("system", "user")

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 10_000
        assert kwargs["response_format"] == {"type": "json_object"}
        assert result.text == '{"ok": true}'
        assert result.prompt_tokens == 120
        assert result.completion_tokens == 30

    def test_empty_content_becomes_empty_object(self):
        openai_client = MagicMock()
        openai_client.chat.completions.create.return_value = self._response(None)
        client = LLMClient(api_key="sk-test", model="gpt-4o", client=openai_client)

        assert client.complete_json("s", "u").text == "{}"

    def test_api_error_propagates(self):
        openai_client = MagicMock()
        openai_client.chat.completions.create.side_effect = RuntimeError("rate limited")
        client = LLMClient(api_key="sk-test", model="gpt-4o", client=openai_client)

        with pytest.raises(RuntimeError):
            client.complete_json("s", "u")
        assert openai_client.chat.completions.create.call_count == 1


# =============================================================================
# End to end
# =============================================================================

class TestRunAnalysis:
    """Full analyzer run over a one-country scrape."""

    def _scrape_dir(self, root):
        scrape = root / "results" / "2026-10-19"
        scrape.mkdir(parents=True)
        (scrape / "TL.txt").write_text(TL_TEXT, encoding="utf-8")
        (scrape / "TL.json").write_text(json.dumps({
            "country": "Testland", "code": "TL", "url": "https://www.mfa.tl",
            "timestamp": "2026-10-19T08:00:00+00:00", "success": True,
        }))
        return scrape

    def test_testland_scenario(self, tmp_path):
        self._scrape_dir(tmp_path)
        config = AnalysisConfig(
            results_root=str(tmp_path / "results"),
            latest_path=str(tmp_path / "data" / "latest-analysis.json"),
            topics=(MIDDLE_EAST,),
        )
        client = fake_client(model_reply("Middle East", [{"TL": {
            "exact_quote": "strongly supports a two-state solution",
            "summarised_stance_in_english": "Supports a two-state solution",
            "relevance_to_topic": 0.95,
            "clarity_of_stance": 0.9,
        }}]))

        combined_path = run_analysis(config, client)

        user_prompt = client.complete_json.call_args.args[1]
        assert "--- TL ---\n" + TL_TEXT in user_prompt
        combined = json.loads(combined_path.read_text(encoding="utf-8"))
        entry = combined["countryPositions"][0]["countries"][0]["TL"]
        assert entry["verification"] == "exact_match"
        assert entry["verified"] is True
        assert entry["source_timestamp"] == "2026-10-19T08:00:00+00:00"
        assert len(combined["topicAnalysisFiles"]) == 1
        assert combined["topicAnalysisFiles"][0].startswith("topic_middle_east_")
        assert (tmp_path / "data" / "latest-analysis.json").exists()

        # Second run reuses the topic file
        rerun_client = fake_client()
        run_analysis(config, rerun_client)
        rerun_client.complete_json.assert_not_called()

    def test_model_failure_still_writes_combined(self, tmp_path):
        self._scrape_dir(tmp_path)
        config = AnalysisConfig(
            results_root=str(tmp_path / "results"),
            latest_path=str(tmp_path / "data" / "latest-analysis.json"),
            topics=(MIDDLE_EAST, CLIMATE),
        )
        client = MagicMock()
        client.model = "gpt-4o"
        client.complete_json.side_effect = [
            TimeoutError("Request timed out"),
            CompletionResult(text=model_reply("Climate Change", [])),
        ]

        combined_path = run_analysis(config, client)

        combined = json.loads(combined_path.read_text(encoding="utf-8"))
        assert [block["topic"] for block in combined["countryPositions"]] == ["Middle East", "Climate Change"]
        assert combined["topicAnalysisFiles"][0].startswith("failed_topic_middle_east_")
        assert (tmp_path / "data" / "latest-analysis.json").exists()

    def test_missing_scrape_dir(self, tmp_path):
        config = AnalysisConfig(results_root=str(tmp_path / "results"), topics=(MIDDLE_EAST,))
        with pytest.raises(AnalysisError):
            run_analysis(config, fake_client())

    def test_empty_scrape_dir(self, tmp_path):
        (tmp_path / "results" / "2026-10-19").mkdir(parents=True)
        config = AnalysisConfig(results_root=str(tmp_path / "results"), topics=(MIDDLE_EAST,))
        with pytest.raises(AnalysisError, match="No country texts"):
            run_analysis(config, fake_client())


class TestMain:
    """Tests for the analyzer CLI."""

    def test_missing_key_exits_before_any_work(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with patch("mofa_stances.analysis.analyzer.configure_logging") as configure:
            code = main([])

        assert code == 1
        assert "OPENAI_API_KEY" in capsys.readouterr().err
        configure.assert_not_called()
        assert os.listdir(tmp_path) == []

    def test_runs_with_key(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        with patch("mofa_stances.analysis.analyzer.LLMClient") as client_cls, \
                patch("mofa_stances.analysis.analyzer.run_analysis") as run:
            code = main(["--model", "gpt-4o-mini", "--max-chars", "500"])

        assert code == 0
        assert client_cls.call_args.kwargs["model"] == "gpt-4o-mini"
        config = run.call_args.args[0]
        assert config.max_chars_per_country == 500
        assert len(config.topics) == 8
