"""Tests for the command line entry points."""

import json
import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from click.testing import CliRunner
from conftest import make_body

from topicfeed import check_sources, orchestrator

BUNDLED_TENANTS = Path(__file__).parent.parent / "tenants.yaml"


@pytest.fixture
def cli_settings(settings, monkeypatch):
    """Point both CLIs at the test database and a copy of the bundled tenants."""
    shutil.copy(BUNDLED_TENANTS, settings.tenants_file)
    monkeypatch.setattr(orchestrator, "get_settings", lambda: settings)
    monkeypatch.setattr(check_sources, "get_settings", lambda: settings)
    return settings


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def articles_file(temp_dir) -> Path:
    published = (datetime.now(UTC) - timedelta(hours=2)).isoformat()
    items = [
        {
            "title": "Eastbourne council approves seafront plan",
            "body": make_body("Eastbourne council members debated the seafront budget near Beachy Head."),
            "source_url": "https://www.example.com/news/seafront-plan?utm_source=rss",
            "author": "Jane Reporter",
            "image_url": "https://example.com/img/seafront.jpg",
            "published_at": published,
        },
        {"body": "Untitled teaser.", "source_url": "https://www.example.com/news/untitled"},
    ]
    path = temp_dir / "articles.json"
    path.write_text(json.dumps(items))
    return path


def test_add_source_and_ingest(runner, cli_settings, articles_file):
    result = runner.invoke(orchestrator.cli, [
        "add-source", "--name", "Herald", "--feed-url", "https://herald.example/feed", "--method", "rss",
    ])
    assert result.exit_code == 0, result.output
    assert "Source 1 (Herald)" in result.output

    result = runner.invoke(orchestrator.cli, [
        "ingest", str(articles_file), "--tenant", "eastbourne", "--source", "1", "--json",
    ])
    assert result.exit_code == 0, result.output

    data = json.loads(result.output)
    assert data["received"] == 2
    assert data["admitted"] == 1
    assert data["links_created"] == 1
    assert data["processed"] == 1
    assert len(data["errors"]) == 1
    assert data["errors"][0]["category"] == "input"


def test_ingest_table_output(runner, cli_settings, articles_file):
    result = runner.invoke(orchestrator.cli, ["ingest", str(articles_file), "--tenant", "eastbourne"])

    assert result.exit_code == 0, result.output
    assert "Ingestion summary for eastbourne" in result.output
    assert "links created" in result.output


def test_ingest_unknown_tenant_fails(runner, cli_settings, articles_file):
    result = runner.invoke(orchestrator.cli, ["ingest", str(articles_file), "--tenant", "atlantis"])
    assert result.exit_code == 1


def test_ingest_unknown_source_fails(runner, cli_settings, articles_file):
    result = runner.invoke(orchestrator.cli, [
        "ingest", str(articles_file), "--tenant", "eastbourne", "--source", "42",
    ])
    assert result.exit_code == 1


def test_cleanup_and_dedupe(runner, cli_settings):
    result = runner.invoke(orchestrator.cli, ["cleanup", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "Stale links discarded: 0" in result.output

    result = runner.invoke(orchestrator.cli, ["cleanup"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(orchestrator.cli, ["dedupe-stories", "--tenant", "eastbourne", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "0 stories checked" in result.output


def test_validate_config(runner, cli_settings):
    result = runner.invoke(orchestrator.cli, ["validate-config"])
    assert result.exit_code == 0
    assert "Configuration is valid" in result.output


def test_check_sources_json(runner, cli_settings):
    runner.invoke(orchestrator.cli, [
        "add-source", "--name", "Dead", "--feed-url", "https://dead.example/feed", "--method", "rss",
    ])

    result = runner.invoke(check_sources.main, ["--no-apply", "--json"])
    assert result.exit_code == 0, result.output

    data = json.loads(result.output)
    assert data["summary"]["total"] == 1
    assert data["sources"][0]["action"] == "none"
    assert data["sources"][0]["applied"] is False


def test_check_sources_table(runner, cli_settings):
    result = runner.invoke(check_sources.main, ["--no-apply"])
    assert result.exit_code == 0, result.output
    assert "Source Health Summary" in result.output
