"""Tests for the pipeline facade, file export and the CLI."""

import json

import pytest

import cli
from config import get_settings
from core.model_client import MockModelClient
from exceptions import ProtocolNotFoundError
from models import GenerationRequest, SafetyRating, SafetyValidationRequest
from pipeline import ProtocolPipeline, create_pipeline, save_protocol_to_file


@pytest.fixture
def pipeline(settings):
    return ProtocolPipeline(settings=settings, model_client=MockModelClient())


def test_generate_and_validate_share_one_client(pipeline, protocol_doc):
    protocol = pipeline.generate(GenerationRequest(category="longevity", duration=30))
    pipeline.protocol_directory.add_protocol("proto-1", protocol_doc["config"])
    pipeline.protocol_directory.assign("cust-1", "proto-1")

    result = pipeline.validate_safety(SafetyValidationRequest(
        protocol_id="proto-1", customer_id="cust-1", medications=["warfarin"]
    ))

    assert protocol.duration == 30
    assert result.safety_rating == SafetyRating.CONTRAINDICATED
    assert pipeline.generator.model_client is pipeline.safety.model_client
    assert pipeline.model_client.call_count == 2


async def test_async_operations(pipeline, protocol_doc):
    protocols = await pipeline.agenerate_batch([
        GenerationRequest(duration=7),
        GenerationRequest(duration=14),
    ])
    assert [p.duration for p in protocols] == [7, 14]

    pipeline.protocol_directory.add_protocol("proto-1", protocol_doc["config"])
    pipeline.protocol_directory.assign("cust-1", "proto-1")
    await pipeline.avalidate_safety(SafetyValidationRequest(protocol_id="proto-1", customer_id="cust-1"))
    await pipeline.aupdate_customer_medical_info("cust-1", medications=["insulin"])

    history = await pipeline.acustomer_history("cust-1")
    assert len(history) == 2

    request = await pipeline.aparse_request("a simple month of healthy eating")
    assert request.duration == 30


def test_unknown_protocol_surfaces(pipeline):
    with pytest.raises(ProtocolNotFoundError):
        pipeline.validate_safety(SafetyValidationRequest(protocol_id="nope", customer_id="c"))


def test_create_pipeline_with_mock(settings):
    pipeline = create_pipeline(settings=settings, use_mock=True)
    assert isinstance(pipeline.model_client, MockModelClient)


def test_save_protocol_to_file(pipeline, tmp_path):
    protocol = pipeline.generate(GenerationRequest(category="parasite-cleanse", duration=14))

    saved = save_protocol_to_file(protocol, str(tmp_path / "out"))

    with open(saved["json"]) as f:
        data = json.load(f)
    assert data["category"] == "parasite-cleanse"
    assert data["metadata"]["difficultyScore"] == protocol.metadata.difficulty_score
    assert "dietaryGuidelines" in data["recommendations"]

    with open(saved["summary"]) as f:
        summary = f.read()
    assert summary.startswith(protocol.name)
    assert "[CRITICAL]" in summary


class TestCli:

    @pytest.fixture(autouse=True)
    def fresh_settings(self, monkeypatch):
        monkeypatch.setenv("PROTOCOLFORGE_CACHE_BACKEND", "memory")
        monkeypatch.setenv("PROTOCOLFORGE_BATCH_DELAY_SECONDS", "0")
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_generate_json(self, capsys):
        exit_code = cli.main([
            "generate", "--duration", "21", "--category", "longevity",
            "--mock", "--no-save", "--json", "--quiet",
        ])

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["duration"] == 21
        assert data["recommendations"]["precautions"][0]["severity"] == "critical"

    def test_generate_saves_files(self, tmp_path):
        exit_code = cli.main([
            "generate", "--duration", "10", "--mock", "--quiet", "--output", str(tmp_path),
        ])

        assert exit_code == 0
        assert len(list(tmp_path.glob("*.json"))) == 1
        assert len(list(tmp_path.glob("*_summary.txt"))) == 1

    def test_batch_partial(self, tmp_path, capsys):
        requests_file = tmp_path / "requests.json"
        requests_file.write_text(json.dumps([{"duration": 7}, {"duration": 14, "intensity": "gentle"}]))

        exit_code = cli.main([
            "batch", str(requests_file), "--partial", "--mock", "--json", "--quiet",
            "--output", str(tmp_path / "out"),
        ])

        assert exit_code == 0
        report = json.loads(capsys.readouterr().out)
        assert [entry["status"] for entry in report] == ["completed", "completed"]

    def test_safety(self, tmp_path, capsys, protocol_doc):
        protocol_file = tmp_path / "detox.json"
        protocol_file.write_text(json.dumps(protocol_doc["config"]))

        exit_code = cli.main([
            "safety", str(protocol_file), "--medication", "metformin", "--mock", "--json", "--quiet",
        ])

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["protocolId"] == "detox"
        assert data["safetyRating"] == "contraindicated"

    def test_batch_file_must_hold_list(self, tmp_path):
        requests_file = tmp_path / "requests.json"
        requests_file.write_text(json.dumps({"duration": 7}))

        assert cli.main(["batch", str(requests_file), "--mock", "--quiet"]) == 1

    def test_parse(self, capsys):
        exit_code = cli.main(["parse", "a month of healthy eating", "--mock", "--json", "--quiet"])

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["naturalLanguagePrompt"] == "a month of healthy eating"
