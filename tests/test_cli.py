# tests/test_cli.py

import json
import os

from aeq_core import KernelOptions, MemoryStore
from cli.bank_health import collect_health
from cli.bank_health import main as health_main
from cli.run_session import run_script_file, run_scripted

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data")


def test_scripted_session_completes_and_persists(bank, registry):
    store = MemoryStore()
    turns = [
        ("weather", {"AnswerType": "Good", "ThemeTag": "T1", "Confidence": 0.9}),
        ("tourism", {"AnswerType": "Good", "ThemeTag": "T2", "Confidence": 0.9}),
        ("never used", {"AnswerType": "Good", "ThemeTag": "T3", "Confidence": 0.9}),
    ]
    results = run_scripted(
        bank, registry, "AEG_Test", "AEG_1", turns,
        session=store.create("cli"), store=store, options=KernelOptions(clock=lambda: 0), verbose=False,
    )

    assert len(results) == 2
    assert results[-1].completed
    assert store.get("cli").unit.completed


def test_demo_script_file_runs_against_sample_bank():
    results = run_script_file(os.path.join(DATA_DIR, "scripts", "aeg_demo.json"), DATA_DIR)
    assert results[-1].completed
    assert results[-1].score.value == 1.0
    assert [r.decision.budget_signal for r in results] == ["neutral", "productive", "productive"]


def test_bank_health_reports_drivers_and_problems(tmp_path, schema_dicts, item_dicts):
    health = collect_health(DATA_DIR)
    assert health["ok"]
    assert {r["driver"] for r in health["schemas"]} == {
        "aeq.aeg.v1", "generic.numeric.v1", "bias.direction.sequential.v1", "bias.direction.open.v1",
    }
    assert {r["schema_id"]: r["contract"] for r in health["schemas"]}["Numeric_Estimate_v1"] == "object"

    schema_dicts[0]["Engine"] = {"kind": "no.such.kind"}
    (tmp_path / "schemas").mkdir()
    (tmp_path / "items").mkdir()
    (tmp_path / "schemas" / "s.json").write_text(json.dumps(schema_dicts), encoding="utf-8")
    (tmp_path / "items" / "i.json").write_text(json.dumps(item_dicts), encoding="utf-8")

    broken = collect_health(str(tmp_path))
    assert not broken["ok"]
    assert health_main([str(tmp_path)]) == 1


def test_bank_health_flags_non_object_engine(tmp_path, schema_dicts, item_dicts):
    schema_dicts[0]["Engine"] = "aeq.aeg.v1"
    (tmp_path / "schemas").mkdir()
    (tmp_path / "items").mkdir()
    (tmp_path / "schemas" / "s.json").write_text(json.dumps(schema_dicts), encoding="utf-8")
    (tmp_path / "items" / "i.json").write_text(json.dumps(item_dicts), encoding="utf-8")

    health = collect_health(str(tmp_path))
    assert not health["ok"]
    assert any(p.startswith("AEG_Test: ⚠️") for p in health["problems"])
