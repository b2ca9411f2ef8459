# tests/test_path_driver.py

import random

import pytest

from aeq_core.drivers import BiasDirectionOpenDriver
from aeq_core.drivers.bias_open import BENEFIT_ONLY, BOTH, DEFAULT_PATH_SCORES, HARM_ONLY, decide_path, path_scores
from aeq_core.schema import ItemDefinition, SchemaDefinition, TurnInput

from conftest import OPEN_ITEM, OPEN_SCHEMA

NS = "NotSpecific"


@pytest.mark.parametrize(
    "seq, expected",
    [
        ([BOTH], "P1_Spontaneous_Both"),
        ([NS, BOTH], "P2_GP_Both"),
        ([BENEFIT_ONLY, HARM_ONLY], "P3_Spontaneous_One_FP_Success"),
        ([NS, HARM_ONLY, BOTH], "P4_GP_One_FP_Success"),
        ([HARM_ONLY, NS], "P5_Spontaneous_One_FP_Fail"),
        ([NS, BENEFIT_ONLY, NS], "P6_GP_One_FP_Fail"),
        ([NS, NS, NS], "P7_None_Ever"),
    ],
)
def test_decide_path_table(seq, expected):
    path, score = decide_path(seq, DEFAULT_PATH_SCORES, 3)
    assert path == expected
    assert score == DEFAULT_PATH_SCORES[expected]


def test_undecided_paths():
    assert decide_path([], DEFAULT_PATH_SCORES, 3) is None
    assert decide_path([NS], DEFAULT_PATH_SCORES, 3) is None
    assert decide_path([BENEFIT_ONLY], DEFAULT_PATH_SCORES, 3) is None


def test_path_map_overrides_scores():
    scores = path_scores({"PathMap": [{"PathID": "P1_Spontaneous_Both", "Score": 3}]})
    assert scores["P1_Spontaneous_Both"] == 3.0
    assert scores["P7_None_Ever"] == -2.5


class OpenRunner:
    def __init__(self, schema_dict=OPEN_SCHEMA):
        self.driver = BiasDirectionOpenDriver()
        self.schema = SchemaDefinition.from_dict(schema_dict)
        self.item = ItemDefinition.from_dict(OPEN_ITEM)
        self.state = self.driver.init_state(self.schema, self.item)

    def turn(self, answer_type):
        d = self.driver.apply_turn(
            TurnInput(
                schema=self.schema,
                item=self.item,
                state=self.state,
                judge=self.driver.parse_judge_output({"AnswerType": answer_type}, self.schema, self.item),
                user_text="...",
                policy=self.schema.policy_defaults,
                scoring=self.schema.scoring_spec,
                rng=random.Random(0),
            )
        )
        self.state = d.new_state
        return d


def test_spontaneous_both_completes_immediately():
    d = OpenRunner().turn(BOTH)
    assert d.completed
    assert d.score.value == 2.0
    assert d.score.label == "path_dependent"
    assert d.score.components == {"path_id": "P1_Spontaneous_Both"}
    assert d.budget_signal == "productive"
    assert d.probe is None
    assert d.credited == 0.0


def test_one_side_then_follow_up_success():
    r = OpenRunner()
    first = r.turn(BENEFIT_ONLY)
    assert not first.completed
    assert first.probe.id == "fp_benefit"
    assert first.budget_signal == "neutral"

    second = r.turn(HARM_ONLY)
    assert second.completed
    assert second.score.value == pytest.approx(0.8)


def test_guided_prompt_path_uses_not_specific_probe():
    r = OpenRunner()
    first = r.turn("Neither_Explained_Sufficiently")
    assert first.probe.id == "open_ns"
    assert first.budget_signal == "neutral"
    assert r.state["seq"] == [NS]

    second = r.turn(BOTH)
    assert second.score.components["path_id"] == "P2_GP_Both"


def test_follow_up_fail_is_negative_and_unproductive():
    r = OpenRunner()
    r.turn(HARM_ONLY)
    d = r.turn(NS)
    assert d.completed
    assert d.score.value == pytest.approx(-0.2)
    assert d.budget_signal == "unproductive"


def test_never_explained_hits_turn_cap():
    r = OpenRunner()
    signals = [r.turn(NS).budget_signal for _ in range(2)]
    assert signals == ["neutral", "unproductive"]
    last = r.turn(NS)
    assert last.completed
    assert last.score.components["path_id"] == "P7_None_Ever"
    assert last.score.value == -2.5


def test_off_path_answers_stay_out_of_sequence():
    r = OpenRunner()
    d = r.turn("NotRelevant")
    assert d.budget_signal == "unproductive"
    assert r.state["seq"] == []

    clear = r.turn("NotClear")
    assert clear.budget_signal == "neutral"
    assert r.turn("NotClear").budget_signal == "unproductive"
    assert r.state["seq"] == []


def test_migrate_converts_legacy_sequence():
    driver = BiasDirectionOpenDriver()
    migrated = driver.migrate_state({"seq": [{"t": BOTH, "at": 1700000000}, "NotRelevant", NS], "pathId": "P1_Spontaneous_Both"})
    assert migrated["seq"] == [BOTH, NS]
    assert migrated["path_id"] == "P1_Spontaneous_Both"
    assert driver.migrate_state(migrated) == migrated
