# tests/conftest.py

import copy

import pytest

from aeq_core import Bank, build_default_registry
from aeq_core.contract import clear_contract_cache

CATEGORY_CONTRACT = {
    "type": "object",
    "required": ["AnswerType"],
    "properties": {
        "AnswerType": {"type": "string"},
        "ThemeTag": {"type": ["string", "null"]},
        "Confidence": {"type": "number"},
        "RecommendedProbeID": {"type": ["string", "null"]},
        "GeneratedProbeText": {"type": ["string", "null"]},
    },
}

AEG_SCHEMA = {
    "SchemaID": "AEG_Test",
    "GuidanceVersion": "g1",
    "Engine": {"driverId": "aeq.aeg.v1"},
    "Ability": {"key": "alt"},
    "PolicyDefaults": {"TargetDistinctExplanations": 2},
    "ScoringSpec": {},
    "DriverConfig": {"AJ_System_Guidance": "Classify the answer."},
    "ProbePolicy": {"AllowGeneratedFor": ["RunsThroughA"]},
    "AJ_Contract_JsonSchema": CATEGORY_CONTRACT,
}

AEG_ITEM = {
    "ItemID": "AEG_1",
    "SchemaID": "AEG_Test",
    "Stem": "A goes with B. What else explains B?",
    "Content": {
        "ThemeRegistry": [{"ThemeID": "T1"}, {"ThemeID": "T2"}, {"ThemeID": "T3"}],
        "ProbeLibrary": {
            "Good": [{"id": "g1", "text": "Another one?"}],
            "NotSpecific": [{"id": "ns1", "text": "Be more specific."}],
            "NotClear": [{"id": "nc1", "text": "Say it again?"}],
            "NotDistinct": [{"id": "nd1", "text": "A different one?"}],
            "NotPlausible": [{"id": "np1", "text": "How would that work?"}],
        },
    },
}

NUMERIC_SCHEMA = {
    "SchemaID": "NUM_Test",
    "GuidanceVersion": "n1",
    "Engine": {"kind": "generic.numeric"},
    "Ability": {"keys": ["estimation"]},
    "ScoringSpec": {"target": 100, "mode": "log-error", "thresholds": {"full": 0.05}},
    "DriverConfig": {"Extraction": {"strategy": "either"}},
    "AJ_Contract_JsonSchema": True,
}

NUMERIC_ITEM = {"ItemID": "NUM_1", "SchemaID": "NUM_Test", "Stem": "Guess the number."}

SEQ_SCHEMA = {
    "SchemaID": "SEQ_Test",
    "GuidanceVersion": "s1",
    "Engine": {"kind": "bias.direction"},
    "ScoringSpec": {"TargetDistinctExplanations": 2},
    "PolicyDefaults": {"MaxConsecutiveFailedAttempts": 5, "MaxTotalFailedAttempts": 5},
    "DriverConfig": {
        "ProbeLibrary": {
            "OppositeFromPositive": [{"id": "opp_pos", "text": "Other direction?"}],
            "NotClear": [{"id": "clear", "text": "Restate?"}],
            "NotPlausible": [{"id": "plaus", "text": "How so?"}],
        }
    },
    "AJ_Contract_JsonSchema": CATEGORY_CONTRACT,
}

SEQ_ITEM = {"ItemID": "SEQ_1", "SchemaID": "SEQ_Test", "Stem": "How could the figure be biased?"}

OPEN_SCHEMA = {
    "SchemaID": "OPEN_Test",
    "GuidanceVersion": "o1",
    "Engine": {"driverId": "bias.direction.open.v1"},
    "PolicyDefaults": {"MaxTotalTurns": 3, "MaxConsecutiveFailedAttempts": 5, "MaxTotalFailedAttempts": 5},
    "DriverConfig": {},
    "AJ_Contract_JsonSchema": CATEGORY_CONTRACT,
}

OPEN_ITEM = {
    "ItemID": "OPEN_1",
    "SchemaID": "OPEN_Test",
    "Stem": "What does the comparison hide?",
    "Content": {
        "ProbeLibrary": {
            "NotSpecific": [{"id": "open_ns", "text": "What might it hide?"}],
            "MaskedBenefit_Only_Explained": [{"id": "fp_benefit", "text": "And the other side?"}],
        }
    },
}


@pytest.fixture(autouse=True)
def _fresh_contract_cache():
    clear_contract_cache()
    yield
    clear_contract_cache()


@pytest.fixture
def schema_dicts():
    return copy.deepcopy([AEG_SCHEMA, NUMERIC_SCHEMA, SEQ_SCHEMA, OPEN_SCHEMA])


@pytest.fixture
def item_dicts():
    return copy.deepcopy([AEG_ITEM, NUMERIC_ITEM, SEQ_ITEM, OPEN_ITEM])


@pytest.fixture
def bank(schema_dicts, item_dicts):
    return Bank.from_dicts(schema_dicts, item_dicts)


@pytest.fixture
def registry():
    return build_default_registry()
