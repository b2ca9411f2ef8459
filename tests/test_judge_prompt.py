# tests/test_judge_prompt.py

from aeq_ai.judge_prompt import STRICT_JSON_RULES, TurnContext, build_judge_messages, build_priming_messages
from aeq_core.schema import ItemDefinition, JudgeInit, SchemaDefinition

from conftest import AEG_ITEM, AEG_SCHEMA, SEQ_ITEM, SEQ_SCHEMA


def test_system_message_order_and_blocks():
    schema = SchemaDefinition.from_dict(dict(AEG_SCHEMA, Description="Alternative explanations."))
    item = ItemDefinition.from_dict(AEG_ITEM)
    system, user = build_judge_messages(schema, item, TurnContext(user_text="weather"))

    assert system["role"] == "system" and user["role"] == "user"
    text = system["content"]
    assert text.startswith("STRICT OUTPUT RULES:\n" + STRICT_JSON_RULES[0])
    assert text.index("SCHEMA DESCRIPTION:") < text.index("MEASUREMENT GUIDANCE:\nClassify the answer.")
    # item-level ProbeLibrary được ưu tiên
    assert '"ns1"' in text
    assert "DOMINANCE ORDER" not in text


def test_json_guidance_and_dominance_order():
    guidance = {"Task": "classify", "DominanceOrder": ["NotClear", "Good"]}
    schema = SchemaDefinition.from_dict(dict(AEG_SCHEMA, DriverConfig={"AJ_System_Guidance": guidance}))
    item = ItemDefinition.from_dict(AEG_ITEM)
    system, _user = build_judge_messages(schema, item, TurnContext(user_text="x"))

    assert "You are the measurement component. Follow this JSON guidance:" in system["content"]
    assert "DOMINANCE ORDER (If multiple AnswerTypes apply" in system["content"]


def test_schema_probe_library_used_when_item_has_none():
    schema = SchemaDefinition.from_dict(SEQ_SCHEMA)
    item = ItemDefinition.from_dict(SEQ_ITEM)
    system, _user = build_judge_messages(schema, item, TurnContext(user_text="x"))
    assert '"opp_pos"' in system["content"]


def test_user_message_context_and_contract():
    schema = SchemaDefinition.from_dict(AEG_SCHEMA)
    item = ItemDefinition.from_dict(AEG_ITEM)
    ctx = TurnContext(
        user_text="tourists",
        accepted_theme_tags=["T1"],
        distinct_count_so_far=1,
        target_distinct_explanations=2,
        used_probe_ids=["g1"],
        scenario_definition={"A_text": "ice cream", "B_text": "drowning"},
    )
    _system, user = build_judge_messages(schema, item, ctx)
    text = user["content"]

    assert text.startswith(f"ITEM STEM:\n{item.stem}\n\nUSER ANSWER:\ntourists\n\nCONTEXT:\n")
    assert "Scenario A/B labels:" in text
    assert "ThemeRegistry (use ThemeID for ThemeTag, or NOVEL:label):" in text
    assert "DistinctCountSoFar: 1" in text
    assert "TargetDistinctExplanations: 2" in text
    assert "UsedProbeIDs:" in text
    assert "SCHEMA ID: AEG_Test" in text
    assert '"required": [\n    "AnswerType"\n  ]' in text
    assert text.endswith("Do not repeat the prompt or add any other text.")


def test_context_block_omitted_when_empty():
    schema = SchemaDefinition.from_dict(SEQ_SCHEMA)
    item = ItemDefinition.from_dict(SEQ_ITEM)
    _system, user = build_judge_messages(schema, item, TurnContext(user_text="x"))
    assert "CONTEXT:" not in user["content"]


def test_context_from_payload():
    ctx = TurnContext.from_payload("x", {"accepted_theme_tags": ["T1"], "distinct_count": 1, "target_distinct": 2})
    assert ctx.accepted_theme_tags == ["T1"]
    assert ctx.target_distinct_explanations == 2
    assert TurnContext.from_payload("x").used_probe_ids == []


def test_priming_messages_include_context():
    schema = SchemaDefinition.from_dict(AEG_SCHEMA)
    item = ItemDefinition.from_dict(AEG_ITEM)
    system, user = build_priming_messages(schema, item, JudgeInit(system_guidance="Be strict.", context={"A_text": "A"}))

    assert "MEASUREMENT GUIDANCE:\nBe strict." in system["content"]
    assert "GUIDANCE VERSION: g1" in user["content"]
    assert '"A_text": "A"' in user["content"]
