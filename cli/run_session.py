# cli/run_session.py

"""
Chạy một phiên phỏng vấn giải thích:

    python -m cli.run_session                 # tương tác, judge = OpenAI
    python -m cli.run_session script.json     # kịch bản có sẵn output judge, không gọi mạng

File kịch bản:
    {"schema_id": "...", "item_id": "...", "session_id": "...",
     "turns": [{"answer": "...", "judge": {...}}, ...]}
"""

import os
import sys
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dotenv import load_dotenv
from rich.console import Console

from aeq_core import Bank, KernelOptions, MemoryStore, TurnResult, apply_turn, build_default_registry, load_bank
from aeq_core.registry import DriverRegistry
from aeq_core.schema import SessionSnapshot

env_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env")
load_dotenv(dotenv_path=env_path)

console = Console()


def print_result(step: int, result: TurnResult) -> None:
    badges = " ".join(f"[{b}]" for b in result.ui_badges)
    console.print(f"[blue]Lượt {step}[/blue] • credited={result.credited} • {result.decision.budget_signal} {badges}")
    if result.probe:
        console.print(f"  💬 [magenta]{result.probe.text}[/magenta]")
    if result.completed:
        console.print(f"  ✅ [green]Hoàn tất[/green] • điểm = {result.score.value:.2f} ({result.score.label})")
        for key, st in result.theta.items():
            console.print(f"  θ[{key}] = {st['mean']:.3f} (var {st['var']:.3f})")


def run_scripted(
    bank: Bank,
    registry: DriverRegistry,
    schema_id: str,
    item_id: str,
    turns: Iterable[Tuple[str, Any]],
    session: Optional[SessionSnapshot] = None,
    store: Optional[MemoryStore] = None,
    options: Optional[KernelOptions] = None,
    verbose: bool = True,
) -> List[TurnResult]:
    """Chạy lần lượt các cặp (answer, judge_raw) cho tới khi item hoàn tất hoặc hết kịch bản."""
    store = store or MemoryStore()
    session = session or store.create()
    results: List[TurnResult] = []

    for step, (answer, judge_raw) in enumerate(turns, 1):
        result = apply_turn(session, bank, registry, schema_id, item_id, answer, judge_raw, persist=store.put, options=options)
        results.append(result)
        session = result.session
        if verbose:
            print_result(step, result)
        if result.completed:
            break
    return results


def load_script(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        script = json.load(f)
    for key in ("schema_id", "item_id", "turns"):
        if key not in script:
            raise ValueError(f"Script thiếu khóa '{key}': {path}")
    return script


def run_script_file(path: str, bank_dir: str = "data") -> List[TurnResult]:
    script = load_script(path)
    bank = load_bank(bank_dir)
    store = MemoryStore()
    turns = [(t.get("answer", ""), t.get("judge")) for t in script["turns"]]
    return run_scripted(
        bank,
        build_default_registry(),
        script["schema_id"],
        script["item_id"],
        turns,
        session=store.create(script.get("session_id")),
        store=store,
    )


def run_interactive(bank_dir: str = "data") -> None:
    # Import muộn: chế độ kịch bản không cần client OpenAI
    from aeq_ai import JudgeClient, JudgePrimingTransport, TurnContext, get_settings

    settings = get_settings()
    bank = load_bank(bank_dir)
    registry = build_default_registry()
    judge = JudgeClient(settings=settings)
    options = KernelOptions(
        generated_probe_mode=settings.generated_probes,
        priming_transport=JudgePrimingTransport(judge),
    )

    items = sorted(bank.items.values(), key=lambda it: it.item_id)
    if not items:
        console.print("[red]Bank không có item nào![/red]")
        return
    console.print(f"\n[bold cyan]Bank có {len(items)} item:[/bold cyan]")
    for i, it in enumerate(items, 1):
        console.print(f"  [cyan]{i}.[/cyan] {it.item_id} ({it.schema_id})")

    raw = input("\nChọn item (số thứ tự, Enter = 1): ").strip()
    idx = int(raw) - 1 if raw.isdigit() and 1 <= int(raw) <= len(items) else 0
    item = items[idx]
    schema = bank.get_schema_by_id(item.schema_id)

    store = MemoryStore()
    session = store.create()
    console.print(f"\n[blue]Câu hỏi:[/blue] {item.stem}")

    step = 0
    while True:
        answer = input("\nTrả lời (q để thoát): ").strip()
        if answer.lower() == "q":
            console.print("[red]Kết thúc sớm.[/red]")
            break
        step += 1
        payload = session.unit.state.payload if session.unit and not session.unit.completed else None
        resp = judge.judge_turn(schema, item, TurnContext.from_payload(answer, payload))
        result = apply_turn(session, bank, registry, schema.schema_id, item.item_id, answer, resp.parsed,
                            persist=store.put, options=options)
        session = result.session
        print_result(step, result)
        if result.completed:
            break


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s - %(message)s")
    args = sys.argv[1:] if argv is None else argv
    bank_dir = os.getenv("AEQ_BANK_DIR", "data")
    if args:
        results = run_script_file(args[0], bank_dir)
        return 0 if results and results[-1].completed else 1
    run_interactive(bank_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
