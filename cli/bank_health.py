# cli/bank_health.py

"""Báo cáo sức khỏe bank + registry: python -m cli.bank_health [thư_mục_bank]"""

import os
import sys
import logging
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from aeq_core import BankValidationError, RegistryError, build_default_registry
from aeq_core.contract import describe_contract
from aeq_core.bank import inspect_bank_dir, read_bank_dir
from aeq_core.registry import DriverRegistry
from aeq_core.schema import SchemaDefinition

env_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env")
load_dotenv(dotenv_path=env_path)

console = Console()


def driver_bindings(root: str, registry: DriverRegistry) -> Dict[str, str]:
    """SchemaID -> driver id (hoặc thông báo lỗi resolve)."""
    schemas, _items = read_bank_dir(root)
    out: Dict[str, str] = {}
    for s in schemas:
        if not isinstance(s, Mapping):
            continue
        sid = s.get("SchemaID") or "<missing>"
        try:
            out[sid] = registry.resolve(s.get("Engine")).id
        except RegistryError as e:
            out[sid] = f"⚠️ {e}"
    return out


def contract_kinds(root: str) -> Dict[str, str]:
    schemas, _items = read_bank_dir(root)
    return {
        s.get("SchemaID") or "<missing>": describe_contract(SchemaDefinition(
            schema_id=s.get("SchemaID") or "<missing>",
            guidance_version=s.get("GuidanceVersion") or "",
            judge_contract=s.get("AJ_Contract_JsonSchema"),
        )) or "-"
        for s in schemas
        if isinstance(s, Mapping)
    }


def collect_health(root: str = "data", registry: Optional[DriverRegistry] = None) -> Dict[str, Any]:
    registry = registry or build_default_registry()
    report = inspect_bank_dir(root)
    bindings = driver_bindings(root, registry)
    contracts = contract_kinds(root)
    for r in report["schema_results"]:
        r["driver"] = bindings.get(r["schema_id"])
        r["contract"] = contracts.get(r["schema_id"], "-")
    problems: List[str] = [r["error"] for r in report["schema_results"] + report["item_results"] if not r["ok"]]
    problems += [f"{sid}: {d}" for sid, d in bindings.items() if d.startswith("⚠️")]
    return {
        "ok": not problems,
        "schemas": report["schema_results"],
        "items": report["item_results"],
        "registry": registry.health(),
        "problems": problems,
    }


def render(health: Dict[str, Any]) -> None:
    t = Table(title="Schemas")
    t.add_column("SchemaID", style="cyan")
    t.add_column("Driver")
    t.add_column("Contract")
    t.add_column("OK")
    t.add_column("Lỗi", style="red")
    for r in health["schemas"]:
        t.add_row(r["schema_id"], r.get("driver") or "-", r.get("contract", "-"), "✅" if r["ok"] else "❌", r["error"] or "")
    console.print(t)

    t = Table(title="Items")
    t.add_column("ItemID", style="cyan")
    t.add_column("SchemaID")
    t.add_column("OK")
    t.add_column("Lỗi", style="red")
    for r in health["items"]:
        t.add_row(r["item_id"], r["schema_id"], "✅" if r["ok"] else "❌", r["error"] or "")
    console.print(t)

    reg = health["registry"]
    t = Table(title=f"Drivers ({reg['count']})")
    t.add_column("ID", style="cyan")
    t.add_column("Kind")
    t.add_column("Version")
    t.add_column("Default")
    for d in reg["drivers"]:
        is_default = reg["defaults"].get(d["kind"]) == d["id"]
        t.add_row(d["id"], d["kind"] or "-", d["version"] or "-", "★" if is_default else "")
    console.print(t)

    if health["ok"]:
        console.print("\n[green]✅ Bank hợp lệ.[/green]")
    else:
        console.print(f"\n[red]❌ {len(health['problems'])} lỗi.[/red]")


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s - %(message)s")
    args = sys.argv[1:] if argv is None else argv
    root = args[0] if args else os.getenv("AEQ_BANK_DIR", "data")
    try:
        health = collect_health(root)
    except BankValidationError as e:
        console.print(f"[red]❌ Không đọc được bank: {e}[/red]")
        return 2
    render(health)
    return 0 if health["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
