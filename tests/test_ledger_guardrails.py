import re
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1] / "fifoledger"
LEDGER_PACKAGE = PACKAGE_ROOT / "services" / "layer_ledger"


def test_no_layer_balance_writes_outside_the_ledger_service():
    pattern = re.compile(r"\.remaining_quantity\s*(=|\+=|-=)(?!=)")
    violations = []

    for path in PACKAGE_ROOT.rglob("*.py"):
        if LEDGER_PACKAGE in path.parents:
            continue

        text = path.read_text(encoding="utf-8")
        for match in pattern.finditer(text):
            line_start = text.rfind("\n", 0, match.start()) + 1
            line_end = text.find("\n", match.start())
            if line_end == -1:
                line_end = len(text)
            violations.append(f"{path.relative_to(PACKAGE_ROOT).as_posix()}: {text[line_start:line_end].strip()}")

    assert not violations, (
        "Layer balances changed outside fifoledger.services.layer_ledger. "
        "Route these through the ledger operations instead: \n- "
        + "\n- ".join(violations)
    )


def test_guard_sees_the_ledger_writes():
    hits = [
        path.name
        for path in LEDGER_PACKAGE.glob("*.py")
        if re.search(r"\.remaining_quantity\s*(=|\+=|-=)(?!=)", path.read_text(encoding="utf-8"))
    ]

    assert "_executor.py" in hits
