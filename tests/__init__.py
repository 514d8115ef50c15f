"""
FIFO ledger test suite.

Tests are organized by component:
- test_fifo_planner.py: pure FIFO planning and waste carve-out
- test_movement_ledger.py / test_receiving.py: inbound and single-SKU movements
- test_work_orders.py: multi-SKU work orders, waste and idempotent replay
- test_reversal_engine.py: reversal rules and deletion checks
- test_ledger_api.py / test_ledger_cli.py: HTTP and CLI surfaces
"""
