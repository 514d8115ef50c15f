"""
Movement type registry

Single source of truth for how each movement type touches the layer store
and how it may be reversed.
"""

from typing import Any, Dict

from ...models import MovementType

# ============================================================================
# MOVEMENT TYPE REGISTRY
# ============================================================================

MOVEMENT_REGISTRY: Dict[str, Dict[str, Any]] = {
    MovementType.RECEIVE: {
        'direction': 'additive',
        'creates_layers': True,
        'draws_layers': False,
        'reversal': 'delete_layers',
        'description': 'Goods received; creates one cost layer for the accepted quantity',
    },
    MovementType.ISSUE: {
        'direction': 'deductive',
        'creates_layers': False,
        'draws_layers': True,
        'reversal': 'restore_draws',
        'description': 'Stock issued out, drawn oldest layer first',
    },
    MovementType.WASTE: {
        'direction': 'deductive',
        'creates_layers': False,
        'draws_layers': True,
        'reversal': 'restore_draws',
        'description': 'Stock written off; inside a work order it is carved from the issue',
    },
    MovementType.PRODUCE: {
        'direction': 'output',
        'creates_layers': False,
        'draws_layers': False,
        'reversal': 'restore_work_order',
        'description': 'Finished output of a work order valued at raw cost less waste',
    },
    MovementType.ADJUSTMENT: {
        'direction': 'signed',
        'creates_layers': True,
        'draws_layers': True,
        'reversal': 'by_sign',
        'description': 'Correction against one layer: draws from it or adds a layer at its cost',
    },
    MovementType.TRANSFER: {
        'direction': 'none',
        'creates_layers': False,
        'draws_layers': False,
        'reversal': None,
        'description': 'Reserved; single-location ledger does not record transfers',
    },
}

def get_movement_config(movement_type: str) -> Dict[str, Any]:
    config = MOVEMENT_REGISTRY.get(movement_type)
    if config is None:
        raise KeyError(f"Unknown movement type: {movement_type}")
    return config


def is_supported_movement_type(movement_type: str) -> bool:
    config = MOVEMENT_REGISTRY.get(movement_type)
    return bool(config and config['reversal'])


def reversal_strategy(movement) -> str:
    """Resolve how a concrete movement row is undone."""
    strategy = get_movement_config(movement.movement_type)['reversal']
    if strategy == 'by_sign':
        return 'delete_layers' if movement.quantity > 0 else 'restore_draws'
    return strategy


def get_supported_movement_types():
    return sorted(t for t in MOVEMENT_REGISTRY if is_supported_movement_type(t))
