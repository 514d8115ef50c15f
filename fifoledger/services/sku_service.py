import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SKU, MaterialType
from .layer_ledger import LedgerResult, NotFoundError, ValidationError
from .layer_ledger._money import quantize_quantity

logger = logging.getLogger(__name__)

# Fields the ledger owns; master data edits may never set them
LEDGER_OWNED_FIELDS = frozenset({'on_hand_quantity', 'average_cost'})
EDITABLE_FIELDS = ('description', 'material_type', 'category', 'unit', 'is_active', 'min_stock')


class SkuService:
    """Minimal SKU master data so the ledger has something to post against."""

    @staticmethod
    def _apply(sku: SKU, data: Dict[str, Any]) -> None:
        for field in EDITABLE_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field == 'min_stock':
                value = quantize_quantity(value if value is not None else 0)
                if value < 0:
                    raise ValidationError("min_stock cannot be negative", details={'min_stock': value})
            elif field == 'material_type':
                value = (value or MaterialType.RAW).strip().upper()
            elif field == 'is_active':
                value = bool(value)
            setattr(sku, field, value)

    @staticmethod
    def create_sku(data: Dict[str, Any]) -> LedgerResult:
        owned = LEDGER_OWNED_FIELDS.intersection(data)
        if owned:
            return LedgerResult.fail(ValidationError(
                f"{', '.join(sorted(owned))} are maintained by the ledger",
                details={'fields': sorted(owned)},
            ))
        try:
            sku = SKU(id=data.get('id') or data.get('sku'))
            if db.session.get(SKU, sku.id) is not None:
                return LedgerResult.fail(ValidationError(f"SKU {sku.id} already exists", code='duplicate_sku'))
            sku.on_hand_quantity = Decimal('0')
            SkuService._apply(sku, {'unit': 'unit', 'material_type': MaterialType.RAW, **data})
            db.session.add(sku)
            db.session.commit()
        except ValueError as exc:
            db.session.rollback()
            return LedgerResult.fail(ValidationError(str(exc)))
        except ValidationError as exc:
            db.session.rollback()
            return LedgerResult.fail(exc)
        except IntegrityError:
            db.session.rollback()
            return LedgerResult.fail(ValidationError(
                f"SKU {data.get('id') or data.get('sku')} already exists", code='duplicate_sku',
            ))
        logger.info("SKU: created %s (%s, unit=%s)", sku.id, sku.material_type, sku.unit)
        return LedgerResult.ok(sku)

    @staticmethod
    def update_sku(sku_id: str, data: Dict[str, Any]) -> LedgerResult:
        sku = db.session.get(SKU, (sku_id or '').upper())
        if sku is None:
            return LedgerResult.fail(NotFoundError(f"SKU {sku_id} not found", details={'sku_id': sku_id}))
        owned = LEDGER_OWNED_FIELDS.intersection(data)
        if owned:
            return LedgerResult.fail(ValidationError(
                f"{', '.join(sorted(owned))} are maintained by the ledger",
                details={'fields': sorted(owned)},
            ))
        try:
            SkuService._apply(sku, data)
            db.session.commit()
        except ValueError as exc:
            db.session.rollback()
            return LedgerResult.fail(ValidationError(str(exc)))
        except ValidationError as exc:
            db.session.rollback()
            return LedgerResult.fail(exc)
        return LedgerResult.ok(sku)

    @staticmethod
    def get_sku(sku_id: str) -> Optional[SKU]:
        return db.session.get(SKU, (sku_id or '').upper())

    @staticmethod
    def list_skus(include_inactive: bool = False) -> List[SKU]:
        query = SKU.query
        if not include_inactive:
            query = query.filter(SKU.is_active.is_(True))
        return query.order_by(SKU.id.asc()).all()
