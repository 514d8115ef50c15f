from flask import Blueprint

api_bp = Blueprint('api', __name__, url_prefix='/api')

from .ledger_routes import ledger_api_bp  # noqa: E402
from .sku_routes import sku_api_bp  # noqa: E402

api_bp.register_blueprint(ledger_api_bp)
api_bp.register_blueprint(sku_api_bp)
