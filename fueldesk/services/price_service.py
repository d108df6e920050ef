"""
Fuel Price Service
Prices are appended, never edited: each row applies from valid_from until a
later row for the same station and fuel type takes over.
"""

import logging
from datetime import datetime

from fueldesk.constants import Action, FUEL_TYPES
from fueldesk.errors import NotFound, ValidationError
from fueldesk.models import db
from fueldesk.repositories import PriceRepo, StationRepo
from fueldesk.utils.audit import log_activity
from fueldesk.utils.helpers import parse_datetime, round_money, to_decimal
from fueldesk.utils.permissions import require_access

logger = logging.getLogger(__name__)


class PriceService:

    @staticmethod
    def set_price(actor, station_id, payload):
        """
        Add a price effective from validFrom (defaults to now)

        Sales already derived are not touched; a re-derivation picks the new
        price up for readings at or after validFrom.
        """
        require_access(actor, station_id, Action.SET_PRICE)
        if not StationRepo.get(station_id):
            raise NotFound('Station not found', {'stationId': station_id})

        fuel_type = payload.get('fuelType')
        if fuel_type not in FUEL_TYPES:
            raise ValidationError(f'Unknown fuel type: {fuel_type}', {'field': 'fuelType'})

        price = to_decimal(payload.get('price'), 'price')
        if price <= 0:
            raise ValidationError('price must be greater than zero', {'field': 'price'})

        valid_from = payload.get('validFrom')
        valid_from = parse_datetime(valid_from, 'validFrom') if valid_from else datetime.now()

        try:
            record = PriceRepo.add(
                station_id=station_id,
                fuel_type=fuel_type,
                price=round_money(price),
                valid_from=valid_from,
                set_by=actor.id,
            )
            log_activity(actor, 'price_set', 'fuel_price', record.id, {
                'fuelType': fuel_type, 'price': str(record.price), 'validFrom': valid_from.isoformat(),
            }, station_id=station_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"{fuel_type} price at station {station_id} set to {record.price} from {valid_from}")
        return record

    @staticmethod
    def list_prices(actor, station_id, fuel_type=None):
        require_access(actor, station_id, Action.VIEW)
        return PriceRepo.for_station(station_id, [fuel_type] if fuel_type else None)

    @staticmethod
    def get_effective_price(actor, station_id, fuel_type, at):
        """Price in force at a moment, or None"""
        require_access(actor, station_id, Action.VIEW)
        return PriceRepo.effective(station_id, fuel_type, at)
