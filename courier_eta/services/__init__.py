from .change_feed import OrderChangeFeed, ChangeEvent
from .order_store import OrderStore, StoredETA, OrderStoreError, OrderNotFoundError
from .directions_client import MapboxDirectionsClient, DirectionsAPIError, NoRouteFoundError
from .eta_calculator import EtaCalculatorService, CalculationResult
from .calculator_client import (
    HttpCalculatorClient,
    HttpStoredEtaReader,
    InProcessCalculatorClient,
    CalculatorInvocationError,
)
from .eta_tracker import EtaTracker, IntervalTimer
from .table_watcher import TableChangeWatcher

__all__ = [
    "OrderChangeFeed",
    "ChangeEvent",
    "OrderStore",
    "StoredETA",
    "OrderStoreError",
    "OrderNotFoundError",
    "MapboxDirectionsClient",
    "DirectionsAPIError",
    "NoRouteFoundError",
    "EtaCalculatorService",
    "CalculationResult",
    "HttpCalculatorClient",
    "HttpStoredEtaReader",
    "InProcessCalculatorClient",
    "CalculatorInvocationError",
    "EtaTracker",
    "IntervalTimer",
    "TableChangeWatcher",
]
