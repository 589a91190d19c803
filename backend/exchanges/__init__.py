from .polymarket import PolymarketExchange
from .base import BaseExchange

__all__ = ["PolymarketExchange", "BaseExchange"]
