"""
Translator lookup by exchange.
"""

from __future__ import annotations
from typing import Dict, Type, Union
from exchange.base import ProtocolTranslator
from exchange.binance_ws import BinanceTranslator
from exchange.bitget_ws import BitgetTranslator
from exchange.bybit_ws import BybitTranslator
from exchange.errors import UnsupportedExchangeError
from exchange.gate_ws import GateTranslator
from exchange.mexc_ws import MexcTranslator
from exchange.models import Exchange
from exchange.okx_ws import OkxTranslator

TRANSLATORS: Dict[Exchange, Type[ProtocolTranslator]] = {
    Exchange.BINANCE: BinanceTranslator,
    Exchange.BYBIT: BybitTranslator,
    Exchange.OKX: OkxTranslator,
    Exchange.GATE: GateTranslator,
    Exchange.BITGET: BitgetTranslator,
    Exchange.MEXC: MexcTranslator,
}


def get_translator(exchange: Union[str, Exchange]) -> ProtocolTranslator:
    """Create the translator for an exchange name or enum."""
    try:
        exchange = Exchange(exchange.lower() if isinstance(exchange, str) else exchange)
    except ValueError:
        raise UnsupportedExchangeError(f"Unsupported exchange: {exchange}")
    return TRANSLATORS[exchange]()
