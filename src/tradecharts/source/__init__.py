"""Remote collaborators: the paginated trade source and the name lookup service."""

from tradecharts.source.client import NameLookup, TradeSource
from tradecharts.source.http_client import NodeApiClient

__all__ = ["NameLookup", "NodeApiClient", "TradeSource"]
