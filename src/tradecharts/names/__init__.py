"""Counterparty display-name resolution."""

from tradecharts.names.resolver import NameResolver, choose_name

__all__ = ["NameResolver", "choose_name"]
