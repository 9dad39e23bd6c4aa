"""Balance query package."""

from billbook.queries.balances import BalanceQueryExecutor

__all__ = ["BalanceQueryExecutor"]
