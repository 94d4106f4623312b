"""
Cached read-side queries for the dashboard

Every query returns None instead of raising: network errors, failed
simulations and missing accounts all mean "no data" here.
"""

import logging
from typing import Optional

from utils.cache import ReadCache
from .codec import LenderInfo, Loan, PoolStats
from .lumilend import LumiLendPool

logger = logging.getLogger(__name__)

POOL_STATS_KEY = "pool_stats"
LENDER_INFO_KEY = "lender_info:{address}"
BALANCE_KEY = "balance:{address}"
ACTIVE_LOAN_KEY = "active_loan:{address}"


class PoolQueries:
    def __init__(
        self,
        pool: LumiLendPool,
        cache: ReadCache,
        pool_stats_ttl: float = 30,
        address_ttl: float = 10
    ):
        self.pool = pool
        self.cache = cache
        self.pool_stats_ttl = pool_stats_ttl
        self.address_ttl = address_ttl
        pool.add_confirmed_handler(self._handle_confirmed)

    def _handle_confirmed(self, address, result):
        """Refresh cached reads after a write lands"""
        self.invalidate_address(address)

    async def fetch_pool_stats(self) -> Optional[PoolStats]:
        if not self.pool.contract_id:
            return None

        async def fetch():
            try:
                return await self.pool.get_pool_stats()
            except Exception as e:
                logger.error(f"fetch_pool_stats error: {e}")
                return None

        return await self.cache.get(POOL_STATS_KEY, self.pool_stats_ttl, fetch)

    async def fetch_lender_info(self, address: str) -> Optional[LenderInfo]:
        if not self.pool.contract_id:
            return None

        async def fetch():
            try:
                return await self.pool.get_lender_info(address)
            except Exception as e:
                logger.warning(f"fetch_lender_info error for {address}: {e}")
                return None

        return await self.cache.get(LENDER_INFO_KEY.format(address=address), self.address_ttl, fetch)

    async def fetch_xlm_balance(self, address: str) -> Optional[str]:
        async def fetch():
            try:
                return await self.pool.rpc.get_native_balance(address)
            except Exception as e:
                logger.warning(f"fetch_xlm_balance error for {address}: {e}")
                return None

        return await self.cache.get(BALANCE_KEY.format(address=address), self.address_ttl, fetch)

    async def fetch_active_loan(self, address: str) -> Optional[Loan]:
        if not self.pool.contract_id:
            return None

        async def fetch():
            try:
                return await self.pool.locator.locate_active_loan(address)
            except Exception as e:
                logger.warning(f"fetch_active_loan error for {address}: {e}")
                return None

        return await self.cache.get(ACTIVE_LOAN_KEY.format(address=address), self.address_ttl, fetch)

    def invalidate_address(self, address: str) -> None:
        """Drop everything cached for an address plus the pool-wide stats"""
        self.cache.invalidate(POOL_STATS_KEY)
        for key in (LENDER_INFO_KEY, BALANCE_KEY, ACTIVE_LOAN_KEY):
            self.cache.invalidate(key.format(address=address))
