#!/usr/bin/env python3
"""
Jeetboard - Live API Health Check
Verifies connectivity to Zapper, CoinGecko, Birdeye and Redis.

    python -m jeetboard.tools.health_check
"""
import asyncio
import sys
from datetime import timedelta

from jeetboard.config import JeetConfig
from jeetboard.core.birdeye_client import BirdeyeClient
from jeetboard.core.coingecko_client import CoinGeckoClient
from jeetboard.core.errors import UpstreamUnavailable
from jeetboard.core.models import utcnow
from jeetboard.core.redis_client import RedisClient
from jeetboard.core.zapper_client import ZapperClient

# Vitalik's public wallet; always has history
TEST_WALLET = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
SOL_MINT = "So11111111111111111111111111111111111111112"


async def check_zapper():
    print("\n[1/4] Checking Zapper API...")
    if not JeetConfig.get_zapper_api_key():
        print("❌ ZAPPER_API_KEY not found in env.")
        return False

    client = ZapperClient(page_size=5)
    try:
        page = await client.fetch_transactions(TEST_WALLET, utcnow() - timedelta(days=365))
        if page.transactions:
            print(f"✅ Zapper connected. Fetched {len(page.transactions)} txs.")
        else:
            print("⚠️  Zapper connected but returned 0 transactions (might be rate limited or empty wallet).")
        return True
    except UpstreamUnavailable as e:
        print(f"❌ Zapper failed: {e}")
        return False
    finally:
        await client.close()


async def check_coingecko():
    print("\n[2/4] Checking CoinGecko API...")
    if not JeetConfig.get_coingecko_api_key():
        print("⚠️  COINGECKO_API_KEY not found. Using the public, rate-limited API.")

    end = utcnow()
    async with CoinGeckoClient(max_retries=1) as client:
        try:
            points = await client.fetch_price_history("ethereum", end - timedelta(days=1), end)
        except UpstreamUnavailable as e:
            print(f"❌ CoinGecko failed: {e}")
            return False
    if points:
        print(f"✅ CoinGecko connected. ETH Price: ${points[-1].price:,.2f}")
        return True
    print("❌ CoinGecko returned no data for ETH.")
    return False


def check_birdeye():
    print("\n[3/4] Checking Birdeye API...")
    if not JeetConfig.get_birdeye_api_key():
        print("⚠️  BIRDEYE_API_KEY not found. Birdeye price source unavailable.")
        return True  # Not fatal unless JEET_PRICE_SOURCE=birdeye

    price = BirdeyeClient().get_current_price(SOL_MINT)
    if price:
        print(f"✅ Birdeye connected. SOL Price: ${price:.2f}")
        return True
    print("❌ Birdeye returned no data for SOL.")
    return JeetConfig.get_price_source() != "birdeye"


def check_redis():
    print("\n[4/4] Checking Redis...")
    if not JeetConfig.get_redis_enabled():
        print("⚠️  REDIS_ENABLED is false. Snapshots stay in-process.")
        return True
    if RedisClient().is_available():
        print(f"✅ Redis connected at {JeetConfig.get_redis_url()}.")
        return True
    print("❌ Redis unreachable; falling back to in-memory store.")
    return False


def main():
    print("=== Jeetboard Connectivity Check ===")
    z = asyncio.run(check_zapper())
    c = asyncio.run(check_coingecko())
    b = check_birdeye()
    r = check_redis()

    if z and c and b and r:
        print("\n✅ All systems GO.")
        sys.exit(0)
    else:
        print("\n❌ Some systems failed checks.")
        sys.exit(1)


if __name__ == "__main__":
    main()
