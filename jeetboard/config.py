"""
Jeetboard Configuration Module

Centralized configuration management for the fumble analysis service.
Loads from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from typing import Optional


class JeetConfig:
    """Centralized jeetboard configuration."""

    # ========================================================================
    # API Keys
    # ========================================================================

    @staticmethod
    def get_zapper_api_key() -> Optional[str]:
        """Get Zapper API key from environment."""
        return os.getenv("ZAPPER_API_KEY")

    @staticmethod
    def get_coingecko_api_key() -> Optional[str]:
        """Get CoinGecko Pro API key from environment."""
        return os.getenv("COINGECKO_API_KEY")

    @staticmethod
    def get_birdeye_api_key() -> Optional[str]:
        """Get Birdeye API key from environment."""
        return os.getenv("BIRDEYE_API_KEY")

    @staticmethod
    def get_price_source() -> str:
        """Get price history source: 'coingecko' or 'birdeye'."""
        return os.getenv("JEET_PRICE_SOURCE", "coingecko").lower()

    # ========================================================================
    # Fumble Detection
    # ========================================================================

    @staticmethod
    def get_fumble_window_days() -> int:
        """Get symmetric lookback/lookahead around each sale, in days."""
        return int(os.getenv("JEET_FUMBLE_WINDOW_DAYS", "30"))

    @staticmethod
    def get_rally_multiplier() -> float:
        """Get minimum peak/sale ratio for a sale to count as a fumble."""
        return float(os.getenv("JEET_RALLY_MULTIPLIER", "1.2"))

    @staticmethod
    def get_tx_max_pages() -> int:
        """Get maximum pagination pages per wallet transaction fetch."""
        return int(os.getenv("JEET_TX_MAX_PAGES", "20"))

    # ========================================================================
    # Concurrency & Timeouts
    # ========================================================================

    @staticmethod
    def get_wallet_concurrency() -> int:
        """Get concurrent price lookups per wallet."""
        return int(os.getenv("JEET_WALLET_CONCURRENCY", "8"))

    @staticmethod
    def get_price_concurrency() -> int:
        """Get concurrent requests allowed against the price service."""
        return int(os.getenv("JEET_PRICE_CONCURRENCY", "5"))

    @staticmethod
    def get_global_concurrency() -> int:
        """Get concurrent wallet analyses allowed during leaderboard builds."""
        return int(os.getenv("JEET_GLOBAL_CONCURRENCY", "16"))

    @staticmethod
    def get_upstream_timeout() -> float:
        """Get timeout for a single external call, in seconds."""
        return float(os.getenv("JEET_UPSTREAM_TIMEOUT_SECONDS", "10"))

    # ========================================================================
    # Cache
    # ========================================================================

    @staticmethod
    def get_wallet_cache_ttl() -> int:
        """Get wallet fumble cache TTL in seconds."""
        return int(os.getenv("JEET_WALLET_CACHE_TTL", "300"))

    @staticmethod
    def get_leaderboard_cache_ttl() -> int:
        """Get leaderboard snapshot cache TTL in seconds."""
        return int(os.getenv("JEET_LEADERBOARD_CACHE_TTL", "600"))

    @staticmethod
    def get_price_cache_ttl() -> int:
        """Get price history cache TTL in seconds."""
        return int(os.getenv("JEET_PRICE_CACHE_TTL", "900"))

    @staticmethod
    def get_cache_max_entries() -> int:
        """Get maximum entries held by the in-process cache."""
        return int(os.getenv("JEET_CACHE_MAX_ENTRIES", "5000"))

    @staticmethod
    def get_leaderboard_size() -> int:
        """Get number of entries kept in a leaderboard snapshot."""
        return int(os.getenv("JEET_LEADERBOARD_SIZE", "100"))

    # ========================================================================
    # Redis Configuration
    # ========================================================================

    @staticmethod
    def get_redis_enabled() -> bool:
        """Get whether Redis mirroring of snapshots is enabled."""
        return os.getenv("REDIS_ENABLED", "false").lower() == "true"

    @staticmethod
    def get_redis_url() -> str:
        """Get Redis connection URL."""
        return os.getenv("REDIS_URL", "redis://localhost:6379")

    # ========================================================================
    # Users & Logging
    # ========================================================================

    @staticmethod
    def get_users_file() -> str:
        """Get path to the JSON users/wallets file."""
        return os.getenv("JEET_USERS_FILE", "data/users.json")

    @staticmethod
    def get_log_level() -> str:
        """Get logging level name."""
        return os.getenv("JEET_LOG_LEVEL", "INFO").upper()

    @staticmethod
    def validate_config() -> tuple[bool, list[str]]:
        """
        Validate the current configuration.

        Returns:
            Tuple of (is_valid, list_of_warnings)
        """
        warnings = []
        is_valid = True

        if not JeetConfig.get_zapper_api_key():
            warnings.append("ZAPPER_API_KEY is not set. Transaction history cannot be fetched.")

        source = JeetConfig.get_price_source()
        if source == "coingecko":
            if not JeetConfig.get_coingecko_api_key():
                warnings.append("COINGECKO_API_KEY is not set. Using the rate-limited public API.")
        elif source == "birdeye":
            if not JeetConfig.get_birdeye_api_key():
                warnings.append("BIRDEYE_API_KEY is not set. Every price lookup will degrade to 0.")
        else:
            warnings.append(f"Unknown JEET_PRICE_SOURCE '{source}' (expected coingecko or birdeye)")
            is_valid = False

        if JeetConfig.get_rally_multiplier() < 1.0:
            warnings.append("JEET_RALLY_MULTIPLIER below 1.0 will flag sales that never rallied.")
            is_valid = False

        users_file = Path(JeetConfig.get_users_file())
        if not users_file.exists():
            warnings.append(f"Users file does not exist: {users_file}")

        return is_valid, warnings

    @staticmethod
    def print_config_summary():
        """Print a summary of current configuration."""
        print("=" * 70)
        print("Jeetboard Configuration Summary")
        print("=" * 70)
        print(f"Price Source: {JeetConfig.get_price_source()}")
        print(f"Zapper API Key: {'Set' if JeetConfig.get_zapper_api_key() else 'Not set'}")
        print(f"CoinGecko API Key: {'Set' if JeetConfig.get_coingecko_api_key() else 'Not set'}")
        print(f"Birdeye API Key: {'Set' if JeetConfig.get_birdeye_api_key() else 'Not set'}")
        print(f"Fumble Window: +/-{JeetConfig.get_fumble_window_days()} days")
        print(f"Rally Multiplier: {JeetConfig.get_rally_multiplier():.2f}x")
        print(f"Wallet Cache TTL: {JeetConfig.get_wallet_cache_ttl()}s")
        print(f"Leaderboard Cache TTL: {JeetConfig.get_leaderboard_cache_ttl()}s")
        print(f"Redis: {'Enabled' if JeetConfig.get_redis_enabled() else 'Disabled'}")
        print(f"Users File: {JeetConfig.get_users_file()}")
        print("=" * 70)

        is_valid, warnings = JeetConfig.validate_config()
        if warnings:
            print("\nConfiguration Warnings:")
            for warning in warnings:
                print(f"  ⚠️  {warning}")
        else:
            print("\n✓ Configuration looks good!")
