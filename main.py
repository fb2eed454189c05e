"""
Main entrypoint: refresh requirements and sync every stored account once.

Loads settings from env / .env, opens the wallet context on the SQLite
stores, fetches chain providers, token contracts and exchange rates, then
runs the sync pipeline for each known account and logs a summary.

Env: PROTON_ENVIRONMENT, PROTON_BASE_URL, PROTON_DB_PATH, PROTON_VAULT_KEY (required),
PROTON_MAX_CONCURRENCY, PROTON_HTTP_TIMEOUT, PROTON_DISPLAY_CURRENCY, LOG_LEVEL, LOG_FORMAT.
"""

import asyncio
import sys

# Configure structured JSON logging before other imports that may log
from proton_wallet.wallet_logging import get_logger

logger = get_logger("main")


async def run() -> int:
    from proton_wallet.config import get_settings
    from proton_wallet.config.env import print_wallet_startup
    from proton_wallet.core.exceptions import WalletError
    from proton_wallet.wallet import WalletContext

    print_wallet_startup("proton-wallet-sync")
    settings = get_settings()
    try:
        ctx = WalletContext.from_settings(settings)
    except WalletError as e:
        logger.error("main_config_error", kind=e.kind.value, message=e.message, **e.context)
        return 1

    try:
        try:
            await ctx.sync.fetch_requirements()
        except WalletError as e:
            logger.error("main_requirements_failed", kind=e.kind.value, error=e.message)
            return 1
        if not len(ctx.accounts):
            logger.warning("main_no_accounts", db_path=str(settings.db_path))
            return 0
        results = await ctx.sync.sync_all_accounts()
    finally:
        await ctx.aclose()

    failed = [account_id for account_id, result in results.items() if not result.ok]
    logger.info("main_sync_summary", accounts=len(results), failed=len(failed), failed_accounts=failed)
    return 1 if failed else 0


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
