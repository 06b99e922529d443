# config.py
import os
from dotenv import load_dotenv

load_dotenv()

# RPC and API Configuration
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
JUPITER_API_URL = os.getenv("JUPITER_API_URL", "https://quote-api.jup.ag/v6")
TOKEN_SCANNER_API_URL = os.getenv("TOKEN_SCANNER_API_URL")
TOKEN_SCANNER_API_KEY = os.getenv("TOKEN_SCANNER_API_KEY")
COINGECKO_API_KEY = os.getenv("COINGECKO_API_KEY")
COINGECKO_BASE_URL = os.getenv("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 15))

# Platform fee collection
FEE_WALLET_ADDRESS = os.getenv("FEE_WALLET_ADDRESS")
PLATFORM_FEE_RATE = float(os.getenv("PLATFORM_FEE_RATE", 0.005)) # 0.5%
MINIMUM_FEE_LAMPORTS = int(os.getenv("MINIMUM_FEE_LAMPORTS", 5_000_000))
PRIORITY_FEE_LAMPORTS = int(os.getenv("PRIORITY_FEE_LAMPORTS", 5_000_000))

# Swap settings
SLIPPAGE_BPS = int(os.getenv("SLIPPAGE_BPS", 1500))
SUBMIT_MAX_RETRIES = int(os.getenv("SUBMIT_MAX_RETRIES", 5))
CONFIRMATION_TIMEOUT_SECONDS = float(os.getenv("CONFIRMATION_TIMEOUT_SECONDS", 60))

# Database Configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./trades.db")

# Bot Operation Settings
SCHEDULED_TASK_INTERVAL_SECONDS = int(os.getenv("SCHEDULED_TASK_INTERVAL_SECONDS", 180)) # Default to 3 minutes
SOL_PRICE_CACHE_SECONDS = int(os.getenv("SOL_PRICE_CACHE_SECONDS", 60))
BALANCE_CACHE_SECONDS = int(os.getenv("BALANCE_CACHE_SECONDS", 30))
MAX_SAVE_ATTEMPTS = int(os.getenv("MAX_SAVE_ATTEMPTS", 3))

# Solana Constants
WSOL_MINT_ADDRESS = "So11111111111111111111111111111111111111112"
USDC_MINT_ADDRESS = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOL_DECIMALS = 9 # SOL is 9 decimals
USDC_DECIMALS = 6
DEFAULT_TOKEN_DECIMALS = 6 # Most pump.fun style tokens
SOLSCAN_TX_URL = "https://solscan.io/tx/"


def check_essential_configs():
    """Raises ValueError listing every essential setting that is missing."""
    essential_configs_check = [
        ("SOLANA_RPC_URL", SOLANA_RPC_URL),
        ("JUPITER_API_URL", JUPITER_API_URL),
        ("DATABASE_URL", DATABASE_URL),
        ("TOKEN_SCANNER_API_URL", TOKEN_SCANNER_API_URL),
        ("TOKEN_SCANNER_API_KEY", TOKEN_SCANNER_API_KEY),
        ("FEE_WALLET_ADDRESS", FEE_WALLET_ADDRESS),
    ]

    missing_vars = [name for name, value in essential_configs_check if not value]

    if missing_vars:
        raise ValueError(f"One or more environment variables are not set. Please check your .env file. Missing: {', '.join(missing_vars)}")
