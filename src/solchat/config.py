"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    API_HOST: str = "localhost"
    DEBUG: bool = True
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    PLANNER: str = "anthropic"  # Options: anthropic, openai
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None  # e.g. https://api.groq.com/openai/v1
    OPENAI_MODEL: str = "gpt-4o-mini"
    MAX_TOKENS: int = 1024
    STEP_BUDGET: int = 5

    # Solana Configuration
    DEFAULT_NETWORK: str = "devnet"  # Options: devnet, mainnet
    DEVNET_RPC_URL: str = "https://api.devnet.solana.com"
    MAINNET_RPC_URL: str = "https://api.mainnet-beta.solana.com"
    RPC_TIMEOUT_S: float = 20.0
    CONFIRM_TIMEOUT_S: float = 60.0
    AIRDROP_MIN_SOL: float = 0.1
    AIRDROP_MAX_SOL: float = 2.0

    # Deferred tool calls left unresolved longer than this are expired
    DEFERRED_CALL_TTL_S: float = 600.0

    # Persistence / wallet
    SESSIONS_FILE: str = "./data/solana-chat-sessions.json"
    WALLET_KEYPAIR_PATH: str | None = None  # Solana CLI keypair (JSON array of 64 ints)

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
