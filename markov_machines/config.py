from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Security: Read from .env, never hardcode a key here
    OPENAI_API_KEY: Optional[str] = None

    # Model Configuration
    OPENAI_MODEL: str = "gpt-4o"

    # Generation Parameters
    LLM_TEMPERATURE: float = 0.0
    MAX_TOKENS: int = 4096

    # Run loop: upper bound on steps produced by a single user turn
    MAX_STEPS: int = 25

    # Charter entry point for brand-new sessions
    INITIAL_NODE: str = "name_gate"

    # Database Configuration (PostgreSQL in production, sqlite works for dev)
    DATABASE_URL: str = "sqlite:///./markov_machines.db"

    # Loads from a .env file in the root directory
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Singleton instance
settings = Settings()
