import os
from dotenv import load_dotenv
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

load_dotenv()


def _parse_csv(value: str, *, lower: bool = False) -> List[str]:
    if not value:
        return []
    items = [x.strip() for x in value.split(",")]
    items = [x for x in items if x]
    if lower:
        items = [x.lower() for x in items]
    return items


def _parse_int(value: str, default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    # MongoDB
    MONGO_URI: str
    MONGO_DB: str

    # relayer / chain
    RPC_URL_DEFAULT: str
    PRIVATE_KEY: str

    # ---- Privy Auth ----
    PRIVY_APP_ID: str
    PRIVY_APP_SECRET: str

    # notification collaborator (empty -> log only)
    NOTIFICATIONS_URL: str

    # wallets holding elevated vault privilege
    ADMIN_WALLETS: List[str] = field(default_factory=list)

    # chain io bounds
    CHAIN_SUBMIT_TIMEOUT_SEC: int = 30
    CHAIN_VERIFY_TIMEOUT_SEC: int = 15
    SUBMISSION_STALE_SEC: int = 300

    # coordinator
    TX_CAS_MAX_RETRIES: int = 5
    RECONCILE_INTERVAL_SEC: int = 15

    # generic
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings(
        # Mongo
        MONGO_URI=os.getenv("MONGO_URI", "mongodb://mongo-vault:27017/vault_tx"),
        MONGO_DB=os.getenv("MONGO_DB", "vault_tx"),

        # Relayer / chain
        RPC_URL_DEFAULT=os.getenv("RPC_URL_DEFAULT", ""),
        PRIVATE_KEY=os.getenv("PRIVATE_KEY", ""),

        # Privy Auth
        PRIVY_APP_ID=os.getenv("PRIVY_APP_ID", ""),
        PRIVY_APP_SECRET=os.getenv("PRIVY_APP_SECRET", ""),
        ADMIN_WALLETS=_parse_csv(os.getenv("ADMIN_WALLETS", ""), lower=True),

        NOTIFICATIONS_URL=os.getenv("NOTIFICATIONS_URL", ""),

        CHAIN_SUBMIT_TIMEOUT_SEC=_parse_int(os.getenv("CHAIN_SUBMIT_TIMEOUT_SEC", ""), 30),
        CHAIN_VERIFY_TIMEOUT_SEC=_parse_int(os.getenv("CHAIN_VERIFY_TIMEOUT_SEC", ""), 15),
        SUBMISSION_STALE_SEC=_parse_int(os.getenv("SUBMISSION_STALE_SEC", ""), 300),
        TX_CAS_MAX_RETRIES=_parse_int(os.getenv("TX_CAS_MAX_RETRIES", ""), 5),
        RECONCILE_INTERVAL_SEC=_parse_int(os.getenv("RECONCILE_INTERVAL_SEC", ""), 15),

        ENV=os.getenv("ENV", "dev"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
