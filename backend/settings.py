import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"
    port: int = 5000
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    store_backend: str = "memory"
    database_url: str | None = None
    db_pool_min: int = 1
    db_pool_max: int = 10
    db_sslmode: str = "prefer"

    ledger_mode: str = "simulated"
    simulated_contract_address: str = "0x1234567890123456789012345678901234567890"
    simulated_owner: str = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
    algod_address: str = ""
    algod_token: str = ""
    algorand_app_id: int = 0
    service_mnemonic: str = ""
    tx_timeout_rounds: int = 12

    enforce_deadline: bool = False

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL") or None
        return cls(
            app_env=os.getenv("APP_ENV", "development"),
            port=int(os.getenv("PORT", "5000")),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", cls.log_format),
            store_backend=os.getenv("STORE_BACKEND", "postgres" if database_url else "memory"),
            database_url=database_url,
            db_pool_min=int(os.getenv("DB_POOL_MIN", "1")),
            db_pool_max=int(os.getenv("DB_POOL_MAX", "10")),
            db_sslmode=os.getenv("DB_SSLMODE", "prefer"),
            ledger_mode=os.getenv("LEDGER_MODE", "simulated"),
            simulated_contract_address=os.getenv("SIMULATED_CONTRACT_ADDRESS", cls.simulated_contract_address),
            simulated_owner=os.getenv("SIMULATED_OWNER", cls.simulated_owner),
            algod_address=os.getenv("ALGORAND_ALGOD_ADDRESS", ""),
            algod_token=os.getenv("ALGORAND_ALGOD_TOKEN", ""),
            algorand_app_id=int(os.getenv("ALGORAND_APP_ID", "0")),
            service_mnemonic=os.getenv("ALGORAND_SERVICE_MNEMONIC", ""),
            tx_timeout_rounds=int(os.getenv("ALGORAND_TX_TIMEOUT_ROUNDS", "12")),
            enforce_deadline=_env_bool("ENFORCE_DEADLINE"),
        )


SETTINGS = Settings.from_env()
