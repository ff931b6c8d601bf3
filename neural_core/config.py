"""
Neural Core Configuration
Environment-driven settings for the snapshot store.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict

DEFAULT_STORAGE_KEY = "neural_core_v1"
BACKEND_MEMORY = "memory"
BACKEND_POSTGRES = "postgres"


@dataclass
class BrainSettings:
    """Where and under which key the brain snapshot is persisted"""

    storage_backend: str = BACKEND_MEMORY
    storage_key: str = DEFAULT_STORAGE_KEY
    db_host: str = "db"
    db_port: int = 5432
    db_name: str = "neural_core"
    db_user: str = "brain_user"
    db_password: str = ""

    @classmethod
    def from_environment(cls) -> "BrainSettings":
        return cls(
            storage_backend=os.getenv("BRAIN_STORAGE_BACKEND", BACKEND_MEMORY).lower(),
            storage_key=os.getenv("BRAIN_STORAGE_KEY", DEFAULT_STORAGE_KEY),
            db_host=os.getenv("DB_HOST", "db"),
            db_port=int(os.getenv("DB_PORT", 5432)),
            db_name=os.getenv("DB_NAME", "neural_core"),
            db_user=os.getenv("DB_USER", "brain_user"),
            db_password=os.getenv("DB_PASSWORD", ""),
        )

    @property
    def persistence_enabled(self) -> bool:
        return self.storage_backend == BACKEND_POSTGRES

    @property
    def db_params(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg2.connect"""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "database": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }
