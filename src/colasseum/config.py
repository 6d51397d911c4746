from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .evaluate import EvaluationMode
from .project_constants import COLASSEUM_ADDRESS


@dataclass(frozen=True)
class Settings:
    rpc_url: str | None
    colasseum_address: str
    oracle_address: str | None
    circuit_wasm: str | None
    circuit_zkey: str | None
    artifact_cache_dir: Path
    node_binary: str
    node_path: str | None
    secret_store_path: Path
    evaluation_mode: EvaluationMode

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None,
        mode_override: str | None = None,
    ) -> "Settings":
        load_dotenv()

        def env(name: str, default: str | None = None) -> str | None:
            value = os.getenv(name, "").strip()
            return value or default

        return Settings(
            rpc_url=_resolve_rpc_url(rpc_url_override),
            colasseum_address=env("COLASSEUM_ADDRESS", COLASSEUM_ADDRESS),
            oracle_address=env("ORACLE_ADDRESS"),
            circuit_wasm=env("CIRCUIT_WASM"),
            circuit_zkey=env("CIRCUIT_ZKEY"),
            artifact_cache_dir=Path(env("ARTIFACT_CACHE_DIR", ".colasseum-cache")),
            node_binary=env("NODE_BINARY", "node"),
            node_path=env("NODE_PATH"),
            secret_store_path=Path(
                env("SECRET_STORE_PATH", str(Path.home() / ".colasseum" / "secrets.json"))
            ),
            evaluation_mode=EvaluationMode(
                mode_override or env("EVALUATION_MODE", EvaluationMode.INTENDED.value)
            ),
        )

    def require_rpc(self) -> str:
        if not self.rpc_url:
            raise RuntimeError(
                "Missing ALCHEMY_API_KEY (or RPC_URL). Put it in .env or export it."
            )
        return self.rpc_url

    def require_oracle(self) -> str:
        if not self.oracle_address:
            raise RuntimeError("Missing ORACLE_ADDRESS. Put it in .env or export it.")
        return self.oracle_address

    def require_circuit(self) -> tuple[str, str]:
        if not self.circuit_wasm or not self.circuit_zkey:
            raise RuntimeError(
                "Missing CIRCUIT_WASM / CIRCUIT_ZKEY. Put them in .env or export them."
            )
        return self.circuit_wasm, self.circuit_zkey


def _resolve_rpc_url(override: str | None) -> str | None:
    # If user provides --rpc-url, trust it.
    if override:
        return override

    env_rpc = os.getenv("RPC_URL", "").strip()
    if env_rpc:
        return env_rpc

    alchemy_key = os.getenv("ALCHEMY_API_KEY", "").strip()
    if not alchemy_key:
        return None
    return f"https://eth-mainnet.g.alchemy.com/v2/{alchemy_key}"
