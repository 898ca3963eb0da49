# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Configuration
#
# Endpoints, credentials and limits. Defaults point at the public
# NEAR AI / NVIDIA services; every field can be overridden through an
# INFERPROOF_* environment variable or directly by the CLI.

import os
from typing import Optional

from pydantic import BaseModel

NEAR_AI_BASE_URL = "https://cloud-api.near.ai/v1"
NRAS_BASE_URL = "https://nras.attestation.nvidia.com/v3"
QUOTE_VERIFY_URL = "https://cloud-api.phala.network/api/v1/attestations/verify"
NEAR_RPC_URL = "https://rpc.testnet.near.org"
SHARE_API_URL = "http://127.0.0.1:8390"

ENV_PREFIX = "INFERPROOF_"


class InferproofConfig(BaseModel):
    near_ai_base_url: str = NEAR_AI_BASE_URL
    near_ai_api_key: Optional[str] = None
    nras_base_url: str = NRAS_BASE_URL
    quote_verify_url: str = QUOTE_VERIFY_URL
    share_api_url: str = SHARE_API_URL
    near_rpc_url: str = NEAR_RPC_URL
    contract_id: Optional[str] = None
    request_timeout: float = 30.0  # seconds, per outbound HTTP call
    check_timeout: float = 60.0  # seconds, per verification check
    max_concurrent_checks: int = 4
    passphrase_words: int = 6
    cache_path: str = "share_cache.db"

    @classmethod
    def from_env(cls, environ=None) -> "InferproofConfig":
        """Build a config from INFERPROOF_<FIELD> variables (NEAR_AI_API_KEY also accepted)."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw
        if "near_ai_api_key" not in values and environ.get("NEAR_AI_API_KEY"):
            values["near_ai_api_key"] = environ["NEAR_AI_API_KEY"]
        return cls.model_validate(values)
