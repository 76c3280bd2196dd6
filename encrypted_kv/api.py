"""HTTP API for TEE-backed encrypted values."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import GatewaySettings
from .errors import GatewayError
from .key_manager_client import PAYMENT_KEY_HEADER
from .vault import EncryptedVault

logger = logging.getLogger(__name__)

API_PREFIX = "/v1/kv/encrypted"


class EncryptPayload(BaseModel):
    account_id: str
    value: str
    group_id: Optional[str] = Field(default=None)


class DecryptPayload(BaseModel):
    account_id: str
    ciphertext: str = Field(description="enc:AES256:<key_id>:<ciphertext_b64>, or raw base64 ciphertext")
    group_id: Optional[str] = Field(default=None)


class BatchItemPayload(BaseModel):
    key: str
    value: str


class BatchEncryptPayload(BaseModel):
    account_id: str
    items: List[BatchItemPayload]
    group_id: Optional[str] = Field(default=None)


class EncryptedResponse(BaseModel):
    encrypted_value: str
    key_id: str
    attestation: Optional[str] = None


class DecryptedResponse(BaseModel):
    plaintext: str
    plaintext_utf8: Optional[str] = None
    key_id: str


class BatchItemResponse(BaseModel):
    key: str
    encrypted_value: str
    error: Optional[str] = None


class BatchEncryptResponse(BaseModel):
    key_id: str
    items: List[BatchItemResponse]


class NearTransactionRecord(BaseModel):
    receiver_id: str
    method_name: str
    args: str
    deposit: str
    gas: str


class PreparedTransactionResponse(BaseModel):
    transaction: NearTransactionRecord
    submit_url: str
    instructions: str


class TransactionResultResponse(BaseModel):
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None


def create_app(vault: EncryptedVault, settings: GatewaySettings) -> FastAPI:
    app = FastAPI(
        title="Encrypted KV Gateway",
        version="0.1.0",
        root_path=getattr(settings, "api_root_path", "") or "",
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(_: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("Upstream failure: %s", exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc), "code": exc.code})

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post(f"{API_PREFIX}/encrypt", response_model=EncryptedResponse)
    def encrypt(
        payload: EncryptPayload,
        payment_key: Optional[str] = Header(default=None, alias=PAYMENT_KEY_HEADER),
    ) -> EncryptedResponse:
        result = vault.encrypt(
            payment_key,
            account_id=payload.account_id,
            value=payload.value,
            group_id=payload.group_id,
        )
        return EncryptedResponse(**result)

    @app.post(f"{API_PREFIX}/decrypt", response_model=DecryptedResponse)
    def decrypt(
        payload: DecryptPayload,
        payment_key: Optional[str] = Header(default=None, alias=PAYMENT_KEY_HEADER),
    ) -> DecryptedResponse:
        result = vault.decrypt(
            payment_key,
            account_id=payload.account_id,
            ciphertext=payload.ciphertext,
            group_id=payload.group_id,
        )
        return DecryptedResponse(**result)

    @app.post(f"{API_PREFIX}/batch-encrypt", response_model=BatchEncryptResponse)
    def batch_encrypt(
        payload: BatchEncryptPayload,
        payment_key: Optional[str] = Header(default=None, alias=PAYMENT_KEY_HEADER),
    ) -> BatchEncryptResponse:
        result = vault.batch_encrypt(
            payment_key,
            account_id=payload.account_id,
            items=[item.model_dump() for item in payload.items],
            group_id=payload.group_id,
        )
        return BatchEncryptResponse(**result)

    @app.post(f"{API_PREFIX}/prepare-encrypt", response_model=PreparedTransactionResponse)
    async def prepare_encrypt(payload: EncryptPayload) -> PreparedTransactionResponse:
        prepared = vault.prepare_encrypt(
            account_id=payload.account_id,
            value=payload.value,
            group_id=payload.group_id,
        )
        return PreparedTransactionResponse(**prepared)

    @app.post(f"{API_PREFIX}/prepare-decrypt", response_model=PreparedTransactionResponse)
    async def prepare_decrypt(payload: DecryptPayload) -> PreparedTransactionResponse:
        prepared = vault.prepare_decrypt(
            account_id=payload.account_id,
            ciphertext=payload.ciphertext,
            group_id=payload.group_id,
        )
        return PreparedTransactionResponse(**prepared)

    @app.get(f"{API_PREFIX}/result", response_model=TransactionResultResponse)
    def transaction_result(
        tx_hash: str = Query(..., min_length=1),
        sender_id: Optional[str] = Query(default=None),
    ) -> TransactionResultResponse:
        return TransactionResultResponse(**vault.result(tx_hash, sender_id))

    return app


def run_api(app: FastAPI, settings: GatewaySettings) -> None:
    """Run the FastAPI app using uvicorn."""
    import uvicorn  # Imported lazily to avoid mandatory dependency in tests

    config = uvicorn.Config(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    server.run()


__all__ = ["create_app", "run_api"]
