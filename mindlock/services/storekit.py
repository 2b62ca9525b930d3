"""Verification of StoreKit 2 signed transactions (compact JWS)."""
from __future__ import annotations

import json
import logging

from cryptography import x509
from jose import jwk, jws  # type: ignore[import-untyped]
from jose.exceptions import JOSEError  # type: ignore[import-untyped]
from pydantic import ValidationError

from mindlock.schemas.apple import StoreKitTransactionPayload
from mindlock.services.errors import TerminalValidationError

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "ES256"


def format_certificate_pem(der_base64: str) -> str:
    """Wrap a base64 DER certificate from an ``x5c`` header into PEM."""
    lines = [der_base64[index : index + 64] for index in range(0, len(der_base64), 64)]
    body = "\n".join(lines)
    return f"-----BEGIN CERTIFICATE-----\n{body}\n-----END CERTIFICATE-----\n"


class StoreKitVerifier:
    """Checks a signed transaction against the leaf certificate it carries.

    Chain-of-trust validation up to the Apple root is not performed here.
    """

    def verify(self, token: str) -> StoreKitTransactionPayload:
        try:
            header = jws.get_unverified_header(token)
        except JOSEError as exc:
            raise TerminalValidationError(f"StoreKit JWS verification failed: {exc}") from exc

        chain = header.get("x5c")
        if not isinstance(chain, list) or not chain or not isinstance(chain[0], str) or not chain[0]:
            raise TerminalValidationError("StoreKit JWS missing x5c certificate chain")
        algorithm = header.get("alg") or DEFAULT_ALGORITHM

        try:
            certificate = x509.load_pem_x509_certificate(format_certificate_pem(chain[0]).encode("ascii"))
            key = jwk.construct(certificate.public_key(), algorithm)
            raw_payload = jws.verify(token, key, algorithms=[algorithm])
        except (JOSEError, ValueError, TypeError) as exc:
            raise TerminalValidationError(f"StoreKit JWS verification failed: {exc}") from exc

        try:
            payload = StoreKitTransactionPayload.model_validate(json.loads(raw_payload))
        except (ValueError, ValidationError) as exc:
            raise TerminalValidationError("StoreKit JWS payload is not a transaction") from exc

        if not payload.transaction_id or not payload.product_id:
            raise TerminalValidationError("StoreKit JWS missing required fields")

        logger.debug(
            "verified StoreKit transaction",
            extra={"transaction_id": payload.transaction_id, "product_id": payload.product_id},
        )
        return payload


__all__ = ["DEFAULT_ALGORITHM", "StoreKitVerifier", "format_certificate_pem"]
