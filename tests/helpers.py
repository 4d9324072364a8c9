"""Shared test helpers (plain functions, not fixtures)."""

from __future__ import annotations

import base64
import json
import time
import uuid
from datetime import datetime

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from stayza.gateway.signatures import sign

TEST_ISSUER = "https://auth.example.com"
TEST_AUDIENCE = "stayza-api"
TEST_JWKS_URL = "https://auth.example.com/.well-known/jwks.json"


def generate_rsa_keypair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


def create_jwks(public_key, kid: str = "test-key-1") -> dict:
    numbers = public_key.public_numbers()

    def b64(n: int) -> str:
        raw = n.to_bytes((n.bit_length() + 7) // 8, "big")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": b64(numbers.n),
                "e": b64(numbers.e),
            }
        ]
    }


def create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = TEST_ISSUER,
    aud: str = TEST_AUDIENCE,
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    now = int(time.time())
    payload = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
    }
    if azp:
        payload["azp"] = azp
    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


def oidc_env() -> dict[str, str]:
    return {
        "OIDC_ISSUER": TEST_ISSUER,
        "OIDC_AUDIENCE": TEST_AUDIENCE,
        "OIDC_JWKS_URL": TEST_JWKS_URL,
    }


def webhook_body(event: str, order_id: str | None, payment_id: str | None) -> bytes:
    entity = {"id": payment_id, "order_id": order_id, "status": event.split(".")[-1]}
    return json.dumps(
        {"event": event, "payload": {"payment": {"entity": entity}}},
        separators=(",", ":"),
    ).encode()


def checkout_signature(order_id: str, payment_id: str, secret: bytes = b"key-secret") -> str:
    return sign(secret, f"{order_id}|{payment_id}".encode())


def sample_reservation(**overrides) -> dict:
    """Reservation dict shaped like reservations_repository rows."""
    reservation = {
        "id": str(uuid.uuid4()),
        "booking_ref": "STZ-123456-ABCDEF",
        "hotel_id": "hotel-1",
        "user_id": "user-1",
        "check_in": datetime(2026, 11, 2).date(),
        "check_out": datetime(2026, 11, 4).date(),
        "rooms": 2,
        "nights": 2,
        "price_per_night": 1530,
        "subtotal": 6120,
        "commission_percent": 15,
        "commission_amount": 918,
        "owner_payout_amount": 5202,
        "currency": "INR",
        "status": "LOCKED",
        "lock_expires_at": None,
        "payment_status": "PENDING",
        "gateway_order_id": None,
        "gateway_payment_id": None,
    }
    reservation.update(overrides)
    return reservation


def unique_user() -> str:
    return f"user-{uuid.uuid4().hex[:12]}"


def available_rooms(hotel_id: str) -> int:
    from stayza.infra.db import txn

    with txn() as cur:
        cur.execute("SELECT available_rooms FROM hotels WHERE id = %s", (hotel_id,))
        return cur.fetchone()[0]


def load_reservation(reservation_id: str) -> dict:
    from stayza.infra.db import txn
    from stayza.infra.repositories.reservations_repository import get_reservation

    with txn() as cur:
        return get_reservation(cur, reservation_id)


def attach_order(reservation_id: str, order_id: str | None = None) -> str:
    """Give a reservation a gateway order id without calling the gateway."""
    from stayza.infra.db import txn
    from stayza.infra.repositories.reservations_repository import set_gateway_order

    order_id = order_id or f"order_{uuid.uuid4().hex[:14]}"
    with txn() as cur:
        set_gateway_order(cur, reservation_id=reservation_id, gateway_order_id=order_id)
    return order_id
