"""Signed registry checkpoints.

A checkpoint commits to the registry's state root, identifier counters and
audit-chain head at a point in time. Anyone holding the checkpoint and the
snapshot it was taken from can check that neither was altered.

Profile:
- Signers are identified by `did:key` (Ed25519 only)
- Proof objects carry a raw Ed25519 signature as base64url in `jws`
- Signing input is the canonical JSON of the checkpoint with `proof` removed,
  so several parties can co-sign the same checkpoint
"""

from __future__ import annotations

import base64
import hmac
import json
import pathlib
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from laptop_registry.core import canonical_json_bytes, now_rfc3339
from laptop_registry.observability import RegistryLayer, get_logger
from laptop_registry.registry import LaptopRegistry
from laptop_registry.snapshot import state_root

CHECKPOINT_TYPE = "LaptopRegistryCheckpoint"
PROOF_TYPE = "LaptopRegistryEd25519Signature2025"
_ALLOWED_PROOF_PURPOSES = {"assertionMethod"}

_RFC3339_Z_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")
_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")

# multicodec prefix for ed25519-pub
_ED25519_MULTICODEC = bytes([0xED, 0x01])

logger = get_logger("proofs", RegistryLayer.STORAGE)


# ---------------------------------------------------------------------------
# Encodings
# ---------------------------------------------------------------------------

B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58encode(data: bytes) -> str:
    n_pad = len(data) - len(data.lstrip(b"\x00"))
    num = int.from_bytes(data, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b58decode(text: str) -> bytes:
    raw = text.encode("ascii")
    num = 0
    for c in raw:
        if c not in B58_MAP:
            raise ValueError(f"invalid base58 character: {chr(c)!r}")
        num = num * 58 + B58_MAP[c]
    n_pad = len(raw) - len(raw.lstrip(B58_ALPHABET[:1]))
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + body


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    pad = "=" * ((4 - len(text) % 4) % 4)
    return base64.urlsafe_b64decode((text + pad).encode("ascii"))


def signing_input(document: Dict[str, Any]) -> bytes:
    """Canonical bytes of ``document`` without its `proof` member."""
    return canonical_json_bytes({k: v for k, v in document.items() if k != "proof"})


# ---------------------------------------------------------------------------
# did:key (Ed25519)
# ---------------------------------------------------------------------------

def did_key_from_ed25519_public_key(pub: bytes) -> str:
    return "did:key:z" + b58encode(_ED25519_MULTICODEC + pub)


def ed25519_public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Resolve a `did:key:z...` (optionally with a #fragment) to its public key."""
    did = did.split("#", 1)[0]
    if not did.startswith("did:key:z"):
        raise ValueError("only did:key:z... identifiers are supported")

    decoded = b58decode(did[len("did:key:z"):])
    if not decoded.startswith(_ED25519_MULTICODEC):
        raise ValueError("did:key multicodec prefix is not ed25519-pub")
    raw = decoded[len(_ED25519_MULTICODEC):]
    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def generate_ed25519_jwk(kid: str = "key-1") -> Dict[str, Any]:
    """Generate a new Ed25519 OKP JWK keypair."""
    priv = Ed25519PrivateKey.generate()
    priv_bytes = priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    pub_bytes = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return {
        "kty": "OKP",
        "crv": "Ed25519",
        "x": b64url_encode(pub_bytes),
        "d": b64url_encode(priv_bytes),
        "kid": kid,
    }


def public_jwk_from_private_jwk(jwk: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(jwk)
    out.pop("d", None)
    return out


def load_ed25519_private_key_from_jwk(jwk: Dict[str, Any]) -> Tuple[Ed25519PrivateKey, str]:
    """Load an Ed25519 private key from an OKP JWK.

    Returns:
        (private_key, did:key) where the DID is derived from the key itself.
    """
    if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
        raise ValueError("only OKP/Ed25519 JWKs are supported")
    d = jwk.get("d")
    if not d:
        raise ValueError("JWK must include the private member 'd'")

    priv = Ed25519PrivateKey.from_private_bytes(b64url_decode(d))
    pub_bytes = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    x = jwk.get("x")
    if x and b64url_decode(x) != pub_bytes:
        raise ValueError("JWK public member 'x' does not match private key 'd'")
    return priv, did_key_from_ed25519_public_key(pub_bytes)


def load_proof_keypair(
    path: Union[str, pathlib.Path],
    default_kid: str = "key-1",
) -> Tuple[Ed25519PrivateKey, str]:
    """Load a private JWK file.

    Returns:
        (private_key, verification_method) with the method as ``did:key:...#kid``.
    """
    key_obj = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    if not isinstance(key_obj, dict):
        raise ValueError("key file must be a JSON object")
    priv, did = load_ed25519_private_key_from_jwk(key_obj)
    kid = str(key_obj.get("kid") or default_kid).strip() or default_kid
    return priv, f"{did}#{kid}"


# ---------------------------------------------------------------------------
# Proofs
# ---------------------------------------------------------------------------

@dataclass
class ProofResult:
    verification_method: str
    ok: bool
    error: str = ""


def _proofs_as_list(proof: Any) -> List[Any]:
    if proof is None:
        return []
    if isinstance(proof, list):
        return list(proof)
    return [proof]


def _validate_proof_object(p: Any) -> None:
    """Check proof shape; the signature itself is verified separately."""
    if not isinstance(p, dict):
        raise ValueError("proof must be an object")

    t = p.get("type")
    if not isinstance(t, str) or not hmac.compare_digest(t, PROOF_TYPE):
        raise ValueError(f"unsupported proof.type: {t!r} (expected {PROOF_TYPE})")

    created = p.get("created")
    if not isinstance(created, str) or not _RFC3339_Z_RE.match(created):
        raise ValueError("proof.created must be RFC3339 (seconds, Z)")

    vm = p.get("verificationMethod")
    if not isinstance(vm, str) or not vm.startswith("did:key:"):
        raise ValueError("proof.verificationMethod must be a did:key")

    purpose = p.get("proofPurpose")
    if purpose not in _ALLOWED_PROOF_PURPOSES:
        raise ValueError(f"unsupported proof.proofPurpose: {purpose!r}")

    jws = p.get("jws")
    if not isinstance(jws, str) or not jws or not _B64URL_RE.match(jws):
        raise ValueError("proof.jws must be a non-empty unpadded base64url string")


def add_ed25519_proof(
    document: Dict[str, Any],
    private_key: Ed25519PrivateKey,
    verification_method: str,
    proof_purpose: str = "assertionMethod",
    created: Optional[str] = None,
) -> Dict[str, Any]:
    """Sign ``document`` in place, appending to any existing proofs."""
    proof_obj = {
        "type": PROOF_TYPE,
        "created": created or now_rfc3339(),
        "verificationMethod": verification_method,
        "proofPurpose": proof_purpose,
        "jws": b64url_encode(private_key.sign(signing_input(document))),
    }
    _validate_proof_object(proof_obj)

    existing = document.get("proof")
    if existing is None:
        document["proof"] = proof_obj
    elif isinstance(existing, list):
        existing.append(proof_obj)
    else:
        document["proof"] = [existing, proof_obj]
    return document


def verify_proofs(document: Dict[str, Any]) -> List[ProofResult]:
    """Verify every proof on ``document``; one ProofResult per proof."""
    msg = signing_input(document)
    results: List[ProofResult] = []
    for p in _proofs_as_list(document.get("proof")):
        vm = str(p.get("verificationMethod") or "") if isinstance(p, dict) else ""
        try:
            _validate_proof_object(p)
            pub = ed25519_public_key_from_did_key(vm)
            sig = b64url_decode(p["jws"])
            if len(sig) != 64:
                raise ValueError(f"Ed25519 signature must be 64 bytes, got {len(sig)}")
            pub.verify(sig, msg)
            results.append(ProofResult(verification_method=vm, ok=True))
        except InvalidSignature:
            results.append(ProofResult(verification_method=vm, ok=False, error="signature mismatch"))
        except ValueError as ex:
            results.append(ProofResult(verification_method=vm, ok=False, error=str(ex)))
    return results


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------

def build_checkpoint(registry: LaptopRegistry, as_of: Optional[str] = None) -> Dict[str, Any]:
    """Unsigned checkpoint of the registry's current state."""
    with registry.lock:
        checkpoint = {
            "type": CHECKPOINT_TYPE,
            "as_of": as_of or now_rfc3339(),
            "state_root_sha256": state_root(registry),
            "last_token_id": registry.state.last_token_id,
            "last_log_id": registry.state.last_log_id,
            "audit_head": registry.audit_log.head,
            "audit_length": len(registry.audit_log),
        }
    logger.info(
        "Checkpoint built",
        operation="build_checkpoint",
        state_root=checkpoint["state_root_sha256"],
    )
    return checkpoint


def verify_checkpoint(
    checkpoint: Dict[str, Any],
    registry: Optional[LaptopRegistry] = None,
) -> List[str]:
    """Check a signed checkpoint, optionally against a live registry.

    Returns:
        List of error messages (empty if the checkpoint holds)
    """
    errors: List[str] = []
    if checkpoint.get("type") != CHECKPOINT_TYPE:
        errors.append(f"unexpected checkpoint type: {checkpoint.get('type')!r}")

    results = verify_proofs(checkpoint)
    if not results:
        errors.append("checkpoint carries no proof")
    errors.extend(f"{r.verification_method}: {r.error}" for r in results if not r.ok)

    if registry is not None:
        with registry.lock:
            live = {
                "state_root_sha256": state_root(registry),
                "audit_head": registry.audit_log.head,
                "audit_length": len(registry.audit_log),
            }
        for key, expected in live.items():
            if checkpoint.get(key) != expected:
                errors.append(
                    f"{key} mismatch: checkpoint has {checkpoint.get(key)!r}, registry has {expected!r}"
                )
    return errors
