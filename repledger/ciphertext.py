"""
Ciphertext Arithmetic Adapter.

Exposes opaque encrypted integers and the homomorphic operations the ledger
needs (add, scalar multiply, encrypt constant). No operation on this path ever
decrypts an operand. The default backend is Paillier (python-paillier), which
is additively homomorphic.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Tuple

from phe import paillier

from repledger.config import PAILLIER_KEY_BITS
from repledger.errors import CiphertextFormatError

logger = logging.getLogger(__name__)

U32_MAX = 2**32 - 1

# Opaque encrypted integer. Callers never look inside it.
Ciphertext = paillier.EncryptedNumber


def _check_u32(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > U32_MAX:
        raise ValueError(f"{name} must be within 0..{U32_MAX}, got {value}")
    return value


def key_fingerprint(public_key: paillier.PaillierPublicKey) -> str:
    """Short, stable identifier for a Paillier public key."""
    return hashlib.sha256(str(public_key.n).encode("ascii")).hexdigest()[:16]


class CiphertextAdapterInterface(ABC):
    """Abstract interface for homomorphic arithmetic over u32 ciphertexts."""

    @property
    @abstractmethod
    def key_id(self) -> str:
        """Identifier of the encryption context this adapter operates in."""
        pass

    @abstractmethod
    def validate(self, ciphertext: Any) -> Ciphertext:
        """Return the ciphertext if it belongs to this context, else raise."""
        pass

    @abstractmethod
    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """Encrypted a + b."""
        pass

    @abstractmethod
    def scalar_multiply(self, a: Ciphertext, k: int) -> Ciphertext:
        """Encrypted a * k for a plaintext weight k."""
        pass

    @abstractmethod
    def encrypt_constant(self, k: int) -> Ciphertext:
        """Encrypt a plaintext constant."""
        pass


class PaillierAdapter(CiphertextAdapterInterface):
    """
    Paillier-backed ciphertext adapter.

    An encryption context is a single public key. Ciphertexts produced under
    any other key, or carrying a fractional encoding, are rejected with
    CiphertextFormatError instead of being coerced.

    Example:
        >>> adapter, private_key = generate_context(n_length=1024)
        >>> posts = adapter.encrypt_constant(2)
        >>> replies = adapter.encrypt_constant(1)
        >>> total = adapter.add(posts, adapter.scalar_multiply(replies, 2))
        >>> private_key.decrypt(total)
        4
    """

    def __init__(self, public_key: paillier.PaillierPublicKey):
        if not isinstance(public_key, paillier.PaillierPublicKey):
            raise ValueError("PaillierAdapter requires a PaillierPublicKey")
        self._public_key = public_key
        self._key_id = key_fingerprint(public_key)

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def public_key(self) -> paillier.PaillierPublicKey:
        return self._public_key

    def validate(self, ciphertext: Any) -> Ciphertext:
        if not isinstance(ciphertext, paillier.EncryptedNumber):
            raise CiphertextFormatError(
                f"Expected an encrypted number, got {type(ciphertext).__name__}"
            )
        if ciphertext.public_key != self._public_key:
            raise CiphertextFormatError(
                f"Ciphertext was not produced in encryption context {self._key_id}"
            )
        if ciphertext.exponent != 0:
            raise CiphertextFormatError("Ciphertext does not encode an integer")
        return ciphertext

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self.validate(a) + self.validate(b)

    def scalar_multiply(self, a: Ciphertext, k: int) -> Ciphertext:
        _check_u32(k, "scalar")
        return self.validate(a) * k

    def encrypt_constant(self, k: int) -> Ciphertext:
        _check_u32(k, "constant")
        return self._public_key.encrypt(k)

    # -------------------------------------------------------------------------
    # Wire format
    # -------------------------------------------------------------------------

    def serialize(self, ciphertext: Ciphertext) -> Dict[str, Any]:
        """Encode a ciphertext as a JSON-safe dict."""
        ciphertext = self.validate(ciphertext)
        return {
            "key_id": self._key_id,
            "ciphertext": str(ciphertext.ciphertext()),
            "exponent": ciphertext.exponent,
        }

    def deserialize(self, data: Dict[str, Any]) -> Ciphertext:
        """Decode a ciphertext produced by serialize() in this context."""
        try:
            key_id = data["key_id"]
            raw = int(data["ciphertext"])
            exponent = int(data.get("exponent", 0))
        except (KeyError, TypeError, ValueError) as e:
            raise CiphertextFormatError(f"Malformed ciphertext payload: {e}")

        if key_id != self._key_id:
            raise CiphertextFormatError(
                f"Ciphertext context {key_id} does not match {self._key_id}"
            )
        if raw <= 0 or raw >= self._public_key.nsquare:
            raise CiphertextFormatError("Ciphertext value out of range for this context")

        return self.validate(paillier.EncryptedNumber(self._public_key, raw, exponent))


def generate_context(
    n_length: int = PAILLIER_KEY_BITS,
) -> Tuple[PaillierAdapter, paillier.PaillierPrivateKey]:
    """
    Generate a fresh Paillier encryption context.

    The private key belongs to the decryption oracle (or a test harness);
    the ledger itself only ever receives the adapter.

    Args:
        n_length: Modulus size in bits.

    Returns:
        (adapter, private_key)
    """
    public_key, private_key = paillier.generate_paillier_keypair(n_length=n_length)
    adapter = PaillierAdapter(public_key)
    logger.info(f"Generated encryption context {adapter.key_id} ({n_length} bits)")
    return adapter, private_key
