"""
Decryption oracle boundary.

The ledger never decrypts. It hands an encrypted score to an external oracle,
which later answers with the cleartext and a proof: a compact JWS signed with
the oracle's Ed25519 key over the request id and the cleartext. ProofVerifier
authenticates those answers against the oracle's known public keys.

LocalDecryptionOracle is an in-process oracle for development and test
harnesses that hold the Paillier private key.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from jwcrypto import jwk, jws
from jwcrypto.common import JWException, json_encode
from phe import paillier

from repledger.ciphertext import U32_MAX, Ciphertext
from repledger.errors import InvalidProof, NotFound

logger = logging.getLogger(__name__)

PROOF_TYPE = "repledger-decryption+jwt"


def _is_integer(value) -> bool:
    # bool is an int subclass but never a valid score
    return isinstance(value, int) and not isinstance(value, bool)


class DecryptionOracleInterface(ABC):
    """Outbound capability: submit a ciphertext for off-path decryption."""

    @abstractmethod
    async def submit_for_decryption(self, ciphertext: Ciphertext) -> int:
        """
        Submit a ciphertext and return the oracle-assigned request id.

        The call does not wait for the decryption; the result arrives later
        through the ledger's callback.
        """
        pass


def generate_oracle_identity() -> Tuple[str, str]:
    """
    Generate a fresh Ed25519 keypair for a decryption oracle.

    Returns:
        (private_key_jwk, public_key_jwk) as JSON strings.
    """
    key = jwk.JWK.generate(kty="OKP", crv="Ed25519")
    key_id = key.thumbprint()
    key = jwk.JWK.from_json(json.dumps({**json.loads(key.export_private()), "kid": key_id}))
    return key.export_private(), key.export_public()


class ProofVerifier:
    """
    Authenticates decryption callbacks.

    A proof is accepted when one of the trusted oracle keys verifies the
    signature and the signed claims name the same request id and cleartext
    as the callback.

    Example:
        >>> verifier = ProofVerifier([oracle_public_jwk])
        >>> verifier.verify(request_id=3, cleartext=4, proof=token)
    """

    def __init__(self, trusted_keys: Iterable[str], key_id: Optional[str] = None):
        """
        Initialize the verifier.

        Args:
            trusted_keys: Oracle public keys (JWK JSON strings). More than one
                is allowed to cover key rotation.
            key_id: If set, proofs must also name this encryption context.

        Raises:
            ValueError: If no usable key is given.
        """
        self._keys: List[jwk.JWK] = []
        for key_json in trusted_keys:
            try:
                key = jwk.JWK.from_json(key_json)
            except Exception as e:
                raise ValueError(f"Invalid oracle public key: {e}")
            if key["kty"] != "OKP" or key.get("crv") != "Ed25519":
                raise ValueError("Oracle key must be an Ed25519 key (OKP with crv=Ed25519)")
            self._keys.append(key)

        if not self._keys:
            raise ValueError("ProofVerifier requires at least one trusted oracle key")

        self._key_id = key_id

    def verify(self, request_id: int, cleartext: int, proof: Union[str, bytes]) -> Dict:
        """
        Validate a proof for (request_id, cleartext).

        Returns:
            The signed claims.

        Raises:
            InvalidProof: If the proof is malformed, unsigned by a trusted key,
                or bound to different values.
        """
        if not _is_integer(cleartext):
            raise InvalidProof(f"Cleartext must be an integer, got {type(cleartext).__name__}")

        if isinstance(proof, bytes):
            try:
                proof = proof.decode("ascii")
            except UnicodeDecodeError:
                raise InvalidProof("Proof is not a compact JWS")
        if not isinstance(proof, str) or proof.count(".") != 2:
            raise InvalidProof("Proof is not a compact JWS")

        token = jws.JWS()
        try:
            token.deserialize(proof)
        except JWException as e:
            raise InvalidProof(f"Malformed proof: {e}")

        payload = None
        for key in self._keys:
            try:
                token.verify(key)
            except JWException:
                continue
            payload = token.payload
            break

        if payload is None:
            raise InvalidProof("Proof signature not valid for any trusted oracle key")

        try:
            claims = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise InvalidProof("Proof payload is not a JSON claim set")
        if not isinstance(claims, dict):
            raise InvalidProof("Proof payload is not a JSON claim set")

        if not _is_integer(claims.get("cleartext")):
            raise InvalidProof("Proof does not carry an integer cleartext")
        if claims.get("request_id") != request_id:
            raise InvalidProof("Proof was issued for a different request")
        if claims.get("cleartext") != cleartext:
            raise InvalidProof("Proof does not match the supplied cleartext")
        if self._key_id is not None and claims.get("key_id") != self._key_id:
            raise InvalidProof("Proof was issued for a different encryption context")
        if not 0 <= cleartext <= U32_MAX:
            raise InvalidProof(f"Cleartext {cleartext} is outside the u32 range")

        return claims


class LocalDecryptionOracle(DecryptionOracleInterface):
    """
    In-process decryption oracle.

    Queues submitted ciphertexts under increasing request ids. Nothing is
    delivered automatically: fulfill() decrypts and signs, and the caller
    relays the result to the ledger whenever (and in whatever order) it likes.

    Example:
        >>> oracle = LocalDecryptionOracle(private_key, oracle_private_jwk)
        >>> request_id = await ledger.request_decryption(user_id=7)
        >>> cleartext, proof = await oracle.fulfill(request_id)
        >>> await ledger.on_decryption_callback(request_id, cleartext, proof)
    """

    def __init__(
        self,
        private_key: paillier.PaillierPrivateKey,
        signing_key: str,
        key_id: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the oracle.

        Args:
            private_key: Paillier private key for the encryption context.
            signing_key: JWK JSON string containing the Ed25519 private key.
            key_id: Encryption context id to embed in proofs.
            clock: Time source (seconds).

        Raises:
            ValueError: If signing_key is missing or invalid.
        """
        if not signing_key:
            raise ValueError("LocalDecryptionOracle requires 'signing_key' (JWK JSON string)")

        try:
            self._signing_key = jwk.JWK.from_json(signing_key)
            if self._signing_key["kty"] != "OKP" or self._signing_key.get("crv") != "Ed25519":
                raise ValueError("Key must be an Ed25519 key (OKP with crv=Ed25519)")
        except Exception as e:
            raise ValueError(f"Invalid JWK signing key: {e}")

        self._private_key = private_key
        self._key_id = key_id
        self._clock = clock
        self._queue: Dict[int, Ciphertext] = {}
        self._fulfilled: Dict[int, Tuple[int, str]] = {}
        self._next_id = 0
        self._lock = asyncio.Lock()

    async def submit_for_decryption(self, ciphertext: Ciphertext) -> int:
        async with self._lock:
            self._next_id += 1
            self._queue[self._next_id] = ciphertext
            logger.debug(f"Oracle queued decryption request {self._next_id}")
            return self._next_id

    async def fulfill(self, request_id: int) -> Tuple[int, str]:
        """
        Decrypt a queued ciphertext and sign the result.

        Fulfilling the same request again returns the same answer.

        Raises:
            NotFound: If the oracle never issued this request id.
        """
        async with self._lock:
            if request_id in self._fulfilled:
                return self._fulfilled[request_id]
            ciphertext = self._queue.pop(request_id, None)
            if ciphertext is None:
                raise NotFound(f"Oracle has no request {request_id}")

            cleartext = self._private_key.decrypt(ciphertext)
            result = (cleartext, self.sign_result(request_id, cleartext))
            self._fulfilled[request_id] = result
            return result

    def sign_result(self, request_id: int, cleartext: int) -> str:
        """Produce a proof binding cleartext to request_id."""
        claims = {
            "request_id": request_id,
            "cleartext": cleartext,
            "iat": int(self._clock()),
        }
        if self._key_id is not None:
            claims["key_id"] = self._key_id

        token = jws.JWS(json.dumps(claims, sort_keys=True, separators=(",", ":")))
        protected_header = {
            "alg": "EdDSA",
            "typ": PROOF_TYPE,
            "kid": self._signing_key.get("kid") or "oracle",
        }
        token.add_signature(self._signing_key, None, json_encode(protected_header), None)
        return token.serialize(compact=True)

    @property
    def pending_ids(self) -> List[int]:
        """Request ids queued but not yet fulfilled."""
        return sorted(self._queue)

    def get_public_key_jwk(self) -> str:
        """Returns the oracle's public key in JWK format for verification."""
        return self._signing_key.export_public()
