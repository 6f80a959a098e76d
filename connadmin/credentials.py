"""Bearer credential generation, hashing, and verification.

Credentials are 256-bit random values encoded as URL-safe base64. Only
Argon2id hashes are persisted; the hash is a PHC string
(``$argon2id$v=19$m=65536,t=3,p=4$<salt>$<digest>``) so the algorithm,
parameters, and salt are recoverable from the stored value and parameters can
be raised later without invalidating older hashes.

Hashing and verification are deliberately expensive (tens of milliseconds and
64 MiB per call). Callers run them on worker threads, never on an event loop.
"""

import logging
import secrets
import threading

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

logger = logging.getLogger(__name__)

CREDENTIAL_BYTES = 32
MIN_MEMORY_KIB = 65536
MIN_TIME_COST = 3
MIN_PARALLELISM = 4
HASH_LENGTH = 32
SALT_LENGTH = 16


class CredentialManager:
    """Issues and checks opaque bearer credentials."""

    def __init__(
        self,
        *,
        memory_kib: int = MIN_MEMORY_KIB,
        time_cost: int = MIN_TIME_COST,
        parallelism: int = MIN_PARALLELISM,
    ):
        if memory_kib < MIN_MEMORY_KIB or time_cost < MIN_TIME_COST or parallelism < MIN_PARALLELISM:
            raise ValueError(
                "Argon2id parameters below the floor: "
                f"memory_kib={memory_kib} (min {MIN_MEMORY_KIB}), "
                f"time_cost={time_cost} (min {MIN_TIME_COST}), "
                f"parallelism={parallelism} (min {MIN_PARALLELISM})"
            )
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_kib,
            parallelism=parallelism,
            hash_len=HASH_LENGTH,
            salt_len=SALT_LENGTH,
            type=Type.ID,
        )
        self._decoy_hash: str | None = None
        self._decoy_lock = threading.Lock()

    def generate(self) -> str:
        """Return a new plaintext credential from the OS CSPRNG."""
        credential = secrets.token_urlsafe(CREDENTIAL_BYTES)
        logger.debug("Generated credential (length=%d)", len(credential))
        return credential

    def hash(self, plaintext: str) -> str:
        """Hash a credential with a fresh random salt."""
        encoded = self._hasher.hash(plaintext)
        logger.debug("Hashed credential (hash length=%d)", len(encoded))
        return encoded

    def verify(self, plaintext: str, encoded_hash: str) -> bool:
        """Check a credential against a stored hash.

        The digest comparison is constant time inside libargon2. Malformed or
        foreign-format hashes yield False rather than an exception.
        """
        if not isinstance(plaintext, str) or not isinstance(encoded_hash, str):
            return False
        try:
            return self._hasher.verify(encoded_hash, plaintext)
        except InvalidHashError:
            logger.warning("Credential verification against malformed hash")
            return False
        except VerificationError:
            return False
        except ValueError:
            # Unsupported variant or parameters embedded in the hash string.
            logger.warning("Credential verification against unsupported hash format")
            return False

    def verify_decoy(self, plaintext: str) -> bool:
        """Spend one verification's worth of work and return False.

        Used when no stored hash exists so that lookups of unknown ids cost the
        same as wrong credentials.
        """
        with self._decoy_lock:
            if self._decoy_hash is None:
                self._decoy_hash = self.hash(self.generate())
            decoy = self._decoy_hash
        self.verify(plaintext, decoy)
        return False

    def needs_rehash(self, encoded_hash: str) -> bool:
        """Return True when a stored hash was made with different parameters."""
        try:
            return self._hasher.check_needs_rehash(encoded_hash)
        except ValueError:
            return True
