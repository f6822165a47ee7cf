"""Summary: Sealing of mailbox tokens stored in the credential table.

Importance: Keeps OAuth tokens obscured at rest and detects rows that no longer
decode under the configured secret.
Alternatives: Use a dedicated secrets manager or strong encryption library.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets


SEALED_PREFIX = "rd1"
NONCE_BYTES = 12
TAG_BYTES = 16


class TokenDecodeError(ValueError):
    """Raised when a stored token is corrupt or was sealed with another secret."""


class TokenCodec:
    """Summary: Seals credential tokens with a per-token nonce and an integrity tag.

    Importance: The same token never encodes to the same text twice, and a
    rotated ``token_secret`` surfaces as a decode error rather than garbage sent
    to Google.
    Alternatives: Use Fernet or a KMS-backed envelope.

    Sealed form: ``rd1.<nonce>.<ciphertext>.<tag>``, each part unpadded base64url.
    """

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode("utf-8")

    def encode(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(NONCE_BYTES)
        raw = plaintext.encode("utf-8")
        body = bytes(b ^ k for b, k in zip(raw, self._keystream(nonce, len(raw))))
        parts = [nonce, body, self._tag(nonce, body)]
        return ".".join([SEALED_PREFIX, *(_b64(part) for part in parts)])

    def decode(self, sealed: str) -> str:
        """Summary: Verify and open a sealed token.

        Importance: Tokens are only handed to the mailbox after the tag checks out.
        Alternatives: Decode blindly and let the provider reject bad tokens.
        """

        prefix, _, rest = sealed.partition(".")
        pieces = rest.split(".")
        if prefix != SEALED_PREFIX or len(pieces) != 3:
            raise TokenDecodeError("Stored token is not in sealed form")
        try:
            nonce, body, tag = (_unb64(piece) for piece in pieces)
        except ValueError as exc:
            raise TokenDecodeError(f"Stored token is not valid base64: {exc}") from exc
        if not hmac.compare_digest(tag, self._tag(nonce, body)):
            raise TokenDecodeError("Stored token failed verification")
        raw = bytes(b ^ k for b, k in zip(body, self._keystream(nonce, len(body))))
        return raw.decode("utf-8")

    def encode_optional(self, plaintext: str | None) -> str | None:
        return self.encode(plaintext) if plaintext else None

    def decode_optional(self, sealed: str | None) -> str | None:
        return self.decode(sealed) if sealed else None

    def _tag(self, nonce: bytes, body: bytes) -> bytes:
        return hmac.new(self._secret, nonce + body, hashlib.sha256).digest()[:TAG_BYTES]

    def _keystream(self, nonce: bytes, length: int) -> bytes:
        blocks: list[bytes] = []
        counter = 0
        while sum(len(block) for block in blocks) < length:
            blocks.append(hashlib.sha256(self._secret + nonce + counter.to_bytes(4, "big")).digest())
            counter += 1
        return b"".join(blocks)[:length]


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
