"""
Public-key recovery of the Blowfish session key in encrypted MIX files.

Encrypted archives start with a key block holding the 56-byte Blowfish key
wrapped with RSA. The archive builder encrypted it with the private key,
so the reader "decrypts" with the public exponent: plain = cipher^e mod n.

Block framing:
- plain block size = (bit_length(n) - 1) // 8 bytes
- crypt block size = plain block size + 1 bytes
- numbers are little-endian inside each block

For Westwood's key (a 319-bit modulus) that is 39 plain / 40 crypt bytes,
so the 56-byte session key spans two blocks: an 80-byte key block that
decrypts to 78 bytes, of which the first 56 are the Blowfish key.
"""

import base64
from dataclasses import dataclass

from Crypto.Util.asn1 import DerInteger

from .errors import KeyRecoveryError

__all__ = ['PublicKey', 'WESTWOOD_PUBLIC_KEY', 'SESSION_KEY_LENGTH', 'decrypt_key_block']

SESSION_KEY_LENGTH = 56

# DER-encoded INTEGER holding the modulus
_WESTWOOD_MODULUS_DER = 'AihRvNoIbTn85FZRYNZRcT+i6KpU+maCsEqr3Q5q+LDB5tH7Tz2qQ38V'
_WESTWOOD_EXPONENT = 0x10001


@dataclass(frozen=True)
class PublicKey:
    """RSA public key (modulus, exponent) with Westwood block framing."""
    modulus: int
    exponent: int

    @classmethod
    def from_der(cls, der: bytes, exponent: int = _WESTWOOD_EXPONENT) -> 'PublicKey':
        """Build a key from a DER-encoded INTEGER modulus."""
        return cls(DerInteger().decode(der).value, exponent)

    @property
    def bit_length(self) -> int:
        return self.modulus.bit_length()

    @property
    def plain_block_size(self) -> int:
        return (self.bit_length - 1) // 8

    @property
    def crypt_block_size(self) -> int:
        return self.plain_block_size + 1

    def block_count(self, plain_length: int) -> int:
        """Number of blocks needed to carry *plain_length* bytes."""
        return -(-plain_length // self.plain_block_size)

    @property
    def key_block_size(self) -> int:
        """Size of the wrapped session key as stored in an archive header."""
        return self.block_count(SESSION_KEY_LENGTH) * self.crypt_block_size

    def decrypt_block(self, block: bytes) -> bytes:
        """
        Decrypt one crypt block with square-and-multiply exponentiation.

        Raises:
            KeyRecoveryError: If the block has the wrong size, is not smaller
                than the modulus, or decrypts to more than a plain block
        """
        if len(block) != self.crypt_block_size:
            raise KeyRecoveryError(
                f"Key block is {len(block)} bytes, expected {self.crypt_block_size}")

        value = int.from_bytes(block, 'little')
        if value >= self.modulus:
            raise KeyRecoveryError("Key block value exceeds the public modulus")

        plain = pow(value, self.exponent, self.modulus)
        try:
            return plain.to_bytes(self.plain_block_size, 'little')
        except OverflowError:
            raise KeyRecoveryError("Key block does not decrypt under this public key") from None

    def decrypt(self, data: bytes) -> bytes:
        """Decrypt consecutive crypt blocks and concatenate the plain blocks."""
        size = self.crypt_block_size
        if len(data) % size:
            raise KeyRecoveryError(
                f"Encrypted data length {len(data)} is not a multiple of {size}")
        return b''.join(self.decrypt_block(data[i:i + size])
                        for i in range(0, len(data), size))


WESTWOOD_PUBLIC_KEY = PublicKey.from_der(base64.b64decode(_WESTWOOD_MODULUS_DER))


def decrypt_key_block(key_block: bytes, public_key: PublicKey = WESTWOOD_PUBLIC_KEY) -> bytes:
    """
    Recover the Blowfish session key from an archive's key block.

    Args:
        key_block: Wrapped key as read from the archive header
        public_key: Key the archive was built for

    Returns:
        56-byte Blowfish key

    Raises:
        KeyRecoveryError: If the block is malformed for this public key
    """
    if len(key_block) != public_key.key_block_size:
        raise KeyRecoveryError(
            f"Key block is {len(key_block)} bytes, expected {public_key.key_block_size}")
    return public_key.decrypt(key_block)[:SESSION_KEY_LENGTH]
