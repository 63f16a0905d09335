"""
Symmetric encryption of QR payloads.
Certificate fields travel inside the verification URL as an AES-256-CBC blob
plus its IV, both hex encoded; only a holder of the service key can read them.
"""

import hashlib
import json
import os
from typing import Any, Dict, Tuple
from urllib.parse import parse_qs, unquote, urlsplit

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .hashing import canonical_json

IV_SIZE = 16


def _derive_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_data(plaintext: str, secret: str) -> Tuple[str, str]:
    """
    Encrypt text with AES-256-CBC.

    Args:
        plaintext: Text to encrypt
        secret: Service secret; the AES key is its SHA-256 digest

    Returns:
        Tuple of (ciphertext hex, IV hex)
    """
    iv = os.urandom(IV_SIZE)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(_derive_key(secret)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return ciphertext.hex(), iv.hex()


def decrypt_data(ciphertext_hex: str, iv_hex: str, secret: str) -> str:
    """
    Decrypt a payload produced by encrypt_data.

    Raises:
        ValueError: If the blob, IV, key or padding is wrong
    """
    iv = bytes.fromhex(iv_hex)
    if len(iv) != IV_SIZE:
        raise ValueError("Invalid initialization vector")

    decryptor = Cipher(algorithms.AES(_derive_key(secret)), modes.CBC(iv)).decryptor()
    padded = decryptor.update(bytes.fromhex(ciphertext_hex)) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    plaintext = unpadder.update(padded) + unpadder.finalize()
    return plaintext.decode("utf-8")


def decrypt_json(ciphertext_hex: str, iv_hex: str, secret: str) -> Dict[str, Any]:
    """Decrypt and parse a JSON object payload."""
    data = json.loads(decrypt_data(ciphertext_hex, iv_hex, secret))
    if not isinstance(data, dict):
        raise ValueError("Decrypted payload is not an object")
    return data


def generate_encrypted_url(fields: Dict[str, Any], base_url: str, secret: str) -> str:
    """Build the verification URL carrying the encrypted field map."""
    ciphertext, iv = encrypt_data(canonical_json(fields), secret)
    return f"{base_url}?q={ciphertext}&iv={iv}"


def parse_encrypted_url(url: str) -> Tuple[str, str]:
    """
    Pull the encrypted blob and IV out of a verification URL.

    Raises:
        ValueError: If either parameter is missing
    """
    query = parse_qs(urlsplit(unquote(url.strip())).query)
    ciphertext = query.get("q", [""])[0]
    iv = query.get("iv", [""])[0]
    if not ciphertext or not iv:
        raise ValueError("Verification URL has no encrypted payload")
    return ciphertext, iv
