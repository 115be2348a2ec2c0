"""Streaming archive encryption compatible with `openssl enc -aes256 -salt -pbkdf2`.

File layout: b"Salted__" + 8-byte salt + AES-256-CBC ciphertext (PKCS#7).
Key and IV come from PBKDF2-HMAC-SHA256 over the passphrase, 10000 rounds,
so `openssl enc -d -aes256 -salt -pbkdf2 -pass pass:<key>` decrypts our files.
"""
from __future__ import annotations
import secrets
from typing import BinaryIO, Tuple
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend
from config.settings import PBKDF2_ITERATIONS, SALT_LENGTH, KEY_LENGTH, IV_LENGTH, SALT_MAGIC

_CHUNK = 64 * 1024


class CryptoError(Exception):
	pass


def derive_key_iv(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> Tuple[bytes, bytes]:
	if not passphrase:
		raise CryptoError("Passphrase empty")
	kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LENGTH + IV_LENGTH, salt=salt, iterations=iterations, backend=default_backend())
	material = kdf.derive(passphrase.encode())
	return material[:KEY_LENGTH], material[KEY_LENGTH:]


class EncryptingWriter:
	"""File-like sink: bytes written here land encrypted in `fileobj`.

	Call `finish()` once to flush the final padded block; the underlying file
	is left open for the caller.
	"""

	def __init__(self, fileobj: BinaryIO, passphrase: str):
		self._out = fileobj
		salt = secrets.token_bytes(SALT_LENGTH)
		key, iv = derive_key_iv(passphrase, salt)
		self._enc = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend()).encryptor()
		self._pad = padding.PKCS7(algorithms.AES.block_size).padder()
		self._finished = False
		self._out.write(SALT_MAGIC + salt)

	def write(self, data: bytes) -> int:
		if self._finished:
			raise CryptoError("write after finish")
		self._out.write(self._enc.update(self._pad.update(bytes(data))))
		return len(data)

	def flush(self) -> None:
		self._out.flush()

	def finish(self) -> None:
		if self._finished:
			return
		self._finished = True
		self._out.write(self._enc.update(self._pad.finalize()) + self._enc.finalize())
		self._out.flush()


class DecryptingReader:
	"""File-like source yielding the plaintext of an encrypted stream."""

	def __init__(self, fileobj: BinaryIO, passphrase: str):
		self._in = fileobj
		header = fileobj.read(len(SALT_MAGIC) + SALT_LENGTH)
		if len(header) < len(SALT_MAGIC) + SALT_LENGTH or not header.startswith(SALT_MAGIC):
			raise CryptoError("Not an encrypted archive (missing salt header)")
		key, iv = derive_key_iv(passphrase, header[len(SALT_MAGIC):])
		self._dec = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend()).decryptor()
		self._unpad = padding.PKCS7(algorithms.AES.block_size).unpadder()
		self._buf = b''
		self._eof = False

	def _fill(self) -> None:
		chunk = self._in.read(_CHUNK)
		if chunk:
			self._buf += self._unpad.update(self._dec.update(chunk))
			return
		self._eof = True
		try:
			self._buf += self._unpad.update(self._dec.finalize()) + self._unpad.finalize()
		except ValueError as e:
			raise CryptoError(f"Decrypt failed (wrong key or corrupt archive): {e}")

	def read(self, size: int = -1) -> bytes:
		if size is None or size < 0:
			while not self._eof:
				self._fill()
			data, self._buf = self._buf, b''
			return data
		while len(self._buf) < size and not self._eof:
			self._fill()
		data, self._buf = self._buf[:size], self._buf[size:]
		return data
