"""Custodial wallet store - each principal's long-lived platform wallet."""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class SecretVault(Protocol):
    """Protocol for key management (encryption/decryption)."""
    def encrypt_secret(self, plaintext: str) -> str: ...
    def decrypt_secret(self, token: str) -> str: ...
    def generate_keypair(self) -> Tuple[str, str]: ...  # (address, encrypted secret)


@dataclass
class PlatformWallet:
    """A principal's custodial wallet: public address + encrypted secret."""

    address: str
    secret_encrypted: str


class PlatformWalletNotInitialized(Exception):
    """The principal has no custodial wallet secret stored."""


def _address_key(owner_id: str) -> str:
    return f"user:{owner_id}:platformWallet"


def _secret_key(owner_id: str) -> str:
    return f"user:{owner_id}:platformWalletEnc"


class BaseWalletStore:
    """Get-or-create logic shared by the Redis and in-memory stores."""

    def __init__(self, vault: SecretVault):
        self.vault = vault

    async def _read(self, owner_id: str) -> Tuple[Optional[str], Optional[str]]:
        raise NotImplementedError

    async def _write(self, owner_id: str, wallet: PlatformWallet) -> None:
        raise NotImplementedError

    async def get(self, owner_id: str) -> PlatformWallet:
        """
        Existing custodial wallet for ``owner_id``.

        Raises:
            PlatformWalletNotInitialized: no usable wallet stored
        """
        address, secret = await self._read(owner_id)
        if not address or not secret or address == owner_id:
            raise PlatformWalletNotInitialized(f"Platform wallet not initialized for {owner_id[:16]}")
        return PlatformWallet(address=address, secret_encrypted=secret)

    async def get_or_create(self, owner_id: str) -> PlatformWallet:
        """
        Return the custodial wallet, generating one on first use.

        An address equal to the owner id is a login wallet recorded by an
        older flow and has no server-held secret; it is rotated.
        """
        try:
            return await self.get(owner_id)
        except PlatformWalletNotInitialized:
            pass

        address, secret = self.vault.generate_keypair()
        wallet = PlatformWallet(address=address, secret_encrypted=secret)
        await self._write(owner_id, wallet)
        logger.info(f"Created platform wallet {address[:16]}... for {owner_id[:16]}")
        return wallet

    async def get_secret(self, owner_id: str) -> str:
        """Decrypted base58 secret of the principal's custodial wallet."""
        wallet = await self.get(owner_id)
        return self.vault.decrypt_secret(wallet.secret_encrypted)


class RedisWalletStore(BaseWalletStore):
    """Custodial wallets stored as two plain Redis keys per principal."""

    def __init__(self, client: redis.Redis, vault: SecretVault):
        super().__init__(vault)
        self.redis = client

    async def _read(self, owner_id: str) -> Tuple[Optional[str], Optional[str]]:
        address, secret = await self.redis.mget(_address_key(owner_id), _secret_key(owner_id))
        return address, secret

    async def _write(self, owner_id: str, wallet: PlatformWallet) -> None:
        await self.redis.mset({
            _address_key(owner_id): wallet.address,
            _secret_key(owner_id): wallet.secret_encrypted,
        })


class InMemoryWalletStore(BaseWalletStore):
    def __init__(self, vault: SecretVault):
        super().__init__(vault)
        self._values: Dict[str, str] = {}

    async def _read(self, owner_id: str) -> Tuple[Optional[str], Optional[str]]:
        return self._values.get(_address_key(owner_id)), self._values.get(_secret_key(owner_id))

    async def _write(self, owner_id: str, wallet: PlatformWallet) -> None:
        self._values[_address_key(owner_id)] = wallet.address
        self._values[_secret_key(owner_id)] = wallet.secret_encrypted
