"""Identity Resolver: opaque channel handle -> PhoneKey.

Strategies run in order and the first hit wins: the handle itself is a phone
number, the identity cache knows the handle, a reverse scan of cached aliases
matches its digits, then the channel's remote lookup over a few spellings of
the handle. Callers skip a handle that raises UnresolvedIdentity.
"""

import logging

from contactsaver.application.calls import DEFAULT_TIMEOUT, bounded
from contactsaver.application.ports import IdentityCache, RemoteIdentityLookup
from contactsaver.domain import ExternalServiceError, UnresolvedIdentity
from contactsaver.domain.numbers import (
    digits_of,
    handle_digits,
    is_phone_shaped,
    try_canonicalize,
)

logger = logging.getLogger(__name__)

DEFAULT_PHONE_SUFFIXES = ("@s.whatsapp.net", "@c.us")
DEFAULT_OPAQUE_SUFFIX = "@lid"


class IdentityResolver:
    def __init__(
        self,
        cache: IdentityCache,
        remote: RemoteIdentityLookup | None = None,
        *,
        phone_suffixes: tuple[str, ...] = DEFAULT_PHONE_SUFFIXES,
        opaque_suffix: str = DEFAULT_OPAQUE_SUFFIX,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> None:
        self._cache = cache
        self._remote = remote
        self._phone_suffixes = phone_suffixes
        self._opaque_suffix = opaque_suffix
        self._timeout = timeout

    async def resolve(self, handle: str) -> str:
        """Return the PhoneKey for handle or raise UnresolvedIdentity."""
        handle = (handle or "").strip()
        if not handle:
            raise UnresolvedIdentity(handle)

        if is_phone_shaped(handle, self._phone_suffixes):
            phone = try_canonicalize(handle)
            if phone:
                return phone

        phone = try_canonicalize(self._cache.phone_for(handle))
        if phone:
            return phone

        phone = self._reverse_scan(handle)
        if phone:
            return phone

        phone = await self._ask_remote(handle)
        if phone:
            self._cache.remember(handle, phone)
            return phone

        raise UnresolvedIdentity(handle)

    def candidates(self, handle: str) -> list[str]:
        """Spellings of handle worth asking the remote lookup about, deduplicated."""
        out = [handle]
        digits = digits_of(handle)
        if digits:
            out.append(f"{digits}{self._opaque_suffix}")
        local_digits = handle_digits(handle)
        if local_digits:
            out.append(f"{local_digits}{self._opaque_suffix}")
        return list(dict.fromkeys(out))

    def _reverse_scan(self, handle: str) -> str | None:
        target_digits = handle_digits(handle)
        for alias, phone in self._cache.aliases():
            if alias == handle or (target_digits and handle_digits(alias) == target_digits):
                found = try_canonicalize(phone)
                if found:
                    return found
        return None

    async def _ask_remote(self, handle: str) -> str | None:
        if self._remote is None:
            return None
        try:
            raw = await bounded(
                self._remote.resolve(self.candidates(handle)),
                service="identity",
                timeout=self._timeout,
            )
        except ExternalServiceError as e:
            logger.warning("Remote identity lookup failed for %s: %s", handle, e)
            return None
        return try_canonicalize(raw)
