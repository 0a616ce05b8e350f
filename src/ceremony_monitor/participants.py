from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from ceremony_monitor.errors import AddressParseError, UnknownRoleError

ADDRESS_PREFIX = "aleo1"
ADDRESS_LENGTH = 63
# bech32 data characters; "1" is the separator and never appears in the data part.
ADDRESS_PATTERN = re.compile(r"^aleo1[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{58}$")


class ParticipantRole(Enum):
    CONTRIBUTOR = "contributor"
    VERIFIER = "verifier"

    @classmethod
    def parse(cls, token: str) -> ParticipantRole:
        try:
            return cls(token)
        except ValueError as exc:
            raise UnknownRoleError(f"unknown participant type: {token}", value=token) from exc


def parse_address(text: str) -> str:
    """Validate the textual shape of a participant address and return it.

    Only the bech32 envelope is checked (prefix, length, character set);
    key material is never decoded here.
    """
    if not text.startswith(ADDRESS_PREFIX):
        raise AddressParseError(f"address must start with '{ADDRESS_PREFIX}': {text}", value=text)
    if len(text) != ADDRESS_LENGTH:
        raise AddressParseError(
            f"address must be {ADDRESS_LENGTH} characters, got {len(text)}: {text}", value=text
        )
    if not ADDRESS_PATTERN.match(text):
        raise AddressParseError(f"address contains invalid characters: {text}", value=text)
    return text


@dataclass(frozen=True, slots=True)
class ParticipantIdentity:
    address: str
    role: ParticipantRole

    @classmethod
    def contributor(cls, address: str) -> ParticipantIdentity:
        return cls(address=parse_address(address), role=ParticipantRole.CONTRIBUTOR)

    @classmethod
    def verifier(cls, address: str) -> ParticipantIdentity:
        return cls(address=parse_address(address), role=ParticipantRole.VERIFIER)

    def id_on_coordinator(self) -> str:
        return f"{self.address}.{self.role.value}"

    def to_dict(self) -> dict[str, str]:
        return {"address": self.address, "role": self.role.value}
