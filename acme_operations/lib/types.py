"""Type definitions for ACME (RFC 8555) resources."""

from typing import NotRequired, TypedDict


class DirectoryMeta(TypedDict, total=False):
    termsOfService: str
    website: str
    caaIdentities: list[str]
    externalAccountRequired: bool


class AcmeDirectory(TypedDict):
    """ACME directory object (partial, fields used by the client)."""

    newNonce: str
    newAccount: str
    newOrder: str
    revokeCert: NotRequired[str]
    keyChange: NotRequired[str]
    meta: NotRequired[DirectoryMeta]


class Problem(TypedDict, total=False):
    """RFC 7807 problem document returned on errors."""

    type: str
    detail: str
    status: int


class Identifier(TypedDict):
    type: str
    value: str


class AccountResource(TypedDict, total=False):
    """Account object returned by newAccount and account updates."""

    status: str
    contact: list[str]
    termsOfServiceAgreed: bool
    orders: str
    createdAt: str
    initialIp: str


class ChallengeResource(TypedDict):
    type: str
    url: str
    status: str
    token: NotRequired[str]
    validated: NotRequired[str]
    error: NotRequired[Problem]


class AuthorizationResource(TypedDict):
    identifier: Identifier
    status: str
    challenges: list[ChallengeResource]
    expires: NotRequired[str]
    wildcard: NotRequired[bool]


class OrderResource(TypedDict):
    status: str
    identifiers: list[Identifier]
    authorizations: list[str]
    finalize: str
    expires: NotRequired[str]
    certificate: NotRequired[str]
    error: NotRequired[Problem]
