"""Store address normalization."""

from typing import NamedTuple

SCHEME = "sqlite://"
EXTENSION = ".sqlite"


class Address(NamedTuple):
    """A normalized store address and its human-readable identity."""
    uri: str
    identity: str

    @property
    def path(self) -> str:
        """Filesystem path of the database file."""
        return self.uri[len(SCHEME):]


def normalize_address(address: str) -> Address:
    """
    Ensure the ``.sqlite`` extension and ``sqlite://`` scheme are present.

    Args:
        address: User supplied address, e.g. ``"db/store"``

    Returns:
        Address with uri ``"sqlite://db/store.sqlite"`` and identity ``"db/store"``
    """
    uri = address
    if not uri.endswith(EXTENSION):
        uri += EXTENSION
    if not uri.startswith(SCHEME):
        uri = SCHEME + uri

    identity = uri[len(SCHEME):-len(EXTENSION)]
    return Address(uri=uri, identity=identity)
