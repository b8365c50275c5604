"""Version tags shared by the replica store and the sync client.

Both sides must derive tags with the same function, otherwise the client's
"did my content actually change" check produces spurious pushes.
"""

import hashlib

HASH_ALGORITHM = "sha256"


def content_tag(data: bytes) -> str:
    """Return the version tag for a byte sequence.

    Args:
        data: Raw blob content.

    Returns:
        Lowercase hex digest of the content.
    """
    return hashlib.new(HASH_ALGORITHM, bytes(data)).hexdigest()
