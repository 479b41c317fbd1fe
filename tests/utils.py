import string
from random import choices, randint
from uuid import uuid4


def random_lower_string() -> str:
    """Return a generic random string."""
    return "".join(choices(string.ascii_lowercase, k=32))


def random_volume_name(prefix: str = "pvc") -> str:
    """Return a random volume name with the given prefix."""
    return f"{prefix}-{uuid4()}"


def random_size() -> int:
    """Return a random size, multiple of 1 GiB."""
    return randint(1, 100) * 1024**3


def random_serial() -> str:
    return str(uuid4())
