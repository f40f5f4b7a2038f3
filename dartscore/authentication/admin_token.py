import hashlib
import secrets

from dartscore.exceptions import AnonymousCallerError, UnauthorizedError
from dartscore.load_secrets import pepper_data
from dartscore.models.schema_models import RoomSchema

# Excludes look-alike characters (0/O, 1/I)
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6
ADMIN_TOKEN_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
ADMIN_TOKEN_LENGTH = 32


def generate_room_code() -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def generate_admin_token() -> str:
    return "".join(secrets.choice(ADMIN_TOKEN_ALPHABET) for _ in range(ADMIN_TOKEN_LENGTH))


def hash_admin_token(admin_token: str, salt: str) -> str:
    return hashlib.sha256((admin_token + salt + pepper_data).encode()).hexdigest()


def check_admin_token(room: RoomSchema, admin_token: str | None) -> None:
    """Check the room-scoped scorer token before a mutation

    Args:
        room (RoomSchema): Room the mutation belongs to
        admin_token (str | None): Token sent by the caller

    Raises:
        AnonymousCallerError: No token was sent
        UnauthorizedError: The token does not match the room
    """
    if not admin_token:
        raise AnonymousCallerError("Admin token required")

    hashed_token = hash_admin_token(admin_token, room.salt)
    if not secrets.compare_digest(hashed_token, room.admin_token_hash):
        raise UnauthorizedError("Invalid admin token")
