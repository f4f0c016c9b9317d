from __future__ import annotations

import bcrypt


# bcrypt only considers the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    def __init__(self, *, rounds: int = 12) -> None:
        if rounds < 4 or rounds > 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds

    def hash(self, password: str) -> str:
        secret = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
        return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        if not password or not password_hash:
            return False
        secret = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
        try:
            return bcrypt.checkpw(secret, password_hash.encode("utf-8"))
        except ValueError:
            return False
