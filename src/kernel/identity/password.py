"""
Password hashing utilities using bcrypt.
"""

import bcrypt

# Number of rounds for bcrypt hashing (12 is secure default)
BCRYPT_ROUNDS = 12


class PasswordHasher:
    """
    Credential verifier.

    Salted bcrypt hashes; ``checkpw`` compares in constant time. Mismatches
    return False, only an empty secret is an error.
    """

    @staticmethod
    def _truncate_password(password: str) -> bytes:
        """
        Truncate password to 72 bytes (bcrypt limit) and encode.

        bcrypt only uses the first 72 bytes of a password.
        """
        return password.encode("utf-8")[:72]

    @staticmethod
    def hash(password: str) -> str:
        """
        Hash a password using bcrypt with a fresh random salt.

        Args:
            password: Plain text password

        Returns:
            Hashed password string

        Raises:
            ValueError: If the password is empty
        """
        if not password:
            raise ValueError("Password must not be empty")
        pwd_bytes = PasswordHasher._truncate_password(password)
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        hashed = bcrypt.hashpw(pwd_bytes, salt)
        return hashed.decode("utf-8")

    @staticmethod
    def verify(plain_password: str, hashed_password: str) -> bool:
        """
        Verify a password against its hash.

        Args:
            plain_password: Plain text password to verify
            hashed_password: Stored hashed password

        Returns:
            True if password matches, False otherwise

        Raises:
            ValueError: If the submitted password is empty
        """
        if not plain_password:
            raise ValueError("Password must not be empty")
        try:
            pwd_bytes = PasswordHasher._truncate_password(plain_password)
            return bcrypt.checkpw(pwd_bytes, hashed_password.encode("utf-8"))
        except ValueError:
            # Stored value is not a bcrypt hash
            return False

    @staticmethod
    def needs_rehash(hashed_password: str) -> bool:
        """
        Check if a password hash was produced with a different cost factor.

        bcrypt hashes encode the rounds: ``$2b$XX$...``
        """
        parts = hashed_password.split("$")
        if len(parts) < 3 or not parts[2].isdigit():
            return True
        return int(parts[2]) != BCRYPT_ROUNDS


# Hash of a random throwaway secret, verified against when the email is
# unknown so a failed login costs the same either way.
DUMMY_HASH = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


# Convenience functions
def hash_password(password: str) -> str:
    """Hash a password."""
    return PasswordHasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password."""
    return PasswordHasher.verify(plain_password, hashed_password)
