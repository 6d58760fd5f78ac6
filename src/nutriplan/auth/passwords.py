"""Password hashing with bcrypt.

bcrypt is CPU bound, so async callers go through ``asyncio.to_thread``.
"""

import asyncio

import bcrypt


def hash_password(plain: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


async def hash_password_async(plain: str, rounds: int = 12) -> str:
    return await asyncio.to_thread(hash_password, plain, rounds)


async def verify_password_async(plain: str, hashed: str) -> bool:
    return await asyncio.to_thread(verify_password, plain, hashed)
