"""Startup routine: sample catalog and the default administrator."""

import logging
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from library_store.config import Settings, settings as default_settings
from library_store.errors import StoreError, UserAlreadyExists, UserNotFound
from library_store.models import Book, User
from library_store.storage.base import Store

logger = logging.getLogger(__name__)

SAMPLE_BOOKS = [
    Book(
        title="One Hundred Years of Solitude",
        author="Gabriel García Márquez",
        isbn="978-0307474728",
        published=1967,
        genre="Magical realism, Novel",
        description="Chronicle of the Buendía family in the fictional town of Macondo.",
    ),
    Book(
        title="1984",
        author="George Orwell",
        isbn="978-0451524935",
        published=1949,
        genre="Dystopia, Political fiction",
        description="A novel about surveillance and totalitarian control in a dystopian future.",
    ),
    Book(
        title="Don Quixote",
        author="Miguel de Cervantes",
        isbn="978-8424113296",
        published=1605,
        genre="Novel, Adventure, Satire",
        description="The adventures of a nobleman driven mad by reading chivalric romances.",
    ),
]


def hash_password(plain: str) -> str:
    return generate_password_hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """False for a wrong password or a credential werkzeug cannot parse."""
    try:
        return check_password_hash(hashed, plain)
    except ValueError:
        return False


def seed_sample_data(store: Store) -> int:
    """Add the sample catalog when the store has no books. Returns how many were created."""
    if store.get_books():
        return 0

    count = 0
    for book in SAMPLE_BOOKS:
        try:
            store.create_book(book)
            count += 1
        except StoreError as e:
            logger.warning(f"Could not create sample book {book.title!r}: {e}")

    if count:
        logger.info(f"Added {count} sample books")
    return count


def ensure_admin_user(store: Store, username: str = "admin", password: str = "admin123") -> User:
    try:
        return store.get_user_by_username(username)
    except UserNotFound:
        pass

    try:
        admin = store.create_user(User(username=username, password=hash_password(password), role="admin"))
    except UserAlreadyExists:
        # Created by a concurrent startup between the lookup and the insert
        return store.get_user_by_username(username)
    logger.info(f"Admin user created ({username})")
    return admin


def authenticate(store: Store, username: str, password: str) -> Optional[User]:
    """Return the user when the credentials match, otherwise None."""
    try:
        user = store.get_user_by_username(username)
    except UserNotFound:
        return None
    if not verify_password(password, user.password):
        logger.debug(f"Wrong password for {username!r}")
        return None
    return user


def bootstrap(store: Store, config: Optional[Settings] = None) -> User:
    config = config or default_settings
    if config.seed_sample_data:
        seed_sample_data(store)
    return ensure_admin_user(store, config.admin_username, config.admin_password)
