import enum
import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

SEED_BOOKS = [
    {
        "id": "B1212",
        "name": "History of Amazon Valley",
        "author": "Ross Suarez",
        "available_copies": 2,
        "total_copies": 2,
    },
    {
        "id": "B4232",
        "name": "Language Fundamentals",
        "author": "Richard Cooper",
        "available_copies": 0,
        "total_copies": 3,
    },
    {
        "id": "B6677",
        "name": "Science Fundamentals",
        "author": "Dave Smith",
        "available_copies": 5,
        "total_copies": 5,
    },
]


class UpdateStatus(str, enum.Enum):
    UPDATED = "UPDATED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"


@dataclass(frozen=True)
class UpdateResult:
    status: UpdateStatus
    book: models.Book | None = None


# --- QUERIES (Read Operations) ---
def get_book(db: Session, book_id: str) -> models.Book | None:
    return db.get(models.Book, book_id)


def get_books(db: Session) -> list[models.Book]:
    return db.query(models.Book).order_by(models.Book.id).all()


# --- COMMANDS (Write Operations) ---
def update_copies(
    db: Session,
    book_id: str,
    copies: int,
    expected: int | None = None,
) -> UpdateResult:
    """Overwrite the available-copies count of a book.

    Without ``expected`` concurrent writers race and the last write wins.
    With ``expected`` the write is a single conditional UPDATE that only
    applies while the stored count still equals ``expected``.
    """
    stmt = update(models.Book).where(models.Book.id == book_id).values(available_copies=copies)
    if expected is not None:
        stmt = stmt.where(models.Book.available_copies == expected)

    result = db.execute(stmt)
    db.commit()

    if result.rowcount == 0:
        book = get_book(db, book_id)
        if book is None:
            logger.warning("Book not found with bookId: %s", book_id)
            return UpdateResult(UpdateStatus.NOT_FOUND)
        logger.warning(
            "Stale copies count for bookId: %s (expected %s, stored %s)",
            book_id,
            expected,
            book.available_copies,
        )
        return UpdateResult(UpdateStatus.CONFLICT, book)

    book = get_book(db, book_id)
    logger.info("Updated book copies for bookId: %s to: %s", book_id, copies)
    return UpdateResult(UpdateStatus.UPDATED, book)


def seed_books(db: Session) -> int:
    if db.query(models.Book).first() is not None:
        return 0
    db.add_all(models.Book(**data) for data in SEED_BOOKS)
    db.commit()
    logger.info("Seeded %d books.", len(SEED_BOOKS))
    return len(SEED_BOOKS)
