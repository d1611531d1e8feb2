import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, schema
from .crud import UpdateStatus
from .database import get_db

logger = logging.getLogger(__name__)

book_router = APIRouter(prefix="/books", tags=["Book Inventory"])


@book_router.get("", response_model=list[schema.Book])
def retrieve_books(db: Annotated[Session, Depends(get_db)]) -> list[schema.Book]:
    return crud.get_books(db)


@book_router.get("/{book_id}", response_model=schema.Book)
def retrieve_book(book_id: str, db: Annotated[Session, Depends(get_db)]) -> schema.Book:
    db_book = crud.get_book(db, book_id)
    if db_book is None:
        raise HTTPException(status_code=404, detail=f"Book not found with ID: {book_id}")
    return db_book


@book_router.put("/{book_id}", response_model=schema.Book)
def update_book_copies(
    book_id: str,
    db: Annotated[Session, Depends(get_db)],
    remaining_copies: Annotated[int | None, Body()] = None,
    expected: Annotated[int | None, Query(ge=0)] = None,
) -> schema.Book:
    if remaining_copies is None or remaining_copies < 0:
        raise HTTPException(
            status_code=400,
            detail="Invalid request: remainingCopies must be a non-negative integer",
        )

    try:
        result = crud.update_copies(db, book_id, remaining_copies, expected=expected)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to update copies for bookId: %s", book_id)
        raise HTTPException(status_code=500, detail="Failed to update book copies") from e

    if result.status is UpdateStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Book not found with ID: {book_id}")
    if result.status is UpdateStatus.CONFLICT:
        raise HTTPException(
            status_code=409,
            detail=(
                f"Copies for book {book_id} changed concurrently: "
                f"expected {expected}, found {result.book.available_copies}"
            ),
        )
    return result.book


monitoring_router = APIRouter(tags=["Monitoring"])


@monitoring_router.get("/health/ping", status_code=status.HTTP_200_OK)
def health_check(db: Annotated[Session, Depends(get_db)]) -> dict:
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.exception("Health check failed: Database connection error")
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "database": "disconnected"},
        ) from e
    else:
        return {"status": "ok", "database": "connected"}
