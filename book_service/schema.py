from pydantic import BaseModel, ConfigDict, Field


class Book(BaseModel):
    """Wire representation of a book, field names as the subscription service reads them."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str = Field(alias="bookId")
    name: str = Field(alias="bookName")
    author: str
    available_copies: int = Field(alias="copiesAvailable")
    total_copies: int = Field(alias="totalCopies")
