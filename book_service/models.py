from sqlalchemy import CheckConstraint, Column, Integer, String

from .database import Base


class Book(Base):
    __tablename__ = "books"

    id = Column(String(32), primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    author = Column(String(200), nullable=False)
    available_copies = Column(Integer, nullable=False, default=0)
    total_copies = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("available_copies >= 0", name="check_available_copies_nonnegative"),
    )

    def __repr__(self):
        return (
            f"<Book(id='{self.id}', name='{self.name}', "
            f"available_copies={self.available_copies}, total_copies={self.total_copies})>"
        )
