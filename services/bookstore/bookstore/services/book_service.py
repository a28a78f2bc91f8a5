"""
Business logic for the book catalog
"""
from typing import Dict, List, Optional, Tuple
import structlog

from bookstore.errors import BookNotFoundError
from bookstore.models import Book
from bookstore.repositories import BookRepository


# sort key -> (attribute, descending)
SORT_OPTIONS: Dict[str, Tuple[str, bool]] = {
    "price": ("price", False),
    "price_desc": ("price", True),
    "title": ("title", False),
    "author": ("author", False),
    "year": ("publication_year", False),
    "year_desc": ("publication_year", True),
}


def sort_books(books: List[Book], sort_by: Optional[str]) -> List[Book]:
    """
    Sort books by one of SORT_OPTIONS. Books missing the sort value go last
    in both directions. Unknown keys return the input order.
    """
    if not sort_by or sort_by.lower() not in SORT_OPTIONS:
        return list(books)

    attribute, descending = SORT_OPTIONS[sort_by.lower()]

    def value_of(book: Book):
        value = getattr(book, attribute)
        return value.lower() if isinstance(value, str) else value

    present = [b for b in books if getattr(b, attribute) is not None]
    missing = [b for b in books if getattr(b, attribute) is None]
    present.sort(key=value_of, reverse=descending)
    return present + missing


class BookService:
    """Service layer for catalog search and maintenance"""

    def __init__(self, repository: BookRepository):
        self.repo = repository
        self.logger = structlog.get_logger().bind(component="book_service")

    def search_books(
        self,
        author: Optional[str] = None,
        publisher: Optional[str] = None,
        genre: Optional[str] = None,
        title: Optional[str] = None,
        sort_by: Optional[str] = None
    ) -> List[Book]:
        """
        Search and filter books.

        Every supplied filter is a case-insensitive partial match and all of
        them must hold. Supports sorting by price, price_desc, title, author,
        year and year_desc.
        """
        filters = {
            "author": author,
            "publisher": publisher,
            "genre": genre,
            "title": title,
        }
        filters = {k: v for k, v in filters.items() if v}

        books = self.repo.search(filters) if filters else self.repo.list_all()
        return sort_books(books, sort_by)

    def get_book(self, book_id: str) -> Book:
        book = self.repo.get(book_id)
        if book is None:
            self.logger.warning("Book not found", book_id=book_id)
            raise BookNotFoundError(book_id)
        return book

    def create_book(self, book: Book) -> Book:
        return self.repo.insert(book.model_copy(update={"id": None}))

    def update_book(self, book_id: str, book: Book) -> Book:
        updated = book.model_copy(update={"id": book_id})
        if not self.repo.replace(updated):
            raise BookNotFoundError(book_id)
        return updated

    def delete_book(self, book_id: str) -> None:
        if not self.repo.delete(book_id):
            raise BookNotFoundError(book_id)
