"""
Book recommendations by user-user collaborative filtering.

Users are compared by the Jaccard similarity of their purchase sets; books
bought by the most similar readers are suggested first. When no similar
reader exists (or none of their books can be suggested), the most widely
purchased books are offered instead.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Sequence, Set, Tuple, Union
import structlog

from bookstore.errors import UserNotFoundError
from bookstore.models import Book
from bookstore.repositories import BookRepository, UserRepository


class RecommendationKind(str, Enum):
    PERSONALIZED = "PERSONALIZED"
    FALLBACK_POPULAR = "FALLBACK_POPULAR"
    EMPTY = "EMPTY"


@dataclass(frozen=True)
class Personalized:
    books: Tuple[Book, ...]

    kind: ClassVar[RecommendationKind] = RecommendationKind.PERSONALIZED
    fallback: ClassVar[bool] = False
    message: ClassVar[str] = "Based on your reading history"


@dataclass(frozen=True)
class FallbackPopular:
    books: Tuple[Book, ...]

    kind: ClassVar[RecommendationKind] = RecommendationKind.FALLBACK_POPULAR
    fallback: ClassVar[bool] = True
    message: ClassVar[str] = "We couldn't find readers with similar taste, here are some popular books"


@dataclass(frozen=True)
class Empty:
    kind: ClassVar[RecommendationKind] = RecommendationKind.EMPTY
    fallback: ClassVar[bool] = False
    message: ClassVar[str] = "No recommendations available"

    @property
    def books(self) -> Tuple[Book, ...]:
        return ()


RecommendationResult = Union[Personalized, FallbackPopular, Empty]


def recommendation_to_dict(result: RecommendationResult) -> Dict[str, Any]:
    """API representation of any recommendation result"""
    return {
        "kind": result.kind.value,
        "books": [book.model_dump(mode="json") for book in result.books],
        "fallback": result.fallback,
        "message": result.message,
    }


def jaccard_similarity(first: Set[str], second: Set[str]) -> float:
    """|A ∩ B| / |A ∪ B|; 0.0 when both sets are empty"""
    union = first | second
    if not union:
        return 0.0
    return len(first & second) / len(union)


class RecommendationService:
    """Computes personalised book suggestions from purchase histories"""

    def __init__(self, users: UserRepository, books: BookRepository):
        self.users = users
        self.books = books
        self.logger = structlog.get_logger().bind(component="recommendation_service")

    def get_recommendations(self, user_id: str, limit: int) -> RecommendationResult:
        """
        Recommend up to `limit` books the user does not own yet.

        Raises:
            ValueError: if limit is not positive
            UserNotFoundError: if the user does not exist
        """
        if limit < 1:
            raise ValueError("limit must be a positive integer")

        user = self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        owned = user.purchased_set()
        histories = self.users.list_purchase_histories()
        log = self.logger.bind(user_id=user_id, limit=limit)

        if not owned:
            log.debug("No purchase history, using popular books")
            return self._popular(histories, owned, limit)

        similar = self.find_similar_users(user_id, owned, histories)
        if not similar:
            log.debug("No similar readers, using popular books")
            return self._popular(histories, owned, limit)

        candidate_ids = self.collect_candidate_ids(similar, owned, limit)
        books = self._resolve(candidate_ids, limit)
        if not books:
            log.debug("Similar readers offered nothing new, using popular books",
                      similar_users=len(similar))
            return self._popular(histories, owned, limit)

        log.info("Personalized recommendations", similar_users=len(similar), books=len(books))
        return Personalized(tuple(books))

    @staticmethod
    def find_similar_users(
        user_id: str,
        owned: Set[str],
        histories: Iterable[Tuple[str, List[str]]],
    ) -> List[Tuple[str, float, List[str]]]:
        """
        Other users with a positive similarity, most similar first.
        Ties keep store order. Users without purchases are skipped.
        """
        scored = []
        for other_id, purchases in histories:
            if other_id == user_id or not purchases:
                continue
            similarity = jaccard_similarity(owned, set(purchases))
            if similarity > 0:
                scored.append((other_id, similarity, purchases))

        scored.sort(key=lambda entry: entry[1], reverse=True)
        return scored

    @staticmethod
    def collect_candidate_ids(
        similar: Sequence[Tuple[str, float, List[str]]],
        owned: Set[str],
        limit: int,
    ) -> List[str]:
        """
        Unowned book ids from similar users: most similar user first, then
        their purchase order. Stops after the user whose books fill `limit`.
        """
        candidates: Dict[str, None] = {}
        for _, _, purchases in similar:
            for book_id in purchases:
                if book_id not in owned:
                    candidates.setdefault(book_id)
            if len(candidates) >= limit:
                break
        return list(candidates)

    @staticmethod
    def popular_book_ids(
        histories: Iterable[Tuple[str, List[str]]],
        exclude: Set[str],
        limit: int,
    ) -> List[str]:
        """
        Book ids ranked by how many users bought them, excluding `exclude`.
        Ties are ordered by first appearance in the histories.
        """
        counts: Dict[str, int] = {}
        for _, purchases in histories:
            for book_id in dict.fromkeys(purchases):
                if book_id not in exclude:
                    counts[book_id] = counts.get(book_id, 0) + 1

        ranked = sorted(counts, key=lambda book_id: counts[book_id], reverse=True)
        return ranked[:limit]

    def _popular(
        self,
        histories: List[Tuple[str, List[str]]],
        owned: Set[str],
        limit: int,
    ) -> RecommendationResult:
        books = self._resolve(self.popular_book_ids(histories, owned, limit), limit)
        if not books:
            return Empty()
        return FallbackPopular(tuple(books))

    def _resolve(self, book_ids: Iterable[str], limit: int) -> List[Book]:
        """Load books by id, skipping ones that were deleted"""
        books = []
        for book_id in book_ids:
            book = self.books.get(book_id)
            if book is None:
                self.logger.debug("Skipping deleted book", book_id=book_id)
                continue
            books.append(book)
            if len(books) >= limit:
                break
        return books
