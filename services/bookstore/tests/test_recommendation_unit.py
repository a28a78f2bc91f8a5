"""
Unit tests for collaborative-filtering recommendations
"""
import pytest
import sys
import os
from decimal import Decimal
from unittest.mock import Mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bookstore.errors import UserNotFoundError
from bookstore.models import Book, User
from bookstore.repositories import BookRepository, UserRepository
from bookstore.services.recommendation import (
    Empty,
    FallbackPopular,
    Personalized,
    RecommendationKind,
    RecommendationService,
    jaccard_similarity,
    recommendation_to_dict,
)


def make_book(book_id):
    return Book(id=book_id, title=f"Title {book_id}", author="Author", publisher="Publisher",
                isbn=f"isbn-{book_id}", price=Decimal("10.00"), inventory=3)


def make_user(user_id, purchases):
    return User(id=user_id, username=user_id, email=f"{user_id}@example.com",
                password_hash="x", purchased_book_ids=list(purchases))


@pytest.fixture
def catalog():
    return {f"b{i}": make_book(f"b{i}") for i in range(1, 10)}


@pytest.fixture
def mock_books(catalog):
    repo = Mock(spec=BookRepository)
    repo.get.side_effect = lambda book_id, session=None: catalog.get(book_id)
    return repo


@pytest.fixture
def mock_users():
    return Mock(spec=UserRepository)


@pytest.fixture
def service(mock_users, mock_books):
    return RecommendationService(mock_users, mock_books)


def given_users(mock_users, **histories):
    """Register purchase histories keyed by user id"""
    users = {uid: make_user(uid, books) for uid, books in histories.items()}
    mock_users.get.side_effect = lambda user_id, session=None: users.get(user_id)
    mock_users.list_purchase_histories.return_value = [
        (uid, list(books)) for uid, books in histories.items()
    ]


def ids(result):
    return [book.id for book in result.books]


class TestJaccardSimilarity:
    """Tests for the similarity measure"""

    def test_identical_sets(self):
        assert jaccard_similarity({"b1", "b2"}, {"b1", "b2"}) == 1.0

    def test_disjoint_sets(self):
        assert jaccard_similarity({"b1"}, {"b2"}) == 0.0

    def test_empty_sets(self):
        assert jaccard_similarity(set(), set()) == 0.0

    def test_partial_overlap_is_symmetric(self):
        a, b = {"b1", "b2"}, {"b1", "b2", "b3"}
        assert jaccard_similarity(a, b) == pytest.approx(2 / 3)
        assert jaccard_similarity(a, b) == jaccard_similarity(b, a)


class TestPersonalized:
    """Recommendations from similar readers"""

    def test_single_similar_user(self, service, mock_users):
        """Test A owns {b1,b2}, B owns {b1,b2,b3} -> [b3]"""
        given_users(mock_users, A=["b1", "b2"], B=["b1", "b2", "b3"])

        result = service.get_recommendations("A", 5)

        assert isinstance(result, Personalized)
        assert ids(result) == ["b3"]
        assert result.kind == RecommendationKind.PERSONALIZED
        assert result.fallback is False
        assert result.message == "Based on your reading history"

    def test_most_similar_user_first(self, service, mock_users):
        """Test candidates follow descending similarity"""
        given_users(
            mock_users,
            A=["b1", "b2"],
            B=["b1", "b7", "b8", "b9"],   # 1/5
            C=["b1", "b2", "b5"],         # 2/3
        )

        result = service.get_recommendations("A", 10)

        assert ids(result) == ["b5", "b7", "b8", "b9"]

    def test_never_recommends_owned_books(self, service, mock_users):
        """Test owned books are excluded even when similar users have them"""
        given_users(mock_users, A=["b1", "b2", "b3"], B=["b1", "b2", "b3", "b4"], C=["b3", "b2"])

        result = service.get_recommendations("A", 10)

        assert set(ids(result)).isdisjoint({"b1", "b2", "b3"})
        assert ids(result) == ["b4"]

    def test_no_duplicates_across_users(self, service, mock_users):
        """Test a book offered by several similar users appears once"""
        given_users(mock_users, A=["b1"], B=["b1", "b4"], C=["b1", "b4", "b5"])

        result = service.get_recommendations("A", 10)

        assert sorted(ids(result)) == ["b4", "b5"]
        assert len(ids(result)) == len(set(ids(result)))

    def test_respects_limit(self, service, mock_users):
        """Test the result never exceeds limit"""
        given_users(mock_users, A=["b1"], B=["b1", "b2", "b3", "b4", "b5", "b6"])

        result = service.get_recommendations("A", 2)

        assert ids(result) == ["b2", "b3"]

    def test_skips_deleted_books(self, service, mock_users, catalog):
        """Test ids that no longer resolve are dropped"""
        del catalog["b3"]
        given_users(mock_users, A=["b1"], B=["b1", "b3", "b4"])

        result = service.get_recommendations("A", 5)

        assert ids(result) == ["b4"]

    def test_duplicate_stored_purchases_do_not_matter(self, service, mock_users):
        """Test repeated ids in a stored history are treated as a set"""
        given_users(mock_users, A=["b1", "b1"], B=["b1", "b2", "b2"])

        result = service.get_recommendations("A", 5)

        assert ids(result) == ["b2"]


class TestFallback:
    """Popular-book fallback and the empty result"""

    def test_no_history_gets_popular_books(self, service, mock_users):
        """Test a user without purchases sees what others bought"""
        given_users(mock_users, A=[], B=["b4"])

        result = service.get_recommendations("A", 5)

        assert isinstance(result, FallbackPopular)
        assert ids(result) == ["b4"]
        assert result.fallback is True
        assert result.kind == RecommendationKind.FALLBACK_POPULAR

    def test_no_similar_user_gets_popular_books(self, service, mock_users):
        """Test disjoint tastes fall back to popularity"""
        given_users(mock_users, A=["b1"], B=["b5", "b6"], C=["b6"])

        result = service.get_recommendations("A", 5)

        assert isinstance(result, FallbackPopular)
        assert ids(result) == ["b6", "b5"]

    def test_similar_users_with_nothing_new_falls_back(self, service, mock_users):
        """Test a fully overlapping neighbour yields popular books instead"""
        given_users(mock_users, A=["b1", "b2"], B=["b1"], C=["b7"])

        result = service.get_recommendations("A", 5)

        assert isinstance(result, FallbackPopular)
        assert ids(result) == ["b7"]

    def test_popularity_counts_each_user_once(self, service, mock_users):
        """Test a single user repeating a book does not inflate its rank"""
        given_users(mock_users, A=[], B=["b5", "b5", "b5"], C=["b6"], D=["b6"])

        result = service.get_recommendations("A", 5)

        assert ids(result) == ["b6", "b5"]

    def test_popularity_ties_keep_first_appearance(self, service, mock_users):
        """Test equal counts are ordered deterministically"""
        given_users(mock_users, A=[], B=["b8", "b2"], C=["b3"])

        first = service.get_recommendations("A", 5)
        second = service.get_recommendations("A", 5)

        assert ids(first) == ["b8", "b2", "b3"]
        assert ids(first) == ids(second)

    def test_popular_deleted_book_is_not_replaced(self, service, mock_users, catalog):
        """Test the top `limit` ids are chosen before deleted books are dropped"""
        del catalog["b6"]
        given_users(mock_users, A=[], B=["b6", "b5"], C=["b6", "b4"], D=["b5"])

        result = service.get_recommendations("A", 2)

        assert isinstance(result, FallbackPopular)
        assert ids(result) == ["b5"]

    def test_all_top_popular_books_deleted(self, service, mock_users, catalog):
        """Test lower-ranked books do not stand in for deleted top ones"""
        del catalog["b6"]
        given_users(mock_users, A=[], B=["b6"], C=["b6"], D=["b5"])

        result = service.get_recommendations("A", 1)

        assert isinstance(result, Empty)

    def test_similar_users_offer_only_deleted_books(self, service, mock_users, catalog):
        """Test deleted candidates from similar readers fall back to popularity"""
        del catalog["b3"]
        given_users(mock_users, A=["b1"], B=["b1", "b3"], C=["b7"])

        result = service.get_recommendations("A", 5)

        assert isinstance(result, FallbackPopular)
        assert ids(result) == ["b7"]

    def test_nobody_bought_anything(self, service, mock_users):
        """Test the empty result when no purchases exist at all"""
        given_users(mock_users, A=[], B=[])

        result = service.get_recommendations("A", 5)

        assert isinstance(result, Empty)
        assert result.books == ()
        assert result.kind == RecommendationKind.EMPTY
        assert result.message == "No recommendations available"


class TestValidation:
    """Argument and lookup errors"""

    def test_unknown_user(self, service, mock_users):
        given_users(mock_users, A=["b1"])

        with pytest.raises(UserNotFoundError):
            service.get_recommendations("ghost", 5)

    @pytest.mark.parametrize("limit", [0, -1])
    def test_invalid_limit(self, service, mock_users, limit):
        given_users(mock_users, A=["b1"])

        with pytest.raises(ValueError):
            service.get_recommendations("A", limit)

        mock_users.get.assert_not_called()


class TestSerialization:
    """API representation of results"""

    def test_fallback_to_dict(self):
        result = FallbackPopular((make_book("b4"),))

        data = recommendation_to_dict(result)

        assert data["kind"] == "FALLBACK_POPULAR"
        assert data["fallback"] is True
        assert data["books"][0]["id"] == "b4"
        assert data["books"][0]["price"] == "10.00"

    def test_empty_to_dict(self):
        data = recommendation_to_dict(Empty())

        assert data == {
            "kind": "EMPTY",
            "books": [],
            "fallback": False,
            "message": "No recommendations available",
        }


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
