"""
Unit tests for RelationService (the 1:1 equivalence store).

Run: pytest tests/unit/test_relation_service.py -v
"""

import pytest

from models.catalog import CatalogSide
from models.equivalence import MatchCriterion
from exceptions import (
    ProductNotFoundError,
    ProductAlreadyLinkedError,
    EquivalenceNotFoundError,
    ConflictError,
    NotFoundError,
    ValidationError,
    DatabaseError,
)
from tests.conftest import pg_error
from tests.factories import ExternalProductFactory, InternalProductFactory


@pytest.fixture
def pair(fake_db):
    """One unmatched product on each side."""
    ext = ExternalProductFactory.insert(fake_db, name="Gaming Mouse Pro", code="TS001", supplier="Acme")
    itn = InternalProductFactory.insert(fake_db, name="Mouse Gamer", code="GM001")
    return ext, itn


class TestCreate:
    """Tests for RelationService.create()"""

    def test_creates_link_and_clears_pools(self, relation_service, fake_db, pair, pools_consistent):
        # Arrange
        ext, itn = pair

        # Act
        link = relation_service.create(ext["id"], itn["id"], MatchCriterion.CODE)

        # Assert
        assert link.external_id == ext["id"]
        assert link.internal_id == itn["id"]
        assert link.criterion is MatchCriterion.CODE
        assert fake_db.rows("unmatched_external") == []
        assert fake_db.rows("unmatched_internal") == []
        pools_consistent(fake_db)

    def test_external_already_linked_conflicts(self, relation_service, fake_db, pair):
        # Arrange
        ext, itn = pair
        other = InternalProductFactory.insert(fake_db)
        relation_service.create(ext["id"], itn["id"], MatchCriterion.MANUAL)

        # Act & Assert
        with pytest.raises(ProductAlreadyLinkedError) as exc_info:
            relation_service.create(ext["id"], other["id"], MatchCriterion.MANUAL)

        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.status_code == 409
        assert exc_info.value.details["reason"] == "external_linked"

    def test_internal_already_linked_conflicts(self, relation_service, fake_db, pair):
        # Arrange
        ext, itn = pair
        other = ExternalProductFactory.insert(fake_db)
        relation_service.create(ext["id"], itn["id"], MatchCriterion.MANUAL)

        # Act & Assert
        with pytest.raises(ProductAlreadyLinkedError) as exc_info:
            relation_service.create(other["id"], itn["id"], MatchCriterion.MANUAL)

        assert exc_info.value.details["reason"] == "internal_linked"

    def test_conflict_leaves_state_unchanged(self, relation_service, fake_db, pair, pools_consistent):
        # Arrange
        ext, itn = pair
        other = InternalProductFactory.insert(fake_db)
        relation_service.create(ext["id"], itn["id"], MatchCriterion.MANUAL)
        before = (fake_db.rows("equivalences"), fake_db.rows("unmatched_internal"))

        # Act
        with pytest.raises(ProductAlreadyLinkedError):
            relation_service.create(ext["id"], other["id"], MatchCriterion.MANUAL)

        # Assert
        assert (fake_db.rows("equivalences"), fake_db.rows("unmatched_internal")) == before
        pools_consistent(fake_db)

    @pytest.mark.parametrize("missing_side", ["external", "internal"])
    def test_missing_product_not_found(self, relation_service, pair, missing_side):
        # Arrange
        ext, itn = pair
        ext_id = 999 if missing_side == "external" else ext["id"]
        itn_id = 999 if missing_side == "internal" else itn["id"]

        # Act & Assert
        with pytest.raises(ProductNotFoundError) as exc_info:
            relation_service.create(ext_id, itn_id, MatchCriterion.MANUAL)

        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.details["side"] == missing_side

    def test_unexpected_storage_error(self, relation_service, fake_db, pair):
        # Arrange
        ext, itn = pair
        fake_db.fail_on["link_products"] = pg_error("57014", "canceling statement")

        # Act & Assert
        with pytest.raises(DatabaseError):
            relation_service.create(ext["id"], itn["id"], MatchCriterion.MANUAL)


class TestDelete:
    """Tests for RelationService.delete()"""

    def test_restores_both_products_to_pools(self, relation_service, fake_db, pair, pools_consistent):
        # Arrange
        ext, itn = pair
        link = relation_service.create(ext["id"], itn["id"], MatchCriterion.NAME)

        # Act
        deleted = relation_service.delete(link.id)

        # Assert
        assert deleted.id == link.id
        assert fake_db.rows("equivalences") == []
        ext_markers = fake_db.rows("unmatched_external")
        assert [m["product_id"] for m in ext_markers] == [ext["id"]]
        assert ext_markers[0]["reason"] == "unlinked"
        assert [m["product_id"] for m in fake_db.rows("unmatched_internal")] == [itn["id"]]
        pools_consistent(fake_db)

    def test_missing_equivalence_not_found(self, relation_service):
        with pytest.raises(EquivalenceNotFoundError) as exc_info:
            relation_service.delete(42)

        assert exc_info.value.status_code == 404


class TestGetByProduct:
    """Tests for RelationService.get_by_product()"""

    def test_returns_link_from_either_side(self, relation_service, pair):
        ext, itn = pair
        link = relation_service.create(ext["id"], itn["id"], MatchCriterion.CODE)

        assert relation_service.get_by_product(CatalogSide.EXTERNAL, ext["id"]).id == link.id
        assert relation_service.get_by_product(CatalogSide.INTERNAL, itn["id"]).id == link.id

    def test_unlinked_product_returns_none(self, relation_service, pair):
        ext, _ = pair

        assert relation_service.get_by_product(CatalogSide.EXTERNAL, ext["id"]) is None


class TestList:
    """Tests for RelationService.list()"""

    @pytest.fixture
    def links(self, fake_db, relation_service):
        created = []
        for ext_name, itn_name, supplier in [
            ("Cinta Embalar", "Cinta Adhesiva", "Acme"),
            ("Caja Cartón", "Caja Corrugada", "Globex"),
            ("Film Stretch", "Film Polietileno", "Acme"),
        ]:
            ext = ExternalProductFactory.insert(fake_db, name=ext_name, supplier=supplier)
            itn = InternalProductFactory.insert(fake_db, name=itn_name)
            created.append(relation_service.create(ext["id"], itn["id"], MatchCriterion.MANUAL))
        return created

    def test_joins_both_products(self, relation_service, links):
        # Act
        views = relation_service.list(sort_by="id", descending=False)

        # Assert
        assert [v.id for v in views] == [l.id for l in links]
        assert views[0].external_name == "Cinta Embalar"
        assert views[0].internal_name == "Cinta Adhesiva"
        assert views[0].supplier == "Acme"
        assert views[0].criterion is MatchCriterion.MANUAL

    def test_default_sort_is_newest_first(self, relation_service, links):
        views = relation_service.list()

        assert [v.id for v in views] == [l.id for l in reversed(links)]

    def test_search_is_accent_insensitive_over_joined_fields(self, relation_service, links):
        # Act
        by_external = relation_service.list(search="carton")
        by_supplier = relation_service.list(search="GLOBEX")
        by_internal = relation_service.list(search="polietileno")

        # Assert
        assert [v.external_name for v in by_external] == ["Caja Cartón"]
        assert [v.external_name for v in by_supplier] == ["Caja Cartón"]
        assert [v.external_name for v in by_internal] == ["Film Stretch"]

    def test_sort_by_text_field(self, relation_service, links):
        views = relation_service.list(sort_by="internal_name", descending=False)

        assert [v.internal_name for v in views] == ["Caja Corrugada", "Cinta Adhesiva", "Film Polietileno"]

    def test_unknown_sort_field_rejected(self, relation_service):
        with pytest.raises(ValidationError):
            relation_service.list(sort_by="price")
