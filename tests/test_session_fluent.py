"""Tests for the fluent Query API."""

from __future__ import annotations

import pytest

from pivotorm import AsyncSession, Base, Mapped, create_all, mapped_column


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(max_length=100)
    price: Mapped[float]
    stock: Mapped[int] = mapped_column(default=0)
    sku: Mapped[str | None]


@pytest.fixture
async def products(session) -> AsyncSession:
    await create_all(session.pool, Product)
    await session.insert_all(
        [
            Product(name="apple", price=1.5, stock=10, sku="A-1"),
            Product(name="banana", price=0.5, stock=0),
            Product(name="cherry", price=4.0, stock=3, sku="C-1"),
            Product(name="date", price=6.5, stock=7, sku="D-1"),
        ]
    )
    return session


async def names(query) -> list[str]:
    return [p.name for p in await query.all()]


class TestFilters:
    @pytest.mark.parametrize(
        ("filters", "expected"),
        [
            ({"price__gt": 1.5}, ["cherry", "date"]),
            ({"price__gte": 1.5}, ["apple", "cherry", "date"]),
            ({"price__lt": 1.5}, ["banana"]),
            ({"price__lte": 1.5}, ["apple", "banana"]),
            ({"stock__ne": 0}, ["apple", "cherry", "date"]),
            ({"name__like": "%an%"}, ["banana"]),
            ({"name__in": ["apple", "date"]}, ["apple", "date"]),
            ({"name__notin": ["apple", "date"]}, ["banana", "cherry"]),
            ({"name__in": []}, []),
            ({"sku__isnull": True}, ["banana"]),
            ({"sku__isnull": False}, ["apple", "cherry", "date"]),
            ({"name__contains": "err"}, ["cherry"]),
            ({"name__startswith": "b"}, ["banana"]),
            ({"name__endswith": "e"}, ["apple", "date"]),
            ({"sku": None}, ["banana"]),
            ({"stock__gt": 0, "price__lt": 5}, ["apple", "cherry"]),
        ],
    )
    async def test_operator(self, products, filters, expected) -> None:
        assert await names(products.query(Product).filter(**filters).order_by("id")) == expected

    async def test_filter_by(self, products) -> None:
        assert await names(products.query(Product).filter_by(name="apple")) == ["apple"]

    async def test_unknown_column(self, products) -> None:
        with pytest.raises(ValueError, match="no column 'colour'"):
            await products.query(Product).filter(colour="red").all()


class TestOrderingAndPaging:
    async def test_order_desc(self, products) -> None:
        assert await names(products.query(Product).order_by("price", desc=True)) == [
            "date",
            "cherry",
            "apple",
            "banana",
        ]

    async def test_order_prefix(self, products) -> None:
        assert await names(products.query(Product).order_by("-stock")) == ["apple", "date", "cherry", "banana"]

    async def test_limit_offset(self, products) -> None:
        assert await names(products.query(Product).order_by("id").limit(2).offset(1)) == ["banana", "cherry"]

    async def test_offset_only(self, products) -> None:
        assert await names(products.query(Product).order_by("id").offset(3)) == ["date"]


class TestTerminals:
    async def test_first(self, products) -> None:
        product = await products.query(Product).order_by("price").first()
        assert product is not None
        assert product.name == "banana"

    async def test_first_none(self, products) -> None:
        assert await products.query(Product).filter(name="kiwi").first() is None

    async def test_one(self, products) -> None:
        assert (await products.query(Product).filter(sku="C-1").one()).name == "cherry"

    async def test_one_raises_on_many(self, products) -> None:
        with pytest.raises(ValueError, match="exactly 1"):
            await products.query(Product).one()

    async def test_one_or_none(self, products) -> None:
        assert await products.query(Product).filter(name="kiwi").one_or_none() is None
        with pytest.raises(ValueError, match="at most 1"):
            await products.query(Product).one_or_none()

    async def test_count_and_exists(self, products) -> None:
        assert await products.query(Product).count() == 4
        assert await products.query(Product).filter(stock=0).count() == 1
        assert await products.query(Product).filter(name="apple").exists()
        assert not await products.query(Product).filter(name="kiwi").exists()

    async def test_results_are_clean(self, products) -> None:
        for product in await products.query(Product).all():
            assert product.exists
            assert not product.is_dirty()
            assert isinstance(product.price, float)
