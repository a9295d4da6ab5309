"""
Admin dashboard aggregation

The dashboard is built from five independent feeds (products, orders, users,
per-product sales share, monthly sales). Raw feed documents are normalized
into typed rows first; every derived number is computed from those rows, and
a date range filter is applied to orders and monthly sales together so the
totals never drift from the rows they summarize.

Money is accumulated unrounded; rounding happens only when it is displayed.
"""
import asyncio
import calendar
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

ORDERS_PREVIEW_LIMIT = 15
RECENT_LIMIT = 3
END_OF_DAY = time(23, 59, 59, 999000)

_MONTHS: Dict[str, int] = {}
for _month in range(1, 13):
    _MONTHS[calendar.month_name[_month].lower()] = _month
    _MONTHS[calendar.month_abbr[_month].lower()] = _month
_MONTHS["sept"] = 9

_NAMED_MONTH = re.compile(r"^([A-Za-z]+)\.?\s*,?\s*(\d{4})$")
_NUMERIC_MONTH = re.compile(r"^(\d{1,2})\s*[-/]\s*(\d{4})$")
_ISO_MONTH = re.compile(r"^(\d{4})-(\d{1,2})$")


class DashboardLoadError(Exception):
    """One of the dashboard feeds could not be loaded."""


class SessionExpired(DashboardLoadError):
    """The API rejected the session (401); the client must sign in again."""


class AdminAccessDenied(DashboardLoadError):
    """The session is valid but lacks the admin role (403)."""


# Normalized rows

@dataclass(frozen=True)
class ProductRow:
    id: str
    name: str
    price: float
    stock: int

    @property
    def out_of_stock(self) -> bool:
        return self.stock == 0


@dataclass(frozen=True)
class OrderRow:
    id: str
    total_price: float
    created_at: Optional[datetime]
    status: str


@dataclass(frozen=True)
class UserRow:
    id: str
    name: str
    email: str
    role: str
    created_at: Optional[datetime]


@dataclass(frozen=True)
class ProductSale:
    name: str
    percent: float


@dataclass(frozen=True)
class MonthlySale:
    month: str
    total: float


def _number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _documents(feed: Any) -> List[Mapping[str, Any]]:
    """Feed items that are documents; anything else in the feed is dropped."""
    if not isinstance(feed, (list, tuple)):
        return []
    return [doc for doc in feed if isinstance(doc, Mapping)]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """datetime or ISO-8601 string -> aware UTC datetime; None when unusable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_product(doc: Mapping[str, Any]) -> ProductRow:
    return ProductRow(
        id=str(doc.get("_id", "")),
        name=str(doc.get("name") or ""),
        price=_number(doc.get("price")),
        stock=int(_number(doc.get("stock"))),
    )


def normalize_order(doc: Mapping[str, Any]) -> OrderRow:
    return OrderRow(
        id=str(doc.get("_id", "")),
        total_price=_number(doc.get("total_price")),
        created_at=parse_timestamp(doc.get("created_at")),
        status=str(doc.get("order_status") or ""),
    )


def normalize_user(doc: Mapping[str, Any]) -> UserRow:
    return UserRow(
        id=str(doc.get("_id", "")),
        name=str(doc.get("name") or ""),
        email=str(doc.get("email") or ""),
        role=str(doc.get("role") or "user"),
        created_at=parse_timestamp(doc.get("created_at")),
    )


def normalize_product_sale(doc: Mapping[str, Any]) -> ProductSale:
    return ProductSale(name=str(doc.get("name") or ""), percent=_number(doc.get("percent")))


def normalize_monthly_sale(doc: Mapping[str, Any]) -> MonthlySale:
    return MonthlySale(month=str(doc.get("month") or ""), total=_number(doc.get("total")))


# Snapshot and filtered view

@dataclass
class DashboardSnapshot:
    products: List[ProductRow] = field(default_factory=list)
    orders: List[OrderRow] = field(default_factory=list)
    users: List[UserRow] = field(default_factory=list)
    product_sales: List[ProductSale] = field(default_factory=list)
    monthly_sales: List[MonthlySale] = field(default_factory=list)
    total_amount: float = 0.0

    @classmethod
    def from_feeds(
        cls,
        products: Iterable[Mapping[str, Any]],
        orders: Iterable[Mapping[str, Any]],
        users: Iterable[Mapping[str, Any]],
        product_sales: Iterable[Mapping[str, Any]],
        monthly_sales: Iterable[Mapping[str, Any]],
        total_amount: Any = None,
    ) -> "DashboardSnapshot":
        order_rows = [normalize_order(doc) for doc in _documents(orders)]
        if total_amount is None:
            total = sum(order.total_price for order in order_rows)
        else:
            total = _number(total_amount)
        return cls(
            products=[normalize_product(doc) for doc in _documents(products)],
            orders=order_rows,
            users=[normalize_user(doc) for doc in _documents(users)],
            product_sales=[normalize_product_sale(doc) for doc in _documents(product_sales)],
            monthly_sales=[normalize_monthly_sale(doc) for doc in _documents(monthly_sales)],
            total_amount=total,
        )

    @property
    def out_of_stock(self) -> int:
        return sum(1 for product in self.products if product.out_of_stock)

    @property
    def order_count(self) -> int:
        return len(self.orders)

    @property
    def product_count(self) -> int:
        return len(self.products)

    @property
    def user_count(self) -> int:
        return len(self.users)


@dataclass
class FilteredView:
    snapshot: DashboardSnapshot
    orders: List[OrderRow]
    amount: float
    monthly_sales: List[MonthlySale]
    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def is_filtered(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def order_count(self) -> int:
        return len(self.orders)


def parse_month_label(label: Any) -> Optional[date]:
    """
    Parse a monthly-sales label into the first day of that month.

    Accepts "October 2024", "Oct 2024", "October, 2024", "10-2024", "10/2024"
    and "2024-10". Anything else gives None; this never raises.
    """
    if not isinstance(label, str):
        return None
    text = label.strip()

    year = month = None
    match = _NAMED_MONTH.match(text)
    if match:
        month = _MONTHS.get(match.group(1).lower())
        year = int(match.group(2))
    else:
        match = _NUMERIC_MONTH.match(text)
        if match:
            month, year = int(match.group(1)), int(match.group(2))
        else:
            match = _ISO_MONTH.match(text)
            if match:
                year, month = int(match.group(1)), int(match.group(2))

    if not month or not year or not 1 <= month <= 12:
        return None
    return date(year, month, 1)


def month_label(value: date) -> str:
    return f"{calendar.month_name[value.month]} {value.year}"


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _day_end(value: date) -> datetime:
    return datetime.combine(value, END_OF_DAY, tzinfo=timezone.utc)


def apply_date_range(snapshot: DashboardSnapshot, start: Optional[date], end: Optional[date]) -> FilteredView:
    """
    Restrict orders and monthly sales to [start, end].

    The end day is included up to 23:59:59.999 UTC. Without both bounds the
    view is the unfiltered snapshot. Orders without a usable timestamp never
    fall inside a range.
    """
    if start is None or end is None:
        return FilteredView(
            snapshot=snapshot,
            orders=list(snapshot.orders),
            amount=snapshot.total_amount,
            monthly_sales=list(snapshot.monthly_sales),
        )

    range_start = _day_start(start)
    range_end = _day_end(end)

    orders = [
        order for order in snapshot.orders
        if order.created_at is not None and range_start <= order.created_at <= range_end
    ]
    amount = sum(order.total_price for order in orders)

    monthly = []
    for item in snapshot.monthly_sales:
        first_day = parse_month_label(item.month)
        if first_day is None:
            logger.warning("Skipping unparseable month label %r", item.month)
            continue
        last_day = first_day.replace(day=calendar.monthrange(first_day.year, first_day.month)[1])
        if _day_start(first_day) <= range_end and _day_end(last_day) >= range_start:
            monthly.append(item)

    return FilteredView(
        snapshot=snapshot,
        orders=orders,
        amount=amount,
        monthly_sales=monthly,
        start=start,
        end=end,
    )


def _newest_first(rows):
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(rows, key=lambda row: row.created_at or oldest, reverse=True)


def recent_orders(view: FilteredView) -> List[OrderRow]:
    """Orders shown in the preview table and the exported report."""
    orders = _newest_first(view.orders)
    if not view.is_filtered:
        orders = orders[:ORDERS_PREVIEW_LIMIT]
    return orders


def latest_orders(snapshot: DashboardSnapshot, limit: int = RECENT_LIMIT) -> List[OrderRow]:
    return _newest_first(snapshot.orders)[:limit]


def latest_users(snapshot: DashboardSnapshot, limit: int = RECENT_LIMIT) -> List[UserRow]:
    return _newest_first(snapshot.users)[:limit]


# Feeds computed from raw order documents

def _order_items(order: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    items = order.get("order_items")
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, Mapping)]


def product_sales_share(orders: Iterable[Mapping[str, Any]]) -> List[ProductSale]:
    """Share of item revenue per product name, in percent, largest first."""
    totals: Dict[str, float] = {}
    for order in _documents(orders):
        for item in _order_items(order):
            name = item.get("name")
            if not name:
                continue
            totals[name] = totals.get(name, 0.0) + _number(item.get("quantity")) * _number(item.get("price"))

    grand_total = sum(totals.values())
    if grand_total <= 0:
        return []
    shares = [ProductSale(name=name, percent=value / grand_total * 100) for name, value in totals.items()]
    return sorted(shares, key=lambda share: share.percent, reverse=True)


def sales_per_month(orders: Iterable[Mapping[str, Any]]) -> List[MonthlySale]:
    """Order totals per calendar month (UTC), oldest month first."""
    totals: Dict[date, float] = {}
    for order in _documents(orders):
        created_at = parse_timestamp(order.get("created_at"))
        if created_at is None:
            continue
        month = date(created_at.year, created_at.month, 1)
        totals[month] = totals.get(month, 0.0) + _number(order.get("total_price"))
    return [MonthlySale(month=month_label(month), total=totals[month]) for month in sorted(totals)]


def build_snapshot(
    products: Sequence[Mapping[str, Any]],
    orders: Sequence[Mapping[str, Any]],
    users: Sequence[Mapping[str, Any]],
) -> DashboardSnapshot:
    """Snapshot straight from collection documents (server side)."""
    snapshot = DashboardSnapshot.from_feeds(products, orders, users, [], [])
    snapshot.product_sales = product_sales_share(orders)
    snapshot.monthly_sales = sales_per_month(orders)
    return snapshot


# JSON shapes

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def order_to_dict(order: OrderRow) -> Dict[str, Any]:
    return {
        "_id": order.id,
        "total_price": order.total_price,
        "created_at": _iso(order.created_at),
        "order_status": order.status,
    }


def user_to_dict(user: UserRow) -> Dict[str, Any]:
    return {
        "_id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "created_at": _iso(user.created_at),
    }


def view_to_dict(view: FilteredView) -> Dict[str, Any]:
    snapshot = view.snapshot
    return {
        "start": view.start.isoformat() if view.start else None,
        "end": view.end.isoformat() if view.end else None,
        "summary": {
            "total_amount": round(view.amount, 2),
            "order_count": view.order_count,
            "product_count": snapshot.product_count,
            "user_count": snapshot.user_count,
            "out_of_stock": snapshot.out_of_stock,
        },
        "product_sales": [{"name": s.name, "percent": round(s.percent, 2)} for s in snapshot.product_sales],
        "monthly_sales": [{"month": m.month, "total": round(m.total, 2)} for m in view.monthly_sales],
        "orders": [order_to_dict(order) for order in recent_orders(view)],
        "latest_orders": [order_to_dict(order) for order in latest_orders(snapshot)],
        "latest_users": [user_to_dict(user) for user in latest_users(snapshot)],
    }


# Remote loading

FEED_OK = "ok"
FEED_UNAUTHORIZED = "unauthorized"
FEED_FORBIDDEN = "forbidden"
FEED_FAILED = "failed"

_FEED_ERRORS = {
    FEED_UNAUTHORIZED: SessionExpired,
    FEED_FORBIDDEN: AdminAccessDenied,
    FEED_FAILED: DashboardLoadError,
}


@dataclass(frozen=True)
class FeedResult:
    """Outcome of one feed request: ``kind`` is FEED_OK with ``data``, or an error kind with ``message``."""

    path: str
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == FEED_OK


@dataclass(frozen=True)
class AdminSession:
    """Where the API lives and the bearer token of the signed-in admin."""

    base_url: str
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class DashboardClient:
    """Loads a DashboardSnapshot from the admin API with five concurrent requests."""

    FEEDS = {
        "products": "/admin/products",
        "orders": "/admin/orders",
        "users": "/admin/users",
        "product_sales": "/admin/product-sales",
        "monthly_sales": "/admin/sales-per-month",
    }

    def __init__(self, session: AdminSession, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.session = session
        self.timeout = httpx.Timeout(timeout)
        self._transport = transport

    async def fetch(self, client: httpx.AsyncClient, path: str) -> FeedResult:
        try:
            response = await client.get(path)
        except httpx.HTTPError as e:
            return FeedResult(path, FEED_FAILED, message=f"GET {path} failed: {e}")
        if response.status_code == 401:
            return FeedResult(path, FEED_UNAUTHORIZED, message="Session expired, please log in again")
        if response.status_code == 403:
            return FeedResult(path, FEED_FORBIDDEN, message="You do not have permission to access the dashboard")
        if response.is_error:
            return FeedResult(path, FEED_FAILED, message=f"GET {path} returned {response.status_code}")
        try:
            body = response.json()
        except ValueError:
            return FeedResult(path, FEED_FAILED, message=f"GET {path} returned invalid JSON")
        if not isinstance(body, dict):
            return FeedResult(path, FEED_FAILED, message=f"GET {path} returned an unexpected payload")
        return FeedResult(path, FEED_OK, data=body)

    async def fetch_all(self) -> Dict[str, FeedResult]:
        async with httpx.AsyncClient(
            base_url=self.session.base_url.rstrip("/"),
            headers=self.session.headers,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(*(self.fetch(client, path) for path in self.FEEDS.values()))
        return dict(zip(self.FEEDS, results))

    async def load_snapshot(self) -> DashboardSnapshot:
        """
        Fetch every feed concurrently and build a snapshot.

        Fails as a whole when any feed fails; SessionExpired wins over
        AdminAccessDenied, which wins over any other failure. Nothing is
        retried here.
        """
        feeds = await self.fetch_all()

        for kind, error in _FEED_ERRORS.items():
            failed = [result for result in feeds.values() if result.kind == kind]
            if failed:
                logger.error("Dashboard load failed: %s", failed[0].message)
                raise error(failed[0].message)

        return DashboardSnapshot.from_feeds(
            products=feeds["products"].data.get("products") or [],
            orders=feeds["orders"].data.get("orders") or [],
            users=feeds["users"].data.get("users") or [],
            product_sales=feeds["product_sales"].data.get("total_percentage") or [],
            monthly_sales=feeds["monthly_sales"].data.get("sales_per_month") or [],
            total_amount=feeds["orders"].data.get("total_amount"),
        )
