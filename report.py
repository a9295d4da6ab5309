"""
Dashboard PDF report

Layout and drawing are separate steps: ``build_report`` decides which line
goes on which page at which height, ``render_pdf`` draws that layout with
fpdf2. All positions are millimetres on an A4 portrait page.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence, Tuple

from fpdf import FPDF

from dashboard import FilteredView, recent_orders

logger = logging.getLogger(__name__)

REPORT_TITLE = "FleurEase - Dashboard Report"
PRODUCT_NAME_WIDTH = 25
ORDER_ID_WIDTH = 8

BRAND_COLOR = (107, 70, 193)


@dataclass(frozen=True)
class PageGeometry:
    width: float = 210.0
    height: float = 297.0
    margin: float = 14.0
    top: float = 20.0
    row_height: float = 7.0
    # A row starts a new page once y is past height - row_reserve
    row_reserve: float = 15.0
    # A table starts a new page once y is past height - table_reserve
    table_reserve: float = 40.0


A4 = PageGeometry()


@dataclass(frozen=True)
class ReportSections:
    summary: bool = True
    products: bool = True
    monthly: bool = True
    orders: bool = True


@dataclass(frozen=True)
class Line:
    kind: str  # title | subtitle | heading | header | row
    y: float
    cells: Tuple[str, ...]


@dataclass
class ReportLayout:
    filename: str
    geometry: PageGeometry = A4
    pages: List[List[Line]] = field(default_factory=lambda: [[]])

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def lines(self, kind: Optional[str] = None) -> List[Line]:
        return [line for page in self.pages for line in page if kind is None or line.kind == kind]


def row_overflows(y: float, geometry: PageGeometry) -> bool:
    return y > geometry.height - geometry.row_reserve


def paginate_rows(row_count: int, start_y: float, geometry: PageGeometry) -> List[List[float]]:
    """
    Baseline of every row, grouped by page.

    A row is placed at the current height unless that height is already past
    ``height - row_reserve``, in which case it opens a new page at ``top``.
    Rows are never split across pages.
    """
    pages: List[List[float]] = [[]]
    y = start_y
    for _ in range(row_count):
        if row_overflows(y, geometry):
            pages.append([])
            y = geometry.top
        pages[-1].append(y)
        y += geometry.row_height
    return pages


def money(value: float) -> str:
    return f"${value:.2f}"


def report_filename(view: FilteredView, today: date) -> str:
    if view.is_filtered:
        return f"dashboard-report-{view.start.isoformat()}-to-{view.end.isoformat()}.pdf"
    return f"dashboard-report-{today.isoformat()}.pdf"


class _LayoutBuilder:
    def __init__(self, layout: ReportLayout):
        self.layout = layout
        self.geometry = layout.geometry
        self.y = self.geometry.top

    def new_page(self) -> None:
        self.layout.pages.append([])
        self.y = self.geometry.top

    def put(self, kind: str, *cells: str) -> None:
        self.layout.pages[-1].append(Line(kind=kind, y=self.y, cells=tuple(cells)))

    def table(self, title: str, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        geometry = self.geometry
        if self.y > geometry.height - geometry.table_reserve:
            self.new_page()
        self.put("heading", title)
        self.y += 8
        self.put("header", *headers)
        self.y += 8

        for row in rows:
            if row_overflows(self.y, geometry):
                self.new_page()
            self.put("row", *row)
            self.y += geometry.row_height
        self.y += 5


def build_report(view: FilteredView, sections: ReportSections, today: date,
                 geometry: PageGeometry = A4) -> ReportLayout:
    snapshot = view.snapshot
    layout = ReportLayout(filename=report_filename(view, today), geometry=geometry)
    builder = _LayoutBuilder(layout)

    builder.put("title", REPORT_TITLE)
    builder.y += 10
    if view.is_filtered:
        builder.put("subtitle", f"Report Period: {view.start.isoformat()} to {view.end.isoformat()}")
    else:
        builder.put("subtitle", f"Report Generated: {today.isoformat()}")
    builder.y += 12

    if sections.summary:
        builder.table("Summary Statistics", ["Metric", "Value"], [
            ["Total Sales", money(view.amount)],
            ["Total Orders", str(view.order_count)],
            ["Total Products", str(snapshot.product_count)],
            ["Total Users", str(snapshot.user_count)],
            ["Out of Stock", str(snapshot.out_of_stock)],
        ])

    if sections.products and snapshot.product_sales:
        builder.table("Product Sales", ["Product", "Sales %"], [
            [sale.name[:PRODUCT_NAME_WIDTH], f"{sale.percent:.2f}%"] for sale in snapshot.product_sales
        ])

    if sections.monthly and view.monthly_sales:
        builder.table("Monthly Sales", ["Month", "Sales"], [
            [item.month, money(item.total)] for item in view.monthly_sales
        ])

    orders = recent_orders(view)
    if sections.orders and orders:
        builder.table("Recent Orders", ["Order ID", "Date", "Amount", "Status"], [
            [
                order.id[:ORDER_ID_WIDTH],
                order.created_at.date().isoformat() if order.created_at else "-",
                money(order.total_price),
                order.status,
            ]
            for order in orders
        ])

    return layout


def _latin1(text: str) -> str:
    # core PDF fonts only cover latin-1
    return text.encode("latin-1", "replace").decode("latin-1")


def _fit(pdf: FPDF, text: str, width: float) -> str:
    text = _latin1(text)
    while text and pdf.get_string_width(text) > width:
        text = text[:-1]
    return text


def render_pdf(layout: ReportLayout) -> bytes:
    geometry = layout.geometry
    pdf = FPDF(orientation="P", unit="mm", format=(geometry.width, geometry.height))
    pdf.set_auto_page_break(False)

    for page in layout.pages:
        pdf.add_page()
        for line in page:
            if line.kind == "title":
                pdf.set_font("Helvetica", size=20)
                pdf.set_text_color(*BRAND_COLOR)
                pdf.text(geometry.margin, line.y, _latin1(line.cells[0]))
            elif line.kind == "subtitle":
                pdf.set_font("Helvetica", size=10)
                pdf.set_text_color(100, 100, 100)
                pdf.text(geometry.margin, line.y, _latin1(line.cells[0]))
            elif line.kind == "heading":
                pdf.set_font("Helvetica", size=12)
                pdf.set_text_color(0, 0, 0)
                pdf.text(geometry.margin, line.y, _latin1(line.cells[0]))
            else:
                col_width = (geometry.width - 2 * geometry.margin) / len(line.cells)
                if line.kind == "header":
                    pdf.set_font("Helvetica", size=10)
                    pdf.set_fill_color(*BRAND_COLOR)
                    pdf.set_text_color(255, 255, 255)
                else:
                    pdf.set_font("Helvetica", size=9)
                    pdf.set_text_color(0, 0, 0)
                x = geometry.margin
                for cell in line.cells:
                    if line.kind == "header":
                        pdf.rect(x, line.y - 5, col_width, geometry.row_height, style="F")
                    pdf.text(x + 2, line.y, _fit(pdf, cell, col_width - 4))
                    x += col_width

    logger.info("Rendered report %s (%d pages)", layout.filename, layout.page_count)
    return bytes(pdf.output())
