"""
Tests for report layout and PDF rendering
"""

from datetime import date

import pytest

from dashboard import DashboardSnapshot, apply_date_range
from report import (
    A4,
    PageGeometry,
    ReportSections,
    build_report,
    paginate_rows,
    render_pdf,
)

TODAY = date(2024, 10, 19)


def snapshot_with_orders(count: int) -> DashboardSnapshot:
    orders = [
        {"_id": f"{i:024x}", "total_price": 10 + i, "created_at": f"2024-01-{i % 28 + 1:02d}T10:00:00Z",
         "order_status": "Delivered"}
        for i in range(count)
    ]
    return DashboardSnapshot.from_feeds(
        products=[{"_id": "p1", "name": "Red Roses", "stock": 0}],
        orders=orders,
        users=[{"_id": "u1"}],
        product_sales=[{"name": "A very long bouquet name that keeps going", "percent": 100}],
        monthly_sales=[{"month": "January 2024", "total": 1}],
    )


class TestPagination:
    """Row placement across pages"""

    def test_fifty_rows_on_forty_row_pages(self):
        geometry = PageGeometry(height=280, top=0, row_reserve=7, row_height=7)

        pages = paginate_rows(50, 0, geometry)

        assert [len(page) for page in pages] == [40, 10]
        assert pages[1][0] == 0

    def test_rows_never_pass_the_reserve(self):
        pages = paginate_rows(100, A4.top, A4)
        assert sum(len(page) for page in pages) == 100
        assert all(y <= A4.height - A4.row_reserve for page in pages for y in page)
        assert all(page[0] == A4.top for page in pages[1:])


class TestBuildReport:
    def test_first_page_positions(self):
        view = apply_date_range(snapshot_with_orders(3), None, None)

        layout = build_report(view, ReportSections(), TODAY)

        first = layout.pages[0]
        assert (first[0].kind, first[0].y) == ("title", 20)
        assert (first[1].kind, first[1].y) == ("subtitle", 30)
        assert first[1].cells == ("Report Generated: 2024-10-19",)
        assert (first[2].kind, first[2].cells, first[2].y) == ("heading", ("Summary Statistics",), 42)
        assert (first[3].kind, first[3].y) == ("header", 50)
        summary_rows = first[4:9]
        assert [row.y for row in summary_rows] == [58, 65, 72, 79, 86]
        assert summary_rows[0].cells == ("Total Sales", "$33.00")
        assert first[9].y == 98

    def test_filename(self):
        snap = snapshot_with_orders(1)
        assert build_report(apply_date_range(snap, None, None), ReportSections(), TODAY).filename == \
            "dashboard-report-2024-10-19.pdf"
        filtered = apply_date_range(snap, date(2024, 1, 1), date(2024, 1, 31))
        layout = build_report(filtered, ReportSections(), TODAY)
        assert layout.filename == "dashboard-report-2024-01-01-to-2024-01-31.pdf"
        assert layout.pages[0][1].cells == ("Report Period: 2024-01-01 to 2024-01-31",)

    def test_truncation(self):
        layout = build_report(apply_date_range(snapshot_with_orders(1), None, None), ReportSections(), TODAY)

        product_row = next(line for line in layout.lines("row") if line.cells[1] == "100.00%")
        assert product_row.cells[0] == "A very long bouquet name "[:25]
        order_row = next(line for line in layout.lines("row") if line.cells[-1] == "Delivered")
        assert order_row.cells[0] == "00000000"

    def test_unfiltered_report_shows_fifteen_orders(self):
        layout = build_report(apply_date_range(snapshot_with_orders(40), None, None),
                              ReportSections(summary=False, products=False, monthly=False), TODAY)
        assert len(layout.lines("row")) == 15

    def test_filtered_report_spans_pages(self):
        view = apply_date_range(snapshot_with_orders(40), date(2024, 1, 1), date(2024, 1, 31))

        layout = build_report(view, ReportSections(), TODAY)

        assert layout.page_count == 2
        rows = layout.lines("row")
        assert len(rows) == 5 + 1 + 1 + 40
        assert max(row.y for row in rows) <= A4.height - A4.row_reserve
        assert layout.pages[1][0].y == A4.top
        assert layout.pages[1][0].kind == "row"

    def test_table_moves_to_next_page_when_little_room_left(self):
        geometry = PageGeometry(height=120)
        view = apply_date_range(snapshot_with_orders(3), None, None)

        layout = build_report(view, ReportSections(), TODAY, geometry=geometry)

        headings = [(index, line) for index, page in enumerate(layout.pages) for line in page
                    if line.kind == "heading"]
        moved = [(index, line) for index, line in headings if index > 0]
        assert moved
        assert all(line.y == geometry.top for _, line in moved[:1])

    @pytest.mark.parametrize("sections,expected", [
        (ReportSections(summary=False), ["Product Sales", "Monthly Sales", "Recent Orders"]),
        (ReportSections(products=False, orders=False), ["Summary Statistics", "Monthly Sales"]),
        (ReportSections(False, False, False, False), []),
    ])
    def test_section_toggles(self, sections, expected):
        layout = build_report(apply_date_range(snapshot_with_orders(2), None, None), sections, TODAY)
        assert [line.cells[0] for line in layout.lines("heading")] == expected


class TestRenderPdf:
    def test_renders_pdf_bytes(self):
        view = apply_date_range(snapshot_with_orders(60), date(2024, 1, 1), date(2024, 1, 31))

        pdf = render_pdf(build_report(view, ReportSections(), TODAY))

        assert isinstance(pdf, bytes)
        assert pdf.startswith(b"%PDF")

    def test_non_latin_text_is_rendered(self):
        snap = DashboardSnapshot.from_feeds([], [], [], [{"name": "Sakura 桜", "percent": 100}], [])
        pdf = render_pdf(build_report(apply_date_range(snap, None, None), ReportSections(), TODAY))
        assert pdf.startswith(b"%PDF")
