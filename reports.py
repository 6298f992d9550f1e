import csv
from collections import OrderedDict
from decimal import Decimal
from io import StringIO

from schemas import (
    MonthlyReport,
    ReportCategoryTotal,
    ReportExpenseRow,
    ReportProductTotal,
    ReportSummary,
)


def _products_label(expense):
    labels = [
        f"{line.product.name if line.product else 'Unknown'} "
        f"({Decimal(line.quantity).normalize():f}x ${Decimal(line.price_per_unit):.2f})"
        for line in expense.products
    ]
    return ", ".join(labels) or "-"


def build_monthly_report(expenses, month_year: str) -> MonthlyReport:
    """Reshape one month of expenses into summary, rows, category and product totals.

    ``expenses`` must be non-empty, newest first.
    """
    total = sum((Decimal(e.amount) for e in expenses), Decimal("0"))
    recurring = sum(1 for e in expenses if e.is_recurring)
    dates = [e.expense_date for e in expenses]

    summary = ReportSummary(
        month_year=month_year,
        expense_count=len(expenses),
        total_amount=float(total),
        average_expense=round(float(total / len(expenses)), 2),
        recurring_count=recurring,
        one_time_count=len(expenses) - recurring,
        first_date=min(dates),
        last_date=max(dates),
    )

    rows = [
        ReportExpenseRow(
            expense_date=e.expense_date,
            description=e.description or "-",
            category=e.category.name if e.category else "Uncategorized",
            products=_products_label(e),
            amount=float(e.amount),
        )
        for e in expenses
    ]

    by_category = OrderedDict()
    by_product = OrderedDict()
    for e in expenses:
        name = e.category.name if e.category else "Uncategorized"
        by_category[name] = by_category.get(name, Decimal("0")) + Decimal(e.amount)
        for line in e.products:
            product = line.product.name if line.product else "Unknown"
            quantity, spent = by_product.get(product, (Decimal("0"), Decimal("0")))
            by_product[product] = (
                quantity + Decimal(line.quantity),
                spent + Decimal(line.quantity) * Decimal(line.price_per_unit),
            )

    categories = [
        ReportCategoryTotal(
            category=name,
            total_spent=float(amount),
            percentage=round(float(amount / total * 100), 1) if total else 0.0,
        )
        for name, amount in sorted(by_category.items(), key=lambda item: -item[1])
    ]
    products = [
        ReportProductTotal(product=name, quantity=float(quantity), total_spent=float(spent))
        for name, (quantity, spent) in sorted(by_product.items(), key=lambda item: -item[1][1])
    ]
    return MonthlyReport(
        summary=summary, expenses=rows, by_category=categories, by_product=products
    )


def report_to_csv(report: MonthlyReport) -> str:
    csv_data = StringIO()
    writer = csv.writer(csv_data)

    summary = report.summary
    writer.writerow(["SpendWise monthly report", summary.month_year])
    writer.writerow(["Total Expenses", summary.expense_count])
    writer.writerow(["Total Amount", f"{summary.total_amount:.2f}"])
    writer.writerow(["Average per Expense", f"{summary.average_expense:.2f}"])
    writer.writerow(["Recurring Expenses", summary.recurring_count])
    writer.writerow(["One-Time Expenses", summary.one_time_count])

    writer.writerow([])
    writer.writerow(["Date", "Description", "Category", "Products", "Amount"])
    for row in report.expenses:
        writer.writerow(
            [row.expense_date, row.description, row.category, row.products, f"{row.amount:.2f}"]
        )

    writer.writerow([])
    writer.writerow(["Category", "Total Spent", "Percentage"])
    for row in report.by_category:
        writer.writerow([row.category, f"{row.total_spent:.2f}", f"{row.percentage:.1f}%"])

    if report.by_product:
        writer.writerow([])
        writer.writerow(["Product", "Quantity", "Total Spent"])
        for row in report.by_product:
            writer.writerow([row.product, f"{row.quantity:g}", f"{row.total_spent:.2f}"])

    return csv_data.getvalue()
