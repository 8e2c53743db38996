import calendar
from datetime import date


def month_bounds(year, month):
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def add_months(year, month, count):
    index = year * 12 + (month - 1) + count
    return index // 12, index % 12 + 1


def add_months_to_date(value, count):
    year, month = add_months(value.year, value.month, count)
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def month_label(year, month):
    return date(year, month, 1).strftime('%B %Y')
