"""
Parsing of Google Analytics exports (GA4 and Universal Analytics) into
daily ZTA records.
"""
import csv
import io
import logging
import re
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger("ZTA.Importer")

SUPPORTED_FORMATS = ("csv", "json", "ga4-api", "ua-csv")

GA_FIELD_MAP = {
    # GA4
    "date": "date",
    "pagePath": "page",
    "pageTitle": "title",
    "screenPageViews": "pageviews",
    "sessions": "sessions",
    "totalUsers": "visitors",
    "newUsers": "new_visitors",
    "bounceRate": "bounce_rate",
    "averageSessionDuration": "avg_duration",
    "sessionSource": "source",
    "sessionMedium": "medium",
    "country": "country",
    "region": "region",
    "city": "city",
    "deviceCategory": "device",
    "browser": "browser",
    "operatingSystem": "os",
    # Universal Analytics
    "ga:date": "date",
    "ga:pagePath": "page",
    "ga:pageTitle": "title",
    "ga:pageviews": "pageviews",
    "ga:sessions": "sessions",
    "ga:users": "visitors",
    "ga:newUsers": "new_visitors",
    "ga:bounceRate": "bounce_rate",
    "ga:avgSessionDuration": "avg_duration",
    "ga:source": "source",
    "ga:medium": "medium",
    "ga:country": "country",
    "ga:region": "region",
    "ga:city": "city",
    "ga:deviceCategory": "device",
    "ga:browser": "browser",
    "ga:operatingSystem": "os",
}


def map_field(name: str) -> str:
    name = name.strip()
    return GA_FIELD_MAP.get(name) or re.sub(r"\s+", "_", name.lower())


def normalize_date(value: Any) -> Any:
    """YYYYMMDD and MM/DD/YYYY become YYYY-MM-DD; anything else is returned as is."""
    text = str(value).strip()
    if re.match(r"^\d{8}$", text):
        return f"{text[:4]}-{text[4:6]}-{text[6:8]}"
    match = re.match(r"^(\d{1,2})/(\d{1,2})/(\d{4})$", text)
    if match:
        month, day, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return text


def to_number(value: str) -> Union[int, float, str]:
    cleaned = value.replace(",", "").strip()
    try:
        number = float(cleaned)
    except ValueError:
        return value
    return int(number) if number.is_integer() else number


def map_record(record: Dict[str, Any]) -> Dict[str, Any]:
    mapped = {map_field(key): value for key, value in record.items()}
    if mapped.get("date"):
        mapped["date"] = normalize_date(mapped["date"])
    return mapped


def parse_csv(text: str) -> List[Dict[str, Any]]:
    if not isinstance(text, str):
        raise ValueError("CSV data must be a string")
    reader = csv.reader(io.StringIO(text.strip()))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if len(rows) < 2:
        raise ValueError("CSV must have at least a header row and one data row")

    fields = [map_field(h) for h in rows[0]]
    records = []
    for row in rows[1:]:
        record: Dict[str, Any] = {}
        for field, value in zip(fields, row):
            # Dates stay strings so 20240115 is not read as a number
            record[field] = normalize_date(value) if field == "date" else to_number(value)
        records.append(record)
    return records


def parse_json(data: Union[List[Any], Dict[str, Any]]) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        if not all(isinstance(row, dict) for row in data):
            raise ValueError("JSON rows must be objects")
        return [map_record(row) for row in data]

    if isinstance(data, dict) and "rows" in data and "dimensionHeaders" in data:
        dimensions = [map_field(h["name"]) for h in data["dimensionHeaders"]]
        metrics = [map_field(h["name"]) for h in data.get("metricHeaders", [])]
        records = []
        for row in data["rows"]:
            record: Dict[str, Any] = {}
            for field, cell in zip(dimensions, row.get("dimensionValues", [])):
                record[field] = cell.get("value")
            for field, cell in zip(metrics, row.get("metricValues", [])):
                number = to_number(str(cell.get("value", "0")))
                record[field] = number if isinstance(number, (int, float)) else 0
            if record.get("date"):
                record["date"] = normalize_date(record["date"])
            records.append(record)
        return records

    if isinstance(data, dict):
        return [map_record(data)]

    raise ValueError("Unrecognized JSON format")


def parse_ga_data(data: Any, data_format: str) -> List[Dict[str, Any]]:
    """Raises ValueError when the data cannot be parsed in the given format."""
    if data_format in ("csv", "ua-csv"):
        return parse_csv(data)
    if data_format in ("json", "ga4-api"):
        return parse_json(data)
    raise ValueError(f"Unsupported format: {data_format}")


def detect_date_range(records: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    dates = sorted(str(r["date"]) for r in records if r.get("date"))
    if not dates:
        return None
    return {"start": dates[0], "end": dates[-1], "days": len(set(dates))}
