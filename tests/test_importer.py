import pytest

from zta import importer


def test_map_field():
    assert importer.map_field("screenPageViews") == "pageviews"
    assert importer.map_field("ga:users") == "visitors"
    assert importer.map_field(" Custom Field ") == "custom_field"


def test_normalize_date():
    assert importer.normalize_date("20240115") == "2024-01-15"
    assert importer.normalize_date("1/5/2024") == "2024-01-05"
    assert importer.normalize_date("2024-01-15") == "2024-01-15"


def test_parse_csv():
    data = "date,screenPageViews,totalUsers\n20240115,\"1,200\",300\n20240116,80,25.5\n"
    rows = importer.parse_ga_data(data, "csv")
    assert rows == [
        {"date": "2024-01-15", "pageviews": 1200, "visitors": 300},
        {"date": "2024-01-16", "pageviews": 80, "visitors": 25.5},
    ]


def test_parse_csv_needs_data_row():
    with pytest.raises(ValueError):
        importer.parse_ga_data("date,sessions\n", "csv")


def test_parse_json_list():
    rows = importer.parse_ga_data([{"ga:date": "20240101", "ga:sessions": 12}], "json")
    assert rows == [{"date": "2024-01-01", "sessions": 12}]


def test_parse_ga4_api_response():
    data = {
        "dimensionHeaders": [{"name": "date"}, {"name": "pagePath"}],
        "metricHeaders": [{"name": "screenPageViews"}, {"name": "bounceRate"}],
        "rows": [
            {
                "dimensionValues": [{"value": "20240102"}, {"value": "/pricing"}],
                "metricValues": [{"value": "42"}, {"value": "0.35"}],
            }
        ],
    }
    rows = importer.parse_ga_data(data, "ga4-api")
    assert rows == [{"date": "2024-01-02", "page": "/pricing", "pageviews": 42, "bounce_rate": 0.35}]


def test_parse_rejects_unknown_format():
    with pytest.raises(ValueError):
        importer.parse_ga_data("x", "xml")


def test_detect_date_range():
    rows = [{"date": "2024-01-03"}, {"date": "2024-01-01"}, {"date": "2024-01-03"}, {"page": "/"}]
    assert importer.detect_date_range(rows) == {"start": "2024-01-01", "end": "2024-01-03", "days": 2}
    assert importer.detect_date_range([]) is None
