"""
Click and scroll heatmaps, aggregated per site, day and page path.

Click coordinates are viewport percentages rounded to whole numbers, so a
day record holds at most 101x101 cells regardless of traffic.
"""
import logging
from datetime import date, timedelta
from typing import Any, Dict, List

from zta.storage.blob import BlobStore, add_to_index, read_index
from zta.utils import utcnow

logger = logging.getLogger("ZTA.Heatmaps")

HEATMAPS = "heatmaps"
SCROLL_MILESTONES = (25, 50, 75, 90, 100)


def _days(start: str, end: str) -> List[str]:
    current = date.fromisoformat(start)
    last = date.fromisoformat(end)
    days = []
    while current <= last:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


class HeatmapStore:

    def __init__(self, blob: BlobStore):
        self.blob = blob

    def _key(self, site_id: str, day: str, path: str) -> str:
        return f"{site_id}:{day}:{path}"

    def _load(self, site_id: str, day: str, path: str) -> Dict[str, Any]:
        return self.blob.get(HEATMAPS, self._key(site_id, day, path)) or {
            "siteId": site_id,
            "date": day,
            "path": path,
            "clicks": {},
            "totalClicks": 0,
            "scrollDepths": [],
        }

    def _store(self, record: Dict[str, Any]):
        self.blob.set(HEATMAPS, self._key(record["siteId"], record["date"], record["path"]), record)
        add_to_index(self.blob, HEATMAPS, f"heatmap_paths_{record['siteId']}", record["path"])
        add_to_index(self.blob, HEATMAPS, f"heatmap_days_{record['siteId']}", record["date"])

    def record_click(self, site_id: str, path: str, x: float, y: float):
        record = self._load(site_id, utcnow().date().isoformat(), path)
        cell = f"{round(x)}_{round(y)}"
        record["clicks"][cell] = record["clicks"].get(cell, 0) + 1
        record["totalClicks"] += 1
        self._store(record)

    def record_scroll(self, site_id: str, path: str, depth: float):
        record = self._load(site_id, utcnow().date().isoformat(), path)
        record["scrollDepths"].append(round(depth))
        # Bound the sample list kept per day
        record["scrollDepths"] = record["scrollDepths"][-5000:]
        self._store(record)

    def delete_site(self, site_id: str) -> int:
        """Removes every day record of the site. Returns how many were deleted."""
        deleted = 0
        for day in read_index(self.blob, HEATMAPS, f"heatmap_days_{site_id}"):
            for path in read_index(self.blob, HEATMAPS, f"heatmap_paths_{site_id}"):
                key = self._key(site_id, day, path)
                if self.blob.get(HEATMAPS, key) is not None:
                    self.blob.delete(HEATMAPS, key)
                    deleted += 1
        self.blob.delete(HEATMAPS, f"heatmap_days_{site_id}")
        self.blob.delete(HEATMAPS, f"heatmap_paths_{site_id}")
        return deleted

    def get_pages(self, site_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        pages = []
        for path in read_index(self.blob, HEATMAPS, f"heatmap_paths_{site_id}"):
            clicks = 0
            scroll_samples = 0
            for day in _days(start, end):
                record = self.blob.get(HEATMAPS, self._key(site_id, day, path))
                if record:
                    clicks += record["totalClicks"]
                    scroll_samples += len(record["scrollDepths"])
            if clicks or scroll_samples:
                pages.append({"path": path, "totalClicks": clicks, "scrollSamples": scroll_samples})
        pages.sort(key=lambda p: p["totalClicks"], reverse=True)
        return pages

    def get_clicks(self, site_id: str, path: str, start: str, end: str) -> Dict[str, Any]:
        cells: Dict[str, int] = {}
        for day in _days(start, end):
            record = self.blob.get(HEATMAPS, self._key(site_id, day, path))
            if not record:
                continue
            for cell, count in record["clicks"].items():
                cells[cell] = cells.get(cell, 0) + count

        clicks = []
        for cell, count in cells.items():
            x, y = cell.split("_")
            clicks.append({"x": int(x), "y": int(y), "count": count})
        clicks.sort(key=lambda c: c["count"], reverse=True)
        return {
            "path": path,
            "clicks": clicks,
            "totalClicks": sum(cells.values()),
            "maxCount": max(cells.values()) if cells else 0,
            "dateRange": {"startDate": start, "endDate": end},
        }

    def get_scroll(self, site_id: str, path: str, start: str, end: str) -> Dict[str, Any]:
        depths: List[int] = []
        for day in _days(start, end):
            record = self.blob.get(HEATMAPS, self._key(site_id, day, path))
            if record:
                depths.extend(record["scrollDepths"])

        total = len(depths)
        milestones = {
            str(m): (round(sum(1 for d in depths if d >= m) / total * 100, 1) if total else 0)
            for m in SCROLL_MILESTONES
        }
        return {
            "path": path,
            "totalSamples": total,
            "averageDepth": round(sum(depths) / total, 1) if total else 0,
            "reached": milestones,
            "dateRange": {"startDate": start, "endDate": end},
        }
