import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from zta import importer
from zta.api.security import SiteAccess, get_site_access
from zta.errors import ForbiddenError, NotFoundError, ValidationError
from zta.models import ImportRequest
from zta.storage import SiteStore, get_sites
from zta.utils import iso_now

router = APIRouter(
    prefix="/api/import",
    tags=["Import"]
)

logger = logging.getLogger("ZTA.Import")


@router.get("")
def list_imports(
    access: SiteAccess = Depends(get_site_access),
    sites: SiteStore = Depends(get_sites),
):
    return {"imports": sites.list_imports(access.auth.id), "supportedFormats": list(importer.SUPPORTED_FORMATS)}


@router.post("", status_code=status.HTTP_201_CREATED)
def import_data(
    body: ImportRequest,
    access: SiteAccess = Depends(get_site_access),
    sites: SiteStore = Depends(get_sites),
):
    """
    Imports historical Google Analytics data for a site. Rows are merged
    per day with any earlier import, numbers summed.
    """
    if not body.siteId:
        raise ValidationError("Site ID required")
    if not body.data:
        raise ValidationError("Data required")
    if body.format not in importer.SUPPORTED_FORMATS:
        raise ValidationError(f"Invalid format. Supported: {', '.join(importer.SUPPORTED_FORMATS)}")
    site = access.write(body.siteId)

    try:
        days = importer.parse_ga_data(body.data, body.format)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ValidationError("Failed to parse data", details=str(e))

    record = {
        "id": f"import_{uuid.uuid4().hex[:16]}",
        "siteId": site["id"],
        "userId": access.auth.id,
        "source": body.source,
        "format": body.format,
        "recordCount": len(days),
        "dateRange": importer.detect_date_range(days),
        "importedAt": iso_now(),
        "status": "completed",
    }
    stored = sites.save_import(record, days)
    logger.info(f"Imported {len(days)} rows into {stored} days for site {site['id']}")
    return {
        "success": True,
        "importId": record["id"],
        "recordsProcessed": len(days),
        "recordsStored": stored,
        "dateRange": record["dateRange"],
        "message": f"Successfully imported {stored} days of historical data",
    }


@router.delete("")
def delete_import(
    importId: Optional[str] = Query(None),
    access: SiteAccess = Depends(get_site_access),
    sites: SiteStore = Depends(get_sites),
):
    if not importId:
        raise ValidationError("Import ID required")
    record = sites.get_import(importId)
    if not record:
        raise NotFoundError("Import")
    if record["userId"] != access.auth.id:
        raise ForbiddenError("Access denied")

    deleted = sites.delete_import(record)
    return {
        "success": True,
        "deletedRecords": deleted,
        "message": f"Successfully deleted import and {deleted} historical records",
    }
