"""
Dependency getters for the record stores. All of them share the singleton
blob store, so state persists across requests.
"""
from zta.storage.blob import get_blob_store, set_blob_store, InMemoryBlobStore, RedisBlobStore
from zta.storage.accounts import AccountStore
from zta.storage.sites import SiteStore
from zta.storage.rules import RuleStore
from zta.storage.teams import TeamStore
from zta.storage.heatmaps import HeatmapStore


def get_accounts() -> AccountStore:
    return AccountStore(get_blob_store())


def get_sites() -> SiteStore:
    return SiteStore(get_blob_store())


def get_rules() -> RuleStore:
    return RuleStore(get_blob_store())


def get_teams() -> TeamStore:
    return TeamStore(get_blob_store())


def get_heatmaps() -> HeatmapStore:
    return HeatmapStore(get_blob_store())
