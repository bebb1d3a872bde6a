from chrysalis.store import DocumentStore
from chrysalis.services.notifier import ChangeNotifier
from chrysalis.services.ordering import ChapterOrderer
from chrysalis.services.versions import VersionStore

STORE = DocumentStore()
VERSIONS = VersionStore(STORE)
ORDERER = ChapterOrderer(STORE)
NOTIFIER = ChangeNotifier(STORE)


def get_versions() -> VersionStore:
    return VERSIONS


def get_orderer() -> ChapterOrderer:
    return ORDERER


def get_notifier() -> ChangeNotifier:
    return NOTIFIER


__all__ = ["STORE", "VERSIONS", "ORDERER", "NOTIFIER", "get_versions", "get_orderer", "get_notifier"]
