from dataclasses import dataclass

ARTWORK_PREFIX = "artworks/"


def artwork_doc_id(entity_id):
    return ARTWORK_PREFIX + entity_id


@dataclass(frozen=True)
class Artist:
    id: str
    name: str

    @property
    def is_album(self):
        return False

    @property
    def kind(self):
        return "artist"

    @classmethod
    def from_doc(cls, doc):
        return cls(id=doc["_id"], name=doc.get("name") or "")


@dataclass(frozen=True)
class Album:
    id: str
    name: str
    artist: str

    @property
    def is_album(self):
        return bool(self.artist)

    @property
    def kind(self):
        return "release" if self.artist else "artist"

    @classmethod
    def from_doc(cls, doc):
        return cls(id=doc["_id"], name=doc.get("name") or "", artist=doc.get("artist") or "")
