import logging
import time

from engine.core import normalize_artwork_config
from engine.document_store import DocumentNotFound

from .cropper import crop_or_original, detect_mime, resize_to_width
from .entities import Album, Artist, artwork_doc_id
from .faces import select_face_detector
from .providers import discogs
from .providers.source import fetch_bytes


class ArtworkService:
    def __init__(self, artists, albums, artworks, *, config=None, scraper=None, face_detector=None):
        self.artists = artists
        self.albums = albums
        self.artworks = artworks
        self.config = normalize_artwork_config({"artwork": config or {}})
        self.scraper = scraper or discogs.DiscogsScraper(
            self.config["base_url"],
            session=discogs.build_session(self.config["user_agent"]),
            timeout=self.config["request_timeout_seconds"],
        )
        if face_detector is None:
            face_detector = select_face_detector(self.config["face_detection"])
        self.face_detector = face_detector

    def load_entity(self, entity_id):
        try:
            return Artist.from_doc(self.artists.get(entity_id))
        except DocumentNotFound:
            return Album.from_doc(self.albums.get(entity_id))

    def has_hq(self, entity_id):
        try:
            doc = self.artworks.get(artwork_doc_id(entity_id))
        except DocumentNotFound:
            return False
        return "hq" in (doc.get("_attachments") or {})

    def entity_name(self, entity):
        if entity.is_album:
            artist = self.artists.get(entity.artist)
            return f"{artist.get('name') or ''} - {entity.name}"
        return entity.name

    def download_hq_cover(self, entity):
        if self.has_hq(entity.id):
            logging.debug("Skipping artwork %s", entity.id)
            return "skipped"

        logging.debug("Fetching artwork for %s", entity.id)
        kind = entity.kind
        search_url = self.scraper.search_url(self.entity_name(entity), kind)
        object_id = self.scraper.resolve_id(search_url, entity.name)
        if not object_id:
            return "no_match"

        image_url = self.scraper.resolve_image_url(self.scraper.images_url(kind, object_id))
        if not image_url:
            return "no_image"

        logging.debug("Found artwork for %s: %s", entity.id, image_url)
        self.save_artwork(entity.id, image_url)
        return "saved"

    def _ensure_artwork_doc(self, doc_id, entity_id):
        try:
            return self.artworks.get(doc_id)
        except DocumentNotFound:
            self.artworks.put({
                "_id": doc_id,
                "owner": entity_id,
                "date": int(time.time() * 1000),
            })
            return self.artworks.get(doc_id)

    def save_artwork(self, entity_id, source):
        doc_id = artwork_doc_id(entity_id)
        doc = self._ensure_artwork_doc(doc_id, entity_id)
        data = fetch_bytes(
            source,
            session=self.scraper.session,
            timeout=self.config["request_timeout_seconds"],
        )
        hq_size = self.config["hq_size"]
        cropped = crop_or_original(
            data,
            hq_size,
            face_detector=self.face_detector,
            label=f"{entity_id} from {source}",
        )
        mime_type = detect_mime(cropped)

        rev = self.artworks.put_attachment(doc_id, "hq", doc["_rev"], cropped, mime_type)
        logging.debug("Stored hq artwork for %s (rev=%s)", entity_id, rev)
        for name, key in (("large", "large_size"), ("small", "small_size")):
            doc = self.artworks.get(doc_id)
            rendition = resize_to_width(cropped, self.config[key])
            rev = self.artworks.put_attachment(doc_id, name, doc["_rev"], rendition, mime_type)
            logging.debug("Stored %s artwork for %s (rev=%s)", name, entity_id, rev)
        logging.info("Artwork saved for %s", entity_id)
        return rev
