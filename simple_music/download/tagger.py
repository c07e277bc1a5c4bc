"""
Tag writing for finished audio files.

Supported containers:
    - MP3: ID3v2 frames (TIT2, TPE1, TALB, TDRC, TCON, TRCK, TPOS, TSRC, APIC)
    - M4A/MP4: iTunes atoms (©nam, ©ART, ©alb, ©day, ©gen, trkn, disk, covr)
    - FLAC: Vorbis comments plus a front-cover PICTURE block

Cover art is downloaded with requests and normalized with Pillow to an RGB
JPEG of at most 1000x1000 before embedding.

Tagging is best-effort. A file that cannot be tagged is still a perfectly
playable file, so tag() logs and returns False instead of raising.

After a successful write, every registered invalidation listener is
called with the file path so UI layers can drop cached artwork for it.
"""

from io import BytesIO
from pathlib import Path
from typing import Any, Callable

import requests
from mutagen import File as MutagenFile, MutagenError
from mutagen.flac import FLAC, Picture
from mutagen.id3 import APIC, ID3, ID3NoHeaderError, TALB, TCON, TDRC, TIT2, TPE1, TPOS, TRCK, TSRC
from mutagen.mp4 import MP4, MP4Cover
from PIL import Image, UnidentifiedImageError

from simple_music.catalog.models import TrackMetadata
from simple_music.core.exceptions import MetadataError
from simple_music.core.logger import get_logger


logger = get_logger(__name__)

ART_MAX_DIMENSION = 1000
ART_JPEG_QUALITY = 90
ART_TIMEOUT_SECONDS = 15

InvalidationListener = Callable[[Path], None]


def release_year(year: str | None) -> str | None:
    """'2019-05-31' -> '2019'."""
    if not year:
        return None
    return year.split("-")[0] or None


class MetadataTagger:
    """
    Writes TrackMetadata into audio files.

    Attributes:
        session: requests session used for cover art.
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "simple-music/1.0")
        self._listeners: list[InvalidationListener] = []

    def add_invalidation_listener(self, listener: InvalidationListener) -> None:
        self._listeners.append(listener)

    def remove_invalidation_listener(self, listener: InvalidationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def tag(self, file_path: Path, metadata: TrackMetadata) -> bool:
        """
        Embed metadata (and cover art, if any) into file_path.

        Returns:
            True if tags were written, False otherwise. Never raises.
        """
        if not file_path.exists():
            logger.warning(f"Cannot tag missing file: {file_path}")
            return False

        art = self.fetch_album_art(metadata.album_art_url)
        suffix = file_path.suffix.lower()

        try:
            if suffix == ".mp3":
                self._tag_mp3(file_path, metadata, art)
            elif suffix in (".m4a", ".mp4"):
                self._tag_mp4(file_path, metadata, art)
            elif suffix == ".flac":
                self._tag_flac(file_path, metadata, art)
            else:
                raise MetadataError(f"Unsupported format for tagging: {suffix}")
        except (MetadataError, MutagenError, OSError) as e:
            logger.warning(f"Tagging failed for {file_path.name}: {e}")
            return False

        logger.debug(f"Tagged {file_path.name}")
        self._notify(file_path)
        return True

    def read_tags(self, file_path: Path) -> dict[str, str] | None:
        """
        Read title/artist/album/date back from a file.

        Returns:
            Dict of the tags that are present, or None if the file cannot
            be parsed.
        """
        try:
            audio = MutagenFile(file_path, easy=True)
        except (MutagenError, OSError) as e:
            logger.debug(f"Cannot read tags from {file_path}: {e}")
            return None
        if audio is None or audio.tags is None:
            return None

        result: dict[str, str] = {}
        for key in ("title", "artist", "album", "date", "genre", "tracknumber", "discnumber"):
            values = audio.tags.get(key)
            if values:
                result[key] = str(values[0])
        return result

    def fetch_album_art(self, image_url: str | None) -> bytes | None:
        """
        Download cover art and normalize it to JPEG.

        If Pillow cannot decode the payload the raw bytes are returned
        unchanged; if the download itself fails, None.
        """
        if not image_url:
            return None

        try:
            response = self.session.get(image_url, timeout=ART_TIMEOUT_SECONDS)
            response.raise_for_status()
            image_data = response.content
        except requests.RequestException as e:
            logger.warning(f"Failed to download album art from {image_url}: {e}")
            return None

        try:
            with Image.open(BytesIO(image_data)) as img:
                if img.mode != "RGB":
                    img = img.convert("RGB")
                if img.width > ART_MAX_DIMENSION or img.height > ART_MAX_DIMENSION:
                    img.thumbnail((ART_MAX_DIMENSION, ART_MAX_DIMENSION), Image.Resampling.LANCZOS)
                output = BytesIO()
                img.save(output, format="JPEG", quality=ART_JPEG_QUALITY, optimize=True)
                return output.getvalue()
        except (UnidentifiedImageError, OSError) as e:
            logger.debug(f"Album art not re-encoded ({e}), embedding original bytes")
            return image_data

    def _notify(self, file_path: Path) -> None:
        for listener in list(self._listeners):
            try:
                listener(file_path)
            except Exception as e:
                logger.debug(f"Art cache listener failed for {file_path.name}: {e}")

    # =========================================================================
    # FORMAT HANDLERS
    # =========================================================================

    def _tag_mp3(self, file_path: Path, metadata: TrackMetadata, art: bytes | None) -> None:
        try:
            tags = ID3(file_path)
        except ID3NoHeaderError:
            tags = ID3()

        tags.delall("APIC")
        tags.add(TIT2(encoding=3, text=metadata.title))
        tags.add(TPE1(encoding=3, text=metadata.artist))
        if metadata.album:
            tags.add(TALB(encoding=3, text=metadata.album))
        year = release_year(metadata.year)
        if year:
            tags.add(TDRC(encoding=3, text=year))
        if metadata.genre:
            tags.add(TCON(encoding=3, text=metadata.genre))
        if metadata.track_number:
            tags.add(TRCK(encoding=3, text=str(metadata.track_number)))
        if metadata.disc_number:
            tags.add(TPOS(encoding=3, text=str(metadata.disc_number)))
        if metadata.isrc:
            tags.add(TSRC(encoding=3, text=metadata.isrc))
        if art:
            tags.add(APIC(encoding=3, mime="image/jpeg", type=3, desc="Cover", data=art))

        tags.save(file_path, v2_version=3)

    def _tag_mp4(self, file_path: Path, metadata: TrackMetadata, art: bytes | None) -> None:
        audio = MP4(file_path)
        if audio.tags is None:
            audio.add_tags()

        tags: dict[str, Any] = {
            "\xa9nam": [metadata.title],
            "\xa9ART": [metadata.artist],
        }
        if metadata.album:
            tags["\xa9alb"] = [metadata.album]
        year = release_year(metadata.year)
        if year:
            tags["\xa9day"] = [year]
        if metadata.genre:
            tags["\xa9gen"] = [metadata.genre]
        if metadata.track_number:
            tags["trkn"] = [(metadata.track_number, 0)]
        if metadata.disc_number:
            tags["disk"] = [(metadata.disc_number, 0)]
        if art:
            tags["covr"] = [MP4Cover(art, imageformat=MP4Cover.FORMAT_JPEG)]

        audio.tags.update(tags)
        audio.save()

    def _tag_flac(self, file_path: Path, metadata: TrackMetadata, art: bytes | None) -> None:
        audio = FLAC(file_path)
        if audio.tags is None:
            audio.add_tags()

        audio["title"] = metadata.title
        audio["artist"] = metadata.artist
        if metadata.album:
            audio["album"] = metadata.album
        year = release_year(metadata.year)
        if year:
            audio["date"] = year
        if metadata.genre:
            audio["genre"] = metadata.genre
        if metadata.track_number:
            audio["tracknumber"] = str(metadata.track_number)
        if metadata.disc_number:
            audio["discnumber"] = str(metadata.disc_number)
        if metadata.isrc:
            audio["isrc"] = metadata.isrc

        if art:
            picture = Picture()
            picture.type = 3
            picture.mime = "image/jpeg"
            picture.desc = "Cover"
            picture.data = art
            audio.clear_pictures()
            audio.add_picture(picture)

        audio.save()
