"""Anki package writer built on genanki, assembled atomically.

genanki produces a stored (uncompressed) zip with three kinds of entry:

- ``collection.anki2``: schema-11 Anki collection with one note type, the
  sentence deck, one note and one card per selected sentence;
- ``0``, ``1``, ...: the media files, two per note (audio then image);
- ``media``: JSON object mapping each numeric entry name to the file's
  original basename, which is the name the note fields reference.

Note and card ids are drawn from one counter starting at ``now * 1000``, so
they are unique within the package and ordered like the selections.
"""
import html
import logging
import os
import sqlite3
import tempfile
import time
from pathlib import Path
from typing import Optional

import genanki

from clipcards.errors import PackagingError
from clipcards.models import MediaPair, SelectedSentence

logger = logging.getLogger(__name__)

COLLECTION_NAME = "collection.anki2"
MEDIA_MANIFEST_NAME = "media"
OUTPUT_NAME = "output.apkg"

# Fixed ids: one note type and one deck per package.
MODEL_ID = 1704000000000
DECK_ID = 1704000000001
DECK_NAME = "Sentence Extraction"
FIELD_NAMES = ("Sentence", "Translation", "Audio", "Image", "Source")

CARD_CSS = """
.card { font-family: -apple-system, BlinkMacSystemFont, sans-serif; text-align: center; padding: 20px; }
.card img { max-width: 100%; max-height: 300px; border-radius: 8px; margin-bottom: 16px; }
.sentence { font-size: 1.4em; margin: 12px 0; font-weight: 500; }
.translation { font-size: 1.1em; color: #555; margin: 8px 0; }
.source { font-size: 0.8em; color: #999; margin-top: 16px; }
"""

FRONT_TEMPLATE = """<div class="card">
<img src="{{Image}}">
[sound:{{Audio}}]
</div>"""

BACK_TEMPLATE = """<div class="card">
<img src="{{Image}}">
[sound:{{Audio}}]
<div class="sentence">{{Sentence}}</div>
<div class="translation">{{Translation}}</div>
<div class="source">{{Source}}</div>
</div>"""

SENTENCE_MODEL = genanki.Model(
    MODEL_ID,
    DECK_NAME,
    fields=[{"name": name} for name in FIELD_NAMES],
    templates=[
        {
            "name": "Card 1",
            "qfmt": FRONT_TEMPLATE,
            "afmt": BACK_TEMPLATE,
        }
    ],
    css=CARD_CSS,
)


def _note(sentence: SelectedSentence, pair: MediaPair, source_label: str, due: int) -> genanki.Note:
    # Fields are HTML; media is referenced by basename.
    return genanki.Note(
        model=SENTENCE_MODEL,
        fields=[
            html.escape(sentence.text, quote=False),
            html.escape(sentence.translation, quote=False),
            pair.audio_path.name,
            pair.image_path.name,
            html.escape(source_label, quote=False),
        ],
        due=due,
    )


def build_apkg(
    selections: list[SelectedSentence],
    media_map: dict[int, MediaPair],
    work_dir: Path,
    source_label: str,
    now: Optional[int] = None,
) -> Path:
    """Write ``work_dir/output.apkg`` and return its path.

    Sentences without an entry in *media_map* are left out of the deck.
    The package is written to a temp file in *work_dir* and moved into place
    with os.replace(), so a failed build never leaves a partial ``output.apkg``.

    Raises PackagingError on any SQLite, zip or filesystem failure.
    """
    now = int(time.time()) if now is None else now
    output_path = work_dir / OUTPUT_NAME

    deck = genanki.Deck(DECK_ID, DECK_NAME)
    media_files: list[str] = []
    for sentence in selections:
        pair = media_map.get(sentence.index)
        if pair is None:
            logger.warning("No media for sentence %d; leaving it out of the deck", sentence.index)
            continue
        deck.add_note(_note(sentence, pair, source_label, due=len(deck.notes)))
        media_files.extend([str(pair.audio_path), str(pair.image_path)])

    logger.info("Building .apkg with %d cards...", len(deck.notes))

    tmp_path: Optional[str] = None
    try:
        fd, tmp_path = tempfile.mkstemp(dir=work_dir, suffix=".apkg.tmp")
        os.close(fd)
        genanki.Package(deck, media_files=media_files).write_to_file(tmp_path, timestamp=now)
        os.replace(tmp_path, output_path)
        tmp_path = None
    except (OSError, sqlite3.Error) as exc:
        raise PackagingError(output_path, str(exc)) from exc
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)

    logger.info("Built .apkg at %s", output_path)
    return output_path
