"""Convert BAG XML extracts (WPL, OPR, NUM, VBO, LIG, STA, PND) into a SQLite database."""

from __future__ import annotations

import json
import re
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from .rd2wgs84 import rd2wgs84
from .sqlwriter import SQLiteWriter

DATABASE = "bag.sqlite"
PROGRESS_EVERY = 32768 * 32

_PLACE_TYPES = {"Verblijfsobject": "vbo", "Standplaats": "sta", "Ligplaats": "lig"}


@dataclass(frozen=True)
class Validity:
    """Whether an object is valid on a date, with its validity interval.

    Evaluates as true when the object is active.
    """

    active: bool
    begin: str = ""
    end: str = ""

    def __bool__(self) -> bool:
        return self.active


def _local(tag) -> str:
    return tag.rpartition("}")[2] if isinstance(tag, str) else ""


def _child(el: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if el is None:
        return None
    for child in el:
        if _local(child.tag) == name:
            return child
    return None


def _text(el: Optional[ET.Element]) -> str:
    """Text directly inside an element; whitespace-only text counts as empty."""
    if el is None:
        return ""
    text = el.text or ""
    return text if text.strip() else ""


def _select(el: ET.Element, *path: str) -> Optional[ET.Element]:
    """First element reached by following child names, in document order."""
    if not path:
        return el
    for child in el:
        if _local(child.tag) == path[0]:
            found = _select(child, *path[1:])
            if found is not None:
                return found
    return None


def _atoi(text: str) -> int:
    match = re.match(r"\s*[+-]?\d+", text)
    return int(match.group(0)) if match else 0


def _atof(text: str) -> float:
    match = re.match(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", text)
    return float(match.group(0)) if match else 0.0


def currently_active(stand, date):
    """Check whether a BAG object is valid on ``date`` (yyyy-mm-dd).

    Objects without history information are always active.
    """
    record = _child(_child(stand, "voorkomen"), "Voorkomen")
    if record is None:
        return Validity(True)
    end = _text(_child(record, "eindGeldigheid"))
    begin = _text(_child(record, "beginGeldigheid"))
    if not begin:
        raise ValueError(f"Object {_local(stand.tag)} has a history record without a begin date")
    if date < begin:
        return Validity(False, begin, end)
    if not end:
        return Validity(True, begin, end)
    if end <= date:
        return Validity(False, begin, end)
    return Validity(True, begin, end)


def today():
    """Today's local date as yyyy-mm-dd."""
    return date.today().isoformat()


class BagConverter:
    """Feeds BAG objects into an SQLiteWriter.

    Woonplaats and OpenbareRuimte files must be processed before
    Nummeraanduiding files, since addresses look up their town name.
    """

    def __init__(self, writer, reference_date=None):
        self.writer: SQLiteWriter = writer
        self.reference_date: str = reference_date or today()
        self.woonplaatsen: dict[int, str] = {}
        self._opr_woonplaats: dict[str, int] = {}
        self._reported: set[tuple[str, str]] = set()
        self.count = 0
        self._handlers = {
            "Woonplaats": self._woonplaats,
            "Pand": self._pand,
            "Verblijfsobject": self._verblijfsobject,
            "Standplaats": self._verblijfsobject,
            "Ligplaats": self._verblijfsobject,
            "Nummeraanduiding": self._nummeraanduiding,
            "OpenbareRuimte": self._openbare_ruimte,
        }

    def process_file(self, path):
        """Parse one BAG extract file and process every object in it."""
        stack: list[ET.Element] = []
        for event, elem in ET.iterparse(str(path), events=("start", "end")):
            if event == "start":
                stack.append(elem)
                continue
            stack.pop()
            depth = len(stack)
            if depth < 2 or _local(stack[0].tag) != "bagStand" or _local(stack[1].tag) != "standBestand":
                continue
            if depth == 3 and _local(elem.tag) == "bagObject":
                for stand in elem:
                    self.process_object(stand)
                elem.clear()
            elif depth == 2:
                stack[1].remove(elem)

    def process_object(self, stand):
        """Process a single BAG object element."""
        self.count += 1
        if self.count % PROGRESS_EVERY == 0:
            print(self.count)
        kind = _local(stand.tag)
        handler = self._handlers.get(kind)
        if handler is None:
            print(kind)
            return
        handler(stand, kind)

    def _ignore(self, kind: str, name: str, value: Optional[str] = None) -> None:
        key = (kind, name)
        if key in self._reported:
            return
        self._reported.add(key)
        message = f"Ignoring {kind} element {name}"
        if value is not None:
            message += f": {value}"
        print(message)

    def _woonplaats(self, stand, kind):
        if not currently_active(stand, self.reference_date):
            return
        wid = 0
        name = ""
        geconstateerd = False
        for el in stand:
            elname = _local(el.tag)
            if elname == "identificatie":
                wid = _atoi(_text(el))
            elif elname == "naam":
                name = _text(el)
            elif elname == "geconstateerd":
                geconstateerd = _text(el) == "J"
            elif elname in ("geometrie", "voorkomen"):
                pass
            else:
                self._ignore(kind, elname)
        self.woonplaatsen[wid] = name
        self.writer.add_value(
            {"id": wid, "naam": name, "geconstateerd": int(geconstateerd)}, "wpls"
        )

    def _pand(self, stand, kind):
        if not currently_active(stand, self.reference_date):
            return
        pid = ""
        status = ""
        bouwjaar = 0
        geo = ""
        for el in stand:
            elname = _local(el.tag)
            if elname == "identificatie":
                pid = _text(el)
            elif elname == "status":
                status = _text(el)
            elif elname == "oorspronkelijkBouwjaar":
                bouwjaar = _atoi(_text(el))
            elif elname == "geometrie":
                poslist = _select(el, "Polygon", "exterior", "LinearRing", "posList")
                if poslist is not None:
                    geo = _text(poslist)
            elif elname == "voorkomen":
                pass
            else:
                self._ignore(kind, elname)
        self.writer.add_value(
            {"id": pid, "geo": geo, "bouwjaar": bouwjaar, "status": status}, "pnds"
        )

    @staticmethod
    def _location(geometrie) -> tuple[float, float]:
        pos = _select(geometrie, "punt", "Point", "pos")
        if pos is not None:
            point = _text(pos)
            x = _atof(point)
            y = -1.0
            if " " in point:
                y = _atof(point.split(" ", 1)[1])
            return x, y
        poslist = _select(geometrie, "Polygon", "exterior", "LinearRing", "posList")
        if poslist is None:
            return -1.0, -1.0
        values = _text(poslist).split()
        if len(values) % 2:
            print("Odd size for position list in ring")
            return -1.0, -1.0
        xs = [_atof(v) for v in values[0::2]]
        ys = [_atof(v) for v in values[1::2]]
        count = len(values) / 2.0
        return sum(xs) / count, sum(ys) / count

    def _verblijfsobject(self, stand, kind):
        if not currently_active(stand, self.reference_date):
            return
        vid = ""
        status = ""
        oppervlakte = -1
        doelen: set[str] = set()
        panden: set[str] = set()
        nums: set[tuple[str, bool]] = set()
        x, y = -1.0, -1.0
        for el in stand:
            elname = _local(el.tag)
            if elname == "identificatie":
                vid = _text(el)
            elif elname == "status":
                status = _text(el)
            elif elname == "oppervlakte":
                oppervlakte = _atoi(_text(el))
            elif elname == "gebruiksdoel":
                doelen.add(_text(el))
            elif elname == "geometrie":
                x, y = self._location(el)
            elif elname == "maaktDeelUitVan":
                panden.update(_text(ref) for ref in el)
            elif elname == "heeftAlsHoofdadres":
                nums.update((_text(ref), True) for ref in el)
            elif elname == "heeftAlsNevenadres":
                nums.update((_text(ref), False) for ref in el)
            else:
                self._ignore(kind, elname)

        pos = rd2wgs84(x, y)
        gebruiksdoelen = json.dumps(sorted(doelen), separators=(",", ":"), ensure_ascii=False)
        self.writer.add_value(
            {
                "id": vid,
                "gebruiksdoelen": gebruiksdoelen,
                "x": float(x),
                "y": float(y),
                "lat": pos.lat,
                "lon": pos.lon,
                "status": status,
                "oppervlakte": oppervlakte,
                "type": _PLACE_TYPES[kind],
            },
            "vbos",
        )
        for numid, hoofdadres in sorted(nums):
            self.writer.add_value(
                {"vbo": vid, "num": numid, "hoofdadres": int(hoofdadres)}, "vbo_num"
            )
        for pand in sorted(panden):
            self.writer.add_value({"vbo": vid, "pnd": pand}, "vbo_pnd")

    def _nummeraanduiding(self, stand, kind):
        nid = ""
        status = ""
        huisnummer = 0
        huisletter = ""
        toevoeging = ""
        postcode = ""
        ligt_aan = ""
        ligt_in = -1
        woonplaats = ""
        for el in stand:
            elname = _local(el.tag)
            if elname == "identificatie":
                nid = _text(el)
            elif elname == "status":
                status = _text(el)
            elif elname == "huisnummer":
                huisnummer = _atoi(_text(el))
            elif elname == "huisletter":
                huisletter = _text(el)
            elif elname == "huisnummertoevoeging":
                toevoeging = _text(el)
            elif elname == "postcode":
                postcode = _text(el)
            elif elname == "ligtAan":
                ligt_aan = _text(_child(el, "OpenbareRuimteRef"))
            elif elname == "ligtIn":
                ligt_in = _atoi(_text(_child(el, "WoonplaatsRef")))
                woonplaats = self.woonplaatsen.get(ligt_in, "")
            else:
                self._ignore(kind, elname, _text(el))

        if not woonplaats:
            woonplaats = self.woonplaatsen.get(self._opr_woonplaats.get(ligt_aan, 0), "")
        if not woonplaats:
            raise LookupError(
                f"Failure to look up woonplaats for Nummeraanduiding id {nid}, "
                "make sure to parse WPL and OPR files first!"
            )

        validity = currently_active(stand, self.reference_date)
        row: dict = {"id": nid, "ligtAanRef": ligt_aan}
        if ligt_in >= 0:
            row["ligtInRef"] = ligt_in
        row.update(
            {
                "woonplaats": woonplaats,
                "postcode": postcode,
                "huisnummer": huisnummer,
                "huisletter": huisletter,
                "huistoevoeging": toevoeging,
                "status": status,
            }
        )
        if validity:
            self.writer.add_value(row, "nums")
        else:
            row["begindate"] = validity.begin
            row["enddate"] = validity.end
            self.writer.add_value(row, "inactnums")

    def _openbare_ruimte(self, stand, kind):
        if not currently_active(stand, self.reference_date):
            return
        oid = ""
        status = ""
        naam = ""
        opr_type = ""
        verkorte_naam = ""
        ligt_in = 0
        for el in stand:
            elname = _local(el.tag)
            if elname == "identificatie":
                oid = _text(el)
            elif elname == "status":
                status = _text(el)
            elif elname == "naam":
                naam = _text(el)
            elif elname == "type":
                opr_type = _text(el)
            elif elname == "ligtIn":
                ligt_in = _atoi(_text(_child(el, "WoonplaatsRef")))
            elif elname == "verkorteNaam":
                short = _select(el, "VerkorteNaamOpenbareRuimte", "verkorteNaam")
                if short is not None:
                    verkorte_naam = _text(short)
            else:
                self._ignore(kind, elname)

        row: dict = {"id": oid, "naam": naam}
        if verkorte_naam:
            row["verkorteNaam"] = verkorte_naam
        row.update({"type": opr_type, "status": status, "ligtInRef": ligt_in})
        self.writer.add_value(row, "oprs")
        self._opr_woonplaats[oid] = ligt_in


def main(argv=None):
    args = sys.argv[1:] if argv is None else list(argv)
    Path(DATABASE).unlink(missing_ok=True)
    with SQLiteWriter(
        DATABASE, {"huisletter": "collate nocase", "huistoevoeging": "collate nocase"}
    ) as writer:
        reference = today()
        print(f"Reference day for history: {reference}")
        converter = BagConverter(writer, reference)
        for path in args:
            try:
                converter.process_file(path)
            except (ET.ParseError, OSError) as exc:
                print(f"Unable to load {path}: {exc}", file=sys.stderr)
                return -1
            except (LookupError, ValueError) as exc:
                print(exc)
                return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())