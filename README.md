# bagtools

Tools for working with the Dutch BAG (Basisregistratie Adressen en Gebouwen)
extract: convert its XML files into a single SQLite database, and answer
postcode and coordinate lookups against such a database over HTTP.

No third-party libraries are needed.

## Installation

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Converting a BAG extract

`bagconv` reads unpacked BAG XML files and writes `bag.sqlite` in the current
directory, deleting any existing file first. Objects whose history record says
they are not valid on today's date are skipped, except address designations:
inactive ones go to a separate `inactnums` table together with their
`begindate` and `enddate`.

Place names (WPL) and public spaces (OPR) must be processed before address
designations (NUM), because an address is linked to its place by looking those
up. If that lookup fails, `bagconv` prints a message and exits with status 1.
A file that cannot be read or parsed makes it exit with status -1.

```
bagconv 9999WPL*.xml 9999OPR*.xml 9999NUM*.xml 9999VBO*.xml 9999PND*.xml 9999STA*.xml 9999LIG*.xml
```

The tables it writes:

- `wpls` – places: `id`, `naam`, `geconstateerd`
- `oprs` – public spaces / streets: `id`, `naam`, `verkorteNaam` (when given),
  `type`, `status`, `ligtInRef`
- `nums` – active address designations: `id`, `ligtAanRef`, `ligtInRef` (when
  given), `woonplaats`, `postcode`, `huisnummer`, `huisletter`,
  `huistoevoeging`, `status`; `inactnums` – the same for inactive ones, plus
  `begindate` and `enddate`
- `vbos` – residential objects (`vbo`), pitches (`sta`) and berths (`lig`):
  `id`, `gebruiksdoelen` (a JSON list), RD `x`/`y`, WGS84 `lat`/`lon`,
  `status`, `oppervlakte`, `type`. Berths and pitches get the centroid of their
  outline as position; `x` and `y` are -1 when there is no geometry.
- `pnds` – buildings: `id`, `geo` (outline position list), `bouwjaar`, `status`
- `vbo_num` – links from objects to addresses, with a `hoofdadres` flag
- `vbo_pnd` – links from objects to buildings

`huisletter` and `huistoevoeging` are created with `collate nocase`.

From Python the same work is done by `bagtools.bagconv.BagConverter`, which
takes an `SQLiteWriter` and an optional reference date (`yyyy-mm-dd`):

```python
from bagtools.bagconv import BagConverter
from bagtools.sqlwriter import SQLiteWriter

with SQLiteWriter("bag.sqlite") as writer:
    converter = BagConverter(writer, "2024-01-01")
    for path in ["9999WPL.xml", "9999OPR.xml", "9999NUM.xml"]:
        converter.process_file(path)
```

`currently_active(stand, date)` reports whether a single object element is
valid on a date; its result is truthy when active and carries `begin` and
`end`.

## Serving lookups

`bagserv` opens `bag.sqlite` read-only and answers JSON queries on all
interfaces. It listens on port 8080 unless another port is given:

```
bagserv 8080
```

Supported paths:

- `/1234AB` – all addresses in a postcode
- `/1234AB/12` – postcode and house number
- `/1234AB/12/a` – with house letter (the first letter is upper-cased)
- `/1234AB/12/a/bis` – with house letter (may be empty) and addition
- `/52.0423/4.3860` – the nearest address to a latitude/longitude, searched
  within 0.005 degrees

Replies are JSON lists of objects, with `gebruiksdoelen` decoded into a list
and NULL values given as empty strings. A failing query gives an HTTP 500 with
the error in a short HTML page; a path that matches no route gives a 404.
Files under `./html/` are served as they are, with `index.html` for paths
ending in `/`.

`bagtools.bagserv.handle_path(pool, path)` answers a path without running a
server, and `make_server(pool, host, port)` builds the threaded server around a
`ThingPool` of read-only `SQLiteWriter` objects.

## What is not included

`bagconv` does not create the `alllabel` view or the `geoindex` table that
`bagserv` queries. They have to be added to `bag.sqlite` by other means before
the lookups return results; until then every lookup answers with an HTTP 500.

## Library use

```python
from bagtools.rd2wgs84 import rd2wgs84
from bagtools.sqlwriter import SQLiteWriter

pos = rd2wgs84(155000.0, 463000.0)
print(pos.lat, pos.lon)

with SQLiteWriter("example.sqlite") as writer:
    writer.add_value({"id": 1, "naam": "Amersfoort"}, "wpls")
    print(writer.query("select * from wpls"))
```

- `SQLiteWriter` creates tables and columns on first use, taking the column
  type from the Python value (`REAL`, `TEXT`, `BLOB` or `INT`). Writes run in a
  transaction that a background thread commits about once a second; `close()`
  (or leaving the `with` block) commits the rest. `query` returns every value as
  a string, `query_typed` returns typed values and, on a read-only writer, takes
  a time limit in milliseconds. Opening with `SQLWFlag.READ_ONLY` makes writes
  raise `RuntimeError`.
- `MiniSQLite` is the single connection underneath, with `exec`, `execute`,
  `get_schema`, `add_column` and explicit `begin`/`commit`/`cycle`.
- `ThingPool(factory, *args, **kwargs)` hands out `Lease` objects for reusable
  things such as read-only connections; a lease forwards attribute access to
  its object and gives it back when its `with` block ends, or on `release()`;
  `abandon()` closes it instead.
- `bagtools.jsonhelper.pack_results_json` and `pack_results_json_str` turn
  typed query rows into JSON objects or text.