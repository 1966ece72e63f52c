# advisorydb

`advisorydb` reads security advisories published by Linux distributions and
the Ruby ecosystem and stores them in one nested key-value database. Other
tools can then look up the advisories that apply to a package.

## Supported sources

- Alpine secdb (`advisorydb.alpine.VulnSrc`)
- Chainguard security data (`advisorydb.chainguard.VulnSrc`)
- Arch Linux vulnerable issues (`advisorydb.archlinux.VulnSrc`)
- Amazon Linux Security Center (`advisorydb.amazon.VulnSrc`)
- AlmaLinux product errata (`advisorydb.alma.VulnSrc`)
- Ruby Advisory Database (`advisorydb.bundler.VulnSrc`)
- Debian Security Tracker (`advisorydb.debian.VulnSrc`)

Each source reads a local copy of its upstream data from a directory you pass
to `update()`, for example `<dir>/vuln-list/alpine/`,
`<dir>/vuln-list-debian/tracker/` or `<dir>/ruby-advisory-db/gems/`. It then
writes advisory details, vulnerability details, vulnerability IDs and
data-source records into the database. Most sources also have a `get()`
method that returns the stored advisories for a package.

## Installing

```
pip install advisorydb
```

## Usage

Open the database under a cache directory, load a source, and query it:

```python
from advisorydb import db
from advisorydb.alpine import VulnSrc

cache = "/tmp/advisory-cache"
db.init(cache)            # opens or creates <cache>/db/advisory.db
try:
    src = VulnSrc()
    src.update(cache)     # reads <cache>/vuln-list/alpine/**
    for advisory in src.get("3.12", "ansible"):
        print(advisory.vulnerability_id, advisory.fixed_version)
finally:
    db.close()
```

`update()` stores each advisory under the `advisory-detail` bucket, keyed by
vulnerability ID, platform and package. `get()` reads the platform's own
bucket. To copy advisories from `advisory-detail` into the platform buckets,
use `Config.save_advisory_details` inside a write transaction:

```python
from advisorydb.db import Config

dbc = Config()
dbc.for_each_vulnerability_id(dbc.save_advisory_details)

advisories = dbc.get_advisories("alpine 3.12", "ansible")
details = dbc.get_vulnerability_detail("CVE-2019-14904")  # {source id: VulnerabilityDetail}
```

A source name that contains `::`, such as `"rubygems::"`, is a prefix and
matches every bucket that starts with it. Failed database operations raise
`advisorydb.db.DatabaseError`. Malformed input files raise `ValueError`.

The database is a single file managed by `advisorydb.storage.Store`, with
`view()` and `update()` transactions. If the file is corrupt, `db.init`
replaces it with an empty one.

Metadata (schema version and update times) is kept in `metadata.json` beside
the database. `advisorydb.metadata.Client` reads, writes and deletes it.

Severity and status values are `Severity` and `Status` in `advisorydb.types`,
which also holds the record types `Advisory`, `VulnerabilityDetail`,
`Vulnerability` and `DataSource`. Version comparison helpers are
`advisorydb.alma.compare_rpm_versions` and
`advisorydb.debian.compare_deb_versions`.

## What it does not do

- It does not download upstream advisory data. The files must already be on disk.
- It has no command-line tool and no single "build everything" entry point.
  You call each source's `update()` yourself.
- It does not merge per-source vulnerability details into `Vulnerability`
  records, and it does not prune the temporary buckets on its own.
  `Config.put_vulnerability` and the `delete_*_bucket` methods are there for
  callers who want to do that.

## Running the tests

```
pip install -e ".[test]"
pytest
```