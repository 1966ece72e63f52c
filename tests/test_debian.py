import json
import os

import pytest

from advisorydb import db
from advisorydb.db import Config, DatabaseError
from advisorydb.debian import SOURCE, DebianAdvisory, VulnSrc, compare_deb_versions
from advisorydb.storage import Store
from advisorydb.types import Advisory, DataSource, Severity, VulnerabilityDetail, new_status


@pytest.fixture
def cache_dir(tmp_path):
    path = str(tmp_path / "cache")
    db.init(path)
    yield path
    db.close()


def _write(path, obj):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        if isinstance(obj, str):
            handle.write(obj)
        else:
            json.dump(obj, handle)


def _tracker(root):
    return os.path.join(str(root), "vuln-list-debian", "tracker")


DISTRIBUTIONS = {
    "jessie": {"major-version": "8"},
    "stretch": {"major-version": "9"},
    "buster": {"major-version": "10"},
    "bullseye": {"major-version": "11"},
    "sid": {"major-version": ""},
}


def _pkg(name, version):
    return {"Package": [name], "Version": [version]}


def _ann(release, package, kind, version="", severity=""):
    return {
        "Type": "package",
        "Release": release,
        "Package": package,
        "Kind": kind,
        "Version": version,
        "Severity": severity,
    }


def _build_happy(root):
    tracker = _tracker(root)
    _write(os.path.join(tracker, "distributions.json"), DISTRIBUTIONS)
    src = os.path.join(tracker, "source")
    _write(os.path.join(src, "buster", "main", "libgcrypt20.json"), _pkg("libgcrypt20", "1.8.4-5"))
    _write(os.path.join(src, "buster", "main", "dacs.json"), _pkg("dacs", "1.4.40-2"))
    _write(os.path.join(src, "stretch", "main", "libgcrypt20.json"), _pkg("libgcrypt20", "1.7.6-2+deb9u3"))
    _write(os.path.join(src, "bullseye", "main", "libgcrypt20.json"), _pkg("libgcrypt20", "1.8.7-6"))
    _write(os.path.join(src, "bullseye", "main", "cloud-init.json"), _pkg("cloud-init", "20.4.1-2"))
    _write(
        os.path.join(tracker, "updates-source", "buster", "main", "libgcrypt20.json"),
        _pkg("libgcrypt20", "1.8.4-5+deb10u1"),
    )

    cve = os.path.join(tracker, "CVE")
    _write(
        os.path.join(cve, "CVE-2021-33560.json"),
        {
            "Header": {
                "ID": "CVE-2021-33560",
                "Description": "(Libgcrypt before 1.8.8 and 1.9.x before 1.9.3 mishandles ElGamal encry ...)",
            },
            "Annotations": [
                _ann("", "libgcrypt20", "fixed", "1.8.7-6"),
                _ann("buster", "libgcrypt20", "fixed", "1.8.4-5+deb10u1"),
            ],
        },
    )
    _write(
        os.path.join(cve, "CVE-2021-29629.json"),
        {
            "Header": {
                "ID": "CVE-2021-29629",
                "Description": "(In FreeBSD 13.0-STABLE before n245765-bec0d2c9c841, 12.2-STABLE before ...)",
            },
            "Annotations": [
                _ann("", "dacs", "unfixed", severity="low"),
                _ann("stretch", "dacs", "not-affected"),
                _ann("buster", "dacs", "ignored"),
            ],
        },
    )
    _write(
        os.path.join(cve, "CVE-2020-8631.json"),
        {
            "Header": {"ID": "CVE-2020-8631", "Description": "(cloud-init through 19.4 ...)"},
            "Annotations": [
                _ann("", "cloud-init", "fixed", "19.4-2"),
                _ann("bullseye", "cloud-init", "no-dsa"),
            ],
        },
    )
    _write(
        os.path.join(cve, "CVE-2016-4606.json"),
        {
            "Header": {"ID": "CVE-2016-4606", "Description": "(curl ...)"},
            "Annotations": [_ann("", "curl", "not-affected")],
        },
    )
    _write(
        os.path.join(tracker, "DLA", "DLA-2691-1.json"),
        {
            "Header": {"ID": "DLA-2691-1", "Description": "(libgcrypt20 - security update)"},
            "Annotations": [
                {"Type": "xref", "Bugs": ["CVE-2021-33560"]},
                _ann("stretch", "libgcrypt20", "fixed", "1.7.6-2+deb9u4"),
            ],
        },
    )
    _write(
        os.path.join(tracker, "DSA", "DSA-3714-1.json"),
        {
            "Header": {"ID": "DSA-3714-1", "Description": "akonadi - update"},
            "Annotations": [_ann("jessie", "akonadi", "fixed", "1.13.0-2+deb8u2")],
        },
    )


def _navigate(cache_dir, names):
    db.close()
    with Store.open(db.db_path(cache_dir)) as store, store.view() as tx:
        node = tx
        for name in names:
            if node is None:
                return None
            node = node.bucket(name)
        return node


def _raw(cache_dir, keys):
    db.close()
    with Store.open(db.db_path(cache_dir)) as store, store.view() as tx:
        node = tx
        for name in keys[:-1]:
            node = node.bucket(name)
            assert node is not None, name
        value = node.get(keys[-1])
    assert value is not None, keys
    return json.loads(value)


@pytest.fixture
def happy(tmp_path, cache_dir):
    data_dir = tmp_path / "data"
    _build_happy(data_dir)
    VulnSrc().update(str(data_dir))
    return cache_dir


def test_name():
    assert VulnSrc().name() == "debian"


def test_update_data_source(happy):
    got = DataSource.from_dict(_raw(happy, ["data-source", "debian 9"]))
    assert got == DataSource(
        id="debian",
        name="Debian Security Tracker",
        url="https://salsa.debian.org/security-tracker-team/security-tracker",
    )
    assert got == SOURCE


@pytest.mark.parametrize(
    "keys, vendor_ids, fixed_version",
    [
        (["CVE-2021-33560", "debian 9", "libgcrypt20"], ["DLA-2691-1"], "1.7.6-2+deb9u4"),
        (["CVE-2021-33560", "debian 10", "libgcrypt20"], [], "1.8.4-5+deb10u1"),
        (["CVE-2021-33560", "debian 11", "libgcrypt20"], [], "1.8.7-6"),
        (["DSA-3714-1", "debian 8", "akonadi"], ["DSA-3714-1"], "1.13.0-2+deb8u2"),
        (["CVE-2020-8631", "debian 11", "cloud-init"], [], "19.4-2"),
    ],
)
def test_update_fixed_advisories(happy, keys, vendor_ids, fixed_version):
    adv = Advisory.from_dict(_raw(happy, ["advisory-detail", *keys]))
    assert adv.fixed_version == fixed_version
    assert list(adv.vendor_ids or []) == vendor_ids
    assert adv.status == new_status("unknown")
    assert adv.severity == Severity.UNKNOWN


def test_update_will_not_fix(happy):
    adv = Advisory.from_dict(_raw(happy, ["advisory-detail", "CVE-2021-29629", "debian 10", "dacs"]))
    assert adv.severity == Severity.LOW
    assert adv.status == new_status("will_not_fix")
    assert adv.fixed_version == ""


@pytest.mark.parametrize(
    "vuln_id, title",
    [
        ("CVE-2021-33560", "Libgcrypt before 1.8.8 and 1.9.x before 1.9.3 mishandles ElGamal encry ..."),
        ("CVE-2021-29629", "In FreeBSD 13.0-STABLE before n245765-bec0d2c9c841, 12.2-STABLE before ..."),
        ("DSA-3714-1", "akonadi - update"),
    ],
)
def test_update_vulnerability_detail(happy, vuln_id, title):
    detail = VulnerabilityDetail.from_dict(_raw(happy, ["vulnerability-detail", vuln_id, "debian"]))
    assert detail.title == title


@pytest.mark.parametrize("vuln_id", ["CVE-2021-33560", "CVE-2021-29629", "DSA-3714-1"])
def test_update_vulnerability_id(happy, vuln_id):
    assert _raw(happy, ["vulnerability-id", vuln_id]) == {}


@pytest.mark.parametrize(
    "names",
    [
        ["advisory-detail", "CVE-2021-29629", "debian 9"],  # not-affected in stretch
        ["advisory-detail", "CVE-2016-4606"],  # not-affected in sid
    ],
)
def test_update_no_buckets(happy, names):
    assert _navigate(happy, names) is None


def test_update_custom_put(tmp_path, cache_dir):
    data_dir = tmp_path / "data"
    _build_happy(data_dir)
    collected = []
    VulnSrc(put=lambda dbc, tx, adv: collected.append(adv)).update(str(data_dir))
    akonadi = [a for a in collected if a.vulnerability_id == "DSA-3714-1"]
    assert akonadi == [
        DebianAdvisory(
            vulnerability_id="DSA-3714-1",
            platform="debian 8",
            pkg_name="akonadi",
            vendor_ids=["DSA-3714-1"],
            fixed_version="1.13.0-2+deb8u2",
            title="akonadi - update",
        )
    ]
    assert not any(a.vulnerability_id == "CVE-2016-4606" for a in collected)


def test_update_broken_distributions(tmp_path, cache_dir):
    _write(os.path.join(_tracker(tmp_path), "distributions.json"), "{broken")
    with pytest.raises(ValueError, match="failed to decode Debian distribution JSON"):
        VulnSrc().update(str(tmp_path))


def test_update_broken_packages(tmp_path, cache_dir):
    tracker = _tracker(tmp_path)
    _write(os.path.join(tracker, "distributions.json"), DISTRIBUTIONS)
    broken = os.path.join(tracker, "source", "buster", "broken.json")
    _write(broken, "{broken")
    with pytest.raises(ValueError) as excinfo:
        VulnSrc().update(str(tmp_path))
    assert "failed to decode" in str(excinfo.value)
    assert broken in str(excinfo.value)


def test_update_broken_cve(tmp_path, cache_dir):
    tracker = _tracker(tmp_path)
    _write(os.path.join(tracker, "distributions.json"), DISTRIBUTIONS)
    _write(os.path.join(tracker, "CVE", "broken.json"), "[")
    with pytest.raises(ValueError, match="json decode error"):
        VulnSrc().update(str(tmp_path))


def test_get(cache_dir):
    dbc = Config()

    def fill(tx):
        dbc.put_advisory(
            tx, ["debian 10", "alpine"], "CVE-2008-5514", Advisory(fixed_version="2.02-3.1")
        )
        dbc.put_advisory(
            tx, ["debian 10", "alpine"], "CVE-2021-38370", Advisory(status=new_status("affected"))
        )

    dbc.batch_update(fill)
    got = sorted(VulnSrc().get("10", "alpine"), key=lambda a: a.vulnerability_id)
    assert [a.vulnerability_id for a in got] == ["CVE-2008-5514", "CVE-2021-38370"]
    assert got[0].fixed_version == "2.02-3.1"
    assert got[1].fixed_version == ""
    assert got[1].status == new_status("affected")


def test_get_broken_bucket(cache_dir):
    def fill(tx):
        tx.create_bucket_if_not_exists("debian 10").create_bucket_if_not_exists("alpine").put(
            "CVE-2008-5514", b"{broken"
        )

    Config().batch_update(fill)
    with pytest.raises(DatabaseError, match="failed to get Debian advisories"):
        VulnSrc().get("10", "alpine")


@pytest.mark.parametrize(
    "v1, v2, want",
    [
        ("", "", 0),
        ("", "1.0", -1),
        ("1.0", "", 1),
        ("1.0", "1.0", 0),
        ("1.0~rc1", "1.0", -1),
        ("1:0.1", "2.0", 1),
        ("1.0a", "1.0", 1),
        ("1.0-2", "1.0-1", 1),
        ("1.10", "1.9", 1),
        ("5.0-4", "5.0-5", -1),
        ("1.8.4-5+deb10u1", "1.8.4-5", 1),
        ("20.4.1-2", "19.4-2", 1),
    ],
)
def test_compare_deb_versions(v1, v2, want):
    assert compare_deb_versions(v1, v2) == want


def test_compare_deb_versions_antisymmetric():
    assert compare_deb_versions("2.02-3.1", "2.02-3") == -compare_deb_versions("2.02-3", "2.02-3.1")


def test_compare_deb_versions_invalid():
    with pytest.raises(ValueError, match="version error"):
        compare_deb_versions("abc", "1.0")