import json

import pytest

from advisorydb import db
from advisorydb.alma import VulnSrc, compare_rpm_versions


@pytest.fixture
def cache(tmp_path):
    cache_dir = tmp_path / "cache"
    db.init(str(cache_dir))
    yield cache_dir
    db.close()


def _read(keys):
    store = db.Config().connection()
    with store.view() as tx:
        bkt = tx.bucket(keys[0])
        for name in keys[1:-1]:
            assert bkt is not None
            bkt = bkt.bucket(name)
        assert bkt is not None
        raw = bkt.get(keys[-1])
    assert raw is not None
    return json.loads(raw)


def _write_erratum(data_dir, name, erratum):
    target = data_dir / "vuln-list" / "alma" / "8" / "2021"
    target.mkdir(parents=True, exist_ok=True)
    (target / name).write_text(json.dumps(erratum))


TOOLSET = {
    "title": "Moderate: go-toolset:rhel8 security, bug fix, and enhancement update",
    "description": "The toolset provides compiler tools and libraries.",
    "severity": "Moderate",
    "references": [
        {"href": "https://errata.almalinux.org/8/ALSA-2021-3076.html", "type": "self",
         "id": "ALSA-2021:3076"},
        {"href": "https://nvd.example.com/CVE-2021-27918", "type": "cve", "id": "CVE-2021-27918"},
        {"href": "https://nvd.example.com/CVE-2021-31525", "type": "cve", "id": "CVE-2021-31525"},
    ],
    "pkglist": {
        "module": {"name": "go-toolset", "stream": "rhel8"},
        "packages": [
            {"name": "compiler", "epoch": "0", "version": "1.15.14",
             "release": "1.module_el8.4.0+2519+614b07b8", "arch": "x86_64"},
            {"name": "go-toolset", "epoch": "0", "version": "1.15.14",
             "release": "1.module_el8.4.0+2519+614b07b8", "arch": "x86_64"},
            {"name": "compiler-bin", "epoch": "0", "version": "1.15.14",
             "release": "1.module_el8.4.0+2519+614b07b8", "arch": "aarch64"},
        ],
    },
}


def test_update_happy_path(cache, tmp_path):
    data_dir = tmp_path / "data"
    _write_erratum(data_dir, "ALSA-2021-3076.json", TOOLSET)

    VulnSrc().update(str(data_dir))

    assert _read(["data-source", "alma 8"]) == {
        "ID": "alma",
        "Name": "AlmaLinux Product Errata",
        "URL": "https://errata.almalinux.org/",
    }
    for cve in ("CVE-2021-27918", "CVE-2021-31525"):
        for pkg in ("go-toolset:rhel8::go-toolset", "go-toolset:rhel8::compiler"):
            assert _read(["advisory-detail", cve, "alma 8", pkg]) == {
                "FixedVersion": "1.15.14-1.module_el8.4.0+2519+614b07b8"
            }
        assert _read(["vulnerability-detail", cve, "alma"]) == {
            "Severity": 2,
            "Title": TOOLSET["title"],
            "Description": TOOLSET["description"],
            "References": ["https://errata.almalinux.org/8/ALSA-2021-3076.html"],
        }
        assert _read(["vulnerability-id", cve]) == {}


def test_update_skips_other_arches(cache, tmp_path):
    data_dir = tmp_path / "data"
    _write_erratum(data_dir, "ALSA-2021-3076.json", TOOLSET)
    VulnSrc().update(str(data_dir))

    store = db.Config().connection()
    with store.view() as tx:
        bkt = tx.bucket("advisory-detail").bucket("CVE-2021-27918").bucket("alma 8")
        keys = [key for key, _ in bkt.items()]
    assert keys == ["go-toolset:rhel8::compiler", "go-toolset:rhel8::go-toolset"]


def test_update_duplicate_keeps_lowest_version(cache, tmp_path):
    data_dir = tmp_path / "data"
    erratum = {
        "title": "Important: nodejs:14 security and bug fix update",
        "description": "Node.js is a software development platform.",
        "severity": "Important",
        "references": [{"href": "https://nvd.example.com/CVE-2020-7754", "type": "cve",
                        "id": "CVE-2020-7754"}],
        "pkglist": {
            "module": {"name": "nodejs", "stream": "14"},
            "packages": [
                {"name": "nodejs-nodemon", "epoch": "0", "version": "2.0.3",
                 "release": "1.module_el8.3.0+2022+0cf59502", "arch": "noarch"},
                {"name": "nodejs-packaging", "epoch": "0", "version": "25",
                 "release": "1.module_el8.3.0+2022+0cf59502", "arch": "noarch"},
                {"name": "nodejs-packaging", "epoch": "0", "version": "23",
                 "release": "3.module_el8.3.0+2022+0cf59502", "arch": "noarch"},
            ],
        },
    }
    _write_erratum(data_dir, "ALSA-2021-0548.json", erratum)

    VulnSrc().update(str(data_dir))

    assert _read(["advisory-detail", "CVE-2020-7754", "alma 8", "nodejs:14::nodejs-nodemon"]) == {
        "FixedVersion": "2.0.3-1.module_el8.3.0+2022+0cf59502"
    }
    assert _read(
        ["advisory-detail", "CVE-2020-7754", "alma 8", "nodejs:14::nodejs-packaging"]
    ) == {"FixedVersion": "23-3.module_el8.3.0+2022+0cf59502"}
    assert _read(["vulnerability-detail", "CVE-2020-7754", "alma"]) == {
        "Severity": 3,
        "Title": erratum["title"],
        "Description": erratum["description"],
    }
    assert _read(["vulnerability-id", "CVE-2020-7754"]) == {}


def test_update_sad_path(cache, tmp_path):
    target = tmp_path / "data" / "vuln-list" / "alma" / "8" / "2021"
    target.mkdir(parents=True)
    (target / "broken.json").write_text("{broken")
    with pytest.raises(ValueError, match="failed to decode Alma erratum"):
        VulnSrc().update(str(tmp_path / "data"))


def test_get_after_saving_details(cache, tmp_path):
    data_dir = tmp_path / "data"
    _write_erratum(data_dir, "ALSA-2021-3076.json", TOOLSET)
    VulnSrc().update(str(data_dir))
    dbc = db.Config()
    dbc.batch_update(lambda tx: dbc.save_advisory_details(tx, "CVE-2021-27918"))

    got = VulnSrc().get("8", "go-toolset:rhel8::compiler")
    assert [(a.vulnerability_id, a.fixed_version) for a in got] == [
        ("CVE-2021-27918", "1.15.14-1.module_el8.4.0+2519+614b07b8")
    ]
    assert got[0].data_source.name == "AlmaLinux Product Errata"


def test_name():
    assert VulnSrc().name() == "alma"


@pytest.mark.parametrize(
    "v1, v2, want",
    [
        ("1.0", "1.0", 0),
        ("1.0", "1.1", -1),
        ("1.10", "1.9", 1),
        ("1:1.0", "2.0", 1),
        ("1.0~rc1", "1.0", -1),
        ("1.0a", "1.0", 1),
        ("1.0-2", "1.0-1", 1),
        ("23-3.el8", "25-1.el8", -1),
        ("1.001", "1.1", 0),
    ],
)
def test_compare_rpm_versions(v1, v2, want):
    assert compare_rpm_versions(v1, v2) == want
    assert compare_rpm_versions(v2, v1) == -want